"""Turn a provider-agnostic conversation into each provider's request shape.

Every provider folds roles differently:

- openai / perplexity keep system, user and assistant; ``tool`` becomes user.
- anthropic moves system messages into a top-level ``system`` slot and treats
  every other non-assistant role as user.
- google moves system messages into ``systemInstruction``, renames assistant
  to ``model`` and treats everything else as user.
- local (Ollama) takes the roles verbatim.

Message order is never changed. When a model declares a context budget the
oldest messages are dropped first, keeping system prompts and the latest
user message.
"""
import logging
from dataclasses import dataclass
from typing import Callable, Optional, Sequence

from gateway.services.conversation import CompletionSettings, Message
from gateway.services.errors import ConfigurationError
from gateway.services.registry import ProviderDescriptor
from gateway.services.token_estimator import estimate_messages

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProviderRequest:
    provider: str
    model: str
    payload: dict
    # Text the prompt was built from, used when the provider omits usage
    prompt_text: str = ""
    dropped_messages: int = 0


def truncate_history(messages: Sequence[Message], budget: Optional[int]) -> list[Message]:
    """Drop oldest messages until the estimated prompt fits ``budget``."""
    kept = list(messages)
    if not budget:
        return kept

    last_user = None
    for i in range(len(kept) - 1, -1, -1):
        if kept[i].role == "user":
            last_user = kept[i]
            break

    def _pinned(msg: Message) -> bool:
        return msg.role == "system" or msg is last_user

    while estimate_messages(m.content for m in kept) > budget:
        victim = next((i for i, m in enumerate(kept) if not _pinned(m)), None)
        if victim is None:
            break
        del kept[victim]
    return kept


def _openai_messages(messages: Sequence[Message]) -> list[dict]:
    return [
        {"role": m.role if m.role in ("system", "user", "assistant") else "user", "content": m.content}
        for m in messages
    ]


def _build_openai(messages, settings: CompletionSettings) -> dict:
    return {
        "model": settings.model,
        "messages": _openai_messages(messages),
        "temperature": settings.temperature,
        "max_tokens": settings.max_tokens,
        "top_p": settings.top_p,
        "frequency_penalty": settings.frequency_penalty,
        "presence_penalty": settings.presence_penalty,
        "stream": True,
        "stream_options": {"include_usage": True},
    }


def _build_perplexity(messages, settings: CompletionSettings) -> dict:
    # Perplexity reports usage on every chunk and rejects stream_options
    payload = _build_openai(messages, settings)
    payload.pop("stream_options")
    return payload


def _build_anthropic(messages, settings: CompletionSettings) -> dict:
    system_parts = []
    chat_messages = []
    for m in messages:
        if m.role == "system":
            system_parts.append(m.content)
        else:
            role = "assistant" if m.role == "assistant" else "user"
            chat_messages.append({"role": role, "content": m.content})

    payload = {
        "model": settings.model,
        "max_tokens": settings.max_tokens,
        "messages": chat_messages,
        # Anthropic accepts 0..1
        "temperature": min(settings.temperature, 1.0),
        "stream": True,
    }
    if settings.top_p < 1.0:
        payload["top_p"] = settings.top_p
    system_msg = "\n".join(system_parts).strip()
    if system_msg:
        payload["system"] = system_msg
    return payload


def _build_gemini(messages, settings: CompletionSettings) -> dict:
    system_parts = []
    contents = []
    for m in messages:
        if m.role == "system":
            system_parts.append(m.content)
            continue
        role = "model" if m.role == "assistant" else "user"
        contents.append({"role": role, "parts": [{"text": m.content}]})

    payload = {
        "contents": contents,
        "generationConfig": {
            "temperature": settings.temperature,
            "maxOutputTokens": settings.max_tokens,
            "topP": settings.top_p,
            "frequencyPenalty": settings.frequency_penalty,
            "presencePenalty": settings.presence_penalty,
        },
    }
    if system_parts:
        payload["systemInstruction"] = {"parts": [{"text": "\n".join(system_parts)}]}
    return payload


def _build_local(messages, settings: CompletionSettings) -> dict:
    return {
        "model": settings.model,
        "messages": [{"role": m.role, "content": m.content} for m in messages],
        "stream": True,
        "options": {
            "temperature": settings.temperature,
            "num_predict": settings.max_tokens,
            "top_p": settings.top_p,
            "frequency_penalty": settings.frequency_penalty,
            "presence_penalty": settings.presence_penalty,
        },
    }


_BUILDERS: dict[str, Callable[[Sequence[Message], CompletionSettings], dict]] = {
    "openai": _build_openai,
    "perplexity": _build_perplexity,
    "anthropic": _build_anthropic,
    "google": _build_gemini,
    "local": _build_local,
}


def build_request(
    conversation: Sequence[Message],
    settings: CompletionSettings,
    descriptor: ProviderDescriptor,
) -> ProviderRequest:
    builder = _BUILDERS.get(descriptor.name.lower())
    if builder is None:
        raise ConfigurationError(f"No request format for provider '{descriptor.name}'")

    messages = truncate_history(conversation, descriptor.context_budget(settings.model))
    dropped = len(conversation) - len(messages)
    if dropped:
        logger.info(
            "Dropped %d oldest messages to fit %s context budget", dropped, settings.model
        )

    return ProviderRequest(
        provider=descriptor.name,
        model=settings.model,
        payload=builder(messages, settings),
        prompt_text="\n".join(m.content for m in messages),
        dropped_messages=dropped,
    )
