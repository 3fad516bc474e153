from dataclasses import dataclass
from typing import Sequence

from gateway.services.registry import ProviderRegistry

ROLES = ("user", "assistant", "system", "tool")

MAX_TOKENS_LIMIT = 400_000


@dataclass(frozen=True)
class Message:
    role: str
    content: str


@dataclass(frozen=True)
class CompletionSettings:
    """Sampling parameters and routing for one completion."""

    provider: str = "openai"
    model: str = "gpt-3.5-turbo"
    temperature: float = 0.7
    max_tokens: int = 2000
    top_p: float = 1.0
    frequency_penalty: float = 0.0
    presence_penalty: float = 0.0
    stream: bool = True

    def validate(self, registry: ProviderRegistry) -> list[str]:
        """Return every problem with these settings; empty when valid."""
        errors = []
        if not 0.0 <= self.temperature <= 2.0:
            errors.append("Temperature must be between 0 and 2")
        if not 1 <= self.max_tokens <= MAX_TOKENS_LIMIT:
            errors.append("Max tokens must be between 1 and 400,000")
        if not 0.0 <= self.top_p <= 1.0:
            errors.append("Top-p must be between 0 and 1")
        if not -2.0 <= self.frequency_penalty <= 2.0:
            errors.append("Frequency penalty must be between -2 and 2")
        if not -2.0 <= self.presence_penalty <= 2.0:
            errors.append("Presence penalty must be between -2 and 2")

        if self.provider not in registry:
            errors.append(f"Unknown provider: {self.provider}")
        elif not registry.validate_model(self.provider, self.model):
            models = registry.lookup(self.provider).models
            errors.append(f"Model must be one of: {', '.join(models)}")
        return errors


def validate_conversation(conversation: Sequence[Message]) -> list[str]:
    errors = []
    if not conversation:
        errors.append("Conversation must contain at least one message")
    for i, msg in enumerate(conversation):
        if msg.role not in ROLES:
            errors.append(f"Message {i} has unknown role: {msg.role!r}")
        if not isinstance(msg.content, str):
            errors.append(f"Message {i} content must be text")
    return errors
