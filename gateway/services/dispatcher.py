"""Routes a conversation to a provider and streams back unified events.

``Dispatcher.stream`` returns a ``StreamHandle``: an async iterator the
caller drains, plus a cancel token. Each invocation validates its settings,
builds the provider request, opens the upstream stream, feeds raw bytes to
the provider's parser and translates the native events into the unified
ones, in arrival order. Exactly one terminal event (``Done`` or ``Failed``)
ends every stream; nothing is raised past this module.

Transient failures (network errors, 5xx, idle timeouts, a body that ends
without a completion marker) are retried with exponential backoff, but only
while nothing has been delivered yet: a retry never splices into content
the caller already has.
"""
import asyncio
import inspect
import logging
from contextlib import AsyncExitStack, aclosing
from dataclasses import dataclass
from typing import AsyncGenerator, Awaitable, Callable, Mapping, Optional, Sequence, Union

import httpx

from gateway.config import Settings
from gateway.services.conversation import CompletionSettings, Message, validate_conversation
from gateway.services.errors import ConfigurationError, GatewayError, UpstreamError
from gateway.services.events import (
    ContentDelta,
    Done,
    ErrorKind,
    Failed,
    UnifiedEvent,
    Usage,
    UsageSummary,
)
from gateway.services.normalizer import ProviderRequest, build_request
from gateway.services.parsers.base import Completion, NativeEvent, ProviderError, TextDelta, UsageReport
from gateway.services.providers.anthropic_provider import AnthropicProvider
from gateway.services.providers.base import BaseLLMProvider
from gateway.services.providers.gemini_provider import GeminiProvider
from gateway.services.providers.local_provider import LocalProvider
from gateway.services.providers.openai_provider import OpenAIProvider
from gateway.services.providers.perplexity_provider import PerplexityProvider
from gateway.services.registry import ProviderRegistry
from gateway.services.usage import UsageAccumulator

logger = logging.getLogger(__name__)

Sink = Callable[[UnifiedEvent], Union[None, Awaitable[None]]]


class StreamCancelled(Exception):
    """Raised internally when the caller's cancel token fires."""


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 3
    base_delay: float = 1.0
    factor: float = 2.0
    idle_timeout: float = 60.0

    def delay(self, attempt: int) -> float:
        """Backoff before the attempt after ``attempt`` (1-based)."""
        return self.base_delay * self.factor ** (attempt - 1)


@dataclass
class StreamState:
    """Everything one attempt knows. A retry always starts a new one."""

    attempt: int
    accumulator: UsageAccumulator
    delivered: bool = False
    completed: bool = False
    finish_reason: Optional[str] = None

    @property
    def text(self) -> str:
        return self.accumulator.text


@dataclass
class CompletionResult:
    text: str
    finish_reason: Optional[str] = None
    usage: Optional[UsageSummary] = None
    error: Optional[Failed] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class StreamHandle:
    """The caller's end of one stream: iterate it, or cancel it."""

    def __init__(self, events: AsyncGenerator[UnifiedEvent, None], cancel_token: asyncio.Event):
        self._events = events
        self._cancel_token = cancel_token
        self.task: Optional[asyncio.Task] = None

    def cancel(self) -> None:
        self._cancel_token.set()

    @property
    def cancelled(self) -> bool:
        return self._cancel_token.is_set()

    def __aiter__(self) -> "StreamHandle":
        return self

    async def __anext__(self) -> UnifiedEvent:
        return await self._events.__anext__()

    async def aclose(self) -> None:
        """Stop the stream and close the upstream connection."""
        await self._events.aclose()


class Dispatcher:
    def __init__(
        self,
        registry: ProviderRegistry,
        providers: Mapping[str, BaseLLMProvider],
        policy: RetryPolicy = RetryPolicy(),
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self._registry = registry
        self._providers = {name.lower(): p for name, p in providers.items()}
        self._policy = policy
        self._sleep = sleep

    @property
    def registry(self) -> ProviderRegistry:
        return self._registry

    def is_configured(self, provider_id: str) -> bool:
        return (provider_id or "").lower() in self._providers

    # --- Public API ---

    def stream(
        self, conversation: Sequence[Message], settings: CompletionSettings
    ) -> StreamHandle:
        cancel_token = asyncio.Event()
        events = self._run(tuple(conversation), settings, cancel_token)
        return StreamHandle(events, cancel_token)

    def start(
        self,
        conversation: Sequence[Message],
        settings: CompletionSettings,
        sink: Sink,
    ) -> StreamHandle:
        """Drain the stream into ``sink`` from a separate task."""
        handle = self.stream(conversation, settings)

        async def _pump():
            try:
                async for event in handle:
                    result = sink(event)
                    if inspect.isawaitable(result):
                        await result
            finally:
                await handle.aclose()

        handle.task = asyncio.create_task(_pump())
        return handle

    @staticmethod
    def cancel(handle: StreamHandle) -> None:
        handle.cancel()

    async def complete(
        self, conversation: Sequence[Message], settings: CompletionSettings
    ) -> CompletionResult:
        """Run a stream to its end and return the assembled message."""
        handle = self.stream(conversation, settings)
        parts = []
        try:
            async for event in handle:
                if isinstance(event, ContentDelta):
                    parts.append(event.text)
                elif isinstance(event, Done):
                    return CompletionResult("".join(parts), event.finish_reason, event.usage)
                elif isinstance(event, Failed):
                    return CompletionResult("".join(parts), usage=event.usage, error=event)
        finally:
            await handle.aclose()
        # The stream always ends with a terminal event
        raise RuntimeError("stream ended without a terminal event")

    # --- Stream driver ---

    async def _run(
        self,
        conversation: tuple[Message, ...],
        settings: CompletionSettings,
        cancel_token: asyncio.Event,
    ) -> AsyncGenerator[UnifiedEvent, None]:
        try:
            async with aclosing(self._dispatch(conversation, settings, cancel_token)) as events:
                async for event in events:
                    yield event
        except Exception as exc:
            logger.exception(
                "Unexpected failure streaming %s/%s", settings.provider, settings.model
            )
            yield Failed(ErrorKind.INTERNAL, str(exc) or type(exc).__name__)

    async def _dispatch(self, conversation, settings, cancel_token):
        errors = validate_conversation(conversation) + settings.validate(self._registry)
        if errors:
            logger.warning("Rejected completion request: %s", "; ".join(errors))
            yield Failed(ErrorKind.CONFIGURATION, "; ".join(errors))
            return

        descriptor = self._registry.lookup(settings.provider)
        provider = self._providers.get(descriptor.name.lower())
        if provider is None:
            yield Failed(
                ErrorKind.CONFIGURATION,
                f"Provider '{descriptor.name}' not configured. "
                f"Set the API key in .env for this provider.",
            )
            return

        try:
            request = build_request(conversation, settings, descriptor)
        except ConfigurationError as exc:
            yield Failed(ErrorKind.CONFIGURATION, exc.message)
            return

        rates = descriptor.rates_for(settings.model)
        logger.info("Routing to %s for model %s", provider.get_provider_name(), settings.model)

        attempt = 0
        while True:
            attempt += 1
            state = StreamState(attempt, UsageAccumulator(rates, request.prompt_text))
            try:
                attempt_events = self._attempt(provider, request, state, cancel_token)
                async with aclosing(attempt_events):
                    async for event in attempt_events:
                        yield event
            except StreamCancelled:
                yield self._cancelled(state)
                return
            except GatewayError as exc:
                kind, message = exc.kind, exc.message
            except Exception as exc:
                kind = provider.classify_error(exc)
                message = str(exc) or type(exc).__name__
                if kind is None:
                    logger.exception("Unclassified error from %s", provider.get_provider_name())
                    kind = ErrorKind.INTERNAL
            else:
                yield Done(state.finish_reason, state.accumulator.finalize())
                return

            if kind.is_transient and not state.delivered and attempt < self._policy.max_attempts:
                delay = self._policy.delay(attempt)
                logger.warning(
                    "%s attempt %d/%d failed (%s: %s); retrying in %.1fs",
                    provider.get_provider_name(), attempt, self._policy.max_attempts,
                    kind.value, message, delay,
                )
                try:
                    await self._race(self._sleep(delay), cancel_token, timeout=None)
                except StreamCancelled:
                    yield self._cancelled(state)
                    return
                continue

            yield self._failed(kind, message, state)
            return

    async def _attempt(
        self,
        provider: BaseLLMProvider,
        request: ProviderRequest,
        state: StreamState,
        cancel_token: asyncio.Event,
    ) -> AsyncGenerator[UnifiedEvent, None]:
        parser = provider.create_parser()
        idle = self._policy.idle_timeout
        async with AsyncExitStack() as stack:
            chunks = await self._race(
                stack.enter_async_context(provider.open_stream(request)), cancel_token, idle
            )
            while not state.completed:
                if cancel_token.is_set():
                    raise StreamCancelled()
                data = await self._race(_read(chunks), cancel_token, idle)
                native_events = parser.feed(data) if data is not None else parser.close()
                for native in native_events:
                    event = self._translate(native, state)
                    if event is None:
                        continue
                    if cancel_token.is_set():
                        raise StreamCancelled()
                    if isinstance(event, ContentDelta):
                        state.accumulator.add_text(event.text)
                        state.delivered = True
                    yield event
                if data is None and not state.completed:
                    raise UpstreamError(
                        "Upstream closed the stream before completion",
                        ErrorKind.TRANSIENT_NETWORK,
                    )
        if parser.parse_errors:
            logger.warning(
                "%s stream finished with %d malformed records skipped",
                provider.get_provider_name(), parser.parse_errors,
            )

    @staticmethod
    def _translate(native: NativeEvent, state: StreamState) -> Optional[UnifiedEvent]:
        if isinstance(native, TextDelta):
            return ContentDelta(native.text)
        if isinstance(native, UsageReport):
            usage = Usage(native.prompt_tokens, native.completion_tokens)
            state.accumulator.update(usage)
            return usage
        if isinstance(native, Completion):
            state.completed = True
            state.finish_reason = native.finish_reason
            return None
        if isinstance(native, ProviderError):
            raise UpstreamError(native.message, native.kind)
        raise TypeError(f"Unknown native event: {native!r}")

    async def _race(self, awaitable, cancel_token: asyncio.Event, timeout: Optional[float]):
        """Await ``awaitable`` unless the cancel token or the idle window wins."""
        task = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(cancel_token.wait())
        try:
            done, _ = await asyncio.wait(
                {task, waiter}, timeout=timeout, return_when=asyncio.FIRST_COMPLETED
            )
        except asyncio.CancelledError:
            task.cancel()
            raise
        finally:
            waiter.cancel()

        if task in done:
            return task.result()

        task.cancel()
        # Let the pending read unwind before the connection is closed
        await asyncio.gather(task, return_exceptions=True)
        if cancel_token.is_set():
            raise StreamCancelled()
        raise UpstreamError(
            f"No data received from upstream for {timeout:.0f}s",
            ErrorKind.TRANSIENT_NETWORK,
        )

    def _failed(self, kind: ErrorKind, message: str, state: StreamState) -> Failed:
        if kind.is_transient and not state.delivered:
            # Only reached once every attempt is spent
            message = f"{message} (gave up after {state.attempt} attempts)"
            retryable = False
        else:
            retryable = kind is ErrorKind.RATE_LIMITED or kind.is_transient
        logger.warning(
            "Stream failed on attempt %d: %s: %s", state.attempt, kind.value, message
        )
        return Failed(
            kind,
            message,
            retryable=retryable,
            partial_text=state.text,
            usage=state.accumulator.finalize() if state.delivered else None,
        )

    @staticmethod
    def _cancelled(state: StreamState) -> Failed:
        logger.info("Stream cancelled by caller after %d characters", len(state.text))
        return Failed(
            ErrorKind.CANCELLED,
            "Stream cancelled by caller",
            partial_text=state.text,
            usage=state.accumulator.finalize() if state.delivered else None,
        )


async def _read(chunks) -> Optional[bytes]:
    """Next raw chunk from the upstream body, or None at end of body."""
    return await anext(chunks, None)


def build_dispatcher(settings: Settings, registry: Optional[ProviderRegistry] = None) -> Dispatcher:
    """Wire providers for every configured API key."""
    registry = registry or ProviderRegistry.from_config(settings.providers_config)
    timeout = httpx.Timeout(
        settings.idle_timeout_seconds, connect=settings.connect_timeout_seconds
    )
    providers: dict[str, BaseLLMProvider] = {}

    openai_key = settings.openai_api_key.get_secret_value()
    if openai_key:
        providers["openai"] = OpenAIProvider(openai_key, timeout=timeout)

    anthropic_key = settings.anthropic_api_key.get_secret_value()
    if anthropic_key:
        providers["anthropic"] = AnthropicProvider(anthropic_key, timeout=timeout)

    google_key = settings.google_api_key.get_secret_value()
    if google_key:
        providers["google"] = GeminiProvider(
            google_key, base_url=settings.google_base_url, timeout=timeout
        )

    perplexity_key = settings.perplexity_api_key.get_secret_value()
    if perplexity_key:
        providers["perplexity"] = PerplexityProvider(
            perplexity_key, base_url=settings.perplexity_base_url, timeout=timeout
        )

    # Local models need no key
    providers["local"] = LocalProvider(settings.local_ai_url, timeout=timeout)

    policy = RetryPolicy(
        max_attempts=settings.retry_max_attempts,
        base_delay=settings.retry_base_delay,
        factor=settings.retry_backoff_factor,
        idle_timeout=settings.idle_timeout_seconds,
    )
    return Dispatcher(registry, providers, policy)
