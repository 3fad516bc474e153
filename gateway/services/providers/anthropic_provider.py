from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

import anthropic
import httpx
from anthropic import AsyncAnthropic

from gateway.services.errors import kind_for_status
from gateway.services.events import ErrorKind
from gateway.services.normalizer import ProviderRequest
from gateway.services.parsers.anthropic_parser import AnthropicStreamParser
from gateway.services.providers.base import BaseLLMProvider


class AnthropicProvider(BaseLLMProvider):
    def __init__(
        self,
        api_key: str,
        timeout: Optional[httpx.Timeout] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self._client = AsyncAnthropic(
            api_key=api_key,
            max_retries=0,
            timeout=timeout,
            http_client=http_client,
        )

    def get_provider_name(self) -> str:
        return "anthropic"

    def create_parser(self) -> AnthropicStreamParser:
        return AnthropicStreamParser()

    @asynccontextmanager
    async def open_stream(self, request: ProviderRequest) -> AsyncIterator[AsyncIterator[bytes]]:
        # The system prompt already sits outside the message list in the payload
        async with self._client.messages.with_streaming_response.create(
            **request.payload
        ) as response:
            yield response.iter_bytes()

    def classify_error(self, exc: BaseException) -> Optional[ErrorKind]:
        if isinstance(exc, (anthropic.AuthenticationError, anthropic.PermissionDeniedError)):
            return ErrorKind.AUTHENTICATION
        if isinstance(exc, anthropic.RateLimitError):
            return ErrorKind.RATE_LIMITED
        if isinstance(exc, anthropic.APIConnectionError):
            return ErrorKind.TRANSIENT_NETWORK
        if isinstance(exc, anthropic.APIStatusError):
            # 529 overloaded lands here as a server error
            return kind_for_status(exc.status_code)
        return super().classify_error(exc)
