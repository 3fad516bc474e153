from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

import httpx
import openai
from openai import AsyncOpenAI

from gateway.services.errors import kind_for_status
from gateway.services.events import ErrorKind
from gateway.services.normalizer import ProviderRequest
from gateway.services.parsers.openai_parser import OpenAIStreamParser
from gateway.services.providers.base import BaseLLMProvider


class OpenAIProvider(BaseLLMProvider):
    def __init__(
        self,
        api_key: str,
        base_url: Optional[str] = None,
        timeout: Optional[httpx.Timeout] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        # The dispatcher owns retries, so the SDK must not retry on its own
        self._client = AsyncOpenAI(
            api_key=api_key,
            base_url=base_url,
            max_retries=0,
            timeout=timeout,
            http_client=http_client,
        )

    def get_provider_name(self) -> str:
        return "openai"

    def create_parser(self) -> OpenAIStreamParser:
        return OpenAIStreamParser()

    @asynccontextmanager
    async def open_stream(self, request: ProviderRequest) -> AsyncIterator[AsyncIterator[bytes]]:
        async with self._client.chat.completions.with_streaming_response.create(
            **request.payload
        ) as response:
            yield response.iter_bytes()

    def classify_error(self, exc: BaseException) -> Optional[ErrorKind]:
        if isinstance(exc, (openai.AuthenticationError, openai.PermissionDeniedError)):
            return ErrorKind.AUTHENTICATION
        if isinstance(exc, openai.RateLimitError):
            return ErrorKind.RATE_LIMITED
        if isinstance(exc, openai.APIConnectionError):
            # includes APITimeoutError
            return ErrorKind.TRANSIENT_NETWORK
        if isinstance(exc, openai.APIStatusError):
            return kind_for_status(exc.status_code)
        return super().classify_error(exc)
