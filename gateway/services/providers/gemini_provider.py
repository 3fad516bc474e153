from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

import httpx

from gateway.services.normalizer import ProviderRequest
from gateway.services.parsers.gemini_parser import GeminiStreamParser
from gateway.services.providers.base import BaseLLMProvider, raise_for_stream_status

GEMINI_BASE_URL = "https://generativelanguage.googleapis.com/v1beta"

# A bad key comes back as 400 INVALID_ARGUMENT with this reason
GEMINI_AUTH_MARKERS = ("API_KEY_INVALID",)


class GeminiProvider(BaseLLMProvider):
    """Gemini over the REST SSE endpoint.

    The SDK only hands back parsed response objects, so the stream is read
    directly with httpx to keep parsing byte-level like every other provider.
    """

    def __init__(
        self,
        api_key: str,
        base_url: str = GEMINI_BASE_URL,
        timeout: Optional[httpx.Timeout] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._api_key = api_key
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout or httpx.Timeout(60.0, connect=10.0)
        self._transport = transport

    def get_provider_name(self) -> str:
        return "google"

    def create_parser(self) -> GeminiStreamParser:
        return GeminiStreamParser()

    @asynccontextmanager
    async def open_stream(self, request: ProviderRequest) -> AsyncIterator[AsyncIterator[bytes]]:
        url = f"{self._base_url}/models/{request.model}:streamGenerateContent"
        async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
            async with client.stream(
                "POST",
                url,
                params={"alt": "sse"},
                headers={"x-goog-api-key": self._api_key},
                json=request.payload,
            ) as response:
                await raise_for_stream_status(response, "Gemini", auth_markers=GEMINI_AUTH_MARKERS)
                yield response.aiter_bytes()
