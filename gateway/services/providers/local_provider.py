from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

import httpx

from gateway.services.normalizer import ProviderRequest
from gateway.services.parsers.ollama_parser import OllamaStreamParser
from gateway.services.providers.base import BaseLLMProvider, raise_for_stream_status

LOCAL_AI_URL = "http://localhost:11434"


class LocalProvider(BaseLLMProvider):
    """Self-hosted models behind an Ollama-compatible ``/api/chat``."""

    def __init__(
        self,
        base_url: str = LOCAL_AI_URL,
        timeout: Optional[httpx.Timeout] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout or httpx.Timeout(120.0, connect=10.0)
        self._transport = transport

    def get_provider_name(self) -> str:
        return "local"

    def create_parser(self) -> OllamaStreamParser:
        return OllamaStreamParser()

    @asynccontextmanager
    async def open_stream(self, request: ProviderRequest) -> AsyncIterator[AsyncIterator[bytes]]:
        async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
            async with client.stream(
                "POST", f"{self._base_url}/api/chat", json=request.payload
            ) as response:
                await raise_for_stream_status(response, "Local model server")
                yield response.aiter_bytes()
