from typing import Optional

import httpx

from gateway.services.providers.openai_provider import OpenAIProvider

PERPLEXITY_BASE_URL = "https://api.perplexity.ai"


class PerplexityProvider(OpenAIProvider):
    """Perplexity Sonar models via the OpenAI-compatible API.

    Perplexity streams Chat Completions records but does not always fill
    ``delta.content``; the OpenAI parser falls back to ``message.content``
    for those records.
    """

    def __init__(
        self,
        api_key: str,
        base_url: str = PERPLEXITY_BASE_URL,
        timeout: Optional[httpx.Timeout] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        super().__init__(
            api_key=api_key,
            base_url=base_url,
            timeout=timeout,
            http_client=http_client,
        )

    def get_provider_name(self) -> str:
        return "perplexity"
