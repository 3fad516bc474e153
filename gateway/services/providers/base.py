from abc import ABC, abstractmethod
from typing import AsyncContextManager, AsyncIterator, Optional

import httpx

from gateway.services.errors import UpstreamError, kind_for_status
from gateway.services.events import ErrorKind
from gateway.services.normalizer import ProviderRequest
from gateway.services.parsers.base import LineParser


class BaseLLMProvider(ABC):
    """Upstream transport for one provider.

    A provider only opens the connection and hands back the raw response
    body; turning bytes into events is the job of the parser it creates.
    """

    @abstractmethod
    def get_provider_name(self) -> str:
        ...

    @abstractmethod
    def create_parser(self) -> LineParser:
        """A fresh parser for one response body."""
        ...

    @abstractmethod
    def open_stream(self, request: ProviderRequest) -> AsyncContextManager[AsyncIterator[bytes]]:
        """Send ``request`` and yield the response body as raw byte chunks.

        Leaving the context closes the upstream connection. Errors raised
        before the first byte (status, connect, auth) propagate from
        ``__aenter__``.
        """
        ...

    def classify_error(self, exc: BaseException) -> Optional[ErrorKind]:
        """Map a transport exception to an error kind, or None if unknown."""
        if isinstance(exc, UpstreamError):
            return exc.kind
        if isinstance(exc, httpx.HTTPStatusError):
            return kind_for_status(exc.response.status_code)
        if isinstance(exc, (httpx.TimeoutException, httpx.TransportError)):
            return ErrorKind.TRANSIENT_NETWORK
        return None


async def raise_for_stream_status(
    response: httpx.Response, provider: str, auth_markers: tuple[str, ...] = ()
) -> None:
    """Raise an UpstreamError for a non-2xx streaming response.

    ``auth_markers`` are body fragments that identify a rejected credential
    for providers that report one with a plain 400.
    """
    if response.status_code < 400:
        return
    body = (await response.aread()).decode("utf-8", errors="replace")
    kind = kind_for_status(response.status_code)
    if any(marker in body for marker in auth_markers):
        kind = ErrorKind.AUTHENTICATION
    raise UpstreamError(
        f"{provider} returned HTTP {response.status_code}: {body[:200]}",
        kind,
        status_code=response.status_code,
    )
