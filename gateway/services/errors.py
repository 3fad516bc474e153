"""Exceptions raised inside the gateway.

They never cross the dispatcher boundary: the dispatcher turns each one into
a terminal ``Failed`` event carrying the matching ``ErrorKind``.
"""
from typing import Optional

from gateway.services.events import ErrorKind


class GatewayError(Exception):
    kind: ErrorKind = ErrorKind.INTERNAL

    def __init__(self, message: str, kind: Optional[ErrorKind] = None):
        super().__init__(message)
        self.message = message
        if kind is not None:
            self.kind = kind


class ConfigurationError(GatewayError):
    """Invalid settings, unknown provider/model, or missing credentials."""

    kind = ErrorKind.CONFIGURATION


class UpstreamError(GatewayError):
    """A failure reported by, or while talking to, a provider."""

    def __init__(self, message: str, kind: ErrorKind, status_code: Optional[int] = None):
        super().__init__(message, kind)
        self.status_code = status_code


def kind_for_status(status_code: int) -> ErrorKind:
    """Map an upstream HTTP status to an error kind."""
    if status_code in (401, 403):
        return ErrorKind.AUTHENTICATION
    if status_code == 429:
        return ErrorKind.RATE_LIMITED
    if status_code >= 500:
        return ErrorKind.UPSTREAM_SERVER
    if status_code == 408:
        return ErrorKind.TRANSIENT_NETWORK
    return ErrorKind.CONFIGURATION
