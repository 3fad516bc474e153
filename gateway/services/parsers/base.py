"""Incremental, line-oriented parsing of streaming provider responses.

A parser is fed raw byte chunks exactly as they arrive from the network.
It buffers until a whole line is available, turns each complete record into
zero or more native events, and carries the unfinished tail over to the next
``feed`` call. Results are therefore the same however the bytes were split.
"""
import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Optional, Union

from gateway.services.events import ErrorKind

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TextDelta:
    text: str


@dataclass(frozen=True)
class UsageReport:
    prompt_tokens: Optional[int] = None
    completion_tokens: Optional[int] = None


@dataclass(frozen=True)
class Completion:
    """End-of-stream marker, carrying the provider's finish reason."""

    finish_reason: Optional[str] = None


@dataclass(frozen=True)
class ProviderError:
    kind: ErrorKind
    message: str


NativeEvent = Union[TextDelta, UsageReport, Completion, ProviderError]

_FINISH_REASONS = {
    "stop": "stop",
    "end_turn": "stop",
    "stop_sequence": "stop",
    "length": "length",
    "max_tokens": "length",
    "content_filter": "content_filter",
    "safety": "content_filter",
}


def normalize_finish_reason(reason: Optional[str]) -> Optional[str]:
    if not reason:
        return None
    reason = reason.lower()
    return _FINISH_REASONS.get(reason, reason)


class LineParser(ABC):
    """Splits a byte stream into lines and hands each one to ``parse_line``."""

    def __init__(self):
        self._buffer = b""
        self.finished = False
        self.parse_errors = 0
        self.finish_reason: Optional[str] = None

    def feed(self, data: bytes) -> list[NativeEvent]:
        if self.finished or not data:
            return []
        self._buffer += data
        *lines, self._buffer = self._buffer.split(b"\n")
        events: list[NativeEvent] = []
        for raw in lines:
            events.extend(self._consume(raw))
            if self.finished:
                self._buffer = b""
                break
        return events

    def close(self) -> list[NativeEvent]:
        """Flush a trailing unterminated line once the upstream has closed."""
        events: list[NativeEvent] = []
        if not self.finished and self._buffer:
            events.extend(self._consume(self._buffer))
        self._buffer = b""
        if not self.finished:
            events.extend(self.at_eof())
        return events

    def at_eof(self) -> list[NativeEvent]:
        """Events to emit when the body ends without a sentinel."""
        return []

    def _consume(self, raw: bytes) -> list[NativeEvent]:
        line = raw.rstrip(b"\r").decode("utf-8", errors="replace")
        if not line.strip():
            return []
        try:
            return self.parse_line(line)
        except (AttributeError, TypeError, KeyError, IndexError) as e:
            # Valid JSON whose nested fields have the wrong shape
            self.parse_errors += 1
            logger.warning(
                "%s skipped malformed record (%s: %s): %.200s",
                type(self).__name__, type(e).__name__, e, line,
            )
            return []

    def finish(self, reason: Optional[str] = None) -> Completion:
        self.finished = True
        return Completion(finish_reason=reason or self.finish_reason)

    def load_json(self, text: str) -> Optional[Any]:
        try:
            return json.loads(text)
        except json.JSONDecodeError as e:
            self.parse_errors += 1
            logger.warning(
                "%s skipped malformed record (%s): %.200s",
                type(self).__name__, e, text,
            )
            return None

    @abstractmethod
    def parse_line(self, line: str) -> list[NativeEvent]:
        ...


class SSEParser(LineParser):
    """Server-sent events: only ``data:`` fields carry records."""

    def parse_line(self, line: str) -> list[NativeEvent]:
        if line.startswith(":"):
            return []
        name, _, value = line.partition(":")
        if name != "data":
            # event:, id:, retry: carry nothing the records don't repeat
            return []
        if value.startswith(" "):
            value = value[1:]
        return self.parse_record(value)

    @abstractmethod
    def parse_record(self, data: str) -> list[NativeEvent]:
        ...


def kind_for_error_type(error_type: Optional[str]) -> ErrorKind:
    """Classify an error record found inside a stream by its type/code."""
    error_type = (error_type or "").lower().replace(" ", "_")
    if "rate_limit" in error_type or "quota" in error_type or "exhausted" in error_type:
        return ErrorKind.RATE_LIMITED
    if "auth" in error_type or "api_key" in error_type or "permission" in error_type:
        return ErrorKind.AUTHENTICATION
    if "invalid" in error_type or "not_found" in error_type:
        return ErrorKind.CONFIGURATION
    return ErrorKind.UPSTREAM_SERVER
