from dataclasses import asdict, dataclass
from enum import Enum
from typing import Optional, Union


class ErrorKind(str, Enum):
    CONFIGURATION = "ConfigurationError"
    AUTHENTICATION = "AuthenticationError"
    TRANSIENT_NETWORK = "TransientNetworkError"
    RATE_LIMITED = "RateLimited"
    UPSTREAM_SERVER = "UpstreamServerError"
    PARSE = "ParseError"
    CANCELLED = "Cancelled"
    INTERNAL = "InternalError"

    @property
    def is_transient(self) -> bool:
        # 5xx responses are handled exactly like network failures
        return self in (ErrorKind.TRANSIENT_NETWORK, ErrorKind.UPSTREAM_SERVER)


@dataclass(frozen=True)
class UsageSummary:
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0
    cost: float = 0.0
    estimated: bool = False


@dataclass(frozen=True)
class ContentDelta:
    text: str
    type = "content"

    def to_dict(self) -> dict:
        return {"type": self.type, "text": self.text}


@dataclass(frozen=True)
class Usage:
    """Token counts as reported by the provider. Either side may be missing."""

    prompt_tokens: Optional[int] = None
    completion_tokens: Optional[int] = None
    type = "usage"

    def to_dict(self) -> dict:
        return {
            "type": self.type,
            "prompt_tokens": self.prompt_tokens,
            "completion_tokens": self.completion_tokens,
        }


@dataclass(frozen=True)
class Done:
    finish_reason: Optional[str]
    usage: UsageSummary
    type = "done"

    def to_dict(self) -> dict:
        return {
            "type": self.type,
            "finish_reason": self.finish_reason,
            "usage": asdict(self.usage),
        }


@dataclass(frozen=True)
class Failed:
    kind: ErrorKind
    message: str
    retryable: bool = False
    partial_text: str = ""
    usage: Optional[UsageSummary] = None
    type = "error"

    def to_dict(self) -> dict:
        return {
            "type": self.type,
            "kind": self.kind.value,
            "message": self.message,
            "retryable": self.retryable,
            "partial_text": self.partial_text,
            "usage": asdict(self.usage) if self.usage else None,
        }


UnifiedEvent = Union[ContentDelta, Usage, Done, Failed]


def is_terminal(event: UnifiedEvent) -> bool:
    return isinstance(event, (Done, Failed))
