"""Error taxonomy shared by job and feed components."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(slots=True)
class AgentHubError(Exception):
    """Base error with a stable machine-readable code."""

    message: str
    code: str = "agent_hub_error"

    def __str__(self) -> str:
        return self.message


@dataclass(slots=True)
class ValidationError(AgentHubError):
    """Bad input at the enqueue boundary, reported synchronously to the caller."""

    code: str = "validation_error"


@dataclass(slots=True)
class AuthorizationError(ValidationError):
    """Caller id is not the allow-listed one."""

    code: str = "unauthorized"


@dataclass(slots=True)
class StorageError(AgentHubError):
    """I/O failure on the job or feed store; the record stays in its last good state."""

    code: str = "storage_error"


@dataclass(slots=True)
class NotFoundError(AgentHubError):
    """Referenced job is not in the expected state area."""

    code: str = "not_found"


@dataclass(slots=True)
class TransportError(AgentHubError):
    """Backend, feed or search endpoint unreachable or timed out."""

    code: str = "transport"
    status_code: int | None = None


@dataclass(slots=True)
class PathError(AgentHubError):
    """Unsafe file write target outside the workspace root."""

    code: str = "unsafe_path"


@dataclass(slots=True)
class HandlerError(AgentHubError):
    """Job handler could not produce a result."""

    code: str = "handler_error"


@dataclass(slots=True)
class FeedParseError(AgentHubError):
    """Feed payload is not a parseable RSS/Atom/HTML document."""

    code: str = "invalid_feed"
