"""Exception hierarchy shared by the retrieval and orchestration layers."""

from __future__ import annotations


class ReaderAgentError(Exception):
    """Base class for all errors raised by this package."""


class ConfigurationError(ReaderAgentError):
    """A required model, provider, or endpoint is not configured.

    The message is user-facing and is surfaced verbatim; these errors are never
    retried.
    """


class NotFoundError(ReaderAgentError, KeyError):
    """A record addressed by id does not exist."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def __str__(self) -> str:
        return self.message


class DimensionMismatchError(ReaderAgentError, ValueError):
    """A vector does not match the dimension of its collection."""

    def __init__(self, collection: str, expected: int, actual: int) -> None:
        super().__init__(
            f"Vector dimension {actual} does not match collection "
            f"'{collection}' dimension {expected}"
        )
        self.collection = collection
        self.expected = expected
        self.actual = actual


class ToolError(ReaderAgentError):
    """Base class for external tool service failures."""

    def __init__(self, message: str, *, service_id: str | None = None) -> None:
        super().__init__(message)
        self.service_id = service_id


class ToolServiceError(ToolError):
    """Handshake, discovery, or transport failure against a tool service."""

    def __init__(
        self,
        message: str,
        *,
        service_id: str | None = None,
        status_code: int | None = None,
    ) -> None:
        super().__init__(message, service_id=service_id)
        self.status_code = status_code


class ToolInvocationError(ToolError):
    """A tool call failed for a reason other than the session."""


class ToolSessionError(ToolError):
    """The session was still rejected after re-initializing once."""


class ToolNotFoundError(ToolError):
    """No discovered tool matches the requested capability."""


class EmbeddingError(ReaderAgentError):
    """The embedding model returned no usable vector."""
