"""
Exception hierarchy for chat-session-agent.

Every error carries an ErrorKind tag so that callers (the HTTP adapter,
the CLI) can tell permanent failures from retryable ones without
inspecting class names.
"""

from enum import Enum


class ErrorKind(str, Enum):
    """Closed set of error kinds surfaced to callers."""
    VALIDATION = "validation"
    NOT_FOUND = "not_found"
    PERSISTENCE = "persistence"
    UPSTREAM = "upstream"


class ChatAgentError(Exception):
    """Base class for all chat-session-agent errors."""

    kind: ErrorKind = ErrorKind.VALIDATION

    def __init__(self, message: str = "An unspecified error occurred."):
        self.message = message
        super().__init__(message)

    @property
    def retryable(self) -> bool:
        return self.kind == ErrorKind.UPSTREAM


class ValidationError(ChatAgentError):
    """Malformed or missing session identity or message text."""

    kind = ErrorKind.VALIDATION

    def __init__(self, message: str = "Validation error."):
        super().__init__(message)


class NotFoundError(ChatAgentError):
    """Operation on a session that was never initialized."""

    kind = ErrorKind.NOT_FOUND

    def __init__(self, session_id: str, message: str = "Session not found."):
        self.session_id = session_id
        super().__init__(f"{message} Session ID: '{session_id}'")


class PersistenceError(ChatAgentError):
    """Backend read or write failure."""

    kind = ErrorKind.PERSISTENCE

    def __init__(self, message: str = "Persistence error.", backend: str = "unknown"):
        self.backend = backend
        super().__init__(f"[{backend}] {message}")


class UpstreamError(ChatAgentError):
    """Generation provider failure: API error, timeout or malformed reply."""

    kind = ErrorKind.UPSTREAM

    def __init__(self, provider_name: str = "unknown", message: str = "Provider error."):
        self.provider_name = provider_name
        super().__init__(f"Error with provider '{provider_name}': {message}")
