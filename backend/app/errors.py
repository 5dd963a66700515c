"""Error taxonomy shared by the chat server and the Python client.

Every error carries a machine-readable ``code`` and the HTTP status the
server answers with. Routers convert errors with ``to_http_exception``;
the client maps HTTP responses back into the same classes.

Nothing here is fatal: the worst outcome of any of these is a stale view
that heals on the next fetch or reconnect.
"""
from typing import Any, Dict, Optional

from fastapi import HTTPException


class ChatError(Exception):
    """Base exception for chat errors."""

    status_code: int = 500

    def __init__(
        self,
        message: str,
        code: str = "chat_error",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.details = details


class ValidationError(ChatError):
    """Raised when a payload is rejected before being stored (e.g. empty message)."""

    status_code = 400

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, code="validation_error", details=details)


class NotFoundError(ChatError):
    """Raised when a peer, message or media object no longer exists."""

    status_code = 404

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, code="not_found", details=details)


class TransientNetworkError(ChatError):
    """Raised when a fetch or send failed in a way a retry may fix."""

    status_code = 503

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, code="transient_network_error", details=details)


class StateConflictError(ChatError):
    """Raised when an operation targets state that changed underneath it.

    The seen-marking paths never raise this: a message that is already seen
    or gone is reported as "not transitioned" instead.
    """

    status_code = 409

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, code="state_conflict", details=details)


class AuthenticationError(ChatError):
    """Raised when a request carries no authenticated user identity."""

    status_code = 401

    def __init__(self, message: str = "Not authenticated"):
        super().__init__(message, code="not_authenticated")


_ERRORS_BY_STATUS = {
    400: ValidationError,
    404: NotFoundError,
    409: StateConflictError,
    422: ValidationError,
}


def to_http_exception(error: ChatError) -> HTTPException:
    """Convert a ChatError to an HTTPException.

    Args:
        error: The ChatError to convert.

    Returns:
        HTTPException with the error's status code and a structured detail.
    """
    return HTTPException(
        status_code=error.status_code,
        detail={"code": error.code, "message": error.message},
    )


def from_status(status_code: int, message: str) -> ChatError:
    """Build the ChatError matching an HTTP status returned by the server.

    Server errors (5xx) are transient from the client's point of view.
    """
    if status_code == 401:
        return AuthenticationError(message)
    if status_code >= 500:
        return TransientNetworkError(message, details={"status_code": status_code})
    error_cls = _ERRORS_BY_STATUS.get(status_code)
    if error_cls is None:
        return ChatError(message, code=f"http_{status_code}")
    return error_cls(message)
