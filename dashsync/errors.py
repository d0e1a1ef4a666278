"""
Error taxonomy for the request-coordination layer.

Every failure that leaves the core is an ApiError subclass carrying a
stable ``code`` the UI can switch on, a human message, optional details
and a ``recoverable`` hint (can the user simply try again?).
"""
from typing import Any, Dict, Optional

import requests


class ApiError(Exception):
    """Base class for errors surfaced by the core."""

    code = "API_ERROR"
    default_recoverable = False

    def __init__(
        self,
        message: str = "Request failed.",
        details: Any = None,
        recoverable: Optional[bool] = None,
    ):
        self.message = message
        self.details = details
        self.recoverable = self.default_recoverable if recoverable is None else recoverable
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for UI consumers."""
        return {
            "code": self.code,
            "message": self.message,
            "details": self.details,
            "recoverable": self.recoverable,
        }


class NetworkError(ApiError):
    """Transport failed; no response was received."""

    code = "NETWORK_ERROR"
    default_recoverable = True

    def __init__(self, message: str = "Network error. Please check your connection.", details: Any = None):
        super().__init__(message, details)


class HttpError(ApiError):
    """A response was received with a non-success status."""

    def __init__(
        self,
        status: int,
        body: Any = None,
        message: Optional[str] = None,
        recoverable: Optional[bool] = None,
    ):
        self.status = status
        self.body = body
        self.code = _code_for_status(status)
        if recoverable is None:
            recoverable = _body_flag(body, "recoverable")
        if recoverable is None:
            recoverable = status == 429 or status >= 500
        super().__init__(message or _DEFAULT_MESSAGES.get(self.code, "Request failed."), body, recoverable)


class AuthExpired(HttpError):
    """Authorization expired; eligible for exactly one refresh-and-retry."""

    def __init__(self, body: Any = None, message: Optional[str] = None, terminal: bool = False):
        super().__init__(401, body, message, recoverable=False)
        self.terminal = terminal


class Aborted(ApiError):
    """Operation was cancelled, usually superseded by a newer call under the same key."""

    code = "ABORTED"

    def __init__(self, message: str = "Request was cancelled", key: Optional[str] = None, superseded: bool = True):
        super().__init__(message, {"key": key} if key else None)
        self.key = key
        self.superseded = superseded


class ValidationError(ApiError):
    """Caller-side validation failure; never reaches the network."""

    code = "VALIDATION_ERROR"


_STATUS_CODES = {
    401: "UNAUTHORIZED",
    403: "FORBIDDEN",
    404: "NOT_FOUND",
    400: "VALIDATION_ERROR",
    422: "VALIDATION_ERROR",
    409: "CONFLICT",
    429: "RATE_LIMITED",
}

_DEFAULT_MESSAGES = {
    "UNAUTHORIZED": "Unauthorized. Please log in.",
    "FORBIDDEN": "Access forbidden.",
    "NOT_FOUND": "Resource not found.",
    "VALIDATION_ERROR": "Validation error.",
    "CONFLICT": "Conflict.",
    "RATE_LIMITED": "Too many requests. Please try again later.",
    "SERVER_ERROR": "Server error. Please try again.",
}


def _code_for_status(status: int) -> str:
    if status in _STATUS_CODES:
        return _STATUS_CODES[status]
    if status >= 500:
        return "SERVER_ERROR"
    return "API_ERROR"


def _body_flag(body: Any, name: str) -> Optional[bool]:
    if isinstance(body, dict) and isinstance(body.get(name), bool):
        return body[name]
    return None


def http_error_for(status: int, body: Any = None, fallback: Optional[str] = None) -> HttpError:
    """
    Build the typed error for a non-success response.

    The message is taken from ``body["message"]`` when the server sent one,
    otherwise from ``fallback`` (usually the reason phrase).
    """
    message = None
    if isinstance(body, dict) and body.get("message"):
        message = str(body["message"])
    elif fallback:
        message = fallback

    if status == 401:
        return AuthExpired(body, message)
    return HttpError(status, body, message)


def normalize_error(error: BaseException) -> ApiError:
    """Normalize any exception to an ApiError."""
    if isinstance(error, ApiError):
        return error
    if isinstance(error, requests.RequestException):
        return NetworkError(details=str(error))
    if isinstance(error, (ConnectionError, TimeoutError)):
        return NetworkError(details=str(error))
    return ApiError(str(error) or "Unknown error", details=repr(error))


def is_recoverable(error: BaseException) -> bool:
    """
    Check if an error is a temporary failure worth retrying.

    An explicit ``recoverable`` flag in the response body wins; otherwise
    429, 502 and 503 are treated as recoverable.
    """
    if isinstance(error, HttpError):
        flag = _body_flag(error.body, "recoverable")
        if flag is not None:
            return flag
        return error.status in (429, 502, 503)
    return normalize_error(error).recoverable
