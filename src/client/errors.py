"""
Error taxonomy for the credentialed portal client.

Every failure a caller can observe is a ``ClientError``. Non-2xx responses are
mapped by ``error_from_response`` into one of the ``HttpError`` subclasses so
callers (and the client's own retry policy) can branch on type instead of on
status codes.
"""
import logging
from typing import Any, Optional

logger = logging.getLogger(__name__)

# Structured codes a backend may send alongside a 403
CSRF_ERROR_CODES = frozenset({"csrf_failed", "csrf_token_missing", "csrf_token_incorrect", "csrf"})
SESSION_ERROR_CODES = frozenset({"not_authenticated", "authentication_failed", "session_invalid"})


class ClientError(Exception):
    """Base class for everything the portal client raises."""


class NetworkError(ClientError):
    """No response was received (connection failure, timeout, ...)."""

    def __init__(self, message: str, url: Optional[str] = None):
        super().__init__(message)
        self.url = url


class HttpError(ClientError):
    """A non-2xx response that survived the retry policy."""

    def __init__(self, status: int, detail: str, payload: Any = None):
        super().__init__(f"HTTP {status}: {detail}")
        self.status = status
        self.detail = detail
        self.payload = payload


class AuthorizationError(HttpError):
    """401, or a 403 saying the session is missing or invalid."""


class CredentialError(HttpError):
    """403 caused by a missing or stale CSRF credential."""


class ValidationError(HttpError):
    """Any other 4xx."""


class ServerError(HttpError):
    """5xx."""


class BusinessFailure(ClientError):
    """A 2xx response whose body reports ``success: false``."""

    def __init__(self, message: str, payload: Any = None):
        super().__init__(message)
        self.message = message
        self.payload = payload


def extract_detail(payload: Any) -> str:
    """
    Pull the human-readable server message out of a decoded response body.

    Looks at ``detail``, then ``error``, then ``message``; falls back to the
    string form of the payload.
    """
    if isinstance(payload, dict):
        for key in ("detail", "error", "message"):
            value = payload.get(key)
            if value:
                return value if isinstance(value, str) else str(value)
        return str(payload) if payload else ""
    if payload is None:
        return ""
    return payload if isinstance(payload, str) else str(payload)


def is_csrf_failure(payload: Any) -> bool:
    """
    Decide whether a 403 body describes a CSRF failure rather than a missing session.

    A structured ``error_code`` (or ``code``) wins when the backend sends one.
    Otherwise the message heuristic applies: the detail mentions "CSRF", or it
    does not mention "credentials". The heuristic is brittle; a permission
    denied message, for example, is classified as a CSRF failure.
    """
    if isinstance(payload, dict):
        code = payload.get("error_code") or payload.get("code")
        if isinstance(code, str):
            normalized = code.lower()
            if normalized in CSRF_ERROR_CODES:
                return True
            if normalized in SESSION_ERROR_CODES:
                return False

    detail = extract_detail(payload)
    return "CSRF" in detail or "credentials" not in detail


def error_from_response(status: int, payload: Any) -> HttpError:
    """Map a non-2xx status and its decoded body onto the error taxonomy."""
    detail = extract_detail(payload)

    if status == 401:
        return AuthorizationError(status, detail, payload)
    if status == 403:
        if is_csrf_failure(payload):
            return CredentialError(status, detail, payload)
        return AuthorizationError(status, detail, payload)
    if 400 <= status < 500:
        return ValidationError(status, detail, payload)
    if status >= 500:
        return ServerError(status, detail, payload)

    logger.warning(f"error_from_response called with non-error status {status}")
    return HttpError(status, detail, payload)
