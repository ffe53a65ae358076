from __future__ import annotations

from typing import Dict, List, Optional


class StudioError(Exception):
    """Base class for errors the HTTP layer knows how to render."""

    status_code = 500
    public_message = "Server error"


class ValidationError(StudioError):
    """Malformed request shape; raised before any session state is touched."""

    status_code = 400
    public_message = "Validation failed"

    def __init__(self, details: List[Dict[str, str]] | str):
        if isinstance(details, str):
            details = [{"path": "(root)", "message": details}]
        self.details = details
        super().__init__("; ".join(f"{d.get('path')}: {d.get('message')}" for d in details))


class NotFoundOrUnauthorized(StudioError):
    """Session missing, inactive, or owned by someone else.

    The three cases are deliberately indistinguishable to the caller.
    """

    status_code = 404
    public_message = "Session not found"

    def __init__(self, session_id: Optional[str] = None):
        self.session_id = session_id
        super().__init__(self.public_message)


class ProviderExhausted(StudioError):
    """Every configured model failed. Never leaves the generator."""

    def __init__(self, attempts: List[str], last_error: Optional[BaseException] = None):
        self.attempts = list(attempts)
        self.last_error = last_error
        super().__init__(f"all models failed: {', '.join(self.attempts) or '(none)'}")


class ProviderError(StudioError):
    """A single completion call failed (transport, HTTP status, empty body)."""

    def __init__(self, message: str, status: Optional[int] = None):
        self.status = status
        super().__init__(message)


class PersistenceFailure(StudioError):
    """Session store read/write error; fatal to the request."""

    status_code = 500
    public_message = "Server error"


class CacheFailure(StudioError):
    """Cache read/write error. Always logged and swallowed by the cache callers."""
