"""Application exceptions.

Services raise these instead of `HTTPException` so they stay usable from
scripts and tests; `app.main` renders them as JSON responses.
"""

from typing import Any, Dict, Optional


class AppError(Exception):
    """Base error carrying an HTTP status and optional structured details."""
    status_code = 500

    def __init__(self, message: str, status_code: Optional[int] = None, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        return {"success": False, "message": self.message, "details": self.details}


class NotFoundError(AppError):
    """A referenced document does not exist."""
    status_code = 404


class ConflictError(AppError):
    status_code = 409


class AuthenticationError(AppError):
    status_code = 401


class PermissionDeniedError(AppError):
    status_code = 403


class TransactionError(AppError):
    """A multi-document transaction was aborted.

    The error that triggered the abort is kept as `__cause__` (raise ... from)
    and summarised in `details` so callers and logs still see it.
    """
    status_code = 400

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        details: Dict[str, Any] = {}
        if cause is not None:
            details = {
                "cause": getattr(cause, "message", None) or str(cause),
                "cause_type": type(cause).__name__,
            }
        super().__init__(message, details=details)
        self.cause = cause
