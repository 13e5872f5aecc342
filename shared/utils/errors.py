"""
shared/utils/errors.py
Domain error taxonomy. Every failure path of the API resolves to one of
these, rendered as {"detail": ..., "code": ...} by the handler in main.py.
"""

from typing import Optional

from fastapi import status


class AppError(Exception):
    """Base class. `detail` is the single human-readable message shown to users."""

    code: str = "error"
    status_code: int = status.HTTP_400_BAD_REQUEST
    default_detail: str = "Request failed"

    def __init__(self, detail: Optional[str] = None, status_code: Optional[int] = None):
        self.detail = detail or self.default_detail
        if status_code is not None:
            self.status_code = status_code
        super().__init__(self.detail)

    @property
    def retriable(self) -> bool:
        return False


class Unauthenticated(AppError):
    code = "unauthenticated"
    status_code = status.HTTP_401_UNAUTHORIZED
    default_detail = "Authentication required"


class Forbidden(AppError):
    code = "forbidden"
    status_code = status.HTTP_403_FORBIDDEN
    default_detail = "You are not allowed to perform this action"


class NotFound(AppError):
    code = "not_found"
    status_code = status.HTTP_404_NOT_FOUND
    default_detail = "Resource not found"


class InvalidStateTransition(AppError):
    code = "invalid_state_transition"
    status_code = status.HTTP_409_CONFLICT
    default_detail = "This action is not allowed in the booking's current state"


class ChatNotUnlocked(AppError):
    code = "chat_not_unlocked"
    status_code = status.HTTP_409_CONFLICT
    default_detail = "Chat is available once the booking has been confirmed"


class ValidationError(AppError):
    code = "validation_error"
    status_code = 422
    default_detail = "Invalid input"


class PersistenceFailure(AppError):
    """The store rejected the operation. The caller may retry; side effects are not replayed."""

    code = "persistence_failure"
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    default_detail = "The operation could not be saved. Please try again."

    @property
    def retriable(self) -> bool:
        return True
