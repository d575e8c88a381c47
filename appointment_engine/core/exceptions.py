"""Scheduling error taxonomy.

Every error carries a stable machine-readable ``code`` next to the
human-readable ``message``; ``main.py`` renders both.
"""
from typing import Any, Dict, Optional

from fastapi import HTTPException, status


class SchedulingError(HTTPException):
    status_code = status.HTTP_400_BAD_REQUEST
    default_code = "SCHEDULING_ERROR"
    default_message = "Request could not be processed"
    retryable = False

    def __init__(
        self,
        message: Optional[str] = None,
        code: Optional[str] = None,
        extra: Optional[Dict[str, Any]] = None,
    ):
        self.message = message or self.default_message
        self.code = code or self.default_code
        self.extra = extra or {}
        super().__init__(
            status_code=self.status_code,
            detail={"message": self.message, "code": self.code},
        )

    def to_dict(self) -> Dict[str, Any]:
        body = {"message": self.message, "code": self.code, **self.extra}
        if self.retryable:
            body["retryable"] = True
        return body


class ValidationError(SchedulingError):
    default_code = "VALIDATION_ERROR"
    default_message = "Validation failed"


class NotFoundError(SchedulingError):
    status_code = status.HTTP_404_NOT_FOUND
    default_code = "NOT_FOUND"
    default_message = "Resource not found"


class AccessDeniedError(SchedulingError):
    status_code = status.HTTP_403_FORBIDDEN
    default_code = "ACCESS_DENIED"
    default_message = "Access denied"


class ConflictError(SchedulingError):
    default_code = "SLOT_TAKEN"
    default_message = "Time slot is already booked"


class InvalidTransitionError(SchedulingError):
    default_code = "INVALID_TRANSITION"
    default_message = "Appointment cannot move to the requested status"


class AppointmentImmutableError(InvalidTransitionError):
    default_code = "APPOINTMENT_IMMUTABLE"
    default_message = "Appointment is in a terminal state and cannot be changed"


class PersistenceError(SchedulingError):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_code = "PERSISTENCE_ERROR"
    default_message = "The request could not be saved, please retry"
    retryable = True
