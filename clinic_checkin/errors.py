"""
errors.py
=========
Error taxonomy for check-in lifecycle operations.
Each error knows the HTTP status it maps to; main.py turns them into
JSON responses of the form {"error": <kind>, "detail": <message>}.
"""

from typing import Optional


class CheckInError(Exception):
    """Base class for every lifecycle failure surfaced to callers."""
    status_code = 400

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)

    @property
    def kind(self) -> str:
        return type(self).__name__

    def to_dict(self) -> dict:
        return {"error": self.kind, "detail": self.message}


class NotFound(CheckInError):
    """Unknown session, patient or doctor id."""
    status_code = 404


class InvalidState(CheckInError):
    """The session's current status does not permit the transition."""
    status_code = 409


class OutOfRangeVital(CheckInError):
    """A vital sign breached its accepted bounds."""
    status_code = 422

    def __init__(self, field: str, value, minimum=None, maximum=None,
                 message: Optional[str] = None):
        self.field = field
        self.value = value
        self.minimum = minimum
        self.maximum = maximum
        if message is None:
            message = f"{field} must be between {minimum} and {maximum} (got {value})"
        super().__init__(message)

    def to_dict(self) -> dict:
        data = super().to_dict()
        data.update({
            "field": self.field,
            "value": self.value,
            "minimum": self.minimum,
            "maximum": self.maximum,
        })
        return data


class VitalsNotCollected(CheckInError):
    status_code = 409


class DuplicateActiveSession(CheckInError):
    """The patient already has a visit that has not finished."""
    status_code = 409


class ConcurrentModification(CheckInError):
    """Another request changed the session first; re-fetch and retry."""
    status_code = 409


class AuditWriteFailure(CheckInError):
    """Audit record could not be stored. Logged only, never returned to callers."""
    status_code = 500
