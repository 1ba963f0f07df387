from __future__ import annotations

from typing import Any, Dict


__all__ = [
    "PressroomError",
    "ValidationError",
    "Unauthorized",
    "NotFound",
    "Conflict",
    "Internal",
]


class PressroomError(Exception):
    """Base error for every outcome the services report to a caller."""

    status = 500
    default_message = "internal error"

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)

    def to_payload(self) -> Dict[str, Any]:
        return {"code": self.status, "message": self.message, "data": None}


class ValidationError(PressroomError):
    """Input is missing, malformed, out of range or references nothing."""

    status = 400
    default_message = "invalid request"


class Unauthorized(PressroomError):
    """Credential is missing, malformed, invalid or expired."""

    status = 401
    default_message = "unauthorized"


class NotFound(PressroomError):
    status = 404
    default_message = "not found"


class Conflict(PressroomError):
    """A name or username is already taken."""

    status = 409
    default_message = "conflict"


class Internal(PressroomError):
    status = 500
