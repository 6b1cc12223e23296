# impostor/domain/common/errors.py
from __future__ import annotations


class RoomError(Exception):
    """
    Base for every rejection an engine operation can raise.
    Raised before any mutation, so the room is untouched when it propagates.
    """
    code = "ROOM_ERROR"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class RoomValidationError(RoomError):
    code = "VALIDATION_ERROR"


class RoomPermissionError(RoomError):
    code = "PERMISSION_ERROR"


class RoomStateError(RoomError):
    code = "STATE_ERROR"


class RoomNotFoundError(RoomError):
    code = "NOT_FOUND"


class RoomInternalError(RoomError):
    """Unexpected failure inside an action; the room was rolled back."""
    code = "INTERNAL_ERROR"
