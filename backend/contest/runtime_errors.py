from __future__ import annotations

from .runtime_constants import ERROR_ROOM_FULL, ERROR_ROOM_NOT_WAITING


class GameRuntimeError(Exception):
    """Base class for errors raised by the room runtime."""


class AdmissionError(GameRuntimeError):
    """A join was refused. Reported to the joining connection only."""

    code = "ADMISSION_REFUSED"
    default_message = "Unable to join this room."

    def __init__(self, room_id: str, message: str | None = None) -> None:
        self.room_id = room_id
        self.message = message or self.default_message
        super().__init__(f"{self.code} room={room_id}: {self.message}")


class RoomFull(AdmissionError):
    code = ERROR_ROOM_FULL
    default_message = "Room is full. Please choose a different room ID."


class RoomNotWaiting(AdmissionError):
    code = ERROR_ROOM_NOT_WAITING
    default_message = "This room is currently in a game. Please choose a different room ID."


class ProtocolError(GameRuntimeError):
    """An inbound frame could not be understood. The frame is dropped."""
