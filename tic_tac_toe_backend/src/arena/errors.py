"""
Error taxonomy shared by the rules engine, the AI, rooms and the HTTP layer.
"""

from typing import Optional


class GameError(Exception):
    """Base class for every error the game core reports to callers."""
    code = "game_error"
    status_code = 400
    message = "Game error"

    def __init__(self, message: Optional[str] = None):
        super().__init__(message or self.message)

    @property
    def detail(self) -> str:
        return str(self)


# --- validation errors: stale state or caller mistakes, never auto-retried ---

class IllegalMove(GameError):
    code = "illegal_move"
    message = "Invalid move"


class CellOccupied(IllegalMove):
    code = "cell_occupied"
    message = "Cell occupied"


class NotYourTurn(GameError):
    code = "not_your_turn"
    status_code = 403
    message = "Not your turn"


class NotAPlayer(GameError):
    code = "not_a_player"
    status_code = 403
    message = "Player not part of this room"


class GameNotActive(GameError):
    code = "game_not_active"
    message = "Game is not in progress"


class Forbidden(GameError):
    code = "forbidden"
    status_code = 403
    message = "Only the room creator may do that"


# --- resource errors ---

class RoomNotFound(GameError):
    code = "room_not_found"
    status_code = 404
    message = "Room not found or has expired"


class RoomNotAvailable(GameError):
    code = "room_not_available"
    status_code = 409
    message = "Room is not available"


class RoomFull(GameError):
    code = "room_full"
    status_code = 409
    message = "Room is full"


class RoomCodeExhausted(GameError):
    code = "room_code_exhausted"
    status_code = 503
    message = "Failed to generate unique room code. Please try again."


class GameNotFound(GameError):
    code = "game_not_found"
    status_code = 404
    message = "Game not found"


# --- concurrency ---

class Conflict(GameError):
    code = "conflict"
    status_code = 409
    message = "Room changed concurrently; reload and try again"


# --- engine internals ---

class NoLegalMove(GameError):
    code = "no_legal_move"
    message = "No empty cell left to play"


class InvalidSnapshot(GameError):
    code = "invalid_snapshot"
    message = "Snapshot does not describe a valid board"
