"""
Multiplayer room lifecycle.

A room moves waiting -> playing when a second player joins, playing ->
completed when the board reaches a result, and completed -> playing when the
creator resets it. Every mutation is a single conditional update against the
version, status and current player that were read; when another writer got
there first the operation raises Conflict and nothing is written.
"""

import asyncio
import logging
import random
import string
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable, Optional, Tuple, Type, TypeVar

from .arbiter import arbitrate
from .core import empty_board
from .errors import (
    Conflict, Forbidden, GameError, GameNotActive, NotAPlayer, RoomCodeExhausted, RoomFull,
    RoomNotAvailable, RoomNotFound,
)
from .models import Room
from .recorder import ResultRecorder
from .sync import RoomHub

logger = logging.getLogger(__name__)

ROOM_CODE_ALPHABET = string.ascii_uppercase + string.digits
ROOM_CODE_LENGTH = 6
ROOM_CODE_ATTEMPTS = 10
ROOM_TTL = timedelta(hours=2)

T = TypeVar("T")


def generate_room_code() -> str:
    return ''.join(random.choices(ROOM_CODE_ALPHABET, k=ROOM_CODE_LENGTH))


def normalize_room_code(room_code: str) -> str:
    return room_code.strip().upper()


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RoomService:
    """Room operations over a store, publishing every committed change to the hub."""

    def __init__(
        self,
        store,
        hub: RoomHub,
        recorder: Optional[ResultRecorder] = None,
        clock: Callable[[], datetime] = utcnow,
        code_factory: Callable[[], str] = generate_room_code,
        ttl: timedelta = ROOM_TTL,
    ):
        self.store = store
        self.hub = hub
        self.recorder = recorder or ResultRecorder(store, clock)
        self.clock = clock
        self.code_factory = code_factory
        self.ttl = ttl

    # PUBLIC_INTERFACE
    async def create_room(self, creator_id: str) -> str:
        """Create a waiting room and return its code."""
        now = self.clock()
        for attempt in range(1, ROOM_CODE_ATTEMPTS + 1):
            room = Room(
                room_code=self.code_factory(),
                creator_id=creator_id,
                status='waiting',
                board=empty_board(),
                current_player='X',
                expires_at=now + self.ttl,
                created_at=now,
            )
            if await self.store.insert_room(room, now):
                logger.info("Room %s created by %s", room.room_code, creator_id)
                return room.room_code
            logger.debug("Room code %s in use (attempt %d)", room.room_code, attempt)
        raise RoomCodeExhausted()

    async def get_room(self, room_code: str) -> Room:
        room = await self.store.fetch_room(normalize_room_code(room_code))
        if room is None:
            raise RoomNotFound()
        return room

    # PUBLIC_INTERFACE
    async def join_room(self, room_code: str, user_id: str) -> str:
        """
        Join as the second player, which starts the game.

        The creator re-joining a waiting room is a no-op. A user who is not
        one of the two seated players gets RoomFull once the second seat is
        taken, whatever the status.
        """
        room = await self.store.fetch_room(normalize_room_code(room_code))
        if room is None or room.is_expired(self.clock()):
            raise RoomNotFound()
        if room.player2_id is not None and room.symbol_for(user_id) is None:
            raise RoomFull()
        if room.status != 'waiting':
            raise RoomNotAvailable()
        if user_id == room.creator_id:
            return room.room_code

        joined = room.model_copy(update={"player2_id": user_id, "status": 'playing'})
        await self._commit(joined, room)
        logger.info("User %s joined room %s", user_id, room.room_code)
        return room.room_code

    # PUBLIC_INTERFACE
    async def submit_move(self, room_code: str, user_id: str, index: int) -> Room:
        room = await self.get_room(room_code)
        symbol = room.symbol_for(user_id)
        if symbol is None:
            raise NotAPlayer()

        ruling = arbitrate(room.board, room.current_player, room.status, symbol, index)
        update = {"board": ruling.board, "current_player": ruling.current_player}
        if ruling.outcome.is_over:
            update["status"] = 'completed'
            update["winner_id"] = room.user_for(ruling.outcome.winner)
        stored = await self._commit(room.model_copy(update=update), room)

        if ruling.outcome.is_over:
            logger.info("Room %s finished: %s", stored.room_code, ruling.outcome.kind)
            await self.recorder.record_room(stored, ruling.outcome)
        return stored

    # PUBLIC_INTERFACE
    async def reset_room(self, room_code: str, user_id: str) -> Room:
        room = await self.get_room(room_code)
        if user_id != room.creator_id:
            raise Forbidden()
        if room.status != 'completed':
            raise GameNotActive("Only a completed game can be reset")
        fresh = room.model_copy(update={
            "board": empty_board(),
            "current_player": 'X',
            "status": 'playing',
            "winner_id": None,
        })
        stored = await self._commit(fresh, room)
        logger.info("Room %s reset by %s", stored.room_code, user_id)
        return stored

    async def purge_expired(self) -> int:
        removed = await self.store.purge_expired(self.clock())
        if removed:
            logger.info("Purged %d expired rooms", removed)
        return removed

    async def _commit(self, room: Room, expected: Room) -> Room:
        stored = await self.store.update_room(room, expected)
        if stored is None:
            logger.info("Conflicting update on room %s at version %d", expected.room_code, expected.version)
            raise Conflict()
        self.hub.publish(stored.to_snapshot())
        return stored


# PUBLIC_INTERFACE
async def retry_transient(operation: Callable[[], Awaitable[T]], attempts: int = 3,
                          retry_on: Tuple[Type[GameError], ...] = (Conflict,),
                          backoff: float = 0.0) -> T:
    """
    Re-run a whole read-validate-write operation after a transient failure,
    at most `attempts` times in total. Each attempt reads fresh state, so a
    move that has become stale fails validation instead of being applied twice.
    """
    for attempt in range(1, max(attempts, 1) + 1):
        try:
            return await operation()
        except retry_on as exc:
            if attempt >= attempts:
                raise
            logger.debug("Retrying after %s (attempt %d of %d)", exc.code, attempt, attempts)
            if backoff:
                await asyncio.sleep(backoff * attempt)
    raise AssertionError("unreachable")
