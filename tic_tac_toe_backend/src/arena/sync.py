"""
Realtime propagation of committed room snapshots.

Every subscriber of a room, including the participant whose move caused the
change, receives the same full snapshot. A subscriber only ever holds the
newest undelivered snapshot: intermediate ones may be replaced before they
are read, the latest is always delivered, and nothing is sent as a diff.
"""

import asyncio
import logging
from datetime import datetime
from typing import Any, Dict, Mapping, Optional, Set, Tuple, Union

import asyncpg

from .core import Board, GameOutcome, PlayerSymbol, apply_move, empty_board, evaluate, validate_board
from .database import CHANGE_CHANNEL
from .errors import InvalidSnapshot
from .models import RoomSnapshot

logger = logging.getLogger(__name__)

UPDATE_MESSAGE = "room:update"


def _order_key(snapshot: RoomSnapshot) -> Tuple[datetime, int]:
    # A reused room code always has a later expiry than the room it replaced.
    return snapshot.expires_at, snapshot.version


class Subscription:
    """One participant's mailbox for a room: holds at most the newest snapshot."""

    def __init__(self, hub: "RoomHub", room_code: str):
        self.hub = hub
        self.room_code = room_code
        self._pending: Optional[RoomSnapshot] = None
        self._seen: Optional[Tuple[datetime, int]] = None
        self._ready = asyncio.Event()
        self.closed = False

    def offer(self, snapshot: RoomSnapshot) -> bool:
        key = _order_key(snapshot)
        if self._seen is not None and key < self._seen:
            logger.debug("Dropping stale snapshot v%s for room %s", snapshot.version, self.room_code)
            return False
        self._seen = key
        self._pending = snapshot
        self._ready.set()
        return True

    async def get(self) -> RoomSnapshot:
        while self._pending is None:
            self._ready.clear()
            await self._ready.wait()
        snapshot, self._pending = self._pending, None
        return snapshot

    def close(self) -> None:
        if not self.closed:
            self.closed = True
            self.hub.unsubscribe(self)

    def __aiter__(self):
        return self

    async def __anext__(self) -> RoomSnapshot:
        if self.closed:
            raise StopAsyncIteration
        return await self.get()


class RoomHub:
    """In-process publish/subscribe of room snapshots, keyed by room code."""

    def __init__(self):
        self.rooms: Dict[str, Set[Subscription]] = {}

    def subscribe(self, room_code: str) -> Subscription:
        subscription = Subscription(self, room_code)
        self.rooms.setdefault(room_code, set()).add(subscription)
        logger.debug("Subscribed to room %s (%d listeners)", room_code, len(self.rooms[room_code]))
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        listeners = self.rooms.get(subscription.room_code)
        if listeners is None:
            return
        listeners.discard(subscription)
        if not listeners:
            del self.rooms[subscription.room_code]
        logger.debug("Unsubscribed from room %s", subscription.room_code)

    def publish(self, snapshot: RoomSnapshot) -> int:
        """Offer snapshot to every listener of its room; returns how many accepted it."""
        delivered = 0
        for subscription in list(self.rooms.get(snapshot.room_code, ())):
            if subscription.offer(snapshot):
                delivered += 1
        return delivered

    def listener_count(self, room_code: str) -> int:
        return len(self.rooms.get(room_code, ()))


# PUBLIC_INTERFACE
def snapshot_to_board(payload: Union[RoomSnapshot, Mapping[str, Any]]) -> Board:
    """Resolve a delivered snapshot, or a whole update message, into a validated Board."""
    if isinstance(payload, RoomSnapshot):
        return validate_board(payload.board)
    if payload.get("type") == UPDATE_MESSAGE:
        payload = payload.get("data") or {}
    if "board" not in payload:
        raise InvalidSnapshot("Snapshot has no board")
    return validate_board(payload["board"])


class BoardMirror:
    """
    A client's disposable copy of a room board.

    Local predictions are allowed for responsiveness, but any delivered
    snapshot replaces the whole mirror; nothing is merged.
    """

    def __init__(self):
        self.board: Board = empty_board()
        self.current_player: PlayerSymbol = 'X'
        self.version: Optional[int] = None
        self.predicted = False

    def adopt(self, payload: Union[RoomSnapshot, Mapping[str, Any]]) -> Board:
        board = snapshot_to_board(payload)
        if isinstance(payload, RoomSnapshot):
            payload = payload.model_dump()
        elif payload.get("type") == UPDATE_MESSAGE:
            payload = payload["data"]
        self.board = board
        self.current_player = payload.get("current_player", 'X')
        self.version = payload.get("version")
        self.predicted = False
        return board

    def predict(self, index: int, symbol: PlayerSymbol) -> Board:
        self.board = apply_move(self.board, index, symbol)
        self.predicted = True
        return self.board

    @property
    def outcome(self) -> GameOutcome:
        return evaluate(self.board)


class PostgresChangeFeed:
    """
    Forwards room changes committed by any process to this process's hub.

    The store issues pg_notify(room_changes, room_code) inside each committing
    statement; this listener re-reads the row and publishes it.
    """

    def __init__(self, dsn: str, store, hub: RoomHub):
        self.dsn = dsn
        self.store = store
        self.hub = hub
        self._conn: Optional[asyncpg.Connection] = None
        self._tasks: Set[asyncio.Task] = set()

    async def start(self) -> None:
        self._conn = await asyncpg.connect(dsn=self.dsn)
        await self._conn.add_listener(CHANGE_CHANNEL, self._on_notify)
        logger.info("Listening for room changes on channel %s", CHANGE_CHANNEL)

    async def stop(self) -> None:
        if self._conn is not None:
            await self._conn.remove_listener(CHANGE_CHANNEL, self._on_notify)
            await self._conn.close()
            self._conn = None
        for task in list(self._tasks):
            task.cancel()

    def _on_notify(self, connection, pid, channel, room_code) -> None:
        if self.hub.listener_count(room_code) == 0:
            return
        task = asyncio.ensure_future(self._forward(room_code))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _forward(self, room_code: str) -> None:
        try:
            room = await self.store.fetch_room(room_code)
        except (asyncpg.PostgresError, OSError):
            logger.exception("Could not reload room %s after change notification", room_code)
            return
        if room is not None:
            self.hub.publish(room.to_snapshot())
