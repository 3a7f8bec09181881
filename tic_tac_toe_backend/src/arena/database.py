import asyncio
import json
import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, Dict, Optional

import asyncpg

from .core import validate_board
from .models import GameRecord, Room

logger = logging.getLogger(__name__)

CHANGE_CHANNEL = "room_changes"

SCHEMA = """
CREATE TABLE IF NOT EXISTS rooms (
    room_code TEXT PRIMARY KEY,
    creator_id TEXT NOT NULL,
    player2_id TEXT,
    status TEXT NOT NULL,
    board TEXT NOT NULL,
    current_player TEXT NOT NULL,
    winner_id TEXT,
    expires_at TIMESTAMPTZ NOT NULL,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    version INTEGER NOT NULL DEFAULT 0
);
CREATE INDEX IF NOT EXISTS rooms_expires_at_idx ON rooms (expires_at);
CREATE TABLE IF NOT EXISTS games (
    id SERIAL PRIMARY KEY,
    player1_id TEXT NOT NULL,
    player2_id TEXT,
    mode TEXT NOT NULL,
    terminal_board TEXT NOT NULL,
    outcome TEXT NOT NULL,
    winner_id TEXT,
    created_at TIMESTAMPTZ NOT NULL
);
"""


class MemoryRoomStore:
    """
    Room and game storage held in process memory.

    Every write runs under one lock, so each conditional update is atomic with
    respect to concurrent callers, the same guarantee the SQL store gets from a
    single UPDATE ... WHERE statement.
    """

    def __init__(self):
        self._rooms: Dict[str, Room] = {}
        self.games = []
        self._lock = asyncio.Lock()

    async def insert_room(self, room: Room, now: datetime) -> bool:
        async with self._lock:
            existing = self._rooms.get(room.room_code)
            if existing is not None and not existing.is_expired(now):
                return False
            self._rooms[room.room_code] = room.model_copy(
                update={"created_at": room.created_at or now, "version": 0})
            return True

    async def fetch_room(self, room_code: str) -> Optional[Room]:
        return self._rooms.get(room_code)

    async def update_room(self, room: Room, expected: Room) -> Optional[Room]:
        async with self._lock:
            current = self._rooms.get(expected.room_code)
            if current is None or not _matches(current, expected):
                return None
            stored = room.model_copy(update={"version": current.version + 1})
            self._rooms[room.room_code] = stored
            return stored

    async def insert_game(self, record: GameRecord) -> None:
        async with self._lock:
            self.games.append(record)

    async def purge_expired(self, now: datetime) -> int:
        async with self._lock:
            expired = [code for code, room in self._rooms.items() if room.is_expired(now)]
            for code in expired:
                del self._rooms[code]
            return len(expired)

    async def close(self) -> None:
        pass


def _matches(current: Room, expected: Room) -> bool:
    return (
        current.version == expected.version
        and current.status == expected.status
        and current.current_player == expected.current_player
    )


class PostgresRoomStore:
    """Room and game storage on PostgreSQL through an asyncpg pool."""

    def __init__(self, dsn: str, min_size: int = 1, max_size: int = 10):
        self.dsn = dsn
        self.min_size = min_size
        self.max_size = max_size
        self._pool: Optional[asyncpg.pool.Pool] = None

    async def get_pool(self) -> asyncpg.pool.Pool:
        if self._pool is None:
            self._pool = await asyncpg.create_pool(dsn=self.dsn, min_size=self.min_size, max_size=self.max_size)
        return self._pool

    @asynccontextmanager
    async def connect(self):
        pool = await self.get_pool()
        async with pool.acquire() as conn:
            yield conn

    async def init_schema(self) -> None:
        async with self.connect() as conn:
            await conn.execute(SCHEMA)

    async def close(self) -> None:
        if self._pool is not None:
            await self._pool.close()
            self._pool = None

    # --- ROOMS ---
    async def insert_room(self, room: Room, now: datetime) -> bool:
        # An expired holder of the same code is replaced; a live one blocks the insert.
        async with self.connect() as conn:
            row = await conn.fetchrow(
                """INSERT INTO rooms (room_code, creator_id, player2_id, status, board,
                                      current_player, winner_id, expires_at, created_at, version)
                   VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, 0)
                   ON CONFLICT (room_code) DO UPDATE SET
                       creator_id = EXCLUDED.creator_id,
                       player2_id = EXCLUDED.player2_id,
                       status = EXCLUDED.status,
                       board = EXCLUDED.board,
                       current_player = EXCLUDED.current_player,
                       winner_id = EXCLUDED.winner_id,
                       expires_at = EXCLUDED.expires_at,
                       created_at = EXCLUDED.created_at,
                       version = 0
                   WHERE rooms.expires_at <= $9
                   RETURNING room_code""",
                room.room_code, room.creator_id, room.player2_id, room.status,
                json.dumps(list(room.board)), room.current_player, room.winner_id,
                room.expires_at, now)
            return row is not None

    async def fetch_room(self, room_code: str) -> Optional[Room]:
        async with self.connect() as conn:
            row = await conn.fetchrow("SELECT * FROM rooms WHERE room_code = $1", room_code)
            return _room_from_row(row) if row else None

    async def update_room(self, room: Room, expected: Room) -> Optional[Room]:
        async with self.connect() as conn:
            row = await conn.fetchrow(
                """WITH updated AS (
                       UPDATE rooms SET player2_id = $2, status = $3, board = $4,
                                        current_player = $5, winner_id = $6,
                                        version = version + 1
                       WHERE room_code = $1 AND version = $7
                             AND status = $8 AND current_player = $9
                       RETURNING *
                   )
                   SELECT updated.*, pg_notify($10, updated.room_code) AS notified FROM updated""",
                room.room_code, room.player2_id, room.status, json.dumps(list(room.board)),
                room.current_player, room.winner_id,
                expected.version, expected.status, expected.current_player, CHANGE_CHANNEL)
            return _room_from_row(row) if row else None

    async def purge_expired(self, now: datetime) -> int:
        async with self.connect() as conn:
            result = await conn.execute("DELETE FROM rooms WHERE expires_at <= $1", now)
            return int(result.split()[-1])

    # --- GAMES ---
    async def insert_game(self, record: GameRecord) -> None:
        async with self.connect() as conn:
            await conn.execute(
                """INSERT INTO games (player1_id, player2_id, mode, terminal_board, outcome, winner_id, created_at)
                   VALUES ($1, $2, $3, $4, $5, $6, $7)""",
                record.player1_id, record.player2_id, record.mode,
                json.dumps(record.terminal_board), record.outcome, record.winner_id, record.timestamp)


def _room_from_row(row: Any) -> Room:
    data = dict(row)
    data.pop("notified", None)
    data["board"] = _deserialize_board(data["board"])
    return Room(**data)


def _deserialize_board(board: Any):
    """Convert board from string/JSON serialization to python object."""
    if isinstance(board, str):
        board = json.loads(board)
    return validate_board(board)


def create_store(settings):
    if settings.use_postgres:
        logger.info("Using PostgreSQL room store at %s:%s", settings.db_host, settings.db_port)
        return PostgresRoomStore(settings.dsn)
    logger.info("POSTGRES_URL not set, using in-memory room store")
    return MemoryRoomStore()
