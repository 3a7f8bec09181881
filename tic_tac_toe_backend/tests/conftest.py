from datetime import datetime, timedelta, timezone
from itertools import cycle

import pytest

from src.arena.database import MemoryRoomStore
from src.arena.recorder import ResultRecorder
from src.arena.rooms import RoomService
from src.arena.sync import RoomHub


class FakeClock:
    def __init__(self, start=None):
        self.now = start or datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store():
    return MemoryRoomStore()


@pytest.fixture
def hub():
    return RoomHub()


@pytest.fixture
def service(store, hub, clock):
    codes = cycle(["ROOM01", "ROOM02", "ROOM03", "ROOM04"])
    return RoomService(store, hub, ResultRecorder(store, clock), clock=clock,
                       code_factory=lambda: next(codes))
