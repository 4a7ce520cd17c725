"""Pytest configuration and shared fixtures."""
import os
import random
import tempfile
from collections import deque
from datetime import datetime, timedelta, timezone
from typing import Generator

import pytest

from grower.config import Config
from grower.models.game import UserIdentity


GROUP_ID = -100123


class ScriptedRandom(random.Random):
    """A ``random.Random`` whose next draws can be queued by a test.

    ``randint`` pops from ``ints`` and ``random`` from ``floats``; once a
    queue is empty the seeded generator takes over.
    """

    def __init__(self, seed: int = 1234) -> None:
        super().__init__(seed)
        self.ints: deque[int] = deque()
        self.floats: deque[float] = deque()

    def queue_ints(self, *values: int) -> None:
        self.ints.extend(values)

    def queue_floats(self, *values: float) -> None:
        self.floats.extend(values)

    def randint(self, a: int, b: int) -> int:
        if self.ints:
            value = self.ints.popleft()
            assert a <= value <= b, f"scripted {value} outside [{a}, {b}]"
            return value
        return super().randint(a, b)

    def random(self) -> float:
        if self.floats:
            return self.floats.popleft()
        return super().random()

    # Keeps unscripted integer draws off the float queue
    def getrandbits(self, k: int) -> int:
        return super().getrandbits(k)


class FakeClock:
    """Callable clock the services read; tests move it forward explicitly."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2025, 6, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def temp_db() -> Generator[str, None, None]:
    """Create a temporary database path for testing."""
    with tempfile.NamedTemporaryFile(suffix=".db", delete=False) as tmp:
        db_path = tmp.name

    try:
        yield db_path
    finally:
        for suffix in ("", "-wal", "-shm", "-journal"):
            if os.path.exists(db_path + suffix):
                os.unlink(db_path + suffix)


@pytest.fixture
async def db_with_schema(temp_db: str):
    """Create a database with the schema applied."""
    from grower.services.db import Database

    db = await Database.init(temp_db)
    try:
        yield db
    finally:
        await db.close()


@pytest.fixture
def rng() -> ScriptedRandom:
    return ScriptedRandom()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def cfg(temp_db: str) -> Config:
    return Config(db_path=temp_db)


@pytest.fixture
async def services(cfg: Config, rng: ScriptedRandom, clock: FakeClock):
    """Fully wired game services on a fresh database."""
    from grower.app import build_services

    game = await build_services(cfg, rng=rng, clock=clock)
    try:
        yield game
    finally:
        await game.close()


@pytest.fixture
def make_user(services):
    """Register a player in the test group with a given size."""

    async def _make(user_id: int, size: float = 10.0, name: str | None = None, group_id: int = GROUP_ID):
        identity = UserIdentity(user_id=user_id, first_name=name or f"User{user_id}", username=f"user{user_id}")
        await services.ledger.get_or_create(identity, group_id)
        await services.ledger.set_field(user_id, group_id, "size", size)
        return identity

    return _make
