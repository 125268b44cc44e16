"""Pytest configuration and fixtures for unit tests."""

import asyncio
from datetime import UTC, datetime
from typing import Any

import pytest

from src.modules.progress import gateway, rollup
from tests.unit.mocks import InMemoryDBClient


FROZEN_NOW = datetime(2026, 3, 15, 12, 0, tzinfo=UTC)


@pytest.fixture
def in_memory_db():
    """Provides a fresh InMemoryDBClient for each test."""
    return InMemoryDBClient()


@pytest.fixture
def now() -> datetime:
    """Fixed clock for overdue evaluation."""
    return FROZEN_NOW


@pytest.fixture(autouse=True)
def fresh_rollup_policy():
    """Each test starts with a closed circuit breaker."""
    rollup.reset_rollup_policy()
    yield
    rollup.reset_rollup_policy()


@pytest.fixture
def patched_db(monkeypatch, in_memory_db):
    """Patches src.core.db_client functions to use InMemoryDBClient."""
    monkeypatch.setattr("src.core.db_client.create_record", in_memory_db.create_record)
    monkeypatch.setattr("src.core.db_client.get_record", in_memory_db.get_record)
    monkeypatch.setattr("src.core.db_client.update_record", in_memory_db.update_record)
    monkeypatch.setattr("src.core.db_client.delete_record", in_memory_db.delete_record)
    monkeypatch.setattr("src.core.db_client.list_records", in_memory_db.list_records)
    monkeypatch.setattr("src.core.db_client.compute_booking_progress", in_memory_db.compute_booking_progress)

    yield in_memory_db

    gateway._background_cascades.clear()


class FakeRollup:
    """Scripted rollup strategy that records its calls."""

    def __init__(
        self,
        name: str = "fake",
        *,
        result: int | None = None,
        error: Exception | None = None,
        delay: float = 0.0,
    ) -> None:
        self.name = name
        self.result = result
        self.error = error
        self.delay = delay
        self.calls: list[str] = []
        self.cancelled = False

    async def compute(self, booking_id: str) -> int:
        self.calls.append(booking_id)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
        except asyncio.CancelledError:
            self.cancelled = True
            raise
        if self.error is not None:
            raise self.error
        return self.result if self.result is not None else 0


class Seeder:
    """Writes raw booking/milestone/task rows straight into the in-memory DB."""

    def __init__(self, db: InMemoryDBClient) -> None:
        self.db = db

    async def booking(self, **fields: Any) -> str:
        record = await self.db.create_record(
            collection="bookings",
            data={"title": "Website redesign", "status": "pending", "progress_percentage": 0, **fields},
        )
        return record["id"]

    async def milestone(self, booking_id: str, **fields: Any) -> str:
        record = await self.db.create_record(
            collection="milestones",
            data={
                "booking_id": booking_id,
                "title": "Design",
                "status": "pending",
                "progress_percentage": 0,
                "weight": 1.0,
                **fields,
            },
        )
        return record["id"]

    async def task(self, milestone_id: str, **fields: Any) -> str:
        record = await self.db.create_record(
            collection="tasks",
            data={
                "milestone_id": milestone_id,
                "title": "Wireframes",
                "status": "pending",
                "progress_percentage": 0,
                "progress_overridden": False,
                **fields,
            },
        )
        return record["id"]


@pytest.fixture
def seed(patched_db) -> Seeder:
    """Helpers for seeding rows into the patched in-memory DB."""
    return Seeder(patched_db)


class FakeRedis:
    """Dict-backed stand-in for the cache client used by analytics."""

    def __init__(self) -> None:
        self.store: dict[str, str] = {}
        self.ttls: dict[str, int] = {}
        self.deleted: list[str] = []

    async def get(self, key: str) -> str | None:
        return self.store.get(key)

    async def set(self, key: str, value: str, ttl_seconds: int) -> bool:
        self.store[key] = value
        self.ttls[key] = ttl_seconds
        return True

    async def delete_with_retry(self, *keys: str) -> bool:
        for key in keys:
            self.store.pop(key, None)
            self.deleted.append(key)
        return True


@pytest.fixture(autouse=True)
def fake_redis(monkeypatch) -> FakeRedis:
    """Replaces the analytics cache client so no test talks to Redis."""
    fake = FakeRedis()
    monkeypatch.setattr("src.modules.progress.analytics.redis_client", fake)
    return fake
