"""Unit tests for cached progress analytics."""

from datetime import timedelta

import pytest

from src.core.errors import EntityNotFoundError
from src.modules.progress.analytics import (
    ProgressAnalytics,
    cache_key,
    get_progress_analytics,
    invalidate_progress_cache,
)


@pytest.mark.unit
class TestGetProgressAnalytics:
    """Tests for the analytics read model."""

    async def test_computes_figures(self, seed, patched_db, now):
        booking_id = await seed.booking(progress_percentage=40)
        design = await seed.milestone(booking_id, status="in_progress", progress_percentage=50)
        build = await seed.milestone(booking_id, progress_percentage=0)
        await seed.task(design, status="completed", progress_percentage=100, estimated_hours=3, actual_hours=4)
        await seed.task(design, status="in_progress", estimated_hours=2, due_date=now - timedelta(days=1))
        await seed.task(build, due_date=now + timedelta(days=1))

        result = await get_progress_analytics(booking_id, now=now)

        assert result.progress_percentage == 40
        assert result.total_milestones == 2
        assert result.milestones_by_status["in_progress"] == 1
        assert result.milestones_by_status["cancelled"] == 0
        assert result.total_tasks == 3
        assert result.tasks_by_status == {
            "pending": 1,
            "in_progress": 1,
            "completed": 1,
            "cancelled": 0,
            "on_hold": 0,
        }
        assert [t.milestone_id for t in result.overdue_tasks] == [design]
        assert result.total_estimated_hours == 5.0
        assert result.total_actual_hours == 4.0
        assert result.average_milestone_progress == 25
        assert result.average_task_progress == 33

    async def test_empty_booking(self, seed, patched_db, now):
        booking_id = await seed.booking()

        result = await get_progress_analytics(booking_id, now=now)

        assert result.total_tasks == 0
        assert result.average_task_progress == 0

    async def test_unknown_booking(self, patched_db, now):
        with pytest.raises(EntityNotFoundError):
            await get_progress_analytics("404", now=now)

    async def test_result_is_cached(self, seed, patched_db, now, fake_redis):
        booking_id = await seed.booking()

        first = await get_progress_analytics(booking_id, now=now)
        patched_db.fail_on("get", "bookings")
        second = await get_progress_analytics(booking_id, now=now)

        assert cache_key(booking_id) in fake_redis.store
        assert fake_redis.ttls[cache_key(booking_id)] == 300
        assert second == first

    async def test_cache_served_until_next_deadline(self, seed, patched_db, now, fake_redis):
        booking_id = await seed.booking()
        milestone_id = await seed.milestone(booking_id)
        await seed.task(milestone_id, status="in_progress", due_date=now + timedelta(hours=1))
        await seed.task(milestone_id, status="completed", progress_percentage=100, due_date=now - timedelta(days=2))

        first = await get_progress_analytics(booking_id, now=now)
        patched_db.fail_on("get", "bookings")
        second = await get_progress_analytics(booking_id, now=now + timedelta(minutes=30))

        assert first.overdue_tasks == []
        assert first.next_deadline == now + timedelta(hours=1)
        assert second == first

    async def test_passed_deadline_recomputes_overdue(self, seed, patched_db, now, fake_redis):
        booking_id = await seed.booking()
        milestone_id = await seed.milestone(booking_id)
        task_id = await seed.task(milestone_id, status="in_progress", due_date=now + timedelta(hours=1))

        await get_progress_analytics(booking_id, now=now)
        later = await get_progress_analytics(booking_id, now=now + timedelta(hours=2))

        assert [task.task_id for task in later.overdue_tasks] == [task_id]
        assert later.next_deadline is None
        assert ProgressAnalytics.model_validate_json(fake_redis.store[cache_key(booking_id)]) == later

    async def test_corrupt_cache_entry_recomputes(self, seed, patched_db, now, fake_redis):
        booking_id = await seed.booking(progress_percentage=70)
        fake_redis.store[cache_key(booking_id)] = "not json"

        result = await get_progress_analytics(booking_id, now=now)

        assert result.progress_percentage == 70
        assert ProgressAnalytics.model_validate_json(fake_redis.store[cache_key(booking_id)]) == result

    async def test_cache_errors_do_not_break_reads(self, seed, patched_db, now, monkeypatch):
        booking_id = await seed.booking()

        class BrokenRedis:
            async def get(self, key):
                raise ConnectionError("redis down")

            async def set(self, key, value, ttl_seconds):
                raise ConnectionError("redis down")

            async def delete_with_retry(self, *keys):
                raise ConnectionError("redis down")

        monkeypatch.setattr("src.modules.progress.analytics.redis_client", BrokenRedis())

        result = await get_progress_analytics(booking_id, now=now)
        await invalidate_progress_cache(booking_id)

        assert result.booking_id == booking_id


@pytest.mark.unit
async def test_invalidation_drops_entry(fake_redis):
    fake_redis.store[cache_key("7")] = "{}"

    await invalidate_progress_cache("7")

    assert cache_key("7") == "progress:analytics:7"
    assert cache_key("7") not in fake_redis.store
