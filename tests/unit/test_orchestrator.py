"""Unit tests for the recalculation cascade and the primary/fallback protocol."""

import pytest

from src.core.errors import CascadeIncomplete, ComputationDepthError, RollupError
from src.modules.progress.analytics import cache_key
from src.modules.progress.booking_aggregator import compute_weighted_progress
from src.modules.progress.orchestrator import (
    recalculate_booking_tree,
    recompute_booking,
    rollup_booking,
    run_cascade,
)
from src.modules.progress.repository import get_milestones_by_booking
from src.modules.progress.rollup import CircuitBreaker, FallbackReason, LocalRollup, RollupPolicy
from tests.unit.conftest import FakeRollup


async def _two_milestone_booking(seed) -> tuple[str, list[str]]:
    booking_id = await seed.booking()
    first = await seed.milestone(booking_id, progress_percentage=100, weight=1)
    second = await seed.milestone(booking_id, progress_percentage=0, weight=3)
    return booking_id, [first, second]


@pytest.mark.unit
class TestRollupBooking:
    """Tests for the primary/fallback protocol."""

    async def test_primary_success(self, seed, patched_db):
        booking_id, _ = await _two_milestone_booking(seed)
        primary = FakeRollup("primary", result=25)
        fallback = FakeRollup("fallback", result=0)

        outcome = await rollup_booking(booking_id, primary=primary, fallback=fallback)

        assert outcome.progress_percentage == 25
        assert outcome.strategy == "primary"
        assert outcome.degraded is False
        assert fallback.calls == []

    async def test_primary_timeout_falls_back_to_local(self, seed, patched_db):
        booking_id, _ = await _two_milestone_booking(seed)
        slow = FakeRollup("primary", result=99, delay=5.0)
        policy = RollupPolicy(timeout_seconds=0.01)

        outcome = await rollup_booking(booking_id, primary=slow, fallback=LocalRollup(), policy=policy)

        milestones = await get_milestones_by_booking(booking_id)
        assert outcome.fallback_reason == FallbackReason.TIMEOUT
        assert outcome.strategy == "local"
        assert outcome.progress_percentage == compute_weighted_progress(milestones) == 25
        assert patched_db.raw("bookings", booking_id)["progress_percentage"] == 25

    async def test_depth_error_falls_back(self, seed, patched_db):
        booking_id, _ = await _two_milestone_booking(seed)
        primary = FakeRollup("primary", error=ComputationDepthError("stack depth limit exceeded"))

        outcome = await rollup_booking(booking_id, primary=primary, fallback=LocalRollup())

        assert outcome.fallback_reason == FallbackReason.COMPUTATION_DEPTH
        assert outcome.progress_percentage == 25
        assert "stack depth" in outcome.primary_error

    async def test_both_fail(self, seed, patched_db):
        booking_id, _ = await _two_milestone_booking(seed)

        outcome = await rollup_booking(
            booking_id,
            primary=FakeRollup("primary", error=RollupError("down")),
            fallback=FakeRollup("fallback", error=RollupError("also down")),
        )

        assert outcome.succeeded is False
        assert outcome.primary_error == "down"
        assert outcome.fallback_error == "also down"

    async def test_open_breaker_skips_primary(self, seed, patched_db):
        booking_id, _ = await _two_milestone_booking(seed)
        policy = RollupPolicy(breaker=CircuitBreaker(threshold=1, cooldown=60.0))
        policy.record_primary_failure(RollupError("earlier failure"))
        primary = FakeRollup("primary", result=10)

        outcome = await rollup_booking(booking_id, primary=primary, fallback=LocalRollup(), policy=policy)

        assert primary.calls == []
        assert outcome.fallback_reason == FallbackReason.CIRCUIT_OPEN
        assert outcome.progress_percentage == 25


@pytest.mark.unit
class TestRunCascade:
    """Tests for the milestone-then-booking cascade."""

    async def test_milestone_then_booking(self, seed, patched_db, now, fake_redis):
        booking_id = await seed.booking()
        milestone_id = await seed.milestone(booking_id)
        await seed.milestone(booking_id, progress_percentage=100)
        await seed.task(milestone_id, status="completed")
        await seed.task(milestone_id, status="pending")
        fake_redis.store[cache_key(booking_id)] = "{}"

        report = await run_cascade(milestone_id, now=now)

        assert report.complete is True
        assert report.milestone.milestone.progress_percentage == 50
        assert report.booking.progress_percentage == 75
        assert patched_db.raw("bookings", booking_id)["progress_percentage"] == 75
        assert cache_key(booking_id) not in fake_redis.store

    async def test_both_strategies_fail_attaches_advisory(self, seed, patched_db, now):
        booking_id = await seed.booking(progress_percentage=12)
        milestone_id = await seed.milestone(booking_id)
        await seed.task(milestone_id, status="completed")

        report = await run_cascade(
            milestone_id,
            now=now,
            primary=FakeRollup("primary", error=RollupError("down")),
            fallback=FakeRollup("fallback", error=RollupError("also down")),
        )

        assert isinstance(report.advisory, CascadeIncomplete)
        assert report.advisory.context["booking_id"] == booking_id
        # The milestone step still ran; the booking keeps its stale value
        assert patched_db.raw("milestones", milestone_id)["progress_percentage"] == 100
        assert patched_db.raw("bookings", booking_id)["progress_percentage"] == 12

    async def test_milestone_read_failure_skips_booking(self, seed, patched_db, now):
        booking_id = await seed.booking()
        milestone_id = await seed.milestone(booking_id)
        patched_db.fail_on("list", "tasks")
        primary = FakeRollup("primary", result=50)

        report = await run_cascade(milestone_id, now=now, primary=primary)

        assert report.milestone is None
        assert report.booking is None
        assert isinstance(report.advisory, CascadeIncomplete)
        assert primary.calls == []


@pytest.mark.unit
class TestExplicitRecompute:
    """Tests for booking-level recomputes."""

    async def test_recompute_booking(self, seed, patched_db, fake_redis):
        booking_id, _ = await _two_milestone_booking(seed)

        report = await recompute_booking(booking_id)

        assert report.milestone is None
        assert report.booking.progress_percentage == 25
        assert cache_key(booking_id) in fake_redis.deleted

    async def test_recalculate_booking_tree(self, seed, patched_db, now):
        booking_id = await seed.booking()
        first = await seed.milestone(booking_id, progress_percentage=90)
        second = await seed.milestone(booking_id, progress_percentage=90)
        await seed.task(first, status="completed")
        await seed.task(second, status="pending")

        report = await recalculate_booking_tree(booking_id, [first, second], now=now)

        assert report.complete is True
        assert report.booking.progress_percentage == 50

    async def test_recalculate_booking_tree_reports_failed_milestones(self, seed, patched_db, now):
        booking_id = await seed.booking()
        first = await seed.milestone(booking_id, progress_percentage=40)
        patched_db.fail_on("list", "tasks")

        report = await recalculate_booking_tree(booking_id, [first], now=now)

        assert report.booking.progress_percentage == 40
        assert isinstance(report.advisory, CascadeIncomplete)
        assert report.advisory.context["milestone_ids"] == first
