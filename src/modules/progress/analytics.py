"""Progress analytics for a booking.

Key Concepts:
- Analytics are a read model over the booking tree: counts by status, overdue
  tasks, effort totals and average progress.
- Overdue tasks are evaluated from due dates, not taken from stored flags.
- Results are cached in Redis under ``progress:analytics:<booking_id>`` and
  invalidated after every cascade. A cache failure never breaks a read.
- A cached entry records the earliest upcoming deadline among open tasks and is
  recomputed once that deadline has passed, so a task that has just become overdue
  is never hidden by the cache.
"""

import json
import logging
from collections import Counter
from datetime import UTC, datetime

from pydantic import BaseModel, Field, ValidationError

from src.core.config import Constants, settings
from src.core.logging import span
from src.core.redis_client import redis_client
from src.domain.status import WorkStatus
from src.modules.progress import repository
from src.modules.progress.overdue import as_utc, evaluate_overdue
from src.modules.progress.rounding import round_half_up


logger = logging.getLogger(__name__)


class OverdueTask(BaseModel):
    """A task that is past its due date."""

    task_id: str
    milestone_id: str
    title: str
    due_date: datetime
    overdue_since: datetime | None = None


class ProgressAnalytics(BaseModel):
    """Aggregated progress figures for one booking."""

    booking_id: str
    progress_percentage: int = Field(default=0, ge=0, le=100)
    total_milestones: int = 0
    milestones_by_status: dict[str, int] = Field(default_factory=dict)
    total_tasks: int = 0
    tasks_by_status: dict[str, int] = Field(default_factory=dict)
    overdue_tasks: list[OverdueTask] = Field(default_factory=list)
    total_estimated_hours: float = 0.0
    total_actual_hours: float = 0.0
    average_milestone_progress: int = 0
    average_task_progress: int = 0
    next_deadline: datetime | None = None
    generated_at: datetime


def cache_key(booking_id: str) -> str:
    """Redis key holding a booking's cached analytics."""
    return f"{Constants.ANALYTICS_CACHE_KEY_PREFIX}:{booking_id}"


async def invalidate_progress_cache(booking_id: str) -> None:
    """Drop a booking's cached analytics.

    Failures are queued by the Redis client for a later retry and logged here,
    never raised: a stale entry lives at most one TTL.
    """
    try:
        await redis_client.delete_with_retry(cache_key(booking_id))
    except Exception as e:
        logger.warning("Failed to invalidate progress analytics cache: %s", e)


async def _read_cache(booking_id: str) -> ProgressAnalytics | None:
    try:
        cached_value = await redis_client.get(cache_key(booking_id))
    except Exception as e:
        logger.warning("Failed to retrieve cached progress analytics from Redis: %s", e)
        return None

    if not cached_value:
        return None
    try:
        return ProgressAnalytics(**json.loads(cached_value))
    except (json.JSONDecodeError, ValidationError) as e:
        logger.warning("Failed to deserialize cached progress analytics: %s", e)
        return None


async def _write_cache(analytics: ProgressAnalytics) -> None:
    try:
        await redis_client.set(
            cache_key(analytics.booking_id),
            analytics.model_dump_json(),
            settings.analytics_cache_ttl_seconds,
        )
    except Exception as e:
        logger.warning("Failed to cache progress analytics in Redis: %s", e)


def _deadline_passed(analytics: ProgressAnalytics, now: datetime) -> bool:
    """True once an open task cached as upcoming may have become overdue."""
    return analytics.next_deadline is not None and as_utc(now) > as_utc(analytics.next_deadline)


def _average(values: list[int]) -> int:
    if not values:
        return 0
    return round_half_up(sum(values) / len(values))


async def get_progress_analytics(booking_id: str, *, now: datetime | None = None) -> ProgressAnalytics:
    """Get progress analytics for a booking, served from cache when possible.

    Raises:
        EntityNotFoundError: If the booking does not exist
    """
    now = now or datetime.now(UTC)
    cached = await _read_cache(booking_id)
    if cached is not None and not _deadline_passed(cached, now):
        logger.debug("Returning cached progress analytics", extra={"booking_id": booking_id})
        return cached

    with span("analytics.get_progress_analytics", booking_id=booking_id):
        booking = await repository.get_booking(booking_id)
        milestones = await repository.get_milestones_by_booking(booking_id)

        tasks = []
        for milestone in milestones:
            tasks.extend(await repository.get_tasks_by_milestone(milestone.id))

        overdue: list[OverdueTask] = []
        upcoming: list[datetime] = []
        for task in tasks:
            state = evaluate_overdue(task.due_date, now, task.status, task.overdue_since)
            if state.is_overdue and task.due_date is not None:
                overdue.append(
                    OverdueTask(
                        task_id=task.id,
                        milestone_id=task.milestone_id,
                        title=task.title,
                        due_date=task.due_date,
                        overdue_since=state.overdue_since,
                    )
                )
            elif task.due_date is not None and not task.status.is_terminal:
                upcoming.append(as_utc(task.due_date))

        milestone_counts = Counter(str(m.status) for m in milestones)
        task_counts = Counter(str(t.status) for t in tasks)

        analytics = ProgressAnalytics(
            booking_id=booking_id,
            progress_percentage=booking.progress_percentage,
            total_milestones=len(milestones),
            milestones_by_status={str(s): milestone_counts.get(str(s), 0) for s in WorkStatus},
            total_tasks=len(tasks),
            tasks_by_status={str(s): task_counts.get(str(s), 0) for s in WorkStatus},
            overdue_tasks=overdue,
            total_estimated_hours=sum(t.estimated_hours or 0.0 for t in tasks),
            total_actual_hours=sum(t.actual_hours or 0.0 for t in tasks),
            average_milestone_progress=_average([m.progress_percentage for m in milestones]),
            average_task_progress=_average([t.progress_percentage for t in tasks]),
            next_deadline=min(upcoming, default=None),
            generated_at=now,
        )

        logger.info(
            "Generated progress analytics",
            extra={"booking_id": booking_id, "milestones": len(milestones), "tasks": len(tasks)},
        )

    await _write_cache(analytics)
    return analytics
