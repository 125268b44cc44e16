"""Milestone aggregation: derived counters and progress from the task set.

The counters are a materialized view: every recalculation rebuilds them from
the current tasks instead of patching the previous values.
"""

import logging
from collections.abc import Sequence
from datetime import UTC, datetime

from pydantic import BaseModel

from src.core.db_client import DatabaseError
from src.core.errors import AggregationReadError
from src.core.logging import span
from src.domain.milestone import Milestone, MilestoneCounters
from src.domain.status import WorkStatus
from src.domain.task import Task
from src.modules.progress import repository
from src.modules.progress.overdue import evaluate_overdue
from src.modules.progress.rounding import percentage


logger = logging.getLogger(__name__)

COUNTER_FIELDS = frozenset(MilestoneCounters.model_fields)
DERIVED_FIELDS = COUNTER_FIELDS | {"is_overdue", "overdue_since"}


class MilestoneRollup(BaseModel):
    """Outcome of one milestone recalculation."""

    milestone: Milestone
    counters: MilestoneCounters
    explicit_progress: bool = False


def derive_calculated_status(*, total: int, completed: int, in_progress: int) -> WorkStatus:
    """Advisory status suggested by the task counts."""
    if total > 0 and completed == total:
        return WorkStatus.COMPLETED
    if completed > 0 or in_progress > 0:
        return WorkStatus.IN_PROGRESS
    return WorkStatus.PENDING


def aggregate_tasks(tasks: Sequence[Task], now: datetime) -> MilestoneCounters:
    """Compute milestone counters from a task snapshot."""
    total = len(tasks)
    completed = sum(1 for t in tasks if t.status == WorkStatus.COMPLETED)
    in_progress = sum(1 for t in tasks if t.status == WorkStatus.IN_PROGRESS)
    pending = sum(1 for t in tasks if t.status == WorkStatus.PENDING)
    overdue = sum(
        1 for t in tasks if evaluate_overdue(t.due_date, now, t.status, t.overdue_since).is_overdue
    )

    return MilestoneCounters(
        total_tasks=total,
        completed_tasks=completed,
        in_progress_tasks=in_progress,
        pending_tasks=pending,
        overdue_tasks=overdue,
        total_estimated_hours=sum(t.estimated_hours or 0.0 for t in tasks),
        total_actual_hours=sum(t.actual_hours or 0.0 for t in tasks),
        progress_percentage=percentage(completed, total),
        calculated_status=derive_calculated_status(total=total, completed=completed, in_progress=in_progress),
    )


async def recalculate_milestone(
    milestone_id: str,
    *,
    now: datetime | None = None,
    progress_override: int | None = None,
) -> MilestoneRollup:
    """Rebuild a milestone's derived fields from its tasks and store them.

    ``progress_override`` keeps an explicitly supplied progress value for this
    call while the counters are still refreshed. The milestone's own ``status``
    is never changed here.

    Raises:
        EntityNotFoundError: If the milestone does not exist
        AggregationReadError: If the milestone or its tasks cannot be read; nothing is written
    """
    with span("milestone_aggregator.recalculate_milestone", milestone_id=milestone_id):
        now = now or datetime.now(UTC)

        try:
            milestone = await repository.get_milestone(milestone_id)
            tasks = await repository.get_tasks_by_milestone(milestone_id)
        except DatabaseError as e:
            logger.warning("Milestone aggregation read failed", extra={"milestone_id": milestone_id, "error": str(e)})
            msg = f"Could not read tasks for milestone {milestone_id}"
            raise AggregationReadError(msg, milestone_id=milestone_id) from e

        counters = aggregate_tasks(tasks, now)
        overdue = evaluate_overdue(milestone.due_date, now, milestone.status, milestone.overdue_since)

        update = counters.model_dump()
        if progress_override is not None:
            update["progress_percentage"] = progress_override
        update["is_overdue"] = overdue.is_overdue
        update["overdue_since"] = overdue.overdue_since

        stored = await repository.write_milestone(milestone.model_copy(update=update), fields=DERIVED_FIELDS)

        logger.info(
            "Recalculated milestone",
            extra={
                "milestone_id": milestone_id,
                "total_tasks": counters.total_tasks,
                "completed_tasks": counters.completed_tasks,
                "progress": stored.progress_percentage,
                "calculated_status": str(counters.calculated_status),
            },
        )
        return MilestoneRollup(
            milestone=stored,
            counters=counters,
            explicit_progress=progress_override is not None,
        )
