"""Lifecycle service for bookings, milestones and tasks.

Creation and deletion change the task/milestone sets the aggregates are built
from, so each of them runs the same cascade as a gateway mutation.
"""

import logging
from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, ConfigDict

from src.core import db_client
from src.core.errors import CascadeIncomplete
from src.core.logging import span
from src.domain.booking import Booking
from src.domain.create_models import BookingCreate, MilestoneCreate, TaskCreate
from src.domain.milestone import Milestone
from src.domain.status import EntityKind, WorkStatus
from src.domain.task import Task
from src.modules.progress import analytics, repository
from src.modules.progress.gateway import MutationResult, cascade_with_advisory
from src.modules.progress.orchestrator import CascadeReport, recompute_booking
from src.modules.progress.overdue import evaluate_overdue


logger = logging.getLogger(__name__)


class MilestoneNode(BaseModel):
    """A milestone with its tasks."""

    milestone: Milestone
    tasks: list[Task]


class BookingTree(BaseModel):
    """Read view: booking, its milestones, and their tasks."""

    booking: Booking
    milestones: list[MilestoneNode]


class DeletionResult(BaseModel):
    """Outcome of a deletion and the cascade that followed it."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    kind: str
    entity_id: str
    deleted_tasks: int = 0
    deleted_milestones: int = 0
    cascade: CascadeReport | None = None
    advisories: list[CascadeIncomplete] = []


def _with_overdue(entity: Task | Milestone, now: datetime) -> Any:  # noqa: ANN401
    state = evaluate_overdue(entity.due_date, now, entity.status, entity.overdue_since)
    return entity.model_copy(update={"is_overdue": state.is_overdue, "overdue_since": state.overdue_since})


async def create_booking(*, booking: BookingCreate) -> Booking:
    """Create a booking with no milestones (progress 0).

    Raises:
        db_client.DatabaseError: If database operation fails
    """
    with span("progress_service.create_booking"):
        record = await db_client.create_record(
            collection=repository.BOOKINGS,
            data={"title": booking.title, "status": booking.status, "progress_percentage": 0},
        )
        logger.info("Created booking", extra={"booking_id": record["id"]})
        return repository.booking_from_record(record)


async def create_milestone(
    *,
    booking_id: str,
    milestone: MilestoneCreate,
    now: datetime | None = None,
) -> MutationResult:
    """Create a milestone under a booking and re-roll the booking.

    Returns:
        MutationResult with the stored milestone and any cascade advisory

    Raises:
        EntityNotFoundError: If the booking does not exist
        db_client.DatabaseError: If database operation fails
    """
    with span("progress_service.create_milestone", booking_id=booking_id):
        now = now or datetime.now(UTC)
        await repository.get_booking(booking_id)

        record = await db_client.create_record(
            collection=repository.MILESTONES,
            data={
                "booking_id": booking_id,
                "title": milestone.title,
                "description": milestone.description,
                "status": WorkStatus.PENDING,
                "progress_percentage": 0,
                "weight": milestone.weight,
                "due_date": milestone.due_date,
                "priority": milestone.priority,
            },
        )
        stored = repository.milestone_from_record(record)
        logger.info("Created milestone", extra={"booking_id": booking_id, "milestone_id": stored.id})

        report, advisories = await cascade_with_advisory(stored.id, now=now, progress_override=None)
        if report and report.milestone:
            stored = report.milestone.milestone
        return MutationResult(kind=EntityKind.MILESTONE, entity=stored, cascade=report, advisories=advisories)


async def create_task(
    *,
    milestone_id: str,
    task: TaskCreate,
    now: datetime | None = None,
) -> MutationResult:
    """Create a task within a milestone and run the cascade.

    Returns:
        MutationResult with the stored task and any cascade advisory

    Raises:
        EntityNotFoundError: If the milestone does not exist
        db_client.DatabaseError: If database operation fails
    """
    with span("progress_service.create_task", milestone_id=milestone_id):
        now = now or datetime.now(UTC)
        await repository.get_milestone(milestone_id)

        overdue = evaluate_overdue(task.due_date, now, task.status)
        record = await db_client.create_record(
            collection=repository.TASKS,
            data={
                "milestone_id": milestone_id,
                "title": task.title,
                "description": task.description,
                "status": task.status,
                "progress_percentage": 0,
                "due_date": task.due_date,
                "estimated_hours": task.estimated_hours,
                "priority": task.priority,
                "is_overdue": overdue.is_overdue,
                "overdue_since": overdue.overdue_since,
            },
        )
        stored = repository.task_from_record(record)
        logger.info("Created task", extra={"milestone_id": milestone_id, "task_id": stored.id})

        report, advisories = await cascade_with_advisory(milestone_id, now=now, progress_override=None)
        return MutationResult(kind=EntityKind.TASK, entity=stored, cascade=report, advisories=advisories)


async def delete_task(*, task_id: str, now: datetime | None = None) -> DeletionResult:
    """Delete a task and recalculate its milestone and booking.

    Raises:
        EntityNotFoundError: If the task does not exist
    """
    with span("progress_service.delete_task", task_id=task_id):
        task = await repository.get_task(task_id)
        await db_client.delete_record(collection=repository.TASKS, record_id=task_id)
        logger.info("Deleted task", extra={"task_id": task_id, "milestone_id": task.milestone_id})

        report, advisories = await cascade_with_advisory(
            task.milestone_id, now=now or datetime.now(UTC), progress_override=None
        )
        return DeletionResult(kind="task", entity_id=task_id, deleted_tasks=1, cascade=report, advisories=advisories)


async def _delete_milestone_rows(milestone: Milestone) -> int:
    tasks = await repository.get_tasks_by_milestone(milestone.id)
    for task in tasks:
        await db_client.delete_record(collection=repository.TASKS, record_id=task.id)
    await db_client.delete_record(collection=repository.MILESTONES, record_id=milestone.id)
    return len(tasks)


async def delete_milestone(*, milestone_id: str) -> DeletionResult:
    """Delete a milestone with all of its tasks, then re-roll the booking.

    Raises:
        EntityNotFoundError: If the milestone does not exist
    """
    with span("progress_service.delete_milestone", milestone_id=milestone_id):
        milestone = await repository.get_milestone(milestone_id)
        deleted_tasks = await _delete_milestone_rows(milestone)
        logger.info(
            "Deleted milestone",
            extra={"milestone_id": milestone_id, "booking_id": milestone.booking_id, "tasks": deleted_tasks},
        )

        report = await recompute_booking(milestone.booking_id)
        return DeletionResult(
            kind="milestone",
            entity_id=milestone_id,
            deleted_tasks=deleted_tasks,
            deleted_milestones=1,
            cascade=report,
            advisories=[report.advisory] if report.advisory else [],
        )


async def delete_booking(*, booking_id: str) -> DeletionResult:
    """Delete a booking with all of its milestones and tasks.

    Raises:
        EntityNotFoundError: If the booking does not exist
    """
    with span("progress_service.delete_booking", booking_id=booking_id):
        await repository.get_booking(booking_id)
        milestones = await repository.get_milestones_by_booking(booking_id)

        deleted_tasks = 0
        for milestone in milestones:
            deleted_tasks += await _delete_milestone_rows(milestone)
        await db_client.delete_record(collection=repository.BOOKINGS, record_id=booking_id)
        await analytics.invalidate_progress_cache(booking_id)

        logger.info(
            "Deleted booking",
            extra={"booking_id": booking_id, "milestones": len(milestones), "tasks": deleted_tasks},
        )
        return DeletionResult(
            kind="booking",
            entity_id=booking_id,
            deleted_tasks=deleted_tasks,
            deleted_milestones=len(milestones),
        )


async def get_task(*, task_id: str, now: datetime | None = None) -> Task:
    """Fetch a task with its overdue state evaluated for ``now`` (nothing is written)."""
    task = await repository.get_task(task_id)
    return _with_overdue(task, now or datetime.now(UTC))


async def get_milestone(*, milestone_id: str, now: datetime | None = None) -> Milestone:
    """Fetch a milestone with its overdue state evaluated for ``now`` (nothing is written)."""
    milestone = await repository.get_milestone(milestone_id)
    return _with_overdue(milestone, now or datetime.now(UTC))


async def get_booking_tree(*, booking_id: str, now: datetime | None = None) -> BookingTree:
    """Booking, milestones and tasks, with overdue state evaluated at read time.

    Raises:
        EntityNotFoundError: If the booking does not exist
    """
    with span("progress_service.get_booking_tree", booking_id=booking_id):
        now = now or datetime.now(UTC)
        booking = await repository.get_booking(booking_id)
        milestones = await repository.get_milestones_by_booking(booking_id)

        nodes = []
        for milestone in milestones:
            tasks = await repository.get_tasks_by_milestone(milestone.id)
            nodes.append(
                MilestoneNode(
                    milestone=_with_overdue(milestone, now),
                    tasks=[_with_overdue(t, now) for t in tasks],
                )
            )
        return BookingTree(booking=booking, milestones=nodes)
