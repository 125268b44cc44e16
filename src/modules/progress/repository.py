"""Storage contract for the progress engine.

Typed reads and writes for bookings, milestones and tasks on top of the
module-level ``db_client`` CRUD functions. Missing rows surface as
``EntityNotFoundError``; other storage failures propagate as ``DatabaseError``.
"""

import logging
from collections.abc import Collection
from typing import Any

from src.core import db_client
from src.core.config import Constants
from src.core.errors import EntityNotFoundError
from src.domain.booking import Booking
from src.domain.milestone import Milestone
from src.domain.task import Task
from src.modules.progress.overdue import as_utc


logger = logging.getLogger(__name__)

BOOKINGS = "bookings"
MILESTONES = "milestones"
TASKS = "tasks"

_TIMESTAMP_FIELDS = ("due_date", "overdue_since", "created_at", "updated_at", "completed_at")

# Identity and bookkeeping columns are never written through the typed writers
_READ_ONLY_FIELDS = frozenset({"id", "booking_id", "milestone_id", "created_at", "updated_at"})


def _parse_timestamps(record: dict[str, Any]) -> dict[str, Any]:
    parsed = record.copy()
    for field in _TIMESTAMP_FIELDS:
        if field in parsed:
            parsed[field] = as_utc(parsed[field])
    return parsed


def task_from_record(record: dict[str, Any]) -> Task:
    """Build a Task from a storage record."""
    return Task(**_parse_timestamps(record))


def milestone_from_record(record: dict[str, Any]) -> Milestone:
    """Build a Milestone from a storage record."""
    return Milestone(**_parse_timestamps(record))


def booking_from_record(record: dict[str, Any]) -> Booking:
    """Build a Booking from a storage record."""
    return Booking(**_parse_timestamps(record))


async def _get(*, collection: str, kind: str, record_id: str) -> dict[str, Any]:
    try:
        return await db_client.get_record(collection=collection, record_id=record_id)
    except db_client.RecordNotFoundError as e:
        raise EntityNotFoundError(kind=kind, entity_id=record_id) from e


async def _list_all(*, collection: str, filter_query: str, sort: str = "id") -> list[dict[str, Any]]:
    """Fetch every matching record, paging through list_records."""
    records: list[dict[str, Any]] = []
    page = 1
    per_page = Constants.DEFAULT_PER_PAGE_LIMIT
    while True:
        batch = await db_client.list_records(
            collection=collection,
            filter_query=filter_query,
            sort=sort,
            page=page,
            per_page=per_page,
        )
        records.extend(batch)
        if len(batch) < per_page:
            return records
        page += 1


def _payload(model: Task | Milestone, fields: Collection[str] | None) -> dict[str, Any]:
    data = model.model_dump(mode="json", exclude=set(_READ_ONLY_FIELDS))
    if fields is not None:
        data = {key: value for key, value in data.items() if key in fields}
    return data


async def get_task(task_id: str) -> Task:
    """Fetch a task by id."""
    return task_from_record(await _get(collection=TASKS, kind="task", record_id=task_id))


async def get_milestone(milestone_id: str) -> Milestone:
    """Fetch a milestone by id."""
    return milestone_from_record(await _get(collection=MILESTONES, kind="milestone", record_id=milestone_id))


async def get_booking(booking_id: str) -> Booking:
    """Fetch a booking by id."""
    return booking_from_record(await _get(collection=BOOKINGS, kind="booking", record_id=booking_id))


async def get_tasks_by_milestone(milestone_id: str) -> list[Task]:
    """All tasks owned by a milestone, oldest first."""
    records = await _list_all(
        collection=TASKS,
        filter_query=f'milestone_id = "{db_client.sanitize_param(milestone_id)}"',
    )
    return [task_from_record(r) for r in records]


async def get_milestones_by_booking(booking_id: str) -> list[Milestone]:
    """All milestones owned by a booking, oldest first."""
    records = await _list_all(
        collection=MILESTONES,
        filter_query=f'booking_id = "{db_client.sanitize_param(booking_id)}"',
    )
    return [milestone_from_record(r) for r in records]


async def write_task(task: Task, *, fields: Collection[str] | None = None) -> Task:
    """Persist a task (optionally only the named fields) and return the stored row."""
    try:
        record = await db_client.update_record(collection=TASKS, record_id=task.id, data=_payload(task, fields))
    except db_client.RecordNotFoundError as e:
        raise EntityNotFoundError(kind="task", entity_id=task.id) from e
    return task_from_record(record)


async def write_milestone(milestone: Milestone, *, fields: Collection[str] | None = None) -> Milestone:
    """Persist a milestone (optionally only the named fields) and return the stored row."""
    try:
        record = await db_client.update_record(
            collection=MILESTONES,
            record_id=milestone.id,
            data=_payload(milestone, fields),
        )
    except db_client.RecordNotFoundError as e:
        raise EntityNotFoundError(kind="milestone", entity_id=milestone.id) from e
    return milestone_from_record(record)


async def write_booking_progress(booking_id: str, percentage: int) -> None:
    """Store a booking's derived progress percentage."""
    try:
        await db_client.update_record(
            collection=BOOKINGS,
            record_id=booking_id,
            data={"progress_percentage": percentage},
        )
    except db_client.RecordNotFoundError as e:
        raise EntityNotFoundError(kind="booking", entity_id=booking_id) from e
    logger.debug("Stored booking progress", extra={"booking_id": booking_id, "progress": percentage})
