"""Mutation gateway: the single entry point for changing tasks and milestones.

Order of operations: load, validate the status transition, write the entity,
run the cascade, return. Invalid transitions and unknown ids abort before any
write. Cascade failures are attached to the result as advisories.
"""

import asyncio
import logging
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict

from src.core.db_client import DatabaseError
from src.core.errors import CascadeIncomplete, ProgressEngineError
from src.core.logging import span
from src.domain.milestone import Milestone
from src.domain.status import EntityKind, WorkStatus
from src.domain.task import Task
from src.domain.update_models import MutationChanges
from src.modules.progress import repository
from src.modules.progress.orchestrator import CascadeReport, run_cascade
from src.modules.progress.overdue import evaluate_overdue
from src.modules.progress.state_machine import ensure_transition


logger = logging.getLogger(__name__)


class CascadeMode(StrEnum):
    """How the cascade runs relative to the mutation call."""

    SYNC = "sync"
    BACKGROUND = "background"


class MutationResult(BaseModel):
    """Stored entity after a successful mutation, plus cascade details."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    kind: EntityKind
    entity: Task | Milestone
    cascade_mode: CascadeMode = CascadeMode.SYNC
    cascade: CascadeReport | None = None
    advisories: list[CascadeIncomplete] = []

    @property
    def degraded(self) -> bool:
        """Whether the write stood but the cascade did not fully complete."""
        return bool(self.advisories)


# Held so fire-and-forget cascades are not garbage collected mid-flight
_background_cascades: set[asyncio.Task[CascadeReport | None]] = set()

_TEXT_FIELDS = ("title", "description", "due_date")


def _coerce_changes(changes: MutationChanges | dict[str, Any]) -> MutationChanges:
    if isinstance(changes, MutationChanges):
        return changes
    return MutationChanges.model_validate(changes)


def _require_title(changes: MutationChanges) -> None:
    if changes.provided("title") and not (changes.title or "").strip():
        msg = "Title must not be empty"
        raise ValueError(msg)


def _apply_common_fields(changes: MutationChanges, update: dict[str, Any]) -> None:
    for field in _TEXT_FIELDS:
        if changes.provided(field):
            value = getattr(changes, field)
            update[field] = value.strip() if field == "title" and value else value


def _task_update(task: Task, changes: MutationChanges, now: datetime) -> dict[str, Any]:
    if changes.provided("weight"):
        msg = "weight applies to milestones only"
        raise ValueError(msg)
    _require_title(changes)

    update: dict[str, Any] = {}
    status = task.status
    if changes.status is not None:
        status = ensure_transition(EntityKind.TASK, task.id, task.status, changes.status)
        update["status"] = status
        if status == WorkStatus.COMPLETED and task.status != WorkStatus.COMPLETED:
            update["completed_at"] = now

    explicit = changes.explicit_progress
    if explicit is not None:
        update["progress_percentage"] = explicit
        update["progress_overridden"] = True
    elif changes.status is not None and not task.progress_overridden:
        if status == WorkStatus.COMPLETED:
            update["progress_percentage"] = 100
        elif status == WorkStatus.PENDING:
            update["progress_percentage"] = 0

    _apply_common_fields(changes, update)
    if changes.provided("actual_hours"):
        update["actual_hours"] = changes.actual_hours

    due_date = update.get("due_date", task.due_date)
    overdue = evaluate_overdue(due_date, now, status, task.overdue_since)
    update["is_overdue"] = overdue.is_overdue
    update["overdue_since"] = overdue.overdue_since
    return update


def _milestone_update(milestone: Milestone, changes: MutationChanges, now: datetime) -> dict[str, Any]:
    if changes.provided("actual_hours"):
        msg = "actual_hours is derived from tasks for milestones"
        raise ValueError(msg)
    _require_title(changes)

    update: dict[str, Any] = {}
    status = milestone.status
    if changes.status is not None:
        status = ensure_transition(EntityKind.MILESTONE, milestone.id, milestone.status, changes.status)
        update["status"] = status
        if status == WorkStatus.COMPLETED and milestone.status != WorkStatus.COMPLETED:
            update["completed_at"] = now

    explicit = changes.explicit_progress
    if explicit is not None:
        update["progress_percentage"] = explicit

    _apply_common_fields(changes, update)
    if changes.provided("weight") and changes.weight is not None:
        update["weight"] = changes.weight

    due_date = update.get("due_date", milestone.due_date)
    overdue = evaluate_overdue(due_date, now, status, milestone.overdue_since)
    update["is_overdue"] = overdue.is_overdue
    update["overdue_since"] = overdue.overdue_since
    return update


async def cascade_with_advisory(
    milestone_id: str,
    *,
    now: datetime,
    progress_override: int | None,
) -> tuple[CascadeReport | None, list[CascadeIncomplete]]:
    """Run the cascade, turning derived-layer failures into advisories."""
    try:
        report = await run_cascade(milestone_id, now=now, progress_override=progress_override)
    except (ProgressEngineError, DatabaseError) as e:
        logger.error("Cascade failed after entity write", extra={"milestone_id": milestone_id, "error": str(e)})
        return None, [CascadeIncomplete(f"Cascade failed: {e}", milestone_id=milestone_id)]
    return report, [report.advisory] if report.advisory else []


async def _background_cascade(
    milestone_id: str, *, now: datetime, progress_override: int | None
) -> CascadeReport | None:
    report, advisories = await cascade_with_advisory(milestone_id, now=now, progress_override=progress_override)
    for advisory in advisories:
        logger.warning("Background cascade incomplete", extra={"milestone_id": milestone_id, "advisory": str(advisory)})
    return report


def _on_background_done(task: "asyncio.Task[CascadeReport | None]") -> None:
    _background_cascades.discard(task)
    if task.cancelled():
        return
    error = task.exception()
    if error is not None:
        logger.error("Background cascade crashed", extra={"task": task.get_name(), "error": str(error)})


def _schedule_cascade(milestone_id: str, *, now: datetime, progress_override: int | None) -> None:
    task = asyncio.create_task(
        _background_cascade(milestone_id, now=now, progress_override=progress_override),
        name=f"cascade:{milestone_id}",
    )
    _background_cascades.add(task)
    task.add_done_callback(_on_background_done)


async def apply_mutation(
    kind: EntityKind | str,
    entity_id: str,
    changes: MutationChanges | dict[str, Any],
    *,
    cascade: CascadeMode = CascadeMode.SYNC,
    now: datetime | None = None,
) -> MutationResult:
    """Apply a status/progress/field change to a task or milestone.

    Args:
        kind: ``task`` or ``milestone``
        entity_id: Id of the entity to change
        changes: Requested changes (a dict is validated into ``MutationChanges``)
        cascade: ``SYNC`` awaits the cascade; ``BACKGROUND`` schedules it and returns
        now: Clock override for overdue evaluation and completion timestamps

    Returns:
        MutationResult with the stored entity and any cascade advisory

    Raises:
        EntityNotFoundError: If the entity does not exist (nothing written)
        InvalidTransitionError: If the status change is not allowed (nothing written)
        ValueError: If the changes are malformed (nothing written)
    """
    kind = EntityKind(kind)
    changes = _coerce_changes(changes)
    now = now or datetime.now(UTC)

    with span("gateway.apply_mutation", kind=str(kind), entity_id=entity_id, cascade=str(cascade)):
        progress_override: int | None = None
        if kind == EntityKind.TASK:
            task = await repository.get_task(entity_id)
            update = _task_update(task, changes, now)
            stored: Task | Milestone = await repository.write_task(task.model_copy(update=update), fields=set(update))
            milestone_id = task.milestone_id
        else:
            milestone = await repository.get_milestone(entity_id)
            update = _milestone_update(milestone, changes, now)
            stored = await repository.write_milestone(milestone.model_copy(update=update), fields=set(update))
            milestone_id = milestone.id
            progress_override = changes.explicit_progress

        logger.info(
            "Applied mutation",
            extra={"kind": str(kind), "entity_id": entity_id, "fields": sorted(update), "cascade": str(cascade)},
        )

        result = MutationResult(kind=kind, entity=stored, cascade_mode=cascade)
        if cascade == CascadeMode.BACKGROUND:
            _schedule_cascade(milestone_id, now=now, progress_override=progress_override)
            return result

        result.cascade, result.advisories = await cascade_with_advisory(
            milestone_id, now=now, progress_override=progress_override
        )
        if result.cascade and result.cascade.milestone and kind == EntityKind.MILESTONE:
            result.entity = result.cascade.milestone.milestone
        return result


def pending_background_cascades() -> int:
    """Number of background cascades still running."""
    return len(_background_cascades)


async def drain_background_cascades() -> None:
    """Wait for every scheduled background cascade to finish."""
    while _background_cascades:
        await asyncio.gather(*list(_background_cascades), return_exceptions=True)
