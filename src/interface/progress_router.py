"""HTTP adapter for the progress engine."""

import logging
from typing import Any

from fastapi import APIRouter, Body, Query
from fastapi.responses import JSONResponse

from src.core.db_client import DatabaseError
from src.core.errors import CascadeIncomplete, ProgressEngineError, classify_error_with_response
from src.domain.create_models import BookingCreate, MilestoneCreate, TaskCreate
from src.domain.status import EntityKind
from src.modules.progress import analytics, service
from src.modules.progress.gateway import CascadeMode, MutationResult, apply_mutation
from src.modules.progress.orchestrator import CascadeReport, recalculate_booking_tree, recompute_booking
from src.modules.progress.repository import get_booking as get_booking_record, get_milestones_by_booking


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/progress", tags=["progress"])


def _error_response(exc: Exception) -> JSONResponse:
    response = classify_error_with_response(exc)
    if response.http_status >= 500:  # noqa: PLR2004
        logger.error("progress_request_failed", extra={"error_type": type(exc).__name__, "error": str(exc)})
    return JSONResponse(
        content={"error": response.model_dump(mode="json")},
        status_code=response.http_status,
    )


def _advisories(advisories: list[CascadeIncomplete]) -> list[dict[str, Any]]:
    return [classify_error_with_response(a).model_dump(mode="json") for a in advisories]


def _cascade_summary(report: CascadeReport | None) -> dict[str, Any] | None:
    if report is None:
        return None
    booking = report.booking
    return {
        "complete": report.complete,
        "milestone_progress": report.milestone.milestone.progress_percentage if report.milestone else None,
        "calculated_status": str(report.milestone.counters.calculated_status) if report.milestone else None,
        "booking_progress": booking.progress_percentage if booking else None,
        "strategy": booking.strategy if booking else None,
        "fallback_reason": str(booking.fallback_reason) if booking and booking.fallback_reason else None,
    }


def _mutation_payload(result: MutationResult) -> dict[str, Any]:
    return {
        "kind": str(result.kind),
        "data": result.entity.model_dump(mode="json"),
        "cascade_mode": str(result.cascade_mode),
        "cascade": _cascade_summary(result.cascade),
        "advisories": _advisories(result.advisories),
    }


async def _mutate(kind: EntityKind, entity_id: str, changes: dict[str, Any], cascade: CascadeMode) -> JSONResponse:
    try:
        result = await apply_mutation(kind, entity_id, changes, cascade=cascade)
    except (ProgressEngineError, ValueError, DatabaseError) as e:
        return _error_response(e)
    return JSONResponse(content=_mutation_payload(result), status_code=200)


@router.patch("/tasks/{task_id}")
async def update_task(
    task_id: str,
    changes: dict[str, Any] = Body(...),  # noqa: B008
    cascade: CascadeMode = Query(default=CascadeMode.SYNC),  # noqa: B008
) -> JSONResponse:
    """Change a task's status, progress or fields."""
    return await _mutate(EntityKind.TASK, task_id, changes, cascade)


@router.patch("/milestones/{milestone_id}")
async def update_milestone(
    milestone_id: str,
    changes: dict[str, Any] = Body(...),  # noqa: B008
    cascade: CascadeMode = Query(default=CascadeMode.SYNC),  # noqa: B008
) -> JSONResponse:
    """Change a milestone's status, progress or fields."""
    return await _mutate(EntityKind.MILESTONE, milestone_id, changes, cascade)


@router.post("/bookings/{booking_id}/recalculate")
async def recalculate(
    booking_id: str,
    include_milestones: bool = Query(default=False),  # noqa: FBT001
) -> JSONResponse:
    """Explicitly recompute a booking's progress (optionally every milestone first)."""
    try:
        await get_booking_record(booking_id)
        if include_milestones:
            milestones = await get_milestones_by_booking(booking_id)
            report = await recalculate_booking_tree(booking_id, [m.id for m in milestones])
        else:
            report = await recompute_booking(booking_id)
    except (ProgressEngineError, ValueError, DatabaseError) as e:
        return _error_response(e)

    return JSONResponse(
        content={
            "booking_id": booking_id,
            "cascade": _cascade_summary(report),
            "advisories": _advisories([report.advisory] if report.advisory else []),
        },
        status_code=200,
    )


@router.get("/bookings/{booking_id}")
async def get_booking(booking_id: str) -> JSONResponse:
    """Booking with its milestones and tasks."""
    try:
        tree = await service.get_booking_tree(booking_id=booking_id)
    except (ProgressEngineError, ValueError, DatabaseError) as e:
        return _error_response(e)
    return JSONResponse(content=tree.model_dump(mode="json"), status_code=200)


@router.get("/bookings/{booking_id}/analytics")
async def get_analytics(booking_id: str) -> JSONResponse:
    """Progress analytics for a booking."""
    try:
        result = await analytics.get_progress_analytics(booking_id)
    except (ProgressEngineError, ValueError, DatabaseError) as e:
        return _error_response(e)
    return JSONResponse(content=result.model_dump(mode="json"), status_code=200)


@router.post("/bookings")
async def create_booking(booking: BookingCreate) -> JSONResponse:
    """Create a booking."""
    try:
        created = await service.create_booking(booking=booking)
    except (ProgressEngineError, ValueError, DatabaseError) as e:
        return _error_response(e)
    return JSONResponse(content=created.model_dump(mode="json"), status_code=201)


@router.post("/bookings/{booking_id}/milestones")
async def create_milestone(booking_id: str, milestone: MilestoneCreate) -> JSONResponse:
    """Create a milestone under a booking."""
    try:
        result = await service.create_milestone(booking_id=booking_id, milestone=milestone)
    except (ProgressEngineError, ValueError, DatabaseError) as e:
        return _error_response(e)
    return JSONResponse(content=_mutation_payload(result), status_code=201)


@router.post("/milestones/{milestone_id}/tasks")
async def create_task(milestone_id: str, task: TaskCreate) -> JSONResponse:
    """Create a task within a milestone."""
    try:
        result = await service.create_task(milestone_id=milestone_id, task=task)
    except (ProgressEngineError, ValueError, DatabaseError) as e:
        return _error_response(e)
    return JSONResponse(content=_mutation_payload(result), status_code=201)


@router.delete("/milestones/{milestone_id}")
async def delete_milestone(milestone_id: str) -> JSONResponse:
    """Delete a milestone and its tasks."""
    try:
        result = await service.delete_milestone(milestone_id=milestone_id)
    except (ProgressEngineError, ValueError, DatabaseError) as e:
        return _error_response(e)
    return JSONResponse(
        content={
            "deleted_tasks": result.deleted_tasks,
            "cascade": _cascade_summary(result.cascade),
            "advisories": _advisories(result.advisories),
        },
        status_code=200,
    )


@router.delete("/tasks/{task_id}")
async def delete_task(task_id: str) -> JSONResponse:
    """Delete a task."""
    try:
        result = await service.delete_task(task_id=task_id)
    except (ProgressEngineError, ValueError, DatabaseError) as e:
        return _error_response(e)
    return JSONResponse(
        content={"cascade": _cascade_summary(result.cascade), "advisories": _advisories(result.advisories)},
        status_code=200,
    )


@router.delete("/bookings/{booking_id}")
async def delete_booking(booking_id: str) -> JSONResponse:
    """Delete a booking with its milestones and tasks."""
    try:
        result = await service.delete_booking(booking_id=booking_id)
    except (ProgressEngineError, ValueError, DatabaseError) as e:
        return _error_response(e)
    return JSONResponse(
        content={"deleted_milestones": result.deleted_milestones, "deleted_tasks": result.deleted_tasks},
        status_code=200,
    )
