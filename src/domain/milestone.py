"""Milestone domain models."""

from datetime import datetime

from pydantic import BaseModel, Field

from src.domain.status import Priority, WorkStatus


class MilestoneCounters(BaseModel):
    """Derived fields recomputed wholesale from a milestone's tasks."""

    total_tasks: int = 0
    completed_tasks: int = 0
    in_progress_tasks: int = 0
    pending_tasks: int = 0
    overdue_tasks: int = 0
    total_estimated_hours: float = 0.0
    total_actual_hours: float = 0.0
    progress_percentage: int = Field(default=0, ge=0, le=100)
    calculated_status: WorkStatus = WorkStatus.PENDING


class Milestone(BaseModel):
    """A grouping of tasks owned by exactly one booking."""

    id: str = Field(..., description="Unique milestone ID from database")
    booking_id: str = Field(..., description="Owning booking ID")
    title: str = Field(..., description="Milestone title")
    description: str | None = Field(default=None, description="Detailed milestone description")
    status: WorkStatus = Field(default=WorkStatus.PENDING, description="Authoritative lifecycle status")
    progress_percentage: int = Field(default=0, ge=0, le=100, description="Derived completion percentage")
    weight: float | None = Field(default=1.0, ge=0, description="Weight in the booking rollup; NULL counts as 1.0")
    due_date: datetime | None = Field(default=None, description="Deadline")
    priority: Priority | None = Field(default=None, description="Milestone priority")

    # Derived counters, maintained by the milestone aggregator only
    total_tasks: int = 0
    completed_tasks: int = 0
    in_progress_tasks: int = 0
    pending_tasks: int = 0
    overdue_tasks: int = 0
    total_estimated_hours: float = 0.0
    total_actual_hours: float = 0.0
    calculated_status: WorkStatus = Field(
        default=WorkStatus.PENDING,
        description="Advisory status suggested by the task set; never copied into status",
    )

    is_overdue: bool = False
    overdue_since: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    completed_at: datetime | None = None
