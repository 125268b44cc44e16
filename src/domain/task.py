"""Task domain model."""

from datetime import datetime

from pydantic import BaseModel, Field

from src.domain.status import Priority, WorkStatus


class Task(BaseModel):
    """A unit of work owned by exactly one milestone."""

    id: str = Field(..., description="Unique task ID from database")
    milestone_id: str = Field(..., description="Owning milestone ID")
    title: str = Field(..., description="Task title")
    description: str | None = Field(default=None, description="Detailed task description")
    status: WorkStatus = Field(default=WorkStatus.PENDING, description="Current lifecycle status")
    progress_percentage: int = Field(default=0, ge=0, le=100, description="Completion percentage")
    progress_overridden: bool = Field(
        default=False,
        description="Set once a caller wrote progress explicitly; status no longer drives progress",
    )
    due_date: datetime | None = Field(default=None, description="Deadline")
    estimated_hours: float | None = Field(default=None, ge=0, description="Estimated effort in hours")
    actual_hours: float | None = Field(default=None, ge=0, description="Actual effort in hours")
    priority: Priority | None = Field(default=None, description="Task priority")
    is_overdue: bool = Field(default=False, description="Derived: past due and not terminal")
    overdue_since: datetime | None = Field(default=None, description="Derived: sticky start of the overdue period")
    created_at: datetime | None = Field(default=None, description="Creation timestamp")
    updated_at: datetime | None = Field(default=None, description="Last update timestamp")
    completed_at: datetime | None = Field(default=None, description="Completion timestamp")
