"""Pydantic models for creating records in database."""

from datetime import datetime

from pydantic import BaseModel, Field, field_validator

from src.domain.status import Priority, WorkStatus


def _require_title(v: str) -> str:
    title = v.strip()
    if not title:
        msg = "Title must not be empty"
        raise ValueError(msg)
    return title


class BookingCreate(BaseModel):
    """Pydantic model for creating a booking record."""

    title: str = Field(..., max_length=200, description="Booking title")
    status: str = Field(default="pending", description="Initial booking status")

    @field_validator("title")
    @classmethod
    def validate_title(cls, v: str) -> str:
        """Reject blank titles."""
        return _require_title(v)


class MilestoneCreate(BaseModel):
    """Pydantic model for creating a milestone record."""

    title: str = Field(..., max_length=200, description="Milestone title")
    description: str | None = Field(default=None, description="Milestone description")
    weight: float = Field(default=1.0, description="Weight in the booking rollup")
    due_date: datetime | None = Field(default=None, description="Deadline")
    priority: Priority | None = Field(default=None, description="Milestone priority")

    @field_validator("title")
    @classmethod
    def validate_title(cls, v: str) -> str:
        """Reject blank titles."""
        return _require_title(v)

    @field_validator("weight")
    @classmethod
    def validate_weight(cls, v: float) -> float:
        """Weights must be positive."""
        if v <= 0:
            msg = "Weight must be a positive number"
            raise ValueError(msg)
        return v


class TaskCreate(BaseModel):
    """Pydantic model for creating a task record within a milestone."""

    title: str = Field(..., max_length=200, description="Task title")
    description: str | None = Field(default=None, description="Task description")
    status: WorkStatus = Field(default=WorkStatus.PENDING, description="Initial status")
    due_date: datetime | None = Field(default=None, description="Deadline")
    estimated_hours: float | None = Field(default=None, ge=0, description="Estimated effort in hours")
    priority: Priority | None = Field(default=None, description="Task priority")

    @field_validator("title")
    @classmethod
    def validate_title(cls, v: str) -> str:
        """Reject blank titles."""
        return _require_title(v)

    @field_validator("status")
    @classmethod
    def validate_initial_status(cls, v: WorkStatus) -> WorkStatus:
        """New tasks cannot start in a terminal status."""
        if v.is_terminal:
            msg = f"A task cannot be created as {v}"
            raise ValueError(msg)
        return v
