"""Booking domain model."""

from datetime import datetime

from pydantic import BaseModel, Field


class Booking(BaseModel):
    """Root aggregate; its progress is a weighted cache over its milestones."""

    id: str = Field(..., description="Unique booking ID from database")
    title: str = Field(..., description="Booking title")
    status: str = Field(default="pending", description="Booking status, owned outside the progress engine")
    progress_percentage: int = Field(default=0, ge=0, le=100, description="Weighted milestone progress")
    created_at: datetime | None = None
    updated_at: datetime | None = None
