"""Update models for mutation requests."""

from datetime import datetime
from typing import Annotated, Any, Literal

from pydantic import BaseModel, Field, model_validator


class DerivedProgress(BaseModel):
    """Progress is left to the status rule and the aggregators."""

    source: Literal["derived"] = "derived"


class ExplicitProgress(BaseModel):
    """Progress supplied verbatim by the caller for this mutation."""

    source: Literal["explicit"] = "explicit"
    value: int = Field(..., ge=0, le=100)


ProgressSource = Annotated[DerivedProgress | ExplicitProgress, Field(discriminator="source")]


class MutationChanges(BaseModel):
    """Requested changes for a task or milestone.

    Only fields the caller actually set are applied (see ``model_fields_set``),
    so an explicit ``due_date=None`` clears the deadline while an omitted
    ``due_date`` leaves it alone. A raw ``progress_percentage`` key is accepted
    as shorthand for ``ExplicitProgress``.
    """

    status: str | None = None
    progress: ProgressSource = Field(default_factory=DerivedProgress)
    title: str | None = Field(default=None, max_length=200)
    description: str | None = None
    due_date: datetime | None = None
    actual_hours: float | None = Field(default=None, ge=0)
    weight: float | None = Field(default=None, gt=0)

    model_config = {"extra": "forbid"}

    @model_validator(mode="before")
    @classmethod
    def promote_progress_percentage(cls, data: Any) -> Any:  # noqa: ANN401
        """Turn a bare progress_percentage into an explicit progress source."""
        if isinstance(data, dict) and "progress_percentage" in data:
            data = dict(data)
            value = data.pop("progress_percentage")
            if value is not None:
                if "progress" in data:
                    msg = "Pass either progress or progress_percentage, not both"
                    raise ValueError(msg)
                data["progress"] = {"source": "explicit", "value": value}
        return data

    @property
    def explicit_progress(self) -> int | None:
        """The explicit progress value, if the caller supplied one."""
        if isinstance(self.progress, ExplicitProgress):
            return self.progress.value
        return None

    def provided(self, field: str) -> bool:
        """Whether the caller set the given field."""
        return field in self.model_fields_set
