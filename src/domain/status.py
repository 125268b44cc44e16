"""Status, kind and priority enums shared by tasks and milestones."""

from enum import StrEnum


class WorkStatus(StrEnum):
    """Lifecycle status of a task or milestone."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    ON_HOLD = "on_hold"

    @property
    def is_terminal(self) -> bool:
        """Whether no further status change is possible."""
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES: frozenset[WorkStatus] = frozenset({WorkStatus.COMPLETED, WorkStatus.CANCELLED})


class EntityKind(StrEnum):
    """Entities whose status is changed through the mutation gateway."""

    TASK = "task"
    MILESTONE = "milestone"


class Priority(StrEnum):
    """Work item priority."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
