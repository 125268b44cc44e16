"""Domain models and DTOs."""

from src.domain.booking import Booking
from src.domain.create_models import BookingCreate, MilestoneCreate, TaskCreate
from src.domain.milestone import Milestone, MilestoneCounters
from src.domain.status import TERMINAL_STATUSES, EntityKind, Priority, WorkStatus
from src.domain.task import Task
from src.domain.update_models import DerivedProgress, ExplicitProgress, MutationChanges, ProgressSource


__all__ = [
    "TERMINAL_STATUSES",
    "Booking",
    "BookingCreate",
    "DerivedProgress",
    "EntityKind",
    "ExplicitProgress",
    "Milestone",
    "MilestoneCounters",
    "MilestoneCreate",
    "MutationChanges",
    "Priority",
    "ProgressSource",
    "Task",
    "TaskCreate",
    "WorkStatus",
]
