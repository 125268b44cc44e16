"""Overdue evaluation for tasks and milestones.

Pure functions only: evaluated lazily on reads and opportunistically during
aggregation. Nothing here blocks, retries or touches storage.
"""

from dataclasses import dataclass
from datetime import UTC, datetime

from dateutil import parser as dateutil_parser

from src.domain.status import WorkStatus


@dataclass(frozen=True)
class OverdueState:
    """Result of an overdue evaluation."""

    is_overdue: bool
    overdue_since: datetime | None


NOT_OVERDUE = OverdueState(is_overdue=False, overdue_since=None)


def as_utc(value: datetime | str | None) -> datetime | None:
    """Normalize a timestamp (datetime or ISO-8601 string) to an aware UTC datetime.

    Naive values are taken to be UTC already.
    """
    if value is None or value == "":
        return None
    if isinstance(value, str):
        value = dateutil_parser.isoparse(value)
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def evaluate_overdue(
    due_date: datetime | str | None,
    now: datetime,
    status: WorkStatus | str,
    previous_overdue_since: datetime | str | None = None,
) -> OverdueState:
    """Evaluate (is_overdue, overdue_since) for one item.

    Terminal items and items without a due date are never overdue. Otherwise an
    item is overdue once ``now`` is past its due date; ``overdue_since`` is the
    due date on first detection and keeps any previously recorded value while the
    item stays overdue.
    """
    if WorkStatus(status).is_terminal:
        return NOT_OVERDUE

    due = as_utc(due_date)
    if due is None:
        return NOT_OVERDUE

    current = as_utc(now)
    if current is None or current <= due:
        return NOT_OVERDUE

    return OverdueState(is_overdue=True, overdue_since=as_utc(previous_overdue_since) or due)
