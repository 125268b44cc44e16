"""Pure status transition rules shared by tasks and milestones."""

import logging

from src.core.errors import InvalidTransitionError
from src.core.logging import log_with_context
from src.domain.status import EntityKind, WorkStatus


logger = logging.getLogger(__name__)


# Same graph for every entity kind; completed and cancelled are terminal
TRANSITIONS: dict[WorkStatus, frozenset[WorkStatus]] = {
    WorkStatus.PENDING: frozenset({WorkStatus.IN_PROGRESS, WorkStatus.CANCELLED}),
    WorkStatus.IN_PROGRESS: frozenset({WorkStatus.COMPLETED, WorkStatus.ON_HOLD, WorkStatus.CANCELLED}),
    WorkStatus.ON_HOLD: frozenset({WorkStatus.IN_PROGRESS, WorkStatus.CANCELLED}),
    WorkStatus.COMPLETED: frozenset(),
    WorkStatus.CANCELLED: frozenset(),
}


def _coerce(status: WorkStatus | str) -> WorkStatus | None:
    try:
        return WorkStatus(status)
    except ValueError:
        return None


def get_transitions(kind: EntityKind) -> dict[WorkStatus, frozenset[WorkStatus]]:  # noqa: ARG001
    """Get the transition graph for an entity kind."""
    return TRANSITIONS


def allowed_transitions(kind: EntityKind, status: WorkStatus | str) -> frozenset[WorkStatus]:
    """Statuses reachable from ``status`` in one step (excluding the no-op self edge)."""
    current = _coerce(status)
    if current is None:
        return frozenset()
    return get_transitions(kind)[current]


def can_transition(kind: EntityKind, from_status: WorkStatus | str, to_status: WorkStatus | str) -> bool:
    """Return whether ``from_status -> to_status`` is a legal change.

    ``from == to`` is always allowed. Unknown status values are never allowed.
    """
    current = _coerce(from_status)
    target = _coerce(to_status)
    if current is None or target is None:
        return False
    if current == target:
        return True
    return target in get_transitions(kind)[current]


def ensure_transition(
    kind: EntityKind,
    entity_id: str,
    from_status: WorkStatus | str,
    to_status: WorkStatus | str,
) -> WorkStatus:
    """Validate a status change and return the target status.

    Raises:
        InvalidTransitionError: If the change is not an edge of the graph
    """
    if not can_transition(kind, from_status, to_status):
        allowed = allowed_transitions(kind, from_status)
        log_with_context(
            logger,
            "info",
            "Rejected status transition",
            kind=str(kind),
            entity_id=entity_id,
            from_status=str(from_status),
            to_status=str(to_status),
        )
        raise InvalidTransitionError(
            kind=str(kind),
            entity_id=entity_id,
            current_status=str(from_status),
            attempted_status=str(to_status),
            allowed={str(s) for s in allowed},
        )
    return WorkStatus(to_status)
