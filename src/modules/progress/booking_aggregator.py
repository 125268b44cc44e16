"""Booking aggregation: weighted mean of milestone progress."""

import logging
from collections.abc import Iterable
from decimal import Decimal

from src.core.config import Constants
from src.core.db_client import DatabaseError
from src.core.errors import AggregationReadError
from src.core.logging import span
from src.domain.milestone import Milestone
from src.modules.progress import repository
from src.modules.progress.rounding import clamp_percentage, round_half_up


logger = logging.getLogger(__name__)


def effective_weight(milestone: Milestone) -> Decimal:
    """A milestone's rollup weight; missing weights count as the default."""
    weight = milestone.weight if milestone.weight is not None else Constants.DEFAULT_MILESTONE_WEIGHT
    return Decimal(str(weight))


def compute_weighted_progress(milestones: Iterable[Milestone]) -> int:
    """round_half_up(sum(p * w) / sum(w)); 0 when there is no positive total weight."""
    weighted_sum = Decimal(0)
    total_weight = Decimal(0)
    for milestone in milestones:
        weight = effective_weight(milestone)
        weighted_sum += Decimal(milestone.progress_percentage) * weight
        total_weight += weight

    if total_weight <= 0:
        return 0
    return clamp_percentage(round_half_up(weighted_sum / total_weight))


async def recalculate_booking(booking_id: str) -> int:
    """Recompute a booking's progress from freshly fetched milestones and store it.

    Raises:
        AggregationReadError: If the milestones cannot be read; nothing is written
    """
    with span("booking_aggregator.recalculate_booking", booking_id=booking_id):
        try:
            milestones = await repository.get_milestones_by_booking(booking_id)
        except DatabaseError as e:
            logger.warning("Booking aggregation read failed", extra={"booking_id": booking_id, "error": str(e)})
            msg = f"Could not read milestones for booking {booking_id}"
            raise AggregationReadError(msg, booking_id=booking_id) from e

        progress = compute_weighted_progress(milestones)
        await repository.write_booking_progress(booking_id, progress)

        logger.info(
            "Recalculated booking",
            extra={"booking_id": booking_id, "milestones": len(milestones), "progress": progress},
        )
        return progress
