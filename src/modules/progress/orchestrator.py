"""Recalculation cascade: milestone first, then the booking rollup.

The booking rollup tries the primary strategy under the rollup policy and falls
back to the local aggregator. Derived-layer failures never undo the entity write
that triggered the cascade; they come back as a ``CascadeIncomplete`` advisory.
"""

import logging
from datetime import datetime

from pydantic import BaseModel, ConfigDict

from src.core.errors import AggregationReadError, CascadeIncomplete
from src.core.logging import span
from src.modules.progress import analytics
from src.modules.progress.milestone_aggregator import MilestoneRollup, recalculate_milestone
from src.modules.progress.rollup import (
    FallbackReason,
    LocalRollup,
    RollupPolicy,
    RollupStrategy,
    compute_with_timeout,
    default_primary,
    get_rollup_policy,
)


logger = logging.getLogger(__name__)


class BookingRollupOutcome(BaseModel):
    """How the booking rollup went."""

    booking_id: str
    progress_percentage: int | None = None
    strategy: str | None = None
    fallback_reason: FallbackReason | None = None
    primary_error: str | None = None
    fallback_error: str | None = None

    @property
    def succeeded(self) -> bool:
        """Whether some strategy produced and stored a value."""
        return self.progress_percentage is not None

    @property
    def degraded(self) -> bool:
        """Whether the fallback had to be used."""
        return self.fallback_reason is not None


class CascadeReport(BaseModel):
    """Everything one cascade did, plus any advisory."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    milestone: MilestoneRollup | None = None
    booking: BookingRollupOutcome | None = None
    advisory: CascadeIncomplete | None = None

    @property
    def complete(self) -> bool:
        """Whether every step of the cascade succeeded."""
        return self.advisory is None


async def rollup_booking(
    booking_id: str,
    *,
    primary: RollupStrategy | None = None,
    fallback: RollupStrategy | None = None,
    policy: RollupPolicy | None = None,
) -> BookingRollupOutcome:
    """Recompute a booking's progress via the primary strategy, falling back on failure.

    The primary runs under the policy timeout; the fallback runs to completion.
    Never raises for strategy failures; inspect the outcome instead.
    """
    primary = primary or default_primary()
    fallback = fallback or LocalRollup()
    policy = policy or get_rollup_policy()
    outcome = BookingRollupOutcome(booking_id=booking_id)

    with span("orchestrator.rollup_booking", booking_id=booking_id, primary=primary.name):
        if policy.should_attempt_primary():
            try:
                progress = await compute_with_timeout(primary, booking_id, policy.timeout_seconds)
            except Exception as e:
                outcome.fallback_reason = policy.record_primary_failure(e)
                outcome.primary_error = str(e)
                logger.warning(
                    "Primary rollup failed, using fallback",
                    extra={
                        "booking_id": booking_id,
                        "strategy": primary.name,
                        "reason": str(outcome.fallback_reason),
                        "error": str(e),
                    },
                )
            else:
                policy.record_primary_success()
                outcome.progress_percentage = progress
                outcome.strategy = primary.name
                return outcome
        else:
            outcome.fallback_reason = FallbackReason.CIRCUIT_OPEN
            logger.warning(
                "Primary rollup skipped, circuit open",
                extra={"booking_id": booking_id, "strategy": primary.name},
            )

        try:
            outcome.progress_percentage = await fallback.compute(booking_id)
            outcome.strategy = fallback.name
        except Exception as e:
            outcome.fallback_error = str(e)
            logger.error(
                "Fallback rollup failed",
                extra={"booking_id": booking_id, "strategy": fallback.name, "error": str(e)},
            )
        return outcome


def _incomplete(booking_id: str, outcome: BookingRollupOutcome) -> CascadeIncomplete:
    return CascadeIncomplete(
        f"Booking {booking_id} progress could not be refreshed",
        booking_id=booking_id,
        primary_error=outcome.primary_error or "",
        fallback_error=outcome.fallback_error or "",
    )


async def run_cascade(
    milestone_id: str,
    *,
    now: datetime | None = None,
    progress_override: int | None = None,
    primary: RollupStrategy | None = None,
    fallback: RollupStrategy | None = None,
    policy: RollupPolicy | None = None,
) -> CascadeReport:
    """Bring a milestone and its booking up to date after a write.

    The milestone step always finishes before the booking step starts.
    If the milestone step cannot read its tasks the booking step is skipped.

    Raises:
        EntityNotFoundError: If the milestone no longer exists
    """
    report = CascadeReport()

    with span("orchestrator.run_cascade", milestone_id=milestone_id):
        try:
            report.milestone = await recalculate_milestone(
                milestone_id, now=now, progress_override=progress_override
            )
        except AggregationReadError as e:
            logger.error("Cascade stopped at milestone step", extra={"milestone_id": milestone_id, "error": str(e)})
            report.advisory = CascadeIncomplete(
                f"Milestone {milestone_id} could not be recalculated",
                milestone_id=milestone_id,
                error=str(e),
            )
            return report

        booking_id = report.milestone.milestone.booking_id
        report.booking = await rollup_booking(booking_id, primary=primary, fallback=fallback, policy=policy)
        if not report.booking.succeeded:
            report.advisory = _incomplete(booking_id, report.booking)

        await analytics.invalidate_progress_cache(booking_id)
        return report


async def recompute_booking(
    booking_id: str,
    *,
    primary: RollupStrategy | None = None,
    fallback: RollupStrategy | None = None,
    policy: RollupPolicy | None = None,
) -> CascadeReport:
    """Explicit booking recompute (no milestone step), same primary/fallback protocol."""
    with span("orchestrator.recompute_booking", booking_id=booking_id):
        report = CascadeReport()
        report.booking = await rollup_booking(booking_id, primary=primary, fallback=fallback, policy=policy)
        if not report.booking.succeeded:
            report.advisory = _incomplete(booking_id, report.booking)

        await analytics.invalidate_progress_cache(booking_id)
        return report


async def recalculate_booking_tree(
    booking_id: str,
    milestone_ids: list[str],
    *,
    now: datetime | None = None,
    primary: RollupStrategy | None = None,
    fallback: RollupStrategy | None = None,
    policy: RollupPolicy | None = None,
) -> CascadeReport:
    """Recalculate every listed milestone, then the booking once."""
    with span("orchestrator.recalculate_booking_tree", booking_id=booking_id, milestones=len(milestone_ids)):
        report = CascadeReport()
        failed: list[str] = []
        for milestone_id in milestone_ids:
            try:
                report.milestone = await recalculate_milestone(milestone_id, now=now)
            except AggregationReadError as e:
                failed.append(milestone_id)
                logger.error(
                    "Milestone recalculation failed during booking refresh",
                    extra={"milestone_id": milestone_id, "booking_id": booking_id, "error": str(e)},
                )

        report.booking = await rollup_booking(booking_id, primary=primary, fallback=fallback, policy=policy)
        if not report.booking.succeeded:
            report.advisory = _incomplete(booking_id, report.booking)
        elif failed:
            report.advisory = CascadeIncomplete(
                f"{len(failed)} milestone(s) of booking {booking_id} could not be recalculated",
                booking_id=booking_id,
                milestone_ids=",".join(failed),
            )

        await analytics.invalidate_progress_cache(booking_id)
        return report
