"""Booking rollup strategies and the policy that picks between them.

The primary strategy is either the storage-side aggregate (``DatabaseRollup``)
or a remote rollup service (``RemoteRollup``). ``LocalRollup`` is the fallback:
the booking aggregator run over freshly fetched milestones. Every strategy
leaves the computed percentage stored on the booking.
"""

import asyncio
import logging
import time
from enum import Enum, StrEnum
from typing import Protocol

import httpx

from src.core import db_client
from src.core.config import constants, settings
from src.core.errors import ComputationDepthError, RollupError, RollupTimeoutError
from src.modules.progress import repository
from src.modules.progress.booking_aggregator import recalculate_booking
from src.modules.progress.rounding import clamp_percentage


logger = logging.getLogger(__name__)

# Error code / message fragments that signal recursion or stack depth overflow
DEPTH_ERROR_CODES = frozenset({"54001"})
DEPTH_ERROR_MARKERS = ("stack depth", "too many levels", "recursion", "expression tree is too large")


def is_depth_error(message: str, code: str | None = None) -> bool:
    """Whether an error reported by a primary rollup is a depth overflow."""
    if code is not None and code in DEPTH_ERROR_CODES:
        return True
    lowered = message.lower()
    return any(marker in lowered for marker in DEPTH_ERROR_MARKERS)


class RollupStrategy(Protocol):
    """A way of computing (and storing) a booking's progress percentage."""

    name: str

    async def compute(self, booking_id: str) -> int:
        """Compute and store the booking's progress, returning the percentage."""
        ...


class DatabaseRollup:
    """Single aggregate query executed by the storage layer."""

    name = "database"

    async def compute(self, booking_id: str) -> int:
        try:
            return await db_client.compute_booking_progress(booking_id=booking_id)
        except db_client.DatabaseError as e:
            if is_depth_error(str(e)):
                raise ComputationDepthError(str(e), booking_id=booking_id, strategy=self.name) from e
            raise RollupError(str(e), booking_id=booking_id, strategy=self.name) from e


class RemoteRollup:
    """Remote rollup service reached over HTTP.

    ``POST {base_url}/bookings/{booking_id}/progress`` answers
    ``{"progress_percentage": <int>}`` on success and
    ``{"code": ..., "message": ...}`` on failure.
    """

    name = "remote"

    def __init__(
        self,
        base_url: str,
        api_key: str | None = None,
        *,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout if timeout is not None else constants.API_TIMEOUT_SECONDS
        self.transport = transport

    def _headers(self) -> dict[str, str]:
        headers = {"Accept": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    async def compute(self, booking_id: str) -> int:
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.post(
                    f"{self.base_url}/bookings/{booking_id}/progress",
                    headers=self._headers(),
                )
                if response.is_error:
                    self._raise_for_error(booking_id, response)
                progress = int(response.json()["progress_percentage"])
        except httpx.TimeoutException as e:
            raise RollupTimeoutError(
                "Remote rollup timed out", booking_id=booking_id, strategy=self.name
            ) from e
        except httpx.RequestError as e:
            raise RollupError(f"Remote rollup unreachable: {e}", booking_id=booking_id, strategy=self.name) from e
        except (KeyError, TypeError, ValueError) as e:
            raise RollupError(
                f"Malformed remote rollup response: {e}", booking_id=booking_id, strategy=self.name
            ) from e

        progress = clamp_percentage(progress)
        await repository.write_booking_progress(booking_id, progress)
        return progress

    def _raise_for_error(self, booking_id: str, response: httpx.Response) -> None:
        try:
            payload = response.json()
        except ValueError:
            payload = {}
        code = str(payload.get("code")) if isinstance(payload, dict) and payload.get("code") is not None else None
        message = str(payload.get("message", response.text)) if isinstance(payload, dict) else response.text

        if is_depth_error(message, code):
            raise ComputationDepthError(message, booking_id=booking_id, strategy=self.name, code=code)
        raise RollupError(
            f"Remote rollup failed with HTTP {response.status_code}: {message}",
            booking_id=booking_id,
            strategy=self.name,
            status_code=response.status_code,
        )


class LocalRollup:
    """Booking aggregator over freshly fetched milestone rows."""

    name = "local"

    async def compute(self, booking_id: str) -> int:
        return await recalculate_booking(booking_id)


class CircuitBreakerState(Enum):
    """Circuit breaker states."""

    CLOSED = "closed"  # Normal operation
    OPEN = "open"  # Primary failing, skip it
    HALF_OPEN = "half_open"  # Trying the primary again


class CircuitBreaker:
    """Skips the primary rollup after repeated consecutive failures."""

    def __init__(self, threshold: int = 5, cooldown: float = 60.0) -> None:
        self.threshold = threshold
        self.cooldown = cooldown
        self.failure_count = 0
        self.last_failure_time = 0.0
        self.state = CircuitBreakerState.CLOSED

    def record_success(self) -> None:
        """Record a successful primary call."""
        self.failure_count = 0
        self.state = CircuitBreakerState.CLOSED

    def record_failure(self) -> None:
        """Record a failed primary call."""
        self.failure_count += 1
        self.last_failure_time = time.monotonic()

        if self.failure_count >= self.threshold:
            if self.state != CircuitBreakerState.OPEN:
                logger.warning(
                    "rollup_circuit_breaker_opened",
                    extra={"failure_count": self.failure_count, "cooldown": self.cooldown},
                )
            self.state = CircuitBreakerState.OPEN

    def can_attempt(self) -> bool:
        """Check if the primary may be called."""
        if self.state == CircuitBreakerState.CLOSED:
            return True

        if self.state == CircuitBreakerState.OPEN:
            if time.monotonic() - self.last_failure_time >= self.cooldown:
                self.state = CircuitBreakerState.HALF_OPEN
                logger.info("rollup_circuit_breaker_half_open", extra={"cooldown_elapsed": True})
                return True
            return False

        # HALF_OPEN: one trial call decides
        return True


class FallbackReason(StrEnum):
    """Why the fallback rollup ran."""

    TIMEOUT = "timeout"
    COMPUTATION_DEPTH = "computation_depth"
    PRIMARY_ERROR = "primary_error"
    CIRCUIT_OPEN = "circuit_open"


class RollupPolicy:
    """Timeout, error-kind matching and circuit breaking for the primary rollup.

    The decisions are plain methods so they can be tested without any I/O.
    """

    def __init__(self, *, timeout_seconds: float = 3.0, breaker: CircuitBreaker | None = None) -> None:
        self.timeout_seconds = timeout_seconds
        self.breaker = breaker or CircuitBreaker()

    def should_attempt_primary(self) -> bool:
        """Whether the primary should be tried at all."""
        return self.breaker.can_attempt()

    def classify_failure(self, error: BaseException) -> FallbackReason:
        """Map a primary failure to the reason recorded for the fallback."""
        if isinstance(error, RollupTimeoutError | asyncio.TimeoutError):
            return FallbackReason.TIMEOUT
        if isinstance(error, ComputationDepthError):
            return FallbackReason.COMPUTATION_DEPTH
        return FallbackReason.PRIMARY_ERROR

    def record_primary_success(self) -> None:
        """Close the breaker after a primary success."""
        self.breaker.record_success()

    def record_primary_failure(self, error: BaseException) -> FallbackReason:
        """Count a primary failure and return the fallback reason."""
        self.breaker.record_failure()
        return self.classify_failure(error)


def _discard_late_result(task: "asyncio.Task[int]") -> None:
    """Consume the outcome of an abandoned primary call."""
    if task.cancelled():
        return
    error = task.exception()
    if error is not None:
        logger.debug("Abandoned primary rollup finished with error", extra={"error": str(error)})
    else:
        logger.debug("Abandoned primary rollup finished late", extra={"progress": task.result()})


async def compute_with_timeout(strategy: RollupStrategy, booking_id: str, timeout: float) -> int:
    """Run ``strategy.compute`` with an upper bound on its duration.

    On timeout the call is cancelled and abandoned: its eventual outcome is
    consumed by a done-callback and never awaited.

    Raises:
        RollupTimeoutError: If the strategy does not finish within ``timeout`` seconds
    """
    task = asyncio.create_task(strategy.compute(booking_id), name=f"rollup:{strategy.name}:{booking_id}")
    try:
        done, _ = await asyncio.wait({task}, timeout=timeout)
    except asyncio.CancelledError:
        task.cancel()
        task.add_done_callback(_discard_late_result)
        raise

    if task in done:
        return task.result()

    task.cancel()
    task.add_done_callback(_discard_late_result)
    msg = f"Primary rollup '{strategy.name}' exceeded {timeout:.2f}s"
    raise RollupTimeoutError(msg, booking_id=booking_id, strategy=strategy.name, timeout=timeout)


def default_primary() -> RollupStrategy:
    """The configured primary strategy: remote service if set, else the database aggregate."""
    if settings.rollup_service_url:
        return RemoteRollup(settings.rollup_service_url, settings.rollup_service_api_key)
    return DatabaseRollup()


# Global policy instance; the breaker state is shared by all cascades
_rollup_policy: RollupPolicy | None = None


def get_rollup_policy() -> RollupPolicy:
    """Get or create the global rollup policy."""
    global _rollup_policy  # noqa: PLW0603
    if _rollup_policy is None:
        _rollup_policy = RollupPolicy(
            timeout_seconds=settings.primary_rollup_timeout_seconds,
            breaker=CircuitBreaker(
                threshold=settings.rollup_circuit_breaker_threshold,
                cooldown=settings.rollup_circuit_breaker_cooldown_seconds,
            ),
        )
    return _rollup_policy


def reset_rollup_policy() -> None:
    """Drop the global policy so the next call rebuilds it from settings."""
    global _rollup_policy  # noqa: PLW0603
    _rollup_policy = None
