"""Error types and classification for the progress engine.

Authoritative-write errors (invalid transition, unknown entity) abort before any
write. Derived-layer errors (rollup, aggregation reads) are downgraded to
advisories attached to an otherwise successful result.
"""

from enum import Enum
from typing import Any

from pydantic import BaseModel


class ProgressEngineError(Exception):
    """Base error for the progress engine."""

    def __init__(self, message: str, **context: Any) -> None:
        self.message = message
        self.context: dict[str, Any] = context
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        """Serialize error to a JSON-compatible dict."""
        return {
            "error_type": type(self).__name__,
            "message": self.message,
            "context": {k: str(v) for k, v in self.context.items()},
        }


class InvalidTransitionError(ProgressEngineError, ValueError):
    """Requested status change is not an edge of the transition graph."""

    def __init__(
        self,
        *,
        kind: str,
        entity_id: str,
        current_status: str,
        attempted_status: str,
        allowed: frozenset[str] | set[str] = frozenset(),
    ) -> None:
        self.kind = kind
        self.entity_id = entity_id
        self.current_status = current_status
        self.attempted_status = attempted_status
        self.allowed = sorted(allowed)
        super().__init__(
            f"Cannot transition {kind} {entity_id} from {current_status} to {attempted_status}",
            kind=kind,
            entity_id=entity_id,
        )

    def to_dict(self) -> dict[str, Any]:
        d = super().to_dict()
        d["current_status"] = self.current_status
        d["attempted_status"] = self.attempted_status
        d["allowed_transitions"] = self.allowed
        return d


class EntityNotFoundError(ProgressEngineError, KeyError):
    """Entity id does not exist."""

    def __init__(self, *, kind: str, entity_id: str) -> None:
        self.kind = kind
        self.entity_id = entity_id
        super().__init__(f"{kind.capitalize()} not found: {entity_id}", kind=kind, entity_id=entity_id)

    def __str__(self) -> str:
        return self.message


class AggregationReadError(ProgressEngineError):
    """An aggregator could not fetch the child rows it rolls up."""


class RollupError(ProgressEngineError):
    """A booking rollup strategy failed."""


class RollupTimeoutError(RollupError):
    """The primary rollup did not answer within its timeout."""


class ComputationDepthError(RollupError):
    """The primary rollup reported a recursion / stack depth overflow."""


class CascadeIncomplete(ProgressEngineError):  # noqa: N818
    """Both rollup strategies failed; the entity write stands, the cache is stale.

    Attached to mutation results as an advisory rather than raised.
    """


class ErrorSeverity(Enum):
    """Severity levels for errors."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ErrorCode:
    """Error codes surfaced at the transport boundary."""

    ERR_INVALID_TRANSITION = "INVALID_TRANSITION"
    ERR_TASK_NOT_FOUND = "TASK_NOT_FOUND"
    ERR_MILESTONE_NOT_FOUND = "MILESTONE_NOT_FOUND"
    ERR_BOOKING_NOT_FOUND = "BOOKING_NOT_FOUND"
    ERR_VALIDATION = "VALIDATION_ERROR"
    ERR_CASCADE_INCOMPLETE = "CASCADE_INCOMPLETE"
    ERR_STORAGE = "STORAGE_ERROR"
    ERR_UNKNOWN = "INTERNAL_ERROR"


class ErrorResponse(BaseModel):
    """Structured error response with user-friendly messaging."""

    code: str
    message: str
    suggestion: str
    severity: ErrorSeverity
    http_status: int
    details: dict[str, Any] | None = None


_NOT_FOUND_CODES = {
    "task": ErrorCode.ERR_TASK_NOT_FOUND,
    "milestone": ErrorCode.ERR_MILESTONE_NOT_FOUND,
    "booking": ErrorCode.ERR_BOOKING_NOT_FOUND,
}


def classify_error_with_response(exception: Exception) -> ErrorResponse:
    """Classify an error and return a structured response with recovery suggestions.

    Args:
        exception: The exception raised while handling a request

    Returns:
        ErrorResponse with code, message, suggestion, severity and HTTP status
    """
    if isinstance(exception, InvalidTransitionError):
        return ErrorResponse(
            code=ErrorCode.ERR_INVALID_TRANSITION,
            message=exception.message,
            suggestion=(
                f"Allowed next statuses: {', '.join(exception.allowed)}"
                if exception.allowed
                else f"{exception.current_status} is terminal; no further status changes are possible."
            ),
            severity=ErrorSeverity.LOW,
            http_status=422,
            details=exception.to_dict(),
        )

    if isinstance(exception, EntityNotFoundError):
        return ErrorResponse(
            code=_NOT_FOUND_CODES.get(exception.kind, ErrorCode.ERR_UNKNOWN),
            message=exception.message,
            suggestion="Check the id and try again.",
            severity=ErrorSeverity.LOW,
            http_status=404,
        )

    if isinstance(exception, CascadeIncomplete):
        return ErrorResponse(
            code=ErrorCode.ERR_CASCADE_INCOMPLETE,
            message="The change was saved but overall progress could not be refreshed.",
            suggestion="Trigger a recalculation for the booking later.",
            severity=ErrorSeverity.MEDIUM,
            http_status=200,
            details=exception.to_dict(),
        )

    if isinstance(exception, ValueError):
        return ErrorResponse(
            code=ErrorCode.ERR_VALIDATION,
            message=str(exception),
            suggestion="Fix the request fields and try again.",
            severity=ErrorSeverity.LOW,
            http_status=422,
        )

    if isinstance(exception, RuntimeError):
        return ErrorResponse(
            code=ErrorCode.ERR_STORAGE,
            message="Storage is temporarily unavailable.",
            suggestion="Please try again later.",
            severity=ErrorSeverity.HIGH,
            http_status=503,
        )

    return ErrorResponse(
        code=ErrorCode.ERR_UNKNOWN,
        message="An unexpected error occurred.",
        suggestion="Please try again later. If the problem persists, contact support.",
        severity=ErrorSeverity.MEDIUM,
        http_status=500,
    )
