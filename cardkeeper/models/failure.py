"""
Failure Classification — Error Taxonomy for the Card Availability Service.

Every failure that can leave a service boundary is one of these classes.

Policy:
- ValidationError: bad input shape, raised BEFORE any store access
- NotFoundError: record absent
- CardAlreadyIssuedError: commit-unit check found the card already used
- StoreUnavailableError: ledger store missing or failing (alerted)
- CacheCorruptionError: internal only, always recovered as a cache miss
- TimeBudgetExceededError: internal only, partial scan result (alerted, not cached)

Validation, not-found and conflict errors are returned to callers as
structured failures. Read paths degrade to safe defaults instead of raising.
"""

from enum import Enum

from pydantic import BaseModel, Field


class FailureKind(str, Enum):
    """Classification of failure types."""

    # Input validation failures
    INVALID_INPUT = "invalid_input"

    # Resource failures
    NOT_FOUND = "not_found"

    # Constraint violations
    ALREADY_TAKEN = "already_taken"

    # Cache and scan failures (internal)
    CACHE_CORRUPTION = "cache_corruption"
    TIME_BUDGET_EXCEEDED = "time_budget_exceeded"

    # Service failures
    SERVICE_UNAVAILABLE = "service_unavailable"


class FailureDetail(BaseModel):
    """Detailed information about a failure."""

    kind: FailureKind = Field(
        ...,
        description="Classification of the failure",
    )
    message: str = Field(
        ...,
        description="User-appropriate explanation of what went wrong",
    )
    detail: str | None = Field(
        default=None,
        description="Additional technical detail (optional)",
    )
    suggestion: str | None = Field(
        default=None,
        description="Suggested action for the user",
    )


class KnownError(Exception):
    """
    Base class for exceptions that represent known, explainable failures.

    Subclass this for errors where the system knows exactly what went wrong.
    """

    def __init__(
        self,
        kind: FailureKind,
        message: str,
        detail: str | None = None,
        suggestion: str | None = None,
        status_code: int = 400,
    ):
        self.kind = kind
        self.message = message
        self.detail = detail
        self.suggestion = suggestion
        self.status_code = status_code
        super().__init__(message)

    def to_detail(self) -> FailureDetail:
        """Convert to a FailureDetail for API responses."""
        return FailureDetail(
            kind=self.kind,
            message=self.message,
            detail=self.detail,
            suggestion=self.suggestion,
        )


class ValidationError(KnownError):
    """Request input is malformed. Never raised after store access began."""

    def __init__(self, message: str, detail: str | None = None):
        super().__init__(
            kind=FailureKind.INVALID_INPUT,
            message=message,
            detail=detail,
            suggestion="Check the request fields and try again.",
            status_code=400,
        )


class NotFoundError(KnownError):
    """A requested record does not exist."""

    def __init__(self, what: str, identifier: str):
        self.what = what
        self.identifier = identifier
        super().__init__(
            kind=FailureKind.NOT_FOUND,
            message=f"{what} not found: {identifier}",
            detail=f"{what}={identifier}",
            status_code=404,
        )


class CardAlreadyIssuedError(KnownError):
    """
    A card in the batch is already recorded as issued.

    Raised by the commit-unit check; the whole batch is rejected.
    """

    def __init__(self, taken: list[str]):
        self.taken = taken
        super().__init__(
            kind=FailureKind.ALREADY_TAKEN,
            message="Card already taken: " + ", ".join(taken),
            detail=f"{len(taken)} card(s) already issued",
            suggestion="Refresh the available card list and pick another card.",
            status_code=409,
        )


class StoreUnavailableError(KnownError):
    """The ledger store is missing or failing."""

    def __init__(self, operation: str, detail: str | None = None):
        self.operation = operation
        super().__init__(
            kind=FailureKind.SERVICE_UNAVAILABLE,
            message=f"Ledger store unavailable during {operation}.",
            detail=detail,
            suggestion="Retry shortly. If this persists, check the database.",
            status_code=503,
        )


class CacheCorruptionError(KnownError):
    """A cached payload could not be deserialized. Always treated as a miss."""

    def __init__(self, key: str, detail: str | None = None):
        self.key = key
        super().__init__(
            kind=FailureKind.CACHE_CORRUPTION,
            message=f"Cache entry '{key}' is corrupt.",
            detail=detail,
            status_code=500,
        )


class TimeBudgetExceededError(KnownError):
    """A ledger scan ran past its wall-clock budget."""

    def __init__(self, elapsed: float, budget: float, rows_scanned: int):
        self.elapsed = elapsed
        self.budget = budget
        self.rows_scanned = rows_scanned
        super().__init__(
            kind=FailureKind.TIME_BUDGET_EXCEEDED,
            message="Usage scan exceeded its time budget; result is partial.",
            detail=f"elapsed={elapsed:.1f}s budget={budget:.1f}s rows={rows_scanned}",
            suggestion="Run the archiver to shrink the active ledgers.",
            status_code=503,
        )
