from cardkeeper.models.card import CardKey, CardType, IssueMode, empty_inventory
from cardkeeper.models.failure import (
    CacheCorruptionError,
    CardAlreadyIssuedError,
    FailureDetail,
    FailureKind,
    KnownError,
    NotFoundError,
    StoreUnavailableError,
    TimeBudgetExceededError,
    ValidationError,
)
from cardkeeper.models.ledger import (
    AUDIT_LAYOUT,
    DISTRIBUTION_LAYOUT,
    AuditRow,
    DistributionRow,
    IssuanceRequest,
    IssuedCard,
    LedgerLayout,
)

__all__ = [
    "AUDIT_LAYOUT",
    "DISTRIBUTION_LAYOUT",
    "AuditRow",
    "CacheCorruptionError",
    "CardAlreadyIssuedError",
    "CardKey",
    "CardType",
    "DistributionRow",
    "FailureDetail",
    "FailureKind",
    "IssuanceRequest",
    "IssueMode",
    "IssuedCard",
    "KnownError",
    "LedgerLayout",
    "NotFoundError",
    "StoreUnavailableError",
    "TimeBudgetExceededError",
    "ValidationError",
    "empty_inventory",
]
