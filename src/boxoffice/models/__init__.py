"""Core data models for boxoffice."""

from boxoffice.models.economics import (
    BaselineSource,
    SettlementPlan,
    SplitConfig,
    SplitShare,
    TaxConfig,
    TaxTier,
)
from boxoffice.models.ledger import (
    Argument,
    ArgKind,
    BalanceDelta,
    LedgerErrorDetail,
    LogicalType,
    ObjectHandle,
    Operation,
    QueryFilter,
    Target,
    Receipt,
    ReceiptStatus,
)
from boxoffice.models.sequence import (
    HandleSpec,
    ProgressEvent,
    RunState,
    SequenceRun,
    Stage,
    StageStatus,
)

__all__ = [
    "BaselineSource",
    "SettlementPlan",
    "SplitConfig",
    "SplitShare",
    "TaxConfig",
    "TaxTier",
    "Argument",
    "ArgKind",
    "BalanceDelta",
    "LedgerErrorDetail",
    "LogicalType",
    "ObjectHandle",
    "Operation",
    "QueryFilter",
    "Target",
    "Receipt",
    "ReceiptStatus",
    "HandleSpec",
    "ProgressEvent",
    "RunState",
    "SequenceRun",
    "Stage",
    "StageStatus",
]
