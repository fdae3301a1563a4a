"""Ledger models — operations, receipts, and object handles.

An Operation is one atomic unit of work; a Receipt is the ledger's
outcome report for it. Handles are never guessed client-side: every
ObjectHandle in this package comes out of a decoded Receipt or a
ledger query.

All amounts are integers in the ledger's smallest unit. No floats.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Any, Optional


class LogicalType(str, enum.Enum):
    """Logical type tag of a ledger-resident object."""
    EVENT = "event"
    TICKET_CLASS = "ticket_class"
    TICKET = "ticket"
    CONTAINER = "container"
    LISTING = "listing"
    SETTLEMENT_POLICY = "settlement_policy"
    SETTLEMENT_RECORD = "settlement_record"


class Target(str, enum.Enum):
    """Ledger actions the orchestrator submits."""
    EVENT_NEW = "event::new"
    CLASS_NEW = "class::new"
    TICKET_MINT = "ticket::mint"
    TICKET_BURN = "ticket::burn"
    TICKET_MARK_USED = "ticket::mark_used"
    CONTAINER_CREATE = "container::create"
    PLACE_AND_LIST = "container::place_and_list"
    DELIST = "container::delist"
    PURCHASE_AND_SETTLE = "container::purchase_and_settle"
    POLICY_CREATE = "policy::create"


class ReceiptStatus(str, enum.Enum):
    SUCCESS = "success"
    FAILURE = "failure"


class ArgKind(str, enum.Enum):
    """Type of an Operation argument as the ledger sees it."""
    OBJECT = "object"
    U64 = "u64"
    STRING = "string"
    ADDRESS = "address"
    SHARES = "shares"


@dataclass(frozen=True)
class ObjectHandle:
    """Opaque identifier of a ledger object, tagged with its logical type."""
    object_id: str
    logical_type: LogicalType

    def __str__(self) -> str:
        return self.object_id


@dataclass(frozen=True)
class Argument:
    """One typed argument of an Operation."""
    name: str
    kind: ArgKind
    value: Any

    @staticmethod
    def object(name: str, handle: ObjectHandle) -> Argument:
        return Argument(name, ArgKind.OBJECT, handle.object_id)

    @staticmethod
    def u64(name: str, value: int) -> Argument:
        if value < 0:
            raise ValueError(f"u64 argument {name} cannot be negative: {value}")
        return Argument(name, ArgKind.U64, int(value))

    @staticmethod
    def string(name: str, value: str) -> Argument:
        return Argument(name, ArgKind.STRING, value)

    @staticmethod
    def address(name: str, value: str) -> Argument:
        return Argument(name, ArgKind.ADDRESS, value)

    @staticmethod
    def shares(name: str, value: dict[str, int]) -> Argument:
        # Stored as a tuple of pairs so the Operation stays hashable.
        return Argument(name, ArgKind.SHARES, tuple(value.items()))


@dataclass(frozen=True)
class Operation:
    """Immutable description of one unit of work submitted to the ledger.

    Created fresh per stage and never mutated after submission.
    """
    target: str
    sender: str
    arguments: tuple[Argument, ...] = ()
    budget: int = 0

    def arg(self, name: str) -> Any:
        """Return the value of the named argument (KeyError if absent)."""
        for argument in self.arguments:
            if argument.name == name:
                return argument.value
        raise KeyError(f"Operation {self.target} has no argument {name!r}")

    @property
    def action(self) -> str:
        """Target as a plain string ('module::function')."""
        return self.target.value if isinstance(self.target, enum.Enum) else self.target


@dataclass(frozen=True)
class BalanceDelta:
    """Signed balance change for one owner, in smallest units."""
    owner: str
    amount: int


@dataclass(frozen=True)
class LedgerErrorDetail:
    """Ledger-native failure detail carried by a failed Receipt."""
    message: str
    code: Optional[int] = None
    module: Optional[str] = None


@dataclass(frozen=True)
class Receipt:
    """The ledger's response to one Operation.

    Consumed once by the Sequencer to extract handles, then discarded
    (or surfaced to the caller on failure).
    """
    digest: str
    status: ReceiptStatus
    created: tuple[ObjectHandle, ...] = ()
    balance_deltas: tuple[BalanceDelta, ...] = ()
    error: Optional[LedgerErrorDetail] = None

    @property
    def ok(self) -> bool:
        return self.status == ReceiptStatus.SUCCESS

    def created_of(self, logical_type: LogicalType) -> list[ObjectHandle]:
        """Created handles of one logical type, in ledger order."""
        return [h for h in self.created if h.logical_type == logical_type]

    def delta_for(self, owner: str) -> int:
        """Net balance change for an owner (0 if absent)."""
        return sum(d.amount for d in self.balance_deltas if d.owner == owner)


@dataclass(frozen=True)
class QueryFilter:
    """Filter for LedgerClient.query.

    Every set field narrows the result; an empty filter is rejected by
    ledger implementations.
    """
    owner: Optional[str] = None
    logical_type: Optional[LogicalType] = None
    object_ids: tuple[str, ...] = field(default_factory=tuple)

    @property
    def is_empty(self) -> bool:
        return self.owner is None and self.logical_type is None and not self.object_ids
