"""In-memory ledger — a deterministic LedgerClient for tests and dry runs.

Mirrors the on-ledger modules closely enough to exercise every
orchestrator path:
- every Operation is atomic: checks run before any mutation, and an
  abort leaves state untouched
- rejected Operations return FAILURE receipts with (module, code)
  aborts from boxoffice.ledger.aborts
- the settlement policy rule is enforced on purchase: the submitted
  shares must cover the floor split of the policy's basis points

Storage is in-memory only. Raw responses go through decode_receipt, so
the receipt schema is exercised on every call.

Failure injection for tests:
- reject_next(target, abort): next submit of ``target`` is rejected
- fail_transport(target): next submit raises LedgerTransportError
  before executing
- drop_ack(target): next submit executes, then raises
  LedgerTransportError (outcome unknown to the caller)
- fail_queries(n): next n queries raise TransientLookupError
- visibility_lag: new objects stay invisible to this many queries
"""

from __future__ import annotations

import asyncio
import hashlib
from dataclasses import dataclass, field
from typing import Any, Optional

from boxoffice.errors import LedgerTransportError, TransientLookupError
from boxoffice.ledger import aborts
from boxoffice.ledger.receipts import decode_receipt
from boxoffice.models.economics import BASIS_POINTS
from boxoffice.models.ledger import (
    LogicalType,
    ObjectHandle,
    Operation,
    QueryFilter,
    Receipt,
    Target,
)


class _Abort(Exception):
    def __init__(self, abort: tuple[str, int], message: str = "") -> None:
        module, code = abort
        super().__init__(message or aborts.describe_abort(module, code))
        self.module = module
        self.code = code


@dataclass
class LedgerObject:
    """A stored object. ``owner`` is an address or a container id."""
    object_id: str
    logical_type: LogicalType
    owner: Optional[str]
    fields: dict[str, Any] = field(default_factory=dict)
    hidden_polls: int = 0

    @property
    def handle(self) -> ObjectHandle:
        return ObjectHandle(self.object_id, self.logical_type)


class InMemoryLedger:
    """In-process ledger implementing the LedgerClient Protocol.

    Usage:
        ledger = InMemoryLedger()
        ledger.fund("0xbuyer", 1_000_000_000)
        receipt = await ledger.submit(operation)
    """

    def __init__(self, seed: str = "boxoffice", visibility_lag: int = 0) -> None:
        self._seed = seed
        self._counter = 0
        self._objects: dict[str, LedgerObject] = {}
        self._balances: dict[str, int] = {}
        self._visibility_lag = visibility_lag
        self._rejections: dict[str, list[tuple[tuple[str, int], str]]] = {}
        self._transport_failures: dict[str, int] = {}
        self._dropped_acks: dict[str, int] = {}
        self._query_failures = 0
        self.submitted: list[Operation] = []
        self.queries: list[QueryFilter] = []

    # ---- test controls ----

    def fund(self, owner: str, amount: int) -> None:
        self._balances[owner] = self._balances.get(owner, 0) + amount

    def balance(self, owner: str) -> int:
        return self._balances.get(owner, 0)

    def reject_next(self, target: str, abort: tuple[str, int], message: str = "") -> None:
        self._rejections.setdefault(_key(target), []).append((abort, message))

    def fail_transport(self, target: str, times: int = 1) -> None:
        self._transport_failures[_key(target)] = times

    def drop_ack(self, target: str, times: int = 1) -> None:
        self._dropped_acks[_key(target)] = times

    def fail_queries(self, times: int = 1) -> None:
        self._query_failures = times

    def get(self, object_id: str) -> Optional[LedgerObject]:
        return self._objects.get(object_id)

    def objects_of(self, logical_type: LogicalType) -> list[LedgerObject]:
        return [o for o in self._objects.values() if o.logical_type == logical_type]

    def submitted_targets(self) -> list[str]:
        return [op.action for op in self.submitted]

    # ---- LedgerClient ----

    async def submit(self, operation: Operation) -> Receipt:
        await asyncio.sleep(0)
        target = operation.action
        if self._consume(self._transport_failures, target):
            raise LedgerTransportError(f"Connection reset while submitting {target}")
        self.submitted.append(operation)
        raw = self._execute(target, operation)
        if self._consume(self._dropped_acks, target):
            raise LedgerTransportError(f"Timed out waiting for {target} acknowledgement")
        return decode_receipt(raw)

    async def query(self, query_filter: QueryFilter) -> list[ObjectHandle]:
        await asyncio.sleep(0)
        if query_filter.is_empty:
            raise ValueError("Refusing an unfiltered ledger query")
        self.queries.append(query_filter)
        if self._query_failures > 0:
            self._query_failures -= 1
            raise TransientLookupError("Full node unavailable")

        matches: list[ObjectHandle] = []
        for obj in self._objects.values():
            if query_filter.owner is not None and obj.owner != query_filter.owner:
                continue
            if (
                query_filter.logical_type is not None
                and obj.logical_type != query_filter.logical_type
            ):
                continue
            if query_filter.object_ids and obj.object_id not in query_filter.object_ids:
                continue
            if obj.hidden_polls > 0:
                continue
            matches.append(obj.handle)

        for obj in self._objects.values():
            if obj.hidden_polls > 0:
                obj.hidden_polls -= 1
        return matches

    # ---- execution ----

    def _execute(self, target: str, op: Operation) -> dict[str, Any]:
        digest = self._next_id("tx")
        queued = self._rejections.get(target)
        try:
            if queued:
                abort, message = queued.pop(0)
                raise _Abort(abort, message)
            handler = _HANDLERS.get(target)
            if handler is None:
                raise _Abort(("ledger", 0), f"Unknown target {target}")
            created, balance_changes = handler(self, op)
        except _Abort as exc:
            return {
                "digest": digest,
                "status": "failure",
                "error": {"message": str(exc), "code": exc.code, "module": exc.module},
            }
        return {
            "digest": digest,
            "status": "success",
            "created": [
                {"object_id": o.object_id, "object_type": o.logical_type.value}
                for o in created
            ],
            "balance_changes": [
                {"owner": owner, "amount": amount} for owner, amount in balance_changes
            ],
        }

    def _next_id(self, kind: str) -> str:
        self._counter += 1
        raw = f"{self._seed}:{kind}:{self._counter}".encode("utf-8")
        return "0x" + hashlib.sha256(raw).hexdigest()

    def _new(
        self,
        logical_type: LogicalType,
        owner: Optional[str],
        **fields: Any,
    ) -> LedgerObject:
        obj = LedgerObject(
            object_id=self._next_id(logical_type.value),
            logical_type=logical_type,
            owner=owner,
            fields=fields,
            hidden_polls=self._visibility_lag,
        )
        self._objects[obj.object_id] = obj
        return obj

    def _require(self, object_id: str, logical_type: LogicalType) -> LedgerObject:
        obj = self._objects.get(object_id)
        if obj is None or obj.logical_type != logical_type:
            raise _Abort(("ledger", 404), f"No {logical_type.value} object {object_id}")
        return obj

    @staticmethod
    def _consume(counter: dict[str, int], target: str) -> bool:
        remaining = counter.get(target, 0)
        if remaining <= 0:
            return False
        counter[target] = remaining - 1
        return True

    # ---- handlers: validate first, mutate after ----

    def _event_new(self, op: Operation):
        if op.arg("starts_at") >= op.arg("ends_at"):
            raise _Abort(aborts.E_INVALID_WINDOW)
        event = self._new(
            LogicalType.EVENT,
            op.sender,
            name=op.arg("name"),
            starts_at=op.arg("starts_at"),
            ends_at=op.arg("ends_at"),
            poster=op.arg("poster"),
        )
        return [event], []

    def _class_new(self, op: Operation):
        event = self._require(op.arg("event"), LogicalType.EVENT)
        if event.owner != op.sender:
            raise _Abort(("event", 2), "Only the organizer can add ticket classes")
        count = op.arg("variants")
        variants = []
        for i in range(count):
            supply = op.arg(f"supply.{i}")
            if supply <= 0:
                raise _Abort(aborts.E_ZERO_SUPPLY)
            variants.append((op.arg(f"label.{i}"), op.arg(f"price.{i}"), supply))
        created = [
            self._new(
                LogicalType.TICKET_CLASS,
                op.sender,
                event=event.object_id,
                label=label,
                price=price,
                supply=supply,
                minted=0,
            )
            for label, price, supply in variants
        ]
        return created, []

    def _ticket_mint(self, op: Operation):
        ticket_class = self._require(op.arg("class"), LogicalType.TICKET_CLASS)
        if ticket_class.owner != op.sender:
            raise _Abort(("class", 1), "Only the organizer can mint")
        if ticket_class.fields["minted"] >= ticket_class.fields["supply"]:
            raise _Abort(aborts.E_SOLD_OUT)
        ticket_class.fields["minted"] += 1
        ticket = self._new(
            LogicalType.TICKET,
            op.arg("recipient"),
            ticket_class=ticket_class.object_id,
            msrp=ticket_class.fields["price"],
            used=False,
            listing=None,
        )
        return [ticket], []

    def _ticket_burn(self, op: Operation):
        ticket = self._require(op.arg("ticket"), LogicalType.TICKET)
        if ticket.fields["listing"] is not None:
            raise _Abort(aborts.E_TICKET_LISTED)
        if ticket.owner != op.sender:
            raise _Abort(aborts.E_NOT_HOLDER)
        del self._objects[ticket.object_id]
        return [], []

    def _ticket_mark_used(self, op: Operation):
        ticket = self._require(op.arg("ticket"), LogicalType.TICKET)
        if ticket.owner != op.sender:
            raise _Abort(aborts.E_NOT_HOLDER)
        if ticket.fields["used"]:
            raise _Abort(aborts.E_ALREADY_USED)
        ticket.fields["used"] = True
        return [], []

    def _container_create(self, op: Operation):
        return [self._new(LogicalType.CONTAINER, op.sender)], []

    def _place_and_list(self, op: Operation):
        container = self._require(op.arg("container"), LogicalType.CONTAINER)
        ticket = self._require(op.arg("ticket"), LogicalType.TICKET)
        if container.owner != op.sender:
            raise _Abort(aborts.E_NOT_OWNER)
        if ticket.fields["listing"] is not None:
            raise _Abort(aborts.E_ALREADY_LISTED)
        if ticket.owner != op.sender:
            raise _Abort(aborts.E_NOT_HOLDER)
        if ticket.fields["used"]:
            raise _Abort(aborts.E_ALREADY_USED)
        listing = self._new(
            LogicalType.LISTING,
            container.object_id,
            ticket=ticket.object_id,
            price=op.arg("price"),
            seller=op.sender,
        )
        ticket.owner = container.object_id
        ticket.fields["listing"] = listing.object_id
        return [listing], []

    def _delist(self, op: Operation):
        container = self._require(op.arg("container"), LogicalType.CONTAINER)
        ticket = self._require(op.arg("ticket"), LogicalType.TICKET)
        if container.owner != op.sender:
            raise _Abort(aborts.E_NOT_OWNER)
        if ticket.fields["listing"] is None or ticket.owner != container.object_id:
            raise _Abort(aborts.E_NOT_LISTED)
        del self._objects[ticket.fields["listing"]]
        ticket.fields["listing"] = None
        ticket.owner = op.sender
        return [], []

    def _purchase_and_settle(self, op: Operation):
        container = self._require(op.arg("container"), LogicalType.CONTAINER)
        ticket = self._require(op.arg("ticket"), LogicalType.TICKET)
        if ticket.owner != container.object_id or ticket.fields["listing"] is None:
            raise _Abort(aborts.E_NOT_LISTED)
        listing = self._objects[ticket.fields["listing"]]
        payment = op.arg("payment")
        buyer = op.arg("buyer")
        if payment != listing.fields["price"]:
            raise _Abort(aborts.E_INCORRECT_AMOUNT)
        if self.balance(buyer) < payment:
            raise _Abort(aborts.E_INSUFFICIENT_FUNDS)

        policy = self._objects.get(op.arg("policy"))
        if policy is None or policy.logical_type != LogicalType.SETTLEMENT_POLICY:
            raise _Abort(aborts.E_POLICY_MISMATCH)
        shares = dict(op.arg("shares"))
        tax = op.arg("tax")
        rule: dict[str, int] = dict(policy.fields["basis_points"])
        distributable = payment - tax
        if set(shares) != set(rule) or sum(shares.values()) + tax != payment:
            raise _Abort(aborts.E_RULE_NOT_SATISFIED)
        for recipient, bp in rule.items():
            if shares[recipient] < (distributable * bp) // BASIS_POINTS:
                raise _Abort(aborts.E_RULE_NOT_SATISFIED)

        payouts = dict(shares)
        if tax:
            tax_recipient = op.arg("tax_recipient")
            payouts[tax_recipient] = payouts.get(tax_recipient, 0) + tax
        self._balances[buyer] = self.balance(buyer) - payment
        for recipient, amount in payouts.items():
            self.fund(recipient, amount)
        del self._objects[listing.object_id]
        ticket.fields["listing"] = None
        ticket.owner = buyer
        record = self._new(
            LogicalType.SETTLEMENT_RECORD,
            buyer,
            ticket=ticket.object_id,
            payment=payment,
            seller=listing.fields["seller"],
        )
        changes = [(buyer, -payment)] + list(payouts.items())
        return [record], changes

    def _policy_create(self, op: Operation):
        rule = dict(op.arg("shares"))
        if sum(rule.values()) != BASIS_POINTS:
            raise _Abort(aborts.E_RULE_NOT_SATISFIED, "Policy basis points must sum to 10000")
        policy = self._new(
            LogicalType.SETTLEMENT_POLICY,
            None,
            basis_points=tuple(rule.items()),
            admin=op.sender,
        )
        return [policy], []


def _key(target: Any) -> str:
    return target.value if isinstance(target, Target) else target


_HANDLERS = {
    Target.EVENT_NEW.value: InMemoryLedger._event_new,
    Target.CLASS_NEW.value: InMemoryLedger._class_new,
    Target.TICKET_MINT.value: InMemoryLedger._ticket_mint,
    Target.TICKET_BURN.value: InMemoryLedger._ticket_burn,
    Target.TICKET_MARK_USED.value: InMemoryLedger._ticket_mark_used,
    Target.CONTAINER_CREATE.value: InMemoryLedger._container_create,
    Target.PLACE_AND_LIST.value: InMemoryLedger._place_and_list,
    Target.DELIST.value: InMemoryLedger._delist,
    Target.PURCHASE_AND_SETTLE.value: InMemoryLedger._purchase_and_settle,
    Target.POLICY_CREATE.value: InMemoryLedger._policy_create,
}
