"""Intents — expand a high-level request into an ordered stage list.

Publish (five stages, not atomic across stages):
    create_event      event::new                 → event_id
    create_classes    class::new (all variants)  → class_id, class_id.1, …
    mint_ticket       ticket::mint (primary)     → instance_id
    resolve_container ContainerResolver          → container_id
    list_ticket       container::place_and_list  → listing_id

Purchase-and-settle (one stage, atomic):
    purchase_and_settle  container::purchase_and_settle → settlement_id

Check-in (one stage):
    check_in             ticket::mark_used

Retract (compensation for a partial publish, produces nothing):
    delist_ticket        container::delist   (if listed)
    burn_ticket          ticket::burn        (if minted)

Request validation happens here, before a run exists: a bad request
raises ValidationError and nothing is built or submitted.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Mapping, Optional

from boxoffice.errors import InvalidConfiguration, ValidationError
from boxoffice.models.economics import SettlementPlan
from boxoffice.models.ledger import (
    Argument,
    LogicalType,
    ObjectHandle,
    Operation,
    Receipt,
    Target,
)
from boxoffice.models.sequence import HandleMap, HandleSpec, Stage
from boxoffice.orchestration.containers import ContainerResolver

PUBLISH = "publish"
PURCHASE = "purchase"
CHECK_IN = "check_in"
RETRACT = "retract"


@dataclass(frozen=True)
class OperationBudgets:
    """Resource budget per ledger action, in the ledger's fee unit."""
    event: int = 5_000_000
    ticket_class: int = 5_000_000
    mint: int = 5_000_000
    container: int = 10_000_000
    listing: int = 10_000_000
    purchase: int = 20_000_000
    check_in: int = 5_000_000
    delist: int = 10_000_000
    burn: int = 5_000_000
    policy: int = 50_000_000

    @staticmethod
    def from_dict(data: Mapping[str, int]) -> OperationBudgets:
        defaults = OperationBudgets()
        values = {}
        for name in defaults.__dataclass_fields__:
            value = int(data.get(name, getattr(defaults, name)))
            if value <= 0:
                raise InvalidConfiguration(
                    f"Budget for {name} must be positive, got {value}"
                )
            values[name] = value
        return OperationBudgets(**values)


@dataclass(frozen=True)
class TicketVariant:
    """One ticket class of an event: price per ticket and total supply."""
    label: str
    price: int
    supply: int


@dataclass(frozen=True)
class PublishRequest:
    """Everything needed to publish a sellable ticket.

    The first variant is the primary one: its ticket is minted and
    listed at its price.
    """
    organizer: str
    name: str
    starts_at: int
    ends_at: int
    variants: tuple[TicketVariant, ...]
    poster_url: str = ""

    @property
    def primary(self) -> TicketVariant:
        return self.variants[0]

    def validate(self) -> None:
        """Raise ValidationError for anything the ledger would reject."""
        if not self.organizer:
            raise ValidationError("Organizer address is required")
        if not self.name.strip():
            raise ValidationError("Event name is required")
        if self.starts_at < 0 or self.ends_at < 0:
            raise ValidationError(
                f"Event times cannot be negative ({self.starts_at}, {self.ends_at})"
            )
        if self.starts_at >= self.ends_at:
            raise ValidationError(
                f"Event must start before it ends ({self.starts_at} >= {self.ends_at})"
            )
        if not self.variants:
            raise ValidationError("At least one ticket variant is required")
        labels = [v.label for v in self.variants]
        if len(set(labels)) != len(labels):
            raise ValidationError(f"Duplicate variant labels: {labels}")
        for variant in self.variants:
            if variant.price <= 0:
                raise ValidationError(
                    f"Price for {variant.label!r} must be positive, got {variant.price}"
                )
            if variant.supply <= 0:
                raise ValidationError(
                    f"Supply for {variant.label!r} must be positive, got {variant.supply}"
                )


@dataclass(frozen=True)
class PurchaseRequest:
    """A buyer's purchase of one listed ticket under a settlement plan."""
    buyer: str
    container: ObjectHandle
    ticket: ObjectHandle
    plan: SettlementPlan
    policy: ObjectHandle

    def validate(self) -> None:
        if not self.buyer:
            raise ValidationError("Buyer address is required")
        if self.container.logical_type != LogicalType.CONTAINER:
            raise ValidationError(f"Not a container handle: {self.container}")
        if self.ticket.logical_type != LogicalType.TICKET:
            raise ValidationError(f"Not a ticket handle: {self.ticket}")
        if self.policy.logical_type != LogicalType.SETTLEMENT_POLICY:
            raise ValidationError(f"Not a settlement policy handle: {self.policy}")
        if self.plan.distributed != self.plan.asking_amount:
            raise ValidationError(
                f"Settlement plan distributes {self.plan.distributed}, "
                f"asking price is {self.plan.asking_amount}"
            )


def class_keys(count: int) -> list[str]:
    """Handle keys for ``count`` ticket classes: class_id, class_id.1, …"""
    return ["class_id"] + [f"class_id.{i}" for i in range(1, count)]


def _requires(*keys: str):
    def validate(handles: HandleMap) -> None:
        missing = [k for k in keys if k not in handles]
        if missing:
            raise ValidationError(f"Missing handle(s) from earlier stages: {missing}")
    return validate


def publish_stages(
    request: PublishRequest,
    containers: ContainerResolver,
    budgets: Optional[OperationBudgets] = None,
) -> list[Stage]:
    """Stages for the publish intent.

    Raises:
        ValidationError: if the request is invalid.
    """
    request.validate()
    budgets = budgets or OperationBudgets()
    organizer = request.organizer
    keys = class_keys(len(request.variants))

    def create_event(handles: HandleMap) -> Operation:
        return Operation(
            target=Target.EVENT_NEW,
            sender=organizer,
            arguments=(
                Argument.string("name", request.name),
                Argument.u64("starts_at", request.starts_at),
                Argument.u64("ends_at", request.ends_at),
                Argument.string("poster", request.poster_url),
            ),
            budget=budgets.event,
        )

    def create_classes(handles: HandleMap) -> Operation:
        arguments = [
            Argument.object("event", handles["event_id"]),
            Argument.u64("variants", len(request.variants)),
        ]
        for i, variant in enumerate(request.variants):
            arguments += [
                Argument.string(f"label.{i}", variant.label),
                Argument.u64(f"price.{i}", variant.price),
                Argument.u64(f"supply.{i}", variant.supply),
            ]
        return Operation(
            target=Target.CLASS_NEW,
            sender=organizer,
            arguments=tuple(arguments),
            budget=budgets.ticket_class,
        )

    def mint_ticket(handles: HandleMap) -> Operation:
        return Operation(
            target=Target.TICKET_MINT,
            sender=organizer,
            arguments=(
                Argument.object("class", handles["class_id"]),
                Argument.address("recipient", organizer),
            ),
            budget=budgets.mint,
        )

    def list_ticket(handles: HandleMap) -> Operation:
        return Operation(
            target=Target.PLACE_AND_LIST,
            sender=organizer,
            arguments=(
                Argument.object("container", handles["container_id"]),
                Argument.object("ticket", handles["instance_id"]),
                Argument.u64("price", request.primary.price),
            ),
            budget=budgets.listing,
        )

    return [
        Stage(
            stage_id="create_event",
            produces=(HandleSpec("event_id", LogicalType.EVENT),),
            build=create_event,
            await_finality=True,
        ),
        Stage(
            stage_id="create_classes",
            produces=tuple(HandleSpec(k, LogicalType.TICKET_CLASS) for k in keys),
            build=create_classes,
            validate=_requires("event_id"),
            await_finality=True,
        ),
        Stage(
            stage_id="mint_ticket",
            produces=(HandleSpec("instance_id", LogicalType.TICKET),),
            build=mint_ticket,
            validate=_requires("class_id"),
            await_finality=True,
        ),
        containers.stage(organizer),
        Stage(
            stage_id="list_ticket",
            produces=(HandleSpec("listing_id", LogicalType.LISTING),),
            build=list_ticket,
            validate=_requires("container_id", "instance_id"),
        ),
    ]


def purchase_stages(
    request: PurchaseRequest,
    budgets: Optional[OperationBudgets] = None,
    on_receipt: Optional[Callable[[Receipt], None]] = None,
) -> list[Stage]:
    """The single atomic purchase-and-settle stage.

    ``on_receipt`` sees the settlement receipt (balance deltas included).

    Raises:
        ValidationError: if the request is invalid.
    """
    request.validate()
    budgets = budgets or OperationBudgets()
    plan = request.plan

    def purchase(handles: HandleMap) -> Operation:
        arguments = [
            Argument.address("buyer", request.buyer),
            Argument.object("container", request.container),
            Argument.object("ticket", request.ticket),
            Argument.u64("payment", plan.asking_amount),
            Argument.object("policy", request.policy),
            Argument.shares("shares", plan.shares),
            Argument.u64("tax", plan.tax_amount),
        ]
        if plan.tax_amount and plan.tax_recipient:
            arguments.append(Argument.address("tax_recipient", plan.tax_recipient))
        return Operation(
            target=Target.PURCHASE_AND_SETTLE,
            sender=request.buyer,
            arguments=tuple(arguments),
            budget=budgets.purchase,
        )

    return [
        Stage(
            stage_id="purchase_and_settle",
            produces=(HandleSpec("settlement_id", LogicalType.SETTLEMENT_RECORD),),
            build=purchase,
            inspect=on_receipt,
        ),
    ]


def check_in_stages(
    holder: str,
    ticket: ObjectHandle,
    budgets: Optional[OperationBudgets] = None,
) -> list[Stage]:
    """Mark a ticket used at the door. The ledger rejects a second check-in."""
    if ticket.logical_type != LogicalType.TICKET:
        raise ValidationError(f"Not a ticket handle: {ticket}")
    budgets = budgets or OperationBudgets()

    def mark_used(handles: HandleMap) -> Operation:
        return Operation(
            target=Target.TICKET_MARK_USED,
            sender=holder,
            arguments=(Argument.object("ticket", ticket),),
            budget=budgets.check_in,
        )

    return [Stage(stage_id="check_in", build=mark_used)]


def retract_stages(
    seller: str,
    handles: HandleMap,
    budgets: Optional[OperationBudgets] = None,
) -> list[Stage]:
    """Compensating stages for a partially published ticket.

    Undoes what can be undone, newest first: a listing is withdrawn,
    then a minted ticket is burned. Event and ticket-class records are
    permanent on the ledger and are left in place. Returns an empty
    list when there is nothing to retract.
    """
    budgets = budgets or OperationBudgets()
    stages: list[Stage] = []
    ticket = handles.get("instance_id")
    if ticket is None:
        return stages

    if "listing_id" in handles and "container_id" in handles:
        container = handles["container_id"]

        def delist(_: HandleMap) -> Operation:
            return Operation(
                target=Target.DELIST,
                sender=seller,
                arguments=(
                    Argument.object("container", container),
                    Argument.object("ticket", ticket),
                ),
                budget=budgets.delist,
            )

        stages.append(Stage(stage_id="delist_ticket", build=delist))

    def burn(_: HandleMap) -> Operation:
        return Operation(
            target=Target.TICKET_BURN,
            sender=seller,
            arguments=(Argument.object("ticket", ticket),),
            budget=budgets.burn,
        )

    stages.append(Stage(stage_id="burn_ticket", build=burn))
    return stages
