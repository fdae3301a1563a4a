"""Orchestration — the Sequencer, its stages, and their collaborators."""

from boxoffice.orchestration.containers import ContainerResolver
from boxoffice.orchestration.intents import (
    OperationBudgets,
    PublishRequest,
    PurchaseRequest,
    TicketVariant,
    check_in_stages,
    publish_stages,
    purchase_stages,
    retract_stages,
)
from boxoffice.orchestration.journal import SagaJournal
from boxoffice.orchestration.policy import SettlementPolicyRegistry
from boxoffice.orchestration.sequencer import Sequencer

__all__ = [
    "ContainerResolver",
    "OperationBudgets",
    "PublishRequest",
    "PurchaseRequest",
    "SagaJournal",
    "Sequencer",
    "SettlementPolicyRegistry",
    "TicketVariant",
    "check_in_stages",
    "publish_stages",
    "purchase_stages",
    "retract_stages",
]
