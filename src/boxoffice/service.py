"""Marketplace service — facade over the orchestrator and the economics engine.

Every operation returns a ServiceResult. Failures never disappear: a
publish that fails at stage k reports which stage failed, which stages
completed, every handle already created (with explorer links), and the
run id to resume or retract from.

Usage:
    config = MarketplaceConfig.from_config_dir(config_dir)
    service = MarketplaceService(config, ledger)
    result = await service.publish(request)
    if not result.success:
        print(result.data["failed_stage"], result.data["handles"])
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any, Mapping, Optional

import structlog

from boxoffice.config.resolver import MarketplaceConfig
from boxoffice.economics.settlement import plan_settlement, verify_settlement
from boxoffice.economics.tax import (
    compute_tax,
    percent_over_baseline_bp,
    resolve_baseline,
    tier_description,
)
from boxoffice.errors import (
    BoxOfficeError,
    LedgerRejection,
    LedgerTransportError,
    ValidationError,
)
from boxoffice.ledger.client import LedgerClient
from boxoffice.ledger.finality import FinalityWaiter, Sleeper
from boxoffice.links import Explorer, listing_url
from boxoffice.models.economics import SettlementPlan
from boxoffice.models.ledger import LogicalType, ObjectHandle, Receipt
from boxoffice.models.sequence import ProgressCallback, RunState, SequenceRun
from boxoffice.orchestration.containers import ContainerResolver
from boxoffice.orchestration.intents import (
    CHECK_IN,
    PUBLISH,
    PURCHASE,
    RETRACT,
    PublishRequest,
    PurchaseRequest,
    check_in_stages,
    publish_stages,
    purchase_stages,
    retract_stages,
)
from boxoffice.orchestration.journal import SagaJournal
from boxoffice.orchestration.policy import SettlementPolicyRegistry
from boxoffice.orchestration.sequencer import Sequencer

logger = structlog.get_logger(__name__)

# Handles that retract cannot remove from the ledger.
PERMANENT_LOGICAL_TYPES = (LogicalType.EVENT, LogicalType.TICKET_CLASS)


@dataclass(frozen=True)
class ServiceResult:
    """Result of a service operation."""
    success: bool
    errors: list[str] = field(default_factory=list)
    data: dict[str, Any] = field(default_factory=dict)


class MarketplaceService:
    """Publishing, purchasing and check-in against one ledger.

    Runs that fail are remembered by run id so they can be resumed or
    retracted; with a journal they can also be resumed after a restart.
    Without an explicit ``journal``, one is opened at
    ``config.journal_path`` when that is set.
    """

    def __init__(
        self,
        config: MarketplaceConfig,
        ledger: LedgerClient,
        journal: Optional[SagaJournal] = None,
        sleep: Sleeper = asyncio.sleep,
    ) -> None:
        self._config = config
        self._ledger = ledger
        if journal is None and config.journal_path is not None:
            config.journal_path.parent.mkdir(parents=True, exist_ok=True)
            journal = SagaJournal(config.journal_path)
        self._journal = journal
        self._containers = ContainerResolver(
            ledger,
            budget=config.budgets.container,
            serialize_per_actor=config.serialize_containers,
        )
        self._policies = SettlementPolicyRegistry(
            ledger,
            admin=config.platform_address,
            budget=config.budgets.policy,
            configured_policy_id=config.policy_id,
        )
        self._sequencer = Sequencer(
            ledger,
            finality=FinalityWaiter(ledger, config.finality, sleep=sleep),
            journal=journal,
        )
        self._explorer = Explorer(config.network, config.explorer_base_url)
        self._runs: dict[str, SequenceRun] = {}

    @property
    def containers(self) -> ContainerResolver:
        return self._containers

    @property
    def policies(self) -> SettlementPolicyRegistry:
        return self._policies

    def get_run(self, run_id: str) -> Optional[SequenceRun]:
        return self._runs.get(run_id)

    # ---- publish ----

    async def publish(
        self,
        request: PublishRequest,
        on_progress: Optional[ProgressCallback] = None,
    ) -> ServiceResult:
        """Publish a sellable ticket: event, classes, mint, container, list."""
        try:
            stages = publish_stages(request, self._containers, self._config.budgets)
        except ValidationError as exc:
            return ServiceResult(success=False, errors=[str(exc)])

        run = SequenceRun(
            intent=PUBLISH,
            stages=stages,
            context={"seller": request.organizer},
        )
        await self._sequencer.run(run, on_progress)
        return self._publish_result(run)

    async def resume_publish(
        self,
        run_id: str,
        request: Optional[PublishRequest] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> ServiceResult:
        """Continue a failed publish from its failed stage.

        Uses the in-memory failed run when there is one; otherwise
        rebuilds the run from the journal, which needs the original
        ``request`` to rebuild the stages.
        """
        failed = self._runs.get(run_id)
        try:
            if failed is not None:
                if failed.intent != PUBLISH:
                    return ServiceResult(
                        success=False, errors=[f"Run {run_id} is not a publish run"]
                    )
                run = SequenceRun.resume_from(failed)
            elif self._journal is not None and request is not None:
                stages = publish_stages(request, self._containers, self._config.budgets)
                run = self._journal.rebuild_run(run_id, stages)
                run.context["seller"] = request.organizer
            else:
                return ServiceResult(
                    success=False, errors=[f"No resumable run: {run_id}"]
                )
        except (KeyError, ValueError) as exc:
            return ServiceResult(success=False, errors=[str(exc)])

        logger.info(
            "publish_resumed",
            run_id=run.run_id,
            resumed_from=run_id,
            start_index=run.next_index,
        )
        await self._sequencer.run(run, on_progress)
        return self._publish_result(run)

    async def retract_publish(self, run_id: str) -> ServiceResult:
        """Compensate a failed publish: delist and burn what can be undone.

        Event and ticket-class records stay on the ledger; they are
        reported under ``permanent``.
        """
        failed = self._runs.get(run_id)
        if failed is None or failed.intent != PUBLISH:
            return ServiceResult(success=False, errors=[f"No failed publish run: {run_id}"])

        seller = failed.context["seller"]
        stages = retract_stages(seller, failed.handles, self._config.budgets)
        permanent = {
            key: h.object_id for key, h in failed.handles.items()
            if h.logical_type in PERMANENT_LOGICAL_TYPES
        }
        if not stages:
            return ServiceResult(success=True, data={
                "run_id": run_id,
                "retracted": [],
                "permanent": permanent,
            })

        run = SequenceRun(intent=RETRACT, stages=stages, context={"seller": seller})
        await self._sequencer.run(run)
        if run.state != RunState.COMPLETED:
            return self._failure_result(run)
        self._runs.pop(run_id, None)
        logger.info("publish_retracted", run_id=run_id, retract_run=run.run_id)
        return ServiceResult(success=True, data={
            "run_id": run_id,
            "retract_run_id": run.run_id,
            "retracted": [s.stage_id for s in stages],
            "permanent": permanent,
            "transactions": {
                stage_id: self._explorer.tx_url(digest)
                for stage_id, digest in run.digests.items()
            },
        })

    # ---- purchase ----

    def quote_purchase(
        self,
        asking_amount: int,
        recipients: Mapping[str, str],
        msrp: Optional[int] = None,
        first_sale: Optional[int] = None,
    ) -> ServiceResult:
        """Preview how a purchase payment would be distributed."""
        try:
            plan = self._plan(asking_amount, recipients, msrp, first_sale)
        except BoxOfficeError as exc:
            return ServiceResult(success=False, errors=[str(exc)])
        return ServiceResult(success=True, data=_plan_data(plan))

    async def purchase(
        self,
        buyer: str,
        container: ObjectHandle,
        ticket: ObjectHandle,
        asking_amount: int,
        recipients: Mapping[str, str],
        msrp: Optional[int] = None,
        first_sale: Optional[int] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> ServiceResult:
        """Buy a listed ticket and settle royalties in one Operation.

        Args:
            recipients: Royalty role → address (artist, organizer,
                optionally platform).
            msrp: Face price of the ticket class; pass it for resales.
                Primary sales carry no tax.
            first_sale: Price of the ticket's first sale, when known.
                The tax config's ``baseline_source`` decides which of
                the two the markup is measured against.
        """
        try:
            split = self._config.split_for(recipients)
            policy = await self._policies.policy_for(split)
            plan = self._plan(
                asking_amount,
                recipients,
                msrp,
                first_sale,
                policy_id=policy.object_id,
            )
            discrepancies: list[str] = []

            def check(receipt: Receipt) -> None:
                discrepancies.extend(verify_settlement(receipt, plan, buyer))

            stages = purchase_stages(
                PurchaseRequest(buyer, container, ticket, plan, policy),
                self._config.budgets,
                on_receipt=check,
            )
        except BoxOfficeError as exc:
            return ServiceResult(success=False, errors=[_describe(exc)])

        run = SequenceRun(intent=PURCHASE, stages=stages)
        await self._sequencer.run(run, on_progress)
        if run.state != RunState.COMPLETED:
            return self._failure_result(run)

        if discrepancies:
            logger.warning(
                "settlement_discrepancy", run_id=run.run_id, problems=discrepancies
            )
        data = _plan_data(plan)
        data.update({
            "run_id": run.run_id,
            "settlement_id": run.handles["settlement_id"].object_id,
            "transaction": self._explorer.tx_url(run.digests["purchase_and_settle"]),
            "verified": not discrepancies,
        })
        if discrepancies:
            data["discrepancies"] = discrepancies
        return ServiceResult(success=True, data=data)

    # ---- check-in ----

    async def check_in(self, holder: str, ticket: ObjectHandle) -> ServiceResult:
        """Mark a ticket used. A second check-in is rejected by the ledger."""
        try:
            stages = check_in_stages(holder, ticket, self._config.budgets)
        except ValidationError as exc:
            return ServiceResult(success=False, errors=[str(exc)])
        run = SequenceRun(intent=CHECK_IN, stages=stages)
        await self._sequencer.run(run)
        if run.state != RunState.COMPLETED:
            return self._failure_result(run)
        return ServiceResult(success=True, data={
            "ticket": ticket.object_id,
            "transaction": self._explorer.tx_url(run.digests["check_in"]),
        })

    # ---- economics ----

    def quote_resale_tax(
        self,
        asking_amount: int,
        msrp: int,
        first_sale: Optional[int] = None,
    ) -> ServiceResult:
        """Anti-scalp tax a reseller would pay at ``asking_amount``."""
        if asking_amount < 0:
            return ServiceResult(
                success=False, errors=[f"Asking price cannot be negative: {asking_amount}"]
            )
        config = self._config.tax
        baseline_amount = resolve_baseline(config, msrp, first_sale)
        tax = compute_tax(asking_amount, baseline_amount, config)
        percent_over = (
            percent_over_baseline_bp(asking_amount, baseline_amount)
            if baseline_amount > 0 else 0
        )
        return ServiceResult(success=True, data={
            "asking_amount": asking_amount,
            "baseline_amount": baseline_amount,
            "baseline_source": config.baseline_source.value,
            "tax_amount": tax,
            "percent_over_bp": percent_over,
            "description": tier_description(percent_over, config.tiers),
            "seller_receives": asking_amount - tax,
        })

    def listing_url(self, container: ObjectHandle, ticket: ObjectHandle) -> str:
        return listing_url(self._config.origin, container, ticket)

    # ---- internals ----

    def _plan(
        self,
        asking_amount: int,
        recipients: Mapping[str, str],
        msrp: Optional[int],
        first_sale: Optional[int],
        policy_id: Optional[str] = None,
    ) -> SettlementPlan:
        split = self._config.split_for(recipients, policy_id=policy_id)
        baseline_amount = None
        if msrp is not None:
            baseline_amount = resolve_baseline(self._config.tax, msrp, first_sale)
        return plan_settlement(
            asking_amount,
            split,
            tax_config=self._config.tax,
            baseline_amount=baseline_amount,
            tax_recipient=self._config.tax_recipient_for(recipients),
        )

    def _publish_result(self, run: SequenceRun) -> ServiceResult:
        if run.state != RunState.COMPLETED:
            self._runs[run.run_id] = run
            return self._failure_result(run)

        self._runs.pop(run.resumed_from or "", None)
        container = run.handles["container_id"]
        ticket = run.handles["instance_id"]
        data = {
            "run_id": run.run_id,
            "handles": {k: h.object_id for k, h in run.handles.items()},
            "links": self._handle_links(run),
            "transactions": {
                stage_id: self._explorer.tx_url(digest)
                for stage_id, digest in run.digests.items()
            },
            "listing_url": self.listing_url(container, ticket),
        }
        if run.resumed_from:
            data["resumed_from"] = run.resumed_from
        return ServiceResult(success=True, data=data)

    def _failure_result(self, run: SequenceRun) -> ServiceResult:
        error = run.error
        data: dict[str, Any] = {
            "run_id": run.run_id,
            "intent": run.intent,
            "failed_stage": run.failed_stage_id,
            "failed_index": run.failed_index,
            "completed_stages": run.completed_stage_ids(),
            "handles": {k: h.object_id for k, h in run.handles.items()},
            "links": self._handle_links(run),
            "transactions": {
                stage_id: self._explorer.tx_url(digest)
                for stage_id, digest in run.digests.items()
            },
            "error_type": type(error).__name__ if error is not None else None,
        }
        if isinstance(error, LedgerRejection):
            data["abort"] = {"module": error.module, "code": error.code}
            if error.digest:
                data["failed_transaction"] = self._explorer.tx_url(error.digest)
        if isinstance(error, LedgerTransportError):
            # No definitive outcome: the Operation may have taken effect.
            data["outcome_unknown"] = True
        return ServiceResult(
            success=False,
            errors=[_describe(error)] if error is not None else ["Run failed"],
            data=data,
        )

    def _handle_links(self, run: SequenceRun) -> dict[str, str]:
        return {
            key: self._explorer.object_url(handle.object_id)
            for key, handle in run.handles.items()
        }


def _describe(error: BaseException) -> str:
    if isinstance(error, LedgerRejection):
        return error.user_message
    return str(error)


def _plan_data(plan: SettlementPlan) -> dict[str, Any]:
    return {
        "asking_amount": plan.asking_amount,
        "tax_amount": plan.tax_amount,
        "tax_recipient": plan.tax_recipient,
        "shares": dict(plan.shares),
        "remainder": plan.remainder,
        "remainder_recipient": plan.remainder_recipient,
        "policy_id": plan.policy_id,
    }
