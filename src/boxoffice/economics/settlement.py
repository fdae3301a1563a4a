"""Settlement planning and verification for purchase-and-settle.

A purchase moves exactly the asking price from the buyer. The plan
decides, before submission, where every unit goes:

    tax = compute_tax(asking, baseline, tax_config)    (resales only)
    distributable = asking - tax
    shares = settle_split(distributable, split_config)  (remainder assigned)

Invariant: sum(shares) + tax == asking.

After the ledger accepts the Operation, verify_settlement compares the
receipt's balance deltas with the plan. The ledger's policy layer is
what enforces the split; verification only reports discrepancies.
"""

from __future__ import annotations

from typing import Optional

from boxoffice.economics.split import compute_split, settle_split, split_remainder
from boxoffice.economics.tax import compute_tax
from boxoffice.errors import ValidationError
from boxoffice.models.economics import SettlementPlan, SplitConfig, TaxConfig
from boxoffice.models.ledger import Receipt


def plan_settlement(
    asking_amount: int,
    split_config: SplitConfig,
    tax_config: Optional[TaxConfig] = None,
    baseline_amount: Optional[int] = None,
    tax_recipient: Optional[str] = None,
) -> SettlementPlan:
    """Compute the full distribution of a purchase payment.

    Args:
        asking_amount: Price the buyer pays, in smallest units.
        split_config: Royalty split of the ticket class.
        tax_config: Anti-scalp config; tax applies only together with
            ``baseline_amount`` (i.e. on resales).
        baseline_amount: MSRP or first-sale price of the ticket.
        tax_recipient: Who receives withheld tax. Defaults to the split's
            remainder recipient.

    Raises:
        ValidationError: if the asking amount is not positive.
    """
    if asking_amount <= 0:
        raise ValidationError(f"Asking price must be positive, got {asking_amount}")

    tax = 0
    if tax_config is not None and baseline_amount is not None:
        tax = compute_tax(asking_amount, baseline_amount, tax_config)
    # Tax is capped at the excess, which is below the asking price.
    tax = min(tax, asking_amount)

    distributable = asking_amount - tax
    floored = compute_split(distributable, split_config)
    remainder = split_remainder(distributable, floored)
    shares = settle_split(distributable, split_config)

    return SettlementPlan(
        asking_amount=asking_amount,
        tax_amount=tax,
        tax_recipient=(tax_recipient or split_config.remainder_recipient) if tax else None,
        shares=shares,
        remainder=remainder,
        remainder_recipient=split_config.remainder_recipient,
        policy_id=split_config.policy_id,
    )


def verify_settlement(receipt: Receipt, plan: SettlementPlan, buyer: str) -> list[str]:
    """Compare a purchase receipt's balance deltas with the plan.

    Returns discrepancy descriptions (empty = settlement honoured).
    Recipients may receive more than planned when they are also the
    seller or share an address; they may never receive less. The buyer
    pays at least the asking price (ledger fees come on top).
    """
    if not receipt.balance_deltas:
        return ["Receipt carries no balance deltas; settlement not verifiable"]

    problems: list[str] = []
    buyer_delta = receipt.delta_for(buyer)
    if buyer in plan.payouts():
        buyer_delta -= plan.payouts()[buyer]
    if buyer_delta > -plan.asking_amount:
        problems.append(
            f"Buyer {buyer} paid {-buyer_delta}, expected at least {plan.asking_amount}"
        )

    for recipient, expected in plan.payouts().items():
        if recipient == buyer:
            continue
        received = receipt.delta_for(recipient)
        if received < expected:
            problems.append(
                f"Recipient {recipient} received {received}, expected {expected}"
            )
    return problems
