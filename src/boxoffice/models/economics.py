"""Economics models — royalty split and anti-scalp tax configuration.

All amounts are integers in the ledger's smallest unit and all rates are
basis points (10,000 bp = 100%). No floats in finance.

Configuration invariants are enforced at construction time, so a
malformed config can never reach split or tax computation:
- SplitConfig basis points sum to exactly 10,000
- TaxConfig tiers are strictly ascending by threshold, with
  non-decreasing rates (so tax never falls as the asking price rises)
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Any, Mapping, Optional

from boxoffice.errors import InvalidConfiguration

BASIS_POINTS = 10_000


class BaselineSource(str, enum.Enum):
    """Which reference price resale markup is measured against."""
    MSRP = "msrp"
    FIRST_SALE = "first_sale"


@dataclass(frozen=True)
class SplitShare:
    """One weighted recipient of a split."""
    recipient: str
    basis_points: int


@dataclass(frozen=True)
class SplitConfig:
    """Ordered, percentage-weighted recipients of a payment.

    Immutable; set when the ticket class is created. The remainder left
    by flooring each share goes to ``remainder_recipient`` (the last
    recipient unless stated otherwise).

    Raises:
        InvalidConfiguration: if the shares are empty, contain a duplicate
            or negative entry, or do not sum to 10,000 bp.
    """
    shares: tuple[SplitShare, ...]
    remainder_recipient: Optional[str] = None
    policy_id: Optional[str] = None

    def __post_init__(self) -> None:
        if not self.shares:
            raise InvalidConfiguration("SplitConfig needs at least one recipient")
        seen: set[str] = set()
        for share in self.shares:
            if not share.recipient:
                raise InvalidConfiguration("SplitConfig recipient cannot be empty")
            if share.recipient in seen:
                raise InvalidConfiguration(
                    f"Duplicate split recipient: {share.recipient}"
                )
            if share.basis_points < 0:
                raise InvalidConfiguration(
                    f"Negative basis points for {share.recipient}: {share.basis_points}"
                )
            seen.add(share.recipient)
        total = sum(s.basis_points for s in self.shares)
        if total != BASIS_POINTS:
            raise InvalidConfiguration(
                f"Split basis points must sum to {BASIS_POINTS}, got {total}"
            )
        if self.remainder_recipient is None:
            object.__setattr__(self, "remainder_recipient", self.shares[-1].recipient)
        elif self.remainder_recipient not in seen:
            raise InvalidConfiguration(
                f"Remainder recipient {self.remainder_recipient} is not a split recipient"
            )

    @staticmethod
    def from_mapping(
        basis_points: Mapping[str, int],
        remainder_recipient: Optional[str] = None,
        policy_id: Optional[str] = None,
    ) -> SplitConfig:
        """Build from an ordered ``{recipient: bp}`` mapping."""
        return SplitConfig(
            shares=tuple(SplitShare(r, int(bp)) for r, bp in basis_points.items()),
            remainder_recipient=remainder_recipient,
            policy_id=policy_id,
        )

    @property
    def recipients(self) -> list[str]:
        return [s.recipient for s in self.shares]

    def with_policy(self, policy_id: str) -> SplitConfig:
        """Return a copy bound to a settlement policy identifier."""
        return SplitConfig(
            shares=self.shares,
            remainder_recipient=self.remainder_recipient,
            policy_id=policy_id,
        )


@dataclass(frozen=True)
class TaxTier:
    """Tax rate applied once markup reaches ``threshold_bp`` over baseline."""
    threshold_bp: int
    tax_bp: int


@dataclass(frozen=True)
class TaxConfig:
    """Progressive anti-scalp tax configuration, immutable per ticket class.

    Raises:
        InvalidConfiguration: if tiers are not strictly ascending, lower
            the rate at a higher threshold, carry negative values, or a rate exceeds 100%; or if the minimum
            tax amount is negative.
    """
    enabled: bool = True
    baseline_source: BaselineSource = BaselineSource.MSRP
    minimum_tax_amount: int = 0
    tiers: tuple[TaxTier, ...] = field(default_factory=tuple)

    def __post_init__(self) -> None:
        if self.minimum_tax_amount < 0:
            raise InvalidConfiguration(
                f"minimum_tax_amount cannot be negative: {self.minimum_tax_amount}"
            )
        previous: Optional[int] = None
        previous_rate = 0
        for tier in self.tiers:
            if tier.threshold_bp < 0 or tier.tax_bp < 0:
                raise InvalidConfiguration(f"Negative value in tax tier: {tier}")
            if tier.tax_bp > BASIS_POINTS:
                raise InvalidConfiguration(f"Tax rate above 100% in tier: {tier}")
            if previous is not None and tier.threshold_bp <= previous:
                raise InvalidConfiguration(
                    "Tax tiers must be strictly ascending by threshold_bp"
                )
            if tier.tax_bp < previous_rate:
                raise InvalidConfiguration(
                    "Tax tier rates must not decrease as thresholds rise"
                )
            previous = tier.threshold_bp
            previous_rate = tier.tax_bp

    @staticmethod
    def from_dict(data: Mapping[str, Any]) -> TaxConfig:
        """Build from the JSON shape used in marketplace_params.json."""
        try:
            tiers = tuple(
                TaxTier(int(t["threshold_bp"]), int(t["tax_bp"]))
                for t in data.get("tiers", [])
            )
            return TaxConfig(
                enabled=bool(data.get("enabled", True)),
                baseline_source=BaselineSource(data.get("baseline_source", "msrp")),
                minimum_tax_amount=int(data.get("minimum_tax_amount", 0)),
                tiers=tiers,
            )
        except (KeyError, TypeError, ValueError) as exc:
            if isinstance(exc, InvalidConfiguration):
                raise
            raise InvalidConfiguration(f"Malformed tax config: {exc}") from exc


@dataclass(frozen=True)
class SettlementPlan:
    """Exact distribution of one purchase payment.

    Invariant: sum(shares.values()) + tax_amount == asking_amount.
    The tax is withheld from the distributable amount before the split;
    the split remainder is already folded into its designated recipient.
    """
    asking_amount: int
    tax_amount: int
    tax_recipient: Optional[str]
    shares: dict[str, int]
    remainder: int
    remainder_recipient: str
    policy_id: Optional[str] = None

    @property
    def distributed(self) -> int:
        return sum(self.shares.values()) + self.tax_amount

    def payouts(self) -> dict[str, int]:
        """Per-recipient totals including withheld tax."""
        totals = dict(self.shares)
        if self.tax_amount and self.tax_recipient is not None:
            totals[self.tax_recipient] = totals.get(self.tax_recipient, 0) + self.tax_amount
        return totals
