"""Anti-scalp tax — progressive tax on resale markup above a baseline price.

The formula is fully deterministic and integer-only:

    excess = max(0, asking - baseline)
    percent_over_bp = floor(excess × 10000 / baseline)
    rate_bp = tax_bp of the LAST tier with threshold_bp <= percent_over_bp
    tax = floor(excess × rate_bp / 10000)
    if 0 < tax < minimum_tax_amount: tax = minimum_tax_amount

This is a highest-applicable-tier rule, not additive bracket taxation:
once markup crosses a threshold, the whole excess is taxed at that
tier's rate.

Invariants:
- No tax at or below baseline
- No tax when baseline <= 0 or the config is disabled
- Monotonically non-decreasing in asking amount (tiers ascend, rates
  are expected to ascend with them)
"""

from __future__ import annotations

from typing import Optional, Sequence

from boxoffice.models.economics import (
    BASIS_POINTS,
    BaselineSource,
    TaxConfig,
    TaxTier,
)

DEFAULT_TAX_CONFIG = TaxConfig(
    enabled=True,
    baseline_source=BaselineSource.MSRP,
    minimum_tax_amount=100,
    tiers=(
        TaxTier(threshold_bp=0, tax_bp=500),  # 0%+ over: 5%
        TaxTier(threshold_bp=1000, tax_bp=1200),  # 10%+ over: 12%
        TaxTier(threshold_bp=3000, tax_bp=2000),  # 30%+ over: 20%
    ),
)


def pick_tier_bp(percent_over_bp: int, tiers: Sequence[TaxTier]) -> int:
    """Return the tax rate of the highest tier reached, or 0 if none."""
    rate = 0
    for tier in tiers:
        if percent_over_bp >= tier.threshold_bp:
            rate = tier.tax_bp
        else:
            break
    return rate


def percent_over_baseline_bp(asking_amount: int, baseline_amount: int) -> int:
    """Markup over baseline in basis points (0 at or below baseline)."""
    if baseline_amount <= 0:
        return 0
    excess = max(0, asking_amount - baseline_amount)
    return (excess * BASIS_POINTS) // baseline_amount


def compute_tax(asking_amount: int, baseline_amount: int, config: TaxConfig) -> int:
    """Compute the anti-scalp tax owed on a resale.

    Args:
        asking_amount: Resale price in smallest units (>= 0).
        baseline_amount: Reference price (MSRP or first sale).
        config: Tax configuration of the ticket class.

    Returns:
        Tax amount in smallest units. Never raises.
    """
    if not config.enabled or baseline_amount <= 0:
        return 0

    excess = max(0, asking_amount - baseline_amount)
    if excess == 0:
        return 0

    percent_over_bp = (excess * BASIS_POINTS) // baseline_amount
    rate_bp = pick_tier_bp(percent_over_bp, config.tiers)
    tax = (excess * rate_bp) // BASIS_POINTS

    if 0 < tax < config.minimum_tax_amount:
        tax = config.minimum_tax_amount
    return tax


def tier_description(percent_over_bp: int, tiers: Sequence[TaxTier]) -> str:
    """Human-readable summary, e.g. ``"12% tax on markup (20% over baseline)"``."""
    rate_bp = pick_tier_bp(percent_over_bp, tiers)
    return (
        f"{rate_bp / 100:.0f}% tax on markup "
        f"({percent_over_bp / 100:.0f}% over baseline)"
    )


def resolve_baseline(
    config: TaxConfig,
    msrp: int,
    first_sale: Optional[int] = None,
) -> int:
    """Pick the baseline price the config measures markup against.

    Falls back to MSRP when the first sale price is not known yet.
    """
    if config.baseline_source == BaselineSource.FIRST_SALE and first_sale is not None:
        return first_sale
    return msrp
