"""Royalty split — distributes a payment across weighted recipients.

    share(r) = floor(amount × bp(r) / 10000)

compute_split floors every share and leaves the remainder (0 to n-1
smallest units for n recipients) untracked. Callers that need the
shares to sum to the amount call settle_split, which hands the
remainder to the config's remainder recipient. Config validity (sum of
bp == 10,000) is guaranteed by SplitConfig itself.
"""

from __future__ import annotations

from typing import Mapping

from boxoffice.models.economics import BASIS_POINTS, SplitConfig


def compute_split(amount: int, config: SplitConfig) -> dict[str, int]:
    """Floor-split ``amount`` across the config's recipients.

    Returns an ordered ``{recipient: share}`` dict. Every share is in
    ``[0, amount]`` and ``amount - sum(shares) < len(recipients)``.
    """
    if amount < 0:
        raise ValueError(f"Split amount cannot be negative: {amount}")
    return {
        share.recipient: (amount * share.basis_points) // BASIS_POINTS
        for share in config.shares
    }


def split_remainder(amount: int, shares: Mapping[str, int]) -> int:
    """Units left over after flooring."""
    return amount - sum(shares.values())


def assign_remainder(
    shares: Mapping[str, int],
    amount: int,
    recipient: str,
) -> dict[str, int]:
    """Return a copy of ``shares`` with the remainder added to ``recipient``."""
    if recipient not in shares:
        raise ValueError(f"Remainder recipient {recipient} is not in the split")
    remainder = split_remainder(amount, shares)
    if remainder < 0:
        raise ValueError(
            f"Shares total {sum(shares.values())} exceeds amount {amount}"
        )
    settled = dict(shares)
    settled[recipient] += remainder
    return settled


def settle_split(amount: int, config: SplitConfig) -> dict[str, int]:
    """Split ``amount`` exactly: floored shares plus the remainder policy."""
    return assign_remainder(
        compute_split(amount, config), amount, config.remainder_recipient
    )
