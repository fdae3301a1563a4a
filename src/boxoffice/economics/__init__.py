"""Marketplace economics — royalty split and anti-scalp tax.

Public surface: compute_tax and compute_split. Both are synchronous,
pure, and do no I/O. Settlement planning builds on them.
"""

from boxoffice.economics.settlement import plan_settlement, verify_settlement
from boxoffice.economics.split import compute_split, settle_split
from boxoffice.economics.tax import DEFAULT_TAX_CONFIG, compute_tax

__all__ = [
    "DEFAULT_TAX_CONFIG",
    "compute_split",
    "compute_tax",
    "plan_settlement",
    "settle_split",
    "verify_settlement",
]
