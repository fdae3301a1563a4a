"""Ledger boundary — client protocol, receipt decoding, finality, abort codes."""

from boxoffice.ledger.aborts import describe_abort
from boxoffice.ledger.client import LedgerClient
from boxoffice.ledger.finality import FinalityMode, FinalitySettings, FinalityWaiter
from boxoffice.ledger.memory import InMemoryLedger
from boxoffice.ledger.receipts import decode_receipt, extract_handles, raise_for_status

__all__ = [
    "FinalityMode",
    "FinalitySettings",
    "FinalityWaiter",
    "InMemoryLedger",
    "LedgerClient",
    "decode_receipt",
    "describe_abort",
    "extract_handles",
    "raise_for_status",
]
