"""LedgerClient — the only interface the orchestrator depends on.

Any ledger backend (a full node RPC adapter, the in-memory ledger used
by the tests) implements this Protocol. The Sequencer, the container
resolver and the policy registry never talk to a backend directly.

Contract:
- submit() executes one Operation atomically and returns a decoded
  Receipt, or raises LedgerTransportError when no definitive outcome
  is known. A rejected Operation is a Receipt with status FAILURE, not
  an exception.
- query() returns handles matching a filter in ledger order, or raises
  TransientLookupError.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from boxoffice.models.ledger import ObjectHandle, Operation, QueryFilter, Receipt


@runtime_checkable
class LedgerClient(Protocol):
    """Abstract contract for ledger backends."""

    async def submit(self, operation: Operation) -> Receipt:
        """Submit one Operation and return its Receipt."""
        ...

    async def query(self, query_filter: QueryFilter) -> list[ObjectHandle]:
        """Return handles of objects matching the filter, in ledger order."""
        ...
