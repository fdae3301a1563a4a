"""Settlement policy registry — explicit create-once, reuse-forever.

A purchase-and-settle Operation must reference the ledger-side policy
object that enforces a ticket class's royalty split. The registry owns
that reference for the lifetime of the process:

- a policy id supplied by configuration is used as-is, nothing is
  created;
- otherwise the first request for a split creates a policy on the
  ledger and every later request for the same split reuses it.

The registry is an ordinary object passed to whoever needs it; there is
no module-level "current policy" state.
"""

from __future__ import annotations

import asyncio
from typing import Optional

import structlog

from boxoffice.ledger.client import LedgerClient
from boxoffice.ledger.receipts import extract_handles, raise_for_status
from boxoffice.models.economics import SplitConfig
from boxoffice.models.ledger import (
    Argument,
    LogicalType,
    ObjectHandle,
    Operation,
    Target,
)
from boxoffice.models.sequence import HandleSpec

logger = structlog.get_logger(__name__)

DEFAULT_POLICY_BUDGET = 50_000_000

SplitKey = tuple[tuple[str, int], ...]


def split_key(config: SplitConfig) -> SplitKey:
    return tuple((s.recipient, s.basis_points) for s in config.shares)


class SettlementPolicyRegistry:
    """Provides the settlement policy handle for a SplitConfig.

    Usage:
        registry = SettlementPolicyRegistry(ledger, admin="0xplatform")
        policy = await registry.policy_for(split_config)
    """

    def __init__(
        self,
        ledger: LedgerClient,
        admin: str,
        budget: int = DEFAULT_POLICY_BUDGET,
        configured_policy_id: Optional[str] = None,
    ) -> None:
        self._ledger = ledger
        self._admin = admin
        self._budget = budget
        self._configured = configured_policy_id
        self._policies: dict[SplitKey, ObjectHandle] = {}
        self._lock = asyncio.Lock()

    @property
    def configured_policy_id(self) -> Optional[str]:
        return self._configured

    def register(self, config: SplitConfig, handle: ObjectHandle) -> None:
        """Adopt an existing policy for a split (e.g. loaded from storage)."""
        if handle.logical_type != LogicalType.SETTLEMENT_POLICY:
            raise ValueError(f"Not a settlement policy handle: {handle}")
        self._policies[split_key(config)] = handle

    def known(self, config: SplitConfig) -> Optional[ObjectHandle]:
        return self._policies.get(split_key(config))

    async def policy_for(self, config: SplitConfig) -> ObjectHandle:
        """Return the policy handle for ``config``, creating it once.

        Resolution order: the config's own ``policy_id``, the configured
        policy id, a previously created or registered policy, and
        finally a new policy created on the ledger.

        Raises:
            LedgerRejection: policy creation was rejected.
            LedgerTransportError: creation outcome unknown.
        """
        if config.policy_id:
            return ObjectHandle(config.policy_id, LogicalType.SETTLEMENT_POLICY)
        if self._configured:
            return ObjectHandle(self._configured, LogicalType.SETTLEMENT_POLICY)

        key = split_key(config)
        async with self._lock:
            existing = self._policies.get(key)
            if existing is not None:
                return existing
            handle = await self._create(config)
            self._policies[key] = handle
            return handle

    async def bind(self, config: SplitConfig) -> SplitConfig:
        """Return ``config`` bound to its policy id."""
        handle = await self.policy_for(config)
        return config.with_policy(handle.object_id)

    async def _create(self, config: SplitConfig) -> ObjectHandle:
        operation = Operation(
            target=Target.POLICY_CREATE,
            sender=self._admin,
            arguments=(
                Argument.shares(
                    "shares", {s.recipient: s.basis_points for s in config.shares}
                ),
            ),
            budget=self._budget,
        )
        receipt = raise_for_status(await self._ledger.submit(operation))
        handle = extract_handles(
            receipt, (HandleSpec("policy_id", LogicalType.SETTLEMENT_POLICY),)
        )["policy_id"]
        logger.info(
            "settlement_policy_created",
            policy=handle.object_id,
            recipients=config.recipients,
            digest=receipt.digest,
        )
        return handle
