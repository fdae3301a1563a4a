"""Tests for the settlement policy registry — create once, reuse, inject."""

from __future__ import annotations

import asyncio

import pytest

from boxoffice.errors import LedgerRejection
from boxoffice.ledger.aborts import E_RULE_NOT_SATISFIED
from boxoffice.ledger.memory import InMemoryLedger
from boxoffice.models.economics import SplitConfig
from boxoffice.models.ledger import LogicalType, ObjectHandle, Target
from boxoffice.orchestration.policy import SettlementPolicyRegistry

from conftest import ARTIST, ORGANIZER, PLATFORM

SPLIT = SplitConfig.from_mapping({ARTIST: 9000, ORGANIZER: 800, PLATFORM: 200})


class TestPolicyFor:
    def test_creates_once_and_reuses(self) -> None:
        ledger = InMemoryLedger()
        registry = SettlementPolicyRegistry(ledger, admin=PLATFORM)

        async def twice():
            return await registry.policy_for(SPLIT), await registry.policy_for(SPLIT)

        first, second = asyncio.run(twice())
        assert first == second
        assert first.logical_type == LogicalType.SETTLEMENT_POLICY
        assert ledger.submitted_targets() == ["policy::create"]
        stored = ledger.get(first.object_id)
        assert dict(stored.fields["basis_points"]) == {ARTIST: 9000, ORGANIZER: 800, PLATFORM: 200}

    def test_concurrent_requests_create_one_policy(self) -> None:
        ledger = InMemoryLedger()
        registry = SettlementPolicyRegistry(ledger, admin=PLATFORM)

        async def concurrently():
            return await asyncio.gather(*(registry.policy_for(SPLIT) for _ in range(4)))

        assert len(set(asyncio.run(concurrently()))) == 1
        assert len(ledger.objects_of(LogicalType.SETTLEMENT_POLICY)) == 1

    def test_different_splits_get_different_policies(self) -> None:
        ledger = InMemoryLedger()
        registry = SettlementPolicyRegistry(ledger, admin=PLATFORM)
        other = SplitConfig.from_mapping({ARTIST: 5000, ORGANIZER: 5000})

        async def both():
            return await registry.policy_for(SPLIT), await registry.policy_for(other)

        a, b = asyncio.run(both())
        assert a != b

    def test_configured_policy_id_is_used_as_is(self) -> None:
        ledger = InMemoryLedger()
        registry = SettlementPolicyRegistry(
            ledger, admin=PLATFORM, configured_policy_id="0xconfigured"
        )
        handle = asyncio.run(registry.policy_for(SPLIT))
        assert handle.object_id == "0xconfigured"
        assert ledger.submitted == []

    def test_split_bound_policy_wins(self) -> None:
        ledger = InMemoryLedger()
        registry = SettlementPolicyRegistry(ledger, admin=PLATFORM)
        handle = asyncio.run(registry.policy_for(SPLIT.with_policy("0xbound")))
        assert handle.object_id == "0xbound"
        assert ledger.submitted == []

    def test_registered_policy_is_reused(self) -> None:
        ledger = InMemoryLedger()
        registry = SettlementPolicyRegistry(ledger, admin=PLATFORM)
        existing = ObjectHandle("0xexisting", LogicalType.SETTLEMENT_POLICY)
        registry.register(SPLIT, existing)
        assert asyncio.run(registry.policy_for(SPLIT)) == existing
        assert registry.known(SPLIT) == existing

    def test_register_rejects_wrong_type(self) -> None:
        registry = SettlementPolicyRegistry(InMemoryLedger(), admin=PLATFORM)
        with pytest.raises(ValueError):
            registry.register(SPLIT, ObjectHandle("0x1", LogicalType.CONTAINER))

    def test_bind_returns_config_with_policy(self) -> None:
        ledger = InMemoryLedger()
        registry = SettlementPolicyRegistry(ledger, admin=PLATFORM)
        bound = asyncio.run(registry.bind(SPLIT))
        assert bound.policy_id == ledger.objects_of(LogicalType.SETTLEMENT_POLICY)[0].object_id
        assert bound.shares == SPLIT.shares

    def test_rejected_creation_is_not_cached(self) -> None:
        ledger = InMemoryLedger()
        ledger.reject_next(Target.POLICY_CREATE, E_RULE_NOT_SATISFIED)
        registry = SettlementPolicyRegistry(ledger, admin=PLATFORM)
        with pytest.raises(LedgerRejection):
            asyncio.run(registry.policy_for(SPLIT))
        assert registry.known(SPLIT) is None
        assert asyncio.run(registry.policy_for(SPLIT)).logical_type == LogicalType.SETTLEMENT_POLICY
