"""Tests for ContainerResolver — find-or-create, and the per-actor race."""

from __future__ import annotations

import asyncio

import pytest

from boxoffice.errors import LedgerRejection, TransientLookupError
from boxoffice.ledger.aborts import E_NOT_OWNER
from boxoffice.ledger.memory import InMemoryLedger
from boxoffice.models.ledger import LogicalType, Operation, Target
from boxoffice.orchestration.containers import ContainerResolver

from conftest import ORGANIZER, RESELLER


class TestResolveContainer:
    def test_creates_when_none_exists(self) -> None:
        ledger = InMemoryLedger()
        handle = asyncio.run(ContainerResolver(ledger).resolve_container(ORGANIZER))
        assert handle.logical_type == LogicalType.CONTAINER
        assert ledger.submitted_targets() == ["container::create"]
        assert ledger.get(handle.object_id).owner == ORGANIZER

    def test_two_calls_return_same_handle(self) -> None:
        ledger = InMemoryLedger()
        resolver = ContainerResolver(ledger)

        async def twice():
            first = await resolver.resolve_container(ORGANIZER)
            second = await resolver.resolve_container(ORGANIZER)
            return first, second

        first, second = asyncio.run(twice())
        assert first == second
        assert ledger.submitted_targets() == ["container::create"]

    def test_fresh_resolver_reuses_existing_container(self) -> None:
        ledger = InMemoryLedger()
        first = asyncio.run(ContainerResolver(ledger).resolve_container(ORGANIZER))
        second = asyncio.run(ContainerResolver(ledger).resolve_container(ORGANIZER))
        assert first == second
        assert len(ledger.objects_of(LogicalType.CONTAINER)) == 1

    def test_first_container_in_ledger_order_wins(self) -> None:
        ledger = InMemoryLedger()
        a = asyncio.run(ContainerResolver(ledger).resolve_container(ORGANIZER))
        # A second container created elsewhere (the unresolved race).
        asyncio.run(ledger.submit(Operation(Target.CONTAINER_CREATE, ORGANIZER)))
        assert len(ledger.objects_of(LogicalType.CONTAINER)) == 2
        assert asyncio.run(ContainerResolver(ledger).resolve_container(ORGANIZER)) == a

    def test_actors_get_separate_containers(self) -> None:
        ledger = InMemoryLedger()
        resolver = ContainerResolver(ledger)
        a = asyncio.run(resolver.resolve_container(ORGANIZER))
        b = asyncio.run(resolver.resolve_container(RESELLER))
        assert a != b

    def test_query_failure_is_transient(self) -> None:
        ledger = InMemoryLedger()
        ledger.fail_queries(1)
        with pytest.raises(TransientLookupError):
            asyncio.run(ContainerResolver(ledger).resolve_container(ORGANIZER))
        assert ledger.submitted == []

    def test_creation_rejected(self) -> None:
        ledger = InMemoryLedger()
        ledger.reject_next(Target.CONTAINER_CREATE, E_NOT_OWNER)
        with pytest.raises(LedgerRejection) as info:
            asyncio.run(ContainerResolver(ledger).resolve_container(ORGANIZER))
        assert info.value.module == "container"

    def test_lagging_query_does_not_create_twice(self) -> None:
        ledger = InMemoryLedger(visibility_lag=5)
        resolver = ContainerResolver(ledger)

        async def twice():
            return (
                await resolver.resolve_container(ORGANIZER),
                await resolver.resolve_container(ORGANIZER),
            )

        first, second = asyncio.run(twice())
        assert first == second
        assert len(ledger.objects_of(LogicalType.CONTAINER)) == 1


class TestConcurrency:
    def test_per_actor_lock_yields_one_container(self) -> None:
        ledger = InMemoryLedger()
        resolver = ContainerResolver(ledger, serialize_per_actor=True)

        async def concurrently():
            return await asyncio.gather(*(
                resolver.resolve_container(ORGANIZER) for _ in range(5)
            ))

        handles = asyncio.run(concurrently())
        assert len(set(handles)) == 1
        assert len(ledger.objects_of(LogicalType.CONTAINER)) == 1

    def test_without_lock_the_race_is_open(self) -> None:
        ledger = InMemoryLedger()
        resolver = ContainerResolver(ledger, serialize_per_actor=False)

        async def concurrently():
            return await asyncio.gather(
                resolver.resolve_container(ORGANIZER),
                resolver.resolve_container(ORGANIZER),
            )

        first, second = asyncio.run(concurrently())
        # Both saw "no container" before either created one.
        assert first != second
        assert len(ledger.objects_of(LogicalType.CONTAINER)) == 2

    def test_locks_released_after_calls_finish(self) -> None:
        ledger = InMemoryLedger()
        resolver = ContainerResolver(ledger)

        async def many_actors():
            await asyncio.gather(*(
                resolver.resolve_container(actor)
                for actor in (ORGANIZER, RESELLER, ORGANIZER, RESELLER)
            ))

        asyncio.run(many_actors())
        assert resolver._locks == {}
        assert resolver._waiters == {}

    def test_lock_released_when_resolution_fails(self) -> None:
        ledger = InMemoryLedger()
        ledger.fail_queries(1)
        resolver = ContainerResolver(ledger)
        with pytest.raises(TransientLookupError):
            asyncio.run(resolver.resolve_container(ORGANIZER))
        assert resolver._locks == {}

    def test_stage_resolves_into_handle_map(self) -> None:
        ledger = InMemoryLedger()
        stage = ContainerResolver(ledger).stage(ORGANIZER)
        produced = asyncio.run(stage.resolve({}))
        assert produced["container_id"].logical_type == LogicalType.CONTAINER
        assert stage.produces[0].key == "container_id"
