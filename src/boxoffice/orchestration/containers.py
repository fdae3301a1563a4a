"""Container resolution — find or create an actor's sale container.

One container per actor is the intent, not a guarantee. The lookup is a
read-then-maybe-write against the ledger with no ledger-side exclusivity,
so two resolvers (or two processes) that both see "no container" will
each create one. Within one resolver, calls for the same actor are
serialized by a per-actor asyncio.Lock when ``serialize_per_actor`` is
set, which closes the race for coroutines sharing this instance only.
"""

from __future__ import annotations

import asyncio
from typing import Optional

import structlog

from boxoffice.errors import LedgerTransportError, TransientLookupError
from boxoffice.ledger.client import LedgerClient
from boxoffice.ledger.receipts import extract_handles, raise_for_status
from boxoffice.models.ledger import (
    LogicalType,
    ObjectHandle,
    Operation,
    QueryFilter,
    Target,
)
from boxoffice.models.sequence import HandleMap, HandleSpec, Stage

logger = structlog.get_logger(__name__)

DEFAULT_CONTAINER_BUDGET = 10_000_000


class ContainerResolver:
    """Finds an actor's existing container or provisions a new one.

    Usage:
        resolver = ContainerResolver(ledger)
        handle = await resolver.resolve_container("0xseller")
    """

    def __init__(
        self,
        ledger: LedgerClient,
        budget: int = DEFAULT_CONTAINER_BUDGET,
        serialize_per_actor: bool = True,
    ) -> None:
        self._ledger = ledger
        self._budget = budget
        self._serialize = serialize_per_actor
        self._locks: dict[str, asyncio.Lock] = {}
        # Coroutines holding or awaiting each lock; the lock is dropped at zero.
        self._waiters: dict[str, int] = {}
        # Containers this resolver created, for ledgers whose queries lag.
        self._created: dict[str, ObjectHandle] = {}

    async def resolve_container(self, actor: str) -> ObjectHandle:
        """Return the actor's container, creating one if none exists.

        The first container in ledger order wins when the actor owns
        several.

        Raises:
            TransientLookupError: the existence query failed.
            LedgerRejection: the ledger rejected container creation.
            LedgerTransportError: creation outcome unknown.
        """
        if not self._serialize:
            return await self._find_or_create(actor)
        lock = self._locks.setdefault(actor, asyncio.Lock())
        self._waiters[actor] = self._waiters.get(actor, 0) + 1
        try:
            async with lock:
                return await self._find_or_create(actor)
        finally:
            self._waiters[actor] -= 1
            if not self._waiters[actor]:
                del self._waiters[actor]
                del self._locks[actor]

    async def find_container(self, actor: str) -> Optional[ObjectHandle]:
        """Return the actor's first container, or None."""
        try:
            found = await self._ledger.query(
                QueryFilter(owner=actor, logical_type=LogicalType.CONTAINER)
            )
        except TransientLookupError:
            raise
        except LedgerTransportError as exc:
            raise TransientLookupError(
                f"Container lookup for {actor} failed: {exc}"
            ) from exc
        containers = [h for h in found if h.logical_type == LogicalType.CONTAINER]
        return containers[0] if containers else None

    def stage(self, actor: str, key: str = "container_id") -> Stage:
        """A Sequencer stage that resolves ``actor``'s container into ``key``."""

        async def resolve(handles: HandleMap) -> dict[str, ObjectHandle]:
            return {key: await self.resolve_container(actor)}

        return Stage(
            stage_id="resolve_container",
            produces=(HandleSpec(key, LogicalType.CONTAINER),),
            resolve=resolve,
            await_finality=True,
        )

    async def _find_or_create(self, actor: str) -> ObjectHandle:
        existing = await self.find_container(actor)
        if existing is not None:
            logger.debug("container_reused", actor=actor, container=existing.object_id)
            return existing
        if actor in self._created:
            return self._created[actor]

        operation = Operation(
            target=Target.CONTAINER_CREATE,
            sender=actor,
            budget=self._budget,
        )
        receipt = raise_for_status(await self._ledger.submit(operation))
        created = extract_handles(
            receipt, (HandleSpec("container_id", LogicalType.CONTAINER),)
        )["container_id"]
        self._created[actor] = created
        logger.info(
            "container_created",
            actor=actor,
            container=created.object_id,
            digest=receipt.digest,
        )
        return created
