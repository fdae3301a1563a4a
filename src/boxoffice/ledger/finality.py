"""Finality waits — don't proceed until produced objects are queryable.

Two modes:
- POLL (default): query the ledger for the produced handles every
  ``poll_interval`` seconds, up to ``max_attempts`` times, then raise
  FinalityTimeout.
- FIXED: sleep ``fixed_delay`` seconds unconditionally. Kept for
  backends whose query path lags behind submission in ways a poll
  cannot observe.

Transient query failures while polling count as a failed attempt.
"""

from __future__ import annotations

import asyncio
import enum
from dataclasses import dataclass
from typing import Awaitable, Callable, Iterable

import structlog

from boxoffice.errors import FinalityTimeout, TransientLookupError
from boxoffice.ledger.client import LedgerClient
from boxoffice.models.ledger import ObjectHandle, QueryFilter

logger = structlog.get_logger(__name__)

Sleeper = Callable[[float], Awaitable[None]]


class FinalityMode(str, enum.Enum):
    POLL = "poll"
    FIXED = "fixed"


@dataclass(frozen=True)
class FinalitySettings:
    mode: FinalityMode = FinalityMode.POLL
    poll_interval: float = 0.5
    max_attempts: int = 20
    fixed_delay: float = 2.0


class FinalityWaiter:
    """Waits until handles produced by a stage are visible to queries.

    Usage:
        waiter = FinalityWaiter(ledger, FinalitySettings())
        await waiter.wait_for(receipt_handles)
    """

    def __init__(
        self,
        ledger: LedgerClient,
        settings: FinalitySettings,
        sleep: Sleeper = asyncio.sleep,
    ) -> None:
        if settings.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self._ledger = ledger
        self._settings = settings
        self._sleep = sleep

    @property
    def settings(self) -> FinalitySettings:
        return self._settings

    async def wait_for(self, handles: Iterable[ObjectHandle]) -> int:
        """Block until every handle is queryable.

        Returns the number of poll attempts used (0 in FIXED mode or when
        there is nothing to wait for).

        Raises:
            FinalityTimeout: if the handles are still not visible after
                ``max_attempts`` polls.
        """
        wanted = {h.object_id for h in handles}
        if self._settings.mode == FinalityMode.FIXED:
            await self._sleep(self._settings.fixed_delay)
            return 0
        if not wanted:
            return 0

        query = QueryFilter(object_ids=tuple(sorted(wanted)))
        for attempt in range(1, self._settings.max_attempts + 1):
            try:
                visible = {h.object_id for h in await self._ledger.query(query)}
            except TransientLookupError as exc:
                logger.debug("finality_poll_failed", attempt=attempt, error=str(exc))
                visible = set()
            if wanted <= visible:
                logger.debug("finality_reached", attempts=attempt, objects=len(wanted))
                return attempt
            if attempt < self._settings.max_attempts:
                await self._sleep(self._settings.poll_interval)

        missing = sorted(wanted - visible)
        raise FinalityTimeout(
            f"Objects not visible after {self._settings.max_attempts} attempts: "
            + ", ".join(missing),
            attempts=self._settings.max_attempts,
        )
