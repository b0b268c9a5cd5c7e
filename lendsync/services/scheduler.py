"""Position synchronization scheduler, the single writer of the published snapshot.

Each resource (account position, protocol aggregate, oracle readings) is
polled on its own cadence with at most one fetch in flight; a tick that
lands while a fetch is outstanding is skipped, not queued. Every fetch is
tagged with the account and epoch it was issued for and its result is
dropped if either changed before it resolved.
"""
from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Awaitable, Callable

from ..config import SyncConfig
from ..errors import LendingError
from ..interfaces.ledger import LedgerGateway
from ..models import Feed, ProtocolConstants, Snapshot

logger = logging.getLogger(__name__)

Subscriber = Callable[[Snapshot], None]


class Resource(str, Enum):
    POSITION = "position"
    AGGREGATE = "aggregate"
    ORACLES = "oracles"


@dataclass(frozen=True)
class FetchTag:
    account: str
    epoch: int


class PositionSyncScheduler:
    """Periodically reconciles local state with the ledger."""

    def __init__(
        self,
        gateway: LedgerGateway,
        config: SyncConfig,
        fallback_constants: ProtocolConstants | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._gateway = gateway
        self._intervals = {
            Resource.POSITION: config.position_interval_seconds,
            Resource.AGGREGATE: config.aggregate_interval_seconds,
            Resource.ORACLES: config.oracle_interval_seconds,
        }
        self._fallback_constants = fallback_constants
        self._clock = clock

        self._snapshot = Snapshot()
        self._account: str | None = None
        self._epoch = 0
        self._loops: list[asyncio.Task[None]] = []
        self._in_flight: dict[Resource, asyncio.Task[bool]] = {}
        self._background: set[asyncio.Task[Any]] = set()
        self._detached: set[asyncio.Task[bool]] = set()
        self._subscribers: list[Subscriber] = []
        self._fetchers: dict[Resource, Callable[[str], Awaitable[dict[str, Any]]]] = {
            Resource.POSITION: self._fetch_position,
            Resource.AGGREGATE: self._fetch_aggregate,
            Resource.ORACLES: self._fetch_oracles,
        }

    # ------------------------------------------------------------------
    # Public surface
    # ------------------------------------------------------------------

    @property
    def account(self) -> str | None:
        return self._account

    @property
    def running(self) -> bool:
        return bool(self._loops)

    def current_snapshot(self) -> Snapshot:
        return replace(self._snapshot, is_syncing=self._syncing())

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Register a snapshot listener; returns an unsubscribe function."""
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def start(self, account: str) -> None:
        """Begin polling for ``account`` with an immediate fetch of every resource."""
        if self._loops or self._account is not None:
            self.stop()

        self._epoch += 1
        self._account = account
        self._snapshot = replace(
            self._snapshot, account=account, position=None, balances=None
        )
        logger.info("Starting sync for %s (epoch %d)", account, self._epoch)

        for resource, interval in self._intervals.items():
            self.tick(resource)
            self._loops.append(asyncio.create_task(self._run_loop(resource, interval)))

    def stop(self) -> None:
        """Cancel polling; pending fetches can no longer write back."""
        self._epoch += 1
        for task in self._loops:
            task.cancel()
        # Outstanding fetches run to completion and are discarded by their tag.
        for task in self._in_flight.values():
            self._detached.add(task)
            task.add_done_callback(self._detached.discard)
        self._loops.clear()
        self._in_flight.clear()

        if self._account is not None:
            logger.info("Stopped sync for %s", self._account)
        self._account = None
        self._snapshot = Snapshot(constants=self._snapshot.constants)

    def tick(self, resource: Resource) -> bool:
        """Launch a fetch for ``resource`` unless one is already in flight."""
        if self._account is None:
            return False
        pending = self._in_flight.get(resource)
        if pending is not None and not pending.done():
            logger.debug("Skipping %s tick: fetch still in flight", resource.value)
            return False
        self._launch(resource)
        return True

    async def refresh(self, *resources: Resource) -> bool:
        """Out-of-band fetch that starts after any in-flight one has settled.

        Returns True when every requested resource was fetched and published.
        """
        targets = resources or (Resource.POSITION,)
        results = await asyncio.gather(*(self._refresh_one(r) for r in targets))
        return all(results)

    async def wait_idle(self) -> Snapshot:
        """Wait until no fetch or scheduled resync is outstanding."""
        while True:
            pending = {
                t
                for t in (*self._in_flight.values(), *self._background)
                if not t.done()
            }
            if not pending:
                return self.current_snapshot()
            await asyncio.wait(pending)

    def request_resync(self, *resources: Resource) -> asyncio.Task[bool]:
        """Schedule :meth:`refresh` without waiting for it."""
        task = asyncio.create_task(self.refresh(*resources))
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    async def ensure_constants(self) -> ProtocolConstants:
        """Protocol constants, read from the ledger once and then cached.

        Falls back to configured values when the ledger read fails.
        """
        constants = self._snapshot.constants
        if constants is not None and constants.source == "ledger":
            return constants
        try:
            constants = await self._gateway.get_protocol_constants()
        except LendingError as e:
            if self._fallback_constants is None:
                raise
            logger.warning("Using configured protocol constants: %s", e)
            constants = self._fallback_constants
        if constants != self._snapshot.constants:
            self._publish(constants=constants)
        return constants

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _syncing(self) -> bool:
        try:
            current = asyncio.current_task()
        except RuntimeError:
            current = None
        # A fetch that is publishing its own result no longer counts.
        return any(
            not t.done() and t is not current for t in self._in_flight.values()
        )

    async def _run_loop(self, resource: Resource, interval: float) -> None:
        while True:
            await asyncio.sleep(interval)
            self.tick(resource)

    def _launch(self, resource: Resource) -> asyncio.Task[bool]:
        tag = FetchTag(account=self._account, epoch=self._epoch)
        task = asyncio.create_task(self._fetch(resource, tag))
        self._in_flight[resource] = task
        task.add_done_callback(lambda t, r=resource: self._fetch_done(r, t))
        return task

    def _fetch_done(self, resource: Resource, task: asyncio.Task[bool]) -> None:
        if self._in_flight.get(resource) is task:
            del self._in_flight[resource]

    async def _refresh_one(self, resource: Resource) -> bool:
        if self._account is None:
            return False
        pending = self._in_flight.get(resource)
        if pending is not None and not pending.done():
            await asyncio.wait({pending})
        if self._account is None:
            return False

        task = self._in_flight.get(resource)
        if task is None or task.done():
            task = self._launch(resource)
        await asyncio.wait({task})
        return not task.cancelled() and task.result()

    def _is_current(self, tag: FetchTag) -> bool:
        return tag.epoch == self._epoch and tag.account == self._account

    async def _fetch(self, resource: Resource, tag: FetchTag) -> bool:
        try:
            update = await self._fetchers[resource](tag.account)
        except Exception as e:
            logger.warning(
                "%s fetch for %s failed, keeping previous snapshot: %s",
                resource.value,
                tag.account,
                e,
            )
            return False

        if not self._is_current(tag):
            logger.debug(
                "Discarding stale %s fetch for %s (epoch %d)",
                resource.value,
                tag.account,
                tag.epoch,
            )
            return False

        self._publish(**update)
        return True

    async def _fetch_position(self, account: str) -> dict[str, Any]:
        position, balances = await asyncio.gather(
            self._gateway.get_position(account),
            self._gateway.get_balances(account),
        )
        return {"position": position, "balances": balances}

    async def _fetch_aggregate(self, account: str) -> dict[str, Any]:
        await self.ensure_constants()
        return {"aggregate": await self._gateway.get_protocol_aggregate()}

    async def _fetch_oracles(self, account: str) -> dict[str, Any]:
        collateral, borrow = await asyncio.gather(
            self._gateway.get_oracle_reading(Feed.COLLATERAL),
            self._gateway.get_oracle_reading(Feed.BORROW),
        )
        return {"oracles": {Feed.COLLATERAL: collateral, Feed.BORROW: borrow}}

    def _publish(self, **changes: Any) -> None:
        self._snapshot = replace(self._snapshot, updated_at=self._clock(), **changes)
        snapshot = self.current_snapshot()
        for callback in list(self._subscribers):
            try:
                callback(snapshot)
            except Exception:
                logger.exception("Snapshot subscriber %r failed", callback)
