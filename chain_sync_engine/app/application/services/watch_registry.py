from __future__ import annotations

import logging

from chain_sync_engine.app.application.services.historical_sync import HistoricalSyncEngine
from chain_sync_engine.app.application.services.live_subscriptions import LiveSubscriptionManager
from chain_sync_engine.app.application.services.task_supervisor import TaskSupervisor
from chain_sync_engine.app.domain.errors import WatcherNotFoundError
from chain_sync_engine.app.domain.models import (
    EventsPage,
    WatchedContract,
    WatchStarted,
    WatchStopped,
)
from chain_sync_engine.app.domain.ports.out import EventsRepository, WatchedContractsRepository

logger = logging.getLogger(__name__)


def historical_task_key(address: str) -> str:
    return f"historical:{address}"


class WatchRegistry:
    """
    Lifecycle of contract watchers.

    Persists watcher state, launches the historical sync of each watcher as a
    supervised background task (one per address) and tears down live
    subscriptions on stop. resume_all() restores every active watcher after
    a restart or a lost provider connection.
    """

    def __init__(
        self,
        *,
        watchers: WatchedContractsRepository,
        events: EventsRepository,
        historical: HistoricalSyncEngine,
        live: LiveSubscriptionManager,
        supervisor: TaskSupervisor,
    ) -> None:
        self._watchers = watchers
        self._events = events
        self._historical = historical
        self._live = live
        self._supervisor = supervisor

    async def start_watch(
        self,
        address: str,
        event_signature: str,
        from_block: int | None = None,
    ) -> WatchStarted:
        address = address.lower()
        watcher, created = await self._watchers.upsert_watcher(
            address=address,
            event_signature=event_signature,
            from_block=from_block or 0,
        )

        if created:
            start_block = watcher.last_indexed_block
            logger.info("New watcher for %s created at block %s", address, start_block)
        elif from_block is not None:
            start_block = from_block
            logger.info("Reactivated watcher for %s from explicit block %s", address, start_block)
        else:
            start_block = watcher.last_indexed_block + 1
            logger.info("Reactivated watcher for %s, resuming at block %s", address, start_block)

        self._launch(address, event_signature, start_block)

        return WatchStarted(
            contract_address=address,
            event_signature=event_signature,
            start_block=start_block,
        )

    async def stop_watch(self, address: str) -> WatchStopped:
        address = address.lower()
        previous = await self._watchers.deactivate_watcher(address)
        if previous is None:
            raise WatcherNotFoundError(address)

        await self._supervisor.cancel(historical_task_key(address))
        await self._live.detach(address)

        logger.info("Stopped indexing %s at block %s", address, previous.last_indexed_block)
        return WatchStopped(
            contract_address=address,
            last_indexed_block=previous.last_indexed_block,
        )

    async def resume_all(self) -> int:
        """Relaunch every active watcher from its checkpoint; returns how many were resumed."""
        await self._live.clear()

        watchers = await self._watchers.list_active_watchers()
        if not watchers:
            logger.info("No active watchers to resume")
            return 0

        logger.info("Found %s watchers to resume.", len(watchers))
        for watcher in watchers:
            start_block = watcher.last_indexed_block + 1
            logger.info("Resuming %s from block %s", watcher.address, start_block)
            self._launch(watcher.address, watcher.event_signature, start_block)
        return len(watchers)

    async def get_status(self, address: str) -> WatchedContract:
        watcher = await self._watchers.find_watcher(address.lower())
        if watcher is None:
            raise WatcherNotFoundError(address)
        return watcher

    async def list_events(
        self,
        address: str,
        *,
        from_block: int | None = None,
        to_block: int | None = None,
    ) -> EventsPage:
        address = address.lower()
        status = await self.get_status(address)
        events = await self._events.find_events_by_address(
            address,
            from_block=from_block,
            to_block=to_block,
        )
        return EventsPage(events=events, status=status)

    def is_syncing(self, address: str) -> bool:
        return self._supervisor.is_running(historical_task_key(address.lower()))

    async def wait_for_sync(self, address: str) -> None:
        await self._supervisor.wait(historical_task_key(address.lower()))

    async def shutdown(self) -> None:
        await self._supervisor.shutdown()

    def _launch(self, address: str, event_signature: str, start_block: int) -> None:
        self._supervisor.spawn(
            historical_task_key(address),
            self._historical.run(address, event_signature, start_block),
        )
