from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable

from chain_sync_engine.app.application.services.event_processing import EventProcessor
from chain_sync_engine.app.application.services.task_supervisor import TaskSupervisor
from chain_sync_engine.app.domain.errors import ProviderConnectionError
from chain_sync_engine.app.domain.models import ChainLog
from chain_sync_engine.app.domain.ports.out import ChainRpcProvider, EventDecoderFactory

logger = logging.getLogger(__name__)

HEARTBEAT_TASK = "heartbeat"

RecoveryHook = Callable[[], Awaitable[None]]


class LiveSubscriptionManager:
    """
    Keeps one log subscription per watched address plus a connection heartbeat.

    The address -> subscription handle map is only touched under a lock.
    Delivered logs go through the same EventProcessor as historical replay.
    """

    def __init__(
        self,
        *,
        provider: ChainRpcProvider,
        processor: EventProcessor,
        decoder_for: EventDecoderFactory,
        supervisor: TaskSupervisor,
        heartbeat_interval: float = 30.0,
    ) -> None:
        self._provider = provider
        self._processor = processor
        self._decoder_for = decoder_for
        self._supervisor = supervisor
        self._heartbeat_interval = heartbeat_interval
        self._subscriptions: dict[str, str] = {}
        self._lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------

    async def attach(self, address: str, event_signature: str) -> str:
        """Subscribe to new logs of the event on address, replacing any previous subscription."""
        decoder = self._decoder_for(event_signature)
        logger.info("Attaching live listener for %r on %s.", event_signature, address)

        async def on_log(log: ChainLog) -> None:
            logger.debug("Live event received for %s! Block: %s", address, log.block_number)
            try:
                await self._processor.process(address, decoder, log)
            except Exception:
                logger.exception(
                    "Failed to process live log %s:%s for %s",
                    log.transaction_hash,
                    log.log_index,
                    address,
                )

        async with self._lock:
            previous = self._subscriptions.pop(address, None)
            if previous is not None:
                await self._unsubscribe_quietly(address, previous)

            handle = await self._provider.subscribe_logs(
                address=address,
                topic0=decoder.topic0,
                callback=on_log,
            )
            self._subscriptions[address] = handle

        return handle

    async def detach(self, address: str) -> bool:
        async with self._lock:
            handle = self._subscriptions.pop(address, None)
            if handle is None:
                return False
            await self._unsubscribe_quietly(address, handle)

        logger.debug("Stopped live listener for %s", address)
        return True

    async def clear(self) -> None:
        """Forget every subscription; used after the connection was rebuilt."""
        async with self._lock:
            dropped = len(self._subscriptions)
            self._subscriptions.clear()
        if dropped:
            logger.info("Cleared %s live subscription(s)", dropped)

    async def is_attached(self, address: str) -> bool:
        async with self._lock:
            return address in self._subscriptions

    async def attached_addresses(self) -> list[str]:
        async with self._lock:
            return sorted(self._subscriptions)

    async def _unsubscribe_quietly(self, address: str, handle: str) -> None:
        try:
            await self._provider.unsubscribe(handle)
        except Exception as exc:
            # The subscription dies with its connection anyway.
            logger.warning("Could not unsubscribe %s for %s: %s", handle, address, exc)

    # ------------------------------------------------------------------
    # Heartbeat
    # ------------------------------------------------------------------

    def start_heartbeat(self, on_recovered: RecoveryHook) -> None:
        self._supervisor.spawn(HEARTBEAT_TASK, self._heartbeat_loop(on_recovered))

    async def stop_heartbeat(self) -> None:
        await self._supervisor.cancel(HEARTBEAT_TASK)

    async def _heartbeat_loop(self, on_recovered: RecoveryHook) -> None:
        while True:
            await asyncio.sleep(self._heartbeat_interval)
            await self.heartbeat_once(on_recovered)

    async def heartbeat_once(self, on_recovered: RecoveryHook) -> bool:
        """Probe the provider; on failure reconnect and run the recovery hook. Returns probe health."""
        logger.debug("Pinging WebSocket connection...")
        try:
            await self._provider.ping()
            return True
        except ProviderConnectionError as exc:
            logger.error("WebSocket connection lost! Attempting to reconnect... %s", exc)

        try:
            await self._provider.reconnect()
        except Exception:
            logger.exception("Reconnect failed; retrying on the next heartbeat")
            return False

        try:
            await on_recovered()
        except Exception:
            logger.exception("Recovery after reconnect failed; retrying on the next heartbeat")
        return False
