from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable

from chain_sync_engine.app.application.services.event_processing import EventProcessor
from chain_sync_engine.app.application.services.live_subscriptions import LiveSubscriptionManager
from chain_sync_engine.app.domain.models import BlockRange
from chain_sync_engine.app.domain.ports.out import (
    ChainRpcProvider,
    EventDecoder,
    EventDecoderFactory,
    WatchedContractsRepository,
)

logger = logging.getLogger(__name__)

_DEFAULT_BATCH_SIZE = 2_000
_DEFAULT_RETRY_DELAY = 15.0


class HistoricalSyncEngine:
    """
    Replays a contract's event history in fixed-size block windows, then
    hands the watcher over to the live subscription.

    Strategy:
    - read the chain head, walk [start, head] in windows of `batch_size` blocks,
    - eth_getLogs(address, topic0) per window, decode-and-store each log in order,
    - checkpoint the window's upper bound even when it had no logs,
    - re-read the head once the loop ends and keep going if the chain moved,
    - after attaching, backfill any blocks mined during the handoff,
    - on any failure wait `retry_delay` and retry after the last window this run completed.
    """

    def __init__(
        self,
        *,
        provider: ChainRpcProvider,
        watchers: WatchedContractsRepository,
        processor: EventProcessor,
        live: LiveSubscriptionManager,
        decoder_for: EventDecoderFactory,
        batch_size: int = _DEFAULT_BATCH_SIZE,
        retry_delay: float = _DEFAULT_RETRY_DELAY,
    ) -> None:
        if batch_size <= 0:
            raise ValueError("batch_size must be positive")
        self._provider = provider
        self._watchers = watchers
        self._processor = processor
        self._live = live
        self._decoder_for = decoder_for
        self._batch_size = batch_size
        self._retry_delay = retry_delay

    async def run(self, address: str, event_signature: str, start_block: int) -> None:
        """Sync to head then attach the live subscription, retrying until it succeeds or is cancelled."""
        next_start = start_block
        # Highest block this run has fully indexed, independent of the stored checkpoint.
        synced_through = start_block - 1
        attempt = 1

        def record(block: int) -> None:
            nonlocal synced_through
            synced_through = max(synced_through, block)

        while True:
            try:
                logger.info(
                    "Starting historical sync for %s from block %s (attempt %s)",
                    address,
                    next_start,
                    attempt,
                )
                await self.sync_to_head(address, event_signature, next_start, on_window=record)
                logger.info("Historical sync for %s complete.", address)
                await self._live.attach(address, event_signature)
                await self._backfill_handoff(address, event_signature, synced_through, record)
                return
            except asyncio.CancelledError:
                logger.info("Historical sync for %s cancelled", address)
                raise
            except Exception:
                logger.exception(
                    "Error during historical sync for %s; retrying in %ss",
                    address,
                    self._retry_delay,
                )

            await asyncio.sleep(self._retry_delay)
            next_start = max(start_block, synced_through + 1)
            attempt += 1

    async def sync_to_head(
        self,
        address: str,
        event_signature: str,
        start_block: int,
        on_window: Callable[[int], None] | None = None,
    ) -> int:
        """Index [start_block, head]; returns the last checkpointed block (start_block - 1 if none)."""
        decoder = self._decoder_for(event_signature)
        current = start_block
        head = await self._provider.current_head()

        while current <= head:
            for window in BlockRange(from_block=current, to_block=head).windows(self._batch_size):
                await self._index_window(address, decoder, window)
                current = window.to_block + 1
                if on_window is not None:
                    on_window(window.to_block)

            head = await self._provider.current_head()

        return current - 1

    async def _backfill_handoff(
        self,
        address: str,
        event_signature: str,
        synced_through: int,
        on_window: Callable[[int], None],
    ) -> None:
        # Blocks mined between the last head read and the subscription going live.
        head = await self._provider.current_head()
        if head <= synced_through:
            return
        logger.info("Backfilling blocks %s..%s for %s after attaching", synced_through + 1, head, address)
        await self.sync_to_head(address, event_signature, synced_through + 1, on_window=on_window)

    async def _index_window(self, address: str, decoder: EventDecoder, window: BlockRange) -> None:
        logger.debug(
            "Querying for %r events from block %s to %s",
            decoder.event_name,
            window.from_block,
            window.to_block,
        )
        logs = await self._provider.query_logs(
            address=address,
            topic0=decoder.topic0,
            from_block=window.from_block,
            to_block=window.to_block,
        )

        if logs:
            logger.info("Found %s past events in batch [%s, %s].", len(logs), window.from_block, window.to_block)
            for log in logs:
                await self._processor.process(address, decoder, log)

        await self._watchers.advance_checkpoint(address, window.to_block)

