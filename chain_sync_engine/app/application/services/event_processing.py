from __future__ import annotations

import logging
from collections import OrderedDict
from datetime import datetime, timezone

from chain_sync_engine.app.domain.errors import BatchFetchError, DecodeError
from chain_sync_engine.app.domain.models import ChainLog, StoredEvent
from chain_sync_engine.app.domain.ports.out import (
    ChainRpcProvider,
    EventDecoder,
    EventsRepository,
    WatchedContractsRepository,
)

logger = logging.getLogger(__name__)

_TIMESTAMP_CACHE_SIZE = 1_024


class EventProcessor:
    """
    Decode-and-store step shared by historical replay and the live subscription.

    For each log:
    - decode it against the watcher's event (DecodeError -> unparsed, not stored),
    - fetch the containing block's timestamp,
    - insert the event (duplicates on (transaction_hash, log_index) are expected),
    - advance the watcher checkpoint to the log's block.

    Storage failures other than duplicates are logged and do not abort the
    caller's batch. RPC failures (block timestamp) propagate.
    """

    def __init__(
        self,
        *,
        provider: ChainRpcProvider,
        events: EventsRepository,
        watchers: WatchedContractsRepository,
    ) -> None:
        self._provider = provider
        self._events = events
        self._watchers = watchers
        self._block_timestamps: OrderedDict[int, datetime] = OrderedDict()

    async def process(self, address: str, decoder: EventDecoder, log: ChainLog) -> bool:
        """Returns True when a new event row was written."""
        stored = False
        try:
            args = decoder.decode(log)
        except DecodeError as exc:
            logger.warning(
                "Processing UNPARSED log from block %s. TxHash: %s (%s)",
                log.block_number,
                log.transaction_hash,
                exc,
            )
        else:
            logger.debug(
                "Processing PARSED event %r from block %s",
                decoder.event_name,
                log.block_number,
            )
            timestamp = await self._block_timestamp(log.block_number)
            event = StoredEvent(
                contract_address=address,
                event_name=decoder.event_name,
                args=args,
                transaction_hash=log.transaction_hash,
                block_number=log.block_number,
                log_index=log.log_index,
                timestamp=timestamp,
            )
            try:
                stored = await self._events.insert_event_if_absent(event)
            except Exception:
                logger.exception(
                    "Failed to save event to database: Tx %s, LogIndex %s",
                    log.transaction_hash,
                    log.log_index,
                )
            else:
                if not stored:
                    logger.debug(
                        "Duplicate event skipped: Tx %s, LogIndex %s",
                        log.transaction_hash,
                        log.log_index,
                    )

        await self._watchers.advance_checkpoint(address, log.block_number)
        return stored

    async def _block_timestamp(self, block_number: int) -> datetime:
        cached = self._block_timestamps.get(block_number)
        if cached is not None:
            self._block_timestamps.move_to_end(block_number)
            return cached

        block = await self._provider.raw_block(block_number, include_transactions=False)
        if block is None:
            raise BatchFetchError(f"Block {block_number} not found while reading its timestamp")

        timestamp = datetime.fromtimestamp(block.timestamp, tz=timezone.utc)
        self._block_timestamps[block_number] = timestamp
        if len(self._block_timestamps) > _TIMESTAMP_CACHE_SIZE:
            self._block_timestamps.popitem(last=False)
        return timestamp
