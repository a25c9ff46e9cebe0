from __future__ import annotations

import asyncio
import logging

from chain_sync_engine.app.interface.tasks._blocks import parse_from_block
from chain_sync_engine.app.interface.tasks._service import indexer_service

logger = logging.getLogger(__name__)


async def watch_contract_task(
    *,
    address: str,
    event_signature: str,
    from_block: int | str | None = None,
    backend: str = "sqlalchemy",
) -> None:
    """
    Starts (or reactivates) a watcher and keeps following it until interrupted.

    from_block can be an int or "earliest"/empty, which means block 0 for a
    new watcher and the stored checkpoint for an existing one.
    """
    async with indexer_service(backend) as service:
        started = await service.start_watch(address, event_signature, parse_from_block(from_block))
        logger.info(
            "Watching %r on %s from block %s (Ctrl+C to stop)",
            started.event_signature,
            started.contract_address,
            started.start_block,
        )
        service.start_heartbeat()
        await asyncio.Event().wait()
