from __future__ import annotations

import logging

from chain_sync_engine.app.interface.tasks._service import indexer_service

logger = logging.getLogger(__name__)


async def stop_watch_task(*, address: str, backend: str = "sqlalchemy") -> None:
    async with indexer_service(backend) as service:
        stopped = await service.stop_watch(address)
        logger.info(
            "Watcher for %s %s at block %s",
            stopped.contract_address,
            stopped.status,
            stopped.last_indexed_block,
        )
