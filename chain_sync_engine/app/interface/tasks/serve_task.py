from __future__ import annotations

import asyncio
import logging

from chain_sync_engine.app.interface.tasks._service import indexer_service

logger = logging.getLogger(__name__)


async def serve_task(*, backend: str = "sqlalchemy") -> None:
    """Resumes every active watcher and keeps the heartbeat running until interrupted."""
    async with indexer_service(backend) as service:
        resumed = await service.start()
        logger.info("Indexer running with %s watcher(s) (Ctrl+C to stop)", resumed)
        await asyncio.Event().wait()
