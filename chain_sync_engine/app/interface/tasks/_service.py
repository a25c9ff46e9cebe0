from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from chain_sync_engine.app.application.services.indexer_service import IndexerService
from chain_sync_engine.app.config import get_settings
from chain_sync_engine.app.infrastructure.db.engine import create_app_async_engine
from chain_sync_engine.app.infrastructure.factories.indexer_service_factory import (
    build_indexer_service,
)


@asynccontextmanager
async def indexer_service(backend: str = "sqlalchemy") -> AsyncIterator[IndexerService]:
    """IndexerService bound to a fresh engine; everything is shut down on exit."""
    settings = get_settings()
    engine = create_app_async_engine(settings)
    service = build_indexer_service(settings=settings, engine=engine, backend=backend)
    try:
        yield service
    finally:
        try:
            await service.shutdown()
        finally:
            await engine.dispose()
