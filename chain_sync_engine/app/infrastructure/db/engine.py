from __future__ import annotations

from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from chain_sync_engine.app.config import Settings


def create_app_async_engine(settings: Settings, *, echo: bool = False) -> AsyncEngine:
    """AsyncEngine for the repositories; pings pooled connections before reuse."""
    return create_async_engine(
        settings.database_url,  # postgresql+asyncpg://...
        echo=echo,
        pool_pre_ping=True,
    )
