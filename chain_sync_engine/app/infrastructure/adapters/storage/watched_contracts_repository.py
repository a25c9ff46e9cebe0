from __future__ import annotations

import logging
from typing import Any, Mapping

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine

from chain_sync_engine.app.domain.models import WatchedContract

logger = logging.getLogger(__name__)

_COLUMNS = "address, event_signature, last_indexed_block, is_active, created_at, updated_at"

_UPSERT_WATCHER_SQL = text(
    f"""
    INSERT INTO indexer.watched_contracts (
        address,
        event_signature,
        last_indexed_block,
        is_active
    )
    VALUES (
        :address,
        :event_signature,
        :from_block,
        TRUE
    )
    ON CONFLICT (address) DO UPDATE SET
        event_signature = EXCLUDED.event_signature,
        is_active = TRUE,
        updated_at = now()
    RETURNING {_COLUMNS}, (xmax = 0) AS created
    """
)

_FIND_WATCHER_SQL = text(
    f"""
    SELECT {_COLUMNS}
    FROM indexer.watched_contracts
    WHERE address = :address
    """
)

_LIST_ACTIVE_SQL = text(
    f"""
    SELECT {_COLUMNS}
    FROM indexer.watched_contracts
    WHERE is_active = TRUE
    ORDER BY address
    """
)

# The CTE captures the row before the update so the caller gets the
# checkpoint as it was when the watcher stopped.
_DEACTIVATE_SQL = text(
    f"""
    WITH previous AS (
        SELECT {_COLUMNS}
        FROM indexer.watched_contracts
        WHERE address = :address
          AND is_active = TRUE
        FOR UPDATE
    )
    UPDATE indexer.watched_contracts AS w
       SET is_active = FALSE,
           updated_at = now()
      FROM previous
     WHERE w.address = previous.address
    RETURNING previous.address,
              previous.event_signature,
              previous.last_indexed_block,
              previous.is_active,
              previous.created_at,
              previous.updated_at
    """
)

_ADVANCE_CHECKPOINT_SQL = text(
    """
    UPDATE indexer.watched_contracts
       SET last_indexed_block = GREATEST(last_indexed_block, :block_number),
           updated_at = now()
     WHERE address = :address
    """
)


def _to_watcher(row: Mapping[str, Any]) -> WatchedContract:
    return WatchedContract(
        address=row["address"],
        event_signature=row["event_signature"],
        last_indexed_block=int(row["last_indexed_block"]),
        is_active=bool(row["is_active"]),
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


class SqlAlchemyWatchedContractsRepository:
    """PostgreSQL/SQLAlchemy implementation of WatchedContractsRepository."""

    def __init__(self, *, engine: AsyncEngine) -> None:
        self._engine = engine

    async def upsert_watcher(
        self,
        *,
        address: str,
        event_signature: str,
        from_block: int,
    ) -> tuple[WatchedContract, bool]:
        async with self._engine.begin() as conn:
            result = await conn.execute(
                _UPSERT_WATCHER_SQL,
                {
                    "address": address,
                    "event_signature": event_signature,
                    "from_block": from_block,
                },
            )
            row = result.mappings().one()

        return _to_watcher(row), bool(row["created"])

    async def find_watcher(self, address: str) -> WatchedContract | None:
        async with self._engine.connect() as conn:
            result = await conn.execute(_FIND_WATCHER_SQL, {"address": address})
            row = result.mappings().one_or_none()
        return _to_watcher(row) if row is not None else None

    async def list_active_watchers(self) -> list[WatchedContract]:
        async with self._engine.connect() as conn:
            result = await conn.execute(_LIST_ACTIVE_SQL)
            rows = result.mappings().all()
        return [_to_watcher(r) for r in rows]

    async def deactivate_watcher(self, address: str) -> WatchedContract | None:
        async with self._engine.begin() as conn:
            result = await conn.execute(_DEACTIVATE_SQL, {"address": address})
            row = result.mappings().one_or_none()
        return _to_watcher(row) if row is not None else None

    async def advance_checkpoint(self, address: str, block_number: int) -> None:
        async with self._engine.begin() as conn:
            await conn.execute(
                _ADVANCE_CHECKPOINT_SQL,
                {"address": address, "block_number": block_number},
            )
        logger.debug("Checkpoint for %s advanced to %s", address, block_number)
