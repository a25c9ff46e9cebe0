from __future__ import annotations

import logging
from typing import Any, Iterable, Mapping, Sequence

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine

from chain_sync_engine.app.domain.models import AddressSyncState, Transaction

logger = logging.getLogger(__name__)

_INSERT_TRANSACTION_SQL = text(
    """
    INSERT INTO indexer.transactions (
        hash,
        from_address,
        to_address,
        value,
        block_number,
        timestamp
    )
    VALUES (
        :hash,
        :from_address,
        :to_address,
        :value,
        :block_number,
        :timestamp
    )
    ON CONFLICT (hash) DO NOTHING
    """
)

_LATEST_CACHED_SQL = text(
    """
    SELECT hash, from_address, to_address, value, block_number, timestamp
    FROM indexer.transactions
    WHERE from_address = :address
       OR to_address = :address
    ORDER BY block_number DESC
    LIMIT 1
    """
)

_GET_SYNC_STATE_SQL = text(
    """
    SELECT address, synced_from_block, synced_to_block, creation_block, locator_checked
    FROM indexer.address_sync_state
    WHERE address = :address
    """
)

_SAVE_SYNC_STATE_SQL = text(
    """
    INSERT INTO indexer.address_sync_state (
        address,
        synced_from_block,
        synced_to_block,
        creation_block,
        locator_checked,
        updated_at
    )
    VALUES (
        :address,
        :synced_from_block,
        :synced_to_block,
        :creation_block,
        :locator_checked,
        now()
    )
    ON CONFLICT (address) DO UPDATE SET
        synced_from_block = EXCLUDED.synced_from_block,
        synced_to_block = EXCLUDED.synced_to_block,
        creation_block = EXCLUDED.creation_block,
        locator_checked = EXCLUDED.locator_checked,
        updated_at = EXCLUDED.updated_at
    """
)


def _chunks(seq: Sequence[Any], size: int) -> Iterable[Sequence[Any]]:
    for i in range(0, len(seq), size):
        yield seq[i : i + size]


def _to_transaction(row: Mapping[str, Any]) -> Transaction:
    return Transaction(
        hash=row["hash"],
        from_address=row["from_address"],
        to_address=row["to_address"],
        value=row["value"],
        block_number=int(row["block_number"]),
        timestamp=row["timestamp"],
    )


class SqlAlchemyTransactionsRepository:
    """
    PostgreSQL/SQLAlchemy implementation of TransactionsRepository.

    Transactions are insert-only and deduplicated by hash; address sync
    state is upserted as a whole row.
    """

    def __init__(self, *, engine: AsyncEngine, batch_size: int = 1_000) -> None:
        self._engine = engine
        self._batch_size = batch_size

    async def insert_many_transactions_if_absent(
        self,
        transactions: Sequence[Transaction],
    ) -> int:
        if not transactions:
            return 0

        inserted = 0
        async with self._engine.begin() as conn:
            for chunk in _chunks(list(transactions), self._batch_size):
                payload = [
                    {
                        "hash": tx.hash,
                        "from_address": tx.from_address,
                        "to_address": tx.to_address,
                        "value": tx.value,
                        "block_number": tx.block_number,
                        "timestamp": tx.timestamp,
                    }
                    for tx in chunk
                ]
                # executemany: rowcount is summed by asyncpg's dialect where available
                result = await conn.execute(_INSERT_TRANSACTION_SQL, payload)
                rowcount = getattr(result, "rowcount", -1)
                inserted += rowcount if rowcount >= 0 else len(payload)

        logger.debug("Inserted %s of %s transactions", inserted, len(transactions))
        return inserted

    async def find_transactions_by_address(
        self,
        address: str,
        *,
        from_block: int | None = None,
        to_block: int | None = None,
    ) -> list[Transaction]:
        clauses = ["(from_address = :address OR to_address = :address)"]
        params: dict[str, Any] = {"address": address}
        if from_block is not None:
            clauses.append("block_number >= :from_block")
            params["from_block"] = from_block
        if to_block is not None:
            clauses.append("block_number <= :to_block")
            params["to_block"] = to_block

        sql = text(
            """
            SELECT hash, from_address, to_address, value, block_number, timestamp
            FROM indexer.transactions
            WHERE """
            + " AND ".join(clauses)
            + """
            ORDER BY block_number, hash
            """
        )

        async with self._engine.connect() as conn:
            result = await conn.execute(sql, params)
            rows = result.mappings().all()
        return [_to_transaction(r) for r in rows]

    async def find_latest_cached_transaction(self, address: str) -> Transaction | None:
        async with self._engine.connect() as conn:
            result = await conn.execute(_LATEST_CACHED_SQL, {"address": address})
            row = result.mappings().one_or_none()
        return _to_transaction(row) if row is not None else None

    async def get_sync_state(self, address: str) -> AddressSyncState | None:
        async with self._engine.connect() as conn:
            result = await conn.execute(_GET_SYNC_STATE_SQL, {"address": address})
            row = result.mappings().one_or_none()
        if row is None:
            return None
        return AddressSyncState(
            address=row["address"],
            synced_from_block=int(row["synced_from_block"]),
            synced_to_block=int(row["synced_to_block"]),
            creation_block=row["creation_block"],
            locator_checked=bool(row["locator_checked"]),
        )

    async def save_sync_state(self, state: AddressSyncState) -> None:
        async with self._engine.begin() as conn:
            await conn.execute(
                _SAVE_SYNC_STATE_SQL,
                {
                    "address": state.address,
                    "synced_from_block": state.synced_from_block,
                    "synced_to_block": state.synced_to_block,
                    "creation_block": state.creation_block,
                    "locator_checked": state.locator_checked,
                },
            )
