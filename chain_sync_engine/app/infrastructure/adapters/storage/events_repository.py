from __future__ import annotations

import json
from typing import Any, Mapping

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine

from chain_sync_engine.app.domain.models import StoredEvent

_INSERT_EVENT_SQL = text(
    """
    INSERT INTO indexer.events (
        transaction_hash,
        log_index,
        contract_address,
        event_name,
        block_number,
        args,
        timestamp
    )
    VALUES (
        :transaction_hash,
        :log_index,
        :contract_address,
        :event_name,
        :block_number,
        CAST(:args AS JSONB),
        :timestamp
    )
    ON CONFLICT (transaction_hash, log_index) DO NOTHING
    """
)


def _to_event(row: Mapping[str, Any]) -> StoredEvent:
    args = row["args"]
    if isinstance(args, str):
        args = json.loads(args)
    return StoredEvent(
        contract_address=row["contract_address"],
        event_name=row["event_name"],
        args=args,
        transaction_hash=row["transaction_hash"],
        block_number=int(row["block_number"]),
        log_index=int(row["log_index"]),
        timestamp=row["timestamp"],
    )


class SqlAlchemyEventsRepository:
    """
    PostgreSQL/SQLAlchemy implementation of EventsRepository.

    Duplicate deliveries are absorbed by ON CONFLICT DO NOTHING; the insert
    reports whether a row was actually written.
    """

    def __init__(self, *, engine: AsyncEngine) -> None:
        self._engine = engine

    async def insert_event_if_absent(self, event: StoredEvent) -> bool:
        async with self._engine.begin() as conn:
            result = await conn.execute(
                _INSERT_EVENT_SQL,
                {
                    "transaction_hash": event.transaction_hash,
                    "log_index": event.log_index,
                    "contract_address": event.contract_address,
                    "event_name": event.event_name,
                    "block_number": event.block_number,
                    "args": json.dumps(event.args),
                    "timestamp": event.timestamp,
                },
            )
        return result.rowcount == 1

    async def find_events_by_address(
        self,
        address: str,
        *,
        from_block: int | None = None,
        to_block: int | None = None,
    ) -> list[StoredEvent]:
        clauses = ["contract_address = :address"]
        params: dict[str, Any] = {"address": address}
        if from_block is not None:
            clauses.append("block_number >= :from_block")
            params["from_block"] = from_block
        if to_block is not None:
            clauses.append("block_number <= :to_block")
            params["to_block"] = to_block

        sql = text(
            """
            SELECT
                transaction_hash,
                log_index,
                contract_address,
                event_name,
                block_number,
                args,
                timestamp
            FROM indexer.events
            WHERE """
            + " AND ".join(clauses)
            + """
            ORDER BY block_number, log_index
            """
        )

        async with self._engine.connect() as conn:
            result = await conn.execute(sql, params)
            rows = result.mappings().all()
        return [_to_event(r) for r in rows]
