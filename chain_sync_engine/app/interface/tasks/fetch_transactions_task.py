from __future__ import annotations

import json
import logging

import typer

from chain_sync_engine.app.interface.tasks._blocks import parse_from_block, parse_to_block
from chain_sync_engine.app.interface.tasks._service import indexer_service

logger = logging.getLogger(__name__)


async def fetch_transactions_task(
    *,
    address: str,
    from_block: int | str | None = None,
    to_block: int | str | None = None,
    backend: str = "sqlalchemy",
) -> None:
    """
    Syncs and prints the transaction history of an address.

    With from_block "earliest" the scan starts at the contract creation
    block (or 0 for externally owned accounts).
    """
    async with indexer_service(backend) as service:
        transactions = await service.get_or_fetch_transactions(
            address,
            parse_from_block(from_block),
            parse_to_block(to_block),
        )

    for tx in transactions:
        typer.echo(
            json.dumps(
                {
                    "hash": tx.hash,
                    "from": tx.from_address,
                    "to": tx.to_address,
                    "value": tx.value,
                    "block_number": tx.block_number,
                    "timestamp": tx.timestamp.isoformat(),
                }
            )
        )
    logger.info("%s transaction(s) for %s", len(transactions), address)
