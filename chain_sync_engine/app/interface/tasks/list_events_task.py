from __future__ import annotations

import json
import logging

import typer

from chain_sync_engine.app.interface.tasks._blocks import parse_from_block, parse_to_block
from chain_sync_engine.app.interface.tasks._service import indexer_service

logger = logging.getLogger(__name__)


async def list_events_task(
    *,
    address: str,
    from_block: int | str | None = None,
    to_block: int | str | None = None,
    backend: str = "sqlalchemy",
) -> None:
    """Prints stored events of a watched contract as JSON lines."""
    upper = parse_to_block(to_block)
    async with indexer_service(backend) as service:
        page = await service.list_events(
            address,
            from_block=parse_from_block(from_block),
            to_block=None if upper == "latest" else upper,
        )

    for event in page.events:
        typer.echo(
            json.dumps(
                {
                    "block_number": event.block_number,
                    "log_index": event.log_index,
                    "transaction_hash": event.transaction_hash,
                    "event_name": event.event_name,
                    "args": event.args,
                    "timestamp": event.timestamp.isoformat(),
                }
            )
        )
    logger.info(
        "%s event(s); watcher active=%s, last indexed block %s",
        len(page.events),
        page.status.is_active,
        page.status.last_indexed_block,
    )
