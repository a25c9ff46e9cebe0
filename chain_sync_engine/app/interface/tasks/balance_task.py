from __future__ import annotations

import typer

from chain_sync_engine.app.interface.tasks._service import indexer_service


async def balance_task(*, address: str, backend: str = "sqlalchemy") -> None:
    async with indexer_service(backend) as service:
        balance = await service.get_balance_for_address(address)
    typer.echo(f"{balance.address}: {balance.balance} ETH ({balance.balance_wei} wei) at {balance.last_updated}")
