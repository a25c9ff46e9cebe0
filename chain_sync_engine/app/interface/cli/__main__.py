import asyncio
import inspect
import typer
import logging
from dotenv import load_dotenv
from InquirerPy import inquirer
from chain_sync_engine.app.interface.tasks import TASKS
from chain_sync_engine.app.interface.tasks.serve_task import serve_task


load_dotenv()

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
)

app = typer.Typer()
indexer_app = typer.Typer(help="cli for syncing contract events and address transactions.")
app.add_typer(indexer_app, name="indexer")


def _run(coro) -> None:
    try:
        asyncio.run(coro)
    except KeyboardInterrupt:
        typer.echo("Stopped.")


@indexer_app.command("run")
def run() -> None:
    task_name = inquirer.select(
        message="Select task:",
        choices=list(TASKS.keys()),
        pointer="❯",
        instruction="Use ↑/↓ to move, Enter to select",
    ).execute()

    task = TASKS[task_name]

    kwargs: dict[str, object] = {}

    sig = inspect.signature(task)
    params = sig.parameters

    if "address" in params:
        kwargs["address"] = inquirer.text(
            message="Address (0x...):",
            validate=lambda value: value.startswith("0x") and len(value) == 42,
            invalid_message="Expected a 0x-prefixed 20-byte address",
        ).execute()
    if "event_signature" in params:
        kwargs["event_signature"] = inquirer.text(
            message="Event signature:",
            default="Transfer(address,address,uint256)",
        ).execute()
    if "from_block" in params:
        kwargs["from_block"] = inquirer.text(
            message="From block (inclusive):",
            default="earliest",
        ).execute()
    if "to_block" in params:
        kwargs["to_block"] = inquirer.text(
            message="To block (inclusive):",
            default="latest",
        ).execute()

    _run(task(**kwargs))


@indexer_app.command("serve")
def serve() -> None:
    """Resume every active watcher and follow the chain until interrupted."""
    _run(serve_task())


if __name__ == "__main__":
    LOGO = r"""

      ___ _         _        ___                   ___            _
     / __| |_  __ _(_)_ _   / __|_  _ _ _  __     | __|_ _  __ _(_)_ _  ___
    | (__| ' \/ _` | | ' \  \__ \ || | ' \/ _|    | _|| ' \/ _` | | ' \/ -_)
     \___|_||_\__,_|_|_||_| |___/\_, |_||_\__|    |___|_||_\__, |_|_||_\___|
                                 |__/                      |___/

      --- Chain Sync Engine CLI ---
    """
    typer.echo(LOGO)
    app()
