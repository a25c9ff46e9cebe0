from __future__ import annotations

from collections.abc import Awaitable, Callable

from .balance_task import balance_task
from .fetch_transactions_task import fetch_transactions_task
from .list_events_task import list_events_task
from .serve_task import serve_task
from .stop_watch_task import stop_watch_task
from .watch_contract_task import watch_contract_task

TaskFn = Callable[..., Awaitable[None]]

TASKS: dict[str, TaskFn] = {
    "watch_contract_task": watch_contract_task,
    "stop_watch_task": stop_watch_task,
    "list_events_task": list_events_task,
    "fetch_transactions_task": fetch_transactions_task,
    "balance_task": balance_task,
    "serve_task": serve_task,
}
