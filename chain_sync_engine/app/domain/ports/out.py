from __future__ import annotations

from collections.abc import Awaitable, Callable, Sequence
from typing import Any, Protocol

from chain_sync_engine.app.domain.models import (
    AddressSyncState,
    BlockTag,
    ChainBlock,
    ChainLog,
    StoredEvent,
    Transaction,
    WatchedContract,
)

LogCallback = Callable[[ChainLog], Awaitable[None]]


class ChainRpcProvider(Protocol):
    """
    Port for JSON-RPC access to the chain node.

    Request/response calls go over HTTP; subscriptions over a persistent
    WebSocket connection. Implementations raise BatchFetchError when a
    log/block query fails and ProviderConnectionError when the node is
    unreachable.
    """

    async def current_head(self) -> int: ...

    async def code_exists(self, address: str, block_tag: BlockTag) -> bool: ...

    async def get_balance(self, address: str) -> int: ...

    async def raw_block(
        self,
        block_number: int,
        *,
        include_transactions: bool = True,
    ) -> ChainBlock | None: ...

    async def query_logs(
        self,
        *,
        address: str,
        topic0: bytes,
        from_block: int,
        to_block: int,
    ) -> list[ChainLog]: ...

    async def subscribe_logs(
        self,
        *,
        address: str,
        topic0: bytes,
        callback: LogCallback,
    ) -> str:
        """Subscribe to new logs; returns the subscription handle."""
        ...

    async def unsubscribe(self, handle: str) -> None: ...

    async def ping(self) -> None:
        """Probe the subscription transport; raise ProviderConnectionError on failure."""
        ...

    async def reconnect(self) -> None:
        """Drop the persistent connection (and all its subscriptions) and open a new one."""
        ...

    async def close(self) -> None: ...


class EventDecoder(Protocol):
    @property
    def event_name(self) -> str: ...

    @property
    def event_signature(self) -> str: ...

    @property
    def topic0(self) -> bytes: ...

    def decode(self, log: ChainLog) -> dict[str, Any]:
        """
        Decode a log (topics + data) into a mapping of parameter name to value.

        Raises DecodeError if the log is not the expected event.
        """
        ...


EventDecoderFactory = Callable[[str], EventDecoder]


class WatchedContractsRepository(Protocol):
    """
    Port for watcher records.

    One row per lower-cased contract address. Rows are never deleted;
    stopping a watcher only flips is_active.
    """

    async def upsert_watcher(
        self,
        *,
        address: str,
        event_signature: str,
        from_block: int,
    ) -> tuple[WatchedContract, bool]:
        """
        Create an active watcher at from_block, or reactivate the existing one
        with the new signature keeping its checkpoint.

        Returns (watcher, created).
        """
        ...

    async def find_watcher(self, address: str) -> WatchedContract | None: ...

    async def list_active_watchers(self) -> list[WatchedContract]: ...

    async def deactivate_watcher(self, address: str) -> WatchedContract | None:
        """
        Compare-and-set is_active true -> false.

        Returns the record as it was before the update, or None when no
        active watcher exists.
        """
        ...

    async def advance_checkpoint(self, address: str, block_number: int) -> None:
        """Raise last_indexed_block to block_number; never lowers it."""
        ...


class EventsRepository(Protocol):
    async def insert_event_if_absent(self, event: StoredEvent) -> bool:
        """Insert the event; False if (transaction_hash, log_index) already exists."""
        ...

    async def find_events_by_address(
        self,
        address: str,
        *,
        from_block: int | None = None,
        to_block: int | None = None,
    ) -> list[StoredEvent]:
        """Events of a contract ordered by (block_number, log_index)."""
        ...


class TransactionsRepository(Protocol):
    async def insert_many_transactions_if_absent(
        self,
        transactions: Sequence[Transaction],
    ) -> int:
        """Insert transactions skipping existing hashes; returns rows written."""
        ...

    async def find_transactions_by_address(
        self,
        address: str,
        *,
        from_block: int | None = None,
        to_block: int | None = None,
    ) -> list[Transaction]: ...

    async def find_latest_cached_transaction(self, address: str) -> Transaction | None: ...

    async def get_sync_state(self, address: str) -> AddressSyncState | None: ...

    async def save_sync_state(self, state: AddressSyncState) -> None: ...
