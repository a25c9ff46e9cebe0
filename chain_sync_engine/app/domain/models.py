from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Literal

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"

# Beacon-chain withdrawals are denominated in gwei; the execution layer in wei.
GWEI_TO_WEI = 10**9

BlockTag = int | Literal["latest"]


@dataclass(frozen=True)
class BlockRange:
    from_block: int
    to_block: int

    def validate(self) -> None:
        if self.from_block < 0 or self.to_block < 0:
            raise ValueError("Block numbers must be non-negative")
        if self.from_block > self.to_block:
            raise ValueError("from_block must be <= to_block")

    def windows(self, size: int) -> list["BlockRange"]:
        """Split the range into consecutive inclusive windows of at most `size` blocks."""
        if size <= 0:
            raise ValueError("window size must be positive")
        out: list[BlockRange] = []
        current = self.from_block
        while current <= self.to_block:
            upper = min(current + size - 1, self.to_block)
            out.append(BlockRange(from_block=current, to_block=upper))
            current = upper + 1
        return out


# -----------------------------------------------------------------------------
# Persisted documents
# -----------------------------------------------------------------------------


@dataclass(frozen=True)
class WatchedContract:
    """Indexing progress and activation state of one contract address."""

    address: str
    event_signature: str
    last_indexed_block: int
    is_active: bool
    created_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass(frozen=True)
class StoredEvent:
    """A decoded log, unique per (transaction_hash, log_index)."""

    contract_address: str
    event_name: str
    args: dict[str, Any]
    transaction_hash: str
    block_number: int
    log_index: int
    timestamp: datetime


@dataclass(frozen=True)
class Transaction:
    """A transaction or synthetic withdrawal credit touching a tracked address."""

    hash: str
    from_address: str
    to_address: str
    value: str
    block_number: int
    timestamp: datetime


@dataclass(frozen=True)
class AddressSyncState:
    """
    Transaction-sync bookkeeping for one address.

    [synced_from_block, synced_to_block] is a contiguous interval whose blocks
    were all scanned successfully. creation_block caches the locator result
    once locator_checked is set (None then means "not a contract").
    synced_to_block < synced_from_block marks an empty interval.
    """

    address: str
    synced_from_block: int
    synced_to_block: int
    creation_block: int | None = None
    locator_checked: bool = False

    @property
    def has_synced_interval(self) -> bool:
        return self.synced_to_block >= self.synced_from_block


# -----------------------------------------------------------------------------
# Chain data
# -----------------------------------------------------------------------------


@dataclass(frozen=True)
class ChainLog:
    """A raw EVM log as returned by eth_getLogs or a logs subscription."""

    address: str
    block_number: int
    transaction_hash: str
    log_index: int
    topics: tuple[bytes, ...]
    data: bytes


@dataclass(frozen=True)
class BlockTransaction:
    hash: str
    from_address: str
    to_address: str | None
    value: int


@dataclass(frozen=True)
class Withdrawal:
    index: int
    address: str
    amount: int


@dataclass(frozen=True)
class ChainBlock:
    number: int
    timestamp: int
    transactions: tuple[BlockTransaction, ...] = field(default_factory=tuple)
    withdrawals: tuple[Withdrawal, ...] = field(default_factory=tuple)


# -----------------------------------------------------------------------------
# Results returned to callers
# -----------------------------------------------------------------------------


@dataclass(frozen=True)
class WatchStarted:
    contract_address: str
    event_signature: str
    start_block: int
    status: str = "started"


@dataclass(frozen=True)
class WatchStopped:
    contract_address: str
    last_indexed_block: int
    status: str = "stopped"


@dataclass(frozen=True)
class EventsPage:
    events: list[StoredEvent]
    status: WatchedContract


@dataclass(frozen=True)
class Balance:
    address: str
    balance: str
    balance_wei: str
    last_updated: str
