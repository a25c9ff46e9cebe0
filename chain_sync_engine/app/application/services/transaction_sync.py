from __future__ import annotations

import asyncio
import logging
from dataclasses import replace
from datetime import datetime, timezone
from decimal import Decimal

from eth_utils import from_wei

from chain_sync_engine.app.application.services.contract_creation import ContractCreationLocator
from chain_sync_engine.app.application.services.single_flight import SingleFlight
from chain_sync_engine.app.domain.errors import BatchFetchError
from chain_sync_engine.app.domain.models import (
    GWEI_TO_WEI,
    ZERO_ADDRESS,
    AddressSyncState,
    Balance,
    BlockRange,
    BlockTag,
    ChainBlock,
    Transaction,
)
from chain_sync_engine.app.domain.ports.out import ChainRpcProvider, TransactionsRepository

logger = logging.getLogger(__name__)

_DEFAULT_BATCH_SIZE = 15
_DEFAULT_BATCH_DELAY = 0.5


def empty_sync_state(address: str) -> AddressSyncState:
    return AddressSyncState(address=address, synced_from_block=0, synced_to_block=-1)


def plan_scan_start(
    base_block: int,
    state: AddressSyncState | None,
    latest_cached_block: int | None,
) -> int:
    """
    First block that still needs a chain scan for a request starting at base_block.

    A base inside (or right after) the synced interval continues past it.
    latest_cached_block (given only for addresses without tracked sync state)
    stands in for the interval end.
    """
    if state is not None and state.has_synced_interval:
        if state.synced_from_block <= base_block <= state.synced_to_block + 1:
            return state.synced_to_block + 1
        return base_block

    if latest_cached_block is not None:
        return max(base_block, latest_cached_block + 1)
    return base_block


def merge_synced_interval(
    state: AddressSyncState,
    scanned_from: int,
    contiguous_through: int,
) -> AddressSyncState:
    """Extend the synced interval with [scanned_from, contiguous_through]."""
    if contiguous_through < scanned_from:
        return state

    if not state.has_synced_interval:
        return replace(state, synced_from_block=scanned_from, synced_to_block=contiguous_through)

    touches = (
        scanned_from <= state.synced_to_block + 1
        and contiguous_through >= state.synced_from_block - 1
    )
    if touches:
        return replace(
            state,
            synced_from_block=min(state.synced_from_block, scanned_from),
            synced_to_block=max(state.synced_to_block, contiguous_through),
        )

    # Disjoint: one contiguous interval is tracked and the lower one wins.
    if scanned_from < state.synced_from_block:
        return replace(state, synced_from_block=scanned_from, synced_to_block=contiguous_through)
    return state


def transactions_in_block(address: str, block: ChainBlock) -> list[Transaction]:
    """Transactions sent from/to address plus withdrawal credits to it."""
    timestamp = datetime.fromtimestamp(block.timestamp, tz=timezone.utc)
    out: list[Transaction] = []

    for tx in block.transactions:
        sender = tx.from_address.lower()
        recipient = (tx.to_address or "").lower()
        if sender != address and recipient != address:
            continue
        out.append(
            Transaction(
                hash=tx.hash,
                from_address=sender,
                to_address=recipient,
                value=str(tx.value),
                block_number=block.number,
                timestamp=timestamp,
            )
        )

    for withdrawal in block.withdrawals:
        if withdrawal.address.lower() != address:
            continue
        out.append(
            Transaction(
                hash=f"withdrawal-{block.number}-{withdrawal.index}",
                from_address=ZERO_ADDRESS,
                to_address=address,
                value=str(withdrawal.amount * GWEI_TO_WEI),
                block_number=block.number,
                timestamp=timestamp,
            )
        )

    return out


class TransactionSyncEngine:
    """
    Cache-through transaction history for arbitrary addresses.

    A request:
    1) coalesces with any in-flight sync of the same address,
    2) picks a start block (explicit, or the contract creation block, or 0),
    3) skips blocks already covered by the address's synced interval,
    4) scans the remaining blocks in small concurrent batches,
    5) stores matches idempotently and extends the synced interval,
    6) answers from the store.
    """

    def __init__(
        self,
        *,
        provider: ChainRpcProvider,
        transactions: TransactionsRepository,
        locator: ContractCreationLocator,
        batch_size: int = _DEFAULT_BATCH_SIZE,
        batch_delay: float = _DEFAULT_BATCH_DELAY,
    ) -> None:
        if batch_size <= 0:
            raise ValueError("batch_size must be positive")
        self._provider = provider
        self._transactions = transactions
        self._locator = locator
        self._batch_size = batch_size
        self._batch_delay = batch_delay
        self._flights = SingleFlight()

    async def get_or_fetch_transactions(
        self,
        address: str,
        from_block: int | None = None,
        to_block: BlockTag | None = None,
    ) -> list[Transaction]:
        address = address.lower()

        while self._flights.in_flight(address):
            logger.debug("Fetch for %s already in progress, waiting...", address)
            await self._flights.wait(address)

        async with self._flights.lead(address):
            return await self._sync_and_read(address, from_block, to_block)

    async def _sync_and_read(
        self,
        address: str,
        from_block: int | None,
        to_block: BlockTag | None,
    ) -> list[Transaction]:
        state = await self._transactions.get_sync_state(address)
        # Rows cached before sync state was tracked for this address.
        untracked = state is None

        if from_block is not None:
            base_block = from_block
        else:
            base_block, state = await self._creation_start(address, state)

        if to_block is None or to_block == "latest":
            end_block = await self._provider.current_head()
            upper_bound: int | None = None
        else:
            end_block = int(to_block)
            upper_bound = end_block

        latest_cached: int | None = None
        if untracked:
            cached = await self._transactions.find_latest_cached_transaction(address)
            latest_cached = cached.block_number if cached is not None else None

        start_block = plan_scan_start(base_block, state, latest_cached)

        if start_block <= end_block:
            logger.info("Fetching transactions for %s from block %s to %s", address, start_block, end_block)
            found, contiguous_through = await self.fetch_transactions_from_chain(
                address,
                start_block,
                end_block,
            )
            if found:
                written = await self._transactions.insert_many_transactions_if_absent(found)
                logger.info("Stored %s new transaction(s) for %s", written, address)

            # Cached rows already vouch for [base_block, start_block - 1].
            covered_from = base_block if latest_cached is not None else start_block
            state = merge_synced_interval(
                state or empty_sync_state(address),
                covered_from,
                contiguous_through,
            )
            await self._transactions.save_sync_state(state)
        else:
            logger.debug("Blocks %s..%s for %s already synced", base_block, end_block, address)

        return await self._transactions.find_transactions_by_address(
            address,
            from_block=from_block,
            to_block=upper_bound,
        )

    async def _creation_start(
        self,
        address: str,
        state: AddressSyncState | None,
    ) -> tuple[int, AddressSyncState]:
        if state is not None and state.locator_checked:
            return state.creation_block or 0, state

        creation_block = await self._locator.find_creation_block(address)
        state = replace(
            state or empty_sync_state(address),
            creation_block=creation_block,
            locator_checked=True,
        )
        await self._transactions.save_sync_state(state)
        return creation_block or 0, state

    async def fetch_transactions_from_chain(
        self,
        address: str,
        start_block: int,
        end_block: BlockTag,
    ) -> tuple[list[Transaction], int]:
        """
        Scan [start_block, end_block] for transactions touching address.

        Failed batches are logged and skipped. Returns the matches and the
        last block up to which every batch succeeded (start_block - 1 if
        the first batch failed).
        """
        address = address.lower()
        if end_block == "latest":
            end_block = await self._provider.current_head()

        found: list[Transaction] = []
        contiguous_through = start_block - 1
        if start_block > end_block:
            return found, contiguous_through

        windows = BlockRange(from_block=start_block, to_block=end_block).windows(self._batch_size)
        gap = False

        for i, window in enumerate(windows):
            try:
                blocks = await self._fetch_batch(window)
            except Exception:
                logger.exception(
                    "Failed to fetch block batch %s..%s for %s; skipping",
                    window.from_block,
                    window.to_block,
                    address,
                )
                gap = True
            else:
                for block in blocks:
                    found.extend(transactions_in_block(address, block))
                if not gap:
                    contiguous_through = window.to_block

            if self._batch_delay and i < len(windows) - 1:
                await asyncio.sleep(self._batch_delay)

        logger.info(
            "Scanned blocks %s..%s for %s: %s match(es)",
            start_block,
            end_block,
            address,
            len(found),
        )
        return found, contiguous_through

    async def _fetch_batch(self, window: BlockRange) -> list[ChainBlock]:
        results = await asyncio.gather(
            *(
                self._provider.raw_block(n, include_transactions=True)
                for n in range(window.from_block, window.to_block + 1)
            ),
            return_exceptions=True,
        )

        blocks: list[ChainBlock] = []
        for number, result in zip(range(window.from_block, window.to_block + 1), results):
            if isinstance(result, BaseException):
                raise result
            if result is None:
                raise BatchFetchError(f"Block {number} not found")
            blocks.append(result)
        return blocks

    async def get_balance_for_address(self, address: str) -> Balance:
        address = address.lower()
        wei = await self._provider.get_balance(address)
        ether = format(Decimal(from_wei(wei, "ether")), "f")
        if "." not in ether:
            ether += ".0"
        return Balance(
            address=address,
            balance=ether,
            balance_wei=str(wei),
            last_updated=datetime.now(timezone.utc).isoformat(),
        )
