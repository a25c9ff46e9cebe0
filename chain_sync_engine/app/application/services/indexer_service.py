from __future__ import annotations

import logging
import re

from chain_sync_engine.app.application.services.admission_throttle import AdmissionThrottle, throttled
from chain_sync_engine.app.application.services.live_subscriptions import LiveSubscriptionManager
from chain_sync_engine.app.application.services.transaction_sync import TransactionSyncEngine
from chain_sync_engine.app.application.services.watch_registry import WatchRegistry
from chain_sync_engine.app.domain.errors import InvalidAddressError
from chain_sync_engine.app.domain.models import (
    Balance,
    BlockTag,
    EventsPage,
    Transaction,
    WatchedContract,
    WatchStarted,
    WatchStopped,
)
from chain_sync_engine.app.domain.ports.out import ChainRpcProvider, EventDecoderFactory

logger = logging.getLogger(__name__)

_ADDRESS_RE = re.compile(r"^0x[a-fA-F0-9]{40}$")


def validate_address(address: str) -> str:
    if not isinstance(address, str) or not _ADDRESS_RE.match(address):
        raise InvalidAddressError(f"Invalid address format: {address!r}")
    return address.lower()


def validate_block(value: int | None, name: str) -> None:
    if value is not None and value < 0:
        raise ValueError(f"{name} must be non-negative")


class IndexerService:
    """
    Entry point for callers (CLI tasks or an HTTP layer).

    Validates input, then delegates to the watch registry and the
    transaction sync engine. RPC-heavy reads pass the admission throttle.
    """

    def __init__(
        self,
        *,
        provider: ChainRpcProvider,
        registry: WatchRegistry,
        live: LiveSubscriptionManager,
        transactions: TransactionSyncEngine,
        throttle: AdmissionThrottle,
        decoder_for: EventDecoderFactory,
    ) -> None:
        self._provider = provider
        self._registry = registry
        self._live = live
        self._transactions = transactions
        self._throttle = throttle
        self._decoder_for = decoder_for

    @property
    def registry(self) -> WatchRegistry:
        return self._registry

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> int:
        """Resume active watchers and start the connection heartbeat."""
        resumed = await self._registry.resume_all()
        self.start_heartbeat()
        return resumed

    def start_heartbeat(self) -> None:
        self._live.start_heartbeat(self._registry.resume_all)

    async def shutdown(self) -> None:
        logger.info("Shutting down indexer service")
        await self._live.stop_heartbeat()
        await self._registry.shutdown()
        await self._provider.close()

    # ------------------------------------------------------------------
    # Contract events
    # ------------------------------------------------------------------

    async def start_watch(
        self,
        address: str,
        event_signature: str,
        from_block: int | None = None,
    ) -> WatchStarted:
        address = validate_address(address)
        validate_block(from_block, "from_block")
        # Raises InvalidEventSignatureError for anything that is not an event fragment.
        self._decoder_for(event_signature)
        return await self._registry.start_watch(address, event_signature, from_block)

    async def stop_watch(self, address: str) -> WatchStopped:
        return await self._registry.stop_watch(validate_address(address))

    async def get_status(self, address: str) -> WatchedContract:
        return await self._registry.get_status(validate_address(address))

    async def list_events(
        self,
        address: str,
        from_block: int | None = None,
        to_block: int | None = None,
    ) -> EventsPage:
        address = validate_address(address)
        validate_block(from_block, "from_block")
        validate_block(to_block, "to_block")
        return await self._registry.list_events(address, from_block=from_block, to_block=to_block)

    # ------------------------------------------------------------------
    # Address transactions
    # ------------------------------------------------------------------

    async def get_or_fetch_transactions(
        self,
        address: str,
        from_block: int | None = None,
        to_block: BlockTag | None = None,
    ) -> list[Transaction]:
        address = validate_address(address)
        validate_block(from_block, "from_block")
        if isinstance(to_block, int):
            validate_block(to_block, "to_block")
        return await self._throttle.run(self._fetch_transactions, address, from_block, to_block)

    async def get_balance_for_address(self, address: str) -> Balance:
        return await self._throttle.run(self._fetch_balance, validate_address(address))

    @throttled
    async def _fetch_transactions(
        self,
        address: str,
        from_block: int | None,
        to_block: BlockTag | None,
    ) -> list[Transaction]:
        return await self._transactions.get_or_fetch_transactions(address, from_block, to_block)

    @throttled
    async def _fetch_balance(self, address: str) -> Balance:
        return await self._transactions.get_balance_for_address(address)
