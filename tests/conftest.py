"""Pytest configuration and shared fixtures for all tests."""

import os

# Settings are only read by the CLI tasks; keep imports side-effect free anyway.
os.environ.setdefault("POSTGRES_USER", "test")
os.environ.setdefault("POSTGRES_PASSWORD", "test")
os.environ.setdefault("POSTGRES_SERVER", "localhost")
os.environ.setdefault("POSTGRES_DB", "test")
os.environ.setdefault("RPC_HTTP_URL", "http://localhost:8545")

import pytest
import pytest_asyncio
from eth_abi import encode
from eth_utils import keccak

from chain_sync_engine.app.application.services.contract_creation import ContractCreationLocator
from chain_sync_engine.app.application.services.event_processing import EventProcessor
from chain_sync_engine.app.application.services.historical_sync import HistoricalSyncEngine
from chain_sync_engine.app.application.services.live_subscriptions import LiveSubscriptionManager
from chain_sync_engine.app.application.services.task_supervisor import TaskSupervisor
from chain_sync_engine.app.application.services.transaction_sync import TransactionSyncEngine
from chain_sync_engine.app.application.services.watch_registry import WatchRegistry
from chain_sync_engine.app.domain.models import ChainLog
from chain_sync_engine.app.infrastructure.factories.indexer_service_factory import decoder_factory
from tests.fakes import (
    FakeChainProvider,
    InMemoryEventsRepository,
    InMemoryTransactionsRepository,
    InMemoryWatchedContractsRepository,
)

TOKEN = "0x6b175474e89094c44da98b954eedeac495271d0f"
ALICE = "0x1111111111111111111111111111111111111111"
BOB = "0x2222222222222222222222222222222222222222"
TRANSFER = "Transfer(address,address,uint256)"
TRANSFER_TOPIC = keccak(text=TRANSFER)


def address_topic(address: str) -> bytes:
    return bytes(12) + bytes.fromhex(address[2:])


def transfer_log(
    block_number: int,
    *,
    log_index: int = 0,
    sender: str = ALICE,
    recipient: str = BOB,
    value: int = 1,
    address: str = TOKEN,
) -> ChainLog:
    return ChainLog(
        address=address,
        block_number=block_number,
        transaction_hash="0x" + f"{block_number:04x}{log_index:04x}".rjust(64, "0"),
        log_index=log_index,
        topics=(TRANSFER_TOPIC, address_topic(sender), address_topic(recipient)),
        data=encode(["uint256"], [value]),
    )


class Engine:
    """Services wired over the in-memory fakes, the way the factory wires the real ones."""

    def __init__(self, provider: FakeChainProvider) -> None:
        self.provider = provider
        self.watchers = InMemoryWatchedContractsRepository()
        self.events = InMemoryEventsRepository()
        self.transactions = InMemoryTransactionsRepository()
        self.decoder_for = decoder_factory()
        self.supervisor = TaskSupervisor()
        self.processor = EventProcessor(provider=provider, events=self.events, watchers=self.watchers)
        self.live = LiveSubscriptionManager(
            provider=provider,
            processor=self.processor,
            decoder_for=self.decoder_for,
            supervisor=self.supervisor,
            heartbeat_interval=0.01,
        )
        self.historical = HistoricalSyncEngine(
            provider=provider,
            watchers=self.watchers,
            processor=self.processor,
            live=self.live,
            decoder_for=self.decoder_for,
            batch_size=2,
            retry_delay=0,
        )
        self.registry = WatchRegistry(
            watchers=self.watchers,
            events=self.events,
            historical=self.historical,
            live=self.live,
            supervisor=self.supervisor,
        )
        self.locator = ContractCreationLocator(provider=provider)
        self.transaction_sync = TransactionSyncEngine(
            provider=provider,
            transactions=self.transactions,
            locator=self.locator,
            batch_size=3,
            batch_delay=0,
        )


@pytest.fixture
def provider():
    return FakeChainProvider(head=105)


@pytest_asyncio.fixture
async def engine(provider):
    engine = Engine(provider)
    yield engine
    await engine.supervisor.shutdown()
