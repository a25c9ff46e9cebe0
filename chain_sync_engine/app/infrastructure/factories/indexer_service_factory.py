from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Callable, Dict

from sqlalchemy.ext.asyncio import AsyncEngine

from chain_sync_engine.app.application.services.admission_throttle import AdmissionThrottle
from chain_sync_engine.app.application.services.contract_creation import ContractCreationLocator
from chain_sync_engine.app.application.services.event_processing import EventProcessor
from chain_sync_engine.app.application.services.historical_sync import HistoricalSyncEngine
from chain_sync_engine.app.application.services.indexer_service import IndexerService
from chain_sync_engine.app.application.services.live_subscriptions import LiveSubscriptionManager
from chain_sync_engine.app.application.services.task_supervisor import TaskSupervisor
from chain_sync_engine.app.application.services.transaction_sync import TransactionSyncEngine
from chain_sync_engine.app.application.services.watch_registry import WatchRegistry
from chain_sync_engine.app.config import Settings
from chain_sync_engine.app.domain.ports.out import (
    ChainRpcProvider,
    EventDecoder,
    EventDecoderFactory,
    EventsRepository,
    TransactionsRepository,
    WatchedContractsRepository,
)
from chain_sync_engine.app.infrastructure.adapters.storage.events_repository import (
    SqlAlchemyEventsRepository,
)
from chain_sync_engine.app.infrastructure.adapters.storage.transactions_repository import (
    SqlAlchemyTransactionsRepository,
)
from chain_sync_engine.app.infrastructure.adapters.storage.watched_contracts_repository import (
    SqlAlchemyWatchedContractsRepository,
)
from chain_sync_engine.app.infrastructure.decoders.event_signature_decoder import EventSignatureDecoder
from chain_sync_engine.app.infrastructure.rpc.web3_chain_provider import Web3ChainProvider

Repositories = tuple[WatchedContractsRepository, EventsRepository, TransactionsRepository]
RepositoriesFactory = Callable[[AsyncEngine], Repositories]

_REPOSITORIES_REGISTRY: Dict[str, RepositoriesFactory] = {
    "sqlalchemy": lambda engine: (
        SqlAlchemyWatchedContractsRepository(engine=engine),
        SqlAlchemyEventsRepository(engine=engine),
        SqlAlchemyTransactionsRepository(engine=engine),
    ),
}


def repositories_factory(backend: str, engine: AsyncEngine) -> Repositories:
    try:
        factory = _REPOSITORIES_REGISTRY[backend]
    except KeyError:
        raise ValueError(f"Unsupported storage backend: {backend!r}")
    return factory(engine)


def decoder_factory(abi_path: str | None = None) -> EventDecoderFactory:
    """One cached EventSignatureDecoder per signature."""
    path = Path(abi_path) if abi_path else None

    @lru_cache(maxsize=256)
    def decoder_for(event_signature: str) -> EventDecoder:
        return EventSignatureDecoder(event_signature=event_signature, abi_path=path)

    return decoder_for


def chain_provider_factory(settings: Settings) -> Web3ChainProvider:
    return Web3ChainProvider(
        http_url=settings.rpc_http_url,
        wss_url=settings.rpc_wss_url,
        request_timeout=settings.rpc_request_timeout,
        retry_seconds=settings.rpc_retry_seconds,
    )


def build_indexer_service(
    *,
    settings: Settings,
    engine: AsyncEngine,
    provider: ChainRpcProvider | None = None,
    backend: str = "sqlalchemy",
) -> IndexerService:
    """Wire repositories, chain provider and services into an IndexerService."""
    if provider is None:
        provider = chain_provider_factory(settings)
    watchers, events, transactions = repositories_factory(backend, engine)
    decoder_for = decoder_factory(settings.event_abi_path)
    supervisor = TaskSupervisor()

    processor = EventProcessor(provider=provider, events=events, watchers=watchers)
    live = LiveSubscriptionManager(
        provider=provider,
        processor=processor,
        decoder_for=decoder_for,
        supervisor=supervisor,
        heartbeat_interval=settings.heartbeat_interval,
    )
    historical = HistoricalSyncEngine(
        provider=provider,
        watchers=watchers,
        processor=processor,
        live=live,
        decoder_for=decoder_for,
        batch_size=settings.historical_batch_size,
        retry_delay=settings.historical_retry_delay,
    )
    registry = WatchRegistry(
        watchers=watchers,
        events=events,
        historical=historical,
        live=live,
        supervisor=supervisor,
    )
    transaction_sync = TransactionSyncEngine(
        provider=provider,
        transactions=transactions,
        locator=ContractCreationLocator(provider=provider),
        batch_size=settings.transaction_batch_size,
        batch_delay=settings.transaction_batch_delay,
    )

    return IndexerService(
        provider=provider,
        registry=registry,
        live=live,
        transactions=transaction_sync,
        throttle=AdmissionThrottle(settings.throttle_capacity, timeout=settings.throttle_timeout),
        decoder_for=decoder_for,
    )
