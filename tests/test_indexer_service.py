import pytest

from chain_sync_engine.app.application.services.admission_throttle import AdmissionThrottle
from chain_sync_engine.app.application.services.indexer_service import IndexerService
from chain_sync_engine.app.domain.errors import (
    InvalidAddressError,
    InvalidEventSignatureError,
    ThrottleTimeoutError,
)
from tests.conftest import ALICE, TOKEN, TRANSFER, transfer_log


@pytest.fixture
def throttle():
    return AdmissionThrottle(1, timeout=0.05)


@pytest.fixture
def service(engine, throttle):
    return IndexerService(
        provider=engine.provider,
        registry=engine.registry,
        live=engine.live,
        transactions=engine.transaction_sync,
        throttle=throttle,
        decoder_for=engine.decoder_for,
    )


@pytest.mark.asyncio
@pytest.mark.parametrize("address", ["", "0x123", "6b175474e89094c44da98b954eedeac495271d0f", "0x" + "g" * 40])
async def test_malformed_addresses_are_rejected(service, address):
    with pytest.raises(InvalidAddressError):
        await service.start_watch(address, TRANSFER)
    with pytest.raises(InvalidAddressError):
        await service.get_or_fetch_transactions(address)
    with pytest.raises(InvalidAddressError):
        await service.get_balance_for_address(address)


@pytest.mark.asyncio
async def test_malformed_signature_is_rejected(service, engine):
    with pytest.raises(InvalidEventSignatureError):
        await service.start_watch(TOKEN, "Transfer(address")

    assert engine.watchers.rows == {}


@pytest.mark.asyncio
async def test_negative_blocks_are_rejected(service):
    with pytest.raises(ValueError):
        await service.start_watch(TOKEN, TRANSFER, -1)
    with pytest.raises(ValueError):
        await service.get_or_fetch_transactions(ALICE, 5, -2)


@pytest.mark.asyncio
async def test_rpc_heavy_reads_pass_the_throttle(service, throttle, engine):
    async with throttle.slot():
        with pytest.raises(ThrottleTimeoutError):
            await service.get_balance_for_address(ALICE)
        with pytest.raises(ThrottleTimeoutError):
            await service.get_or_fetch_transactions(ALICE)

        # watcher lifecycle is not gated
        started = await service.start_watch(TOKEN, TRANSFER, 100)
        assert started.start_block == 100

    balance = await service.get_balance_for_address(ALICE)
    assert balance.balance_wei == "0"


@pytest.mark.asyncio
async def test_start_resumes_and_runs_heartbeat(service, engine):
    engine.provider.logs = [transfer_log(104)]
    await service.start_watch(TOKEN, TRANSFER, 100)
    await engine.registry.wait_for_sync(TOKEN)

    resumed = await service.start()
    await engine.registry.wait_for_sync(TOKEN)

    assert resumed == 1
    assert engine.supervisor.is_running("heartbeat")
    page = await service.list_events(TOKEN)
    assert [e.block_number for e in page.events] == [104]

    stopped = await service.stop_watch(TOKEN)
    assert stopped.last_indexed_block == 105

    await service.shutdown()
    assert engine.provider.closed
    assert not engine.supervisor.is_running("heartbeat")
