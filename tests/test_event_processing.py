import pytest

from chain_sync_engine.app.domain.errors import BatchFetchError
from tests.conftest import TOKEN, TRANSFER, transfer_log


async def _watch(engine, from_block=100):
    await engine.watchers.upsert_watcher(address=TOKEN, event_signature=TRANSFER, from_block=from_block)


@pytest.mark.asyncio
async def test_same_event_is_stored_once(engine):
    await _watch(engine)
    decoder = engine.decoder_for(TRANSFER)
    log = transfer_log(101, value=42)

    assert await engine.processor.process(TOKEN, decoder, log) is True
    assert await engine.processor.process(TOKEN, decoder, log) is False

    stored = await engine.events.find_events_by_address(TOKEN)
    assert len(stored) == 1
    assert stored[0].args["arg2"] == "42"
    assert stored[0].event_name == "Transfer"
    assert stored[0].timestamp.timestamp() == 1_700_000_000 + 101


@pytest.mark.asyncio
async def test_unparsed_log_is_skipped_but_checkpointed(engine):
    await _watch(engine)
    decoder = engine.decoder_for("Approval(address,address,uint256)")

    assert await engine.processor.process(TOKEN, decoder, transfer_log(103)) is False

    assert engine.events.rows == {}
    assert (await engine.watchers.find_watcher(TOKEN)).last_indexed_block == 103


@pytest.mark.asyncio
async def test_storage_failure_does_not_abort(engine):
    await _watch(engine)
    engine.events.fail_inserts = 1
    decoder = engine.decoder_for(TRANSFER)

    assert await engine.processor.process(TOKEN, decoder, transfer_log(101)) is False
    assert await engine.processor.process(TOKEN, decoder, transfer_log(102)) is True
    assert (await engine.watchers.find_watcher(TOKEN)).last_indexed_block == 102


@pytest.mark.asyncio
async def test_missing_block_propagates(engine):
    await _watch(engine)
    decoder = engine.decoder_for(TRANSFER)

    with pytest.raises(BatchFetchError):
        await engine.processor.process(TOKEN, decoder, transfer_log(500))


@pytest.mark.asyncio
async def test_block_timestamps_are_cached(engine):
    await _watch(engine)
    decoder = engine.decoder_for(TRANSFER)

    await engine.processor.process(TOKEN, decoder, transfer_log(101, log_index=0))
    await engine.processor.process(TOKEN, decoder, transfer_log(101, log_index=1))

    assert engine.provider.block_calls == [101]
