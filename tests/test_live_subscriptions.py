import asyncio
from unittest.mock import AsyncMock

import pytest

from chain_sync_engine.app.application.services.live_subscriptions import HEARTBEAT_TASK
from chain_sync_engine.app.domain.models import WatchedContract
from tests.conftest import TOKEN, TRANSFER, transfer_log


@pytest.mark.asyncio
async def test_delivered_logs_are_stored_and_checkpointed(engine):
    await engine.watchers.upsert_watcher(address=TOKEN, event_signature=TRANSFER, from_block=105)
    await engine.live.attach(TOKEN, TRANSFER)

    await engine.provider.emit(transfer_log(105, value=3))
    await engine.provider.emit(transfer_log(105, value=3))

    assert len(engine.events.rows) == 1
    assert (await engine.watchers.find_watcher(TOKEN)).last_indexed_block == 105


@pytest.mark.asyncio
async def test_processing_error_does_not_kill_the_subscription(engine):
    await engine.watchers.upsert_watcher(address=TOKEN, event_signature=TRANSFER, from_block=100)
    await engine.live.attach(TOKEN, TRANSFER)

    # block 500 is past the head: its timestamp cannot be read
    await engine.provider.emit(transfer_log(500))
    await engine.provider.emit(transfer_log(104))

    assert [e.block_number for e in engine.events.rows.values()] == [104]


@pytest.mark.asyncio
async def test_attach_replaces_previous_subscription(engine):
    first = await engine.live.attach(TOKEN, TRANSFER)
    second = await engine.live.attach(TOKEN, TRANSFER)

    assert first != second
    assert engine.provider.unsubscribed == [first]
    assert list(engine.provider.subscriptions) == [second]


@pytest.mark.asyncio
async def test_detach_and_clear(engine):
    await engine.live.attach(TOKEN, TRANSFER)

    assert await engine.live.detach(TOKEN) is True
    assert await engine.live.detach(TOKEN) is False

    await engine.live.attach(TOKEN, TRANSFER)
    await engine.live.clear()
    assert await engine.live.attached_addresses() == []


@pytest.mark.asyncio
async def test_healthy_probe_does_nothing(engine):
    on_recovered = AsyncMock()

    assert await engine.live.heartbeat_once(on_recovered) is True

    assert engine.provider.reconnects == 0
    on_recovered.assert_not_awaited()


@pytest.mark.asyncio
async def test_failed_reconnect_waits_for_next_tick(engine):
    engine.provider.ping_failures = 1
    engine.provider.fail_reconnects = 1
    on_recovered = AsyncMock()

    assert await engine.live.heartbeat_once(on_recovered) is False

    on_recovered.assert_not_awaited()


@pytest.mark.asyncio
async def test_heartbeat_failure_reconnects_and_resumes_watchers(engine):
    engine.watchers.rows[TOKEN] = WatchedContract(
        address=TOKEN, event_signature=TRANSFER, last_indexed_block=104, is_active=True
    )
    engine.provider.logs = [transfer_log(105)]
    engine.provider.ping_failures = 1

    engine.live.start_heartbeat(engine.registry.resume_all)
    for _ in range(200):
        if engine.provider.reconnects and await engine.live.is_attached(TOKEN):
            break
        await asyncio.sleep(0.01)
    await engine.live.stop_heartbeat()

    assert engine.provider.reconnects == 1
    assert engine.provider.log_queries[0] == (105, 105)
    assert await engine.live.is_attached(TOKEN)
    assert len(engine.events.rows) == 1


@pytest.mark.asyncio
async def test_failed_recovery_keeps_the_heartbeat_alive(engine):
    engine.watchers.rows[TOKEN] = WatchedContract(
        address=TOKEN, event_signature=TRANSFER, last_indexed_block=105, is_active=True
    )
    engine.provider.ping_failures = 2
    calls = []

    async def flaky_recovery():
        calls.append(1)
        if len(calls) == 1:
            raise RuntimeError("database unavailable during recovery")
        await engine.registry.resume_all()

    engine.live.start_heartbeat(flaky_recovery)
    for _ in range(200):
        if len(calls) >= 2 and await engine.live.is_attached(TOKEN):
            break
        await asyncio.sleep(0.01)

    assert engine.supervisor.is_running(HEARTBEAT_TASK)
    await engine.live.stop_heartbeat()

    assert len(calls) == 2
    assert engine.provider.reconnects == 2
    assert await engine.live.is_attached(TOKEN)
