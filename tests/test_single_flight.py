import asyncio

import pytest

from chain_sync_engine.app.application.services.single_flight import SingleFlight
from chain_sync_engine.app.application.services.task_supervisor import TaskSupervisor


@pytest.mark.asyncio
async def test_followers_wait_for_the_leader():
    flights = SingleFlight()
    order: list[str] = []

    async def leader():
        async with flights.lead("0xabc"):
            await asyncio.sleep(0.01)
            order.append("leader")

    async def follower():
        await asyncio.sleep(0)
        assert flights.in_flight("0xabc")
        await flights.wait("0xabc")
        order.append("follower")

    await asyncio.gather(leader(), follower())

    assert order == ["leader", "follower"]
    assert not flights.in_flight("0xabc")


@pytest.mark.asyncio
async def test_signal_is_released_when_leader_fails():
    flights = SingleFlight()

    with pytest.raises(RuntimeError, match="rpc down"):
        async with flights.lead("0xabc"):
            raise RuntimeError("rpc down")

    assert not flights.in_flight("0xabc")
    await asyncio.wait_for(flights.wait("0xabc"), timeout=1)


@pytest.mark.asyncio
async def test_second_leader_for_same_key_is_rejected():
    flights = SingleFlight()
    async with flights.lead("0xabc"):
        with pytest.raises(RuntimeError):
            async with flights.lead("0xabc"):
                pass


@pytest.mark.asyncio
async def test_supervisor_replaces_task_under_same_key():
    supervisor = TaskSupervisor()
    first = supervisor.spawn("historical:0xabc", asyncio.sleep(10))
    second = supervisor.spawn("historical:0xabc", asyncio.sleep(10))
    await asyncio.sleep(0)

    assert first.cancelled()
    assert supervisor.is_running("historical:0xabc")

    await supervisor.cancel("historical:0xabc")
    assert second.cancelled()
    assert not supervisor.is_running("historical:0xabc")


@pytest.mark.asyncio
async def test_supervisor_shutdown_cancels_everything():
    supervisor = TaskSupervisor()
    tasks = [supervisor.spawn(f"t{i}", asyncio.sleep(10)) for i in range(3)]

    await supervisor.shutdown()

    assert all(t.cancelled() for t in tasks)
    assert not supervisor.is_running("t0")
