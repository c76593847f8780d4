import asyncio

import pytest

from dmnd_proxy.protocol import ProxyError
from dmnd_proxy.task_manager import AbortHandle, Broadcast, TaskKind, TaskManager


async def _forever():
    await asyncio.Event().wait()


@pytest.mark.asyncio
async def test_abort_handle_cancels_task():
    task = asyncio.create_task(_forever())
    handle = AbortHandle(task)
    assert not handle.is_finished()
    handle.abort()
    with pytest.raises(asyncio.CancelledError):
        await task
    assert handle.is_finished()
    assert task.cancelled()


@pytest.mark.asyncio
async def test_abort_handle_context_manager_aborts():
    task = asyncio.create_task(_forever())
    with AbortHandle(task):
        pass
    await asyncio.gather(task, return_exceptions=True)
    assert task.cancelled()


@pytest.mark.asyncio
async def test_get_aborter_only_once():
    manager = TaskManager("test")
    first = manager.get_aborter()
    assert first is not None and not first.is_finished()
    assert manager.get_aborter() is None
    first.abort()
    await asyncio.gather(first.task, return_exceptions=True)
    assert first.is_finished()


@pytest.mark.asyncio
async def test_add_records_tasks_in_order():
    manager = TaskManager("test")
    aborter = manager.get_aborter()
    h1 = AbortHandle(asyncio.create_task(_forever()))
    h2 = AbortHandle(asyncio.create_task(_forever()))
    manager.add(TaskKind.UPSTREAM, h1)
    manager.add(TaskKind.BRIDGE, h2)
    assert manager.tasks() == [(TaskKind.UPSTREAM, h1), (TaskKind.BRIDGE, h2)]
    aborter.abort()
    await asyncio.gather(h1.task, h2.task, return_exceptions=True)
    assert h1.task.cancelled() and h2.task.cancelled()


@pytest.mark.asyncio
async def test_aborting_manager_aborts_all_tasks():
    manager = TaskManager("test")
    aborter = manager.get_aborter()
    child = asyncio.create_task(_forever())
    manager.add(TaskKind.MAIN_LOOP, AbortHandle(child))
    aborter.abort()
    await asyncio.gather(child, return_exceptions=True)
    assert child.cancelled()
    assert manager.tasks() == []


@pytest.mark.asyncio
async def test_add_after_abort_raises_and_aborts_task():
    manager = TaskManager("test")
    aborter = manager.get_aborter()
    aborter.abort()
    await asyncio.gather(aborter.task, return_exceptions=True)
    child = asyncio.create_task(_forever())
    with pytest.raises(RuntimeError):
        manager.add(TaskKind.HANDLE_SUBMIT, AbortHandle(child))
    await asyncio.gather(child, return_exceptions=True)
    assert child.cancelled()


def test_broadcast_without_subscribers_raises():
    channel = Broadcast(4)
    with pytest.raises(ProxyError):
        channel.send("job")


def test_broadcast_delivers_to_every_subscriber():
    channel = Broadcast(4)
    first = channel.subscribe()
    second = channel.subscribe()
    assert channel.send("job") == 2
    assert first.get_nowait() == "job"
    assert second.get_nowait() == "job"


def test_broadcast_drops_oldest_when_full():
    channel = Broadcast(2)
    queue = channel.subscribe()
    for item in ("a", "b", "c"):
        channel.send(item)
    assert [queue.get_nowait(), queue.get_nowait()] == ["b", "c"]
    assert queue.empty()


def test_broadcast_rejects_zero_capacity():
    with pytest.raises(ValueError):
        Broadcast(0)