"""Bookkeeping for the long-running tasks of the translator and a broadcast channel."""

from __future__ import annotations

import asyncio
import enum
import logging
from typing import Any

from dmnd_proxy.protocol import ProxyError

logger = logging.getLogger(__name__)


class AbortHandle:
    """Owns an asyncio task and can cancel it."""

    def __init__(self, task: asyncio.Future) -> None:
        self.task = task

    def abort(self) -> None:
        """Request cancellation of the wrapped task."""
        if not self.task.done():
            self.task.cancel()

    def is_finished(self) -> bool:
        return self.task.done()

    def __enter__(self) -> AbortHandle:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.abort()


class TaskKind(enum.Enum):
    """Role of a task kept alive by a TaskManager."""

    DOWNSTREAM_LISTENER = "downstream_listener"
    UPSTREAM = "upstream"
    STARTUP_TASK = "startup_task"
    BRIDGE = "bridge"
    NEW_EXTENDED_MINING_JOB = "new_extended_mining_job"
    DOWNSTREAM_MESSAGES = "downstream_messages"
    NEW_PREV_HASH = "new_prev_hash"
    DIFF_MANAGEMENT = "diff_management"
    MAIN_LOOP = "main_loop"
    HANDLE_SUBMIT = "handle_submit"


class TaskManager:
    """Keeps a group of tasks alive; aborting the manager aborts every task it holds.

    Must be created inside a running event loop.
    """

    def __init__(self, name: str) -> None:
        self.name = name
        self._tasks: list[tuple[TaskKind, AbortHandle]] = []
        self._closed = False
        keeper = asyncio.get_running_loop().create_task(
            self._keep_alive(), name=f"{name}-task-manager"
        )
        keeper.add_done_callback(self._shutdown)
        self._keeper = keeper
        self._abort: AbortHandle | None = AbortHandle(keeper)

    @staticmethod
    async def _keep_alive() -> None:
        await asyncio.Event().wait()

    def _shutdown(self, _task: asyncio.Future) -> None:
        self._closed = True
        tasks, self._tasks = self._tasks, []
        for _, handle in tasks:
            handle.abort()
        logger.debug("Task manager %s stopped", self.name)

    def get_aborter(self) -> AbortHandle | None:
        """Hand out the handle that stops this manager; only the first call gets it."""
        aborter, self._abort = self._abort, None
        return aborter

    def add(self, kind: TaskKind, handle: AbortHandle) -> None:
        """Register a task. If the manager is stopped the task is aborted and RuntimeError raised."""
        if self._closed or self._keeper.done():
            handle.abort()
            raise RuntimeError(f"task manager {self.name} is stopped")
        self._tasks.append((kind, handle))

    def tasks(self) -> list[tuple[TaskKind, AbortHandle]]:
        return list(self._tasks)


class Broadcast:
    """Fan-out channel: every subscriber gets every item, oldest items dropped when full."""

    def __init__(self, maxsize: int) -> None:
        if maxsize < 1:
            raise ValueError("broadcast capacity must be at least 1")
        self.maxsize = maxsize
        self._subscribers: list[asyncio.Queue] = []

    def subscribe(self) -> asyncio.Queue:
        queue: asyncio.Queue = asyncio.Queue(self.maxsize)
        self._subscribers.append(queue)
        return queue

    def send(self, item: Any) -> int:
        """Deliver item to all subscribers and return how many received it."""
        if not self._subscribers:
            raise ProxyError("broadcast has no subscribers")
        for queue in self._subscribers:
            if queue.full():
                queue.get_nowait()
            queue.put_nowait(item)
        return len(self._subscribers)