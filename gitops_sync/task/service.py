"""Task tracking service for gitops-sync.

The reconciler runs one long lived worker task per Application plus short
lived tasks for one-off work such as a manual sync. This service keeps track
of both so they can be awaited or cancelled on shutdown.
"""

import asyncio
from functools import partial
import logging
from typing import Any, Coroutine
from abc import ABC, abstractmethod

_LOGGER = logging.getLogger(__name__)

__all__: list[str] = []


class TaskService(ABC):
    """Service for tracking and waiting for asynchronous tasks."""

    @abstractmethod
    def create_task(
        self, coro: Coroutine[None, None, Any], name: str | None = None
    ) -> asyncio.Task[Any]:
        """Create and track a new short lived task."""

    @abstractmethod
    def create_background_task(
        self, coro: Coroutine[None, None, Any], name: str
    ) -> asyncio.Task[Any]:
        """Create and track a named long running task.

        Only one background task may exist per name at a time.
        """

    @abstractmethod
    async def cancel_background_task(self, name: str) -> None:
        """Cancel the named background task and wait for it to finish."""

    @abstractmethod
    async def block_till_done(self) -> None:
        """Wait for all active short lived tasks to complete."""

    @abstractmethod
    async def shutdown(self) -> None:
        """Cancel every background task and wait for all tasks to finish."""

    @abstractmethod
    def get_num_active_tasks(self) -> int:
        """Get the number of active short lived tasks."""

    @abstractmethod
    def background_task_names(self) -> list[str]:
        """Return the names of the running background tasks."""


class TaskServiceImpl(TaskService):
    """Service for tracking and waiting for asynchronous tasks."""

    def __init__(self) -> None:
        """Initialize the task service."""
        self._active_tasks: set[asyncio.Task[Any]] = set()
        self._background_tasks: dict[str, asyncio.Task[Any]] = {}

    def create_task(
        self, coro: Coroutine[None, None, Any], name: str | None = None
    ) -> asyncio.Task[Any]:
        task = asyncio.create_task(coro, name=name)
        self._active_tasks.add(task)
        task.add_done_callback(partial(self._task_done, None))
        return task

    def create_background_task(
        self, coro: Coroutine[None, None, Any], name: str
    ) -> asyncio.Task[Any]:
        if (existing := self._background_tasks.get(name)) and not existing.done():
            coro.close()
            raise ValueError(f"Background task {name} is already running")
        task = asyncio.create_task(coro, name=name)
        self._background_tasks[name] = task
        task.add_done_callback(partial(self._task_done, name))
        return task

    def _task_done(self, name: str | None, task: asyncio.Task[Any]) -> None:
        """Callback when a task is done, logging any unexpected failure."""
        try:
            task.result()
        except asyncio.CancelledError:
            pass
        except Exception as e:  # pylint: disable=broad-except
            _LOGGER.error("Task %s failed: %s", task.get_name(), e, exc_info=e)
        finally:
            if name is None:
                self._active_tasks.discard(task)
            elif self._background_tasks.get(name) is task:
                del self._background_tasks[name]

    async def cancel_background_task(self, name: str) -> None:
        if (task := self._background_tasks.get(name)) is None:
            return
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)

    async def block_till_done(self) -> None:
        """Wait for the short lived tasks running at the time of the call."""
        active_tasks = list(self._active_tasks)
        if active_tasks:
            _LOGGER.debug("Waiting for %d tasks to complete", len(active_tasks))
            await asyncio.gather(*active_tasks, return_exceptions=True)
        else:
            await asyncio.sleep(0)

    async def shutdown(self) -> None:
        background = list(self._background_tasks.values())
        _LOGGER.debug("Cancelling %d background tasks", len(background))
        for task in background:
            task.cancel()
        await asyncio.gather(*background, return_exceptions=True)
        await self.block_till_done()

    def get_num_active_tasks(self) -> int:
        return len(self._active_tasks)

    def background_task_names(self) -> list[str]:
        return sorted(
            name for name, task in self._background_tasks.items() if not task.done()
        )
