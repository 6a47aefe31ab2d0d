"""Background task runner abstraction.

Provides a protocol for submitting and tracking background tasks,
with an in-process asyncio implementation.  The migration orchestrator
submits job executions here so ``start``/``restart`` return immediately.
"""

import asyncio
import enum
import uuid
from collections import deque
from collections.abc import Coroutine
from typing import Any, Protocol

from loguru import logger


class TaskStatus(enum.StrEnum):
    """Status of a background task."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class BackgroundTaskRunner(Protocol):
    """Protocol for background task execution."""

    def submit_task(self, coro: Coroutine[Any, Any, Any]) -> str:
        """Submit an async task for background execution.

        Args:
            coro: The coroutine to execute.

        Returns:
            A task ID string for tracking.
        """
        ...

    def get_status(self, task_id: str) -> TaskStatus:
        """Get the current status of a background task.

        Args:
            task_id: The task ID returned by submit_task.

        Returns:
            The current task status.
        """
        ...


class InProcessTaskRunner:
    """In-process background task runner using asyncio.

    Tasks run in the same event loop as the caller using
    ``asyncio.create_task()``.  References to running tasks are kept so
    they are not garbage collected mid-flight and dropped when they finish;
    the statuses of the last ``keep_finished`` finished tasks stay queryable.
    """

    def __init__(self, keep_finished: int = 1000) -> None:
        self._tasks_status: dict[str, TaskStatus] = {}
        self._tasks: dict[str, asyncio.Task[Any]] = {}
        self._finished: deque[str] = deque()
        self._keep_finished = keep_finished

    def _on_done(self, task_id: str) -> None:
        self._tasks.pop(task_id, None)
        self._finished.append(task_id)
        while len(self._finished) > self._keep_finished:
            self._tasks_status.pop(self._finished.popleft(), None)

    def submit_task(self, coro: Coroutine[Any, Any, Any]) -> str:
        """Submit an async task for background execution.

        Args:
            coro: The coroutine to execute.

        Returns:
            A task ID string for tracking.
        """
        task_id = str(uuid.uuid4())
        self._tasks_status[task_id] = TaskStatus.PENDING

        async def _run() -> None:
            self._tasks_status[task_id] = TaskStatus.RUNNING
            try:
                await coro
                self._tasks_status[task_id] = TaskStatus.COMPLETED
            except asyncio.CancelledError:
                self._tasks_status[task_id] = TaskStatus.FAILED
                logger.warning(f"Background task {task_id} cancelled")
                raise
            except Exception:
                self._tasks_status[task_id] = TaskStatus.FAILED
                logger.exception(f"Background task {task_id} failed")
                raise

        task = asyncio.create_task(_run())
        self._tasks[task_id] = task
        task.add_done_callback(lambda _: self._on_done(task_id))
        return task_id

    def get_status(self, task_id: str) -> TaskStatus:
        """Get the current status of a background task.

        Args:
            task_id: The task ID returned by submit_task.

        Returns:
            The current task status.

        Raises:
            KeyError: If the task ID is not found.
        """
        return self._tasks_status[task_id]

    async def wait(self, task_id: str) -> None:
        """Wait for a submitted task to finish.

        Exceptions raised by the task are not re-raised; inspect
        :meth:`get_status` instead.

        Args:
            task_id: The task ID returned by submit_task.

        Raises:
            KeyError: If the task ID is not found.
        """
        task = self._tasks.get(task_id)
        if task is None:
            if task_id not in self._tasks_status:
                raise KeyError(task_id)
            return
        await asyncio.gather(task, return_exceptions=True)

    async def shutdown(self) -> None:
        """Cancel all unfinished tasks and wait for them to exit."""
        pending = [t for t in self._tasks.values() if not t.done()]
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)


# Singleton instance for the application
task_runner = InProcessTaskRunner()
