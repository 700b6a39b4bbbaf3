"""Fire-and-forget task ownership."""

import asyncio
from collections.abc import Coroutine
from typing import Any

from .config import config

logger = config.get_logger(__name__)


class DetachedTasks:
    """Holds strong references to detached coroutines until they finish.

    Failures are logged inside the task and never reach the spawner.
    """

    def __init__(self) -> None:
        """Initialize an empty task set."""
        self._tasks: set[asyncio.Task[Any]] = set()

    def __len__(self) -> int:
        return len(self._tasks)

    def spawn(self, coro: Coroutine[Any, Any, Any], name: str) -> asyncio.Task[Any]:
        """Schedule ``coro`` without awaiting it.

        Returns:
            The scheduled task.
        """
        loop = asyncio.get_running_loop()
        task = loop.create_task(self._guard(coro, name), name=name)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    @staticmethod
    async def _guard(coro: Coroutine[Any, Any, Any], name: str) -> None:
        try:
            await coro
        except asyncio.CancelledError:
            logger.info("Detached task %s cancelled", name)
        except Exception as exc:  # noqa: BLE001
            logger.warning("Detached task %s failed: %s", name, exc)

    async def drain(self) -> None:
        """Wait for every outstanding task to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks))
