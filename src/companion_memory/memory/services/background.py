"""
Background capture runner.

Post-chat memory capture runs detached from the request that triggered it.
Tasks are held in a set until they finish so the event loop does not drop
them, and can be awaited together on shutdown.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional, Set


class BackgroundCaptureRunner:
    """Tracks detached capture tasks and contains their failures."""

    def __init__(self) -> None:
        self._tasks: Set[asyncio.Task] = set()

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def submit(self, coro_factory: Callable[[], Awaitable[Any]], name: Optional[str] = None) -> asyncio.Task:
        """Schedule a coroutine on the running loop and return its task.

        The task never raises to whoever awaits it: failures are logged.
        """
        task = asyncio.create_task(self._guarded(coro_factory, name or "memory-capture"), name=name)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _guarded(self, coro_factory: Callable[[], Awaitable[Any]], name: str) -> Any:
        try:
            return await coro_factory()
        except asyncio.CancelledError:
            logging.warning(f"Background task {name} cancelled")
            raise
        except Exception as e:
            logging.error(f"Background task {name} failed: {e}")
            return None

    async def drain(self, timeout: Optional[float] = None) -> None:
        """Wait for in-flight tasks; cancel whatever is left after ``timeout``."""
        if not self._tasks:
            return
        tasks = list(self._tasks)
        logging.info(f"Draining {len(tasks)} background capture task(s)")
        done, pending = await asyncio.wait(tasks, timeout=timeout)
        for task in pending:
            task.cancel()
        if pending:
            logging.warning(f"Cancelled {len(pending)} background capture task(s) after {timeout}s")
            await asyncio.gather(*pending, return_exceptions=True)
