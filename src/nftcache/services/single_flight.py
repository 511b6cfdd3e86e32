"""Single-flight: concurrent callers for one key share a single in-flight task."""

import asyncio
from typing import Awaitable, Callable, Generic, TypeVar

import structlog

logger = structlog.get_logger(__name__)

T = TypeVar("T")


class SingleFlight(Generic[T]):
    """Deduplicate concurrent work per key.

    The first caller for a key starts a task; callers arriving while it runs
    await the same task. A caller being cancelled does not cancel the shared
    task (it is shielded), so other waiters still get the result. The key is
    forgotten as soon as the task finishes, so a later call starts fresh work.
    """

    def __init__(self) -> None:
        self._inflight: dict[str, asyncio.Task[T]] = {}

    async def do(self, key: str, fn: Callable[[], Awaitable[T]]) -> T:
        """Run `fn` for `key`, or join the task already running for it."""
        task = self._inflight.get(key)
        if task is None:
            task = asyncio.ensure_future(fn())
            self._inflight[key] = task
            task.add_done_callback(lambda t, key=key: self._forget(key, t))
        else:
            logger.debug("single_flight.joined", key=key)
        return await asyncio.shield(task)

    def _forget(self, key: str, task: asyncio.Task[T]) -> None:
        if self._inflight.get(key) is task:
            del self._inflight[key]
        # Mark the exception retrieved when every waiter was cancelled
        if not task.cancelled():
            task.exception()

    def inflight(self, key: str) -> bool:
        return key in self._inflight

    def __len__(self) -> int:
        return len(self._inflight)

    async def cancel_all(self) -> None:
        """Cancel and join every in-flight task (shutdown)."""
        tasks = list(self._inflight.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
            logger.info("single_flight.cancelled", count=len(tasks))
