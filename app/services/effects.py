import asyncio
from typing import Any, Callable, Coroutine

import structlog

logger = structlog.get_logger(__name__)


def _log_failure(name: str, exc: BaseException) -> None:
    logger.error("side_effect_failed", effect=name, error=str(exc), exc_info=exc)


class SideEffects:
    """
    Runs best-effort work (change-log appends, notifications) off the
    request path.

    Spawned coroutines are never awaited by the operation that started them;
    a failure is handed to ``on_error`` and goes no further.
    """

    def __init__(self, on_error: Callable[[str, BaseException], None] = _log_failure):
        self.on_error = on_error
        self._pending: set[asyncio.Task] = set()

    def spawn(self, name: str, coro: Coroutine[Any, Any, Any]) -> asyncio.Task:
        task = asyncio.create_task(coro, name=name)
        self._pending.add(task)
        task.add_done_callback(self._finished)
        return task

    def _finished(self, task: asyncio.Task) -> None:
        self._pending.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            self.on_error(task.get_name(), exc)

    @property
    def pending(self) -> int:
        return len(self._pending)

    async def drain(self) -> None:
        """Wait for everything spawned so far, including effects spawned by effects."""
        while self._pending:
            batch = list(self._pending)
            await asyncio.gather(*batch, return_exceptions=True)
            self._pending.difference_update(t for t in batch if t.done())
