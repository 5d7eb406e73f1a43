"""Background job wrapper for a running migration."""

import asyncio
from collections.abc import Awaitable, Callable, Coroutine
from typing import Any

import structlog

logger = structlog.get_logger()


class MigrationJob:
    """An ``asyncio.Task`` with explicit cancellation and completion signalling.

    The orchestrator keeps at most one unfinished job. Callers await
    ``wait()`` instead of polling the state.

    A cancel that arrives before the task ran its first step cannot reach the
    coroutine's own cleanup, so the coroutine is discarded and ``on_abort``
    runs in its place to finalize whatever state the coroutine would have.
    """

    def __init__(
        self,
        coro: Coroutine[Any, Any, None],
        on_abort: Callable[[], Awaitable[None]] | None = None,
        name: str = "migration",
    ):
        self._coro = coro
        self._on_abort = on_abort
        self._started = False
        self._cancel_requested = False
        self._done = asyncio.Event()
        self._task = asyncio.create_task(self._run(), name=name)
        self._task.add_done_callback(self._finished)

    async def _run(self) -> None:
        if self._cancel_requested:
            self._coro.close()
            logger.info("Migration job cancelled before it started")
            if self._on_abort is not None:
                await self._on_abort()
            return

        self._started = True
        try:
            await self._coro
        except asyncio.CancelledError:
            logger.info("Migration job cancelled")
            raise
        except Exception as e:
            # The job finalizes its own state; anything reaching here is a bug
            logger.exception("Migration job crashed", error=str(e))

    def _finished(self, task: asyncio.Task) -> None:
        if not self._started:
            # Task torn down before _run got to the coroutine
            self._coro.close()
        self._done.set()

    @property
    def done(self) -> bool:
        return self._done.is_set()

    def cancel(self) -> bool:
        """Request cancellation; returns False if the job already finished."""
        if self.done:
            return False
        if self._cancel_requested:
            return True
        self._cancel_requested = True
        if not self._started:
            return True
        return self._task.cancel()

    async def wait(self, timeout: float | None = None) -> None:
        """Block until the job has finished, cancelled or not."""
        await asyncio.wait_for(self._done.wait(), timeout=timeout)
