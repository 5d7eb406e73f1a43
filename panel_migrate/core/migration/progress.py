"""Push-based migration progress for connected clients."""

import asyncio
import json
from collections.abc import Awaitable, Callable

import structlog

from ...models.enums import MigrationStep
from .state import MigrationState

logger = structlog.get_logger()

_FINAL_STEPS = (MigrationStep.DONE.value, MigrationStep.IDLE.value)


class ProgressPublisher:
    """Samples the migration state on a fixed cadence and pushes snapshots.

    Each message carries the step, all results, start/end timestamps and only
    the log lines appended since the previous message. Publishing ends after
    the first snapshot that observes ``done`` or ``idle`` (a concurrent
    reset), or as soon as sending fails.
    """

    def __init__(self, state: MigrationState, interval: float = 1.0):
        self.state = state
        self.interval = interval

    async def publish(self, send: Callable[[str], Awaitable[None]]) -> bool:
        """Stream snapshots through ``send``.

        Returns:
            True when the migration finished and the channel should be closed
            normally, False when sending failed
        """
        cursor = 0
        while True:
            await asyncio.sleep(self.interval)
            snapshot, cursor = await self.state.progress(cursor)
            try:
                await send(json.dumps(snapshot))
            except Exception as e:
                logger.info("Progress client went away", error=str(e))
                return False
            if snapshot["step"] in _FINAL_STEPS:
                return True
