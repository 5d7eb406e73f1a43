"""Shared in-memory state of one panel's migration attempts.

A single ``MigrationState`` exists per running service. Every read goes
through the shared side of an ``AsyncRWLock`` and every mutation through the
exclusive side, held only for the mutation itself; external commands always
run outside the lock. Nothing is persisted: a restart loses in-flight state.
"""

import asyncio
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from typing import Any, AsyncIterator


from ...models.enums import ItemKind, ItemStatus, MigrationStep
from ...models.migration import ConnectionInfo, ItemSelection, MigrationItemResult
from ..exceptions import ConflictError, PreconditionError
from ..logging_config import get_migration_logger

logger = get_migration_logger()

# step -> steps reachable through precheck, get_items, start and job completion
_TRANSITIONS: dict[MigrationStep, set[MigrationStep]] = {
    MigrationStep.IDLE: {MigrationStep.PRECHECK},
    MigrationStep.PRECHECK: {MigrationStep.PRECHECK, MigrationStep.SELECT, MigrationStep.RUNNING},
    MigrationStep.SELECT: {MigrationStep.PRECHECK, MigrationStep.RUNNING},
    MigrationStep.RUNNING: {MigrationStep.DONE},
    MigrationStep.DONE: {MigrationStep.PRECHECK, MigrationStep.RUNNING},
}


class AsyncRWLock:
    """Reader/writer lock for coroutines, preferring waiting writers."""

    def __init__(self):
        self._cond = asyncio.Condition()
        self._readers = 0
        self._writer = False
        self._waiting_writers = 0

    @asynccontextmanager
    async def read(self) -> AsyncIterator[None]:
        async with self._cond:
            await self._cond.wait_for(lambda: not self._writer and self._waiting_writers == 0)
            self._readers += 1
        try:
            yield
        finally:
            async with self._cond:
                self._readers -= 1
                if self._readers == 0:
                    self._cond.notify_all()

    @asynccontextmanager
    async def write(self) -> AsyncIterator[None]:
        async with self._cond:
            self._waiting_writers += 1
            try:
                await self._cond.wait_for(lambda: not self._writer and self._readers == 0)
            finally:
                self._waiting_writers -= 1
                self._cond.notify_all()
            self._writer = True
        try:
            yield
        finally:
            async with self._cond:
                self._writer = False
                self._cond.notify_all()


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


class MigrationState:
    """Step, connection, selection, results and transcript of the current attempt."""

    def __init__(self):
        self.lock = AsyncRWLock()
        self.step = MigrationStep.IDLE
        self.connection: ConnectionInfo | None = None
        self.selection: ItemSelection | None = None
        self.results: list[MigrationItemResult] = []
        self.logs: list[str] = []
        self.started_at: datetime | None = None
        self.ended_at: datetime | None = None
        self.key_path = ""

    def _advance(self, step: MigrationStep) -> None:
        if step not in _TRANSITIONS[self.step]:
            raise PreconditionError(f"invalid migration step change {self.step.value} -> {step.value}")
        self.step = step

    # Transitions

    async def ensure_not_running(self) -> None:
        async with self.lock.read():
            if self.step is MigrationStep.RUNNING:
                raise ConflictError("migration is already running")

    async def store_connection(self, conn: ConnectionInfo) -> None:
        """Record a verified connection and move to the precheck step."""
        async with self.lock.write():
            if self.step is MigrationStep.RUNNING:
                raise ConflictError("migration is already running")
            self.connection = conn
            self._advance(MigrationStep.PRECHECK)

    async def confirm_selection(self) -> None:
        """First successful item listing after a precheck advances to select."""
        async with self.lock.write():
            if self.step is MigrationStep.PRECHECK:
                self._advance(MigrationStep.SELECT)

    async def begin_run(self, selection: ItemSelection) -> ConnectionInfo:
        """Switch to running for ``selection`` and return the stored connection.

        Raises:
            ConflictError: a migration is already running
            PreconditionError: no precheck has stored a connection yet
        """
        async with self.lock.write():
            if self.step is MigrationStep.RUNNING:
                raise ConflictError("migration is already running")
            if self.connection is None:
                raise PreconditionError("please complete pre-check first")
            self._advance(MigrationStep.RUNNING)
            self.selection = selection
            self.results = []
            self.logs = []
            self.started_at = datetime.now(UTC)
            self.ended_at = None
            return self.connection

    async def finish_run(self) -> None:
        async with self.lock.write():
            self._advance(MigrationStep.DONE)
            self.ended_at = datetime.now(UTC)

    async def reset(self) -> None:
        async with self.lock.write():
            if self.step is MigrationStep.RUNNING:
                raise ConflictError("migration is running, cannot reset")
            self.step = MigrationStep.IDLE
            self.connection = None
            self.selection = None
            self.results = []
            self.logs = []
            self.started_at = None
            self.ended_at = None
            self.key_path = ""

    # Mutations made by the background job

    async def add_log(self, message: str) -> None:
        line = f"[{datetime.now().strftime('%H:%M:%S')}] {message}"
        async with self.lock.write():
            self.logs.append(line)
        logger.info("migration log", message=message)

    async def add_result(self, kind: ItemKind, name: str) -> MigrationItemResult:
        """Create the running result for an item about to be processed."""
        result = MigrationItemResult(type=kind, name=name, started_at=datetime.now(UTC))
        async with self.lock.write():
            if any(r.key == result.key and not r.terminal for r in self.results):
                raise ConflictError(f"{kind.value} {name} is already being migrated")
            self.results.append(result)
        return result

    async def finish_result(
        self, kind: ItemKind, name: str, status: ItemStatus, error: str = ""
    ) -> bool:
        """Move the running result for (kind, name) to a terminal status.

        Returns False when no running result matches; terminal results are
        never touched again.
        """
        now = datetime.now(UTC)
        async with self.lock.write():
            for result in self.results:
                if result.key == (kind, name) and not result.terminal:
                    result.status = status
                    result.error = error
                    result.ended_at = now
                    if result.started_at is not None:
                        result.duration = (now - result.started_at).total_seconds()
                    return True
        logger.warning("No running result to finalize", kind=kind.value, name=name)
        return False

    async def set_key_path(self, path: str) -> None:
        async with self.lock.write():
            self.key_path = path

    # Reads

    async def get_key_path(self) -> str:
        async with self.lock.read():
            return self.key_path

    async def get_step(self) -> MigrationStep:
        async with self.lock.read():
            return self.step

    def _snapshot(self) -> dict[str, Any]:
        return {
            "step": self.step.value,
            "results": [r.to_dict() for r in self.results],
            "started_at": _iso(self.started_at),
            "ended_at": _iso(self.ended_at),
        }

    async def status(self) -> dict[str, Any]:
        async with self.lock.read():
            return self._snapshot()

    async def results_with_logs(self) -> dict[str, Any]:
        async with self.lock.read():
            snapshot = self._snapshot()
            snapshot["logs"] = list(self.logs)
            return snapshot

    async def progress(self, cursor: int) -> tuple[dict[str, Any], int]:
        """Snapshot plus log lines appended since ``cursor``; returns the new cursor."""
        async with self.lock.read():
            snapshot = self._snapshot()
            if len(self.logs) > cursor:
                snapshot["new_logs"] = self.logs[cursor:]
                cursor = len(self.logs)
            return snapshot, cursor
