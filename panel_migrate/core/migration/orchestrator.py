"""Cross-host migration orchestrator."""

import asyncio
from collections.abc import Callable
from typing import Any

import structlog

from ...models.enums import ItemStatus
from ...models.migration import ConnectionInfo, ItemSelection
from ...services.inventory import Inventory
from ..exceptions import PreconditionError, ProvisioningError
from ..remote_api import RemoteAPIClient
from ..security.ssh_keys import SSHKeyProvisioner
from ..settings import MigrationSettings
from ..subprocess_manager import SubprocessManager
from ..transfer import RemoteHost, RsyncTransfer
from .job import MigrationJob
from .migrators import DatabaseMigrator, ItemMigrator, ProjectMigrator, WebsiteMigrator
from .state import MigrationState

ClientFactory = Callable[[ConnectionInfo], RemoteAPIClient]


class MigrationOrchestrator:
    """Drives the migration state machine and its single background job.

    The job provisions an ephemeral SSH key, migrates websites, then
    databases, then projects strictly one at a time, tears the key down and
    finalizes the state to done. There is no orchestrator-level timeout; a
    run ends when its last item ends or when ``cancel`` is called.
    """

    def __init__(
        self,
        state: MigrationState,
        settings: MigrationSettings,
        inventory: Inventory,
        runner: SubprocessManager | None = None,
        client_factory: ClientFactory | None = None,
    ):
        self.state = state
        self.settings = settings
        self.inventory = inventory
        self.runner = runner or SubprocessManager()
        self.client_factory = client_factory or self._default_client
        self.job: MigrationJob | None = None
        self.logger = structlog.get_logger().bind(component="migration_orchestrator")

    def _default_client(self, conn: ConnectionInfo) -> RemoteAPIClient:
        return RemoteAPIClient(
            conn,
            timeout=self.settings.remote_api_timeout,
            verify_tls=self.settings.remote_verify_tls,
        )

    async def precheck(self, conn: ConnectionInfo) -> dict[str, Any]:
        """Verify the remote panel answers signed requests and store the connection.

        Raises:
            ConflictError: a migration is running
            RemoteConnectionError: remote unreachable or rejected the token;
                state is left unchanged
        """
        await self.state.ensure_not_running()

        async with self.client_factory(conn) as client:
            remote_env = await client.get_installed_environment()

        await self.state.store_connection(conn)
        self.logger.info("Precheck succeeded", remote=conn.host)
        return {"remote": remote_env}

    async def get_items(self) -> dict[str, list[dict[str, Any]]]:
        """List local websites, databases and projects that can be migrated."""
        websites = await self.inventory.websites.list()
        databases = await self.inventory.databases.list()
        projects = await self.inventory.projects.list()

        await self.state.confirm_selection()

        return {
            "websites": [w.model_dump() for w in websites],
            "databases": [d.model_dump() for d in databases],
            "projects": [p.model_dump() for p in projects],
        }

    async def start(self, selection: ItemSelection) -> MigrationJob:
        """Launch the background job for ``selection``.

        Raises:
            ConflictError: a migration is already running
            PreconditionError: precheck has not been completed
        """
        conn = await self.state.begin_run(selection)
        self.job = MigrationJob(
            self._run(conn, selection), on_abort=lambda: self._abort(conn, selection)
        )
        self.logger.info(
            "Migration started",
            remote=conn.host,
            items=selection.total,
            stop_on_error=selection.stop_on_error,
        )
        return self.job

    async def reset(self) -> None:
        await self.state.reset()

    async def cancel(self) -> None:
        if self.job is None or not self.job.cancel():
            raise PreconditionError("no migration is running")
        self.logger.info("Migration cancellation requested")

    async def wait(self, timeout: float | None = None) -> None:
        """Wait for the current job, if any, to finish."""
        if self.job is not None:
            await self.job.wait(timeout)

    async def get_status(self) -> dict[str, Any]:
        return await self.state.status()

    async def get_results(self) -> dict[str, Any]:
        return await self.state.results_with_logs()

    def _target(self, conn: ConnectionInfo) -> RemoteHost:
        return RemoteHost(
            hostname=conn.host,
            user=self.settings.remote_user,
            identity_file=self.settings.key_path,
        )

    def _plan(
        self, client: RemoteAPIClient, target: RemoteHost, selection: ItemSelection
    ) -> list[tuple[ItemMigrator, Any]]:
        """Migrators paired with their items: websites, then databases, then projects."""
        rsync = RsyncTransfer(self.runner, timeout=self.settings.rsync_timeout)
        args = (self.state, client, target, self.runner, rsync, self.inventory, self.settings)
        websites = WebsiteMigrator(*args)
        databases = DatabaseMigrator(*args)
        projects = ProjectMigrator(*args)
        return (
            [(websites, item) for item in selection.websites]
            + [(databases, item) for item in selection.databases]
            + [(projects, item) for item in selection.projects]
        )

    async def _skip_all(self, pending: list[tuple[ItemMigrator, Any]], reason: str) -> None:
        while pending:
            migrator, item = pending.pop(0)
            await migrator.skip(item, reason)

    async def _finish(self, client: RemoteAPIClient, conn: ConnectionInfo) -> None:
        await client.close()
        await self.state.add_log("===== Migration completed =====")
        await self.state.finish_run()
        self.logger.info("Migration finished", remote=conn.host)

    async def _run(self, conn: ConnectionInfo, selection: ItemSelection) -> None:
        client = self.client_factory(conn)
        pending = self._plan(client, self._target(conn), selection)
        provisioner = SSHKeyProvisioner(
            self.runner, self.state, self.settings.key_path, self.settings.keygen_timeout
        )
        try:
            await self.state.add_log("===== Migration started =====")
            try:
                await provisioner.setup(client)
            except ProvisioningError as e:
                self.logger.error("SSH key setup failed", error=str(e))
                await self.state.add_log(f"FAILED SSH key setup failed: {e}")
                return

            try:
                await self._run_items(pending, selection.stop_on_error)
            finally:
                await provisioner.teardown(client)
        except asyncio.CancelledError:
            # Items not yet handed to a migrator still need a terminal result
            await self._skip_all(pending, "skipped: migration cancelled")
            raise
        finally:
            await self._finish(client, conn)

    async def _abort(self, conn: ConnectionInfo, selection: ItemSelection) -> None:
        """Finalize a run cancelled before its job got to execute."""
        client = self.client_factory(conn)
        try:
            await self.state.add_log("===== Migration started =====")
            await self.state.add_log("Migration cancelled before it started")
            await self._skip_all(
                self._plan(client, self._target(conn), selection), "skipped: migration cancelled"
            )
        finally:
            await self._finish(client, conn)

    async def _run_items(self, pending: list[tuple[ItemMigrator, Any]], stop_on_error: bool) -> None:
        """Run items in order, popping each before it starts."""
        failed = False
        while pending:
            migrator, item = pending.pop(0)
            if failed and stop_on_error:
                await migrator.skip(item, "skipped after earlier failure")
                continue
            status = await migrator.migrate(item)
            failed = failed or status is ItemStatus.FAILED
