"""Per-item migration pipelines for websites, databases and projects."""

import asyncio
import posixpath
import re
import shlex
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any

import structlog

from ...models.enums import DatabaseType, ItemKind, ItemStatus
from ...models.migration import DatabaseSelection, ProjectSelection, WebsiteSelection
from ...services.inventory import Inventory
from ..exceptions import CommandError, ItemError, PanelMigrateError, RemoteConnectionError
from ..remote_api import RemoteAPIClient
from ..settings import MigrationSettings
from ..subprocess_manager import SubprocessManager
from ..transfer import RemoteHost, RsyncTransfer
from .state import MigrationState

logger = structlog.get_logger()


class ItemMigrator(ABC):
    """Common shape of an item pipeline.

    ``migrate`` creates the running result, runs the kind-specific pipeline
    and finalizes the result exactly once. Pipelines signal failure by raising
    ``ItemError``; the outer loop never sees it.
    """

    kind: ItemKind
    label: str

    def __init__(
        self,
        state: MigrationState,
        client: RemoteAPIClient,
        target: RemoteHost,
        runner: SubprocessManager,
        rsync: RsyncTransfer,
        inventory: Inventory,
        settings: MigrationSettings,
    ):
        self.state = state
        self.client = client
        self.target = target
        self.runner = runner
        self.rsync = rsync
        self.inventory = inventory
        self.settings = settings
        self.logger = logger.bind(component=f"{self.kind.value}_migrator")

    @abstractmethod
    def result_name(self, item: Any) -> str:
        """Display name identifying the item's result."""

    @abstractmethod
    async def run_pipeline(self, item: Any, name: str) -> None:
        """Transfer one item; raise ItemError to fail it."""

    async def migrate(self, item: Any) -> ItemStatus:
        name = self.result_name(item)
        await self.state.add_result(self.kind, name)
        await self.state.add_log(f"[{self.label}] start migrating: {name}")

        try:
            await self.run_pipeline(item, name)
        except asyncio.CancelledError:
            await self._fail(name, "migration cancelled")
            raise
        except PanelMigrateError as e:
            await self._fail(name, str(e))
            return ItemStatus.FAILED
        except Exception as e:
            self.logger.exception("Unexpected error migrating item", item=name)
            await self._fail(name, f"unexpected error: {e}")
            return ItemStatus.FAILED

        await self.state.finish_result(self.kind, name, ItemStatus.SUCCESS)
        await self.state.add_log(f"[{name}] {self.label.lower()} migration completed")
        return ItemStatus.SUCCESS

    async def skip(self, item: Any, reason: str) -> None:
        """Record a terminal failed result for an item that never ran."""
        name = self.result_name(item)
        await self.state.add_result(self.kind, name)
        await self._fail(name, reason)

    async def _fail(self, name: str, error: str) -> None:
        await self.state.finish_result(self.kind, name, ItemStatus.FAILED, error)
        await self.state.add_log(f"FAILED [{name}]: {error}")

    async def _warn(self, name: str, message: str) -> None:
        self.logger.warning(message, item=name)
        await self.state.add_log(f"[{name}] warning: {message}")

    async def _log_transfer(self, result: dict[str, Any]) -> None:
        await self.state.add_log(f"$ {shlex.join(result['command'])}")
        output = result["output"].strip()
        if output:
            await self.state.add_log(output)

    async def _create_remote(self, name: str, what: str, create, body: dict[str, Any]) -> None:
        """Best-effort remote creation; failure is a warning only."""
        await self.state.add_log(f"[{name}] creating {what} on remote server")
        try:
            await create(body)
        except RemoteConnectionError as e:
            await self._warn(name, f"failed to create remote {what}, continuing with file sync: {e}")

    async def _mirror_directory(self, name: str, path: str) -> None:
        await self.state.add_log(f"[{name}] syncing directory: {path}")
        await self._log_transfer(await self.rsync.mirror_directory(path, self.target))

    async def _mirror_file(self, name: str, path: str) -> None:
        await self.state.add_log(f"[{name}] syncing file: {path}")
        await self._log_transfer(await self.rsync.mirror_file(path, self.target))


class WebsiteMigrator(ItemMigrator):
    kind = ItemKind.WEBSITE
    label = "Website"

    def result_name(self, item: WebsiteSelection) -> str:
        return item.name

    def site_dir(self, name: str) -> str:
        return posixpath.join(self.settings.panel_root, "sites", name)

    async def run_pipeline(self, item: WebsiteSelection, name: str) -> None:
        try:
            website = await self.inventory.websites.get(item.id)
        except (LookupError, PanelMigrateError) as e:
            raise ItemError(f"failed to get website detail: {e}") from e

        listens = [listen.address for listen in website.listens] or ["80"]
        await self._create_remote(
            name,
            "website",
            self.client.create_website,
            {
                "name": website.name,
                "listens": listens,
                "domains": website.domains,
                "path": website.path,
                "type": website.type,
            },
        )

        site_dir = self.site_dir(website.name)
        try:
            await self._mirror_directory(name, site_dir)
        except CommandError as e:
            raise ItemError(f"rsync failed: {e}") from e

        custom_path = (item.path or website.path).rstrip("/")
        if custom_path and custom_path not in (site_dir, posixpath.join(site_dir, "public")):
            try:
                await self._mirror_directory(name, custom_path)
            except CommandError as e:
                await self._warn(name, f"custom path sync failed: {e}")


class DatabaseMigrator(ItemMigrator):
    kind = ItemKind.DATABASE
    label = "Database"

    def result_name(self, item: DatabaseSelection) -> str:
        return item.display_name

    def dump_path(self, item: DatabaseSelection) -> str:
        safe_name = re.sub(r"[^A-Za-z0-9_.-]", "_", item.name)
        return posixpath.join(self.settings.dump_dir, f"ace_migration_{item.type}_{safe_name}.sql")

    def dump_command(self, db_type: DatabaseType, db_name: str, path: str) -> tuple[list[str], dict[str, str]]:
        """Local dump command and the environment carrying its password."""
        if db_type is DatabaseType.MYSQL:
            return (
                [
                    "mysqldump",
                    "-u", "root",
                    "--single-transaction",
                    "--quick",
                    f"--result-file={path}",
                    db_name,
                ],
                {"MYSQL_PWD": self.settings.mysql_root_password},
            )
        return (
            ["pg_dump", "-h", "127.0.0.1", "-U", "postgres", "-f", path, db_name],
            {"PGPASSWORD": self.settings.postgres_password},
        )

    def import_command(self, db_type: DatabaseType, db_name: str, path: str) -> str:
        """Shell command run on the remote host; the dump is removed afterwards."""
        if db_type is DatabaseType.MYSQL:
            password_file = shlex.quote(self.settings.remote_mysql_password_file)
            client = f'MYSQL_PWD="$(cat {password_file} 2>/dev/null)" mysql -u root {shlex.quote(db_name)}'
        else:
            password_file = shlex.quote(self.settings.remote_postgres_password_file)
            client = (
                f'PGPASSWORD="$(cat {password_file} 2>/dev/null)" '
                f"psql -h 127.0.0.1 -U postgres -d {shlex.quote(db_name)}"
            )
        quoted_path = shlex.quote(path)
        return f"{client} < {quoted_path}; rc=$?; rm -f {quoted_path}; exit $rc"

    async def run_pipeline(self, item: DatabaseSelection, name: str) -> None:
        try:
            db_type = DatabaseType(item.type)
        except ValueError:
            raise ItemError(f"unsupported database type: {item.type}") from None

        path = self.dump_path(item)
        try:
            await self.state.add_log(f"[{name}] exporting database")
            dump_cmd, dump_env = self.dump_command(db_type, item.name, path)
            await self.state.add_log(f"$ {shlex.join(dump_cmd)}")
            try:
                await self.runner.run_command(
                    dump_cmd, env=dump_env, timeout=self.settings.dump_timeout
                )
            except CommandError as e:
                raise ItemError(f"database export failed: {e}") from e

            await self.state.add_log(f"[{name}] sending backup to remote server")
            try:
                await self._log_transfer(await self.rsync.mirror_file(path, self.target))
            except CommandError as e:
                raise ItemError(f"backup transfer failed: {e}") from e

            await self._create_remote(
                name,
                "database",
                self.client.create_database,
                {"server_id": item.server_id, "name": item.name},
            )

            await self.state.add_log(f"[{name}] importing database on remote server")
            import_cmd = self.rsync.build_ssh_cmd(self.target) + [
                self.import_command(db_type, item.name, path)
            ]
            await self.state.add_log(f"$ {shlex.join(import_cmd)}")
            try:
                result = await self.runner.run_command(
                    import_cmd, timeout=self.settings.import_timeout
                )
            except CommandError as e:
                raise ItemError(f"remote import failed: {e}") from e
            if result.output:
                await self.state.add_log(result.output)
        finally:
            Path(path).unlink(missing_ok=True)


class ProjectMigrator(ItemMigrator):
    kind = ItemKind.PROJECT
    label = "Project"

    def result_name(self, item: ProjectSelection) -> str:
        return item.name

    def unit_path(self, name: str) -> str:
        return posixpath.join(self.settings.systemd_unit_dir, f"{name}.service")

    async def run_pipeline(self, item: ProjectSelection, name: str) -> None:
        try:
            project = await self.inventory.projects.get(item.id)
        except (LookupError, PanelMigrateError) as e:
            raise ItemError(f"failed to get project detail: {e}") from e

        await self._create_remote(
            name,
            "project",
            self.client.create_project,
            {
                "name": project.name,
                "type": project.type,
                "root_dir": project.root_dir,
                "exec_start": project.exec_start,
                "user": project.user,
            },
        )

        path = item.path or project.root_dir
        if path:
            try:
                await self._mirror_directory(name, path)
            except CommandError as e:
                raise ItemError(f"rsync failed: {e}") from e

        try:
            await self._mirror_file(name, self.unit_path(item.name))
        except CommandError as e:
            await self._warn(name, f"service file sync failed: {e}")
