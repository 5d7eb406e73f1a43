"""Tests for the website, database and project pipelines."""

import asyncio
from pathlib import Path

import pytest

from panel_migrate.core.migration.migrators import (
    DatabaseMigrator,
    ProjectMigrator,
    WebsiteMigrator,
)
from panel_migrate.core.transfer import RemoteHost, RsyncTransfer
from panel_migrate.models.enums import ItemStatus
from panel_migrate.models.migration import DatabaseSelection, ProjectSelection, WebsiteSelection


@pytest.fixture
def target(settings) -> RemoteHost:
    return RemoteHost(hostname="203.0.113.5", identity_file=settings.key_path)


@pytest.fixture
def make_migrator(state, fake_client, target, runner, inventory, settings):
    rsync = RsyncTransfer(runner, timeout=60)

    def make(cls):
        return cls(state, fake_client, target, runner, rsync, inventory, settings)

    return make


def _result(state, name: str) -> dict:
    matches = [r.to_dict() for r in state.results if r.name == name]
    assert len(matches) == 1
    return matches[0]


def _logs(state) -> list[str]:
    return [line.split("] ", 1)[1] for line in state.logs]


def _rsync_sources(runner) -> list[str]:
    return [cmd[-2] for cmd in runner.commands_for("rsync")]


class TestWebsiteMigrator:
    async def test_success(self, make_migrator, state, runner, fake_client, settings):
        migrator = make_migrator(WebsiteMigrator)

        status = await migrator.migrate(WebsiteSelection(id=1, name="blog"))

        assert status is ItemStatus.SUCCESS
        assert _result(state, "blog")["status"] == "success"
        assert fake_client.calls_to("create_website") == [
            {
                "name": "blog",
                "listens": ["80", "443"],
                "domains": ["blog.example.com"],
                "path": f"{settings.panel_root}/sites/blog/public",
                "type": "php",
            }
        ]
        # The default public path lives inside the site directory: one mirror only
        assert _rsync_sources(runner) == [f"{settings.panel_root}/sites/blog/"]
        logs = _logs(state)
        assert logs[0] == "[Website] start migrating: blog"
        assert logs[-1] == "[blog] website migration completed"

    async def test_custom_path_is_mirrored_too(self, make_migrator, runner, fake_client, settings):
        migrator = make_migrator(WebsiteMigrator)

        await migrator.migrate(WebsiteSelection(id=2, name="shop"))

        assert _rsync_sources(runner) == [f"{settings.panel_root}/sites/shop/", "/srv/www/shop/"]
        assert fake_client.calls_to("create_website")[0]["listens"] == ["80"]

    async def test_site_directory_comes_from_stored_website(self, make_migrator, state, runner, settings):
        migrator = make_migrator(WebsiteMigrator)

        status = await migrator.migrate(WebsiteSelection(id=1, name="../../etc"))

        assert status is ItemStatus.SUCCESS
        assert _rsync_sources(runner) == [f"{settings.panel_root}/sites/blog/"]

    async def test_selection_path_overrides_stored_path(self, make_migrator, runner, settings):
        migrator = make_migrator(WebsiteMigrator)

        await migrator.migrate(WebsiteSelection(id=2, name="shop", path="/data/shop/"))

        assert _rsync_sources(runner)[-1] == "/data/shop/"

    async def test_remote_create_failure_is_warning(self, make_migrator, state, fake_client):
        fake_client.fail("create_website")
        migrator = make_migrator(WebsiteMigrator)

        status = await migrator.migrate(WebsiteSelection(id=1, name="blog"))

        assert status is ItemStatus.SUCCESS
        assert any(line.startswith("[blog] warning: failed to create remote website") for line in _logs(state))

    async def test_primary_mirror_failure_fails_item(self, make_migrator, state, runner, settings):
        runner.fail_on(f"{settings.panel_root}/sites/blog/", "rsync: connection unexpectedly closed")
        migrator = make_migrator(WebsiteMigrator)

        status = await migrator.migrate(WebsiteSelection(id=1, name="blog"))

        assert status is ItemStatus.FAILED
        result = _result(state, "blog")
        assert result["status"] == "failed"
        assert result["error"].startswith("rsync failed:")
        assert "connection unexpectedly closed" in result["error"]
        assert _logs(state)[-1].startswith("FAILED [blog]: rsync failed")

    async def test_custom_path_failure_is_warning(self, make_migrator, state, runner):
        runner.fail_on("/srv/www/shop/", "rsync: permission denied")
        migrator = make_migrator(WebsiteMigrator)

        status = await migrator.migrate(WebsiteSelection(id=2, name="shop"))

        assert status is ItemStatus.SUCCESS
        assert any("custom path sync failed" in line for line in _logs(state))

    async def test_unknown_website_fails(self, make_migrator, state, runner):
        migrator = make_migrator(WebsiteMigrator)

        status = await migrator.migrate(WebsiteSelection(id=99, name="ghost"))

        assert status is ItemStatus.FAILED
        assert _result(state, "ghost")["error"].startswith("failed to get website detail")
        assert runner.commands == []


class TestDatabaseMigrator:
    async def test_mysql_pipeline(self, make_migrator, state, runner, fake_client, settings):
        migrator = make_migrator(DatabaseMigrator)
        item = DatabaseSelection(name="shopdb", type="mysql", server_id=1)
        dump_path = f"{settings.dump_dir}/ace_migration_mysql_shopdb.sql"

        status = await migrator.migrate(item)

        assert status is ItemStatus.SUCCESS
        assert _result(state, "shopdb (mysql)")["status"] == "success"

        programs = [cmd[0] for cmd in runner.commands]
        assert programs == ["mysqldump", "rsync", "ssh"]

        dump_cmd = runner.commands[0]
        assert f"--result-file={dump_path}" in dump_cmd
        assert dump_cmd[-1] == "shopdb"
        assert runner.envs[0] == {"MYSQL_PWD": "mysql-root-pw"}

        assert runner.commands[1][-2:] == [dump_path, f"root@203.0.113.5:{dump_path}"]
        assert fake_client.calls_to("create_database") == [{"server_id": 1, "name": "shopdb"}]

        ssh_cmd = runner.commands[2]
        assert ssh_cmd[:-1] == [
            "ssh", "-o", "StrictHostKeyChecking=no", "-i", settings.key_path, "root@203.0.113.5",
        ]
        remote = ssh_cmd[-1]
        assert "mysql -u root shopdb" in remote
        assert f"< {dump_path}" in remote
        assert f"rm -f {dump_path}" in remote

        assert not Path(dump_path).exists()
        assert all("mysql-root-pw" not in line for line in state.logs)

    async def test_postgres_pipeline(self, make_migrator, runner, settings):
        migrator = make_migrator(DatabaseMigrator)
        dump_path = f"{settings.dump_dir}/ace_migration_postgresql_analytics.sql"

        status = await migrator.migrate(DatabaseSelection(name="analytics", type="postgresql"))

        assert status is ItemStatus.SUCCESS
        dump_cmd = runner.commands[0]
        assert dump_cmd == ["pg_dump", "-h", "127.0.0.1", "-U", "postgres", "-f", dump_path, "analytics"]
        assert runner.envs[0] == {"PGPASSWORD": "pg-pw"}
        assert "psql -h 127.0.0.1 -U postgres -d analytics" in runner.commands[-1][-1]

    async def test_hostile_name_is_quoted(self, make_migrator, runner):
        migrator = make_migrator(DatabaseMigrator)

        await migrator.migrate(DatabaseSelection(name="x; rm -rf /", type="mysql"))

        remote = runner.commands[-1][-1]
        assert "'x; rm -rf /'" in remote
        assert "ace_migration_mysql_x__rm_-rf__.sql" in remote

    async def test_dump_failure_aborts_item(self, make_migrator, state, runner, fake_client, settings):
        runner.fail_on("mysqldump", "mysqldump: Got error: 1049: Unknown database 'shopdb'")
        migrator = make_migrator(DatabaseMigrator)

        status = await migrator.migrate(DatabaseSelection(name="shopdb", type="mysql"))

        assert status is ItemStatus.FAILED
        result = _result(state, "shopdb (mysql)")
        assert result["status"] == "failed"
        assert result["error"].startswith("database export failed")
        assert [cmd[0] for cmd in runner.commands] == ["mysqldump"]
        assert fake_client.calls_to("create_database") == []

    async def test_import_failure_still_removes_local_dump(self, make_migrator, state, runner, settings):
        runner.fail_on("mysql -u root", "ERROR 1045 (28000): Access denied")
        migrator = make_migrator(DatabaseMigrator)

        status = await migrator.migrate(DatabaseSelection(name="shopdb", type="mysql"))

        assert status is ItemStatus.FAILED
        assert _result(state, "shopdb (mysql)")["error"].startswith("remote import failed")
        assert not Path(settings.dump_dir, "ace_migration_mysql_shopdb.sql").exists()

    async def test_transfer_failure(self, make_migrator, state, runner):
        runner.fail_on("rsync", "rsync error: error in socket IO")
        migrator = make_migrator(DatabaseMigrator)

        status = await migrator.migrate(DatabaseSelection(name="shopdb", type="mysql"))

        assert status is ItemStatus.FAILED
        assert _result(state, "shopdb (mysql)")["error"].startswith("backup transfer failed")
        assert [cmd[0] for cmd in runner.commands] == ["mysqldump", "rsync"]

    async def test_unsupported_type(self, make_migrator, state, runner):
        migrator = make_migrator(DatabaseMigrator)

        status = await migrator.migrate(DatabaseSelection(name="cache", type="redis"))

        assert status is ItemStatus.FAILED
        assert _result(state, "cache (redis)")["error"] == "unsupported database type: redis"
        assert runner.commands == []


class TestProjectMigrator:
    async def test_success(self, make_migrator, state, runner, fake_client, settings):
        migrator = make_migrator(ProjectMigrator)

        status = await migrator.migrate(ProjectSelection(id=1, name="api"))

        assert status is ItemStatus.SUCCESS
        assert fake_client.calls_to("create_project") == [
            {
                "name": "api",
                "type": "general",
                "root_dir": "/srv/api",
                "exec_start": "/srv/api/run",
                "user": "www",
            }
        ]
        assert _rsync_sources(runner) == ["/srv/api/", f"{settings.systemd_unit_dir}/api.service"]
        assert _logs(state)[-1] == "[api] project migration completed"

    async def test_without_root_dir_only_unit_is_mirrored(self, make_migrator, runner, settings):
        migrator = make_migrator(ProjectMigrator)

        status = await migrator.migrate(ProjectSelection(id=2, name="worker"))

        assert status is ItemStatus.SUCCESS
        assert _rsync_sources(runner) == [f"{settings.systemd_unit_dir}/worker.service"]

    async def test_unit_file_failure_is_warning(self, make_migrator, state, runner):
        runner.fail_on("api.service", "rsync: link_stat failed: No such file or directory")
        migrator = make_migrator(ProjectMigrator)

        status = await migrator.migrate(ProjectSelection(id=1, name="api"))

        assert status is ItemStatus.SUCCESS
        assert any("service file sync failed" in line for line in _logs(state))

    async def test_directory_failure_fails_item(self, make_migrator, state, runner):
        runner.fail_on("/srv/api/", "rsync: permission denied")
        migrator = make_migrator(ProjectMigrator)

        status = await migrator.migrate(ProjectSelection(id=1, name="api"))

        assert status is ItemStatus.FAILED
        assert _result(state, "api")["error"].startswith("rsync failed")


class TestCancellation:
    async def test_cancelled_item_is_finalized(self, make_migrator, state, runner):
        entered = runner.block_on("rsync")
        migrator = make_migrator(WebsiteMigrator)

        task = asyncio.create_task(migrator.migrate(WebsiteSelection(id=1, name="blog")))
        await entered.wait()
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task

        result = _result(state, "blog")
        assert result["status"] == "failed"
        assert result["error"] == "migration cancelled"

    async def test_skip_records_failed_result(self, make_migrator, state, runner):
        migrator = make_migrator(ProjectMigrator)

        await migrator.skip(ProjectSelection(id=1, name="api"), "skipped after earlier failure")

        assert _result(state, "api")["error"] == "skipped after earlier failure"
        assert runner.commands == []
