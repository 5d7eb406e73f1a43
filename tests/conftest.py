"""Shared pytest fixtures for panel migration tests."""

from collections.abc import AsyncGenerator
from pathlib import Path

import pytest
from aiohttp.test_utils import TestServer
from fastmcp import Client

from panel_migrate.core.config_loader import InventoryConfig, PanelMigrateConfig
from panel_migrate.core.migration.orchestrator import MigrationOrchestrator
from panel_migrate.core.migration.state import MigrationState
from panel_migrate.core.settings import MigrationSettings
from panel_migrate.models.entities import Database, Listen, Project, Website
from panel_migrate.models.migration import ConnectionInfo
from panel_migrate.server import PanelMigrateServer
from panel_migrate.services.inventory import Inventory

from .fakes import (
    REMOTE_TOKEN,
    REMOTE_TOKEN_ID,
    FakeRemoteClient,
    FakeRemotePanel,
    FakeRunner,
)


@pytest.fixture
def runner() -> FakeRunner:
    return FakeRunner()


@pytest.fixture
def fake_client() -> FakeRemoteClient:
    return FakeRemoteClient()


@pytest.fixture
def settings(tmp_path: Path) -> MigrationSettings:
    """Migration settings rooted in a per-test temporary directory."""
    return MigrationSettings(
        panel_root=str(tmp_path / "ace"),
        key_path=str(tmp_path / "keys" / "ace_migration_key"),
        dump_dir=str(tmp_path / "dumps"),
        systemd_unit_dir=str(tmp_path / "systemd"),
        authorized_keys_path=str(tmp_path / "dest" / ".ssh" / "authorized_keys"),
        progress_interval=0.01,
        mysql_root_password="mysql-root-pw",
        postgres_password="pg-pw",
    )


@pytest.fixture
def websites(settings: MigrationSettings) -> list[Website]:
    return [
        Website(
            id=1,
            name="blog",
            type="php",
            path=f"{settings.panel_root}/sites/blog/public",
            domains=["blog.example.com"],
            listens=[Listen(address="80"), Listen(address="443")],
        ),
        Website(id=2, name="shop", type="static", path="/srv/www/shop"),
    ]


@pytest.fixture
def databases() -> list[Database]:
    return [
        Database(name="shopdb", type="mysql", server_id=1),
        Database(name="analytics", type="postgresql", server_id=2),
    ]


@pytest.fixture
def projects() -> list[Project]:
    return [
        Project(id=1, name="api", type="general", root_dir="/srv/api", exec_start="/srv/api/run"),
        Project(id=2, name="worker", type="general"),
    ]


@pytest.fixture
def inventory(websites, databases, projects) -> Inventory:
    return Inventory.from_entities(websites, databases, projects)


@pytest.fixture
def state() -> MigrationState:
    return MigrationState()


@pytest.fixture
def conn() -> ConnectionInfo:
    return ConnectionInfo(url="https://203.0.113.5:8888", token_id=REMOTE_TOKEN_ID, token=REMOTE_TOKEN)


@pytest.fixture
def orchestrator(state, settings, inventory, runner, fake_client) -> MigrationOrchestrator:
    return MigrationOrchestrator(
        state, settings, inventory, runner, client_factory=lambda conn: fake_client
    )


@pytest.fixture
async def remote_panel() -> AsyncGenerator[FakeRemotePanel, None]:
    """A peer panel served on a local port."""
    panel = FakeRemotePanel()
    server = TestServer(panel.app)
    await server.start_server()
    panel.url = f"http://{server.host}:{server.port}"
    try:
        yield panel
    finally:
        await server.close()


@pytest.fixture
def config(settings, websites, databases, projects) -> PanelMigrateConfig:
    return PanelMigrateConfig(
        tokens={REMOTE_TOKEN_ID: REMOTE_TOKEN},
        inventory=InventoryConfig(websites=websites, databases=databases, projects=projects),
        migration=settings,
    )


@pytest.fixture
def server(config, runner, fake_client) -> PanelMigrateServer:
    """Create a panel migration server wired to fakes."""
    server = PanelMigrateServer(config, runner=runner, client_factory=lambda conn: fake_client)
    server._initialize_app()
    return server


@pytest.fixture
async def client(server: PanelMigrateServer) -> AsyncGenerator[Client, None]:
    """Create FastMCP client connected to server in-memory."""
    async with Client(server.app) as client:
        yield client
