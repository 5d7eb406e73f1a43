"""
Panel Migration Server

Serves the cross-host migration API of a hosting panel over HTTP, a
WebSocket progress channel and a consolidated FastMCP tool.
"""

import argparse
import os
import sys
import tempfile
from pathlib import Path
from typing import Annotated, Any

import uvicorn
from fastmcp import FastMCP
from pydantic import Field
from pydantic import ValidationError as PydanticValidationError
from starlette.applications import Starlette

from .api.routes import MigrationAPI, create_app
from .core.config_loader import DEFAULT_CONFIG_PATH, PanelMigrateConfig, load_config
from .core.error_response import MigrationErrorResponse
from .core.exceptions import ConfigurationError, PanelMigrateError
from .core.logging_config import get_server_logger
from .core.migration.orchestrator import ClientFactory, MigrationOrchestrator
from .core.migration.progress import ProgressPublisher
from .core.migration.state import MigrationState
from .core.security.ssh_keys import AuthorizedKeysStore
from .core.subprocess_manager import SubprocessManager
from .models.enums import MigrationAction
from .models.migration import ConnectionInfo, ItemSelection
from .services.inventory import Inventory


class PanelMigrateServer:
    """Wires configuration, state, orchestrator and the two API surfaces."""

    def __init__(
        self,
        config: PanelMigrateConfig,
        runner: SubprocessManager | None = None,
        client_factory: ClientFactory | None = None,
    ):
        self.config = config
        self.settings = config.migration

        # Use server logger (writes to panel_migrate.log)
        self.logger = get_server_logger()

        self.runner = runner or SubprocessManager()
        self.state = MigrationState()
        self.inventory = Inventory.from_entities(
            config.inventory.websites, config.inventory.databases, config.inventory.projects
        )
        self.orchestrator = MigrationOrchestrator(
            self.state, self.settings, self.inventory, self.runner, client_factory
        )
        self.publisher = ProgressPublisher(self.state, self.settings.progress_interval)
        self.authorized_keys = AuthorizedKeysStore(self.settings.authorized_keys_path)
        self.api = MigrationAPI(
            self.orchestrator,
            self.publisher,
            self.authorized_keys,
            self.inventory,
            config.tokens,
            max_skew=self.settings.signature_max_skew,
        )

        # FastMCP app will be created later to prevent auto-start
        self.app: FastMCP | None = None

        self.logger.info(
            "Panel migration server initialized",
            server_config=config.server.model_dump(),
            websites=len(config.inventory.websites),
            databases=len(config.inventory.databases),
            projects=len(config.inventory.projects),
            accepted_tokens=sorted(config.tokens),
        )

    def _initialize_app(self) -> None:
        """Create the FastMCP app and register the consolidated tool."""
        self.app = FastMCP("Panel Migration")
        self.app.tool(
            self.panel_migration,
            annotations={
                "title": "Panel Cross-Host Migration",
                "readOnlyHint": False,  # status, results and items are read-only, start is not
                "destructiveHint": True,  # Database import overwrites the remote database
                "idempotentHint": False,
                "openWorldHint": True,  # Talks to a remote panel over HTTP and SSH
            },
        )

    async def panel_migration(
        self,
        action: Annotated[str | MigrationAction, Field(description="Action to perform")],
        url: Annotated[str, Field(description="Remote panel base URL")] = "",
        token_id: Annotated[int, Field(ge=0, description="Remote API token id")] = 0,
        token: Annotated[str, Field(description="Remote API token secret")] = "",
        websites: Annotated[
            list[dict[str, Any]] | None,
            Field(description="Websites to migrate: {id, name, path}"),
        ] = None,
        databases: Annotated[
            list[dict[str, Any]] | None,
            Field(description="Databases to migrate: {name, type, server_id}"),
        ] = None,
        projects: Annotated[
            list[dict[str, Any]] | None,
            Field(description="Projects to migrate: {id, name, path}"),
        ] = None,
        stop_on_error: Annotated[
            bool, Field(description="Skip remaining items after a failure")
        ] = False,
    ) -> dict[str, Any]:
        """Consolidated panel migration tool.

        Actions:
        • precheck: Verify the remote panel accepts our API token
          - Required: url, token_id, token

        • items: List local websites, databases and projects

        • start: Launch the background migration
          - Optional: websites, databases, projects, stop_on_error

        • status: Current step and per-item results

        • results: Status plus the full transcript

        • cancel: Cancel the running migration

        • reset: Return to idle (not allowed while running)
        """
        try:
            action_enum = MigrationAction(action) if isinstance(action, str) else action
        except ValueError:
            return {"success": False, "error": f"Unknown action: {action}", "action": str(action)}

        try:
            data = await self._dispatch(
                action_enum,
                url=url,
                token_id=token_id,
                token=token,
                websites=websites or [],
                databases=databases or [],
                projects=projects or [],
                stop_on_error=stop_on_error,
            )
        except PydanticValidationError as e:
            return {
                "success": False,
                "error": f"Parameter validation failed: {e}",
                "action": action_enum.value,
            }
        except PanelMigrateError as e:
            self.logger.warning("Migration action failed", action=action_enum.value, error=str(e))
            return {**MigrationErrorResponse.from_exception(e), "action": action_enum.value}

        return {"success": True, "action": action_enum.value, "data": data}

    async def _dispatch(self, action: MigrationAction, **params: Any) -> Any:
        if action is MigrationAction.PRECHECK:
            conn = ConnectionInfo(url=params["url"], token_id=params["token_id"], token=params["token"])
            return await self.orchestrator.precheck(conn)
        if action is MigrationAction.ITEMS:
            return await self.orchestrator.get_items()
        if action is MigrationAction.START:
            selection = ItemSelection(
                websites=params["websites"],
                databases=params["databases"],
                projects=params["projects"],
                stop_on_error=params["stop_on_error"],
            )
            await self.orchestrator.start(selection)
            return None
        if action is MigrationAction.RESET:
            await self.orchestrator.reset()
            return None
        if action is MigrationAction.CANCEL:
            await self.orchestrator.cancel()
            return None
        if action is MigrationAction.STATUS:
            return await self.orchestrator.get_status()
        return await self.orchestrator.get_results()

    def http_app(self) -> Starlette:
        """Starlette app serving the HTTP API with the MCP endpoint mounted."""
        if self.app is None:
            self._initialize_app()
        assert self.app is not None
        return create_app(self.api, self.app.http_app(path="/mcp"), on_shutdown=self.shutdown)

    async def shutdown(self) -> None:
        """Cancel a running migration and reap child processes."""
        if self.orchestrator.job is not None and self.orchestrator.job.cancel():
            self.logger.warning("Cancelling running migration on shutdown")
            await self.orchestrator.wait()
        await self.runner.cleanup_all()

    def run(self) -> None:
        """Run the HTTP server."""
        try:
            app = self.http_app()

            self.logger.info(
                "Starting panel migration server",
                host=self.config.server.host,
                port=self.config.server.port,
            )

            # uvicorn.run() is synchronous and manages its own event loop
            uvicorn.run(
                app,
                host=self.config.server.host,
                port=self.config.server.port,
                log_level=self.config.server.log_level.lower(),
            )
        except Exception as e:
            self.logger.error("Server startup failed", error=str(e))
            raise


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command line arguments."""
    from dotenv import load_dotenv

    load_dotenv()

    default_host = os.getenv("PANEL_HOST", "127.0.0.1")  # nosec B104 - Use 0.0.0.0 for container deployment
    default_port = int(os.getenv("PANEL_PORT", "8888"))
    default_log_level = os.getenv("LOG_LEVEL", "INFO")
    default_config = os.getenv("PANEL_MIGRATE_CONFIG", DEFAULT_CONFIG_PATH)

    parser = argparse.ArgumentParser(description="Panel cross-host migration server")
    parser.add_argument("--host", default=default_host, help="Server host")
    parser.add_argument("--port", type=int, default=default_port, help="Server port")
    parser.add_argument("--config", default=default_config, help="Configuration file path")
    parser.add_argument(
        "--log-level",
        default=default_log_level,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level",
    )
    parser.add_argument(
        "--validate-config", action="store_true", help="Validate configuration and exit"
    )

    return parser.parse_args(argv)


def main() -> None:
    """Main entry point."""
    args = parse_args()

    log_dir = _setup_log_directory()
    logger = _setup_logging_system(args, log_dir)

    config = _load_and_configure(args, logger)
    if config is None:  # Validation-only mode or invalid config
        return

    server = PanelMigrateServer(config)
    _run_server(server, logger)


def _setup_log_directory() -> str | None:
    """Setup log directory with fallback options."""
    log_dir_candidates = [
        os.getenv("LOG_DIR"),  # Explicit environment override
        str(Path.home() / ".local" / "share" / "panel-migrate" / "logs"),  # User directory
        str(Path(tempfile.gettempdir()) / "panel-migrate-logs"),  # System fallback
    ]

    for candidate in log_dir_candidates:
        if candidate:
            try:
                candidate_path = Path(candidate)
                candidate_path.mkdir(parents=True, exist_ok=True)
                if candidate_path.is_dir() and os.access(candidate_path, os.W_OK):
                    return str(candidate_path)
            except OSError:
                continue

    print("Warning: Unable to create log directory, using console-only logging")
    return None


def _setup_logging_system(args, log_dir: str | None):
    """Setup logging system with error handling."""
    from .core.logging_config import setup_logging

    try:
        max_file_size_mb = int(os.getenv("LOG_FILE_SIZE_MB", "10"))
        if max_file_size_mb < 1 or max_file_size_mb > 100:
            max_file_size_mb = 10  # Reset to default if out of range
    except ValueError:
        max_file_size_mb = 10

    setup_logging(
        log_dir=log_dir or tempfile.gettempdir(),
        log_level=args.log_level,
        max_file_size_mb=max_file_size_mb,
    )
    return get_server_logger()


def _load_and_configure(args, logger) -> PanelMigrateConfig | None:
    """Load configuration, returning None for validation-only mode or invalid files."""
    try:
        config = load_config(args.config)
    except ConfigurationError as e:
        logger.error("Configuration invalid", error=str(e), config_path=args.config)
        if args.validate_config:
            sys.exit(1)
        raise

    # Override server config from CLI args
    config.server.host = args.host
    config.server.port = args.port
    config.server.log_level = args.log_level

    if args.validate_config:
        logger.info("Configuration validation successful", config_path=config.config_file)
        return None

    return config


def _run_server(server: PanelMigrateServer, logger) -> None:
    """Run server with error handling."""
    try:
        server.run()
    except KeyboardInterrupt:
        logger.info("Server shutdown requested")
    except Exception as e:
        logger.error("Server error", error=str(e))
        sys.exit(1)


if __name__ == "__main__":
    main()
