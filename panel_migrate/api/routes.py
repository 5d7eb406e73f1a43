"""HTTP and WebSocket surface of the migration service.

Operator endpoints drive the local orchestrator. The ``ssh_key`` and
``installed_environment`` endpoints are what a *peer* panel calls while it
migrates into this host, so they require a valid request signature.
"""

import json
import platform
from collections.abc import AsyncIterator, Awaitable, Callable, Mapping
from contextlib import AsyncExitStack, asynccontextmanager
from typing import Any, TypeVar

import structlog
from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError
from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import JSONResponse
from starlette.routing import BaseRoute, Mount, Route, WebSocketRoute
from starlette.websockets import WebSocket

from .. import __version__
from ..core.error_response import MigrationErrorResponse
from ..core.exceptions import PanelMigrateError, ValidationError
from ..core.migration.orchestrator import MigrationOrchestrator
from ..core.migration.progress import ProgressPublisher
from ..core.remote_api import ENVIRONMENT_PATH, SSH_KEY_PATH, verify_signature
from ..core.security.ssh_keys import AuthorizedKeysStore
from ..models.migration import ConnectionInfo, ItemSelection
from ..services.inventory import Inventory

logger = structlog.get_logger()

API_PREFIX = "/api/toolbox_migration"
PROGRESS_PATH = "/ws/migration/progress"

ModelT = TypeVar("ModelT", bound=BaseModel)


def _ok(data: Any = None) -> JSONResponse:
    return JSONResponse({"success": True, "data": data})


def _decode_body(raw: bytes) -> dict[str, Any]:
    if not raw.strip():
        return {}
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError as e:
        raise ValidationError(f"invalid JSON body: {e}") from e
    if not isinstance(payload, dict):
        raise ValidationError("request body must be a JSON object")
    return payload


def _parse(model: type[ModelT], payload: Mapping[str, Any]) -> ModelT:
    try:
        return model.model_validate(payload)
    except PydanticValidationError as e:
        details = "; ".join(
            f"{'.'.join(str(part) for part in err['loc']) or 'body'}: {err['msg']}"
            for err in e.errors()
        )
        raise ValidationError(f"invalid request: {details}") from e


class MigrationAPI:
    """Route handlers bound to one orchestrator and its state."""

    def __init__(
        self,
        orchestrator: MigrationOrchestrator,
        publisher: ProgressPublisher,
        authorized_keys: AuthorizedKeysStore,
        inventory: Inventory,
        tokens: Mapping[int, str],
        max_skew: int = 300,
    ):
        self.orchestrator = orchestrator
        self.publisher = publisher
        self.authorized_keys = authorized_keys
        self.inventory = inventory
        self.tokens = tokens
        self.max_skew = max_skew
        self.logger = logger.bind(component="migration_api")

    def routes(self) -> list[BaseRoute]:
        return [
            Route(f"{API_PREFIX}/precheck", self.precheck, methods=["POST"]),
            Route(f"{API_PREFIX}/items", self.items, methods=["GET"]),
            Route(f"{API_PREFIX}/start", self.start, methods=["POST"]),
            Route(f"{API_PREFIX}/reset", self.reset, methods=["POST"]),
            Route(f"{API_PREFIX}/cancel", self.cancel, methods=["POST"]),
            Route(f"{API_PREFIX}/status", self.status, methods=["GET"]),
            Route(f"{API_PREFIX}/results", self.results, methods=["GET"]),
            Route(SSH_KEY_PATH, self.add_ssh_key, methods=["POST"]),
            Route(SSH_KEY_PATH, self.remove_ssh_key, methods=["DELETE"]),
            Route(ENVIRONMENT_PATH, self.installed_environment, methods=["GET"]),
            WebSocketRoute(PROGRESS_PATH, self.progress),
        ]

    # Operator endpoints

    async def precheck(self, request: Request) -> JSONResponse:
        conn = _parse(ConnectionInfo, _decode_body(await request.body()))
        return _ok(await self.orchestrator.precheck(conn))

    async def items(self, request: Request) -> JSONResponse:
        return _ok(await self.orchestrator.get_items())

    async def start(self, request: Request) -> JSONResponse:
        selection = _parse(ItemSelection, _decode_body(await request.body()))
        await self.orchestrator.start(selection)
        return _ok()

    async def reset(self, request: Request) -> JSONResponse:
        await self.orchestrator.reset()
        return _ok()

    async def cancel(self, request: Request) -> JSONResponse:
        await self.orchestrator.cancel()
        return _ok()

    async def status(self, request: Request) -> JSONResponse:
        return _ok(await self.orchestrator.get_status())

    async def results(self, request: Request) -> JSONResponse:
        return _ok(await self.orchestrator.get_results())

    async def progress(self, websocket: WebSocket) -> None:
        await websocket.accept()
        if await self.publisher.publish(websocket.send_text):
            await websocket.close(code=1000)

    # Peer endpoints

    async def _verified_body(self, request: Request) -> bytes:
        body = await request.body()
        token_id = verify_signature(
            request.method,
            request.url.path,
            request.url.query,
            body,
            request.headers,
            self.tokens,
            max_skew=self.max_skew,
        )
        self.logger.debug("Signed request accepted", path=request.url.path, token_id=token_id)
        return body

    def _public_key(self, body: bytes) -> str:
        public_key = _decode_body(body).get("public_key")
        if not isinstance(public_key, str):
            raise ValidationError("public_key is required")
        return public_key

    async def add_ssh_key(self, request: Request) -> JSONResponse:
        public_key = self._public_key(await self._verified_body(request))
        added = self.authorized_keys.add(public_key)
        self.logger.info("Peer migration key deployed", added=added)
        return _ok({"added": added})

    async def remove_ssh_key(self, request: Request) -> JSONResponse:
        public_key = self._public_key(await self._verified_body(request))
        removed = self.authorized_keys.remove(public_key)
        self.logger.info("Peer migration key removed", removed=removed)
        return _ok({"removed": removed})

    async def installed_environment(self, request: Request) -> JSONResponse:
        await self._verified_body(request)
        environment = await self.inventory.installed_environment()
        data = {"os": platform.system().lower(), "version": __version__, **environment}
        return JSONResponse({"msg": "success", "data": data})


async def handle_migration_error(request: Request, exc: PanelMigrateError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("Request failed", path=request.url.path, error=str(exc))
    return JSONResponse(
        MigrationErrorResponse.from_exception(exc, instance=request.url.path),
        status_code=exc.status_code,
    )


def create_app(
    api: MigrationAPI,
    mcp_app: Starlette | None = None,
    on_shutdown: Callable[[], Awaitable[None]] | None = None,
    debug: bool = False,
) -> Starlette:
    """Assemble the Starlette application, optionally mounting the MCP endpoint."""
    routes = api.routes()
    if mcp_app is not None:
        routes.append(Mount("/mcp-server", app=mcp_app))

    @asynccontextmanager
    async def lifespan(app: Starlette) -> AsyncIterator[None]:
        async with AsyncExitStack() as stack:
            if mcp_app is not None:
                # The MCP session manager only runs inside its own lifespan
                await stack.enter_async_context(mcp_app.router.lifespan_context(app))
            try:
                yield
            finally:
                if on_shutdown is not None:
                    await on_shutdown()

    return Starlette(
        debug=debug,
        routes=routes,
        exception_handlers={PanelMigrateError: handle_migration_error},
        lifespan=lifespan,
    )
