"""Signed HTTP access to a peer panel's API.

Every request is authenticated with an HMAC-SHA256 signature over a canonical
form of the request:

    canonical      = METHOD \\n /api... path \\n encoded query \\n sha256(body)
    string_to_sign = "HMAC-SHA256" \\n unix timestamp \\n sha256(canonical)
    signature      = hmac_sha256(token, string_to_sign)

and sent as ``X-Timestamp`` plus
``Authorization: HMAC-SHA256 Credential=<token_id>, Signature=<signature>``.
"""

import asyncio
import hashlib
import hmac
import json
import re
import time
from collections.abc import Mapping
from typing import Any
from urllib.parse import parse_qsl, urlencode, urlsplit

import aiohttp
import structlog

from ..models.migration import ConnectionInfo
from .exceptions import AuthenticationError, RemoteConnectionError

logger = structlog.get_logger()

ALGORITHM = "HMAC-SHA256"

_AUTH_HEADER_RE = re.compile(r"^HMAC-SHA256 Credential=(\d+), Signature=([0-9a-f]{64})$")

# Remote panel endpoints used by the migration
ENVIRONMENT_PATH = "/api/home/installed_environment"
SSH_KEY_PATH = "/api/toolbox_migration/ssh_key"
WEBSITE_PATH = "/api/website"
DATABASE_PATH = "/api/database"
PROJECT_PATH = "/api/project"


def sha256_hex(data: bytes | str) -> str:
    if isinstance(data, str):
        data = data.encode()
    return hashlib.sha256(data).hexdigest()


def canonical_path(path: str) -> str:
    """Return the path from the first ``/api`` onward (whole path when absent)."""
    index = path.find("/api")
    return path[index:] if index != -1 else path


def canonical_query(query: str) -> str:
    """Encode a raw query string with keys sorted, values kept in order."""
    pairs = parse_qsl(query, keep_blank_values=True)
    return urlencode(sorted(pairs, key=lambda kv: kv[0]))


def canonical_request(method: str, path: str, query: str, body: bytes) -> str:
    return "\n".join(
        [method.upper(), canonical_path(path), canonical_query(query), sha256_hex(body)]
    )


def sign(method: str, path: str, query: str, body: bytes, token: str, timestamp: int) -> str:
    """Compute the hex signature for one request."""
    string_to_sign = "\n".join(
        [ALGORITHM, str(timestamp), sha256_hex(canonical_request(method, path, query, body))]
    )
    return hmac.new(token.encode(), string_to_sign.encode(), hashlib.sha256).hexdigest()


def signed_headers(
    method: str,
    url: str,
    body: bytes,
    token_id: int,
    token: str,
    timestamp: int | None = None,
) -> dict[str, str]:
    """Build the authentication headers for a request to ``url``."""
    if timestamp is None:
        timestamp = int(time.time())
    parts = urlsplit(url)
    signature = sign(method, parts.path, parts.query, body, token, timestamp)
    return {
        "X-Timestamp": str(timestamp),
        "Authorization": f"{ALGORITHM} Credential={token_id}, Signature={signature}",
    }


def verify_signature(
    method: str,
    path: str,
    query: str,
    body: bytes,
    headers: Mapping[str, str],
    tokens: Mapping[int, str],
    max_skew: int = 300,
    now: int | None = None,
) -> int:
    """Check an inbound signed request and return the token id it was signed with.

    Raises:
        AuthenticationError: header missing or malformed, unknown token,
            timestamp outside ``max_skew`` or signature mismatch
    """
    match = _AUTH_HEADER_RE.match(headers.get("Authorization", ""))
    if not match:
        raise AuthenticationError("missing or malformed Authorization header")
    token_id, signature = int(match.group(1)), match.group(2)

    try:
        timestamp = int(headers.get("X-Timestamp", ""))
    except ValueError:
        raise AuthenticationError("missing or malformed X-Timestamp header") from None

    if now is None:
        now = int(time.time())
    if abs(now - timestamp) > max_skew:
        raise AuthenticationError("request timestamp outside accepted window")

    token = tokens.get(token_id)
    if token is None:
        raise AuthenticationError(f"unknown token {token_id}")

    expected = sign(method, path, query, body, token, timestamp)
    if not hmac.compare_digest(expected, signature):
        raise AuthenticationError("signature mismatch")
    return token_id


class RemoteAPIClient:
    """Signed JSON client for one remote panel."""

    def __init__(self, conn: ConnectionInfo, timeout: float = 30, verify_tls: bool = False):
        self.conn = conn
        self.timeout = timeout
        self.verify_tls = verify_tls
        self._session: aiohttp.ClientSession | None = None
        self.logger = logger.bind(component="remote_api", remote=conn.host)

    async def __aenter__(self) -> "RemoteAPIClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    async def close(self) -> None:
        if self._session is not None:
            await self._session.close()
            self._session = None

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout),
            )
        return self._session

    async def request(self, method: str, path: str, body: Any = None) -> bytes:
        """Send a signed request and return the raw response body.

        Raises:
            RemoteConnectionError: transport failure or non-200 status; in the
                latter case the response body is attached as ``body``
        """
        payload = b"" if body is None else json.dumps(body, separators=(",", ":")).encode()
        url = self.conn.url.rstrip("/") + path
        headers = {"Content-Type": "application/json"}
        headers.update(signed_headers(method, url, payload, self.conn.token_id, self.conn.token))

        try:
            async with self._get_session().request(
                method,
                url,
                data=payload if body is not None else None,
                headers=headers,
                ssl=self.verify_tls,
            ) as response:
                content = await response.read()
                status = response.status
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            self.logger.warning("Remote API request failed", method=method, path=path, error=str(e))
            raise RemoteConnectionError(f"remote API request failed: {str(e) or type(e).__name__}") from e

        if status != 200:
            text = content.decode(errors="replace")[:500]
            self.logger.warning("Remote API returned error", method=method, path=path, status=status)
            raise RemoteConnectionError(
                f"remote API returned status {status}: {text}", status=status, body=content
            )
        return content

    async def get_installed_environment(self) -> dict[str, Any]:
        """Fetch the remote panel's installed environment map."""
        content = await self.request("GET", ENVIRONMENT_PATH)
        try:
            payload = json.loads(content)
        except json.JSONDecodeError as e:
            raise RemoteConnectionError(f"invalid response: {e}") from e
        data = payload.get("data") if isinstance(payload, dict) else None
        return data if isinstance(data, dict) else {}

    async def add_ssh_key(self, public_key: str) -> None:
        await self.request("POST", SSH_KEY_PATH, {"public_key": public_key.strip()})

    async def remove_ssh_key(self, public_key: str) -> None:
        await self.request("DELETE", SSH_KEY_PATH, {"public_key": public_key.strip()})

    async def create_website(self, body: dict[str, Any]) -> None:
        await self.request("POST", WEBSITE_PATH, body)

    async def create_database(self, body: dict[str, Any]) -> None:
        await self.request("POST", DATABASE_PATH, body)

    async def create_project(self, body: dict[str, Any]) -> None:
        await self.request("POST", PROJECT_PATH, body)
