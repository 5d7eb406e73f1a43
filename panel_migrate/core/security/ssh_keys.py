"""Ephemeral SSH trust between two panels.

The source side generates a throwaway ed25519 key pair for one migration run
and asks the remote panel to authorize it; the destination side maintains its
``authorized_keys`` file on behalf of such requests.
"""

import asyncio
import os
from pathlib import Path
from typing import TYPE_CHECKING

import structlog

from ..exceptions import CommandError, ProvisioningError, RemoteConnectionError, ValidationError
from ..subprocess_manager import SubprocessManager

if TYPE_CHECKING:
    from ..migration.state import MigrationState
    from ..remote_api import RemoteAPIClient

logger = structlog.get_logger()


class SSHKeyProvisioner:
    """Generates, deploys and removes the shared key of one migration run."""

    def __init__(
        self,
        runner: SubprocessManager,
        state: "MigrationState",
        key_path: str,
        keygen_timeout: float = 30,
    ):
        self.runner = runner
        self.state = state
        self.key_path = Path(key_path)
        self.public_key_path = Path(f"{key_path}.pub")
        self.keygen_timeout = keygen_timeout
        self.logger = logger.bind(component="ssh_key_provisioner")

    def remove_local_keys(self) -> None:
        for path in (self.key_path, self.public_key_path):
            path.unlink(missing_ok=True)

    async def setup(self, client: "RemoteAPIClient") -> str:
        """Create the key pair and authorize it on the remote host.

        Returns:
            Path of the private key, also recorded in the migration state

        Raises:
            ProvisioningError: key generation or remote deployment failed;
                local key files are removed before raising
        """
        # Leftovers from an interrupted run would make ssh-keygen prompt
        self.remove_local_keys()

        await self.state.add_log("Generating temporary SSH key pair for migration")
        try:
            await self.runner.run_command(
                [
                    "ssh-keygen",
                    "-t", "ed25519",
                    "-f", str(self.key_path),
                    "-N", "",
                    "-q",
                    "-C", "panel-migration",
                ],
                timeout=self.keygen_timeout,
            )
            public_key = self.public_key_path.read_text().strip()
        except asyncio.CancelledError:
            self.remove_local_keys()
            raise
        except (CommandError, OSError) as e:
            self.remove_local_keys()
            raise ProvisioningError(f"failed to generate SSH key: {e}") from e

        await self.state.add_log("Deploying SSH public key to remote server")
        try:
            await client.add_ssh_key(public_key)
        except asyncio.CancelledError:
            self.remove_local_keys()
            raise
        except RemoteConnectionError as e:
            self.remove_local_keys()
            raise ProvisioningError(f"failed to deploy SSH key to remote: {e}") from e

        await self.state.set_key_path(str(self.key_path))
        await self.state.add_log("SSH key authentication configured successfully")
        self.logger.info("Ephemeral SSH key deployed", key_path=str(self.key_path))
        return str(self.key_path)

    async def teardown(self, client: "RemoteAPIClient") -> None:
        """Remove the key from the remote host and delete it locally.

        Never raises: remote failures are logged and the local files are
        deleted regardless.
        """
        if not await self.state.get_key_path():
            return

        await self.state.add_log("Cleaning up temporary SSH keys")
        try:
            public_key = self.public_key_path.read_text().strip()
            await client.remove_ssh_key(public_key)
        except (OSError, RemoteConnectionError) as e:
            self.logger.warning("Remote SSH key cleanup failed", error=str(e))
            await self.state.add_log(f"warning: failed to remove SSH key from remote server: {e}")
        finally:
            self.remove_local_keys()
            await self.state.set_key_path("")


class AuthorizedKeysStore:
    """Destination-side ``authorized_keys`` maintenance for migration keys."""

    def __init__(self, path: str):
        self.path = Path(path)

    @staticmethod
    def _normalize(public_key: str) -> str:
        key = public_key.strip()
        if not key:
            raise ValidationError("public key is required")
        if "\n" in key or "\r" in key:
            raise ValidationError("public key must be a single line")
        return key

    def _write(self, content: str) -> None:
        self.path.write_text(content)
        os.chmod(self.path, 0o600)

    def add(self, public_key: str) -> bool:
        """Append the key unless present; returns True when the file changed."""
        key = self._normalize(public_key)
        self.path.parent.mkdir(parents=True, exist_ok=True, mode=0o700)

        content = self.path.read_text() if self.path.exists() else ""
        if key in (line.strip() for line in content.splitlines()):
            return False

        if content and not content.endswith("\n"):
            content += "\n"
        self._write(content + key + "\n")
        logger.info("Authorized migration key", path=str(self.path))
        return True

    def remove(self, public_key: str) -> bool:
        """Drop every line exactly matching the key; returns True when the file changed."""
        key = self._normalize(public_key)
        if not self.path.exists():
            return False

        lines = self.path.read_text().split("\n")
        kept = [line for line in lines if line.strip() != key]
        if len(kept) == len(lines):
            return False

        self._write("\n".join(kept))
        logger.info("Revoked migration key", path=str(self.path))
        return True
