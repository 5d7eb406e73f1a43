"""Rsync transfer implementation for mirroring local paths to a remote host."""

import shlex
from typing import Any

import structlog

from ..exceptions import CommandError
from ..subprocess_manager import SubprocessManager
from .base import RemoteHost

logger = structlog.get_logger()


class RsyncError(CommandError):
    """Rsync transfer operation failed."""

    pass


class RsyncTransfer:
    """Mirror files and directories to a remote host using rsync over ssh."""

    def __init__(self, runner: SubprocessManager, timeout: float = 3600):
        self.runner = runner
        self.timeout = timeout
        self.logger = logger.bind(component="rsynctransfer")

    def ssh_options(self, target: RemoteHost) -> list[str]:
        """SSH client options shared by ssh and rsync's remote shell."""
        options = ["-o", "StrictHostKeyChecking=no"]

        if target.identity_file:
            options.extend(["-i", target.identity_file])

        if target.port != 22:
            options.extend(["-p", str(target.port)])

        return options

    def build_ssh_cmd(self, target: RemoteHost) -> list[str]:
        """Build SSH command for a host.

        Args:
            target: Host configuration

        Returns:
            SSH command as list of strings
        """
        return ["ssh", *self.ssh_options(target), target.address]

    def build_rsync_cmd(
        self,
        source_path: str,
        target: RemoteHost,
        target_path: str,
        compress: bool = True,
    ) -> list[str]:
        """Build the rsync argument list.

        ``-s`` keeps the remote path from being word-split by the remote shell,
        so paths are always data. The ``-e`` value is parsed by rsync itself,
        hence the shlex quoting.
        """
        rsync_opts = ["-av", "-s"]
        if compress:
            rsync_opts.append("-z")

        ssh_command = shlex.join(["ssh", *self.ssh_options(target)])
        return [
            "rsync",
            *rsync_opts,
            "-e",
            ssh_command,
            source_path,
            f"{target.address}:{target_path}",
        ]

    async def _rsync(self, source_path: str, target: RemoteHost, target_path: str) -> dict[str, Any]:
        """Run one rsync and return the command with its output.

        Raises:
            RsyncError: rsync exited non-zero or timed out
        """
        rsync_cmd = self.build_rsync_cmd(source_path, target, target_path)

        self.logger.info(
            "Starting rsync transfer",
            source=source_path,
            target=f"{target.address}:{target_path}",
        )

        try:
            result = await self.runner.run_command(rsync_cmd, timeout=self.timeout, check=False)
        except CommandError as e:
            raise RsyncError(f"Rsync failed: {e}") from e

        if result.returncode != 0:
            stderr_snippet = (result.stderr or "")[:500]
            stdout_snippet = (result.stdout or "")[:500]
            raise RsyncError(
                f"Rsync failed (exit {result.returncode}): {stderr_snippet or stdout_snippet}"
            )

        return {"command": rsync_cmd, "output": result.stdout}

    async def mirror_directory(
        self, source_dir: str, target: RemoteHost, target_dir: str | None = None
    ) -> dict[str, Any]:
        """Mirror a directory's contents to the same (or given) remote path.

        Both sides get a trailing slash so rsync copies the contents instead
        of nesting the directory inside itself.
        """
        source = source_dir.rstrip("/") + "/"
        destination = (target_dir or source_dir).rstrip("/") + "/"
        return await self._rsync(source, target, destination)

    async def mirror_file(self, path: str, target: RemoteHost) -> dict[str, Any]:
        """Copy a single file to the identical remote path."""
        return await self._rsync(path, target, path)
