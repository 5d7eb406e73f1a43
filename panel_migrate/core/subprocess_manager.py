"""Centralized subprocess management with proper resource handling.

This is the process-execution collaborator of the migration pipelines: every
external tool (ssh-keygen, rsync, ssh, mysqldump, pg_dump) is started here as
an argument list, never through a shell.
"""

import asyncio
import os
import shlex
from typing import Any, Optional

import structlog

from panel_migrate.core.exceptions import CommandError

logger = structlog.get_logger()

DEFAULT_TIMEOUT = 30  # Default timeout in seconds
KILL_TIMEOUT = 5  # Time to wait after SIGTERM before SIGKILL


class SubprocessManager:
    """Manages subprocess execution with proper resource cleanup."""

    def __init__(self):
        self._active_processes: set[asyncio.subprocess.Process] = set()
        self._cleanup_lock = asyncio.Lock()

    async def run_command(
        self,
        cmd: list[str],
        *,
        timeout: Optional[float] = None,
        check: bool = True,
        cwd: Optional[str] = None,
        env: Optional[dict[str, str]] = None,
        stdin: Optional[str] = None,
    ) -> "SubprocessResult":
        """
        Run a command asynchronously with proper resource management.

        Args:
            cmd: Command and arguments as a list
            timeout: Timeout in seconds (default: DEFAULT_TIMEOUT)
            check: Raise exception if command fails
            cwd: Working directory for the command
            env: Extra environment variables, merged over the current environment
            stdin: Input to provide to the command

        Returns:
            SubprocessResult with returncode, stdout, and stderr

        Raises:
            CommandError: If the command times out, or check=True and it fails
        """
        if timeout is None:
            timeout = DEFAULT_TIMEOUT

        logger.debug("Executing command", command=shlex.join(cmd), timeout=timeout, cwd=cwd)

        kwargs: dict[str, Any] = {
            "cwd": cwd,
            "env": {**os.environ, **env} if env else os.environ.copy(),
            "stdout": asyncio.subprocess.PIPE,
            "stderr": asyncio.subprocess.PIPE,
        }
        if stdin is not None:
            kwargs["stdin"] = asyncio.subprocess.PIPE

        process = None
        try:
            try:
                process = await asyncio.create_subprocess_exec(*cmd, **kwargs)
            except OSError as e:
                raise CommandError(f"Failed to start {cmd[0]}: {e}") from e

            async with self._cleanup_lock:
                self._active_processes.add(process)

            try:
                stdout_bytes, stderr_bytes = await asyncio.wait_for(
                    process.communicate(input=stdin.encode() if stdin is not None else None),
                    timeout=timeout,
                )
            except asyncio.TimeoutError:
                logger.warning(
                    "Command timed out, terminating process",
                    command=shlex.join(cmd),
                    timeout=timeout,
                    pid=process.pid,
                )
                await self._terminate(process)
                raise CommandError(f"Command timed out after {timeout} seconds: {cmd[0]}")

            result = SubprocessResult(
                returncode=process.returncode or 0,
                stdout=stdout_bytes.decode(errors="replace") if stdout_bytes else "",
                stderr=stderr_bytes.decode(errors="replace") if stderr_bytes else "",
                cmd=cmd,
            )

            if check:
                result.check_returncode()

            return result

        finally:
            if process is not None:
                async with self._cleanup_lock:
                    self._active_processes.discard(process)

                # Ensure process is fully terminated, e.g. when the caller was cancelled
                if process.returncode is None:
                    await self._terminate(process)

    async def _terminate(self, process: asyncio.subprocess.Process) -> None:
        try:
            process.terminate()
            await asyncio.wait_for(process.wait(), timeout=KILL_TIMEOUT)
        except asyncio.TimeoutError:
            logger.warning("Process did not terminate gracefully, sending SIGKILL", pid=process.pid)
            process.kill()
            await process.wait()
        except ProcessLookupError:
            # Process already terminated
            pass

    async def cleanup_all(self):
        """Cleanup all active processes."""
        async with self._cleanup_lock:
            processes = list(self._active_processes)

        if not processes:
            return

        logger.info("Cleaning up active processes", count=len(processes))

        for process in processes:
            if process.returncode is None:
                await self._terminate(process)

        async with self._cleanup_lock:
            self._active_processes.clear()


class SubprocessResult:
    """Result of a subprocess execution."""

    def __init__(
        self,
        returncode: int,
        stdout: str,
        stderr: str,
        cmd: list[str],
    ):
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr
        self.cmd = cmd

    @property
    def success(self) -> bool:
        """Check if the command succeeded."""
        return self.returncode == 0

    @property
    def output(self) -> str:
        """Combined stdout and stderr, stripped."""
        return "\n".join(part.strip() for part in (self.stdout, self.stderr) if part.strip())

    def check_returncode(self):
        """Raise an exception if the command failed."""
        if self.returncode != 0:
            error_msg = (
                self.stderr.strip() if self.stderr.strip()
                else self.stdout.strip() if self.stdout.strip()
                else "Command failed"
            )
            # Bounded output to prevent excessive error messages
            raise CommandError(
                f"{self.cmd[0]} failed with exit code {self.returncode}: {error_msg[:500]}"
            )
