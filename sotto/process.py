"""Supervision of external tool processes: spawn, probe, stop, force-kill."""

import asyncio
import logging
import shutil
import subprocess
from collections.abc import Sequence
from pathlib import Path

from sotto.errors import SpawnError, ToolMissingError

logger = logging.getLogger(__name__)

DEFAULT_KILL_GRACE = 0.5


class ProcessHandle:
    """Owns one spawned process and its pending force-kill timer.

    Wraps an object exposing the asyncio subprocess surface (``stdin``,
    ``stdout``, ``stderr``, ``returncode``, ``wait()``, ``terminate()``,
    ``kill()``). Exit is observed in the background so that a scheduled
    force-kill is cancelled as soon as the process is gone.
    """

    def __init__(self, process, name: str):
        self.process = process
        self.name = name
        self.stop_requested = False
        self._kill_timer: asyncio.TimerHandle | None = None
        self._exit_task = asyncio.ensure_future(self._watch_exit())

    @property
    def pid(self) -> int | None:
        return getattr(self.process, "pid", None)

    @property
    def stdin(self):
        return self.process.stdin

    @property
    def stdout(self):
        return self.process.stdout

    @property
    def stderr(self):
        return self.process.stderr

    @property
    def returncode(self) -> int | None:
        return self.process.returncode

    @property
    def alive(self) -> bool:
        return self.process.returncode is None

    @property
    def kill_pending(self) -> bool:
        return self._kill_timer is not None

    async def wait(self) -> int | None:
        """Wait for the process to exit and return its exit code."""
        return await self.process.wait()

    def terminate(self) -> None:
        try:
            self.process.terminate()
        except ProcessLookupError:
            logger.debug("%s already exited before terminate", self.name)

    def kill(self) -> None:
        try:
            self.process.kill()
        except ProcessLookupError:
            logger.debug("%s already exited before kill", self.name)

    def schedule_kill(self, delay: float) -> None:
        """Arm a deferred hard kill unless the process exits first."""
        if not self.alive or self._kill_timer is not None:
            return
        loop = asyncio.get_running_loop()
        self._kill_timer = loop.call_later(delay, self._force_kill)
        logger.debug("Force-kill armed for %s in %.2fs", self.name, delay)

    def cancel_kill(self) -> None:
        if self._kill_timer is not None:
            self._kill_timer.cancel()
            self._kill_timer = None
            logger.debug("Force-kill cancelled for %s", self.name)

    def _force_kill(self) -> None:
        self._kill_timer = None
        if not self.alive:
            return
        logger.warning("%s (pid=%s) did not exit in time, killing", self.name, self.pid)
        self.kill()

    async def _watch_exit(self) -> None:
        try:
            code = await self.process.wait()
        except Exception as e:
            logger.debug("Exit watcher for %s failed: %s", self.name, e)
            return
        finally:
            self.cancel_kill()
        logger.debug("%s exited with code %s", self.name, code)


class ProcessSupervisor:
    """Spawns external tools and tears them down in two phases.

    Stopping always sends a cooperative termination signal first and then
    arms a force-kill that fires only if the process has not exited within
    ``kill_grace`` seconds.
    """

    def __init__(self, kill_grace: float = DEFAULT_KILL_GRACE):
        if kill_grace <= 0:
            raise ValueError("kill_grace must be positive")
        self.kill_grace = kill_grace
        self._binary_cache: dict[str, Path] = {}

    def check_available(self, tool: str, install_hint: str | None = None) -> Path:
        """Validate that a binary exists in PATH.

        Args:
            tool: Binary name (e.g., "whisper-stream")
            install_hint: Install command included in the error message

        Returns:
            Resolved Path to the binary

        Raises:
            ToolMissingError: If binary not found
        """
        if tool in self._binary_cache:
            return self._binary_cache[tool]

        binary_path = shutil.which(tool)
        if not binary_path:
            raise ToolMissingError(tool, install_hint)

        resolved = Path(binary_path)
        self._binary_cache[tool] = resolved
        logger.debug("Validated binary: %s -> %s", tool, resolved)
        return resolved

    async def spawn(
        self,
        command: str,
        args: Sequence[str] = (),
        *,
        stdin: bool = False,
        stdout: bool = True,
        stderr: bool = True,
    ) -> ProcessHandle:
        """Start a process with the requested streams piped.

        Args:
            command: Executable name or path
            args: Command-line arguments
            stdin: Pipe standard input (otherwise /dev/null)
            stdout: Pipe standard output (otherwise /dev/null)
            stderr: Pipe standard error (otherwise /dev/null)

        Returns:
            ProcessHandle owning the new process

        Raises:
            SpawnError: If the OS refuses to start the process
        """
        logger.debug("Spawning: %s %s", command, " ".join(args))
        try:
            process = await asyncio.create_subprocess_exec(
                command,
                *args,
                stdin=subprocess.PIPE if stdin else subprocess.DEVNULL,
                stdout=subprocess.PIPE if stdout else subprocess.DEVNULL,
                stderr=subprocess.PIPE if stderr else subprocess.DEVNULL,
            )
        except OSError as e:
            logger.error("Failed to spawn %s: %s", command, e)
            raise SpawnError(f"Failed to spawn {command}: {e}") from e

        name = Path(command).name
        logger.info("Started %s (pid=%d)", name, process.pid)
        return ProcessHandle(process, name)

    def request_stop(self, handle: ProcessHandle) -> None:
        """Ask the process to terminate, then force-kill after the grace period.

        Repeated calls are no-ops.
        """
        if handle.stop_requested:
            return
        handle.stop_requested = True
        if not handle.alive:
            logger.debug("%s already exited, nothing to stop", handle.name)
            return
        logger.debug("Requesting stop of %s (pid=%s)", handle.name, handle.pid)
        handle.terminate()
        handle.schedule_kill(self.kill_grace)

    def schedule_force_kill(self, handle: ProcessHandle, delay: float | None = None) -> None:
        """Arm only the forced-kill phase (the caller signalled the process itself)."""
        handle.schedule_kill(self.kill_grace if delay is None else delay)
