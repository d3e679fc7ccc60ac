"""Fire-and-forget status overlay driven over the helper's stdin."""

import asyncio
import logging
import re
from collections.abc import Sequence
from enum import Enum

from sotto.errors import SpawnError
from sotto.process import ProcessHandle, ProcessSupervisor

logger = logging.getLogger(__name__)

_LINE_BREAKS_RE = re.compile(r"[\r\n]+")


class IndicatorStatus(str, Enum):
    """Status tokens understood by the overlay helper."""

    LISTENING = "listening"
    TRANSCRIBING = "transcribing"


class IndicatorChannel:
    """Drives an external overlay helper with one-line commands.

    Commands are a bare status token, ``text:<content>`` and ``close``.
    The overlay is cosmetic: every failure (missing helper, helper already
    exited, broken pipe) is logged and swallowed, and every method is a
    no-op when no helper is running.
    """

    def __init__(
        self,
        command: Sequence[str] | None,
        supervisor: ProcessSupervisor | None = None,
        close_grace: float = 0.5,
    ):
        """Initialize indicator channel.

        Args:
            command: Helper command line; empty or None disables the indicator
            supervisor: ProcessSupervisor used to spawn the helper
            close_grace: Seconds to wait after ``close`` before force-killing
        """
        self.command = list(command or [])
        self.supervisor = supervisor or ProcessSupervisor()
        self.close_grace = close_grace
        self._handle: ProcessHandle | None = None
        self._closing: ProcessHandle | None = None

    @property
    def active(self) -> bool:
        return self._handle is not None and self._handle.alive

    async def show(self, status: IndicatorStatus = IndicatorStatus.LISTENING) -> None:
        """Start the helper and display the initial status."""
        if not self.command:
            logger.debug("Indicator disabled, not showing")
            return

        if self._handle is not None:
            self.close()

        try:
            self._handle = await self.supervisor.spawn(
                self.command[0],
                self.command[1:],
                stdin=True,
                stdout=False,
                stderr=False,
            )
        except SpawnError as e:
            logger.debug("Indicator unavailable: %s", e)
            self._handle = None
            return
        except Exception as e:
            logger.warning("Failed to start indicator: %s", e)
            self._handle = None
            return

        self.update(status)

    def update(self, status: IndicatorStatus) -> None:
        try:
            token = IndicatorStatus(status).value
        except ValueError:
            logger.warning("Unknown indicator status: %r", status)
            return
        self._write(token)

    def send_text(self, text: str) -> None:
        """Show recognized text, flattened to a single line."""
        self._write("text:" + _LINE_BREAKS_RE.sub(" ", text))

    def close(self) -> None:
        """Ask the helper to exit and force-kill it after the grace period."""
        handle = self._handle
        self._handle = None
        if handle is None or not handle.alive:
            return

        try:
            handle.stdin.write(b"close\n")
            handle.stdin.close()
        except Exception as e:
            logger.debug("Indicator close command failed: %s", e)

        try:
            self.supervisor.schedule_force_kill(handle, self.close_grace)
        except Exception as e:
            logger.debug("Failed to arm indicator force-kill: %s", e)
        self._closing = handle

    async def wait_closed(self) -> None:
        """Wait for the last closed helper to exit, bounded by the close grace."""
        handle = self._closing
        self._closing = None
        if handle is None or not handle.alive:
            return
        try:
            await asyncio.wait_for(handle.wait(), timeout=self.close_grace + 1.0)
        except asyncio.TimeoutError:
            logger.warning("Indicator helper did not exit after close")
        except Exception as e:
            logger.debug("Waiting for indicator exit failed: %s", e)

    def _write(self, line: str) -> None:
        handle = self._handle
        if handle is None:
            return
        if not handle.alive:
            self._handle = None
            return
        try:
            handle.stdin.write((line + "\n").encode("utf-8"))
        except Exception as e:
            logger.debug("Indicator write failed: %s", e)
