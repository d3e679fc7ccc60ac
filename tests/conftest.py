"""Shared fixtures: fake processes exposing the asyncio subprocess surface."""

import asyncio
import signal

import pytest


class FakeStdin:
    """Records lines written to a helper's stdin."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.writes: list[str] = []
        self.closed = False

    def write(self, data: bytes) -> None:
        if self.fail:
            raise BrokenPipeError("Broken pipe")
        self.writes.append(data.decode("utf-8"))

    def close(self) -> None:
        self.closed = True


class FakeProcess:
    """Controllable stand-in for asyncio.subprocess.Process.

    Must be created inside a running event loop.
    """

    def __init__(self, *, stdin: FakeStdin | None = None, exit_on_terminate: bool = True):
        self.pid = 4242
        self.stdin = stdin
        self.stdout = asyncio.StreamReader()
        self.stderr = asyncio.StreamReader()
        self.returncode = None
        self.exit_on_terminate = exit_on_terminate
        self.terminate_calls = 0
        self.kill_calls = 0
        self._exited = asyncio.Event()

    def emit(self, text: str) -> None:
        self.stdout.feed_data(text.encode("utf-8"))

    def emit_bytes(self, data: bytes) -> None:
        self.stdout.feed_data(data)

    def emit_stderr(self, text: str) -> None:
        self.stderr.feed_data(text.encode("utf-8"))

    def exit(self, code: int | None = 0) -> None:
        if self.returncode is not None:
            return
        self.returncode = code
        self.stdout.feed_eof()
        self.stderr.feed_eof()
        self._exited.set()

    async def wait(self) -> int | None:
        await self._exited.wait()
        return self.returncode

    def terminate(self) -> None:
        self.terminate_calls += 1
        if self.exit_on_terminate:
            asyncio.get_running_loop().call_soon(self.exit, -signal.SIGTERM)

    def kill(self) -> None:
        self.kill_calls += 1
        asyncio.get_running_loop().call_soon(self.exit, -signal.SIGKILL)


@pytest.fixture
def fake_stdin():
    """Factory for FakeStdin instances."""
    return FakeStdin


@pytest.fixture
def fake_process():
    """Factory for FakeProcess instances (call inside async tests)."""
    return FakeProcess


@pytest.fixture
def wait_until():
    """Poll a condition until it holds, failing after a timeout."""

    async def _wait(predicate, timeout: float = 2.0) -> None:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while not predicate():
            if loop.time() > deadline:
                raise AssertionError("Condition not met before timeout")
            await asyncio.sleep(0.001)

    return _wait
