"""Tests for the status indicator channel."""

import asyncio
from unittest.mock import AsyncMock

import pytest

from sotto.errors import SpawnError
from sotto.indicator import IndicatorChannel, IndicatorStatus
from sotto.process import ProcessHandle, ProcessSupervisor


@pytest.fixture
def make_indicator(fake_process, fake_stdin):
    """Build an IndicatorChannel whose helper is a FakeProcess.

    Returns a factory ``(stdin_fail=False) -> (indicator, supervisor, processes)``.
    """

    def _build(stdin_fail: bool = False, close_grace: float = 0.05):
        supervisor = ProcessSupervisor(kill_grace=0.05)
        processes = []

        def _spawn(command, args=(), **kwargs):
            proc = fake_process(stdin=fake_stdin(fail=stdin_fail))
            processes.append(proc)
            return ProcessHandle(proc, command)

        supervisor.spawn = AsyncMock(side_effect=_spawn)
        indicator = IndicatorChannel(
            ["sotto-indicator", "--corner", "top"],
            supervisor=supervisor,
            close_grace=close_grace,
        )
        return indicator, supervisor, processes

    return _build


class TestShow:
    """Tests for starting the helper."""

    @pytest.mark.asyncio
    async def test_show_spawns_and_writes_status(self, make_indicator):
        indicator, supervisor, processes = make_indicator()

        await indicator.show(IndicatorStatus.LISTENING)

        supervisor.spawn.assert_called_once_with(
            "sotto-indicator",
            ["--corner", "top"],
            stdin=True,
            stdout=False,
            stderr=False,
        )
        assert processes[0].stdin.writes == ["listening\n"]
        assert indicator.active is True

    @pytest.mark.asyncio
    async def test_disabled_indicator_is_noop(self):
        supervisor = ProcessSupervisor()
        supervisor.spawn = AsyncMock()
        indicator = IndicatorChannel(None, supervisor=supervisor)

        await indicator.show()
        indicator.update(IndicatorStatus.TRANSCRIBING)
        indicator.send_text("hello")
        indicator.close()

        supervisor.spawn.assert_not_called()

    @pytest.mark.asyncio
    async def test_spawn_failure_swallowed(self):
        supervisor = ProcessSupervisor()
        supervisor.spawn = AsyncMock(side_effect=SpawnError("Failed to spawn sotto-indicator"))
        indicator = IndicatorChannel(["sotto-indicator"], supervisor=supervisor)

        await indicator.show()
        indicator.send_text("hello")
        indicator.close()

        assert indicator.active is False

    @pytest.mark.asyncio
    async def test_show_twice_replaces_helper(self, make_indicator):
        indicator, _, processes = make_indicator()

        await indicator.show()
        await indicator.show()

        assert len(processes) == 2
        assert processes[0].stdin.writes[-1] == "close\n"
        assert processes[1].stdin.writes == ["listening\n"]


class TestCommands:
    """Tests for status and text commands."""

    @pytest.mark.asyncio
    async def test_update_and_send_text(self, make_indicator):
        indicator, _, processes = make_indicator()
        await indicator.show()

        indicator.update(IndicatorStatus.TRANSCRIBING)
        indicator.send_text("line one\nline two\r\nthree")

        assert processes[0].stdin.writes == [
            "listening\n",
            "transcribing\n",
            "text:line one line two three\n",
        ]

    @pytest.mark.asyncio
    async def test_unknown_status_ignored(self, make_indicator):
        indicator, _, processes = make_indicator()
        await indicator.show()

        indicator.update("sleeping")

        assert processes[0].stdin.writes == ["listening\n"]

    @pytest.mark.asyncio
    async def test_write_failure_swallowed(self, make_indicator):
        """Test that a broken pipe never reaches the caller."""
        indicator, _, processes = make_indicator(stdin_fail=True)

        await indicator.show()
        indicator.update(IndicatorStatus.TRANSCRIBING)
        indicator.send_text("hello")
        indicator.close()

        assert processes[0].stdin.writes == []

    @pytest.mark.asyncio
    async def test_writes_after_exit_are_noops(self, make_indicator):
        indicator, _, processes = make_indicator()
        await indicator.show()
        processes[0].exit(0)
        await asyncio.sleep(0)

        indicator.send_text("too late")
        indicator.update(IndicatorStatus.TRANSCRIBING)
        indicator.close()

        assert processes[0].stdin.writes == ["listening\n"]
        assert indicator.active is False


class TestClose:
    """Tests for teardown with the force-kill safety net."""

    @pytest.mark.asyncio
    async def test_close_sends_command_and_ends_input(self, make_indicator):
        indicator, _, processes = make_indicator()
        await indicator.show()

        indicator.close()

        assert processes[0].stdin.writes[-1] == "close\n"
        assert processes[0].stdin.closed is True
        assert indicator.active is False

    @pytest.mark.asyncio
    async def test_force_kill_when_helper_hangs(self, make_indicator):
        indicator, _, processes = make_indicator(close_grace=0.05)
        await indicator.show()

        indicator.close()
        await asyncio.sleep(0.15)

        assert processes[0].kill_calls == 1

    @pytest.mark.asyncio
    async def test_wait_closed_returns_after_force_kill(self, make_indicator):
        indicator, _, processes = make_indicator(close_grace=0.05)
        await indicator.show()

        indicator.close()
        await asyncio.wait_for(indicator.wait_closed(), timeout=1.0)

        assert processes[0].kill_calls == 1
        assert processes[0].returncode is not None

    @pytest.mark.asyncio
    async def test_wait_closed_without_helper(self, make_indicator):
        indicator, _, _ = make_indicator()

        indicator.close()
        await indicator.wait_closed()

    @pytest.mark.asyncio
    async def test_no_kill_when_helper_exits(self, make_indicator):
        indicator, _, processes = make_indicator(close_grace=0.05)
        await indicator.show()

        indicator.close()
        processes[0].exit(0)
        await asyncio.sleep(0.15)

        assert processes[0].kill_calls == 0

    @pytest.mark.asyncio
    async def test_close_with_broken_pipe_still_arms_kill(self, make_indicator):
        indicator, _, processes = make_indicator(stdin_fail=True, close_grace=0.05)
        await indicator.show()

        indicator.close()
        await asyncio.sleep(0.15)

        assert processes[0].kill_calls == 1

    def test_close_without_show(self):
        IndicatorChannel(["sotto-indicator"]).close()
