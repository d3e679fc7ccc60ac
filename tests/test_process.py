"""Tests for process supervision and the two-phase stop."""

import asyncio
import sys
from pathlib import Path
from unittest.mock import patch

import pytest

from sotto.errors import SpawnError, ToolMissingError
from sotto.process import ProcessHandle, ProcessSupervisor


class TestAvailabilityProbe:
    """Tests for check_available."""

    @patch("sotto.process.shutil.which")
    def test_found(self, mock_which):
        mock_which.return_value = "/usr/bin/whisper-stream"
        supervisor = ProcessSupervisor()

        assert supervisor.check_available("whisper-stream") == Path("/usr/bin/whisper-stream")
        mock_which.assert_called_with("whisper-stream")

    @patch("sotto.process.shutil.which")
    def test_missing_raises_descriptive_error(self, mock_which):
        mock_which.return_value = None
        supervisor = ProcessSupervisor()

        with pytest.raises(ToolMissingError) as exc_info:
            supervisor.check_available("whisper-stream", "brew install whisper-cpp")

        message = str(exc_info.value)
        assert "whisper-stream is not installed" in message
        assert "brew install whisper-cpp" in message

    @patch("sotto.process.shutil.which")
    def test_result_cached(self, mock_which):
        mock_which.return_value = "/usr/bin/whisper-stream"
        supervisor = ProcessSupervisor()

        supervisor.check_available("whisper-stream")
        supervisor.check_available("whisper-stream")

        assert mock_which.call_count == 1

    def test_invalid_grace(self):
        with pytest.raises(ValueError, match="kill_grace must be positive"):
            ProcessSupervisor(kill_grace=0)


class TestSpawn:
    """Tests for spawning real processes."""

    @pytest.mark.asyncio
    async def test_spawn_captures_stdout(self):
        supervisor = ProcessSupervisor()
        handle = await supervisor.spawn(sys.executable, ["-c", "print('hello')"])

        output = await handle.stdout.read()
        code = await handle.wait()

        assert output.decode().strip() == "hello"
        assert code == 0
        assert handle.alive is False

    @pytest.mark.asyncio
    async def test_spawn_missing_binary(self):
        supervisor = ProcessSupervisor()

        with pytest.raises(SpawnError, match="Failed to spawn"):
            await supervisor.spawn("/nonexistent/definitely-not-a-tool")

    @pytest.mark.asyncio
    async def test_request_stop_terminates_real_process(self):
        supervisor = ProcessSupervisor(kill_grace=2.0)
        handle = await supervisor.spawn(
            sys.executable, ["-c", "import time; time.sleep(30)"], stdout=False, stderr=False
        )

        supervisor.request_stop(handle)
        code = await asyncio.wait_for(handle.wait(), timeout=5.0)

        assert code != 0
        assert handle.stop_requested is True
        await asyncio.sleep(0)
        assert handle.kill_pending is False


class TestTwoPhaseStop:
    """Tests for cooperative stop with deferred force-kill."""

    @pytest.mark.asyncio
    async def test_exit_cancels_force_kill(self, fake_process):
        proc = fake_process()
        handle = ProcessHandle(proc, "whisper-stream")
        supervisor = ProcessSupervisor(kill_grace=0.05)

        supervisor.request_stop(handle)
        assert proc.terminate_calls == 1
        await handle.wait()
        await asyncio.sleep(0.1)

        assert proc.kill_calls == 0
        assert handle.kill_pending is False

    @pytest.mark.asyncio
    async def test_hung_process_force_killed(self, fake_process):
        proc = fake_process(exit_on_terminate=False)
        handle = ProcessHandle(proc, "whisper-stream")
        supervisor = ProcessSupervisor(kill_grace=0.05)

        supervisor.request_stop(handle)
        assert handle.kill_pending is True
        code = await asyncio.wait_for(handle.wait(), timeout=1.0)

        assert proc.kill_calls == 1
        assert code < 0

    @pytest.mark.asyncio
    async def test_request_stop_idempotent(self, fake_process):
        proc = fake_process(exit_on_terminate=False)
        handle = ProcessHandle(proc, "whisper-stream")
        supervisor = ProcessSupervisor(kill_grace=0.05)

        supervisor.request_stop(handle)
        supervisor.request_stop(handle)
        await asyncio.wait_for(handle.wait(), timeout=1.0)

        assert proc.terminate_calls == 1
        assert proc.kill_calls == 1

    @pytest.mark.asyncio
    async def test_stop_after_exit_is_noop(self, fake_process):
        proc = fake_process()
        handle = ProcessHandle(proc, "whisper-stream")
        proc.exit(0)
        await handle.wait()

        ProcessSupervisor(kill_grace=0.05).request_stop(handle)

        assert proc.terminate_calls == 0
        assert handle.kill_pending is False

    @pytest.mark.asyncio
    async def test_terminate_race_with_exit(self, fake_process):
        """Test that a process vanishing under terminate() is tolerated."""
        proc = fake_process()

        def _gone():
            raise ProcessLookupError()

        proc.terminate = _gone
        handle = ProcessHandle(proc, "whisper-stream")

        ProcessSupervisor(kill_grace=0.05).request_stop(handle)
        proc.exit(-15)
        await handle.wait()
        await asyncio.sleep(0)

        assert handle.kill_pending is False
