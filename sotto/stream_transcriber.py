"""Live transcription by streaming whisper-stream output."""

import asyncio
import codecs
import logging
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

from sotto._types import (
    NO_SPEECH_PLACEHOLDER,
    SessionResult,
    StopReason,
    StreamCallbacks,
)
from sotto.config import WhisperConfig
from sotto.endpoint import EndpointDetector
from sotto.errors import (
    ProcessError,
    ProcessFailureError,
    ResourceMissingError,
    SottoError,
)
from sotto.process import ProcessHandle, ProcessSupervisor
from sotto.segmenter import segment, split_partial

logger = logging.getLogger(__name__)

READ_SIZE = 4096
MODEL_HINT = "Download a ggml model and set whisper.model_path or WHISPER_MODEL_PATH."


@dataclass
class StreamOptions:
    """Parameters for one streaming run."""

    model_path: str
    language: str = "en"
    max_duration: float = 30.0
    step: int = 3000
    length: int = 5000
    keep: int = 200
    silence_blank_count: int = 3
    capture_device: int | None = None
    threads: int | None = None
    binary: str = "whisper-stream"
    install_hint: str | None = "brew install whisper-cpp"

    @classmethod
    def from_config(
        cls,
        config: WhisperConfig,
        *,
        max_duration: float | None = None,
        language: str | None = None,
    ) -> "StreamOptions":
        return cls(
            model_path=config.model_path,
            language=language or config.language,
            max_duration=max_duration or config.max_duration,
            step=config.step,
            length=config.length,
            keep=config.keep,
            silence_blank_count=config.silence_blank_count,
            capture_device=config.capture_device,
            threads=config.threads,
            binary=config.binary,
            install_hint=config.install_hint,
        )

    def build_args(self) -> list[str]:
        """Build whisper-stream command-line arguments."""
        args = [
            "-m", self.model_path,
            "-l", self.language,
            "--step", str(self.step),
            "--length", str(self.length),
            "--keep", str(self.keep),
            "-kc",
        ]
        if self.capture_device is not None:
            args.extend(["-c", str(self.capture_device)])
        if self.threads is not None:
            args.extend(["-t", str(self.threads)])
        return args


class SessionState(Enum):
    """Streaming session state."""

    IDLE = "idle"
    STARTING = "starting"
    STREAMING = "streaming"
    STOPPING = "stopping"
    RESOLVED = "resolved"


class StreamingTranscriptionSession:
    """Runs whisper-stream once and resolves to the accumulated final text.

    Output chunks are split into finalized lines (newline-terminated) and
    live partial updates (carriage-return overwrites). Finalized lines
    are accumulated into the transcript; partials are only reported.
    The session stops on process exit, on ``max_duration``, or after
    ``silence_blank_count`` consecutive blank-audio lines, and resolves
    exactly once.
    """

    def __init__(
        self,
        options: StreamOptions,
        callbacks: StreamCallbacks | None = None,
        supervisor: ProcessSupervisor | None = None,
    ):
        """Initialize session.

        Args:
            options: StreamOptions for the whisper-stream invocation
            callbacks: Optional partial/final/silence observers
            supervisor: ProcessSupervisor used to spawn and stop the tool
        """
        if options.max_duration <= 0:
            raise ValueError("max_duration must be positive")

        self.options = options
        self.callbacks = callbacks or StreamCallbacks()
        self.supervisor = supervisor or ProcessSupervisor()

        self.state = SessionState.IDLE
        self.stop_reason: StopReason | None = None
        self._handle: ProcessHandle | None = None
        self._endpoint = EndpointDetector(options.silence_blank_count)
        self._buffer = ""
        self._final_lines: list[str] = []
        self._stderr: list[str] = []
        self._last_partial: str | None = None
        self._deadline: asyncio.TimerHandle | None = None
        self._close_task: asyncio.Task | None = None
        self._result: asyncio.Future | None = None
        self._pending_stop: StopReason | None = None

    @property
    def text(self) -> str:
        """Transcript accumulated so far."""
        return " ".join(self._final_lines).strip()

    async def run(self) -> SessionResult:
        """Run the session to completion.

        Returns:
            SessionResult carrying text or a typed failure; never raises
            for pipeline failures.

        Raises:
            RuntimeError: If the session was already started
            asyncio.CancelledError: If the awaiting task is cancelled (the
                process is stopped cooperatively first)
        """
        if self.state is not SessionState.IDLE:
            raise RuntimeError(f"Cannot start session in {self.state.value} state")

        loop = asyncio.get_running_loop()
        self._result = loop.create_future()
        self._reset_buffers()

        logger.info("State transition: IDLE -> STARTING")
        self.state = SessionState.STARTING
        try:
            self.supervisor.check_available(self.options.binary, self.options.install_hint)
            self._check_model()
            self._handle = await self.supervisor.spawn(
                self.options.binary, self.options.build_args()
            )
        except SottoError as e:
            logger.error("Failed to start %s: %s", self.options.binary, e)
            self._resolve(SessionResult(error=e, reason=StopReason.ERROR))
            return self._result.result()

        logger.info("State transition: STARTING -> STREAMING")
        self.state = SessionState.STREAMING
        self._deadline = loop.call_later(self.options.max_duration, self._on_deadline)
        self._close_task = asyncio.create_task(self._supervise())
        if self._pending_stop is not None:
            self._begin_stop(self._pending_stop)

        try:
            result = await asyncio.shield(self._result)
        except asyncio.CancelledError:
            logger.info("Session cancelled, stopping %s", self.options.binary)
            self._begin_stop(StopReason.CANCELLED)
            await self._teardown()
            raise

        await self._teardown()
        return result

    def stop(self) -> None:
        """Request an early stop; the session still resolves with the text so far."""
        if self.state is SessionState.STARTING:
            logger.info("Stop requested while starting, deferring until spawned")
            self._pending_stop = StopReason.CANCELLED
            return
        self._begin_stop(StopReason.CANCELLED)

    def _reset_buffers(self) -> None:
        self._buffer = ""
        self._final_lines = []
        self._stderr = []
        self._last_partial = None
        self._endpoint.reset()

    def _check_model(self) -> None:
        if not Path(self.options.model_path).exists():
            raise ResourceMissingError(self.options.model_path, MODEL_HINT)

    async def _supervise(self) -> None:
        """Pump both output streams, then wait for the process to close."""
        handle = self._handle
        pumps = [
            asyncio.ensure_future(self._pump(handle.stdout, self._on_stdout)),
            asyncio.ensure_future(self._pump(handle.stderr, self._stderr.append)),
        ]
        try:
            await asyncio.gather(*pumps)
            returncode = await handle.wait()
        except Exception as e:
            for pump in pumps:
                pump.cancel()
            self._on_process_error(e)
            return
        self._on_close(returncode)

    async def _pump(self, stream, sink) -> None:
        if stream is None:
            return
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        while True:
            data = await stream.read(READ_SIZE)
            if not data:
                break
            text = decoder.decode(data)
            if text:
                sink(text)
        tail = decoder.decode(b"", final=True)
        if tail:
            sink(tail)

    def _on_stdout(self, chunk: str) -> None:
        """Process one decoded chunk of whisper-stream output."""
        if self.state is not SessionState.STREAMING:
            return

        self._buffer += chunk

        newline = self._buffer.rfind("\n")
        if newline != -1:
            complete = self._buffer[: newline + 1]
            self._buffer = self._buffer[newline + 1 :]
            self._last_partial = None

            for seg in segment(complete):
                if self._endpoint.observe(seg):
                    logger.info(
                        "Detected %d consecutive blank segments, stopping",
                        self._endpoint.consecutive_blanks,
                    )
                    self._emit(self.callbacks.on_silence)
                    self._begin_stop(StopReason.SILENCE)
                    return
                if seg.is_blank:
                    continue

                self._final_lines.append(seg.text)
                logger.debug("Final: %s", seg.text)
                self._emit(self.callbacks.on_final, seg.text)

        if self._buffer:
            self._report_partial()

    def _report_partial(self) -> None:
        partial, self._buffer = split_partial(self._buffer)
        if partial and partial != self._last_partial:
            self._last_partial = partial
            logger.debug("Partial: %s", partial)
            self._emit(self.callbacks.on_partial, partial)

    def _on_deadline(self) -> None:
        self._deadline = None
        logger.info("Max duration of %.1fs reached", self.options.max_duration)
        self._begin_stop(StopReason.TIMEOUT)

    def _begin_stop(self, reason: StopReason) -> None:
        if self.state is not SessionState.STREAMING:
            return
        logger.info("State transition: STREAMING -> STOPPING (%s)", reason.value)
        self.state = SessionState.STOPPING
        self.stop_reason = reason
        self._cancel_deadline()
        self.supervisor.request_stop(self._handle)

    def _on_close(self, returncode: int | None) -> None:
        stopping = self.state is SessionState.STOPPING or self._handle.stop_requested
        if returncode != 0 and not stopping:
            stderr = "".join(self._stderr).strip()
            logger.error(
                "%s exited with code %s: %s", self.options.binary, returncode, stderr
            )
            error = ProcessFailureError(self.options.binary, returncode, stderr)
            self._resolve(SessionResult(error=error, reason=StopReason.ERROR))
            return

        text = self.text or NO_SPEECH_PLACEHOLDER
        reason = self.stop_reason or StopReason.PROCESS_EXIT
        logger.info(
            "%s closed (code=%s, reason=%s), %d final lines",
            self.options.binary,
            returncode,
            reason.value,
            len(self._final_lines),
        )
        self._resolve(SessionResult(text=text, reason=reason))

    def _on_process_error(self, error: Exception) -> None:
        logger.error("%s error: %s", self.options.binary, error)
        self._resolve(
            SessionResult(
                error=ProcessError(self.options.binary, error),
                reason=StopReason.ERROR,
            )
        )

    def _resolve(self, result: SessionResult) -> None:
        if self._result is None or self._result.done():
            return
        self.state = SessionState.RESOLVED
        self._cancel_deadline()
        self._result.set_result(result)

    def _cancel_deadline(self) -> None:
        if self._deadline is not None:
            self._deadline.cancel()
            self._deadline = None

    async def _teardown(self) -> None:
        """Release the process after resolution through any path."""
        self._cancel_deadline()
        handle = self._handle
        if handle is None:
            return
        if handle.alive:
            self.supervisor.request_stop(handle)

        task = self._close_task
        if task is None or task.done():
            return
        await asyncio.wait({task}, timeout=self.supervisor.kill_grace + 1.0)
        if not task.done():
            logger.warning("%s did not close after stop, abandoning", handle.name)
            task.cancel()

    def _emit(self, callback, *args) -> None:
        if callback is None:
            return
        try:
            callback(*args)
        except Exception as e:
            logger.warning("Stream callback %s failed: %s", getattr(callback, "__name__", callback), e)


async def stream_transcribe(
    options: StreamOptions,
    callbacks: StreamCallbacks | None = None,
    supervisor: ProcessSupervisor | None = None,
) -> str:
    """Run a streaming session and return its text.

    Raises:
        SottoError: If the session resolved with a failure
    """
    session = StreamingTranscriptionSession(options, callbacks, supervisor)
    result = await session.run()
    return result.unwrap()
