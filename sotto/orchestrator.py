"""Listen operation: streaming session plus status indicator."""

import logging
from collections.abc import Callable

from sotto._types import ListenResponse, StreamCallbacks
from sotto.config import MAX_DURATION_LIMIT, Config
from sotto.errors import ResourceMissingError, ToolMissingError
from sotto.indicator import IndicatorChannel, IndicatorStatus
from sotto.process import ProcessSupervisor
from sotto.stream_transcriber import StreamingTranscriptionSession, StreamOptions

logger = logging.getLogger(__name__)

PERMISSION_MESSAGE = (
    "Microphone access denied. Grant microphone access to your terminal in "
    "your system privacy settings (macOS: System Settings > Privacy & Security > Microphone)."
)
MODEL_MESSAGE = (
    "Whisper model not found. Download a ggml model and set whisper.model_path "
    "in the config file or WHISPER_MODEL_PATH."
)


def describe_failure(error: Exception, install_hint: str | None = None) -> str:
    """Map a pipeline failure to a stable user-facing message."""
    message = str(error)

    if isinstance(error, ToolMissingError) or "is not installed" in message:
        tool = getattr(error, "tool", "whisper-stream")
        hint = getattr(error, "install_hint", None) or install_hint
        if hint:
            return f"{tool} is not installed. Install it with: {hint}"
        return f"{tool} is not installed."

    if isinstance(error, ResourceMissingError) or "model not found" in message.lower():
        return MODEL_MESSAGE

    if "permission" in message.lower():
        return PERMISSION_MESSAGE

    return f"Live transcription failed: {message}"


class ListenOrchestrator:
    """Runs one listen operation end to end.

    Shows the indicator, streams transcription while forwarding partial and
    final text to the indicator and the progress callback, switches the
    indicator to "transcribing" on silence, and always closes it.
    """

    def __init__(
        self,
        config: Config | None = None,
        *,
        supervisor: ProcessSupervisor | None = None,
        indicator: IndicatorChannel | None = None,
        on_progress: Callable[[str], None] | None = None,
    ):
        """Initialize orchestrator.

        Args:
            config: Config with whisper and indicator sections
            supervisor: ProcessSupervisor shared by session and indicator
            indicator: IndicatorChannel override (built from config if None)
            on_progress: Receives the latest partial or final text
        """
        self.config = config or Config()
        self.supervisor = supervisor or ProcessSupervisor(self.config.whisper.kill_grace)
        if indicator is None:
            indicator_cfg = self.config.indicator
            indicator = IndicatorChannel(
                indicator_cfg.command if indicator_cfg.enabled else None,
                supervisor=self.supervisor,
                close_grace=indicator_cfg.close_grace,
            )
        self.indicator = indicator
        self.on_progress = on_progress

    async def listen(
        self,
        max_duration: float | None = None,
        language: str | None = None,
    ) -> ListenResponse:
        """Record and transcribe until silence, timeout, or tool exit.

        Args:
            max_duration: Maximum recording time in seconds (1-120)
            language: Language code overriding the configured one

        Returns:
            ListenResponse with the text, or an error message with is_error set
        """
        if max_duration is not None and not 1 <= max_duration <= MAX_DURATION_LIMIT:
            return ListenResponse(
                text=f"max_duration must be between 1 and {MAX_DURATION_LIMIT} seconds",
                is_error=True,
            )

        options = StreamOptions.from_config(
            self.config.whisper, max_duration=max_duration, language=language
        )
        logger.info(
            "Listening (max_duration=%.1fs, language=%s)",
            options.max_duration,
            options.language,
        )

        session = StreamingTranscriptionSession(
            options,
            StreamCallbacks(
                on_partial=self._on_text,
                on_final=self._on_text,
                on_silence=self._on_silence,
            ),
            supervisor=self.supervisor,
        )

        try:
            await self.indicator.show(IndicatorStatus.LISTENING)
            result = await session.run()
        finally:
            self.indicator.close()
            await self.indicator.wait_closed()

        if result.ok:
            logger.info("Listen finished (%s)", result.reason.value)
            return ListenResponse(text=result.text)

        logger.error("Listen failed: %s", result.error)
        return ListenResponse(
            text=describe_failure(result.error, options.install_hint),
            is_error=True,
        )

    def _on_text(self, text: str) -> None:
        self.indicator.send_text(text)
        self._notify(text)

    def _on_silence(self) -> None:
        self.indicator.update(IndicatorStatus.TRANSCRIBING)

    def _notify(self, text: str) -> None:
        if self.on_progress is None:
            return
        try:
            self.on_progress(text)
        except Exception as e:
            logger.debug("Progress notification failed: %s", e)
