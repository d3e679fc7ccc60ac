"""Shared types and dataclasses for cross-module use."""

from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum

from sotto.errors import SottoError

NO_SPEECH_PLACEHOLDER = "[No speech detected]"


@dataclass(frozen=True)
class Segment:
    """A single line of recognizer output."""

    text: str
    is_final: bool = True
    is_blank: bool = False


class StopReason(Enum):
    """Why a streaming session stopped."""

    PROCESS_EXIT = "process_exit"
    SILENCE = "silence"
    TIMEOUT = "timeout"
    CANCELLED = "cancelled"
    ERROR = "error"


@dataclass(frozen=True)
class SessionResult:
    """Terminal outcome of a streaming session: text or a typed failure."""

    text: str | None = None
    error: SottoError | None = None
    reason: StopReason = StopReason.PROCESS_EXIT

    @property
    def ok(self) -> bool:
        return self.error is None

    def unwrap(self) -> str:
        """Return the text, raising the captured error on failure."""
        if self.error is not None:
            raise self.error
        return self.text or NO_SPEECH_PLACEHOLDER


@dataclass
class StreamCallbacks:
    """Optional observers for a streaming session."""

    on_partial: Callable[[str], None] | None = None
    on_final: Callable[[str], None] | None = None
    on_silence: Callable[[], None] | None = None


@dataclass(frozen=True)
class ListenResponse:
    """Result of one listen operation, formatted for the caller."""

    text: str
    is_error: bool = False

    def to_dict(self) -> dict:
        return {"text": self.text, "isError": self.is_error}
