"""Parsing of whisper-stream terminal output into segments.

whisper-stream redraws the current line in place: each live update is
preceded by a carriage return (usually after an ``ESC[2K`` clear-line
sequence), and a line is only finalized once a newline is written.
Silence is reported as a ``[BLANK_AUDIO]`` marker and the tool greets the
user with ``[Start speaking]``.
"""

import re

from sotto._types import Segment

ANSI_RE = re.compile(r"\x1b\[[0-?]*[ -/]*[@-~]")
BLANK_AUDIO_RE = re.compile(r"\[BLANK_AUDIO\]")
START_SPEAKING_RE = re.compile(r"\[Start speaking\]")

OVERWRITE_MARKER = "\r"
LINE_BREAK = "\n"


def strip_ansi(text: str) -> str:
    """Remove terminal escape sequences.

    Repeats until nothing matches so that sequences revealed by a removal
    (``"\\x1b\\x1b[0m[0m"``) are removed too.
    """
    while True:
        cleaned = ANSI_RE.sub("", text)
        if cleaned == text:
            return cleaned
        text = cleaned


def is_blank_audio(text: str) -> bool:
    return BLANK_AUDIO_RE.search(text) is not None


def is_filtered_line(text: str) -> bool:
    """True for lines that never count as speech (empty, blank, start marker)."""
    trimmed = text.strip()
    return (
        not trimmed
        or BLANK_AUDIO_RE.search(trimmed) is not None
        or START_SPEAKING_RE.search(trimmed) is not None
    )


def segment(raw: str) -> list[Segment]:
    """Turn a chunk of newline-terminated output into segments.

    Only the last carriage-return-delimited update of each line is kept.
    Blank-audio lines are returned with ``is_blank=True``; start markers
    and empty lines are dropped. Every returned segment is final.

    Args:
        raw: Raw decoded output, typically ending with a newline

    Returns:
        Segments in output order
    """
    segments = []
    for line in strip_ansi(raw).split(LINE_BREAK):
        text = line.split(OVERWRITE_MARKER)[-1].strip()
        if not text:
            continue

        blank = is_blank_audio(text)
        if not blank and is_filtered_line(text):
            continue

        segments.append(Segment(text=text, is_final=True, is_blank=blank))
    return segments


def split_partial(buffer: str) -> tuple[str | None, str]:
    """Extract the live partial update from an unterminated buffer.

    The text after the last overwrite marker is the current partial; when
    nothing follows the marker yet, the update it just closed is used
    instead. Blank and start markers never count as partials.

    Args:
        buffer: Pending output that contains no line break

    Returns:
        ``(partial, remainder)``: the partial text (or None) and the buffer
        to retain, which is everything after the last overwrite marker.
        A buffer without any marker is returned unchanged.
    """
    index = buffer.rfind(OVERWRITE_MARKER)
    if index == -1:
        return None, buffer

    remainder = buffer[index + 1 :]
    updates = strip_ansi(buffer).split(OVERWRITE_MARKER)
    latest = updates[-1].strip() or updates[-2].strip()
    if is_filtered_line(latest):
        return None, remainder
    return latest, remainder
