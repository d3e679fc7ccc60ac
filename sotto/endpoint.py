"""Silence-based endpoint detection."""

import logging

from sotto._types import Segment

logger = logging.getLogger(__name__)


class EndpointDetector:
    """Signals the end of speech after a run of consecutive blank segments.

    Any real speech resets the run. Once triggered the detector stays
    triggered and reports the endpoint only once.
    """

    def __init__(self, threshold: int = 3):
        if threshold < 1:
            raise ValueError("threshold must be at least 1")
        self.threshold = threshold
        self.consecutive_blanks = 0
        self.triggered = False

    def observe(self, segment: Segment) -> bool:
        """Feed one segment; return True exactly when the endpoint is reached."""
        if self.triggered:
            return False

        if not segment.is_blank:
            self.consecutive_blanks = 0
            return False

        self.consecutive_blanks += 1
        logger.debug(
            "Blank segment %d/%d", self.consecutive_blanks, self.threshold
        )
        if self.consecutive_blanks >= self.threshold:
            self.triggered = True
            return True
        return False

    def reset(self) -> None:
        self.consecutive_blanks = 0
        self.triggered = False
