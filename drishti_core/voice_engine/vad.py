"""
Voice Activity Detection (VAD) module.

Energy-based detection with hysteresis:

- Speech starts when the RMS level rises above ``speech_threshold``.
- Speech ends only after the level stays below the lower
  ``silence_threshold`` continuously for ``min_silence_ms``. Any frame at or
  above the lower threshold restarts the silence timer.

The detector is fed levels on a fixed cadence by ``VADTurnDriver`` and only
reports state changes; it never touches the session itself.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional

import structlog

from drishti_core.config import VADSettings

logger = structlog.get_logger(__name__)


class VADState(str, Enum):
    """Voice Activity Detection states."""
    SILENCE = "silence"
    SPEECH = "speech"


class VADEventType(str, Enum):
    """Types of VAD events."""
    SPEECH_START = "speech_start"
    SPEECH_END = "speech_end"


@dataclass
class VADEvent:
    """
    Voice Activity Detection event.

    Attributes:
        event_type: Type of VAD event
        timestamp_ms: Timestamp when event occurred
        duration_ms: Duration of the speech segment (SPEECH_END only)
        level: RMS level of the frame that triggered the event
    """
    event_type: VADEventType
    timestamp_ms: float = 0.0
    duration_ms: float = 0.0
    level: float = 0.0


@dataclass
class VADConfig:
    """
    Configuration for Voice Activity Detection.

    Attributes:
        speech_threshold: RMS level that starts speech
        silence_threshold: RMS level below which silence is counted
        min_silence_ms: Continuous silence required to end speech
    """
    speech_threshold: float = 0.018
    silence_threshold: float = 0.009
    min_silence_ms: float = 900

    def __post_init__(self) -> None:
        if self.silence_threshold > self.speech_threshold:
            raise ValueError("silence_threshold must not exceed speech_threshold")

    @classmethod
    def from_settings(cls, settings: VADSettings) -> "VADConfig":
        return cls(
            speech_threshold=settings.speech_threshold,
            silence_threshold=settings.silence_threshold,
            min_silence_ms=settings.min_silence_ms,
        )


class VoiceActivityDetector:
    """Hysteresis VAD over a stream of RMS levels."""

    def __init__(self, config: Optional[VADConfig] = None):
        self.config = config or VADConfig()
        self._state = VADState.SILENCE
        self._speech_start_time: Optional[float] = None
        self._silence_start_time: Optional[float] = None

    @property
    def state(self) -> VADState:
        """Current VAD state."""
        return self._state

    @property
    def is_speaking(self) -> bool:
        """Whether speech is currently detected."""
        return self._state == VADState.SPEECH

    def process_level(self, rms: float, timestamp_ms: float) -> Optional[VADEvent]:
        """
        Update the detector with one RMS sample.

        Returns:
            VADEvent if speech started or ended, None otherwise
        """
        if self._state == VADState.SILENCE:
            if rms > self.config.speech_threshold:
                self._state = VADState.SPEECH
                self._speech_start_time = timestamp_ms
                self._silence_start_time = None
                logger.debug("speech_started", level=round(rms, 4), timestamp_ms=timestamp_ms)
                return VADEvent(
                    event_type=VADEventType.SPEECH_START,
                    timestamp_ms=timestamp_ms,
                    level=rms,
                )
            return None

        if rms >= self.config.silence_threshold:
            self._silence_start_time = None
            return None

        if self._silence_start_time is None:
            self._silence_start_time = timestamp_ms

        if timestamp_ms - self._silence_start_time < self.config.min_silence_ms:
            return None

        start = self._speech_start_time if self._speech_start_time is not None else timestamp_ms
        duration = timestamp_ms - start
        logger.debug("speech_ended", duration_ms=duration, timestamp_ms=timestamp_ms)
        event = VADEvent(
            event_type=VADEventType.SPEECH_END,
            timestamp_ms=timestamp_ms,
            duration_ms=duration,
            level=rms,
        )
        self.reset()
        return event

    def reset(self) -> None:
        """Return to SILENCE and forget any partial speech or silence run."""
        self._state = VADState.SILENCE
        self._speech_start_time = None
        self._silence_start_time = None
