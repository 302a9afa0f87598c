"""
Microphone capture.

One ``sounddevice.InputStream`` stays open for the lifetime of the session so
levels can be monitored continuously. Samples are only accumulated between
``start_recording()`` and ``stop_recording()``; the recorded clip is handed
back as a 16-bit mono WAV file ready for transcription.
"""

from __future__ import annotations

import threading
from collections import deque
from typing import Any, Deque, List, Optional

import numpy as np
import structlog

from drishti_core.core.errors import CaptureError
from .audio import calculate_rms, to_wav_bytes

logger = structlog.get_logger(__name__)


class MicrophoneCapture:
    """
    Level monitoring and clip recording from the default input device.

    Usage:
        capture = MicrophoneCapture(sample_rate=16000)
        capture.open()
        capture.start_recording()
        ...
        wav = capture.stop_recording()   # None if the clip was too short
    """

    def __init__(
        self,
        sample_rate: int = 16000,
        device: Optional[Any] = None,
        window_size: int = 2048,
        min_capture_ms: float = 350,
    ):
        self.sample_rate = sample_rate
        self.device = device
        self.window_size = window_size
        self.min_capture_ms = min_capture_ms

        self._stream = None
        self._lock = threading.Lock()
        self._window: Deque[float] = deque(maxlen=window_size)
        self._chunks: List[np.ndarray] = []
        self._recording = False

    @property
    def is_open(self) -> bool:
        return self._stream is not None

    @property
    def is_recording(self) -> bool:
        return self._recording

    def open(self) -> None:
        """Open the input stream and start level monitoring."""
        if self._stream is not None:
            return

        import sounddevice as sd

        try:
            self._stream = sd.InputStream(
                samplerate=self.sample_rate,
                channels=1,
                dtype="float32",
                device=self.device,
                callback=self._on_audio,
            )
            self._stream.start()
        except (sd.PortAudioError, ValueError) as e:
            self._stream = None
            raise CaptureError(f"Microphone unavailable: {e}")

        logger.info("capture_opened", sample_rate=self.sample_rate, device=self.device)

    def close(self) -> None:
        self.cancel_recording()
        if self._stream is not None:
            self._stream.stop()
            self._stream.close()
            self._stream = None
            logger.info("capture_closed")

    def start_recording(self) -> None:
        """Begin accumulating samples."""
        if self._stream is None:
            self.open()

        with self._lock:
            self._chunks = []
            self._recording = True
        logger.debug("recording_started")

    def stop_recording(self) -> Optional[bytes]:
        """
        Stop accumulating and package the clip.

        Returns:
            WAV bytes, or None if the clip is shorter than ``min_capture_ms``
        """
        with self._lock:
            chunks, self._chunks = self._chunks, []
            self._recording = False

        samples = np.concatenate(chunks) if chunks else np.zeros(0, dtype=np.float32)
        duration_ms = samples.shape[0] * 1000.0 / self.sample_rate

        if duration_ms < self.min_capture_ms:
            logger.info("capture_too_short", duration_ms=round(duration_ms, 1))
            return None

        logger.debug("recording_stopped", duration_ms=round(duration_ms, 1))
        return to_wav_bytes(samples, self.sample_rate)

    def cancel_recording(self) -> None:
        with self._lock:
            self._chunks = []
            self._recording = False

    def get_rms_level(self) -> float:
        """RMS over the most recent analysis window."""
        with self._lock:
            if not self._window:
                return 0.0
            window = np.fromiter(self._window, dtype=np.float32, count=len(self._window))
        return calculate_rms(window)

    def _on_audio(self, indata, frames, time_info, status) -> None:
        """Input stream callback (runs on the audio thread)."""
        if status:
            logger.debug("input_stream_status", status=str(status))

        mono = np.asarray(indata, dtype=np.float32).reshape(frames, -1)[:, 0].copy()
        with self._lock:
            self._window.extend(mono.tolist())
            if self._recording:
                self._chunks.append(mono)
