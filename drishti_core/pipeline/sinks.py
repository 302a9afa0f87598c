"""
Audio Output Sinks
==================

A sink owns the output clock and plays buffers at absolute clock times.

``SoundDeviceSink`` keeps one output stream running and mixes scheduled
buffers onto a sample-accurate timeline inside the audio callback, so two
buffers scheduled end-to-start play with neither a gap nor an overlap.
Buffer-end notifications are marshalled back onto the asyncio loop.
"""

from __future__ import annotations

import asyncio
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable, List, Optional, Tuple

import numpy as np
import structlog

from drishti_core.core.errors import CaptureError
from drishti_core.voice_engine.audio import DecodedAudio, resample

logger = structlog.get_logger(__name__)

EndCallback = Callable[[], None]


class AudioSink(ABC):
    """Clocked audio output."""

    @abstractmethod
    def current_time(self) -> float:
        """Current output clock in seconds."""

    @abstractmethod
    def schedule(self, audio: DecodedAudio, start_time: float, on_ended: EndCallback) -> None:
        """
        Play ``audio`` starting at ``start_time`` on the output clock.

        ``on_ended`` is invoked on the event loop thread once the buffer has
        played out naturally. It is never invoked for buffers removed by
        ``stop()``.
        """

    @abstractmethod
    def stop(self) -> None:
        """Silence and forget every scheduled buffer immediately."""

    async def start(self) -> None:
        """Open the output device."""

    async def close(self) -> None:
        """Release the output device."""


@dataclass
class _ScheduledBuffer:
    start_frame: int
    samples: np.ndarray
    on_ended: EndCallback

    @property
    def end_frame(self) -> int:
        return self.start_frame + int(self.samples.shape[0])


class SoundDeviceSink(AudioSink):
    """
    Output sink backed by a ``sounddevice.OutputStream``.

    The clock is the number of frames rendered by the stream divided by the
    sample rate, so scheduling decisions and rendering share one timebase.
    """

    def __init__(
        self,
        sample_rate: int = 24000,
        device: Optional[Any] = None,
        blocksize: int = 0,
    ):
        self.sample_rate = sample_rate
        self.device = device
        self.blocksize = blocksize

        self._stream = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._scheduled: List[_ScheduledBuffer] = []
        self._frames_rendered = 0
        # (end time in seconds, end frame) of the most recently scheduled buffer
        self._tail: Optional[Tuple[float, int]] = None
        self._lock = threading.Lock()

    async def start(self) -> None:
        import sounddevice as sd

        self._loop = asyncio.get_running_loop()
        try:
            self._stream = sd.OutputStream(
                samplerate=self.sample_rate,
                channels=1,
                dtype="float32",
                device=self.device,
                blocksize=self.blocksize,
                callback=self._render,
            )
            self._stream.start()
        except (sd.PortAudioError, ValueError) as e:
            raise CaptureError(f"Output device unavailable: {e}")

        logger.info("output_sink_started", sample_rate=self.sample_rate, device=self.device)

    async def close(self) -> None:
        self.stop()
        if self._stream is not None:
            self._stream.stop()
            self._stream.close()
            self._stream = None
        logger.info("output_sink_closed")

    def current_time(self) -> float:
        with self._lock:
            return self._frames_rendered / float(self.sample_rate)

    def schedule(self, audio: DecodedAudio, start_time: float, on_ended: EndCallback) -> None:
        end_time = start_time + audio.duration
        audio = resample(audio, self.sample_rate)
        start_frame = int(round(start_time * self.sample_rate))

        with self._lock:
            # A buffer starting where the previous one ends begins on exactly
            # its end frame, whatever the rounding of either.
            if self._tail is not None and abs(start_time - self._tail[0]) < 0.5 / self.sample_rate:
                start_frame = self._tail[1]

            entry = _ScheduledBuffer(start_frame=start_frame, samples=audio.samples, on_ended=on_ended)
            self._scheduled.append(entry)
            self._tail = (end_time, entry.end_frame)

    def stop(self) -> None:
        with self._lock:
            self._scheduled.clear()
            self._tail = None

    def _render(self, outdata, frames, time_info, status) -> None:
        """PortAudio callback. Runs on the audio thread; must not block."""
        if status:
            logger.debug("output_stream_status", status=str(status))

        out = np.zeros(frames, dtype=np.float32)
        finished: List[EndCallback] = []

        with self._lock:
            window_start = self._frames_rendered
            window_end = window_start + frames
            remaining: List[_ScheduledBuffer] = []

            for entry in self._scheduled:
                if entry.start_frame < window_end and entry.end_frame > window_start:
                    src_from = max(0, window_start - entry.start_frame)
                    src_to = min(entry.samples.shape[0], window_end - entry.start_frame)
                    dst_from = max(0, entry.start_frame - window_start)
                    out[dst_from:dst_from + (src_to - src_from)] += entry.samples[src_from:src_to]

                if entry.end_frame <= window_end:
                    finished.append(entry.on_ended)
                else:
                    remaining.append(entry)

            self._scheduled = remaining
            self._frames_rendered = window_end

        outdata[:, 0] = np.clip(out, -1.0, 1.0)

        if finished and self._loop is not None:
            for callback in finished:
                self._loop.call_soon_threadsafe(callback)
