"""Test doubles and helpers shared by the unit tests."""

import asyncio
from typing import Callable, Dict, List, Optional, Set, Tuple

import numpy as np

from drishti_core.core.errors import SynthesisError
from drishti_core.pipeline.sinks import AudioSink, EndCallback
from drishti_core.voice_engine.audio import DecodedAudio, to_wav_bytes


# =============================================================================
# Audio Helpers
# =============================================================================


def make_audio(duration: float, sample_rate: int = 1000, **metadata) -> DecodedAudio:
    """A silent buffer of the given duration in seconds."""
    frames = int(round(duration * sample_rate))
    return DecodedAudio(
        samples=np.zeros(frames, dtype=np.float32),
        sample_rate=sample_rate,
        metadata=dict(metadata),
    )


def make_wav(duration: float = 0.1, sample_rate: int = 8000, amplitude: float = 0.1) -> bytes:
    """An encoded WAV payload with a quiet tone."""
    t = np.arange(int(duration * sample_rate)) / sample_rate
    return to_wav_bytes((amplitude * np.sin(2 * np.pi * 220 * t)).astype(np.float32), sample_rate)


# =============================================================================
# Fakes
# =============================================================================


class FakeClockSink(AudioSink):
    """
    Sink with a manual clock.

    Buffers never end on their own unless ``auto_end`` is set, in which case
    each buffer reports its end on the next loop iteration.
    """

    def __init__(self, now: float = 0.0, auto_end: bool = False):
        self.now = now
        self.auto_end = auto_end
        self.scheduled: List[Tuple[DecodedAudio, float, EndCallback]] = []
        self.history: List[Tuple[DecodedAudio, float]] = []
        self.stop_calls = 0

    def current_time(self) -> float:
        return self.now

    def schedule(self, audio: DecodedAudio, start_time: float, on_ended: EndCallback) -> None:
        self.scheduled.append((audio, start_time, on_ended))
        self.history.append((audio, start_time))
        if self.auto_end:
            asyncio.get_running_loop().call_soon(self._end, on_ended)

    def stop(self) -> None:
        self.stop_calls += 1
        self.scheduled.clear()

    def fire_ended(self) -> None:
        """End the earliest scheduled buffer."""
        _, _, on_ended = self.scheduled.pop(0)
        on_ended()

    def advance(self, now: float) -> None:
        """Move the clock and end every buffer finished by then."""
        self.now = now
        while self.scheduled:
            audio, start, _ = self.scheduled[0]
            if start + audio.duration > now + 1e-9:
                break
            self.fire_ended()

    def _end(self, on_ended: EndCallback) -> None:
        for i, entry in enumerate(self.scheduled):
            if entry[2] is on_ended:
                del self.scheduled[i]
                on_ended()
                return


class FakeSynthesizer:
    """Synthesizer returning WAV payloads, with per-index delays and failures."""

    def __init__(
        self,
        delays: Optional[Dict[int, float]] = None,
        failures: Optional[Set[int]] = None,
        duration: float = 0.05,
    ):
        self.delays = delays or {}
        self.failures = failures or set()
        self.duration = duration
        self.calls: List[Tuple[int, str]] = []
        self.cancelled: List[int] = []

    async def synthesize(self, text: str, index: Optional[int] = None) -> bytes:
        self.calls.append((index, text))
        try:
            await asyncio.sleep(self.delays.get(index, 0))
        except asyncio.CancelledError:
            self.cancelled.append(index)
            raise
        if index in self.failures:
            raise SynthesisError("synthesis unavailable", index=index)
        return make_wav(self.duration)


class FakeChat:
    """Chat stream yielding scripted deltas, optionally pausing after ``pause_after``."""

    def __init__(self, deltas: List[str], pause_after: Optional[int] = None, error: Exception = None):
        self.deltas = deltas
        self.pause_after = pause_after
        self.error = error
        self.gate = asyncio.Event()
        self.requests: List[List[Dict[str, str]]] = []
        self.closed = False

    async def stream_chat(self, messages):
        self.requests.append([dict(m) for m in messages])
        try:
            for i, delta in enumerate(self.deltas):
                if self.pause_after is not None and i == self.pause_after:
                    await self.gate.wait()
                await asyncio.sleep(0)
                yield delta
            if self.error is not None:
                raise self.error
        finally:
            self.closed = True


class FakeCapture:
    """Capture double that hands back a canned clip."""

    def __init__(self, clip: Optional[bytes] = b"RIFF-fake-clip", level: float = 0.0):
        self.clip = clip
        self.level = level
        self.recording = False
        self.starts = 0
        self.cancels = 0
        self.start_error: Optional[Exception] = None

    def start_recording(self) -> None:
        if self.start_error is not None:
            raise self.start_error
        self.starts += 1
        self.recording = True

    def stop_recording(self) -> Optional[bytes]:
        self.recording = False
        return self.clip

    def cancel_recording(self) -> None:
        self.cancels += 1
        self.recording = False

    def get_rms_level(self) -> float:
        return self.level


async def wait_for(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    """Yield to the loop until ``predicate`` holds."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached")
        await asyncio.sleep(0.001)

