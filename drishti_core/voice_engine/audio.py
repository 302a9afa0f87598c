"""
Audio utilities for the voice pipeline.

Provides:
- Decoded audio buffers with duration metadata
- Decoding of synthesized payloads (mp3/wav/flac) into float32 PCM
- RMS energy for voice activity detection
- WAV packaging of captured clips for transcription
- Simple resampling and downmixing for the output device
"""

import io
import wave
from dataclasses import dataclass, field
from typing import Any, Dict

import numpy as np
import soundfile as sf

from drishti_core.core.errors import DecodeError


@dataclass
class DecodedAudio:
    """
    A playable PCM buffer.

    Attributes:
        samples: float32 samples in [-1.0, 1.0], mono (frames,)
        sample_rate: Samples per second (Hz)
        metadata: Additional metadata (source index, codec, ...)
    """
    samples: np.ndarray
    sample_rate: int
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def num_frames(self) -> int:
        return int(self.samples.shape[0])

    @property
    def duration(self) -> float:
        """Duration in seconds."""
        if self.sample_rate <= 0:
            return 0.0
        return self.num_frames / float(self.sample_rate)

    @classmethod
    def silence(cls, duration: float, sample_rate: int = 24000) -> "DecodedAudio":
        frames = int(round(duration * sample_rate))
        return cls(samples=np.zeros(frames, dtype=np.float32), sample_rate=sample_rate)


def to_mono(samples: np.ndarray) -> np.ndarray:
    """Downmix (frames, channels) to (frames,)."""
    if samples.ndim == 1:
        return samples
    return samples.mean(axis=1).astype(np.float32)


def decode_audio(payload: bytes) -> DecodedAudio:
    """
    Decode an encoded audio payload into a mono float32 buffer.

    Raises:
        DecodeError: If the payload is empty or cannot be decoded
    """
    if not payload:
        raise DecodeError("Empty audio payload")

    try:
        samples, sample_rate = sf.read(io.BytesIO(payload), dtype="float32")
    except (RuntimeError, ValueError, TypeError) as e:
        raise DecodeError(f"Audio decode failed: {e}", details={"bytes": len(payload)})

    samples = to_mono(np.asarray(samples, dtype=np.float32))
    if samples.size == 0:
        raise DecodeError("Decoded audio contains no frames")

    return DecodedAudio(samples=samples, sample_rate=int(sample_rate))


def resample(audio: DecodedAudio, target_rate: int) -> DecodedAudio:
    """Linear-interpolation resample to ``target_rate``."""
    if audio.sample_rate == target_rate or audio.num_frames == 0:
        return audio

    target_frames = int(round(audio.num_frames * target_rate / audio.sample_rate))
    source_positions = np.arange(audio.num_frames, dtype=np.float64)
    target_positions = np.linspace(0, audio.num_frames - 1, num=target_frames)
    samples = np.interp(target_positions, source_positions, audio.samples).astype(np.float32)
    return DecodedAudio(samples=samples, sample_rate=target_rate, metadata=dict(audio.metadata))


def calculate_rms(samples: np.ndarray) -> float:
    """Root mean square of float samples in [-1, 1]."""
    if samples.size == 0:
        return 0.0
    data = samples.astype(np.float64)
    return float(np.sqrt(np.mean(data * data)))


def to_wav_bytes(samples: np.ndarray, sample_rate: int) -> bytes:
    """Package float32 mono samples as a 16-bit linear PCM WAV file."""
    clipped = np.clip(to_mono(samples), -1.0, 1.0)
    pcm = np.where(clipped < 0, clipped * 0x8000, clipped * 0x7FFF).astype("<i2")

    buffer = io.BytesIO()
    with wave.open(buffer, "wb") as wav_file:
        wav_file.setnchannels(1)
        wav_file.setsampwidth(2)
        wav_file.setframerate(sample_rate)
        wav_file.writeframes(pcm.tobytes())
    return buffer.getvalue()
