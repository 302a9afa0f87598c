"""
Voice Engine
============

Local audio: decoding, voice activity detection, microphone capture and
VAD-driven turn boundaries.
"""

from drishti_core.voice_engine.audio import (
    DecodedAudio,
    decode_audio,
    resample,
    calculate_rms,
    to_wav_bytes,
)
from drishti_core.voice_engine.vad import (
    VoiceActivityDetector,
    VADConfig,
    VADEvent,
    VADEventType,
    VADState,
)
from drishti_core.voice_engine.capture import MicrophoneCapture

__all__ = [
    "DecodedAudio",
    "decode_audio",
    "resample",
    "calculate_rms",
    "to_wav_bytes",
    "VoiceActivityDetector",
    "VADConfig",
    "VADEvent",
    "VADEventType",
    "VADState",
    "MicrophoneCapture",
]
