# Remote speech services

from drishti_core.voice.stt import TranscriptionClient
from drishti_core.voice.tts import SpeechSynthesisClient

__all__ = ["TranscriptionClient", "SpeechSynthesisClient"]
