"""
Reply Pipeline
==============

Sentence decoding, concurrent synthesis dispatch and ordered gapless
playback for one turn's reply.
"""

from drishti_core.pipeline.decoder import (
    SentenceStreamDecoder,
    SentenceUnit,
    DecoderEvent,
    DecoderEventType,
    clean_text,
    decode_frame,
    frame_content,
)
from drishti_core.pipeline.dispatcher import SynthesisDispatcher, Synthesizer
from drishti_core.pipeline.scheduler import PlaybackScheduler
from drishti_core.pipeline.sinks import AudioSink, SoundDeviceSink

__all__ = [
    "SentenceStreamDecoder",
    "SentenceUnit",
    "DecoderEvent",
    "DecoderEventType",
    "clean_text",
    "decode_frame",
    "frame_content",
    "SynthesisDispatcher",
    "Synthesizer",
    "PlaybackScheduler",
    "AudioSink",
    "SoundDeviceSink",
]
