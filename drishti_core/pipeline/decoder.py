"""
Sentence Stream Decoder
=======================

Turns the incremental text of a streamed reply into ordered sentence units
for speech synthesis, and forwards the visible raw fragments for live
display.

Two explicit character-stream state machines are chained:

- ``HiddenSpanFilter`` drops ``<think>...</think>`` reasoning spans, even
  when a marker is split across deltas.
- ``SentenceSegmenter`` cuts the surviving text at terminal punctuation
  followed by whitespace, refusing cuts that would produce fragments shorter
  than the minimum sentence length (abbreviations, decimals, "Ok.").

``decode_frame`` and ``frame_content`` read the text out of one
chat-completions stream frame.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional

import structlog

logger = structlog.get_logger(__name__)


HIDDEN_START = "<think>"
HIDDEN_END = "</think>"
TERMINAL_PUNCTUATION = ".!?"
DEFAULT_MIN_SENTENCE_LENGTH = 10

_BOLD = re.compile(r"\*\*")
_EMPHASIS = re.compile(r"\*")
_HEADING = re.compile(r"#{1,6}\s")
_CODE = re.compile(r"`")
_LINK = re.compile(r"\[([^\]]+)\]\([^)]+\)")


def clean_text(text: str) -> str:
    """Strip formatting markup so text reads and speaks naturally."""
    text = _BOLD.sub("", text)
    text = _EMPHASIS.sub("", text)
    text = _HEADING.sub("", text)
    text = _CODE.sub("", text)
    text = _LINK.sub(r"\1", text)
    return text.strip()


# =============================================================================
# DATA CLASSES
# =============================================================================


@dataclass(frozen=True)
class SentenceUnit:
    """One display/speech-ready sentence with its per-turn index."""

    index: int
    text: str


class DecoderEventType(str, Enum):
    """Events produced by the decoder."""

    TOKEN = "token"        # Visible raw fragment for live display
    SENTENCE = "sentence"  # Completed sentence unit
    DONE = "done"          # Stream finished, sentence count known


@dataclass
class DecoderEvent:
    """Event emitted while decoding a reply stream."""

    type: DecoderEventType
    text: str = ""
    unit: Optional[SentenceUnit] = None
    sentence_count: int = 0


# =============================================================================
# HIDDEN SPAN FILTER
# =============================================================================


class HiddenSpanFilter:
    """
    Removes hidden reasoning spans from a character stream.

    A partial marker at the end of a delta is held back until the next delta
    decides whether it is a marker or ordinary text.
    """

    def __init__(self, start_marker: str = HIDDEN_START, end_marker: str = HIDDEN_END):
        self.start_marker = start_marker
        self.end_marker = end_marker
        self._hidden = False
        self._pending = ""

    @property
    def hidden(self) -> bool:
        return self._hidden

    def feed(self, text: str) -> str:
        """Consume a delta and return its visible part."""
        data = self._pending + text
        self._pending = ""
        visible: List[str] = []
        i = 0
        length = len(data)

        while i < length:
            marker = self.end_marker if self._hidden else self.start_marker

            if data[i] == marker[0]:
                if data.startswith(marker, i):
                    self._hidden = not self._hidden
                    i += len(marker)
                    continue
                if length - i < len(marker) and marker.startswith(data[i:]):
                    self._pending = data[i:]
                    break

            if not self._hidden:
                visible.append(data[i])
            i += 1

        return "".join(visible)

    def flush(self) -> str:
        """Release held-back text at end of stream."""
        pending, self._pending = self._pending, ""
        return "" if self._hidden else pending

    def reset(self) -> None:
        self._hidden = False
        self._pending = ""


# =============================================================================
# SENTENCE SEGMENTER
# =============================================================================


class SentenceSegmenter:
    """Accumulates visible text and cuts it into sentences."""

    def __init__(self, min_sentence_length: int = DEFAULT_MIN_SENTENCE_LENGTH):
        self.min_sentence_length = min_sentence_length
        self._buffer = ""
        self._scan_pos = 0

    @property
    def buffer(self) -> str:
        return self._buffer

    def add(self, text: str) -> List[str]:
        """Append text and return any sentences completed by it."""
        self._buffer += text
        buf = self._buffer
        sentences: List[str] = []
        start = 0
        i = self._scan_pos

        # The last character cannot be judged until its successor arrives
        while i < len(buf) - 1:
            if buf[i] in TERMINAL_PUNCTUATION and buf[i + 1].isspace():
                candidate = buf[start:i + 1].strip()
                if len(candidate) >= self.min_sentence_length:
                    sentences.append(candidate)
                    j = i + 1
                    while j < len(buf) and buf[j].isspace():
                        j += 1
                    start = j
                    i = j
                    continue
            i += 1

        self._buffer = buf[start:]
        self._scan_pos = max(0, i - start)
        return sentences

    def flush(self) -> str:
        """Return and clear whatever remains."""
        remaining, self._buffer = self._buffer, ""
        self._scan_pos = 0
        return remaining.strip()


# =============================================================================
# DECODER
# =============================================================================


class SentenceStreamDecoder:
    """
    Decodes one reply stream (one turn) into token and sentence events.

    Usage:
        decoder = SentenceStreamDecoder()
        for delta in deltas:
            for event in decoder.append(delta):
                ...
        for event in decoder.finish():
            ...
    """

    def __init__(self, min_sentence_length: int = DEFAULT_MIN_SENTENCE_LENGTH):
        self._filter = HiddenSpanFilter()
        self._segmenter = SentenceSegmenter(min_sentence_length)
        self._next_index = 0
        self._finished = False
        self._text_parts: List[str] = []

    @property
    def sentence_count(self) -> int:
        return self._next_index

    @property
    def finished(self) -> bool:
        return self._finished

    @property
    def text(self) -> str:
        """All visible text forwarded so far."""
        return "".join(self._text_parts)

    def append(self, delta: str) -> List[DecoderEvent]:
        """Consume one text delta in arrival order."""
        if self._finished:
            raise RuntimeError("Decoder already finished")
        if not delta:
            return []

        visible = self._filter.feed(delta)
        if not visible:
            return []

        events = [DecoderEvent(type=DecoderEventType.TOKEN, text=visible)]
        self._text_parts.append(visible)

        for sentence in self._segmenter.add(visible):
            event = self._emit(sentence)
            if event:
                events.append(event)

        return events

    def finish(self) -> List[DecoderEvent]:
        """Flush the remainder as a final sentence and report the count."""
        if self._finished:
            return []

        events: List[DecoderEvent] = []
        tail = self._filter.flush()
        if tail:
            events.append(DecoderEvent(type=DecoderEventType.TOKEN, text=tail))
            self._text_parts.append(tail)
            self._segmenter.add(tail)

        remaining = self._segmenter.flush()
        if remaining:
            event = self._emit(remaining)
            if event:
                events.append(event)

        self._finished = True
        events.append(DecoderEvent(
            type=DecoderEventType.DONE,
            sentence_count=self._next_index,
        ))
        logger.debug("decoder_finished", sentence_count=self._next_index)
        return events

    def _emit(self, sentence: str) -> Optional[DecoderEvent]:
        cleaned = clean_text(sentence)
        if not cleaned:
            return None

        unit = SentenceUnit(index=self._next_index, text=cleaned)
        self._next_index += 1
        return DecoderEvent(type=DecoderEventType.SENTENCE, text=cleaned, unit=unit)


def decode_frame(payload: str) -> Optional[Dict[str, Any]]:
    """Parse one streaming frame, or None if it is not a JSON object."""
    try:
        chunk = json.loads(payload)
    except ValueError:
        logger.debug("malformed_frame_skipped", payload=payload[:80])
        return None
    return chunk if isinstance(chunk, dict) else None


def frame_content(chunk: Dict[str, Any]) -> Optional[str]:
    """Extract ``choices[0].delta.content`` from a decoded frame, or None."""
    try:
        content = chunk["choices"][0]["delta"].get("content")
    except (KeyError, IndexError, TypeError, AttributeError):
        return None
    return content if isinstance(content, str) else None
