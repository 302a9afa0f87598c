"""
Playback Scheduler
==================

Ordered, gapless playback of per-sentence audio.

Buffers are admitted keyed by sentence index in any arrival order, but only
the buffer at ``next_play_index`` may ever be handed to the sink. Each buffer
starts at ``max(clock + lead_time, scheduled_end_time)`` so consecutive
buffers touch end-to-start.

Every scheduling decision runs synchronously, both on admission and on the
sink's buffer-end callback; nothing in this module awaits.

Indices whose synthesis permanently failed are released with ``skip()`` so
the cursor moves past them and turn completion is still reached.
"""

from __future__ import annotations

import asyncio
from functools import partial
from typing import Callable, Dict, List, Optional, Set

import structlog

from drishti_core.pipeline.sinks import AudioSink
from drishti_core.voice_engine.audio import DecodedAudio

logger = structlog.get_logger(__name__)

DEFAULT_LEAD_TIME = 0.02


class PlaybackScheduler:
    """
    Reorders admitted buffers and plays them back to back.

    Usage:
        scheduler = PlaybackScheduler(sink)
        scheduler.admit(1, audio_1)   # held until index 0 arrives
        scheduler.admit(0, audio_0)   # plays 0, then 1
        scheduler.mark_complete(2)
        await scheduler.wait_for_completion()
    """

    def __init__(self, sink: AudioSink, lead_time: float = DEFAULT_LEAD_TIME):
        self.sink = sink
        self.lead_time = lead_time

        self._pending: Dict[int, DecodedAudio] = {}
        self._skipped: Set[int] = set()
        self._next_play_index = 0
        self._scheduled_end_time = 0.0
        self._total_expected: Optional[int] = None
        self._active_sources = 0
        self._generation = 0
        self._completion: Optional[asyncio.Future] = None
        self._started = False
        self._played: List[int] = []

        self.on_playback_started: Optional[Callable[[int], None]] = None

    # =========================================================================
    # Properties
    # =========================================================================

    @property
    def next_play_index(self) -> int:
        return self._next_play_index

    @property
    def scheduled_end_time(self) -> float:
        return self._scheduled_end_time

    @property
    def total_expected(self) -> Optional[int]:
        return self._total_expected

    @property
    def is_playing(self) -> bool:
        return self._active_sources > 0

    @property
    def pending_indices(self) -> List[int]:
        return sorted(self._pending)

    @property
    def played_indices(self) -> List[int]:
        """Indices handed to the sink this turn, in play order."""
        return list(self._played)

    @property
    def is_complete(self) -> bool:
        return (
            self._total_expected is not None
            and self._next_play_index >= self._total_expected
            and self._active_sources == 0
        )

    # =========================================================================
    # Operations
    # =========================================================================

    def admit(self, index: int, audio: DecodedAudio) -> None:
        """Store a decoded buffer and play it as soon as its turn comes."""
        if index < self._next_play_index or index in self._pending:
            logger.warning("duplicate_index_ignored", index=index)
            return
        if self._total_expected is not None and index >= self._total_expected:
            logger.warning("index_beyond_total_ignored", index=index, total=self._total_expected)
            return

        self._pending[index] = audio
        self._pump()
        self._check_completion()

    def skip(self, index: int) -> None:
        """Declare ``index`` permanently missing so the cursor can pass it."""
        if index < self._next_play_index or index in self._pending:
            return

        logger.info("index_skipped", index=index)
        self._skipped.add(index)
        self._pump()
        self._check_completion()

    def mark_complete(self, total: int) -> None:
        """Record the turn's sentence count and re-evaluate completion."""
        self._total_expected = total
        logger.debug("playback_total_known", total=total, next_index=self._next_play_index)
        self._pump()
        self._check_completion()

    def wait_for_completion(self) -> asyncio.Future:
        """
        Future resolved once every expected buffer has played out.

        Resolved immediately if the condition already holds, and by
        ``cancel()``.
        """
        if self._completion is None:
            self._completion = asyncio.get_running_loop().create_future()
        self._check_completion()
        return self._completion

    def cancel(self) -> None:
        """Stop playback now and return to the initial state."""
        if self._active_sources or self._pending:
            logger.info(
                "playback_cancelled",
                active=self._active_sources,
                pending=len(self._pending),
            )
        self._reset()

    def reset(self) -> None:
        """Prepare for a new turn."""
        self._reset()

    # =========================================================================
    # Internals
    # =========================================================================

    def _reset(self) -> None:
        self._generation += 1
        self.sink.stop()

        self._pending.clear()
        self._skipped.clear()
        self._next_play_index = 0
        self._scheduled_end_time = 0.0
        self._total_expected = None
        self._active_sources = 0
        self._started = False
        self._played = []

        completion, self._completion = self._completion, None
        if completion is not None and not completion.done():
            completion.set_result(None)

    def _pump(self) -> None:
        """Schedule every contiguous buffer available at the cursor."""
        while True:
            index = self._next_play_index

            if index in self._skipped:
                self._skipped.discard(index)
                self._next_play_index += 1
                continue

            audio = self._pending.pop(index, None)
            if audio is None:
                return

            start_time = max(self.sink.current_time() + self.lead_time, self._scheduled_end_time)
            self.sink.schedule(
                audio,
                start_time,
                partial(self._on_buffer_ended, self._generation, index),
            )
            self._scheduled_end_time = start_time + audio.duration
            self._next_play_index += 1
            self._active_sources += 1
            self._played.append(index)

            logger.debug(
                "buffer_scheduled",
                index=index,
                start_time=round(start_time, 4),
                duration=round(audio.duration, 4),
            )

            if not self._started:
                self._started = True
                if self.on_playback_started is not None:
                    self.on_playback_started(index)

    def _on_buffer_ended(self, generation: int, index: int) -> None:
        if generation != self._generation:
            return

        self._active_sources = max(0, self._active_sources - 1)
        logger.debug("buffer_ended", index=index)
        self._pump()
        self._check_completion()

    def _check_completion(self) -> None:
        if not self.is_complete:
            return

        completion = self._completion
        if completion is not None and not completion.done():
            logger.debug("playback_complete", total=self._total_expected)
            completion.set_result(None)
