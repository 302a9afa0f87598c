"""
Synthesis Dispatcher
====================

Fans sentence units out to the speech synthesis service concurrently and
feeds decoded audio to the playback scheduler.

One task per sentence, no throttling. A failed or timed-out sentence is
logged and skipped; it never cancels its siblings or aborts the turn. Results
that arrive after the session version moved on are discarded.
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Awaitable, Callable, Dict, List, Optional, Protocol

import structlog

from drishti_core.core.errors import DrishtiError
from drishti_core.pipeline.decoder import SentenceUnit
from drishti_core.pipeline.scheduler import PlaybackScheduler
from drishti_core.voice_engine.audio import DecodedAudio, decode_audio

if TYPE_CHECKING:
    from drishti_core.conversation.state import InteractionSession

logger = structlog.get_logger(__name__)

DEFAULT_SYNTHESIS_TIMEOUT = 15.0


class Synthesizer(Protocol):
    """Anything that turns text into an encoded audio payload."""

    def synthesize(self, text: str, index: Optional[int] = None) -> Awaitable[bytes]:
        ...


class SynthesisDispatcher:
    """
    Per-turn synthesis fan-out bound to one session version.
    """

    def __init__(
        self,
        synthesizer: Synthesizer,
        scheduler: PlaybackScheduler,
        session: InteractionSession,
        version: int,
        timeout: float = DEFAULT_SYNTHESIS_TIMEOUT,
        decoder: Callable[[bytes], DecodedAudio] = decode_audio,
    ):
        self.synthesizer = synthesizer
        self.scheduler = scheduler
        self.session = session
        self.version = version
        self.timeout = timeout
        self._decode = decoder

        self._tasks: Dict[int, asyncio.Task] = {}
        self._finish_task: Optional[asyncio.Task] = None
        self._failed: List[int] = []
        self._admitted: List[int] = []

    @property
    def is_current(self) -> bool:
        return self.session.is_current(self.version)

    @property
    def failed_indices(self) -> List[int]:
        return list(self._failed)

    @property
    def admitted_indices(self) -> List[int]:
        return list(self._admitted)

    @property
    def in_flight(self) -> int:
        return sum(1 for task in self._tasks.values() if not task.done())

    def dispatch(self, unit: SentenceUnit) -> None:
        """Issue the synthesis request for ``unit`` immediately."""
        if unit.index in self._tasks:
            logger.warning("sentence_already_dispatched", index=unit.index)
            return

        self._tasks[unit.index] = asyncio.create_task(
            self._synthesize(unit),
            name=f"synthesis-{self.version}-{unit.index}",
        )

    def finish(self, total: int) -> asyncio.Task:
        """
        Signal that ``total`` sentences were emitted this turn.

        Once every in-flight request has settled the scheduler is told the
        total, unless the turn has gone stale meanwhile.
        """
        if self._finish_task is None:
            self._finish_task = asyncio.create_task(
                self._complete(total),
                name=f"synthesis-finish-{self.version}",
            )
        return self._finish_task

    def cancel(self) -> None:
        """Abandon outstanding requests."""
        for task in self._tasks.values():
            if not task.done():
                task.cancel()
        if self._finish_task is not None and not self._finish_task.done():
            self._finish_task.cancel()

    async def _complete(self, total: int) -> None:
        if self._tasks:
            await asyncio.gather(*self._tasks.values(), return_exceptions=True)

        if not self.is_current:
            logger.debug("stale_completion_discarded", version=self.version)
            return

        logger.debug(
            "synthesis_settled",
            total=total,
            admitted=len(self._admitted),
            failed=len(self._failed),
        )
        self.scheduler.mark_complete(total)

    async def _synthesize(self, unit: SentenceUnit) -> None:
        try:
            payload = await asyncio.wait_for(
                self.synthesizer.synthesize(unit.text, index=unit.index),
                timeout=self.timeout,
            )
            audio = self._decode(payload)
        except asyncio.TimeoutError:
            logger.warning("synthesis_timeout", index=unit.index, timeout=self.timeout)
            self._drop(unit.index)
            return
        except DrishtiError as e:
            logger.warning("synthesis_failed", index=unit.index, code=e.code, error=e.message)
            self._drop(unit.index)
            return
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("synthesis_unexpected_error", index=unit.index)
            self._drop(unit.index)
            return

        if not self.is_current:
            logger.debug("stale_synthesis_discarded", index=unit.index, version=self.version)
            return

        audio.metadata["index"] = unit.index
        self._admitted.append(unit.index)
        self.scheduler.admit(unit.index, audio)

    def _drop(self, index: int) -> None:
        self._failed.append(index)
        if self.is_current:
            self.scheduler.skip(index)
