"""
VAD-driven turn boundaries.

Samples the capture level on a fixed cadence, feeds it to the
``VoiceActivityDetector`` and translates speech start/end into
``start_turn()`` / ``finish_listening()`` calls on the session controller.
"""

from __future__ import annotations

import asyncio
from typing import Optional, Protocol

import structlog

from drishti_core.conversation.session import SessionController, SessionEvent, SessionEventType
from drishti_core.conversation.state import SessionState
from .vad import VADEvent, VADEventType, VoiceActivityDetector

logger = structlog.get_logger(__name__)


class LevelSource(Protocol):
    def get_rms_level(self) -> float: ...


class VADTurnDriver:
    """
    Runs the VAD sampling loop for a session.

    With ``barge_in`` enabled, speech detected while a reply is streaming or
    playing starts a new turn, which interrupts the current one.
    """

    def __init__(
        self,
        controller: SessionController,
        source: LevelSource,
        vad: VoiceActivityDetector,
        cadence_ms: float = 16,
        barge_in: bool = False,
    ):
        self.controller = controller
        self.source = source
        self.vad = vad
        self.cadence_ms = cadence_ms
        self.barge_in = barge_in

        self._task: Optional[asyncio.Task] = None
        self._running = False
        self._starting_turn = False

        controller.add_listener(self._on_session_event)

    @property
    def is_running(self) -> bool:
        return self._running

    def start(self) -> None:
        if self._task is not None:
            return
        self._running = True
        self._task = asyncio.create_task(self._run(), name="vad-driver")
        logger.info("vad_driver_started", cadence_ms=self.cadence_ms, barge_in=self.barge_in)

    async def stop(self) -> None:
        self._running = False
        task, self._task = self._task, None
        if task is not None:
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
        logger.info("vad_driver_stopped")

    def step(self, timestamp_ms: float) -> Optional[VADEvent]:
        """Take one level sample and act on any resulting event."""
        event = self.vad.process_level(self.source.get_rms_level(), timestamp_ms)
        if event is not None:
            self.handle_event(event)
        return event

    def handle_event(self, event: VADEvent) -> None:
        state = self.controller.state

        if event.event_type == VADEventType.SPEECH_START:
            if state == SessionState.IDLE:
                self._start_turn()
            elif self.barge_in and state in (SessionState.STREAMING, SessionState.SPEAKING):
                logger.info("vad_barge_in", state=state.value)
                self._start_turn()

        elif event.event_type == VADEventType.SPEECH_END:
            if state == SessionState.LISTENING:
                self.controller.finish_listening()

    def _start_turn(self) -> None:
        # The interrupted turn passes through IDLE while the user is still
        # speaking; the detector must stay in SPEECH across it.
        self._starting_turn = True
        try:
            self.controller.start_turn()
        finally:
            self._starting_turn = False

    async def _run(self) -> None:
        loop = asyncio.get_running_loop()
        origin = loop.time()
        interval = self.cadence_ms / 1000.0

        while self._running:
            self.step((loop.time() - origin) * 1000.0)
            await asyncio.sleep(interval)

    def _on_session_event(self, event: SessionEvent) -> None:
        # A turn that ended while the detector was mid-speech (playback echo,
        # interruption) must not leave it latched in SPEECH.
        if self._starting_turn:
            return
        if event.type == SessionEventType.STATE_CHANGED and event.data.get("to") == SessionState.IDLE.value:
            if self.vad.is_speaking:
                self.vad.reset()
