"""
Session Controller
==================

Orchestrates one voice turn at a time:

    IDLE -> LISTENING -> PROCESSING -> STREAMING -> SPEAKING -> IDLE

The turn runs as a single asyncio task: capture is stopped and transcribed,
the reply is streamed through the sentence decoder, each sentence is handed
to the synthesis dispatcher, and the task waits for the playback scheduler to
report completion.

A new turn started while the previous one is streaming or speaking is a
barge-in. Every callback captures the session version it was started under
and drops its work once that version is no longer current.
"""

from __future__ import annotations

import asyncio
import inspect
import time
from contextlib import aclosing
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, AsyncIterator, Callable, Dict, List, Optional, Protocol, Set

import structlog

from drishti_core.config import Settings, get_settings
from drishti_core.conversation.history import ConversationHistory
from drishti_core.conversation.state import InteractionSession, SessionState, can_transition
from drishti_core.core.errors import DrishtiError, EmptyResultError, InvalidTransitionError
from drishti_core.pipeline.decoder import DecoderEvent, DecoderEventType, SentenceStreamDecoder
from drishti_core.pipeline.dispatcher import SynthesisDispatcher, Synthesizer
from drishti_core.pipeline.scheduler import PlaybackScheduler
from drishti_core.pipeline.sinks import AudioSink

logger = structlog.get_logger(__name__)


# =============================================================================
# COLLABORATORS
# =============================================================================


class AudioCapture(Protocol):
    def start_recording(self) -> None: ...

    def stop_recording(self) -> Optional[bytes]: ...

    def cancel_recording(self) -> None: ...


class Transcriber(Protocol):
    async def transcribe(self, audio: bytes) -> str: ...


class ChatStream(Protocol):
    def stream_chat(self, messages: List[Dict[str, str]]) -> AsyncIterator[str]: ...


# =============================================================================
# EVENTS
# =============================================================================


class SessionEventType(str, Enum):
    """Events published to UI collaborators."""

    STATE_CHANGED = "state_changed"
    TRANSCRIPT = "transcript"
    TOKEN = "token"
    SENTENCE = "sentence"
    RESPONSE = "response"
    ERROR = "error"


@dataclass
class SessionEvent:
    """A session event tagged with the version it belongs to."""

    type: SessionEventType
    data: Dict[str, Any] = field(default_factory=dict)
    version: int = 0
    timestamp: float = field(default_factory=time.time)


SessionListener = Callable[[SessionEvent], Any]


# =============================================================================
# CONTROLLER
# =============================================================================


class SessionController:
    """
    Drives the voice session state machine.

    Usage:
        controller = SessionController(capture, transcriber, chat, tts, sink)
        controller.start_turn()          # IDLE -> LISTENING
        controller.finish_listening()    # LISTENING -> PROCESSING, turn runs
        await controller.wait_idle()
    """

    def __init__(
        self,
        capture: AudioCapture,
        transcriber: Transcriber,
        chat_client: ChatStream,
        synthesizer: Synthesizer,
        sink: AudioSink,
        history: Optional[ConversationHistory] = None,
        settings: Optional[Settings] = None,
        speech_enabled: Optional[bool] = None,
    ):
        self.settings = settings or get_settings()
        self.capture = capture
        self.transcriber = transcriber
        self.chat_client = chat_client
        self.synthesizer = synthesizer
        self.history = history or ConversationHistory(self.settings.conversation.max_history)
        self.speech_enabled = (
            self.settings.playback.speech_enabled if speech_enabled is None else speech_enabled
        )

        self.session = InteractionSession()
        self.scheduler = PlaybackScheduler(sink, lead_time=self.settings.playback.lead_time_s)
        self.scheduler.on_playback_started = self._on_playback_started

        self._dispatcher: Optional[SynthesisDispatcher] = None
        self._turn_task: Optional[asyncio.Task] = None
        self._listeners: List[SessionListener] = []
        self._subscribers: List[asyncio.Queue] = []
        self._listener_tasks: Set[asyncio.Task] = set()
        self._idle = asyncio.Event()
        self._idle.set()

    # =========================================================================
    # Properties
    # =========================================================================

    @property
    def state(self) -> SessionState:
        return self.session.state

    @property
    def version(self) -> int:
        return self.session.version

    @property
    def busy(self) -> bool:
        return self.session.pipeline_active

    # =========================================================================
    # Event publishing
    # =========================================================================

    def add_listener(self, listener: SessionListener) -> None:
        """Register a callback; coroutine functions are scheduled as tasks."""
        self._listeners.append(listener)

    def remove_listener(self, listener: SessionListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    async def events(self) -> AsyncIterator[SessionEvent]:
        """Iterate over every event published after subscription."""
        queue: asyncio.Queue = asyncio.Queue()
        self._subscribers.append(queue)
        try:
            while True:
                yield await queue.get()
        finally:
            self._subscribers.remove(queue)

    def _emit(self, event_type: SessionEventType, data: Optional[Dict[str, Any]] = None) -> None:
        event = SessionEvent(type=event_type, data=data or {}, version=self.session.version)

        for queue in self._subscribers:
            queue.put_nowait(event)

        for listener in list(self._listeners):
            try:
                result = listener(event)
                if inspect.isawaitable(result):
                    task = asyncio.ensure_future(result)
                    self._listener_tasks.add(task)
                    task.add_done_callback(self._listener_tasks.discard)
            except Exception as e:
                logger.error("session_listener_error", event_type=event_type.value, error=str(e))

    # =========================================================================
    # State machine
    # =========================================================================

    def _set_state(self, new_state: SessionState) -> None:
        old_state = self.session.state
        if new_state == old_state:
            return
        if not can_transition(old_state, new_state):
            raise InvalidTransitionError(old_state.value, new_state.value)

        self.session.state = new_state
        if new_state == SessionState.IDLE:
            self._idle.set()
        else:
            self._idle.clear()

        logger.info(
            "session_state_changed",
            from_state=old_state.value,
            to_state=new_state.value,
            version=self.session.version,
        )
        self._emit(
            SessionEventType.STATE_CHANGED,
            {"from": old_state.value, "to": new_state.value},
        )

    def _go_idle(self) -> None:
        self.session.pipeline_active = False
        self._dispatcher = None
        self._turn_task = None
        self._set_state(SessionState.IDLE)

    def _quiet_idle(self) -> None:
        if self._dispatcher is not None:
            self._dispatcher.cancel()
        self._go_idle()

    def _fail(self, error: DrishtiError) -> None:
        """Abort the current turn and surface the error."""
        logger.error("turn_failed", code=error.code, error=error.message, version=self.session.version)
        if self._dispatcher is not None:
            self._dispatcher.cancel()
        self.scheduler.cancel()
        if error.user_visible:
            self._emit(SessionEventType.ERROR, error.to_dict())
        self._go_idle()

    # =========================================================================
    # Turn boundaries
    # =========================================================================

    def start_turn(self) -> bool:
        """
        Begin listening.

        Interrupts a turn that is streaming or speaking. Returns False while
        another turn is listening or processing.
        """
        state = self.session.state
        if state in (SessionState.STREAMING, SessionState.SPEAKING):
            logger.info("barge_in", state=state.value, version=self.session.version)
            self.interrupt()
        elif self.session.pipeline_active or state != SessionState.IDLE:
            logger.debug("turn_rejected_busy", state=state.value)
            return False

        version = self.session.next_version()
        self.session.pipeline_active = True
        self._set_state(SessionState.LISTENING)

        try:
            self.capture.start_recording()
        except DrishtiError as e:
            self._fail(e)
            return False

        logger.info("turn_started", version=version)
        return True

    def finish_listening(self) -> bool:
        """End the listening phase and run the rest of the turn."""
        if self.session.state != SessionState.LISTENING:
            logger.debug("finish_listening_ignored", state=self.session.state.value)
            return False

        version = self.session.version
        self._set_state(SessionState.PROCESSING)
        self._turn_task = asyncio.create_task(self._run_turn(version), name=f"turn-{version}")
        return True

    def interrupt(self) -> None:
        """Stop everything belonging to the current turn and return to IDLE."""
        state = self.session.state
        self.session.next_version()

        if self._dispatcher is not None:
            self._dispatcher.cancel()
        self.scheduler.cancel()

        task = self._turn_task
        if task is not None and not task.done():
            task.cancel()

        if state == SessionState.LISTENING:
            self.capture.cancel_recording()

        if state != SessionState.IDLE or self.session.pipeline_active:
            logger.info("turn_interrupted", from_state=state.value, version=self.session.version)
        self._go_idle()

    async def wait_idle(self) -> None:
        """Wait until the session is back in IDLE."""
        await self._idle.wait()

    async def shutdown(self) -> None:
        task = self._turn_task
        self.interrupt()
        if task is not None:
            await asyncio.gather(task, return_exceptions=True)

    # =========================================================================
    # Turn task
    # =========================================================================

    async def _run_turn(self, version: int) -> None:
        try:
            audio = self.capture.stop_recording()
            if not audio:
                logger.info("capture_discarded", version=version)
                self._go_idle()
                return

            transcript = (await self.transcriber.transcribe(audio)).strip()
            if not self.session.is_current(version):
                return
            if not transcript:
                raise EmptyResultError("Empty transcript")

            self.history.add_user(transcript)
            self._emit(SessionEventType.TRANSCRIPT, {"text": transcript})

            self._set_state(SessionState.STREAMING)
            completed = await self._stream_reply(version)
            if not completed or not self.session.is_current(version):
                return

            if self._dispatcher is not None:
                await self.scheduler.wait_for_completion()
                if not self.session.is_current(version):
                    return

            logger.info("turn_completed", version=version)
            self._go_idle()

        except EmptyResultError as e:
            logger.info("turn_empty", reason=e.message, version=version)
            if self.session.is_current(version):
                self._quiet_idle()
        except DrishtiError as e:
            if self.session.is_current(version):
                self._fail(e)
        except Exception as e:
            logger.exception("turn_unexpected_error", version=version)
            if self.session.is_current(version):
                self._fail(DrishtiError(str(e), code="INTERNAL_ERROR"))

    async def _stream_reply(self, version: int) -> bool:
        """
        Stream the reply into the decoder.

        Returns False once the turn has been superseded. Raises
        ``EmptyResultError`` when the reply has no visible text.
        """
        decoder = SentenceStreamDecoder(self.settings.conversation.min_sentence_length)

        dispatcher: Optional[SynthesisDispatcher] = None
        if self.speech_enabled:
            self.scheduler.reset()
            dispatcher = SynthesisDispatcher(
                self.synthesizer,
                self.scheduler,
                self.session,
                version,
                timeout=self.settings.playback.synthesis_timeout_s,
            )
            self._dispatcher = dispatcher

        async with aclosing(self.chat_client.stream_chat(self.history.to_messages())) as stream:
            async for delta in stream:
                if not self.session.is_current(version):
                    return False
                self._handle_decoder_events(decoder.append(delta), dispatcher)

        if not self.session.is_current(version):
            return False
        self._handle_decoder_events(decoder.finish(), dispatcher)

        reply = decoder.text.strip()
        if not reply:
            raise EmptyResultError("Empty reply")

        self.history.add_assistant(reply)
        self._emit(
            SessionEventType.RESPONSE,
            {"text": reply, "sentence_count": decoder.sentence_count},
        )

        if dispatcher is not None:
            dispatcher.finish(decoder.sentence_count)
        return True

    def _handle_decoder_events(
        self,
        events: List[DecoderEvent],
        dispatcher: Optional[SynthesisDispatcher],
    ) -> None:
        for event in events:
            if event.type == DecoderEventType.TOKEN:
                self._emit(SessionEventType.TOKEN, {"text": event.text})
            elif event.type == DecoderEventType.SENTENCE and event.unit is not None:
                self._emit(
                    SessionEventType.SENTENCE,
                    {"index": event.unit.index, "text": event.unit.text},
                )
                if dispatcher is not None:
                    dispatcher.dispatch(event.unit)

    def _on_playback_started(self, index: int) -> None:
        if self.session.state == SessionState.STREAMING:
            self._set_state(SessionState.SPEAKING)
