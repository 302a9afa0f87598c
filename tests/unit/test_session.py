"""Unit tests for the session controller."""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from drishti_core.conversation.history import ConversationHistory
from drishti_core.conversation.session import SessionController, SessionEventType
from drishti_core.conversation.state import (
    InteractionSession,
    SessionState,
    can_transition,
)
from drishti_core.core.errors import CaptureError, EmptyResultError, TransportError
from fakes import FakeCapture, FakeChat, FakeClockSink, FakeSynthesizer, wait_for

REPLY = ["Hello there, nice to meet you. ", "How can I help you today?"]


def make_controller(
    settings,
    sink,
    chat=None,
    capture=None,
    transcript="What is the weather like?",
    synthesizer=None,
    speech_enabled=None,
):
    transcriber = MagicMock()
    transcriber.transcribe = AsyncMock(return_value=transcript)
    controller = SessionController(
        capture=capture or FakeCapture(),
        transcriber=transcriber,
        chat_client=chat or FakeChat(REPLY),
        synthesizer=synthesizer or FakeSynthesizer(),
        sink=sink,
        settings=settings,
        speech_enabled=speech_enabled,
    )
    events = []
    controller.add_listener(events.append)
    return controller, events


def states(events):
    return [e.data["to"] for e in events if e.type == SessionEventType.STATE_CHANGED]


def of_type(events, event_type):
    return [e for e in events if e.type == event_type]


async def run_turn(controller):
    assert controller.start_turn()
    assert controller.finish_listening()
    await asyncio.wait_for(controller.wait_idle(), timeout=2.0)


class TestSessionState:
    """Tests for the transition table and interaction versioning."""

    def test_forward_transitions(self):
        """Test the forward path through a turn is allowed."""
        path = [
            SessionState.IDLE,
            SessionState.LISTENING,
            SessionState.PROCESSING,
            SessionState.STREAMING,
            SessionState.SPEAKING,
        ]
        for from_state, to_state in zip(path, path[1:]):
            assert can_transition(from_state, to_state)

    def test_any_state_returns_to_idle(self):
        """Test IDLE is reachable from every state."""
        for state in SessionState:
            assert can_transition(state, SessionState.IDLE)

    def test_skipping_states_rejected(self):
        """Test shortcuts through the state machine are rejected."""
        assert not can_transition(SessionState.IDLE, SessionState.STREAMING)
        assert not can_transition(SessionState.SPEAKING, SessionState.LISTENING)

    def test_version_increments(self):
        """Test versions increase and only the latest is current."""
        session = InteractionSession()
        first = session.next_version()
        second = session.next_version()

        assert second == first + 1
        assert session.is_current(second)
        assert not session.is_current(first)


class TestTurnFlow:
    """Tests for complete turns."""

    @pytest.mark.asyncio
    async def test_full_turn_with_speech(self, settings, auto_sink):
        """Test a turn runs through every state and records history."""
        synthesizer = FakeSynthesizer()
        controller, events = make_controller(settings, auto_sink, synthesizer=synthesizer)

        await run_turn(controller)

        assert states(events) == ["listening", "processing", "streaming", "speaking", "idle"]
        assert controller.history.to_messages() == [
            {"role": "user", "content": "What is the weather like?"},
            {"role": "assistant", "content": "Hello there, nice to meet you. How can I help you today?"},
        ]
        assert [text for _, text in sorted(synthesizer.calls)] == [
            "Hello there, nice to meet you.",
            "How can I help you today?",
        ]
        assert controller.scheduler.played_indices == [0, 1]
        assert not controller.busy

    @pytest.mark.asyncio
    async def test_events_published(self, settings, auto_sink):
        """Test transcript, token, sentence and response events are published."""
        controller, events = make_controller(settings, auto_sink)

        await run_turn(controller)

        assert of_type(events, SessionEventType.TRANSCRIPT)[0].data["text"] == "What is the weather like?"
        assert "".join(e.data["text"] for e in of_type(events, SessionEventType.TOKEN)) == "".join(REPLY)
        assert [e.data["index"] for e in of_type(events, SessionEventType.SENTENCE)] == [0, 1]
        response = of_type(events, SessionEventType.RESPONSE)[0]
        assert response.data["sentence_count"] == 2
        assert of_type(events, SessionEventType.ERROR) == []

    @pytest.mark.asyncio
    async def test_turn_without_speech(self, settings, sink):
        """Test disabled speech skips synthesis and the speaking state."""
        synthesizer = FakeSynthesizer()
        controller, events = make_controller(settings, sink, synthesizer=synthesizer, speech_enabled=False)

        await run_turn(controller)

        assert states(events) == ["listening", "processing", "streaming", "idle"]
        assert synthesizer.calls == []
        assert sink.history == []

    @pytest.mark.asyncio
    async def test_history_sent_to_chat(self, settings, auto_sink):
        """Test each request carries the accumulated history."""
        chat = FakeChat(REPLY)
        controller, _ = make_controller(settings, auto_sink, chat=chat)

        await run_turn(controller)
        await run_turn(controller)

        assert len(chat.requests[0]) == 1
        assert len(chat.requests[1]) == 3
        assert chat.requests[1][1]["role"] == "assistant"

    @pytest.mark.asyncio
    async def test_all_synthesis_failed_still_returns_to_idle(self, settings, auto_sink):
        """Test a turn completes even when every sentence fails to synthesize."""
        synthesizer = FakeSynthesizer(failures={0, 1})
        controller, events = make_controller(settings, auto_sink, synthesizer=synthesizer)

        await run_turn(controller)

        assert states(events)[-1] == "idle"
        assert "speaking" not in states(events)
        assert of_type(events, SessionEventType.ERROR) == []

    @pytest.mark.asyncio
    async def test_async_listener_awaited(self, settings, auto_sink):
        """Test coroutine listeners are scheduled."""
        controller, _ = make_controller(settings, auto_sink)
        listener = AsyncMock()
        controller.add_listener(listener)

        controller.start_turn()
        await asyncio.sleep(0)

        listener.assert_awaited()

    @pytest.mark.asyncio
    async def test_events_iterator(self, settings, auto_sink):
        """Test the async event iterator yields published events."""
        controller, _ = make_controller(settings, auto_sink)
        stream = controller.events()
        first = asyncio.ensure_future(stream.__anext__())
        await asyncio.sleep(0)

        controller.start_turn()
        event = await asyncio.wait_for(first, timeout=1.0)

        assert event.type == SessionEventType.STATE_CHANGED
        assert event.data["to"] == "listening"
        await stream.aclose()


class TestEmptyResults:
    """Tests for turns that end quietly."""

    @pytest.mark.asyncio
    async def test_empty_transcript(self, settings, auto_sink):
        """Test an empty transcript returns to idle without an error."""
        chat = FakeChat(REPLY)
        controller, events = make_controller(settings, auto_sink, chat=chat, transcript="   ")

        await run_turn(controller)

        assert states(events) == ["listening", "processing", "idle"]
        assert chat.requests == []
        assert len(controller.history) == 0
        assert of_type(events, SessionEventType.ERROR) == []

    @pytest.mark.asyncio
    async def test_short_capture_discarded(self, settings, auto_sink):
        """Test a capture under the minimum duration is never transcribed."""
        controller, events = make_controller(settings, auto_sink, capture=FakeCapture(clip=None))

        await run_turn(controller)

        controller.transcriber.transcribe.assert_not_awaited()
        assert states(events) == ["listening", "processing", "idle"]

    @pytest.mark.asyncio
    async def test_empty_reply(self, settings, auto_sink):
        """Test a reply with no visible text returns to idle silently."""
        chat = FakeChat(["<think>nothing to say</think>"])
        controller, events = make_controller(settings, auto_sink, chat=chat)

        await run_turn(controller)

        assert states(events) == ["listening", "processing", "streaming", "idle"]
        assert controller.history.to_messages() == [
            {"role": "user", "content": "What is the weather like?"},
        ]
        assert of_type(events, SessionEventType.ERROR) == []

    @pytest.mark.asyncio
    async def test_empty_result_from_collaborator(self, settings, auto_sink):
        """Test an EmptyResultError raised mid-turn ends the turn quietly."""
        chat = FakeChat(REPLY)
        controller, events = make_controller(settings, auto_sink, chat=chat)
        controller.transcriber.transcribe = AsyncMock(side_effect=EmptyResultError("No speech found"))

        await run_turn(controller)

        assert states(events) == ["listening", "processing", "idle"]
        assert chat.requests == []
        assert of_type(events, SessionEventType.ERROR) == []
        assert not controller.busy


class TestErrors:
    """Tests for surfaced failures."""

    @pytest.mark.asyncio
    async def test_transport_error_surfaces(self, settings, auto_sink):
        """Test a stream failure emits an error event and returns to idle."""
        chat = FakeChat(REPLY, error=TransportError("connection reset"))
        controller, events = make_controller(settings, auto_sink, chat=chat)

        await run_turn(controller)

        errors = of_type(events, SessionEventType.ERROR)
        assert len(errors) == 1
        assert errors[0].data["code"] == "TRANSPORT_ERROR"
        assert controller.state == SessionState.IDLE
        assert not controller.busy
        assert len(controller.history) == 1

    @pytest.mark.asyncio
    async def test_transcription_error_surfaces(self, settings, auto_sink):
        """Test a transcription failure emits an error event."""
        controller, events = make_controller(settings, auto_sink)
        controller.transcriber.transcribe.side_effect = TransportError("service down", status_code=503)

        await run_turn(controller)

        assert of_type(events, SessionEventType.ERROR)[0].data["message"] == "service down"
        assert controller.state == SessionState.IDLE

    @pytest.mark.asyncio
    async def test_capture_failure_rejects_turn(self, settings, auto_sink):
        """Test a microphone failure ends the turn with an error."""
        capture = FakeCapture()
        capture.start_error = CaptureError("no microphone")
        controller, events = make_controller(settings, auto_sink, capture=capture)

        assert not controller.start_turn()

        assert of_type(events, SessionEventType.ERROR)[0].data["code"] == "CAPTURE_ERROR"
        assert controller.state == SessionState.IDLE
        assert not controller.busy


class TestBusyAndBargeIn:
    """Tests for reentrancy and interruption."""

    @pytest.mark.asyncio
    async def test_start_rejected_while_listening(self, settings, auto_sink):
        """Test a second start while listening is rejected."""
        controller, _ = make_controller(settings, auto_sink)

        assert controller.start_turn()
        assert not controller.start_turn()
        assert controller.state == SessionState.LISTENING

    @pytest.mark.asyncio
    async def test_start_rejected_while_processing(self, settings, auto_sink):
        """Test a start while the transcript is pending is rejected."""
        controller, _ = make_controller(settings, auto_sink)
        gate = asyncio.Event()

        async def slow_transcribe(audio):
            await gate.wait()
            return "hello"

        controller.transcriber.transcribe = slow_transcribe
        controller.start_turn()
        controller.finish_listening()
        await asyncio.sleep(0.01)

        assert controller.state == SessionState.PROCESSING
        assert not controller.start_turn()
        gate.set()
        await asyncio.wait_for(controller.wait_idle(), timeout=2.0)

    @pytest.mark.asyncio
    async def test_finish_listening_ignored_when_not_listening(self, settings, auto_sink):
        """Test finishing a turn that is not listening does nothing."""
        controller, _ = make_controller(settings, auto_sink)

        assert not controller.finish_listening()
        assert controller.state == SessionState.IDLE

    @pytest.mark.asyncio
    async def test_barge_in_while_streaming(self, settings, sink):
        """Test starting a turn during streaming interrupts the reply."""
        chat = FakeChat(["First sentence is here. ", "Second sentence follows. "], pause_after=1)
        synthesizer = FakeSynthesizer(delays={0: 0.05})
        controller, events = make_controller(settings, sink, chat=chat, synthesizer=synthesizer)

        controller.start_turn()
        controller.finish_listening()
        await wait_for(lambda: len(synthesizer.calls) == 1)
        old_version = controller.version

        assert controller.state == SessionState.STREAMING
        assert controller.start_turn()
        await asyncio.sleep(0.1)

        assert controller.state == SessionState.LISTENING
        assert controller.version == old_version + 2
        assert chat.closed
        assert synthesizer.cancelled == [0]
        assert sink.history == []
        assert sink.stop_calls >= 1
        assert of_type(events, SessionEventType.RESPONSE) == []
        assert len(controller.history) == 1

    @pytest.mark.asyncio
    async def test_barge_in_while_speaking(self, settings, sink):
        """Test starting a turn during playback stops the audio."""
        controller, events = make_controller(settings, sink)

        controller.start_turn()
        controller.finish_listening()
        await wait_for(lambda: controller.state == SessionState.SPEAKING)
        await wait_for(lambda: of_type(events, SessionEventType.RESPONSE) != [])
        stops_before = sink.stop_calls

        assert controller.start_turn()
        await asyncio.sleep(0.01)

        assert controller.state == SessionState.LISTENING
        assert sink.stop_calls > stops_before
        assert sink.scheduled == []
        assert states(events)[-2:] == ["idle", "listening"]

    @pytest.mark.asyncio
    async def test_stale_turn_cannot_touch_new_turn(self, settings, sink):
        """Test late results from an interrupted turn never reach the next turn."""
        gate = asyncio.Event()
        controller, events = make_controller(settings, sink)

        async def slow_transcribe(audio):
            await gate.wait()
            return "old question"

        controller.transcriber.transcribe = slow_transcribe
        controller.start_turn()
        controller.finish_listening()
        await asyncio.sleep(0.01)

        controller.interrupt()
        assert controller.start_turn()
        gate.set()
        await asyncio.sleep(0.05)

        assert controller.state == SessionState.LISTENING
        assert of_type(events, SessionEventType.TRANSCRIPT) == []
        assert len(controller.history) == 0

    @pytest.mark.asyncio
    async def test_interrupt_returns_to_idle(self, settings, sink):
        """Test interrupt stops everything and allows a new turn."""
        capture = FakeCapture()
        controller, _ = make_controller(settings, sink, capture=capture)

        controller.start_turn()
        controller.interrupt()

        assert controller.state == SessionState.IDLE
        assert not controller.busy
        assert capture.cancels == 1
        assert controller.start_turn()

    @pytest.mark.asyncio
    async def test_shutdown_waits_for_turn(self, settings, sink):
        """Test shutdown cancels the running turn task."""
        chat = FakeChat(REPLY, pause_after=1)
        controller, _ = make_controller(settings, sink, chat=chat)

        controller.start_turn()
        controller.finish_listening()
        await wait_for(lambda: controller.state == SessionState.STREAMING)

        await controller.shutdown()

        assert controller.state == SessionState.IDLE
        assert chat.closed


class TestHistoryCap:
    """Tests for history bounds across turns."""

    @pytest.mark.asyncio
    async def test_history_capped(self, settings, auto_sink):
        """Test long sessions keep only the newest messages."""
        controller, _ = make_controller(settings, auto_sink, speech_enabled=False)
        controller.history = ConversationHistory(max_length=4)

        for _ in range(3):
            await run_turn(controller)

        assert len(controller.history) == 4
