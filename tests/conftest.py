"""Shared pytest fixtures for testing."""

import os

import pytest

from drishti_core.config import PlaybackSettings, Settings
from fakes import FakeCapture, FakeClockSink, FakeSynthesizer, make_wav

# Keep a developer's .env or shell settings out of the tests
os.environ.pop("VENICE_API_KEY", None)
os.environ.pop("CHAT_MODEL", None)


@pytest.fixture
def settings() -> Settings:
    """Settings with test-friendly timeouts."""
    return Settings(
        _env_file=None,
        venice_api_key="test-key",
        playback=PlaybackSettings(synthesis_timeout_s=1.0),
    )


@pytest.fixture
def sink() -> FakeClockSink:
    return FakeClockSink()


@pytest.fixture
def auto_sink() -> FakeClockSink:
    return FakeClockSink(auto_end=True)


@pytest.fixture
def synthesizer() -> FakeSynthesizer:
    return FakeSynthesizer()


@pytest.fixture
def capture() -> FakeCapture:
    return FakeCapture()


@pytest.fixture
def sample_audio_data() -> bytes:
    """Encoded WAV clip (100ms tone at 8kHz)."""
    return make_wav()
