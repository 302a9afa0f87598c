"""
Configuration for the Drishti voice turn engine.

This module defines all tunables for voice activity detection, sentence
decoding, playback scheduling, conversation history and the remote
transcription, chat and speech synthesis services.
"""

from functools import lru_cache
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_SYSTEM_PROMPT = """You are Drishti, an advanced AI assistant. Your name means "vision" in Sanskrit - you see clearly and help others see clearly too.
Your personality traits:
- Warm, confident, and articulate
- Dry wit and subtle humor
- Concise and direct - keep responses brief (2-4 sentences typically)
- Technically knowledgeable but explain things clearly
- Proactive in offering relevant information
- You have a calm, focused energy - like a trusted advisor

Important guidelines:
- Keep responses SHORT (under 100 words unless specifically asked for detail)
- Avoid markdown formatting, bullet points, or special characters
- Write in natural spoken English
- Do not use asterisks, hashes, or other markup
- Spell out numbers and abbreviations when it helps pronunciation"""


class VADSettings(BaseSettings):
    """Voice activity detection configuration."""

    model_config = SettingsConfigDict(env_prefix="VAD_")

    speech_threshold: float = Field(
        default=0.018,
        gt=0.0,
        le=1.0,
        description="RMS level above which speech starts",
    )
    silence_threshold: float = Field(
        default=0.009,
        gt=0.0,
        le=1.0,
        description="RMS level below which silence is counted",
    )
    min_silence_ms: float = Field(
        default=900,
        ge=0,
        description="Continuous silence required to end speech",
    )
    min_capture_ms: float = Field(
        default=350,
        ge=0,
        description="Captures shorter than this are discarded",
    )
    window_size: int = Field(
        default=2048,
        ge=64,
        description="Samples per RMS analysis window",
    )
    cadence_ms: float = Field(
        default=16,
        gt=0,
        description="Sampling cadence of the turn driver",
    )
    enabled: bool = Field(
        default=True,
        description="Drive turn boundaries automatically from VAD",
    )
    barge_in: bool = Field(
        default=False,
        description="Allow detected speech to interrupt playback",
    )


class PlaybackSettings(BaseSettings):
    """Synthesis and playback configuration."""

    model_config = SettingsConfigDict(env_prefix="PLAYBACK_")

    speech_enabled: bool = Field(
        default=True,
        description="Synthesize and play replies",
    )
    lead_time_s: float = Field(
        default=0.02,
        ge=0.0,
        le=1.0,
        description="Fixed lead added to the clock when scheduling a buffer",
    )
    synthesis_timeout_s: float = Field(
        default=15.0,
        gt=0.0,
        description="Per-sentence synthesis timeout before the index is skipped",
    )
    sample_rate: int = Field(
        default=24000,
        ge=8000,
        le=96000,
        description="Output device sample rate",
    )


class ConversationSettings(BaseSettings):
    """Conversation and text decoding configuration."""

    model_config = SettingsConfigDict(env_prefix="CONVERSATION_")

    max_history: int = Field(
        default=20,
        ge=2,
        le=500,
        description="Maximum retained history messages",
    )
    min_sentence_length: int = Field(
        default=10,
        ge=1,
        description="Minimum sentence length accepted at a boundary",
    )
    system_prompt: str = Field(
        default=DEFAULT_SYSTEM_PROMPT,
        description="System prompt sent ahead of the history",
    )
    temperature: float = Field(default=0.7, ge=0.0, le=2.0)
    max_tokens: int = Field(default=500, ge=1)


class Settings(BaseSettings):
    """Main application settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    log_level: str = Field(default="info", description="Logging level")
    log_format: str = Field(default="pretty", description="json or pretty")

    # Remote services
    api_base_url: str = Field(
        default="https://api.venice.ai/api/v1",
        description="Base URL of the inference API",
    )
    venice_api_key: str = Field(default="", description="API key")
    asr_model: str = Field(default="nvidia/parakeet-tdt-0.6b-v3")
    chat_model: str = Field(default="qwen3-4b")
    tts_model: str = Field(default="tts-kokoro")
    tts_voice: str = Field(default="am_adam")
    tts_speed: float = Field(default=1.05, gt=0.0, le=4.0)
    language: str = Field(default="en")
    request_timeout_s: float = Field(default=30.0, gt=0.0)

    # Capture
    capture_sample_rate: int = Field(default=16000, ge=8000, le=48000)
    input_device: Optional[str] = Field(default=None)
    output_device: Optional[str] = Field(default=None)

    vad: VADSettings = Field(default_factory=VADSettings)
    playback: PlaybackSettings = Field(default_factory=PlaybackSettings)
    conversation: ConversationSettings = Field(default_factory=ConversationSettings)

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level."""
        valid_levels = {"debug", "info", "warning", "error", "critical"}
        if v.lower() not in valid_levels:
            raise ValueError(f"Invalid log level: {v}. Must be one of {valid_levels}")
        return v.lower()


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
