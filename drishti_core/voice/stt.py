"""
Speech-to-Text client.

Uploads one captured WAV clip to ``/audio/transcriptions`` as multipart form
data and returns the transcript text.
"""

from __future__ import annotations

from typing import Optional

import httpx
import structlog

from drishti_core.config import Settings, get_settings
from drishti_core.core.errors import TransportError
from drishti_core.core.http import APIClient, error_detail

logger = structlog.get_logger(__name__)


class TranscriptionClient(APIClient):
    """Batch transcription of captured clips."""

    name = "transcription"

    def __init__(
        self,
        api_key: str,
        model: str = "nvidia/parakeet-tdt-0.6b-v3",
        base_url: str = "https://api.venice.ai/api/v1",
        language: str = "en",
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__(api_key, base_url, timeout=timeout, transport=transport)
        self.model = model
        self.language = language

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None, **kwargs) -> "TranscriptionClient":
        settings = settings or get_settings()
        return cls(
            api_key=settings.venice_api_key,
            model=settings.asr_model,
            base_url=settings.api_base_url,
            language=settings.language,
            timeout=settings.request_timeout_s,
            **kwargs,
        )

    async def transcribe(self, audio: bytes) -> str:
        """
        Transcribe a WAV clip.

        Returns:
            The transcript, or an empty string if the service returned none

        Raises:
            TransportError: On connection failure or non-2xx status
        """
        client = await self._get_client()

        try:
            response = await client.post(
                "/audio/transcriptions",
                files={"file": ("recording.wav", audio, "audio/wav")},
                data={
                    "model": self.model,
                    "response_format": "json",
                    "language": self.language,
                },
            )
        except httpx.TimeoutException as e:
            logger.error("transcription_timeout", error=str(e))
            raise TransportError(f"Transcription timed out: {e}")
        except httpx.HTTPError as e:
            logger.error("transcription_error", error=str(e))
            raise TransportError(f"Transcription failed: {e}")

        if response.status_code >= 400:
            detail = error_detail(response)
            logger.error("transcription_http_error", status=response.status_code, error=detail)
            raise TransportError(
                f"Transcription failed: {detail}",
                status_code=response.status_code,
            )

        try:
            payload = response.json()
        except ValueError:
            raise TransportError("Transcription response was not JSON")

        text = payload.get("text") if isinstance(payload, dict) else None
        text = text if isinstance(text, str) else ""

        logger.info("transcription_complete", chars=len(text), bytes=len(audio))
        return text
