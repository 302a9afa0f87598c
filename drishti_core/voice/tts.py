"""
Text-to-Speech client.

One ``/audio/speech`` request per sentence; the response body is the encoded
audio (mp3 by default) that the playback pipeline decodes.
"""

from __future__ import annotations

import time
from typing import Optional

import httpx
import structlog

from drishti_core.config import Settings, get_settings
from drishti_core.core.errors import SynthesisError
from drishti_core.core.http import APIClient, error_detail

logger = structlog.get_logger(__name__)


class SpeechSynthesisClient(APIClient):
    """Per-sentence speech synthesis."""

    name = "synthesis"

    def __init__(
        self,
        api_key: str,
        model: str = "tts-kokoro",
        voice: str = "am_adam",
        base_url: str = "https://api.venice.ai/api/v1",
        response_format: str = "mp3",
        speed: float = 1.05,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__(api_key, base_url, timeout=timeout, transport=transport)
        self.model = model
        self.voice = voice
        self.response_format = response_format
        self.speed = speed

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None, **kwargs) -> "SpeechSynthesisClient":
        settings = settings or get_settings()
        kwargs.setdefault("voice", settings.tts_voice)
        return cls(
            api_key=settings.venice_api_key,
            model=settings.tts_model,
            base_url=settings.api_base_url,
            speed=settings.tts_speed,
            timeout=settings.request_timeout_s,
            **kwargs,
        )

    async def synthesize(self, text: str, index: Optional[int] = None) -> bytes:
        """
        Synthesize ``text``.

        Returns:
            Encoded audio bytes

        Raises:
            SynthesisError: On empty input, connection failure or non-2xx status
        """
        if not text or not text.strip():
            raise SynthesisError("Cannot synthesize empty text", index=index)

        client = await self._get_client()
        body = {
            "model": self.model,
            "input": text,
            "voice": self.voice,
            "response_format": self.response_format,
            "speed": self.speed,
        }

        start = time.time()
        try:
            response = await client.post("/audio/speech", json=body)
        except httpx.TimeoutException as e:
            logger.warning("synthesis_timeout", index=index, error=str(e))
            raise SynthesisError(f"Synthesis timed out: {e}", index=index)
        except httpx.HTTPError as e:
            logger.warning("synthesis_request_error", index=index, error=str(e))
            raise SynthesisError(f"Synthesis failed: {e}", index=index)

        if response.status_code >= 400:
            detail = error_detail(response)
            raise SynthesisError(
                f"Synthesis failed ({response.status_code}): {detail}",
                index=index,
                details={"status_code": response.status_code},
            )

        logger.debug(
            "synthesis_complete",
            index=index,
            bytes=len(response.content),
            latency_ms=round((time.time() - start) * 1000, 1),
        )
        return response.content
