"""
Streaming chat completions client.

Sends the conversation history (behind the system prompt) to the
OpenAI-compatible ``/chat/completions`` endpoint with ``stream: true`` and
yields the text deltas as they arrive.

Server-sent event handling:
- only ``data: `` lines carry frames
- ``[DONE]`` ends the stream
- a JSON error marker aborts the turn with ``TransportError``
- malformed frames are skipped
"""

from __future__ import annotations

from typing import Any, AsyncIterator, Dict, List, Optional

import httpx
import structlog

from drishti_core.config import Settings, get_settings
from drishti_core.core.errors import TransportError
from drishti_core.core.http import APIClient, error_detail
from drishti_core.pipeline.decoder import decode_frame, frame_content

logger = structlog.get_logger(__name__)

SSE_PREFIX = "data: "
SSE_DONE = "[DONE]"

REASONING_MODEL_TAGS = ("glm", "qwen3", "deepseek")


def is_reasoning_model(model: str) -> bool:
    return any(tag in model for tag in REASONING_MODEL_TAGS)


class ChatStreamClient(APIClient):
    """Chat completions over SSE."""

    name = "chat"

    def __init__(
        self,
        api_key: str,
        model: str,
        base_url: str = "https://api.venice.ai/api/v1",
        system_prompt: str = "",
        temperature: float = 0.7,
        max_tokens: int = 500,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__(api_key, base_url, timeout=timeout, transport=transport)
        self.model = model
        self.system_prompt = system_prompt
        self.temperature = temperature
        self.max_tokens = max_tokens

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None, **kwargs) -> "ChatStreamClient":
        settings = settings or get_settings()
        return cls(
            api_key=settings.venice_api_key,
            model=settings.chat_model,
            base_url=settings.api_base_url,
            system_prompt=settings.conversation.system_prompt,
            temperature=settings.conversation.temperature,
            max_tokens=settings.conversation.max_tokens,
            timeout=settings.request_timeout_s,
            **kwargs,
        )

    def build_request(self, messages: List[Dict[str, str]]) -> Dict[str, Any]:
        """Request body for a streamed completion over ``messages``."""
        full_messages: List[Dict[str, str]] = []
        if self.system_prompt:
            full_messages.append({"role": "system", "content": self.system_prompt})
        full_messages.extend(messages)

        body: Dict[str, Any] = {
            "model": self.model,
            "messages": full_messages,
            "stream": True,
            "temperature": self.temperature,
            "max_tokens": self.max_tokens,
        }

        if is_reasoning_model(self.model):
            body["venice_parameters"] = {"strip_thinking_response": True}

        return body

    async def stream_chat(self, messages: List[Dict[str, str]]) -> AsyncIterator[str]:
        """
        Stream a reply to ``messages``.

        Yields:
            Text deltas in arrival order

        Raises:
            TransportError: On connection failure, non-2xx status or an
                in-stream error marker
        """
        client = await self._get_client()
        body = self.build_request(messages)

        logger.debug("chat_stream_request", model=self.model, messages=len(body["messages"]))

        try:
            async with client.stream("POST", "/chat/completions", json=body) as response:
                if response.status_code >= 400:
                    await response.aread()
                    detail = error_detail(response)
                    logger.error("chat_stream_http_error", status=response.status_code, error=detail)
                    raise TransportError(
                        f"Chat request failed: {detail}",
                        status_code=response.status_code,
                    )

                async for line in response.aiter_lines():
                    if not line or not line.startswith(SSE_PREFIX):
                        continue

                    data = line[len(SSE_PREFIX):].strip()
                    if data == SSE_DONE:
                        break

                    content = self._parse_frame(data)
                    if content:
                        yield content

        except httpx.TimeoutException as e:
            logger.error("chat_stream_timeout", error=str(e))
            raise TransportError(f"Chat stream timed out: {e}")
        except httpx.HTTPError as e:
            logger.error("chat_stream_error", error=str(e))
            raise TransportError(f"Chat stream failed: {e}")

    def _parse_frame(self, data: str) -> Optional[str]:
        chunk = decode_frame(data)
        if chunk is None:
            return None

        if "error" in chunk or chunk.get("type") == "error":
            error = chunk.get("error") or chunk.get("message") or "stream error"
            if isinstance(error, dict):
                error = error.get("message", str(error))
            logger.error("chat_stream_error_marker", error=str(error))
            raise TransportError(f"Chat stream error: {error}")

        return frame_content(chunk)
