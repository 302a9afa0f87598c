"""
Shared HTTP client plumbing for the inference API.
"""

from __future__ import annotations

from typing import Any, Dict, Optional

import httpx
import structlog

logger = structlog.get_logger(__name__)

DEFAULT_LIMITS = httpx.Limits(max_connections=10, max_keepalive_connections=5)


class APIClient:
    """
    Base for clients of the OpenAI-compatible inference API.

    Holds one pooled ``httpx.AsyncClient`` with keep-alive connections,
    created lazily and reused across requests.
    """

    name = "api"

    def __init__(
        self,
        api_key: str,
        base_url: str,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport

        self._client: Optional[httpx.AsyncClient] = None
        self._total_requests = 0

    @property
    def headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self.api_key}"}

    async def connect(self) -> None:
        """Initialize HTTP client."""
        if self._client is not None:
            return
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            headers=self.headers,
            timeout=self.timeout,
            limits=DEFAULT_LIMITS,
            transport=self._transport,
        )
        logger.info("api_client_connected", client=self.name, base_url=self.base_url)

    async def disconnect(self) -> None:
        """Close HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None
            logger.info("api_client_disconnected", client=self.name)

    async def __aenter__(self):
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.disconnect()

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            await self.connect()
        self._total_requests += 1
        return self._client

    def get_statistics(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "total_requests": self._total_requests,
        }


def error_detail(response: httpx.Response) -> str:
    """Best-effort error message from a failed response."""
    try:
        body = response.json()
    except ValueError:
        return response.text[:200]

    if isinstance(body, dict):
        error = body.get("error", body)
        if isinstance(error, dict):
            return str(error.get("message") or error)
        return str(error)
    return str(body)[:200]
