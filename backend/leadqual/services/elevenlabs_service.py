# backend/leadqual/services/elevenlabs_service.py
from __future__ import annotations

from typing import Optional

import httpx

from leadqual.config import settings
from leadqual.utils.logger import logger
from leadqual.utils.retry import (
    async_retry,
    check_rate_limit_response,
    RateLimitError,
    RETRYABLE_EXCEPTIONS,
    RetryError,
)


class ElevenLabsError(RuntimeError):
    """ElevenLabs rejected the request or could not be reached."""


class ElevenLabsService:
    """Issues signed conversation URLs for ElevenLabs Conversational AI agents."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.api_key = (api_key if api_key is not None else settings.ELEVENLABS_API_KEY or "").strip()
        self.base_url = (base_url or settings.ELEVENLABS_BASE_URL).rstrip("/")
        self._http = http_client or httpx.AsyncClient(timeout=15)

        if not self.api_key:
            logger.warning("ELEVENLABS_API_KEY is missing")

    def is_enabled(self) -> bool:
        return bool(self.api_key)

    async def get_signed_url(self, agent_id: str) -> str:
        """
        Request a short-lived signed WebSocket URL for `agent_id`.

        Raises ValueError on a missing agent id and ElevenLabsError when the key
        is missing, the API refuses, retries run out, or no URL comes back.
        """
        agent = (agent_id or "").strip()
        if not agent:
            raise ValueError("Agent ID is required")
        if not self.api_key:
            raise ElevenLabsError("ELEVENLABS_API_KEY is not configured")

        url = f"{self.base_url}/v1/convai/conversation/get_signed_url"
        headers = {"xi-api-key": self.api_key}

        @async_retry(
            max_attempts=3,
            initial_delay=0.5,
            max_delay=10.0,
            retryable_exceptions=RETRYABLE_EXCEPTIONS + (RateLimitError,),
            operation_name="elevenlabs_signed_url",
        )
        async def _fetch() -> httpx.Response:
            resp = await self._http.get(url, headers=headers, params={"agent_id": agent})
            check_rate_limit_response(resp)
            if resp.status_code >= 500:
                # Server error - retry
                raise httpx.ReadError(f"Server error {resp.status_code}")
            return resp

        logger.info(f"Requesting signed URL for agent_id={agent}")
        try:
            resp = await _fetch()
        except RetryError as e:
            raise ElevenLabsError(f"Failed to get signed URL: {e.last_exception or e}") from e

        if resp.status_code >= 400:
            logger.error(f"ElevenLabs signed-url error {resp.status_code}: {resp.text[:500]}")
            raise ElevenLabsError(f"Failed to get signed URL: {resp.text[:500]}")

        try:
            data = resp.json()
        except ValueError as e:
            raise ElevenLabsError("Signed URL response was not JSON") from e

        signed_url = (data or {}).get("signed_url")
        if not signed_url:
            raise ElevenLabsError("Signed URL missing from ElevenLabs response")

        logger.info("Signed URL received successfully")
        return signed_url

    async def aclose(self) -> None:
        await self._http.aclose()
