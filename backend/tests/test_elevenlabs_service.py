# backend/tests/test_elevenlabs_service.py
"""
Signed-URL issuing against a mocked ElevenLabs API, plus the retry helper
it is built on.
"""

from unittest.mock import AsyncMock, patch

import httpx
import pytest

from leadqual.services.elevenlabs_service import ElevenLabsError, ElevenLabsService
from leadqual.utils.retry import RateLimitError, RetryError, async_retry, check_rate_limit_response


def _service(handler, api_key="xi-test-key"):
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return ElevenLabsService(api_key=api_key, base_url="https://api.elevenlabs.test", http_client=client)


class TestSignedUrl:
    @pytest.mark.asyncio
    async def test_returns_signed_url(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["path"] = request.url.path
            seen["agent_id"] = request.url.params.get("agent_id")
            seen["key"] = request.headers.get("xi-api-key")
            return httpx.Response(200, json={"signed_url": "wss://api.elevenlabs.test/convai?token=t"})

        service = _service(handler)
        url = await service.get_signed_url("agent_42")

        assert url == "wss://api.elevenlabs.test/convai?token=t"
        assert seen == {
            "path": "/v1/convai/conversation/get_signed_url",
            "agent_id": "agent_42",
            "key": "xi-test-key",
        }
        await service.aclose()

    @pytest.mark.asyncio
    async def test_missing_agent_id(self):
        service = _service(lambda r: httpx.Response(200, json={}))
        with pytest.raises(ValueError, match="Agent ID is required"):
            await service.get_signed_url("  ")

    @pytest.mark.asyncio
    async def test_missing_api_key(self):
        service = _service(lambda r: httpx.Response(200, json={}), api_key="")
        assert service.is_enabled() is False
        with pytest.raises(ElevenLabsError):
            await service.get_signed_url("agent_42")

    @pytest.mark.asyncio
    async def test_client_error_is_not_retried(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(401, text="invalid api key")

        service = _service(handler)
        with pytest.raises(ElevenLabsError, match="invalid api key"):
            await service.get_signed_url("agent_42")
        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_server_error_retried_then_succeeds(self):
        responses = [
            httpx.Response(503, text="busy"),
            httpx.Response(200, json={"signed_url": "wss://ok"}),
        ]

        service = _service(lambda r: responses.pop(0))
        with patch("leadqual.utils.retry.asyncio.sleep", new=AsyncMock()):
            assert await service.get_signed_url("agent_42") == "wss://ok"

    @pytest.mark.asyncio
    async def test_retries_exhausted(self):
        service = _service(lambda r: httpx.Response(502, text="bad gateway"))
        with patch("leadqual.utils.retry.asyncio.sleep", new=AsyncMock()):
            with pytest.raises(ElevenLabsError):
                await service.get_signed_url("agent_42")

    @pytest.mark.asyncio
    async def test_response_without_url(self):
        service = _service(lambda r: httpx.Response(200, json={"something": "else"}))
        with pytest.raises(ElevenLabsError, match="missing"):
            await service.get_signed_url("agent_42")


class TestRetryHelpers:
    def test_rate_limit_response_reads_retry_after(self):
        response = httpx.Response(429, headers={"Retry-After": "7"})
        with pytest.raises(RateLimitError) as exc:
            check_rate_limit_response(response)
        assert exc.value.retry_after == 7.0

    def test_non_429_passes(self):
        check_rate_limit_response(httpx.Response(200))

    @pytest.mark.asyncio
    async def test_non_retryable_exception_propagates(self):
        attempts = []

        @async_retry(max_attempts=3, initial_delay=0)
        async def _op():
            attempts.append(1)
            raise ValueError("bad input")

        with pytest.raises(ValueError):
            await _op()
        assert len(attempts) == 1

    @pytest.mark.asyncio
    async def test_retry_error_carries_last_exception(self):
        @async_retry(max_attempts=2, initial_delay=0, jitter=False)
        async def _op():
            raise httpx.ConnectError("refused")

        with patch("leadqual.utils.retry.asyncio.sleep", new=AsyncMock()):
            with pytest.raises(RetryError) as exc:
                await _op()
        assert isinstance(exc.value.last_exception, httpx.ConnectError)
        assert exc.value.attempts == 2
