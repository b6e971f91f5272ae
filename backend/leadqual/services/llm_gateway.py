# backend/leadqual/services/llm_gateway.py
"""
Client for the OpenAI-compatible LLM gateway used for qualification work.

Two call shapes:
- complete_text: plain chat completion, returns the assistant text
- call_function: forces a single function call and returns its parsed arguments
"""
from __future__ import annotations

import json
import time
from typing import Any, Dict, List, Optional

from openai import AsyncOpenAI, OpenAIError

from leadqual.config import settings
from leadqual.utils.logger import logger


class LLMGatewayError(RuntimeError):
    """The gateway was unavailable or returned an unusable response."""


class LLMGateway:
    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        model: Optional[str] = None,
        timeout_s: Optional[float] = None,
        client: Optional[AsyncOpenAI] = None,
    ):
        self.api_key = api_key if api_key is not None else settings.LLM_API_KEY
        self.base_url = base_url or settings.LLM_GATEWAY_URL
        self.model = (model or settings.LLM_MODEL).strip()
        self.timeout_s = timeout_s if timeout_s is not None else settings.LLM_TIMEOUT_SECONDS

        self.client = client
        if self.client is None and self.api_key:
            self.client = AsyncOpenAI(api_key=self.api_key, base_url=self.base_url, timeout=self.timeout_s)

    def is_enabled(self) -> bool:
        return self.client is not None

    async def _chat(self, messages: List[Dict[str, str]], **kwargs: Any):
        if self.client is None:
            raise LLMGatewayError("LLM_API_KEY not configured")

        started = time.time()
        try:
            resp = await self.client.chat.completions.create(
                model=self.model,
                messages=messages,
                **kwargs,
            )
        except OpenAIError as e:
            elapsed = (time.time() - started) * 1000
            logger.error(f"LLM gateway error after {elapsed:.0f}ms: {e}")
            raise LLMGatewayError(f"AI API error: {e}") from e

        elapsed = (time.time() - started) * 1000
        logger.info(f"LLM gateway completion: {elapsed:.0f}ms (model={self.model})")

        if not resp.choices:
            raise LLMGatewayError("AI response contained no choices")
        return resp.choices[0].message

    async def complete_text(self, system: str, user: str) -> str:
        message = await self._chat([
            {"role": "system", "content": system},
            {"role": "user", "content": user},
        ])
        return (message.content or "").strip()

    async def call_function(self, system: str, user: str, function: Dict[str, Any]) -> Dict[str, Any]:
        """Force `function` to be called and return its decoded arguments."""
        name = function["name"]
        message = await self._chat(
            [
                {"role": "system", "content": system},
                {"role": "user", "content": user},
            ],
            tools=[{"type": "function", "function": function}],
            tool_choice={"type": "function", "function": {"name": name}},
        )

        tool_calls = message.tool_calls or []
        if not tool_calls or not tool_calls[0].function.arguments:
            raise LLMGatewayError("No tool call in AI response")

        try:
            args = json.loads(tool_calls[0].function.arguments)
        except json.JSONDecodeError as e:
            raise LLMGatewayError(f"Tool call arguments were not valid JSON: {e}") from e

        if not isinstance(args, dict):
            raise LLMGatewayError("Tool call arguments were not an object")
        return args

    async def aclose(self) -> None:
        if self.client is not None:
            await self.client.close()
