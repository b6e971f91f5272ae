# backend/leadqual/services/voice_session.py
"""
Voice session provider boundary.

A provider starts a session from a signed URL, pushes lifecycle events
(connected / disconnected / message / error) into a host handler, and runs
agent tool calls against a table of host-registered tool functions.

ElevenLabsVoiceProvider speaks the Conversational AI WebSocket protocol:
- conversation_initiation_metadata -> CONNECTED
- socket closed                    -> DISCONNECTED (preceded by ERROR if abnormal)
- client_tool_call                 -> tool invocation, answered with client_tool_result
- ping                             -> pong
- audio frames are ignored, every other frame -> MESSAGE
"""
from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional

import websockets
from websockets.exceptions import ConnectionClosed, ConnectionClosedError

from leadqual.utils.logger import logger


class CallEventType(str, Enum):
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    MESSAGE = "message"
    ERROR = "error"


@dataclass
class CallEvent:
    type: CallEventType
    payload: Any = None


EventHandler = Callable[[CallEvent], Awaitable[None]]
ToolHandler = Callable[[Dict[str, Any]], Awaitable[str]]


class VoiceSessionProvider:
    """Interface the call lifecycle controller drives."""

    async def start(
        self,
        signed_url: str,
        on_event: EventHandler,
        tools: Dict[str, ToolHandler],
        client_data: Optional[Dict[str, Any]] = None,
    ) -> Any:
        raise NotImplementedError

    async def end(self, session: Any) -> None:
        raise NotImplementedError


class ElevenLabsConversation:
    """One live ElevenLabs conversation socket."""

    IGNORED_FRAMES = {"audio", "vad_score", "internal_tentative_agent_response"}

    def __init__(self, ws, on_event: EventHandler, tools: Dict[str, ToolHandler]):
        self.ws = ws
        self.on_event = on_event
        self.tools = tools
        self.conversation_id: Optional[str] = None

        self._closing = False
        self._reader: Optional[asyncio.Task] = None
        self._tool_worker: Optional[asyncio.Task] = None
        self._tool_queue: asyncio.Queue = asyncio.Queue()

    def run(self) -> None:
        self._reader = asyncio.create_task(self._read_loop())
        # Tool calls run one at a time in delivery order, off the read loop
        self._tool_worker = asyncio.create_task(self._tool_loop())

    async def send_initiation_data(self, client_data: Dict[str, Any]) -> None:
        await self._send({
            "type": "conversation_initiation_client_data",
            "dynamic_variables": client_data,
        })

    async def _emit(self, event: CallEvent) -> None:
        try:
            await self.on_event(event)
        except Exception as e:
            logger.error(f"Call event handler failed for {event.type.value}: {e}")

    async def _send(self, payload: Dict[str, Any]) -> None:
        try:
            await self.ws.send(json.dumps(payload))
        except ConnectionClosed:
            logger.debug(f"Dropped {payload.get('type')} frame: socket already closed")

    async def _read_loop(self) -> None:
        error: Optional[BaseException] = None
        try:
            async for raw in self.ws:
                try:
                    frame = json.loads(raw)
                except (TypeError, ValueError):
                    logger.warning("Ignoring non-JSON frame from ElevenLabs")
                    continue
                await self._handle_frame(frame)
        except ConnectionClosedError as e:
            if not self._closing:
                error = e
        except asyncio.CancelledError:
            raise
        except Exception as e:
            error = e

        if error is not None:
            logger.error(f"ElevenLabs conversation {self.conversation_id} failed: {error}")
            await self._emit(CallEvent(CallEventType.ERROR, {"message": str(error)}))
        await self._emit(CallEvent(CallEventType.DISCONNECTED, {"conversation_id": self.conversation_id}))

    async def _handle_frame(self, frame: Dict[str, Any]) -> None:
        kind = frame.get("type")

        if kind == "conversation_initiation_metadata":
            meta = frame.get("conversation_initiation_metadata_event") or {}
            self.conversation_id = meta.get("conversation_id")
            logger.info(f"ElevenLabs conversation started: {self.conversation_id}")
            await self._emit(CallEvent(CallEventType.CONNECTED, meta))
        elif kind == "ping":
            ping = frame.get("ping_event") or {}
            await self._send({"type": "pong", "event_id": ping.get("event_id")})
        elif kind == "client_tool_call":
            await self._tool_queue.put(frame.get("client_tool_call") or {})
        elif kind == "error":
            await self._emit(CallEvent(CallEventType.ERROR, frame))
        elif kind in self.IGNORED_FRAMES:
            return
        else:
            await self._emit(CallEvent(CallEventType.MESSAGE, frame))

    async def _tool_loop(self) -> None:
        while True:
            call = await self._tool_queue.get()
            try:
                await self._run_tool(call)
            finally:
                self._tool_queue.task_done()

    async def _run_tool(self, call: Dict[str, Any]) -> None:
        name = call.get("tool_name") or ""
        params = call.get("parameters") or {}
        handler = self.tools.get(name)

        is_error = False
        if handler is None:
            result = f"Unknown tool: {name}"
            is_error = True
            logger.warning(f"Agent invoked unknown tool {name!r}")
        else:
            try:
                result = await handler(params)
            except Exception as e:
                result = f"Tool {name} failed: {e}"
                is_error = True
                logger.error(result)

        await self._send({
            "type": "client_tool_result",
            "tool_call_id": call.get("tool_call_id"),
            "result": result,
            "is_error": is_error,
        })

    async def close(self) -> None:
        self._closing = True
        try:
            await self.ws.close()
        except Exception as e:
            logger.warning(f"Error closing ElevenLabs socket: {e}")

        current = asyncio.current_task()
        if self._reader is not None and self._reader is not current:
            try:
                await asyncio.wait_for(self._reader, timeout=5.0)
            except (asyncio.TimeoutError, asyncio.CancelledError):
                self._reader.cancel()

        if self._tool_worker is not None and self._tool_worker is not current:
            self._tool_worker.cancel()


class ElevenLabsVoiceProvider(VoiceSessionProvider):
    def __init__(self, open_timeout: float = 10.0):
        self.open_timeout = open_timeout

    async def start(
        self,
        signed_url: str,
        on_event: EventHandler,
        tools: Dict[str, ToolHandler],
        client_data: Optional[Dict[str, Any]] = None,
    ) -> ElevenLabsConversation:
        ws = await websockets.connect(signed_url, open_timeout=self.open_timeout, max_size=2**24)
        session = ElevenLabsConversation(ws, on_event, tools)
        if client_data:
            await session.send_initiation_data(client_data)
        session.run()
        return session

    async def end(self, session: ElevenLabsConversation) -> None:
        await session.close()
