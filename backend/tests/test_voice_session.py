# backend/tests/test_voice_session.py
"""
ElevenLabs conversation socket: frame mapping, ping/pong, tool round trips.
"""

import asyncio
import json
from unittest.mock import AsyncMock, patch

import pytest
from websockets.exceptions import ConnectionClosedError

from leadqual.services.voice_session import (
    CallEventType,
    ElevenLabsConversation,
    ElevenLabsVoiceProvider,
)


class FakeSocket:
    def __init__(self, frames, fail_with=None):
        self.frames = frames
        self.fail_with = fail_with
        self.sent = []
        self.closed = False

    def __aiter__(self):
        return self._iter()

    async def _iter(self):
        for frame in self.frames:
            await asyncio.sleep(0)
            yield frame if isinstance(frame, str) else json.dumps(frame)
        if self.fail_with is not None:
            raise self.fail_with

    async def send(self, data):
        self.sent.append(json.loads(data))

    async def close(self):
        self.closed = True


METADATA = {
    "type": "conversation_initiation_metadata",
    "conversation_initiation_metadata_event": {"conversation_id": "conv_1"},
}


async def _run(conversation):
    conversation.run()
    await conversation._reader
    await conversation._tool_queue.join()
    await conversation.close()


class TestConversation:
    @pytest.mark.asyncio
    async def test_frame_mapping(self):
        events = []

        async def on_event(event):
            events.append(event)

        ws = FakeSocket([
            METADATA,
            {"type": "ping", "ping_event": {"event_id": 7}},
            {"type": "audio", "audio_event": {"audio_base_64": "AAAA"}},
            {"type": "user_transcript", "user_transcription_event": {"user_transcript": "hello"}},
            "not json",
            {"type": "agent_response", "agent_response_event": {"agent_response": "hi there"}},
        ])
        conversation = ElevenLabsConversation(ws, on_event, {})
        await _run(conversation)

        assert [e.type for e in events] == [
            CallEventType.CONNECTED,
            CallEventType.MESSAGE,
            CallEventType.MESSAGE,
            CallEventType.DISCONNECTED,
        ]
        assert conversation.conversation_id == "conv_1"
        assert {"type": "pong", "event_id": 7} in ws.sent
        assert ws.closed is True

    @pytest.mark.asyncio
    async def test_tool_calls_answered_in_order(self):
        order = []

        async def schedule_demo(params):
            order.append(("scheduleDemo", params["datetime"]))
            return "Demo scheduled successfully"

        async def save_summary(params):
            order.append(("saveCallSummary", params["summary"]))
            raise ValueError("summary too long")

        ws = FakeSocket([
            METADATA,
            {"type": "client_tool_call", "client_tool_call": {
                "tool_name": "scheduleDemo", "tool_call_id": "t1",
                "parameters": {"datetime": "2025-06-01T10:00:00Z"},
            }},
            {"type": "client_tool_call", "client_tool_call": {
                "tool_name": "saveCallSummary", "tool_call_id": "t2",
                "parameters": {"summary": "x"},
            }},
            {"type": "client_tool_call", "client_tool_call": {
                "tool_name": "transferCall", "tool_call_id": "t3", "parameters": {},
            }},
        ])
        conversation = ElevenLabsConversation(
            ws, AsyncMock(), {"scheduleDemo": schedule_demo, "saveCallSummary": save_summary}
        )
        await _run(conversation)

        results = [m for m in ws.sent if m["type"] == "client_tool_result"]
        assert [r["tool_call_id"] for r in results] == ["t1", "t2", "t3"]
        assert results[0]["result"] == "Demo scheduled successfully"
        assert results[0]["is_error"] is False
        assert results[1]["is_error"] is True
        assert results[2]["is_error"] is True
        assert [name for name, _ in order] == ["scheduleDemo", "saveCallSummary"]

    @pytest.mark.asyncio
    async def test_abnormal_close_reports_error_then_disconnect(self):
        events = []

        async def on_event(event):
            events.append(event.type)

        ws = FakeSocket([METADATA], fail_with=ConnectionClosedError(None, None))
        await _run(ElevenLabsConversation(ws, on_event, {}))

        assert events == [CallEventType.CONNECTED, CallEventType.ERROR, CallEventType.DISCONNECTED]

    @pytest.mark.asyncio
    async def test_error_frame(self):
        events = []

        async def on_event(event):
            events.append(event)

        ws = FakeSocket([{"type": "error", "message": "quota exceeded"}])
        await _run(ElevenLabsConversation(ws, on_event, {}))

        assert events[0].type == CallEventType.ERROR
        assert events[0].payload["message"] == "quota exceeded"
        assert events[-1].type == CallEventType.DISCONNECTED

    @pytest.mark.asyncio
    async def test_failing_handler_does_not_stop_the_loop(self):
        seen = []

        async def on_event(event):
            seen.append(event.type)
            if event.type == CallEventType.CONNECTED:
                raise RuntimeError("handler bug")

        ws = FakeSocket([METADATA, {"type": "agent_response"}])
        await _run(ElevenLabsConversation(ws, on_event, {}))

        assert seen == [CallEventType.CONNECTED, CallEventType.MESSAGE, CallEventType.DISCONNECTED]


class TestProvider:
    @pytest.mark.asyncio
    async def test_start_sends_initiation_data(self):
        ws = FakeSocket([])
        with patch("leadqual.services.voice_session.websockets.connect", new=AsyncMock(return_value=ws)) as connect:
            provider = ElevenLabsVoiceProvider(open_timeout=3)
            session = await provider.start("wss://signed", AsyncMock(), {}, {"lead_name": "Ada"})
            await provider.end(session)

        assert connect.await_args.args == ("wss://signed",)
        assert connect.await_args.kwargs["open_timeout"] == 3
        assert ws.sent[0] == {
            "type": "conversation_initiation_client_data",
            "dynamic_variables": {"lead_name": "Ada"},
        }
        assert ws.closed is True
