# backend/leadqual/api/websocket.py
"""
Live change feed for the dashboard and lead detail views.

/ws/leads            every INSERT and UPDATE on the leads table
/ws/leads/{lead_id}  UPDATEs for one lead

Each message is {"type": "INSERT" | "UPDATE", "record": {...}}.
"""
from __future__ import annotations

import asyncio
import contextlib
import json
import logging
from datetime import datetime
from typing import Any, Dict, Optional, Set

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect

from leadqual.api.deps import get_lead_store
from leadqual.services.lead_store import ANY_EVENT, ChangeType, LeadChange, LeadStore

logger = logging.getLogger(__name__)
router = APIRouter()


class ConnectionManager:
    """Tracks open change-feed sockets; used by /health for the connection count."""

    def __init__(self) -> None:
        self.active_connections: Set[WebSocket] = set()
        self._lock = asyncio.Lock()

    async def connect(self, websocket: WebSocket) -> None:
        await websocket.accept()
        async with self._lock:
            self.active_connections.add(websocket)
        logger.info(f"WebSocket connected. Total connections: {len(self.active_connections)}")

    async def disconnect(self, websocket: WebSocket) -> None:
        async with self._lock:
            self.active_connections.discard(websocket)
        logger.info(f"WebSocket disconnected. Total connections: {len(self.active_connections)}")


manager = ConnectionManager()


async def _send_changes(websocket: WebSocket, queue: "asyncio.Queue[Dict[str, Any]]") -> None:
    while True:
        message = await queue.get()
        await websocket.send_json(message)


async def _feed_loop(
    websocket: WebSocket,
    store: LeadStore,
    lead_id: Optional[str] = None,
    event: str = ANY_EVENT,
) -> None:
    await manager.connect(websocket)

    loop = asyncio.get_running_loop()
    queue: "asyncio.Queue[Dict[str, Any]]" = asyncio.Queue()

    def _enqueue(change: LeadChange) -> None:
        # publishers may run on another loop (threadpool, test client)
        loop.call_soon_threadsafe(queue.put_nowait, change.to_message())

    subscription = store.subscribe(_enqueue, lead_id=lead_id, event=event)
    sender = asyncio.create_task(_send_changes(websocket, queue))

    try:
        await websocket.send_json(
            {
                "type": "connection",
                "status": "connected",
                "lead_id": lead_id,
                "timestamp": datetime.now().isoformat(),
            }
        )

        while True:
            data = await websocket.receive_text()

            try:
                msg = json.loads(data)
            except json.JSONDecodeError:
                await websocket.send_json(
                    {
                        "type": "error",
                        "message": "Invalid JSON format",
                        "timestamp": datetime.now().isoformat(),
                    }
                )
                continue

            if isinstance(msg, dict) and msg.get("type") == "ping":
                await websocket.send_json({"type": "pong", "timestamp": datetime.now().isoformat()})

    except WebSocketDisconnect:
        pass
    except Exception as e:
        logger.error(f"WebSocket fatal error: {e}")
    finally:
        subscription.unsubscribe()
        sender.cancel()
        with contextlib.suppress(asyncio.CancelledError, Exception):
            await sender
        await manager.disconnect(websocket)


@router.websocket("/ws/leads")
async def leads_feed(websocket: WebSocket, store: LeadStore = Depends(get_lead_store)):
    await _feed_loop(websocket, store)


@router.websocket("/ws/leads/{lead_id}")
async def lead_feed(websocket: WebSocket, lead_id: str, store: LeadStore = Depends(get_lead_store)):
    await _feed_loop(websocket, store, lead_id=lead_id, event=ChangeType.UPDATE.value)


def get_connection_count() -> int:
    return len(manager.active_connections)
