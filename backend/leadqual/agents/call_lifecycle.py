# backend/leadqual/agents/call_lifecycle.py
"""
Call lifecycle controller.

One controller drives one voice session against one lead:

    idle -> initializing -> connecting -> connected -> ended
                                 \\             \\
                                  +-> failed     +-> failed

- connecting: after a settle delay, a signed URL is fetched and the provider
  session is started
- connected: the provider reported the session live; the lead is marked
  calling with call_started_at
- ended: the provider disconnected after connecting, or the caller hung up;
  the lead gets call_ended_at / duration and call_completed unless a tool
  already gave it a terminal status
- failed: token fetch failed, the session never connected, or the provider
  reported an error; the lead is left as it was

The completion callback fires exactly once per controller. Once a
terminal state is reached every later provider event is ignored.
"""
from __future__ import annotations

import asyncio
import inspect
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

from leadqual.agents.call_tools import CallTools
from leadqual.config import settings
from leadqual.models.lead import LeadStatus, TERMINAL_STATUSES
from leadqual.services.lead_store import LeadStore, LeadStoreError
from leadqual.services.voice_session import CallEvent, CallEventType, VoiceSessionProvider
from leadqual.utils.logger import logger


# =============================================================================
# ERRORS
# =============================================================================

class CallLifecycleError(Exception):
    """Base class for outcomes that end a call attempt early."""


class TokenFetchFailed(CallLifecycleError):
    pass


class SessionNeverConnected(CallLifecycleError):
    pass


class ProviderError(CallLifecycleError):
    pass


class UserAborted(CallLifecycleError):
    pass


class CallAlreadyActive(Exception):
    def __init__(self, lead_id: str):
        super().__init__(f"A call is already active for lead {lead_id}")
        self.lead_id = lead_id


# =============================================================================
# STATE
# =============================================================================

class CallState(str, Enum):
    IDLE = "idle"
    INITIALIZING = "initializing"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    ENDED = "ended"
    FAILED = "failed"


TERMINAL_CALL_STATES = frozenset({CallState.ENDED, CallState.FAILED})


@dataclass
class CallOutcome:
    lead_id: str
    state: CallState
    error: Optional[CallLifecycleError] = None

    @property
    def error_type(self) -> Optional[str]:
        return type(self.error).__name__ if self.error else None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "lead_id": self.lead_id,
            "state": self.state.value,
            "error_type": self.error_type,
            "error": str(self.error) if self.error else None,
        }


TokenIssuer = Any  # anything with `async get_signed_url(agent_id) -> str`
CompletionCallback = Callable[[CallOutcome], Union[Awaitable[None], None]]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CallLifecycleController:
    def __init__(
        self,
        lead_id: str,
        agent_id: str,
        *,
        store: LeadStore,
        token_issuer: TokenIssuer,
        provider: VoiceSessionProvider,
        on_complete: Optional[CompletionCallback] = None,
        settle_delay: Optional[float] = None,
        client_data: Optional[Dict[str, Any]] = None,
    ):
        self.lead_id = lead_id
        self.agent_id = agent_id
        self.store = store
        self.token_issuer = token_issuer
        self.provider = provider
        self.on_complete = on_complete
        self.settle_delay = settle_delay if settle_delay is not None else settings.CALL_SETTLE_DELAY_SECONDS
        self.client_data = client_data

        self.state = CallState.IDLE
        self.has_ever_connected = False
        self.connected_at: Optional[datetime] = None
        self.messages: List[Any] = []
        self.outcome: Optional[CallOutcome] = None
        self.tools = CallTools(store, lead_id)

        self._session: Any = None
        self._finished = False

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_CALL_STATES

    def _transition(self, new_state: CallState) -> None:
        logger.info(f"[call {self.lead_id}] {self.state.value} -> {new_state.value}")
        self.state = new_state

    # -----------------------------
    # Session setup
    # -----------------------------
    async def start(self) -> CallState:
        """
        Run setup through to a started provider session.

        Raises TokenFetchFailed or ProviderError when setup fails; the
        completion callback has already fired by then.
        """
        if self.state != CallState.IDLE:
            raise RuntimeError(f"Call for lead {self.lead_id} already started ({self.state.value})")

        self._transition(CallState.INITIALIZING)
        await asyncio.sleep(self.settle_delay)
        if self.is_terminal:
            return self.state

        self._transition(CallState.CONNECTING)
        try:
            signed_url = await self.token_issuer.get_signed_url(self.agent_id)
        except Exception as e:
            err = TokenFetchFailed(f"Could not get a session token for agent {self.agent_id}: {e}")
            await self._finish(CallState.FAILED, err)
            raise err from e

        if not signed_url:
            err = TokenFetchFailed(f"No session token returned for agent {self.agent_id}")
            await self._finish(CallState.FAILED, err)
            raise err

        if self.is_terminal:
            return self.state

        try:
            session = await self.provider.start(
                signed_url,
                self.dispatch,
                self.tools.as_client_tools(),
                self.client_data,
            )
        except Exception as e:
            err = ProviderError(f"Voice session failed to start: {e}")
            await self._finish(CallState.FAILED, err)
            raise err from e

        self._session = session
        if self.is_terminal:
            # hung up or failed while the session was being established
            await self._end_session()
        return self.state

    # -----------------------------
    # Provider events
    # -----------------------------
    async def dispatch(self, event: CallEvent) -> None:
        kind = CallEventType(event.type)

        if kind == CallEventType.MESSAGE:
            self.messages.append(event.payload)
        elif kind == CallEventType.CONNECTED:
            await self._on_connected()
        elif kind == CallEventType.DISCONNECTED:
            await self._on_disconnected()
        elif kind == CallEventType.ERROR:
            await self._on_error(event.payload)

    async def _on_connected(self) -> None:
        if self.is_terminal:
            logger.info(f"[call {self.lead_id}] ignoring connect after {self.state.value}")
            return
        if self.has_ever_connected:
            return

        self.has_ever_connected = True
        self.connected_at = _utcnow()
        self._transition(CallState.CONNECTED)

        try:
            await self.store.update(self.lead_id, {
                "status": LeadStatus.CALLING.value,
                "call_started_at": self.connected_at,
            })
        except LeadStoreError as e:
            logger.error(f"[call {self.lead_id}] failed to mark lead calling: {e}")

    async def _on_disconnected(self) -> None:
        if self.is_terminal:
            logger.info(f"[call {self.lead_id}] ignoring disconnect after {self.state.value}")
            return

        if not self.has_ever_connected:
            await self._finish(
                CallState.FAILED,
                SessionNeverConnected("Voice session closed before it connected"),
            )
            await self._end_session()
            return

        await self._finish(CallState.ENDED, None, persist_completion=True)
        await self._end_session()

    async def _on_error(self, payload: Any) -> None:
        if self.is_terminal:
            return
        message = payload.get("message") if isinstance(payload, dict) else payload
        await self._finish(CallState.FAILED, ProviderError(f"Voice provider error: {message or 'unknown'}"))
        await self._end_session()

    # -----------------------------
    # Local hang-up
    # -----------------------------
    async def end_call(self) -> Optional[CallOutcome]:
        """
        Hang up. The controller goes terminal before the provider is asked to
        close, so the provider's own disconnect event is ignored afterwards.
        """
        if self.is_terminal:
            return self.outcome

        await self._finish(
            CallState.ENDED,
            UserAborted("Call ended by user"),
            persist_completion=self.has_ever_connected,
        )
        await self._end_session()
        return self.outcome

    # -----------------------------
    # Terminal side effects
    # -----------------------------
    async def _finish(
        self,
        state: CallState,
        error: Optional[CallLifecycleError],
        persist_completion: bool = False,
    ) -> None:
        if self._finished:
            return
        self._finished = True
        self._transition(state)
        self.outcome = CallOutcome(self.lead_id, state, error)

        if error is not None:
            logger.warning(f"[call {self.lead_id}] {type(error).__name__}: {error}")

        if persist_completion:
            await self._persist_completion()
        await self._notify_complete()

    async def _persist_completion(self) -> None:
        ended_at = _utcnow()
        fields: Dict[str, Any] = {"call_ended_at": ended_at}
        if self.connected_at is not None:
            fields["call_duration_seconds"] = max(0, int((ended_at - self.connected_at).total_seconds()))

        try:
            lead = await self.store.require(self.lead_id)
            if LeadStatus(lead["status"]) not in TERMINAL_STATUSES:
                fields["status"] = LeadStatus.CALL_COMPLETED.value
            await self.store.update(self.lead_id, fields)
        except LeadStoreError as e:
            logger.error(f"[call {self.lead_id}] failed to record call completion: {e}")

    async def _notify_complete(self) -> None:
        if self.on_complete is None:
            return
        try:
            result = self.on_complete(self.outcome)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            logger.error(f"[call {self.lead_id}] completion callback failed: {e}")

    async def _end_session(self) -> None:
        session, self._session = self._session, None
        if session is None:
            return
        try:
            await self.provider.end(session)
        except Exception as e:
            logger.warning(f"[call {self.lead_id}] error ending voice session: {e}")

    def snapshot(self) -> Dict[str, Any]:
        return {
            "lead_id": self.lead_id,
            "agent_id": self.agent_id,
            "state": self.state.value,
            "has_ever_connected": self.has_ever_connected,
            "outcome": self.outcome.to_dict() if self.outcome else None,
            "messages": list(self.messages),
        }


# =============================================================================
# REGISTRY (one active call per lead)
# =============================================================================

class CallRegistry:
    def __init__(self) -> None:
        self._calls: Dict[str, CallLifecycleController] = {}

    def register(self, controller: CallLifecycleController) -> None:
        existing = self._calls.get(controller.lead_id)
        if existing is not None and not existing.is_terminal:
            raise CallAlreadyActive(controller.lead_id)
        self._calls[controller.lead_id] = controller

    def get(self, lead_id: str) -> Optional[CallLifecycleController]:
        return self._calls.get(lead_id)

    def active_count(self) -> int:
        return sum(1 for c in self._calls.values() if not c.is_terminal)

    async def end_all(self) -> int:
        active = [c for c in self._calls.values() if not c.is_terminal]
        for controller in active:
            await controller.end_call()
        return len(active)


call_registry = CallRegistry()
