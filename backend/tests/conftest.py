# backend/tests/conftest.py
import os

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["ELEVENLABS_API_KEY"] = "test-elevenlabs-key"
os.environ["ELEVENLABS_AGENT_ID"] = "agent_default"
os.environ["LLM_API_KEY"] = ""
os.environ["CALL_SETTLE_DELAY_SECONDS"] = "0"

from typing import Any, Dict, List, Optional
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from leadqual.agents.call_lifecycle import CallRegistry
from leadqual.api import deps
from leadqual.database import Base, get_db
from leadqual.main import app
from leadqual.services.lead_store import LeadStore
from leadqual.services.llm_gateway import LLMGateway
from leadqual.services.voice_session import CallEvent, CallEventType, VoiceSessionProvider


@pytest.fixture
def session_factory():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    yield factory
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def store(session_factory):
    return LeadStore(session_factory)


@pytest.fixture
def make_lead(store):
    """Insert a lead; returns the stored record."""

    async def _make(**overrides):
        fields = {
            "name": "Ada",
            "surname": "Lovelace",
            "email": "ada@example.com",
            "phone": "+14155550100",
            "website": "https://shop.example.com",
        }
        fields.update(overrides)
        return await store.insert(fields)

    return _make


class FakeSession:
    def __init__(self, signed_url: str, on_event, tools, client_data):
        self.signed_url = signed_url
        self.on_event = on_event
        self.tools = tools
        self.client_data = client_data
        self.closed = False


class FakeVoiceProvider(VoiceSessionProvider):
    """Records starts/ends; tests push events through `emit`."""

    def __init__(self, fail_start: Optional[Exception] = None):
        self.fail_start = fail_start
        self.sessions: List[FakeSession] = []
        self.end_calls = 0

    async def start(self, signed_url, on_event, tools, client_data=None):
        if self.fail_start is not None:
            raise self.fail_start
        session = FakeSession(signed_url, on_event, tools, client_data)
        self.sessions.append(session)
        return session

    async def end(self, session):
        self.end_calls += 1
        session.closed = True

    @property
    def session(self) -> FakeSession:
        return self.sessions[-1]

    async def emit(self, kind: CallEventType, payload: Any = None) -> None:
        await self.session.on_event(CallEvent(kind, payload))


@pytest.fixture
def provider():
    return FakeVoiceProvider()


@pytest.fixture
def failing_provider():
    return FakeVoiceProvider(fail_start=OSError("handshake failed"))


@pytest.fixture
def token_issuer():
    issuer = MagicMock()
    issuer.get_signed_url = AsyncMock(return_value="wss://voice.example.com/convai?token=abc")
    return issuer


@pytest.fixture
def gateway():
    gw = MagicMock(spec=LLMGateway)
    gw.complete_text = AsyncMock()
    gw.call_function = AsyncMock()
    return gw


@pytest.fixture
def registry():
    return CallRegistry()


@pytest.fixture
def client(session_factory, store, gateway, token_issuer, provider, registry):
    def _get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    overrides: Dict[Any, Any] = {
        get_db: _get_db,
        deps.get_lead_store: lambda: store,
        deps.get_llm_gateway: lambda: gateway,
        deps.get_elevenlabs_service: lambda: token_issuer,
        deps.get_voice_provider: lambda: provider,
        deps.get_call_registry: lambda: registry,
    }
    app.dependency_overrides.update(overrides)
    yield TestClient(app)
    app.dependency_overrides.clear()
