# backend/leadqual/api/deps.py
"""Shared FastAPI dependencies. Tests swap these via app.dependency_overrides."""
from __future__ import annotations

from functools import lru_cache

from leadqual.agents.call_lifecycle import CallRegistry, call_registry
from leadqual.services.elevenlabs_service import ElevenLabsService
from leadqual.services.lead_store import LeadStore, lead_store
from leadqual.services.llm_gateway import LLMGateway
from leadqual.services.voice_session import ElevenLabsVoiceProvider, VoiceSessionProvider


def get_lead_store() -> LeadStore:
    return lead_store


def get_call_registry() -> CallRegistry:
    return call_registry


@lru_cache(maxsize=1)
def get_llm_gateway() -> LLMGateway:
    return LLMGateway()


@lru_cache(maxsize=1)
def get_elevenlabs_service() -> ElevenLabsService:
    return ElevenLabsService()


@lru_cache(maxsize=1)
def get_voice_provider() -> VoiceSessionProvider:
    return ElevenLabsVoiceProvider()
