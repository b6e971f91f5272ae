from leadqual.services.elevenlabs_service import ElevenLabsService
from leadqual.services.lead_store import LeadStore, lead_store
from leadqual.services.llm_gateway import LLMGateway
from leadqual.services.voice_session import ElevenLabsVoiceProvider, VoiceSessionProvider

__all__ = [
    'ElevenLabsService',
    'LeadStore',
    'lead_store',
    'LLMGateway',
    'ElevenLabsVoiceProvider',
    'VoiceSessionProvider',
]
