from leadqual.agents.call_lifecycle import CallLifecycleController, CallRegistry, call_registry
from leadqual.agents.call_tools import CallTools
from leadqual.agents.qualification_agent import QualificationAgent
from leadqual.agents.transcript_agent import TranscriptAgent

__all__ = [
    'CallLifecycleController',
    'CallRegistry',
    'call_registry',
    'CallTools',
    'QualificationAgent',
    'TranscriptAgent',
]
