# backend/leadqual/agents/transcript_agent.py
"""
Post-call transcript processing.

Sends the finished transcript to the LLM gateway with a forced
`extract_call_data` function call, then writes the summary, score, insights,
demo personalization and any booked meeting back onto the lead. The lead's
terminal status is refined from the score where the status guard allows it.
"""
from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, ValidationError

from leadqual.models.lead import (
    LeadStatus,
    can_transition,
    result_label_for_score,
    status_for_score,
)
from leadqual.services.lead_store import LeadStore
from leadqual.services.llm_gateway import LLMGateway, LLMGatewayError
from leadqual.utils.logger import logger


class TranscriptProcessingError(Exception):
    pass


class EmptyTranscript(TranscriptProcessingError):
    pass


class ExtractionFailed(TranscriptProcessingError):
    pass


EXTRACTION_SYSTEM_PROMPT = """You are an AI assistant analyzing sales call transcripts. Extract and structure the following information from the transcript:

1. Call Summary: A concise 2-3 sentence summary of the conversation
2. Qualification Score: A number from 0-100 representing how qualified the lead is (based on budget, authority, need, timeline)
3. Key Insights: An array of 3-5 bullet points about the prospect's business, pain points, and opportunities
4. Demo Personalization: Specific recommendations for personalizing the demo based on the conversation
5. Booked Meeting: If a meeting was scheduled, extract the date and time. Return null if no meeting was scheduled."""

EXTRACT_CALL_DATA = {
    "name": "extract_call_data",
    "description": "Extract structured data from the call transcript",
    "parameters": {
        "type": "object",
        "properties": {
            "call_summary": {"type": "string"},
            "qualification_score": {"type": "number", "minimum": 0, "maximum": 100},
            "key_insights": {"type": "array", "items": {"type": "string"}},
            "demo_personalization": {"type": "string"},
            "meeting_datetime": {"type": ["string", "null"]},
        },
        "required": [
            "call_summary",
            "qualification_score",
            "key_insights",
            "demo_personalization",
            "meeting_datetime",
        ],
        "additionalProperties": False,
    },
}


class CallExtraction(BaseModel):
    call_summary: str
    qualification_score: float = Field(allow_inf_nan=False)
    key_insights: List[str] = []
    demo_personalization: str = ""
    meeting_datetime: Optional[str] = None

    @property
    def score(self) -> int:
        return max(0, min(100, int(round(self.qualification_score))))


class TranscriptAgent:
    def __init__(self, store: LeadStore, gateway: LLMGateway):
        self.store = store
        self.gateway = gateway

    async def extract(self, transcript: str) -> CallExtraction:
        try:
            args = await self.gateway.call_function(
                EXTRACTION_SYSTEM_PROMPT,
                f"Analyze this sales call transcript:\n\n{transcript}",
                EXTRACT_CALL_DATA,
            )
        except LLMGatewayError as e:
            raise ExtractionFailed(str(e)) from e

        try:
            return CallExtraction.model_validate(args)
        except ValidationError as e:
            raise ExtractionFailed(f"Extracted call data was invalid: {e.errors()[:3]}") from e

    async def process(self, lead_id: str, transcript: str) -> Dict[str, Any]:
        """
        Extract qualification data from `transcript` and persist it.

        Raises EmptyTranscript, ExtractionFailed or LeadNotFound; nothing is
        written in any of those cases.
        """
        if not transcript or not transcript.strip():
            raise EmptyTranscript("Transcript is empty")

        lead = await self.store.require(lead_id)
        logger.info(f"Processing transcript for lead {lead_id} ({len(transcript)} chars)")

        data = await self.extract(transcript)
        score = data.score

        fields: Dict[str, Any] = {
            "transcript": transcript,
            "call_summary": data.call_summary,
            "qualification_score": score,
            "qualification_result": result_label_for_score(score),
            "key_insights": data.key_insights,
            "next_actions": [data.demo_personalization],
        }
        if data.meeting_datetime:
            fields["meeting_scheduled"] = True
            fields["meeting_datetime"] = data.meeting_datetime

        target = status_for_score(score)
        current = LeadStatus(lead["status"])
        if target != current and can_transition(current, target):
            fields["status"] = target.value
        elif target != current:
            logger.info(f"Lead {lead_id} keeps status {current.value}; score {score} suggests {target.value}")

        updated = await self.store.update(lead_id, fields)
        logger.info(f"Transcript processed for lead {lead_id}: score={score} status={updated['status']}")
        return updated

    async def save_raw_transcript(self, lead_id: str, transcript: str) -> Dict[str, Any]:
        return await self.store.update(lead_id, {"transcript": transcript})
