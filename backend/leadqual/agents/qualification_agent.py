# backend/leadqual/agents/qualification_agent.py
"""
Simulated qualification call.

Used when a lead is created without a live voice session: the lead is marked
as calling, the LLM gateway is asked to invent a plausible completed call for
the prospect, and the resulting profile and qualification data are written
back with a fixed call duration. When the gateway is unavailable or its
output cannot be parsed, a canned payload is used instead.
"""
from __future__ import annotations

import json
import re
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ValidationError

from leadqual.config import settings
from leadqual.models.lead import LeadStatus, status_for_score
from leadqual.services.lead_store import LeadStore
from leadqual.services.llm_gateway import LLMGateway, LLMGatewayError
from leadqual.utils.logger import logger


FALLBACK_QUALIFICATION: Dict[str, Any] = {
    "current_platform": "Shopify",
    "monthly_traffic": 15000,
    "monthly_orders": 650,
    "improvement_areas": ["Conversion optimization", "Analytics insights", "Personalization"],
    "implementation_timeline": "Within 2 months",
    "call_summary": (
        "Productive call with strong interest in analytics and conversion optimization. "
        "Currently using basic analytics and looking to upgrade."
    ),
    "key_insights": [
        "High traffic but lower conversion rate indicates optimization opportunity",
        "Currently using basic Shopify analytics, needs more depth",
        "Budget approved for Q1 implementation",
    ],
    "objections": ["Concerned about implementation timeline"],
    "qualification_result": "Qualified",
    "qualification_score": 85,
    "next_actions": [
        "Send detailed product demo",
        "Schedule follow-up with technical team",
        "Provide case studies from similar retailers",
    ],
    "meeting_scheduled": True,
}

SIMULATION_SYSTEM_PROMPT = (
    "You are a helpful AI that generates realistic sales qualification data in JSON format. "
    "Always respond with valid JSON only, no markdown or extra text."
)

_FENCE_RE = re.compile(r"```(?:json)?\n?")


def strip_code_fences(text: str) -> str:
    return _FENCE_RE.sub("", text or "").strip()


def build_qualification_prompt(lead: Dict[str, Any], product_name: str) -> str:
    full_name = f"{lead.get('name') or ''} {lead.get('surname') or ''}".strip()
    return f"""
You are an AI voice agent conducting a lead qualification call for {product_name}, a retail analytics platform.

Lead information:
- Name: {full_name}
- Email: {lead.get('email')}
- Website: {lead.get('website') or 'Not provided'}

Your task is to simulate a completed qualification call and provide structured output.

Qualification Criteria:
- Qualified if: 10,000+ monthly visits OR 500+ monthly orders, interested in analytics/CRO/personalization, timeline <= 3 months
- Score 70-100% = Qualified
- Score 40-69% = Potential
- Score 0-39% = Not Qualified

Generate realistic call data including:
1. Current platform (e.g., Shopify, WooCommerce, Custom)
2. Monthly traffic (number)
3. Monthly orders (number)
4. Improvement areas (array of 2-3 items)
5. Implementation timeline
6. Brief call summary (2-3 sentences)
7. Key insights (array of 3-4 items)
8. Objections if any (array of 0-2 items)
9. Qualification result (Qualified/Potential/Not Qualified)
10. Qualification score (0-100)
11. Next actions (array of 2-3 items)
12. Meeting scheduled (boolean)

Respond ONLY with valid JSON matching this exact structure:
{{
  "current_platform": "string",
  "monthly_traffic": number,
  "monthly_orders": number,
  "improvement_areas": ["string"],
  "implementation_timeline": "string",
  "call_summary": "string",
  "key_insights": ["string"],
  "objections": ["string"],
  "qualification_result": "string",
  "qualification_score": number,
  "next_actions": ["string"],
  "meeting_scheduled": boolean
}}"""


class QualificationData(BaseModel):
    current_platform: Optional[str] = None
    monthly_traffic: Optional[int] = None
    monthly_orders: Optional[int] = None
    improvement_areas: List[str] = []
    implementation_timeline: Optional[str] = None
    call_summary: str
    key_insights: List[str] = []
    objections: List[str] = []
    qualification_result: Optional[str] = None
    qualification_score: int
    next_actions: List[str] = []
    meeting_scheduled: bool = False


class QualificationAgent:
    def __init__(
        self,
        store: LeadStore,
        gateway: LLMGateway,
        call_duration_seconds: Optional[int] = None,
        meeting_offset_days: Optional[int] = None,
        product_name: Optional[str] = None,
    ):
        self.store = store
        self.gateway = gateway
        self.call_duration_seconds = (
            call_duration_seconds if call_duration_seconds is not None else settings.SIMULATED_CALL_DURATION_SECONDS
        )
        self.meeting_offset_days = (
            meeting_offset_days if meeting_offset_days is not None else settings.SIMULATED_MEETING_OFFSET_DAYS
        )
        self.product_name = product_name or settings.PRODUCT_NAME

    async def _generate(self, lead: Dict[str, Any]) -> Optional[QualificationData]:
        """Ask the gateway for simulated call data; None means use the fallback."""
        try:
            content = await self.gateway.complete_text(
                SIMULATION_SYSTEM_PROMPT,
                build_qualification_prompt(lead, self.product_name),
            )
        except LLMGatewayError as e:
            logger.error(f"Qualification simulation upstream error: {e}")
            return None

        try:
            return QualificationData.model_validate(json.loads(strip_code_fences(content)))
        except (json.JSONDecodeError, ValidationError) as e:
            logger.error(f"Failed to parse AI qualification response: {e}")
            return None

    async def run(self, lead_id: str) -> Dict[str, Any]:
        lead = await self.store.require(lead_id)

        await self.store.update(lead_id, {
            "status": LeadStatus.CALLING.value,
            "call_started_at": datetime.now(timezone.utc),
        })

        data = await self._generate(lead)
        mode = "ai"
        if data is None:
            data = QualificationData.model_validate(FALLBACK_QUALIFICATION)
            mode = "fallback"

        record = await self._save_results(lead_id, data)
        logger.info(
            f"Qualification simulated for lead {lead_id}: mode={mode} "
            f"score={data.qualification_score} status={record['status']}"
        )
        return {"success": True, "leadId": lead_id, "mode": mode, "lead": record}

    async def _save_results(self, lead_id: str, data: QualificationData) -> Dict[str, Any]:
        now = datetime.now(timezone.utc)
        score = max(0, min(100, data.qualification_score))

        fields = data.model_dump()
        fields.update({
            "status": status_for_score(score).value,
            "qualification_score": score,
            "call_ended_at": now,
            "call_duration_seconds": self.call_duration_seconds,
            "meeting_datetime": (
                (now + timedelta(days=self.meeting_offset_days)).isoformat()
                if data.meeting_scheduled
                else None
            ),
        })
        return await self.store.update(lead_id, fields)
