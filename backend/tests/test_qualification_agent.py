# backend/tests/test_qualification_agent.py
import json
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

import pytest

from leadqual.agents.qualification_agent import (
    FALLBACK_QUALIFICATION,
    QualificationAgent,
    build_qualification_prompt,
    strip_code_fences,
)
from leadqual.services.lead_store import LeadNotFound
from leadqual.services.llm_gateway import LLMGatewayError


def _simulated(**overrides):
    data = {
        "current_platform": "WooCommerce",
        "monthly_traffic": 4000,
        "monthly_orders": 120,
        "improvement_areas": ["Analytics insights"],
        "implementation_timeline": "6 months",
        "call_summary": "Small store, early stage.",
        "key_insights": ["Low traffic"],
        "objections": [],
        "qualification_result": "Not Qualified",
        "qualification_score": 35,
        "next_actions": ["Nurture by email"],
        "meeting_scheduled": False,
    }
    data.update(overrides)
    return data


class TestHelpers:
    def test_strip_code_fences(self):
        assert strip_code_fences('```json\n{"a": 1}\n```') == '{"a": 1}'
        assert strip_code_fences('```\n{"a": 1}```') == '{"a": 1}'
        assert strip_code_fences('{"a": 1}') == '{"a": 1}'

    def test_prompt_mentions_lead_and_product(self):
        prompt = build_qualification_prompt(
            {"name": "Ada", "surname": "Lovelace", "email": "ada@example.com", "website": None},
            "CommerceClarity",
        )
        assert "CommerceClarity" in prompt
        assert "Ada Lovelace" in prompt
        assert "Website: Not provided" in prompt


class TestQualificationAgent:
    @pytest.mark.asyncio
    async def test_upstream_failure_uses_fallback(self, store, make_lead, gateway):
        lead = await make_lead()
        gateway.complete_text = AsyncMock(side_effect=LLMGatewayError("AI API error: 503"))

        before = datetime.now(timezone.utc)
        result = await QualificationAgent(store, gateway).run(lead["id"])

        record = result["lead"]
        assert result["mode"] == "fallback"
        assert record["status"] == "qualified"
        assert record["qualification_score"] == 85
        assert record["current_platform"] == FALLBACK_QUALIFICATION["current_platform"]
        assert record["key_insights"] == FALLBACK_QUALIFICATION["key_insights"]
        assert record["call_duration_seconds"] == 180
        assert record["call_started_at"] is not None
        assert record["call_ended_at"] is not None
        assert record["meeting_scheduled"] is True

        meeting = datetime.fromisoformat(record["meeting_datetime"])
        assert before + timedelta(days=6) < meeting < before + timedelta(days=8)

    @pytest.mark.asyncio
    async def test_unparseable_output_uses_fallback(self, store, make_lead, gateway):
        lead = await make_lead()
        gateway.complete_text = AsyncMock(return_value="Sure! Here is the data you asked for.")

        result = await QualificationAgent(store, gateway).run(lead["id"])

        assert result["mode"] == "fallback"
        assert result["lead"]["qualification_score"] == 85

    @pytest.mark.asyncio
    async def test_ai_output_is_persisted(self, store, make_lead, gateway):
        lead = await make_lead()
        gateway.complete_text = AsyncMock(return_value=f"```json\n{json.dumps(_simulated())}\n```")

        result = await QualificationAgent(store, gateway).run(lead["id"])

        record = result["lead"]
        assert result["mode"] == "ai"
        assert record["status"] == "not_qualified"
        assert record["current_platform"] == "WooCommerce"
        assert record["monthly_orders"] == 120
        assert record["meeting_scheduled"] is False
        assert record["meeting_datetime"] is None

    @pytest.mark.asyncio
    async def test_potential_score_completes_call(self, store, make_lead, gateway):
        lead = await make_lead()
        gateway.complete_text = AsyncMock(
            return_value=json.dumps(_simulated(qualification_score=55, qualification_result="Potential"))
        )

        result = await QualificationAgent(store, gateway).run(lead["id"])

        assert result["lead"]["status"] == "call_completed"

    @pytest.mark.asyncio
    async def test_custom_duration_and_offset(self, store, make_lead, gateway):
        lead = await make_lead()
        gateway.complete_text = AsyncMock(side_effect=LLMGatewayError("down"))

        agent = QualificationAgent(store, gateway, call_duration_seconds=60, meeting_offset_days=1)
        result = await agent.run(lead["id"])

        assert result["lead"]["call_duration_seconds"] == 60

    @pytest.mark.asyncio
    async def test_unknown_lead(self, store, gateway):
        with pytest.raises(LeadNotFound):
            await QualificationAgent(store, gateway).run("no-such-lead")
