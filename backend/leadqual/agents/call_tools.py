# backend/leadqual/agents/call_tools.py
"""
Tools the voice agent can invoke mid-call to write back into the CRM.

Each tool is an independent record write that returns a short acknowledgement
string; the provider relays it to the agent as the tool result.
"""
from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from leadqual.models.lead import LeadStatus, QUALIFICATION_FIELDS
from leadqual.services.lead_store import LeadStore, LeadStoreError
from leadqual.services.voice_session import ToolHandler
from leadqual.utils.logger import logger


class ToolCallError(ValueError):
    """Invalid tool arguments."""


def _string_list(value: Any, name: str) -> Optional[List[str]]:
    if value is None:
        return None
    if isinstance(value, str):
        return [value]
    if not isinstance(value, list):
        raise ToolCallError(f"{name} must be a list of strings")
    return [str(v) for v in value]


def _required_string(params: Dict[str, Any], name: str) -> str:
    value = params.get(name)
    if value is None:
        value = ""
    if not isinstance(value, str):
        raise ToolCallError(f"{name} must be a string")
    value = value.strip()
    if not value:
        raise ToolCallError(f"{name} is required")
    return value


class CallTools:
    def __init__(self, store: LeadStore, lead_id: str):
        self.store = store
        self.lead_id = lead_id

    async def update_lead_status(self, params: Dict[str, Any]) -> str:
        status = params.get("status")
        try:
            status = LeadStatus(status).value
        except ValueError:
            raise ToolCallError(f"Unknown status: {status!r}")

        extra = params.get("data") or params.get("extraFields") or {}
        if not isinstance(extra, dict):
            raise ToolCallError("data must be an object")
        rejected = set(extra) - QUALIFICATION_FIELDS
        if rejected:
            raise ToolCallError(f"Fields not writable from a call: {', '.join(sorted(rejected))}")

        logger.info(f"[tool] updateLeadStatus lead_id={self.lead_id} status={status}")
        await self.store.update(self.lead_id, {**extra, "status": status})
        return "Status updated successfully"

    async def schedule_demo(self, params: Dict[str, Any]) -> str:
        when = _required_string(params, "datetime")
        try:
            datetime.fromisoformat(when.replace("Z", "+00:00"))
        except ValueError:
            raise ToolCallError(f"datetime is not ISO-8601: {when!r}")

        logger.info(f"[tool] scheduleDemo lead_id={self.lead_id} datetime={when}")
        await self.store.update(self.lead_id, {
            "meeting_scheduled": True,
            "meeting_datetime": when,
        })
        return "Demo scheduled successfully"

    async def save_call_summary(self, params: Dict[str, Any]) -> str:
        summary = _required_string(params, "summary")

        fields: Dict[str, Any] = {"call_summary": summary}
        for param, column in (
            ("insights", "key_insights"),
            ("objections", "objections"),
            ("next_actions", "next_actions"),
        ):
            values = _string_list(params.get(param), param)
            if values is not None:
                fields[column] = values

        logger.info(f"[tool] saveCallSummary lead_id={self.lead_id} fields={sorted(fields)}")
        await self.store.update(self.lead_id, fields)
        return "Call summary saved"

    def as_client_tools(self) -> Dict[str, ToolHandler]:
        return {
            "updateLeadStatus": self.update_lead_status,
            "scheduleDemo": self.schedule_demo,
            "saveCallSummary": self.save_call_summary,
        }

    async def invoke(self, name: str, params: Dict[str, Any]) -> Dict[str, Any]:
        """
        Run a tool by name, catching failures so they never abort a call.
        Returns {"result": str, "is_error": bool}.
        """
        handler = self.as_client_tools().get(name)
        if handler is None:
            logger.warning(f"[tool] unknown tool {name!r} for lead_id={self.lead_id}")
            return {"result": f"Unknown tool: {name}", "is_error": True}
        try:
            return {"result": await handler(params or {}), "is_error": False}
        except (ToolCallError, LeadStoreError) as e:
            logger.error(f"[tool] {name} failed for lead_id={self.lead_id}: {e}")
            return {"result": f"Tool {name} failed: {e}", "is_error": True}
