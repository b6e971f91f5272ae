# backend/leadqual/api/calls.py
from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, Depends, HTTPException
from pydantic import BaseModel

from leadqual.agents.call_lifecycle import (
    CallAlreadyActive,
    CallLifecycleController,
    CallOutcome,
    CallRegistry,
    ProviderError,
    TokenFetchFailed,
)
from leadqual.agents.call_tools import CallTools
from leadqual.api.deps import (
    get_call_registry,
    get_elevenlabs_service,
    get_lead_store,
    get_voice_provider,
)
from leadqual.config import settings
from leadqual.models.lead import LeadStatus, TERMINAL_STATUSES
from leadqual.services.elevenlabs_service import ElevenLabsService
from leadqual.services.lead_store import LeadStore
from leadqual.services.voice_session import VoiceSessionProvider
from leadqual.utils.logger import logger


router = APIRouter(prefix="/api/calls", tags=["calls"])


class StartCallRequest(BaseModel):
    agentId: Optional[str] = None


def _client_data(lead: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "lead_id": lead["id"],
        "lead_name": f"{lead.get('name') or ''} {lead.get('surname') or ''}".strip(),
        "lead_email": lead.get("email") or "",
        "lead_website": lead.get("website") or "",
        "product_name": settings.PRODUCT_NAME,
    }


def _log_outcome(outcome: CallOutcome) -> None:
    if outcome.error is None:
        logger.info(f"Call finished for lead {outcome.lead_id}: {outcome.state.value}")
    else:
        logger.warning(
            f"Call finished for lead {outcome.lead_id}: {outcome.state.value} ({outcome.error_type}: {outcome.error})"
        )


@router.post("/{lead_id}/start")
async def start_call(
    lead_id: str,
    request: Optional[StartCallRequest] = Body(None),
    store: LeadStore = Depends(get_lead_store),
    registry: CallRegistry = Depends(get_call_registry),
    token_issuer: ElevenLabsService = Depends(get_elevenlabs_service),
    provider: VoiceSessionProvider = Depends(get_voice_provider),
):
    lead = await store.get(lead_id)
    if not lead:
        raise HTTPException(status_code=404, detail="Lead not found")
    if LeadStatus(lead["status"]) in TERMINAL_STATUSES:
        raise HTTPException(status_code=409, detail=f"Lead call already finished ({lead['status']})")

    agent_id = ((request.agentId if request else None) or settings.ELEVENLABS_AGENT_ID or "").strip()
    if not agent_id:
        raise HTTPException(status_code=400, detail="Agent ID is required")

    controller = CallLifecycleController(
        lead_id,
        agent_id,
        store=store,
        token_issuer=token_issuer,
        provider=provider,
        on_complete=_log_outcome,
        settle_delay=settings.CALL_SETTLE_DELAY_SECONDS,
        client_data=_client_data(lead),
    )
    try:
        registry.register(controller)
    except CallAlreadyActive as e:
        raise HTTPException(status_code=409, detail=str(e))

    try:
        await controller.start()
    except (TokenFetchFailed, ProviderError) as e:
        raise HTTPException(status_code=502, detail=str(e))

    return controller.snapshot()


@router.post("/{lead_id}/end")
async def end_call(lead_id: str, registry: CallRegistry = Depends(get_call_registry)):
    controller = registry.get(lead_id)
    if controller is None:
        raise HTTPException(status_code=404, detail="No call for this lead")
    await controller.end_call()
    return controller.snapshot()


@router.get("/{lead_id}")
async def get_call(lead_id: str, registry: CallRegistry = Depends(get_call_registry)):
    controller = registry.get(lead_id)
    if controller is None:
        raise HTTPException(status_code=404, detail="No call for this lead")
    return controller.snapshot()


@router.post("/{lead_id}/tools/{tool_name}")
async def invoke_tool(
    lead_id: str,
    tool_name: str,
    params: Optional[Dict[str, Any]] = Body(None),
    store: LeadStore = Depends(get_lead_store),
):
    """Server-side tool webhook; same tool table the live session uses."""
    if not await store.get(lead_id):
        raise HTTPException(status_code=404, detail="Lead not found")
    return await CallTools(store, lead_id).invoke(tool_name, params or {})
