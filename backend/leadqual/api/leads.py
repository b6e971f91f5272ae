# backend/leadqual/api/leads.py
from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from leadqual.agents.call_lifecycle import CallRegistry
from leadqual.agents.qualification_agent import QualificationAgent
from leadqual.agents.transcript_agent import EmptyTranscript, ExtractionFailed, TranscriptAgent
from leadqual.api.deps import get_call_registry, get_lead_store, get_llm_gateway
from leadqual.models.lead import LeadStatus
from leadqual.services.lead_store import (
    InvalidFieldUpdate,
    InvalidStatusTransition,
    LeadNotFound,
    LeadStore,
    LeadStoreError,
)
from leadqual.services.llm_gateway import LLMGateway
from leadqual.utils.validators import normalize_website, validate_email, validate_phone_number


logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/leads", tags=["leads"])

# Maximum pagination limit to prevent DoS
MAX_PAGINATION_LIMIT = 500


class LeadCreate(BaseModel):
    name: Optional[str] = None
    surname: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    website: Optional[str] = None


class TranscriptIn(BaseModel):
    transcript: Optional[str] = None


def _contact_fields(payload: LeadCreate, require_surname: bool) -> Dict[str, Any]:
    name = (payload.name or "").strip()
    surname = (payload.surname or "").strip()
    email = (payload.email or "").strip()
    phone = (payload.phone or "").strip()

    required = {"name": name, "email": email, "phone": phone}
    if require_surname:
        required["surname"] = surname
    missing = [k for k, v in required.items() if not v]
    if missing:
        raise HTTPException(status_code=400, detail=f"Missing required fields: {', '.join(missing)}")

    ok, err = validate_email(email)
    if not ok:
        raise HTTPException(status_code=422, detail=err)

    ok, normalized_phone, err = validate_phone_number(phone)
    if not ok:
        raise HTTPException(status_code=422, detail=err)

    return {
        "name": name,
        "surname": surname,
        "email": email,
        "phone": normalized_phone,
        "website": normalize_website(payload.website),
        "status": LeadStatus.NEW.value,
    }


@router.get("")
@router.get("/")
async def list_leads(
    skip: int = 0,
    limit: int = 100,
    status: Optional[str] = None,
    store: LeadStore = Depends(get_lead_store),
):
    limit = min(limit, MAX_PAGINATION_LIMIT)
    if status:
        try:
            LeadStatus(status)
        except ValueError:
            raise HTTPException(status_code=422, detail=f"Unknown status: {status}")
    return await store.list(status=status, skip=skip, limit=limit)


@router.post("", status_code=201)
@router.post("/", status_code=201)
async def create_lead(
    payload: LeadCreate,
    store: LeadStore = Depends(get_lead_store),
    gateway: LLMGateway = Depends(get_llm_gateway),
):
    """
    Create a lead and immediately run a simulated qualification call.
    A failed simulation is reported in the response; the lead still exists.
    """
    fields = _contact_fields(payload, require_surname=False)
    try:
        lead = await store.insert(fields)
    except InvalidFieldUpdate as e:
        raise HTTPException(status_code=400, detail=str(e))
    except LeadStoreError as e:
        logger.exception("Lead create failed: %s", e)
        raise HTTPException(status_code=500, detail=str(e))

    try:
        call_data = await QualificationAgent(store, gateway).run(lead["id"])
    except Exception as e:
        logger.exception("Qualification call failed to start for lead %s: %s", lead["id"], e)
        return {
            "success": True,
            "message": "Lead created successfully, but qualification call failed to start",
            "lead": lead,
            "call_started": False,
            "call_error": str(e),
        }

    return {
        "success": True,
        "message": "Lead created and qualification call started successfully",
        "lead": lead,
        "call_started": True,
        "call_data": call_data,
    }


@router.post("/trigger")
async def trigger_call(payload: LeadCreate, store: LeadStore = Depends(get_lead_store)):
    """Create a lead for a live voice call started from the UI."""
    fields = _contact_fields(payload, require_surname=True)
    try:
        lead = await store.insert(fields)
    except LeadStoreError as e:
        raise HTTPException(status_code=400, detail=str(e))

    return {"success": True, "leadId": lead["id"], "message": "Lead created and call triggered"}


@router.get("/{lead_id}")
async def get_lead(lead_id: str, store: LeadStore = Depends(get_lead_store)):
    lead = await store.get(lead_id)
    if not lead:
        raise HTTPException(status_code=404, detail="Lead not found")
    return lead


@router.post("/{lead_id}/qualify")
async def start_qualification_call(
    lead_id: str,
    store: LeadStore = Depends(get_lead_store),
    gateway: LLMGateway = Depends(get_llm_gateway),
    registry: CallRegistry = Depends(get_call_registry),
):
    live = registry.get(lead_id)
    if live is not None and not live.is_terminal:
        raise HTTPException(status_code=409, detail=f"A live call is in progress for lead {lead_id}")

    try:
        return await QualificationAgent(store, gateway).run(lead_id)
    except LeadNotFound:
        raise HTTPException(status_code=404, detail="Lead not found")
    except InvalidStatusTransition as e:
        raise HTTPException(status_code=409, detail=str(e))
    except LeadStoreError as e:
        logger.exception("Qualification call failed for lead %s: %s", lead_id, e)
        raise HTTPException(status_code=500, detail=str(e))


@router.post("/{lead_id}/process-transcript")
async def process_transcript(
    lead_id: str,
    payload: TranscriptIn,
    store: LeadStore = Depends(get_lead_store),
    gateway: LLMGateway = Depends(get_llm_gateway),
):
    agent = TranscriptAgent(store, gateway)
    transcript = payload.transcript or ""

    try:
        lead = await agent.process(lead_id, transcript)
    except EmptyTranscript as e:
        raise HTTPException(status_code=422, detail=str(e))
    except LeadNotFound:
        raise HTTPException(status_code=404, detail="Lead not found")
    except ExtractionFailed as e:
        logger.error("Transcript extraction failed for lead %s: %s", lead_id, e)
        try:
            await agent.save_raw_transcript(lead_id, transcript)
        except LeadStoreError as save_err:
            logger.exception("Could not save raw transcript for lead %s: %s", lead_id, save_err)
            raise HTTPException(status_code=500, detail=str(save_err))
        raise HTTPException(
            status_code=502,
            detail={"error": str(e), "transcript_saved": True},
        )
    except LeadStoreError as e:
        logger.exception("Transcript processing failed for lead %s: %s", lead_id, e)
        raise HTTPException(status_code=500, detail=str(e))

    return {"success": True, "data": lead}
