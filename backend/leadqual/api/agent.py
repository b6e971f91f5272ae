# backend/leadqual/api/agent.py
"""
Signed conversation URLs for the browser voice client.
"""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from leadqual.api.deps import get_elevenlabs_service
from leadqual.services.elevenlabs_service import ElevenLabsError, ElevenLabsService
from leadqual.utils.logger import logger

router = APIRouter(prefix="/api/agent", tags=["agent"])


class SignedUrlRequest(BaseModel):
    agentId: Optional[str] = None


@router.post("/signed-url")
async def get_agent_url(
    request: SignedUrlRequest,
    service: ElevenLabsService = Depends(get_elevenlabs_service),
):
    try:
        signed_url = await service.get_signed_url(request.agentId or "")
    except (ValueError, ElevenLabsError) as e:
        logger.error(f"get-agent-url failed: {e}")
        raise HTTPException(status_code=400, detail=str(e))
    return {"signedUrl": signed_url}
