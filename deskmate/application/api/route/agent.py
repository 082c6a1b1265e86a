"""REST endpoints for one-shot turns, digests and session housekeeping."""

from datetime import timedelta
from typing import Optional
import asyncio

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query, status

from deskmate.application.api.dependencies import get_current_user, get_services
from deskmate.application.container import Services
from deskmate.domain.errors import DeskmateError, ExternalServiceError, InvalidSessionError, ValidationError
from deskmate.domain.models.agent_state import CamelModel, session_key
from deskmate.domain.summary.summary_engine import resolve_summary_type
from deskmate.infrastructure.security.session_validator import verify_session

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/agent", tags=["agent"])


class ChatRequest(CamelModel):
    session_id: str
    text: str
    voice_mode: bool = False


def _session(user_id: str, session_id: str) -> str:
    try:
        return verify_session(user_id, session_id)[1]
    except InvalidSessionError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=e.message)


# REST endpoint for simple interactions
@router.post("/chat")
async def chat_endpoint(
    request: ChatRequest,
    user_id: str = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    """Run one turn outside the channel; shares the session's turn lock"""

    session_id = _session(user_id, request.session_id)
    text = request.text.strip()
    if not text:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No text provided")

    try:
        async with services.turns.locks.hold(session_key(user_id, session_id)):
            response = await asyncio.wait_for(
                services.pipeline.process(user_id, session_id, text, voice_mode=request.voice_mode),
                timeout=services.settings.turn_timeout_seconds
            )
    except asyncio.TimeoutError:
        logger.error("Chat turn timed out", user_id=user_id, session_id=session_id)
        raise HTTPException(status_code=status.HTTP_504_GATEWAY_TIMEOUT, detail="That took too long. Please try again.")
    except ExternalServiceError as e:
        logger.error("Chat turn failed upstream", service=e.service, error=e.message, details=e.details)
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail="Failed to process message")
    except DeskmateError as e:
        logger.error("Chat turn failed", error=e.message, code=e.code)
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Failed to process message")

    return {"success": True, **response.model_dump(mode="json", by_alias=True)}


@router.get("/summary")
async def get_summary(
    summary_type: Optional[str] = Query(default="daily", alias="type"),
    user_id: str = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    try:
        resolved = resolve_summary_type(summary_type)
    except ValidationError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=e.message)

    try:
        digest = await services.summaries.summarize(user_id, resolved)
    except DeskmateError as e:
        logger.error("Summary failed", summary_type=resolved.value, error=e.message)
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Failed to build summary")

    return {
        "success": True,
        "type": resolved.value,
        "summary": digest.model_dump(mode="json", by_alias=True),
        "text": digest.to_speech(),
    }


@router.delete("/sessions/{session_id}/memory")
async def clear_session_memory(
    session_id: str,
    user_id: str = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    """Forget the conversation and context of one session; counts are kept"""

    session_id = _session(user_id, session_id)
    try:
        memory = await services.memory.clear_memory(user_id, session_id)
    except DeskmateError as e:
        logger.error("Clearing memory failed", session_id=session_id, error=e.message)
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Failed to clear memory")

    return {"success": True, "memory": memory.model_dump(mode="json", by_alias=True)}


@router.post("/sessions/cleanup")
async def cleanup_sessions(
    max_age_hours: float = Query(default=24, gt=0, alias="maxAgeHours"),
    user_id: str = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    try:
        deleted = await services.memory.cleanup_old_sessions(user_id, timedelta(hours=max_age_hours))
    except DeskmateError as e:
        logger.error("Session cleanup failed", error=e.message)
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Failed to clean up sessions")

    return {"success": True, "deleted": deleted, "count": len(deleted)}
