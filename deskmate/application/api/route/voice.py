"""Text-to-speech and speech-to-text endpoints; both degrade to text-only."""

from typing import Optional

import structlog
from fastapi import APIRouter, Depends, File, HTTPException, UploadFile, status

from deskmate.application.api.dependencies import get_current_user, get_services
from deskmate.application.container import Services
from deskmate.domain.errors import ConfigurationError, ExternalServiceError
from deskmate.domain.models.agent_state import CamelModel
from deskmate.infrastructure.services.speech import to_data_url

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api", tags=["voice"])

TTS_UNAVAILABLE_MESSAGE = "Voice not configured. Using text-only mode."
STT_UNAVAILABLE_MESSAGE = "Voice transcription not configured. Please use text input."


class SpeechRequest(CamelModel):
    text: Optional[str] = None
    voice_id: Optional[str] = None


def _unavailable(message: str) -> dict:
    return {"success": False, "voiceAvailable": False, "message": message}


@router.post("/tts")
async def text_to_speech(
    request: SpeechRequest,
    user_id: str = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    text = (request.text or "").strip()
    if not text:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No text provided")

    if not services.speech.available:
        return _unavailable(TTS_UNAVAILABLE_MESSAGE)

    try:
        audio = await services.speech.synthesize(text, request.voice_id)
    except ConfigurationError as e:
        return _unavailable(e.message)
    except ExternalServiceError as e:
        logger.error("Text-to-speech failed", error=e.message, details=e.details)
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail="Text-to-speech failed")

    return {
        "success": True,
        "voiceAvailable": True,
        "audioUrl": to_data_url(audio),
        "contentType": "audio/mpeg",
        "duration": services.speech.estimate_duration(text),
    }


@router.post("/stt")
async def speech_to_text(
    audio: Optional[UploadFile] = File(default=None),
    user_id: str = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    if audio is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No audio file provided")

    if not services.speech.available:
        return _unavailable(STT_UNAVAILABLE_MESSAGE)

    content = await audio.read()
    try:
        text = await services.speech.transcribe(
            content,
            filename=audio.filename or "audio.webm",
            content_type=audio.content_type or "audio/webm",
        )
    except ConfigurationError:
        return _unavailable(STT_UNAVAILABLE_MESSAGE)
    except ExternalServiceError as e:
        logger.error("Transcription failed", error=e.message, details=e.details)
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail="Transcription failed")

    return {"success": True, "voiceAvailable": True, "text": text}
