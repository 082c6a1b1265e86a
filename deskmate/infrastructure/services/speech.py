"""
Speech synthesis and transcription.

The ElevenLabs adapter talks REST through httpx. A missing API key is a
capability gap (ConfigurationError), never a hard failure for the caller.
"""

from abc import ABC, abstractmethod
from typing import Optional
import base64
import math

import httpx
import structlog

from deskmate.config import Settings
from deskmate.domain.errors import ConfigurationError, ExternalServiceError

logger = structlog.get_logger(__name__)

# ~150 spoken words per minute at ~4.5 characters per word
WORDS_PER_MINUTE = 150
CHARS_PER_WORD = 4.5


def estimate_duration(text: str) -> int:
    """Rough playback length of `text` in whole seconds"""
    words = len(text or "") / CHARS_PER_WORD
    return math.ceil(words / WORDS_PER_MINUTE * 60)


def to_data_url(audio: bytes, content_type: str = "audio/mpeg") -> str:
    return f"data:{content_type};base64,{base64.b64encode(audio).decode('ascii')}"


class SpeechService(ABC):
    """Text-to-speech and speech-to-text capability"""

    @property
    @abstractmethod
    def available(self) -> bool:
        """Whether the capability is configured"""

    @abstractmethod
    async def synthesize(self, text: str, voice_id: Optional[str] = None) -> bytes:
        ...

    @abstractmethod
    async def transcribe(self, audio: bytes, filename: str = "audio.webm", content_type: str = "audio/webm") -> str:
        ...

    def estimate_duration(self, text: str) -> int:
        return estimate_duration(text)


class ElevenLabsSpeechService(SpeechService):
    """ElevenLabs REST adapter"""

    def __init__(self, settings: Settings, client: Optional[httpx.AsyncClient] = None):
        self.settings = settings
        self._client = client

    @property
    def available(self) -> bool:
        return self.settings.voice_configured

    def _headers(self) -> dict:
        if not self.settings.elevenlabs_api_key:
            raise ConfigurationError("voice", "Voice not configured. Using text-only mode.")
        return {"xi-api-key": self.settings.elevenlabs_api_key}

    async def _post(self, url: str, **kwargs) -> httpx.Response:
        if self._client is not None:
            return await self._client.post(url, **kwargs)
        async with httpx.AsyncClient() as client:
            return await client.post(url, **kwargs)

    async def synthesize(self, text: str, voice_id: Optional[str] = None) -> bytes:
        headers = {**self._headers(), "Accept": "audio/mpeg", "Content-Type": "application/json"}
        voice = voice_id or self.settings.elevenlabs_voice_id
        url = f"{self.settings.elevenlabs_api_url}/text-to-speech/{voice}"

        payload = {
            "text": text,
            "model_id": self.settings.elevenlabs_tts_model_id,
            "voice_settings": {
                "stability": 0.65,
                "similarity_boost": 0.75,
                "style": 0.3,
                "use_speaker_boost": True,
            },
        }

        try:
            response = await self._post(url, json=payload, headers=headers, timeout=self.settings.speech_timeout_seconds)
        except httpx.HTTPError as e:
            logger.error("Speech synthesis request failed", voice_id=voice, error=str(e))
            raise ExternalServiceError("tts", "Text-to-speech request failed", {"error": str(e)}) from e

        if response.status_code >= 400:
            logger.error("Speech synthesis rejected", voice_id=voice, status=response.status_code, body=response.text[:500])
            raise ExternalServiceError("tts", "Text-to-speech failed", {"status": response.status_code})

        return response.content

    async def transcribe(self, audio: bytes, filename: str = "audio.webm", content_type: str = "audio/webm") -> str:
        headers = self._headers()
        url = f"{self.settings.elevenlabs_api_url}/speech-to-text"

        files = {"file": (filename or "audio.webm", audio, content_type or "audio/webm")}
        data = {
            "model_id": self.settings.elevenlabs_stt_model_id,
            "language_code": "en",
            "tag_audio_events": "false",
            "diarize": "false",
        }

        try:
            response = await self._post(url, files=files, data=data, headers=headers, timeout=self.settings.speech_timeout_seconds)
        except httpx.HTTPError as e:
            logger.error("Transcription request failed", error=str(e))
            raise ExternalServiceError("stt", "Transcription request failed", {"error": str(e)}) from e

        if response.status_code >= 400:
            logger.error("Transcription rejected", status=response.status_code, body=response.text[:500])
            raise ExternalServiceError("stt", "Transcription failed", {"status": response.status_code})

        return (response.json().get("text") or "").strip()
