import asyncio
import json

import httpx
import pytest

from deskmate.domain.errors import ConfigurationError, ExternalServiceError
from deskmate.infrastructure.services.speech import ElevenLabsSpeechService, estimate_duration, to_data_url


def _service(settings, handler):
    settings.elevenlabs_api_key = "test-key"
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return ElevenLabsSpeechService(settings, client=client)


def test_estimate_duration():
    assert estimate_duration("") == 0
    # 50 characters ~ 11 words ~ 4.4 seconds at 150 wpm
    assert estimate_duration("x" * 50) == 5


def test_to_data_url():
    assert to_data_url(b"abc") == "data:audio/mpeg;base64,YWJj"


def test_synthesize_posts_to_voice(settings):
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["key"] = request.headers["xi-api-key"]
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, content=b"mp3-bytes")

    service = _service(settings, handler)
    audio = asyncio.run(service.synthesize("Hello", "voice-1"))

    assert audio == b"mp3-bytes"
    assert seen["url"].endswith("/text-to-speech/voice-1")
    assert seen["key"] == "test-key"
    assert seen["body"]["text"] == "Hello"
    assert seen["body"]["model_id"] == settings.elevenlabs_tts_model_id


def test_synthesize_uses_default_voice(settings):
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        return httpx.Response(200, content=b"mp3")

    asyncio.run(_service(settings, handler).synthesize("Hello"))
    assert seen["url"].endswith(f"/text-to-speech/{settings.elevenlabs_voice_id}")


def test_synthesize_error_status(settings):
    service = _service(settings, lambda request: httpx.Response(401, json={"detail": "bad key"}))

    with pytest.raises(ExternalServiceError) as exc_info:
        asyncio.run(service.synthesize("Hello"))
    assert exc_info.value.service == "tts"


def test_transcribe(settings):
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["body"] = request.content
        return httpx.Response(200, json={"text": " call Sam tomorrow ", "language_code": "en"})

    text = asyncio.run(_service(settings, handler).transcribe(b"webm-bytes", "clip.webm", "audio/webm"))

    assert text == "call Sam tomorrow"
    assert seen["url"].endswith("/speech-to-text")
    assert b'name="model_id"' in seen["body"]
    assert b"webm-bytes" in seen["body"]


def test_transport_error_is_external_failure(settings):
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("unreachable", request=request)

    with pytest.raises(ExternalServiceError) as exc_info:
        asyncio.run(_service(settings, handler).transcribe(b"audio"))
    assert exc_info.value.service == "stt"


def test_unconfigured_voice(settings):
    service = ElevenLabsSpeechService(settings)

    assert not service.available
    with pytest.raises(ConfigurationError):
        asyncio.run(service.synthesize("Hello"))
