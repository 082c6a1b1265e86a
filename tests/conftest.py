import asyncio
import json
from datetime import datetime, timezone
from typing import List, Optional

import pytest
from fastapi.testclient import TestClient

from deskmate.application.container import build_services
from deskmate.application.websocket.ws_server import create_app
from deskmate.config import Settings
from deskmate.domain.context.memory.cache_memory_store import SessionCache
from deskmate.domain.context.memory.session_memory import SessionMemoryStore
from deskmate.domain.orchestration.core.main_agent import MessagePipeline
from deskmate.domain.orchestration.dispatch.action_dispatcher import ActionDispatcher
from deskmate.domain.records.repository import RecordRepository
from deskmate.domain.summary.summary_engine import SummaryEngine
from deskmate.infrastructure.services.completion import CompletionService
from deskmate.infrastructure.services.speech import SpeechService
from deskmate.infrastructure.storage import InMemoryDocumentStore

# Monday
FIXED_NOW = datetime(2024, 1, 15, 10, 0, tzinfo=timezone.utc)


def fixed_clock() -> datetime:
    return FIXED_NOW


class ScriptedCompletion(CompletionService):
    """Returns queued replies in order, then a plain chat reply"""

    def __init__(self, replies: Optional[list] = None, delay: float = 0.0, error: Optional[Exception] = None):
        self.replies = list(replies or [])
        self.delay = delay
        self.error = error
        self.calls: List[dict] = []
        self.active = 0
        self.max_active = 0

    async def complete(self, messages, system_prompt=None) -> str:
        self.calls.append({"messages": list(messages), "system_prompt": system_prompt})
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            if self.error is not None:
                raise self.error
        finally:
            self.active -= 1

        if self.replies:
            reply = self.replies.pop(0)
            return reply if isinstance(reply, str) else json.dumps(reply)
        return json.dumps({"reply": "Happy to help.", "action": None})


class FakeSpeech(SpeechService):
    def __init__(self, available: bool = True, audio: bytes = b"ID3-audio", error: Optional[Exception] = None):
        self._available = available
        self.audio = audio
        self.error = error
        self.synthesized: List[tuple] = []
        self.transcript = "remind me to call Sam"

    @property
    def available(self) -> bool:
        return self._available

    async def synthesize(self, text, voice_id=None) -> bytes:
        self.synthesized.append((text, voice_id))
        if self.error is not None:
            raise self.error
        return self.audio

    async def transcribe(self, audio, filename="audio.webm", content_type="audio/webm") -> str:
        return self.transcript


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        log_format="console",
        log_level="WARNING",
        storage_backend="memory",
        google_ai_api_key=None,
        elevenlabs_api_key=None,
        turn_timeout_seconds=2.0,
        speech_timeout_seconds=1.0,
        maintenance_interval_seconds=3600,
    )


@pytest.fixture
def store() -> InMemoryDocumentStore:
    return InMemoryDocumentStore()


@pytest.fixture
def records(store) -> RecordRepository:
    return RecordRepository(store)


@pytest.fixture
def memory_store(store, records) -> SessionMemoryStore:
    return SessionMemoryStore(store, cache=SessionCache(clock=fixed_clock), records=records, clock=fixed_clock)


@pytest.fixture
def summaries(records) -> SummaryEngine:
    return SummaryEngine(records, clock=fixed_clock)


@pytest.fixture
def dispatcher(records, summaries) -> ActionDispatcher:
    return ActionDispatcher(records, summaries, clock=fixed_clock)


@pytest.fixture
def completion() -> ScriptedCompletion:
    return ScriptedCompletion()


@pytest.fixture
def pipeline(memory_store, completion, dispatcher, records) -> MessagePipeline:
    return MessagePipeline(memory_store, completion, dispatcher, records, clock=fixed_clock)


@pytest.fixture
def speech() -> FakeSpeech:
    return FakeSpeech()


@pytest.fixture
def services(settings, store, completion, speech):
    return build_services(settings, store=store, completion=completion, speech=speech)


@pytest.fixture
def client(services):
    app = create_app(services=services)
    with TestClient(app) as test_client:
        yield test_client
