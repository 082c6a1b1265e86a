"""
Service wiring.

Everything the channel and REST surfaces need is constructed once here and
hung off ``app.state.services``; tests build their own ``Services`` with fakes.
"""

from dataclasses import dataclass
from typing import Optional
from datetime import timedelta
import structlog

from deskmate.config import Settings
from deskmate.application.websocket.connection_manager import ConnectionManager
from deskmate.domain.context.memory.cache_memory_store import SessionCache
from deskmate.domain.context.memory.session_memory import SessionMemoryStore
from deskmate.domain.orchestration.core.main_agent import MessagePipeline
from deskmate.domain.orchestration.dispatch.action_dispatcher import ActionDispatcher
from deskmate.domain.records.repository import RecordRepository
from deskmate.domain.streaming.streaming_handler import TurnStreamingHandler
from deskmate.domain.summary.summary_engine import SummaryEngine
from deskmate.infrastructure.services.completion import CompletionService, GeminiCompletionService
from deskmate.infrastructure.services.speech import ElevenLabsSpeechService, SpeechService
from deskmate.infrastructure.storage import DocumentStore, create_document_store

logger = structlog.get_logger(__name__)


@dataclass
class Services:
    settings: Settings
    store: DocumentStore
    cache: SessionCache
    records: RecordRepository
    memory: SessionMemoryStore
    summaries: SummaryEngine
    dispatcher: ActionDispatcher
    completion: CompletionService
    speech: SpeechService
    pipeline: MessagePipeline
    connections: ConnectionManager
    turns: TurnStreamingHandler

    async def run_maintenance(self):
        """One housekeeping pass: stale connections and idle cache entries"""

        stale = await self.connections.sweep_stale(timedelta(seconds=self.settings.stale_connection_seconds))
        evicted = await self.memory.evict_idle(timedelta(seconds=self.settings.cache_idle_seconds))
        if stale or evicted:
            logger.info("Maintenance pass", stale_connections=len(stale), evicted_sessions=len(evicted))

    async def shutdown(self):
        await self.connections.close_all()
        await self.cache.clear()
        await self.store.close()


def build_services(
    settings: Settings,
    store: Optional[DocumentStore] = None,
    completion: Optional[CompletionService] = None,
    speech: Optional[SpeechService] = None,
) -> Services:
    """Construct the service graph; any collaborator can be supplied instead"""

    store = store or create_document_store(settings)
    cache = SessionCache(enabled=settings.session_cache_enabled)
    records = RecordRepository(store, default_agent_name=settings.default_agent_name)

    memory = SessionMemoryStore(
        store,
        cache=cache,
        max_recent_messages=settings.max_recent_messages,
        records=records,
    )
    summaries = SummaryEngine(records, timezone_name=settings.timezone)
    dispatcher = ActionDispatcher(records, summaries, timezone_name=settings.timezone)

    completion = completion or GeminiCompletionService(settings)
    speech = speech or ElevenLabsSpeechService(settings)

    pipeline = MessagePipeline(
        memory,
        completion,
        dispatcher,
        records,
        timezone_name=settings.timezone,
    )

    connections = ConnectionManager()
    turns = TurnStreamingHandler(
        connections,
        pipeline,
        records,
        speech=speech,
        turn_timeout=settings.turn_timeout_seconds,
        speech_timeout=settings.speech_timeout_seconds,
    )

    logger.info(
        "Services initialized",
        storage=type(store).__name__,
        cache_enabled=cache.enabled,
        voice_available=speech.available,
    )

    return Services(
        settings=settings,
        store=store,
        cache=cache,
        records=records,
        memory=memory,
        summaries=summaries,
        dispatcher=dispatcher,
        completion=completion,
        speech=speech,
        pipeline=pipeline,
        connections=connections,
        turns=turns,
    )
