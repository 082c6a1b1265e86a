"""
Turn lifecycle over the real-time channel.

Each session room moves idle -> thinking -> speaking -> idle per turn, or
idle -> listening while the user is recording. Any failure short-circuits
back to idle followed by an error event. Turns for the same session are
serialized; turns for different sessions run concurrently.
"""

from typing import Dict, Any, Optional, AsyncIterator
from contextlib import asynccontextmanager
import asyncio
import time
import structlog

from deskmate.application.websocket.connection_manager import ConnectionManager
from deskmate.application.websocket.schema.events import (
    BaseEvent, ErrorCode, ErrorEvent, JoinSessionPayload, ResponseEvent, ResponsePayload,
    SessionJoinedEvent, SessionJoinedPayload, StatusEvent, TypingEvent, UserMessagePayload,
    VoiceAudioEvent, VoiceAudioPayload, VoiceEndPayload
)
from deskmate.domain.errors import DeskmateError
from deskmate.domain.models.agent_state import AgentProfile, AgentStatus, session_key
from deskmate.domain.orchestration.core.main_agent import MessagePipeline, PipelineResponse
from deskmate.domain.records.repository import RecordRepository
from deskmate.infrastructure.observability.logging import agent_logger, metrics
from deskmate.infrastructure.security.session_validator import verify_session
from deskmate.infrastructure.services.speech import SpeechService, to_data_url

logger = structlog.get_logger(__name__)

PROCESSING_FAILED_MESSAGE = "Failed to process message"
TURN_TIMEOUT_MESSAGE = "That took too long. Please try again."


class SessionLocks:
    """One asyncio.Lock per key, dropped once nobody holds or waits for it"""

    def __init__(self):
        self._locks: Dict[str, asyncio.Lock] = {}
        self._users: Dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._users[key] = self._users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[key] -= 1
            if not self._users[key]:
                del self._users[key]
                del self._locks[key]

    def __contains__(self, key: str) -> bool:
        return key in self._locks


class TurnStreamingHandler:
    """Drives the agent status machine and streams turn events to session rooms"""

    def __init__(
        self,
        connection_manager: ConnectionManager,
        pipeline: MessagePipeline,
        records: RecordRepository,
        speech: Optional[SpeechService] = None,
        turn_timeout: float = 60.0,
        speech_timeout: float = 30.0,
    ):
        self.connection_manager = connection_manager
        self.pipeline = pipeline
        self.records = records
        self.speech = speech
        self.turn_timeout = turn_timeout
        self.speech_timeout = speech_timeout
        self.statuses: Dict[str, AgentStatus] = {}
        self.locks = SessionLocks()

    async def _emit(self, room: str, event: BaseEvent):
        await self.connection_manager.broadcast_to_room(room, event)

    async def set_status(self, room: str, status: AgentStatus, reason: Optional[str] = None):
        """Record and broadcast a status transition"""

        previous = self.statuses.get(room)
        if status == AgentStatus.IDLE:
            self.statuses.pop(room, None)
        else:
            self.statuses[room] = status

        agent_logger.log_turn_transition(
            room,
            previous.value if previous else AgentStatus.IDLE.value,
            status.value,
            reason=reason
        )
        await self._emit(room, StatusEvent.create(status))

    def get_status(self, room: str) -> AgentStatus:
        return self.statuses.get(room, AgentStatus.IDLE)

    async def _agent_profile(self, user_id: str) -> AgentProfile:
        try:
            return await self.records.get_agent_profile(user_id)
        except DeskmateError as e:
            logger.warning("Agent profile lookup failed, using default", user_id=user_id, error=e.message)
            return AgentProfile(name=self.records.default_agent_name)

    # Channel events

    async def handle_join(self, connection_id: str, payload: Dict[str, Any]):
        """Bind the connection to a session and announce the agent"""

        data = JoinSessionPayload.model_validate(payload or {})
        try:
            user_id, session_id = verify_session(data.user_id, data.session_id)
        except DeskmateError:
            await self.connection_manager.send_error(
                connection_id, ErrorCode.INVALID_SESSION, "userId and sessionId required"
            )
            return

        await self.connection_manager.bind(connection_id, user_id, session_id)
        agent = await self._agent_profile(user_id)

        await self.connection_manager.send_event(
            connection_id,
            SessionJoinedEvent(payload=SessionJoinedPayload(
                session_id=session_id,
                agent_name=agent.name,
                agent_avatar=agent.avatar_url
            ))
        )

    async def handle_user_message(self, connection_id: str, payload: Dict[str, Any], voice_mode: Optional[bool] = None):
        """Run one turn for a joined connection"""

        data = UserMessagePayload.model_validate(payload or {})
        binding = self.connection_manager.get_binding(connection_id)

        if binding is None or (data.session_id and data.session_id != binding[1]):
            await self.connection_manager.send_error(
                connection_id, ErrorCode.NOT_AUTHENTICATED, "Please join a session first"
            )
            return

        text = (data.text or "").strip()
        if not text:
            return

        user_id, session_id = binding
        await self.run_turn(user_id, session_id, text, data.voice_mode if voice_mode is None else voice_mode)

    async def handle_voice_start(self, connection_id: str, payload: Dict[str, Any]):
        room = self.connection_manager.get_room(connection_id)
        if room is None:
            await self.connection_manager.send_event(connection_id, StatusEvent.create(AgentStatus.LISTENING))
            return
        await self.set_status(room, AgentStatus.LISTENING, reason="voice_start")

    async def handle_voice_end(self, connection_id: str, payload: Dict[str, Any]):
        """A non-empty transcript is processed as a voice-mode message"""

        data = VoiceEndPayload.model_validate(payload or {})
        transcript = (data.transcript or "").strip()

        if transcript:
            await self.handle_user_message(
                connection_id,
                {"text": transcript, "sessionId": data.session_id},
                voice_mode=True
            )
            return

        room = self.connection_manager.get_room(connection_id)
        if room is None:
            await self.connection_manager.send_event(connection_id, StatusEvent.create(AgentStatus.IDLE))
            return
        await self.set_status(room, AgentStatus.IDLE, reason="empty_transcript")

    # Turn

    async def run_turn(self, user_id: str, session_id: str, text: str, voice_mode: bool = False) -> Optional[PipelineResponse]:
        """
        Process one message and stream its events to the session room.

        Event order: status thinking, typing on, typing off, response,
        status speaking, voice audio when synthesized, status idle. On failure:
        typing off, status idle, error.
        """

        room = session_key(user_id, session_id)

        async with self.locks.hold(room):
            with structlog.contextvars.bound_contextvars(user_id=user_id, session_id=session_id):
                return await self._run_turn_locked(room, user_id, session_id, text, voice_mode)

    async def _run_turn_locked(self, room: str, user_id: str, session_id: str, text: str, voice_mode: bool):
        started = time.perf_counter()

        await self.set_status(room, AgentStatus.THINKING, reason="user_message")
        await self._emit(room, TypingEvent.create(True))

        try:
            response = await asyncio.wait_for(
                self.pipeline.process(user_id, session_id, text, voice_mode=voice_mode),
                timeout=self.turn_timeout
            )
        except asyncio.TimeoutError:
            logger.error("Turn timed out", timeout=self.turn_timeout)
            metrics.increment_counter("turns.timed_out")
            await self._fail_turn(room, ErrorCode.TURN_TIMEOUT, TURN_TIMEOUT_MESSAGE)
            return None
        except Exception as e:
            logger.error("Message processing error", error=str(e), error_type=type(e).__name__)
            metrics.increment_counter("turns.failed")
            await self._fail_turn(room, ErrorCode.PROCESSING_ERROR, PROCESSING_FAILED_MESSAGE)
            return None

        await self._emit(room, TypingEvent.create(False))
        await self._emit(room, ResponseEvent(payload=ResponsePayload(
            text=response.text,
            message_id=response.message_id,
            actions=response.actions,
            timestamp=response.timestamp
        )))

        await self.set_status(room, AgentStatus.SPEAKING, reason="response")

        audio = await self._synthesize(user_id, response.voice_text or response.text)
        if audio is not None:
            await self._emit(room, audio)

        await self.set_status(room, AgentStatus.IDLE, reason="turn_complete")

        metrics.increment_counter("turns.completed")
        metrics.record_latency("turn", (time.perf_counter() - started) * 1000)
        return response

    async def _fail_turn(self, room: str, code: ErrorCode, message: str):
        await self._emit(room, TypingEvent.create(False))
        await self.set_status(room, AgentStatus.IDLE, reason=code.value)
        await self._emit(room, ErrorEvent.create(code, message))

    async def _synthesize(self, user_id: str, text: str) -> Optional[VoiceAudioEvent]:
        """Audio event for the reply, or None when speech is unavailable or fails"""

        if self.speech is None or not self.speech.available or not text:
            logger.debug("Speech synthesis skipped", configured=bool(self.speech and self.speech.available))
            return None

        try:
            agent = await self._agent_profile(user_id)
            audio = await asyncio.wait_for(
                self.speech.synthesize(text, agent.voice_id),
                timeout=self.speech_timeout
            )
        except asyncio.TimeoutError:
            logger.warning("Speech synthesis timed out", timeout=self.speech_timeout)
            return None
        except DeskmateError as e:
            logger.warning("Speech synthesis failed", error=e.message, code=e.code)
            return None
        except Exception as e:
            logger.warning("Speech synthesis failed", error=str(e), error_type=type(e).__name__)
            return None

        return VoiceAudioEvent(payload=VoiceAudioPayload(
            audio_url=to_data_url(audio),
            duration=self.speech.estimate_duration(text)
        ))
