from typing import Dict, Any, Optional, List, Literal
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from datetime import datetime
from enum import Enum

from deskmate.domain.models.actions import ActionResult
from deskmate.domain.models.agent_state import AgentStatus, utcnow


class EventType(str, Enum):
    """Channel event types"""
    # client -> server
    JOIN_SESSION = "join:session"
    USER_MESSAGE = "user:message"
    USER_VOICE_START = "user:voice:start"
    USER_VOICE_END = "user:voice:end"
    # server -> client
    SESSION_JOINED = "session:joined"
    AGENT_STATUS = "agent:status"
    AGENT_TYPING = "agent:typing"
    AGENT_RESPONSE = "agent:response"
    VOICE_AUDIO = "voice:audio"
    ERROR = "error"


class ErrorCode(str, Enum):
    """Codes carried by error events"""
    INVALID_SESSION = "INVALID_SESSION"
    NOT_AUTHENTICATED = "NOT_AUTHENTICATED"
    PROCESSING_ERROR = "PROCESSING_ERROR"
    TURN_TIMEOUT = "TURN_TIMEOUT"
    INVALID_EVENT = "INVALID_EVENT"


class Payload(BaseModel):
    """Payloads travel with camelCase keys"""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


# Client payloads

class JoinSessionPayload(Payload):
    user_id: Optional[str] = None
    session_id: Optional[str] = None


class UserMessagePayload(Payload):
    text: Optional[str] = None
    session_id: Optional[str] = None
    voice_mode: bool = False


class VoiceStartPayload(Payload):
    session_id: Optional[str] = None


class VoiceEndPayload(Payload):
    session_id: Optional[str] = None
    transcript: Optional[str] = None


# Server payloads

class SessionJoinedPayload(Payload):
    session_id: str
    agent_name: str
    agent_avatar: Optional[str] = None


class StatusPayload(Payload):
    status: AgentStatus


class TypingPayload(Payload):
    is_typing: bool


class ResponsePayload(Payload):
    text: str
    message_id: str
    actions: List[ActionResult] = Field(default_factory=list)
    timestamp: datetime = Field(default_factory=utcnow)


class VoiceAudioPayload(Payload):
    audio_url: str
    duration: int
    timestamp: datetime = Field(default_factory=utcnow)


class ErrorPayload(Payload):
    code: ErrorCode
    message: str
    timestamp: datetime = Field(default_factory=utcnow)


class BaseEvent(BaseModel):
    """Envelope for every channel message: {"type": ..., "payload": {...}}"""
    type: EventType
    payload: Any = None

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class SessionJoinedEvent(BaseEvent):
    type: Literal[EventType.SESSION_JOINED] = EventType.SESSION_JOINED
    payload: SessionJoinedPayload


class StatusEvent(BaseEvent):
    type: Literal[EventType.AGENT_STATUS] = EventType.AGENT_STATUS
    payload: StatusPayload

    @classmethod
    def create(cls, status: AgentStatus) -> "StatusEvent":
        return cls(payload=StatusPayload(status=status))


class TypingEvent(BaseEvent):
    type: Literal[EventType.AGENT_TYPING] = EventType.AGENT_TYPING
    payload: TypingPayload

    @classmethod
    def create(cls, is_typing: bool) -> "TypingEvent":
        return cls(payload=TypingPayload(is_typing=is_typing))


class ResponseEvent(BaseEvent):
    type: Literal[EventType.AGENT_RESPONSE] = EventType.AGENT_RESPONSE
    payload: ResponsePayload


class VoiceAudioEvent(BaseEvent):
    type: Literal[EventType.VOICE_AUDIO] = EventType.VOICE_AUDIO
    payload: VoiceAudioPayload


class ErrorEvent(BaseEvent):
    """Error event"""
    type: Literal[EventType.ERROR] = EventType.ERROR
    payload: ErrorPayload

    @classmethod
    def create(cls, code: ErrorCode, message: str) -> "ErrorEvent":
        return cls(payload=ErrorPayload(code=code, message=message))


class ClientEvent(BaseModel):
    """Inbound envelope; payload is validated per type by the handler"""
    model_config = ConfigDict(extra="ignore")
    type: str
    payload: Dict[str, Any] = Field(default_factory=dict)
