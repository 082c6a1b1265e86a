from typing import Dict, Any, List, Literal, Optional
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from datetime import datetime, timezone
from enum import Enum


def utcnow() -> datetime:
    """Timezone-aware current time in UTC"""
    return datetime.now(timezone.utc)


class CamelModel(BaseModel):
    """Base model whose serialized form uses camelCase keys"""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class AgentStatus(str, Enum):
    """Agent status broadcast to a session room"""
    IDLE = "idle"
    LISTENING = "listening"
    THINKING = "thinking"
    SPEAKING = "speaking"


class TaskPriority(str, Enum):
    """Task priority levels"""
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class TaskStatus(str, Enum):
    """Task lifecycle status"""
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    DONE = "done"


OPEN_TASK_STATUSES = [TaskStatus.PENDING.value, TaskStatus.IN_PROGRESS.value]


class ConversationMessage(CamelModel):
    """One entry of a session's recent conversation"""
    role: Literal["user", "agent"]
    content: str
    timestamp: datetime = Field(default_factory=utcnow)


class SessionMemory(CamelModel):
    """Per-(user, session) memory record, persisted as-is"""
    session_id: str
    user_id: str
    recent_messages: List[ConversationMessage] = Field(default_factory=list)
    pending_tasks: int = 0
    upcoming_meetings: int = 0
    context: Dict[str, Any] = Field(default_factory=dict)
    last_updated: datetime = Field(default_factory=utcnow)
    created_at: datetime = Field(default_factory=utcnow)

    @property
    def key(self) -> str:
        return session_key(self.user_id, self.session_id)

    def to_document(self) -> Dict[str, Any]:
        """Serialize to the persisted layout"""
        return self.model_dump(mode="json", by_alias=True)

    def format_recent(self, limit: int = 5) -> str:
        """Render the last few messages as 'role: content' lines"""
        return "\n".join(f"{m.role}: {m.content}" for m in self.recent_messages[-limit:])


MEMORY_FIELDS = {"recent_messages", "pending_tasks", "upcoming_meetings", "context"}


def session_key(user_id: str, session_id: str) -> str:
    return f"{user_id}:{session_id}"


class AgentProfile(CamelModel):
    """Display identity and voice of a user's agent"""
    name: str
    avatar_url: Optional[str] = None
    voice_id: Optional[str] = None
