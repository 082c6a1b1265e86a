"""
Per-session conversational memory.

The document store holds the authoritative record; the SessionCache only ever
mirrors what a successful write left there. Every record handed out is a fresh
copy.
"""

from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

import structlog
from pydantic.alias_generators import to_camel

from deskmate.domain.context.memory.cache_memory_store import SessionCache
from deskmate.domain.errors import ValidationError
from deskmate.domain.models.agent_state import (
    MEMORY_FIELDS,
    OPEN_TASK_STATUSES,
    ConversationMessage,
    SessionMemory,
    session_key,
    utcnow,
)
from deskmate.domain.records.repository import RecordRepository
from deskmate.domain.scheduling.date_parser import parse_timestamp
from deskmate.infrastructure.observability.logging import agent_logger
from deskmate.infrastructure.storage.base import Collections, DocumentStore, user_collection

logger = structlog.get_logger(__name__)

DEFAULT_MAX_RECENT_MESSAGES = 20
DEFAULT_SESSION_MAX_AGE = timedelta(days=1)

_CAMEL_FIELDS = {to_camel(name): name for name in MEMORY_FIELDS}


class SessionMemoryStore:
    """Read-through, write-through session memory"""

    def __init__(
        self,
        store: DocumentStore,
        cache: Optional[SessionCache] = None,
        max_recent_messages: int = DEFAULT_MAX_RECENT_MESSAGES,
        records: Optional[RecordRepository] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.cache = cache if cache is not None else SessionCache(enabled=False)
        self.max_recent_messages = max_recent_messages
        self.records = records or RecordRepository(store)
        self.clock = clock

    @staticmethod
    def _collection(user_id: str) -> str:
        return user_collection(user_id, Collections.SESSIONS)

    async def get_memory(self, user_id: str, session_id: str) -> SessionMemory:
        """Cached record, else the persisted one, else a freshly created default"""

        key = session_key(user_id, session_id)

        cached = await self.cache.get(key)
        if cached is not None:
            return SessionMemory.model_validate(cached)

        data = await self.store.get(self._collection(user_id), session_id)
        if data is not None:
            memory = SessionMemory.model_validate({**data, "userId": user_id, "sessionId": session_id})
        else:
            now = self.clock()
            memory = SessionMemory(user_id=user_id, session_id=session_id, last_updated=now, created_at=now)
            await self.store.set(self._collection(user_id), session_id, memory.to_document())
            agent_logger.log_memory_update(session_id, "created", {"user_id": user_id})

        await self.cache.set(key, memory.to_document())
        return memory

    def _normalize(self, partial: Dict[str, Any]) -> Dict[str, Any]:
        updates = {}
        for name, value in partial.items():
            field = _CAMEL_FIELDS.get(name, name)
            if field not in MEMORY_FIELDS:
                raise ValidationError(f"Unknown session memory field: {name}", {"field": name})
            updates[field] = value
        return updates

    async def update_memory(self, user_id: str, session_id: str, partial: Dict[str, Any]) -> SessionMemory:
        """
        Merge `partial` into the session and stamp last_updated.

        The cache is refreshed only after the persistent write succeeded; a
        StorageError from the store leaves it exactly as it was.
        """

        updates = self._normalize(partial)
        current = await self.get_memory(user_id, session_id)

        merged = SessionMemory.model_validate({
            **current.model_dump(),
            **updates,
            "last_updated": self.clock(),
        })

        document = merged.to_document()
        changes = {to_camel(field): document[to_camel(field)] for field in updates}
        changes["lastUpdated"] = document["lastUpdated"]

        await self.store.update(self._collection(user_id), session_id, changes)
        await self.cache.set(merged.key, document)

        agent_logger.log_memory_update(session_id, "updated", {"fields": sorted(updates)})
        return merged

    async def clear_memory(self, user_id: str, session_id: str) -> SessionMemory:
        """Forget the conversation and context; counts are kept"""
        return await self.update_memory(user_id, session_id, {"recent_messages": [], "context": {}})

    async def add_context(self, user_id: str, session_id: str, key: str, value: Any) -> None:
        memory = await self.get_memory(user_id, session_id)
        await self.update_memory(user_id, session_id, {"context": {**memory.context, key: value}})

    async def get_context(self, user_id: str, session_id: str, key: Optional[str] = None) -> Any:
        memory = await self.get_memory(user_id, session_id)
        return memory.context.get(key) if key is not None else memory.context

    async def append_exchange(self, user_id: str, session_id: str, user_text: str, agent_text: str) -> SessionMemory:
        """Record one user message and the agent's reply, keeping the newest messages only"""

        memory = await self.get_memory(user_id, session_id)
        now = self.clock()
        messages = memory.recent_messages + [
            ConversationMessage(role="user", content=user_text, timestamp=now),
            ConversationMessage(role="agent", content=agent_text, timestamp=now),
        ]
        return await self.update_memory(
            user_id,
            session_id,
            {"recent_messages": messages[-self.max_recent_messages:]},
        )

    async def update_counts(self, user_id: str, session_id: str) -> SessionMemory:
        """Recompute open-task and upcoming-meeting counts from the records"""

        tasks = await self.records.list_tasks(user_id, statuses=OPEN_TASK_STATUSES)
        events = await self.records.list_events(user_id)

        now = self.clock()
        upcoming = 0
        for event in events:
            start = parse_timestamp(event.data.get("startTime"))
            if start is not None and start >= now:
                upcoming += 1

        return await self.update_memory(
            user_id,
            session_id,
            {"pending_tasks": len(tasks), "upcoming_meetings": upcoming},
        )

    async def cleanup_old_sessions(self, user_id: str, max_age: timedelta = DEFAULT_SESSION_MAX_AGE) -> List[str]:
        """
        Delete every session of the user last updated before now - max_age.

        Deletion is a single batch; the cache entries of deleted sessions are
        dropped afterwards. Returns the deleted session ids.
        """

        cutoff = self.clock() - max_age
        sessions = await self.store.query(self._collection(user_id))

        stale_ids = []
        for doc in sessions:
            # Unparseable timestamps are kept
            last_updated = parse_timestamp(doc.data.get("lastUpdated"))
            if last_updated is not None and last_updated < cutoff:
                stale_ids.append(doc.id)

        if not stale_ids:
            return []

        await self.store.batch_delete(self._collection(user_id), stale_ids)
        for session_id in stale_ids:
            await self.cache.delete(session_key(user_id, session_id))

        logger.info("Old sessions cleaned up", user_id=user_id, deleted=len(stale_ids), cutoff=cutoff.isoformat())
        return stale_ids

    async def evict_idle(self, max_idle: timedelta) -> List[str]:
        """Drop idle sessions from the cache only; persisted memory is untouched"""

        evicted = await self.cache.evict_idle(max_idle)
        if evicted:
            logger.info("Idle sessions evicted from cache", count=len(evicted))
        return evicted
