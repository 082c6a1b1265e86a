"""
Bounded reads and conditional writes against the user's task, event and deal
collections. The records themselves are owned elsewhere; this is only the
surface the assistant needs.
"""

from typing import Any, Dict, List, Optional, Sequence

import structlog

from deskmate.domain.models.agent_state import AgentProfile, utcnow
from deskmate.infrastructure.storage.base import Collections, DocumentStore, Filter, StoredDocument, user_collection

logger = structlog.get_logger(__name__)

TASK_FETCH_LIMIT = 50
EVENT_FETCH_LIMIT = 50
DEAL_FETCH_LIMIT = 20

AGENT_PROFILE_DOC = "agent"


class RecordRepository:
    """Per-user record access over a DocumentStore"""

    def __init__(self, store: DocumentStore, default_agent_name: str = "Deskmate"):
        self.store = store
        self.default_agent_name = default_agent_name

    @staticmethod
    def _stamp(data: Dict[str, Any], created: bool = False) -> Dict[str, Any]:
        now = utcnow().isoformat()
        stamped = dict(data)
        stamped["updatedAt"] = now
        if created:
            stamped.setdefault("createdAt", now)
        return stamped

    # Tasks

    async def list_tasks(
        self,
        user_id: str,
        statuses: Optional[Sequence[str]] = None,
        limit: int = TASK_FETCH_LIMIT,
    ) -> List[StoredDocument]:
        filters: List[Filter] = [("status", "in", list(statuses))] if statuses else []
        return await self.store.query(user_collection(user_id, Collections.TASKS), filters, limit=limit)

    async def create_task(self, user_id: str, data: Dict[str, Any]) -> str:
        task_id = await self.store.add(user_collection(user_id, Collections.TASKS), self._stamp(data, created=True))
        logger.info("Task created", user_id=user_id, task_id=task_id)
        return task_id

    async def update_task(self, user_id: str, task_id: str, changes: Dict[str, Any]) -> None:
        await self.store.update(user_collection(user_id, Collections.TASKS), task_id, self._stamp(changes))
        logger.info("Task updated", user_id=user_id, task_id=task_id, fields=sorted(changes))

    # Events

    async def list_events(
        self,
        user_id: str,
        starting_after: Optional[str] = None,
        limit: int = EVENT_FETCH_LIMIT,
    ) -> List[StoredDocument]:
        filters: List[Filter] = [("startTime", ">=", starting_after)] if starting_after else []
        return await self.store.query(user_collection(user_id, Collections.EVENTS), filters, limit=limit)

    async def create_event(self, user_id: str, data: Dict[str, Any]) -> str:
        event_id = await self.store.add(user_collection(user_id, Collections.EVENTS), self._stamp(data, created=True))
        logger.info("Event created", user_id=user_id, event_id=event_id)
        return event_id

    async def update_event(self, user_id: str, event_id: str, changes: Dict[str, Any]) -> None:
        await self.store.update(user_collection(user_id, Collections.EVENTS), event_id, self._stamp(changes))
        logger.info("Event updated", user_id=user_id, event_id=event_id, fields=sorted(changes))

    async def delete_event(self, user_id: str, event_id: str) -> bool:
        deleted = await self.store.delete(user_collection(user_id, Collections.EVENTS), event_id)
        logger.info("Event deleted", user_id=user_id, event_id=event_id, deleted=deleted)
        return deleted

    # Deals

    async def list_deals(self, user_id: str, limit: int = DEAL_FETCH_LIMIT) -> List[StoredDocument]:
        return await self.store.query(user_collection(user_id, Collections.DEALS), limit=limit)

    # Agent identity

    async def get_agent_profile(self, user_id: str) -> AgentProfile:
        """The user's configured agent, or the default identity when none is stored"""

        data = await self.store.get(user_collection(user_id, Collections.SETTINGS), AGENT_PROFILE_DOC)
        if not data or not data.get("name"):
            return AgentProfile(name=self.default_agent_name)
        return AgentProfile.model_validate(data)
