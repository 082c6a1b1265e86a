from abc import ABC, abstractmethod
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple
import operator

from pydantic import BaseModel, Field


# (field, op, value), e.g. ("status", "in", ["pending", "in_progress"])
Filter = Tuple[str, str, Any]

_OPERATORS = {
    "==": operator.eq,
    "!=": operator.ne,
    "<": operator.lt,
    "<=": operator.le,
    ">": operator.gt,
    ">=": operator.ge,
    "in": lambda value, options: value in options,
}


class Collections:
    """Per-user collection names"""
    SESSIONS = "sessions"
    TASKS = "tasks"
    EVENTS = "events"
    DEALS = "deals"
    SETTINGS = "settings"


def user_collection(user_id: str, name: str) -> str:
    """Path of a user-scoped collection"""
    return f"users/{user_id}/{name}"


class StoredDocument(BaseModel):
    """A document and its id within a collection"""
    id: str
    data: Dict[str, Any] = Field(default_factory=dict)


def matches(data: Dict[str, Any], filters: Optional[Sequence[Filter]]) -> bool:
    """Check a document against every filter; missing fields never match"""

    for field, op, expected in filters or ():
        if op not in _OPERATORS:
            raise ValueError(f"Unsupported filter operator: {op}")
        if field not in data or data[field] is None:
            return False
        try:
            if not _OPERATORS[op](data[field], expected):
                return False
        except TypeError:
            return False
    return True


class DocumentStore(ABC):
    """Persistent per-user document store addressed by collection path"""

    @abstractmethod
    async def get(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
        """Return a copy of the document or None"""

    @abstractmethod
    async def set(self, collection: str, doc_id: str, data: Dict[str, Any]) -> None:
        """Create or replace a document"""

    @abstractmethod
    async def add(self, collection: str, data: Dict[str, Any]) -> str:
        """Create a document with a generated id and return the id"""

    @abstractmethod
    async def update(self, collection: str, doc_id: str, changes: Dict[str, Any]) -> None:
        """Merge changes into an existing document; StorageError if absent"""

    @abstractmethod
    async def delete(self, collection: str, doc_id: str) -> bool:
        """Delete a document, returning whether it existed"""

    @abstractmethod
    async def query(
        self,
        collection: str,
        filters: Optional[Sequence[Filter]] = None,
        limit: Optional[int] = None,
    ) -> List[StoredDocument]:
        """Documents matching all filters, in insertion order, at most `limit`"""

    @abstractmethod
    async def batch_delete(self, collection: str, doc_ids: Iterable[str]) -> int:
        """Delete several documents atomically; returns the number deleted"""

    async def close(self) -> None:
        """Release resources"""
