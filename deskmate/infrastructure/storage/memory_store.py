from typing import Any, Dict, Iterable, List, Optional, Sequence
import asyncio
import copy
import uuid

from deskmate.domain.errors import StorageError
from .base import DocumentStore, Filter, StoredDocument, matches


class InMemoryDocumentStore(DocumentStore):
    """Process-local document store; insertion order is fetch order"""

    def __init__(self):
        self.collections: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self._lock = asyncio.Lock()

    async def get(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
        async with self._lock:
            data = self.collections.get(collection, {}).get(doc_id)
            return copy.deepcopy(data) if data is not None else None

    async def set(self, collection: str, doc_id: str, data: Dict[str, Any]) -> None:
        async with self._lock:
            self.collections.setdefault(collection, {})[doc_id] = copy.deepcopy(data)

    async def add(self, collection: str, data: Dict[str, Any]) -> str:
        doc_id = uuid.uuid4().hex
        await self.set(collection, doc_id, data)
        return doc_id

    async def update(self, collection: str, doc_id: str, changes: Dict[str, Any]) -> None:
        async with self._lock:
            docs = self.collections.get(collection, {})
            if doc_id not in docs:
                raise StorageError(
                    f"Document {doc_id} not found",
                    {"collection": collection, "doc_id": doc_id},
                )
            docs[doc_id].update(copy.deepcopy(changes))

    async def delete(self, collection: str, doc_id: str) -> bool:
        async with self._lock:
            return self.collections.get(collection, {}).pop(doc_id, None) is not None

    async def query(
        self,
        collection: str,
        filters: Optional[Sequence[Filter]] = None,
        limit: Optional[int] = None,
    ) -> List[StoredDocument]:
        async with self._lock:
            results = []
            for doc_id, data in self.collections.get(collection, {}).items():
                if not matches(data, filters):
                    continue
                results.append(StoredDocument(id=doc_id, data=copy.deepcopy(data)))
                if limit is not None and len(results) >= limit:
                    break
            return results

    async def batch_delete(self, collection: str, doc_ids: Iterable[str]) -> int:
        # Single critical section, so no reader observes a partial batch
        async with self._lock:
            docs = self.collections.get(collection, {})
            deleted = 0
            for doc_id in list(doc_ids):
                if docs.pop(doc_id, None) is not None:
                    deleted += 1
            return deleted
