import structlog

from deskmate.config import Settings
from .base import Collections, DocumentStore, Filter, StoredDocument, user_collection
from .memory_store import InMemoryDocumentStore
from .sql_store import SqlDocumentStore

logger = structlog.get_logger(__name__)

__all__ = [
    "Collections",
    "DocumentStore",
    "Filter",
    "InMemoryDocumentStore",
    "SqlDocumentStore",
    "StoredDocument",
    "create_document_store",
    "user_collection",
]


def create_document_store(settings: Settings) -> DocumentStore:
    """Select the storage backend once, at startup"""

    if settings.storage_backend == "sql":
        logger.info("Using SQL document store", database_url=settings.database_url.split("@")[-1])
        return SqlDocumentStore(settings.database_url)

    logger.info("Using in-memory document store")
    return InMemoryDocumentStore()
