"""
SQLAlchemy-backed document store.

Documents live in one table keyed by (collection, doc_id) with the payload in
a JSON column. Blocking database work runs in a worker thread so the event
loop keeps serving other connections.
"""

from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, TypeVar
import asyncio
import uuid

import structlog
from sqlalchemy import JSON, DateTime, Integer, String, UniqueConstraint, create_engine, delete, select
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import DeclarativeBase, Mapped, Session, mapped_column, sessionmaker
from sqlalchemy.pool import StaticPool

from deskmate.domain.errors import StorageError
from .base import DocumentStore, Filter, StoredDocument, matches

logger = structlog.get_logger(__name__)

T = TypeVar("T")

# JSONB on PostgreSQL, plain JSON elsewhere
JSONVariant = JSON().with_variant(JSONB(), "postgresql")


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    pass


class DocumentRow(Base):
    __tablename__ = "documents"
    __table_args__ = (UniqueConstraint("collection", "doc_id", name="uq_documents_collection_doc"),)

    seq: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    collection: Mapped[str] = mapped_column(String(255), index=True, nullable=False)
    doc_id: Mapped[str] = mapped_column(String(255), nullable=False)
    data: Mapped[Dict[str, Any]] = mapped_column(JSONVariant, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now, nullable=False
    )


def create_sql_engine(database_url: str) -> Engine:
    """Create an engine; sqlite URLs get thread-safe settings"""

    if database_url.startswith("sqlite"):
        kwargs: Dict[str, Any] = {"connect_args": {"check_same_thread": False}}
        # In-memory databases must share one connection or each thread sees an empty db
        if ":memory:" in database_url or database_url.rstrip("/") == "sqlite:":
            kwargs["poolclass"] = StaticPool
        return create_engine(database_url, echo=False, **kwargs)

    return create_engine(database_url, pool_pre_ping=True, pool_size=5, max_overflow=10, echo=False)


class SqlDocumentStore(DocumentStore):
    """Document store persisted through SQLAlchemy"""

    def __init__(self, database_url: Optional[str] = None, engine: Optional[Engine] = None):
        if engine is None:
            if not database_url:
                raise ValueError("database_url or engine is required")
            engine = create_sql_engine(database_url)
        self.engine = engine
        self._session_factory = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
        Base.metadata.create_all(engine)

    async def _run(self, operation: str, fn: Callable[[Session], T]) -> T:
        def work() -> T:
            with self._session_factory() as session, session.begin():
                return fn(session)

        try:
            return await asyncio.to_thread(work)
        except SQLAlchemyError as e:
            logger.error("Storage operation failed", operation=operation, error=str(e))
            raise StorageError(f"Storage {operation} failed", {"error": str(e)}) from e

    @staticmethod
    def _find(session: Session, collection: str, doc_id: str) -> Optional[DocumentRow]:
        return session.execute(
            select(DocumentRow).where(DocumentRow.collection == collection, DocumentRow.doc_id == doc_id)
        ).scalar_one_or_none()

    async def get(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
        def fn(session: Session):
            row = self._find(session, collection, doc_id)
            return dict(row.data) if row else None

        return await self._run("get", fn)

    async def set(self, collection: str, doc_id: str, data: Dict[str, Any]) -> None:
        def fn(session: Session):
            row = self._find(session, collection, doc_id)
            if row is None:
                session.add(DocumentRow(collection=collection, doc_id=doc_id, data=dict(data)))
            else:
                row.data = dict(data)

        await self._run("set", fn)

    async def add(self, collection: str, data: Dict[str, Any]) -> str:
        doc_id = uuid.uuid4().hex
        await self.set(collection, doc_id, data)
        return doc_id

    async def update(self, collection: str, doc_id: str, changes: Dict[str, Any]) -> None:
        def fn(session: Session):
            row = self._find(session, collection, doc_id)
            if row is None:
                return False
            # Reassign so the JSON column is flagged dirty
            row.data = {**row.data, **changes}
            return True

        if not await self._run("update", fn):
            raise StorageError(
                f"Document {doc_id} not found",
                {"collection": collection, "doc_id": doc_id},
            )

    async def delete(self, collection: str, doc_id: str) -> bool:
        def fn(session: Session):
            result = session.execute(
                delete(DocumentRow).where(DocumentRow.collection == collection, DocumentRow.doc_id == doc_id)
            )
            return result.rowcount > 0

        return await self._run("delete", fn)

    async def query(
        self,
        collection: str,
        filters: Optional[Sequence[Filter]] = None,
        limit: Optional[int] = None,
    ) -> List[StoredDocument]:
        def fn(session: Session):
            rows = session.execute(
                select(DocumentRow).where(DocumentRow.collection == collection).order_by(DocumentRow.seq)
            ).scalars()
            results = []
            for row in rows:
                if not matches(row.data, filters):
                    continue
                results.append(StoredDocument(id=row.doc_id, data=dict(row.data)))
                if limit is not None and len(results) >= limit:
                    break
            return results

        return await self._run("query", fn)

    async def batch_delete(self, collection: str, doc_ids: Iterable[str]) -> int:
        ids = list(doc_ids)
        if not ids:
            return 0

        def fn(session: Session):
            result = session.execute(
                delete(DocumentRow).where(DocumentRow.collection == collection, DocumentRow.doc_id.in_(ids))
            )
            return result.rowcount

        return await self._run("batch_delete", fn)

    async def close(self) -> None:
        self.engine.dispose()
