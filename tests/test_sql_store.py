"""SQL document store against in-memory SQLite."""

import asyncio

import pytest

from deskmate.domain.context.memory.cache_memory_store import SessionCache
from deskmate.domain.context.memory.session_memory import SessionMemoryStore
from deskmate.domain.errors import StorageError
from deskmate.domain.records.repository import RecordRepository
from deskmate.infrastructure.storage import SqlDocumentStore, create_document_store

from .conftest import fixed_clock

COLLECTION = "users/user-1/tasks"


@pytest.fixture
def sql_store():
    store = SqlDocumentStore("sqlite:///:memory:")
    yield store
    asyncio.run(store.close())


def test_set_get_update_delete(sql_store):
    async def scenario():
        await sql_store.set(COLLECTION, "t1", {"title": "Write report", "status": "pending"})
        await sql_store.update(COLLECTION, "t1", {"status": "done"})
        fetched = await sql_store.get(COLLECTION, "t1")
        deleted = await sql_store.delete(COLLECTION, "t1")
        gone = await sql_store.get(COLLECTION, "t1")
        return fetched, deleted, gone

    fetched, deleted, gone = asyncio.run(scenario())

    assert fetched == {"title": "Write report", "status": "done"}
    assert deleted is True
    assert gone is None


def test_update_missing_document_raises(sql_store):
    with pytest.raises(StorageError):
        asyncio.run(sql_store.update(COLLECTION, "missing", {"status": "done"}))


def test_query_filters_limits_and_keeps_insertion_order(sql_store):
    async def scenario():
        for i, status in enumerate(["pending", "done", "in_progress", "pending"]):
            await sql_store.add(COLLECTION, {"title": f"Task {i}", "status": status})
        await sql_store.add("users/user-2/tasks", {"title": "Not mine", "status": "pending"})

        open_tasks = await sql_store.query(COLLECTION, [("status", "in", ["pending", "in_progress"])])
        first_two = await sql_store.query(COLLECTION, limit=2)
        return open_tasks, first_two

    open_tasks, first_two = asyncio.run(scenario())

    assert [t.data["title"] for t in open_tasks] == ["Task 0", "Task 2", "Task 3"]
    assert [t.data["title"] for t in first_two] == ["Task 0", "Task 1"]


def test_batch_delete(sql_store):
    async def scenario():
        for doc_id in ("a", "b", "c"):
            await sql_store.set(COLLECTION, doc_id, {"title": doc_id})
        deleted = await sql_store.batch_delete(COLLECTION, ["a", "c", "zzz"])
        remaining = await sql_store.query(COLLECTION)
        return deleted, remaining

    deleted, remaining = asyncio.run(scenario())

    assert deleted == 2
    assert [doc.id for doc in remaining] == ["b"]


def test_session_memory_on_sql_store(sql_store):
    memory_store = SessionMemoryStore(
        sql_store,
        cache=SessionCache(enabled=False),
        records=RecordRepository(sql_store),
        clock=fixed_clock,
    )

    async def scenario():
        await memory_store.add_context("user-1", "s-1", "k", "v")
        await memory_store.append_exchange("user-1", "s-1", "hi", "hello")
        return await memory_store.get_memory("user-1", "s-1")

    memory = asyncio.run(scenario())

    assert memory.context == {"k": "v"}
    assert [m.content for m in memory.recent_messages] == ["hi", "hello"]


def test_backend_is_selected_from_settings(settings):
    settings.storage_backend = "sql"
    settings.database_url = "sqlite:///:memory:"

    store = create_document_store(settings)
    assert isinstance(store, SqlDocumentStore)
    asyncio.run(store.close())
