"""Tests for the session memory store and its cache."""

import asyncio
from datetime import timedelta

import pytest

from deskmate.domain.context.memory.cache_memory_store import SessionCache
from deskmate.domain.context.memory.session_memory import SessionMemoryStore
from deskmate.domain.errors import StorageError, ValidationError
from deskmate.domain.models.agent_state import session_key
from deskmate.infrastructure.storage import InMemoryDocumentStore

from .conftest import FIXED_NOW, fixed_clock

USER = "user-1"
SESSION = "session-1"


class FailingUpdateStore(InMemoryDocumentStore):
    async def update(self, collection, doc_id, changes):
        raise StorageError("write rejected")


def test_get_memory_creates_and_persists_default(memory_store, store):
    memory = asyncio.run(memory_store.get_memory(USER, SESSION))

    assert memory.recent_messages == []
    assert memory.pending_tasks == 0
    assert memory.context == {}
    assert memory.created_at == FIXED_NOW

    persisted = asyncio.run(store.get(f"users/{USER}/sessions", SESSION))
    assert persisted["sessionId"] == SESSION
    assert persisted["userId"] == USER
    assert persisted["recentMessages"] == []


def test_get_memory_is_idempotent(memory_store):
    first = asyncio.run(memory_store.get_memory(USER, SESSION))
    second = asyncio.run(memory_store.get_memory(USER, SESSION))
    assert first == second


def test_context_round_trip(memory_store):
    asyncio.run(memory_store.add_context(USER, SESSION, "k", "v"))

    assert asyncio.run(memory_store.get_context(USER, SESSION, "k")) == "v"
    assert asyncio.run(memory_store.get_context(USER, SESSION)) == {"k": "v"}


def test_get_context_with_empty_key_is_a_lookup(memory_store):
    asyncio.run(memory_store.add_context(USER, SESSION, "k", "v"))

    assert asyncio.run(memory_store.get_context(USER, SESSION, "")) is None


def test_update_memory_accepts_camel_case_and_rejects_unknown_fields(memory_store):
    memory = asyncio.run(memory_store.update_memory(USER, SESSION, {"pendingTasks": 4}))
    assert memory.pending_tasks == 4

    with pytest.raises(ValidationError):
        asyncio.run(memory_store.update_memory(USER, SESSION, {"favouriteColour": "blue"}))


def test_clear_memory_keeps_counts(memory_store):
    asyncio.run(memory_store.update_memory(USER, SESSION, {"pending_tasks": 2, "context": {"a": 1}}))
    asyncio.run(memory_store.append_exchange(USER, SESSION, "hi", "hello"))

    cleared = asyncio.run(memory_store.clear_memory(USER, SESSION))

    assert cleared.recent_messages == []
    assert cleared.context == {}
    assert cleared.pending_tasks == 2


def test_recent_messages_are_bounded(store, records):
    memory_store = SessionMemoryStore(store, cache=SessionCache(), max_recent_messages=4, records=records, clock=fixed_clock)

    for i in range(3):
        asyncio.run(memory_store.append_exchange(USER, SESSION, f"question {i}", f"answer {i}"))

    memory = asyncio.run(memory_store.get_memory(USER, SESSION))
    assert [m.content for m in memory.recent_messages] == ["question 1", "answer 1", "question 2", "answer 2"]
    assert [m.role for m in memory.recent_messages] == ["user", "agent", "user", "agent"]


def test_failed_write_leaves_cache_unchanged(records):
    cache = SessionCache(clock=fixed_clock)
    memory_store = SessionMemoryStore(FailingUpdateStore(), cache=cache, records=records, clock=fixed_clock)

    before = asyncio.run(memory_store.get_memory(USER, SESSION))
    with pytest.raises(StorageError):
        asyncio.run(memory_store.update_memory(USER, SESSION, {"context": {"k": "v"}}))

    cached = asyncio.run(cache.get(session_key(USER, SESSION)))
    assert cached == before.to_document()
    assert asyncio.run(memory_store.get_memory(USER, SESSION)).context == {}


def test_disabled_cache_behaves_the_same(store, records):
    uncached = SessionMemoryStore(store, cache=SessionCache(enabled=False), records=records, clock=fixed_clock)

    asyncio.run(uncached.add_context(USER, SESSION, "topic", "budget"))
    asyncio.run(uncached.append_exchange(USER, SESSION, "hi", "hello"))
    memory = asyncio.run(uncached.get_memory(USER, SESSION))

    assert memory.context == {"topic": "budget"}
    assert len(memory.recent_messages) == 2
    assert asyncio.run(uncached.cache.get_stats())["total_keys"] == 0


def test_update_counts_uses_open_tasks_and_future_events(memory_store, records):
    async def seed():
        await records.create_task(USER, {"title": "A", "status": "pending"})
        await records.create_task(USER, {"title": "B", "status": "in_progress"})
        await records.create_task(USER, {"title": "C", "status": "done"})
        await records.create_event(USER, {"title": "Past", "startTime": "2024-01-01T09:00:00+00:00"})
        await records.create_event(USER, {"title": "Future", "startTime": "2024-01-20T09:00:00+00:00"})

    asyncio.run(seed())
    memory = asyncio.run(memory_store.update_counts(USER, SESSION))

    assert memory.pending_tasks == 2
    assert memory.upcoming_meetings == 1


def test_cleanup_old_sessions(store, records):
    cache = SessionCache(clock=fixed_clock)
    now = {"value": FIXED_NOW - timedelta(days=3)}
    memory_store = SessionMemoryStore(store, cache=cache, records=records, clock=lambda: now["value"])

    asyncio.run(memory_store.get_memory(USER, "old-session"))
    now["value"] = FIXED_NOW - timedelta(hours=2)
    asyncio.run(memory_store.get_memory(USER, "recent-session"))
    now["value"] = FIXED_NOW

    deleted = asyncio.run(memory_store.cleanup_old_sessions(USER, timedelta(days=1)))

    assert deleted == ["old-session"]
    assert asyncio.run(store.get(f"users/{USER}/sessions", "old-session")) is None
    assert asyncio.run(store.get(f"users/{USER}/sessions", "recent-session")) is not None
    assert asyncio.run(cache.get(session_key(USER, "old-session"))) is None
    assert asyncio.run(cache.get(session_key(USER, "recent-session"))) is not None


def test_cleanup_keeps_sessions_with_unparseable_timestamps(store, records):
    memory_store = SessionMemoryStore(store, records=records, clock=fixed_clock)
    asyncio.run(memory_store.get_memory(USER, SESSION))
    asyncio.run(store.update(f"users/{USER}/sessions", SESSION, {"lastUpdated": "not a date"}))

    assert asyncio.run(memory_store.cleanup_old_sessions(USER, timedelta(days=1))) == []
    assert asyncio.run(store.get(f"users/{USER}/sessions", SESSION)) is not None


def test_cleanup_only_touches_the_given_user(store, records):
    now = {"value": FIXED_NOW - timedelta(days=3)}
    memory_store = SessionMemoryStore(store, records=records, clock=lambda: now["value"])

    asyncio.run(memory_store.get_memory("someone-else", SESSION))
    now["value"] = FIXED_NOW

    assert asyncio.run(memory_store.cleanup_old_sessions(USER, timedelta(days=1))) == []
    assert asyncio.run(store.get("users/someone-else/sessions", SESSION)) is not None


def test_evict_idle_drops_cache_only(store, records):
    now = {"value": FIXED_NOW}
    cache = SessionCache(clock=lambda: now["value"])
    memory_store = SessionMemoryStore(store, cache=cache, records=records, clock=fixed_clock)

    asyncio.run(memory_store.get_memory(USER, SESSION))
    now["value"] = FIXED_NOW + timedelta(hours=1)

    evicted = asyncio.run(memory_store.evict_idle(timedelta(minutes=30)))

    assert evicted == [session_key(USER, SESSION)]
    assert asyncio.run(store.get(f"users/{USER}/sessions", SESSION)) is not None
