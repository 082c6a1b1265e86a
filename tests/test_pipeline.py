"""Tests for the message pipeline turn graph."""

import asyncio

import pytest
from langchain_core.messages import AIMessage, HumanMessage

from deskmate.domain.errors import ExternalServiceError
from deskmate.domain.orchestration.core.main_agent import FALLBACK_REPLY, clean_for_voice

USER = "user-1"
SESSION = "session-1"


def _process(pipeline, text, voice_mode=False):
    return asyncio.run(pipeline.process(USER, SESSION, text, voice_mode=voice_mode))


def test_general_chat_returns_reply_verbatim(pipeline, completion):
    completion.replies = [{"reply": "Good morning! How can I help?", "action": None}]

    response = _process(pipeline, "hello")

    assert response.text == "Good morning! How can I help?"
    assert response.intent == "general_chat"
    assert response.actions == []
    assert response.message_id


def test_prose_output_is_treated_as_chat(pipeline, completion):
    completion.replies = ["Sure, happy to chat."]

    response = _process(pipeline, "how are you?")

    assert response.text == "Sure, happy to chat."
    assert response.intent == "general_chat"


def test_action_is_dispatched_and_reported(pipeline, completion, records, memory_store):
    completion.replies = [{"reply": "On it.", "action": {"type": "create_task", "title": "Write report", "priority": "high"}}]

    response = _process(pipeline, "add a high priority task to write the report")

    assert response.intent == "create_task"
    assert response.text == 'On it. Added "Write report" to your tasks as high priority.'
    assert len(response.actions) == 1 and response.actions[0].success

    [task] = asyncio.run(records.list_tasks(USER))
    assert task.data["title"] == "Write report"

    memory = asyncio.run(memory_store.get_memory(USER, SESSION))
    assert memory.pending_tasks == 1
    assert [m.role for m in memory.recent_messages] == ["user", "agent"]
    assert memory.recent_messages[1].content == response.text


def test_invalid_action_becomes_a_soft_failure(pipeline, completion, records):
    completion.replies = [{"reply": "", "action": {"type": "create_task"}}]

    response = _process(pipeline, "add a task")

    assert response.intent == "create_task"
    assert response.text == "I need a title for the task. What should I call it?"
    assert not response.actions[0].success
    assert asyncio.run(records.list_tasks(USER)) == []


def test_not_found_is_part_of_the_reply(pipeline, completion):
    completion.replies = [{"reply": "Let me check.", "action": {"type": "cancel_event", "eventTitle": "retro"}}]

    response = _process(pipeline, "cancel the retro")

    assert response.text == 'Let me check. I couldn\'t find an event called "retro".'
    assert not response.actions[0].success


def test_empty_reply_uses_fallback(pipeline, completion):
    completion.replies = [{"reply": "", "action": None}]
    assert _process(pipeline, "hmm").text == FALLBACK_REPLY


def test_history_and_context_reach_the_model(pipeline, completion, memory_store):
    asyncio.run(memory_store.add_context(USER, SESSION, "project", "Apollo"))
    completion.replies = [{"reply": "First."}, {"reply": "Second."}]

    _process(pipeline, "one")
    _process(pipeline, "two")

    messages = completion.calls[1]["messages"]
    assert [type(m) for m in messages] == [HumanMessage, AIMessage, HumanMessage]
    assert [m.content for m in messages] == ["one", "First.", "two"]
    assert "Apollo" in completion.calls[1]["system_prompt"]
    assert "Monday, January 15, 2024" in completion.calls[1]["system_prompt"]


def test_voice_mode_cleans_reply_and_constrains_prompt(pipeline, completion):
    completion.replies = [{"reply": '"**Sure**, I\'ll  _remind_ you."'}]

    response = _process(pipeline, "remind me", voice_mode=True)

    assert response.text == "Sure, I'll remind you."
    assert response.voice_text == "Sure, I'll remind you."
    assert "spoken aloud" in completion.calls[0]["system_prompt"]


def test_completion_failure_propagates(pipeline, completion, memory_store):
    completion.error = ExternalServiceError("completion", "upstream down")

    with pytest.raises(ExternalServiceError):
        _process(pipeline, "hello")

    assert asyncio.run(memory_store.get_memory(USER, SESSION)).recent_messages == []


def test_clean_for_voice():
    assert clean_for_voice("**Bold** and *italic*\n\nnext  line") == "Bold and italic next line"
    assert clean_for_voice("'quoted'") == "quoted"
    assert clean_for_voice("snake_case_name stays") == "snake_case_name stays"
