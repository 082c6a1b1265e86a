import pytest

from deskmate.domain.errors import ValidationError
from deskmate.domain.models.actions import (
    CancelEventAction,
    CreateEventAction,
    CreateTaskAction,
    GeneralChatAction,
    SummarizeAction,
    SummaryType,
    UpdateTaskAction,
    parse_action,
)
from deskmate.domain.models.agent_state import TaskPriority, TaskStatus
from deskmate.infrastructure.services.completion import extract_json_object


def test_missing_action_is_general_chat():
    assert isinstance(parse_action(None), GeneralChatAction)
    assert isinstance(parse_action({}), GeneralChatAction)


def test_unknown_tag_falls_back_to_chat():
    assert isinstance(parse_action({"type": "order_pizza", "size": "large"}), GeneralChatAction)


def test_create_task_defaults():
    action = parse_action({"type": "create_task", "title": "  Write report  ", "dueDate": "tomorrow"})

    assert isinstance(action, CreateTaskAction)
    assert action.title == "Write report"
    assert action.priority == TaskPriority.MEDIUM
    assert action.due_date == "tomorrow"


def test_create_task_without_title_asks_for_one():
    with pytest.raises(ValidationError) as exc_info:
        parse_action({"type": "create_task", "priority": "high"})

    assert exc_info.value.message == "I need a title for the task. What should I call it?"
    assert exc_info.value.details["action_type"] == "create_task"


def test_invalid_priority_is_rejected():
    with pytest.raises(ValidationError) as exc_info:
        parse_action({"type": "create_task", "title": "X", "priority": "urgent-ish"})
    assert "priority" in exc_info.value.message


def test_complete_task_is_an_update_to_done():
    action = parse_action({"type": "complete_task", "taskTitle": "login bug"})

    assert isinstance(action, UpdateTaskAction)
    assert action.status == TaskStatus.DONE


def test_status_aliases_and_bare_title_lookup():
    action = parse_action({"type": "update_task", "title": "report", "status": "Completed"})

    assert action.task_title == "report"
    assert action.status == TaskStatus.DONE


def test_create_event_defaults_and_attendees():
    action = parse_action({"type": "create_event", "title": "Sync", "duration": None, "attendees": "Ana, Bo"})

    assert isinstance(action, CreateEventAction)
    assert action.duration == 60
    assert action.attendees == ["Ana", "Bo"]


def test_cancel_event_accepts_snake_case():
    action = parse_action({"type": "cancel_event", "event_title": "Standup"})
    assert isinstance(action, CancelEventAction)
    assert action.event_title == "Standup"


def test_summarize_aliases():
    action = parse_action({"type": "summarize", "summaryType": "calendar"})
    assert isinstance(action, SummarizeAction)
    assert action.summary_type == SummaryType.MEETINGS

    assert parse_action({"type": "summarize"}).summary_type == SummaryType.DAILY


def test_extract_json_object_variants():
    assert extract_json_object('{"reply": "hi"}') == {"reply": "hi"}
    assert extract_json_object('```json\n{"reply": "hi", "action": null}\n```') == {"reply": "hi", "action": None}
    assert extract_json_object('Sure! {"reply": "ok"} Hope that helps') == {"reply": "ok"}
    assert extract_json_object("just prose") is None
    assert extract_json_object("[1, 2]") is None
