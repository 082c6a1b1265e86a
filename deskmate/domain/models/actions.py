"""
Closed set of actions the completion service may request.

The completion output is untrusted JSON; `parse_action` is the single place
where it becomes a typed action. Anything that fails validation there never
reaches a mutation.
"""

from typing import Annotated, Any, Dict, List, Literal, Optional, Union
from enum import Enum

import structlog
from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    StringConstraints,
    TypeAdapter,
    ValidationError as PydanticValidationError,
    field_validator,
)
from pydantic.alias_generators import to_camel

from deskmate.domain.errors import ValidationError
from deskmate.domain.models.agent_state import TaskPriority, TaskStatus

logger = structlog.get_logger(__name__)

NonEmptyStr = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1)]


class ActionType(str, Enum):
    CREATE_TASK = "create_task"
    UPDATE_TASK = "update_task"
    CREATE_EVENT = "create_event"
    UPDATE_EVENT = "update_event"
    CANCEL_EVENT = "cancel_event"
    SUMMARIZE = "summarize"
    GENERAL_CHAT = "general_chat"


MUTATING_ACTIONS = {
    ActionType.CREATE_TASK,
    ActionType.UPDATE_TASK,
    ActionType.CREATE_EVENT,
    ActionType.UPDATE_EVENT,
    ActionType.CANCEL_EVENT,
}


class SummaryType(str, Enum):
    DAILY = "daily"
    TASKS = "tasks"
    MEETINGS = "meetings"
    DEALS = "deals"


SUMMARY_ALIASES = {"day": "daily", "calendar": "meetings", "pipeline": "deals"}

STATUS_ALIASES = {
    "complete": "done",
    "completed": "done",
    "finished": "done",
    "in-progress": "in_progress",
    "open": "pending",
}


def _lower(value: Any) -> Any:
    return value.strip().lower() if isinstance(value, str) else value


class BaseAction(BaseModel):
    """Common configuration: accept camelCase or snake_case, ignore extras"""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class CreateTaskAction(BaseAction):
    type: Literal["create_task"] = "create_task"
    title: NonEmptyStr
    description: Optional[str] = None
    priority: TaskPriority = TaskPriority.MEDIUM
    due_date: Optional[str] = None

    @field_validator("priority", mode="before")
    @classmethod
    def _normalize_priority(cls, value):
        return _lower(value) or TaskPriority.MEDIUM


class UpdateTaskAction(BaseAction):
    type: Literal["update_task"] = "update_task"
    task_title: NonEmptyStr
    new_title: Optional[str] = None
    description: Optional[str] = None
    priority: Optional[TaskPriority] = None
    status: Optional[TaskStatus] = None
    due_date: Optional[str] = None

    @field_validator("priority", mode="before")
    @classmethod
    def _normalize_priority(cls, value):
        return _lower(value) or None

    @field_validator("status", mode="before")
    @classmethod
    def _normalize_status(cls, value):
        value = _lower(value)
        if not value:
            return None
        return STATUS_ALIASES.get(value, value)


class CreateEventAction(BaseAction):
    type: Literal["create_event"] = "create_event"
    title: NonEmptyStr
    date: Optional[str] = None
    time: Optional[str] = None
    duration: int = Field(default=60, gt=0)
    location: Optional[str] = None
    description: Optional[str] = None
    attendees: List[str] = Field(default_factory=list)

    @field_validator("duration", mode="before")
    @classmethod
    def _default_duration(cls, value):
        return 60 if value in (None, "") else value

    @field_validator("attendees", mode="before")
    @classmethod
    def _split_attendees(cls, value):
        if value is None:
            return []
        if isinstance(value, str):
            return [a.strip() for a in value.split(",") if a.strip()]
        return value


class UpdateEventAction(BaseAction):
    type: Literal["update_event"] = "update_event"
    event_title: NonEmptyStr
    date: Optional[str] = None
    time: Optional[str] = None
    new_title: Optional[str] = None
    location: Optional[str] = None
    description: Optional[str] = None


class CancelEventAction(BaseAction):
    type: Literal["cancel_event"] = "cancel_event"
    event_title: NonEmptyStr


class SummarizeAction(BaseAction):
    type: Literal["summarize"] = "summarize"
    summary_type: SummaryType = SummaryType.DAILY

    @field_validator("summary_type", mode="before")
    @classmethod
    def _resolve_alias(cls, value):
        value = _lower(value)
        if not value:
            return SummaryType.DAILY
        return SUMMARY_ALIASES.get(value, value)


class GeneralChatAction(BaseAction):
    type: Literal["general_chat"] = "general_chat"


Action = Annotated[
    Union[
        CreateTaskAction,
        UpdateTaskAction,
        CreateEventAction,
        UpdateEventAction,
        CancelEventAction,
        SummarizeAction,
        GeneralChatAction,
    ],
    Field(discriminator="type"),
]

_action_adapter = TypeAdapter(Action)

# Friendly prompts for a missing lookup key or title
MISSING_FIELD_PROMPTS = {
    ActionType.CREATE_TASK: "I need a title for the task. What should I call it?",
    ActionType.UPDATE_TASK: "Which task do you want to update?",
    ActionType.CREATE_EVENT: "What should I call this event?",
    ActionType.UPDATE_EVENT: "Which event do you want to update?",
    ActionType.CANCEL_EVENT: "Which event should I cancel?",
}

# Field naming the existing entity an action targets; a bare "title" is accepted in its place
LOOKUP_FIELDS = {
    ActionType.UPDATE_TASK: "task_title",
    ActionType.UPDATE_EVENT: "event_title",
    ActionType.CANCEL_EVENT: "event_title",
}


class ActionResult(BaseModel):
    """Outcome of dispatching one action"""
    type: ActionType
    success: bool
    message: str = ""
    data: Optional[Dict[str, Any]] = None


def parse_action(raw: Optional[Dict[str, Any]]) -> Action:
    """
    Turn the completion service's action object into a typed action.

    Missing or unknown tags fall back to general chat. A known tag with
    missing/invalid fields raises ValidationError carrying a message that can
    be spoken back to the user.
    """

    if not raw:
        return GeneralChatAction()
    if not isinstance(raw, dict):
        raise ValidationError("Action must be an object", {"raw": raw})

    raw = dict(raw)
    tag = str(raw.get("type") or raw.get("intent") or "").strip().lower().replace("-", "_")

    # Completion is expressed as an update to the done status
    if tag == "complete_task":
        tag = ActionType.UPDATE_TASK.value
        raw.setdefault("status", TaskStatus.DONE.value)

    try:
        action_type = ActionType(tag)
    except ValueError:
        logger.warning("Unknown action type, treating as chat", action_type=tag)
        return GeneralChatAction()

    raw["type"] = action_type.value

    lookup_field = LOOKUP_FIELDS.get(action_type)
    if lookup_field and not (raw.get(lookup_field) or raw.get(to_camel(lookup_field))) and raw.get("title"):
        raw[lookup_field] = raw.pop("title")

    try:
        return _action_adapter.validate_python(raw)
    except PydanticValidationError as e:
        missing = [err for err in e.errors() if err.get("type") in ("missing", "string_too_short")]
        if missing and action_type in MISSING_FIELD_PROMPTS:
            message = MISSING_FIELD_PROMPTS[action_type]
        else:
            first = e.errors()[0]
            field = ".".join(str(part) for part in first.get("loc", ()) if part != action_type.value)
            message = f"I couldn't use the {field or 'request'} you gave me: {first.get('msg')}"
        raise ValidationError(message, {"action_type": action_type.value, "errors": e.errors()}) from e
