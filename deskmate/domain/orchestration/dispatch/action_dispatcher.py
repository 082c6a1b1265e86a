from typing import Awaitable, Callable, Dict, List, Optional
from datetime import datetime, timedelta, timezone
from zoneinfo import ZoneInfo
import time

import structlog

from deskmate.domain.errors import ValidationError
from deskmate.domain.models.actions import (
    Action,
    ActionResult,
    ActionType,
    CancelEventAction,
    CreateEventAction,
    CreateTaskAction,
    GeneralChatAction,
    SummarizeAction,
    UpdateEventAction,
    UpdateTaskAction,
)
from deskmate.domain.models.agent_state import TaskPriority, TaskStatus, utcnow
from deskmate.domain.records.repository import RecordRepository
from deskmate.domain.resolution import entity_resolver
from deskmate.domain.scheduling import date_parser
from deskmate.domain.summary.summary_engine import SummaryEngine, format_day, format_time
from deskmate.infrastructure.observability.logging import agent_logger, metrics

logger = structlog.get_logger(__name__)

Handler = Callable[[str, Action], Awaitable[ActionResult]]

DEFAULT_EVENT_TIME = "9am"


def _iso(value: datetime) -> str:
    return value.astimezone(timezone.utc).isoformat()


class ActionDispatcher:
    """Routes a parsed action to the handler registered for its tag"""

    def __init__(
        self,
        records: RecordRepository,
        summaries: SummaryEngine,
        timezone_name: str = "UTC",
        clock: Callable[[], datetime] = utcnow,
    ):
        self.records = records
        self.summaries = summaries
        self.tz = ZoneInfo(timezone_name)
        self.clock = clock
        self.handlers: Dict[ActionType, Handler] = {}
        self._register_default_handlers()

    def _register_default_handlers(self):
        self.register_handler(ActionType.CREATE_TASK, self.create_task)
        self.register_handler(ActionType.UPDATE_TASK, self.update_task)
        self.register_handler(ActionType.CREATE_EVENT, self.create_event)
        self.register_handler(ActionType.UPDATE_EVENT, self.update_event)
        self.register_handler(ActionType.CANCEL_EVENT, self.cancel_event)
        self.register_handler(ActionType.SUMMARIZE, self.summarize)
        self.register_handler(ActionType.GENERAL_CHAT, self.general_chat)

    def register_handler(self, action_type: ActionType, handler: Handler):
        """Register (or replace) the handler for an action tag"""
        self.handlers[action_type] = handler

    def _now(self) -> datetime:
        return self.clock().astimezone(self.tz)

    async def dispatch(self, user_id: str, action: Action, session_id: Optional[str] = None) -> ActionResult:
        """Run one action; validation problems come back as soft failures"""

        action_type = ActionType(action.type)
        handler = self.handlers.get(action_type)
        if handler is None:
            raise ValidationError(f"No handler for action {action_type.value}")

        started = time.perf_counter()
        try:
            result = await handler(user_id, action)
        except ValidationError as e:
            result = ActionResult(type=action_type, success=False, message=e.message)

        duration_ms = (time.perf_counter() - started) * 1000
        metrics.increment_counter(f"actions.{action_type.value}")
        metrics.record_latency("action_dispatch", duration_ms, {"action": action_type.value})
        agent_logger.log_action_dispatch(
            action_type.value,
            session_id or "",
            success=result.success,
            duration_ms=duration_ms,
        )
        return result

    # Tasks

    async def create_task(self, user_id: str, action: CreateTaskAction) -> ActionResult:
        data = {
            "title": action.title,
            "description": action.description or "",
            "priority": action.priority.value,
            "status": TaskStatus.PENDING.value,
            "dueDate": None,
        }
        due = None
        if action.due_date:
            due = date_parser.parse(action.due_date, None, self._now())
            data["dueDate"] = _iso(due)

        task_id = await self.records.create_task(user_id, data)

        message = f'Added "{action.title}" to your tasks'
        if action.priority == TaskPriority.HIGH:
            message += " as high priority"
        if due is not None:
            message += f", due {format_day(due)}"
        return ActionResult(type=ActionType.CREATE_TASK, success=True, message=message + ".", data={"taskId": task_id})

    async def update_task(self, user_id: str, action: UpdateTaskAction) -> ActionResult:
        tasks = await self.records.list_tasks(user_id)
        match = entity_resolver.find(tasks, action.task_title)
        if not match.found:
            return ActionResult(
                type=ActionType.UPDATE_TASK,
                success=False,
                message=f'I couldn\'t find a task called "{action.task_title}".',
            )

        updates = {}
        changes: List[str] = []
        if action.due_date:
            updates["dueDate"] = _iso(date_parser.parse(action.due_date, None, self._now()))
            changes.append(f"due date to {action.due_date}")
        if action.priority:
            updates["priority"] = action.priority.value
            changes.append(f"priority to {action.priority.value}")
        if action.status:
            updates["status"] = action.status.value
            changes.append(f"status to {action.status.value.replace('_', ' ')}")
            if action.status == TaskStatus.DONE:
                updates["completedAt"] = _iso(self.clock())
        if action.new_title:
            updates["title"] = action.new_title
            changes.append(f'title to "{action.new_title}"')
        if action.description:
            updates["description"] = action.description
            changes.append("added description")

        if not changes:
            return ActionResult(
                type=ActionType.UPDATE_TASK,
                success=False,
                message="What would you like to change about this task?",
            )

        task = match.entity
        await self.records.update_task(user_id, task.id, updates)

        if list(updates) == ["status", "completedAt"]:
            message = f'Done! Marked "{match.title}" as complete.'
        else:
            message = f'Updated "{match.title}": {", ".join(changes)}.'
        return ActionResult(type=ActionType.UPDATE_TASK, success=True, message=message, data={"taskId": task.id})

    # Events

    async def create_event(self, user_id: str, action: CreateEventAction) -> ActionResult:
        time_phrase = action.time
        if not time_phrase and not (action.date and "T" in action.date):
            time_phrase = DEFAULT_EVENT_TIME

        start = date_parser.parse(action.date, time_phrase, self._now())
        end = start + timedelta(minutes=action.duration)

        event_id = await self.records.create_event(user_id, {
            "title": action.title,
            "description": action.description or "",
            "location": action.location or "",
            "startTime": _iso(start),
            "endTime": _iso(end),
            "attendees": action.attendees,
        })

        return ActionResult(
            type=ActionType.CREATE_EVENT,
            success=True,
            message=f'Created "{action.title}" on {format_day(start)} at {format_time(start)}.',
            data={"eventId": event_id},
        )

    async def update_event(self, user_id: str, action: UpdateEventAction) -> ActionResult:
        events = await self.records.list_events(user_id)
        match = entity_resolver.find(events, action.event_title)
        if not match.found:
            return ActionResult(
                type=ActionType.UPDATE_EVENT,
                success=False,
                message=f'I couldn\'t find an event called "{action.event_title}".',
            )

        event = match.entity
        updates = {}
        changes: List[str] = []

        if action.date or action.time:
            current_start = date_parser.parse_timestamp(event.data.get("startTime"), self.tz) or self._now()
            current_end = date_parser.parse_timestamp(event.data.get("endTime"), self.tz)
            new_start, new_end = date_parser.reschedule(current_start, current_end, action.date, action.time)
            updates["startTime"] = _iso(new_start)
            updates["endTime"] = _iso(new_end)
            changes.append(f"moved to {format_day(new_start)} at {format_time(new_start)}")
        if action.new_title:
            updates["title"] = action.new_title
            changes.append(f'renamed to "{action.new_title}"')
        if action.location:
            updates["location"] = action.location
            changes.append(f"location set to {action.location}")
        if action.description:
            updates["description"] = action.description
            changes.append("updated description")

        if not changes:
            return ActionResult(
                type=ActionType.UPDATE_EVENT,
                success=False,
                message="What would you like to change about this event?",
            )

        await self.records.update_event(user_id, event.id, updates)
        return ActionResult(
            type=ActionType.UPDATE_EVENT,
            success=True,
            message=f'Updated "{match.title}": {", ".join(changes)}.',
            data={"eventId": event.id},
        )

    async def cancel_event(self, user_id: str, action: CancelEventAction) -> ActionResult:
        events = await self.records.list_events(user_id)
        match = entity_resolver.find(events, action.event_title)
        if not match.found:
            return ActionResult(
                type=ActionType.CANCEL_EVENT,
                success=False,
                message=f'I couldn\'t find an event called "{action.event_title}".',
            )

        await self.records.delete_event(user_id, match.entity.id)
        return ActionResult(
            type=ActionType.CANCEL_EVENT,
            success=True,
            message=f'Cancelled "{match.title}".',
            data={"eventId": match.entity.id},
        )

    # Read-only

    async def summarize(self, user_id: str, action: SummarizeAction) -> ActionResult:
        digest = await self.summaries.summarize(user_id, action.summary_type)
        return ActionResult(
            type=ActionType.SUMMARIZE,
            success=True,
            message=digest.to_speech(),
            data=digest.model_dump(mode="json", by_alias=True),
        )

    async def general_chat(self, user_id: str, action: GeneralChatAction) -> ActionResult:
        return ActionResult(type=ActionType.GENERAL_CHAT, success=True)
