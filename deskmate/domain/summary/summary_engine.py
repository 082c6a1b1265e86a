"""
Summary aggregation over a user's tasks, events and deals.

Each digest reads every entity kind it needs once, over a bounded prefix, and
renders both as structured data and as a short speakable sentence.
"""

from datetime import datetime, timedelta
from typing import Callable, Dict, List, Literal, Optional, Union
from zoneinfo import ZoneInfo
import asyncio

import structlog
from pydantic import Field

from deskmate.domain.errors import ValidationError
from deskmate.domain.models.actions import SUMMARY_ALIASES, SummaryType
from deskmate.domain.models.agent_state import OPEN_TASK_STATUSES, CamelModel, TaskPriority, utcnow
from deskmate.domain.records.repository import RecordRepository
from deskmate.domain.scheduling.date_parser import parse_timestamp
from deskmate.infrastructure.storage.base import StoredDocument

logger = structlog.get_logger(__name__)

DAILY_DEAL_LIMIT = 20
DEALS_DIGEST_LIMIT = 50


def format_time(value: datetime) -> str:
    hour = value.hour % 12 or 12
    return f"{hour}:{value.minute:02d} {'AM' if value.hour < 12 else 'PM'}"


def format_day(value: datetime) -> str:
    return value.strftime("%a, %b ") + str(value.day)


def format_long_date(value: datetime) -> str:
    return value.strftime("%A, %B ") + f"{value.day}, {value.year}"


def _plural(count: int, noun: str) -> str:
    return f"{count} {noun}" if count == 1 else f"{count} {noun}s"


def _money(value: float) -> str:
    return f"${value:,.0f}"


class EventLine(CamelModel):
    title: str
    time: str
    date: Optional[str] = None
    location: Optional[str] = None


class DealLine(CamelModel):
    name: str
    value: float = 0
    stage: Optional[str] = None


class StageTotals(CamelModel):
    count: int = 0
    value: float = 0


class PriorityBuckets(CamelModel):
    high: List[str] = Field(default_factory=list)
    medium: List[str] = Field(default_factory=list)
    low: List[str] = Field(default_factory=list)


class DailyTasks(CamelModel):
    total: int
    high_priority: int
    titles: List[str]


class DailyDeals(CamelModel):
    active: int
    total_value: float


class DailyDigest(CamelModel):
    type: Literal["daily"] = "daily"
    date: str
    tasks: DailyTasks
    meetings: List[EventLine]
    deals: DailyDeals

    def to_speech(self) -> str:
        parts = [f"Here's your day for {self.date}."]
        if self.tasks.total:
            line = f"You have {_plural(self.tasks.total, 'open task')}"
            if self.tasks.high_priority:
                line += f", {self.tasks.high_priority} high priority"
            parts.append(line + ".")
            if self.tasks.titles:
                parts.append("Top of the list: " + ", ".join(self.tasks.titles[:3]) + ".")
        else:
            parts.append("No open tasks.")
        if self.meetings:
            first = self.meetings[0]
            parts.append(f"{_plural(len(self.meetings), 'meeting')} today, starting with {first.title} at {first.time}.")
        else:
            parts.append("Your calendar is clear today.")
        if self.deals.active:
            parts.append(f"{_plural(self.deals.active, 'deal')} worth {_money(self.deals.total_value)} in the pipeline.")
        return " ".join(parts)


class TaskDigest(CamelModel):
    type: Literal["tasks"] = "tasks"
    total: int
    by_priority: PriorityBuckets
    overdue: int

    def to_speech(self) -> str:
        if not self.total:
            return "You have no open tasks."
        parts = [f"You have {_plural(self.total, 'open task')}."]
        if self.by_priority.high:
            parts.append(f"{len(self.by_priority.high)} high priority, including {self.by_priority.high[0]}.")
        if self.overdue:
            parts.append(f"{self.overdue} {'is' if self.overdue == 1 else 'are'} overdue.")
        return " ".join(parts)


class MeetingDigest(CamelModel):
    type: Literal["meetings"] = "meetings"
    today: List[EventLine]
    this_week: int
    upcoming: List[EventLine]

    def to_speech(self) -> str:
        if not self.upcoming:
            return "You have no upcoming meetings."
        parts = []
        if self.today:
            parts.append(f"{_plural(len(self.today), 'meeting')} today, next is {self.today[0].title} at {self.today[0].time}.")
        else:
            parts.append("Nothing else on your calendar today.")
        parts.append(f"{_plural(self.this_week, 'meeting')} in the next 7 days.")
        if not self.today:
            nxt = self.upcoming[0]
            parts.append(f"Next up is {nxt.title} on {nxt.date} at {nxt.time}.")
        return " ".join(parts)


class DealDigest(CamelModel):
    type: Literal["deals"] = "deals"
    total: int
    total_value: float
    by_stage: Dict[str, StageTotals]
    top_deals: List[DealLine]

    def to_speech(self) -> str:
        if not self.total:
            return "Your pipeline is empty."
        parts = [f"{_plural(self.total, 'deal')} worth {_money(self.total_value)} in total."]
        if self.top_deals:
            top = self.top_deals[0]
            parts.append(f"The biggest is {top.name} at {_money(top.value)}.")
        return " ".join(parts)


Digest = Union[DailyDigest, TaskDigest, MeetingDigest, DealDigest]


def resolve_summary_type(value: Union[str, SummaryType, None]) -> SummaryType:
    if isinstance(value, SummaryType):
        return value
    key = (value or "daily").strip().lower()
    try:
        return SummaryType(SUMMARY_ALIASES.get(key, key))
    except ValueError:
        raise ValidationError(
            f"I can summarize your day, tasks, meetings or deals, not '{value}'.",
            {"summary_type": value},
        ) from None


def _value(doc: StoredDocument) -> float:
    raw = doc.data.get("value") or 0
    try:
        return float(raw)
    except (TypeError, ValueError):
        return 0.0


class SummaryEngine:
    """Builds digests for one user at a time"""

    def __init__(
        self,
        records: RecordRepository,
        timezone_name: str = "UTC",
        clock: Callable[[], datetime] = utcnow,
    ):
        self.records = records
        self.tz = ZoneInfo(timezone_name)
        self.clock = clock

    def _now(self) -> datetime:
        return self.clock().astimezone(self.tz)

    async def summarize(self, user_id: str, summary_type: Union[str, SummaryType, None] = SummaryType.DAILY) -> Digest:
        kind = resolve_summary_type(summary_type)
        builders = {
            SummaryType.DAILY: self.daily,
            SummaryType.TASKS: self.tasks,
            SummaryType.MEETINGS: self.meetings,
            SummaryType.DEALS: self.deals,
        }
        digest = await builders[kind](user_id)
        logger.info("Summary built", user_id=user_id, summary_type=kind.value)
        return digest

    def _event_line(self, doc: StoredDocument, with_date: bool = False) -> Optional[EventLine]:
        start = parse_timestamp(doc.data.get("startTime"), self.tz)
        if start is None:
            return None
        return EventLine(
            title=doc.data.get("title") or "Untitled",
            time=format_time(start),
            date=format_day(start) if with_date else None,
            location=doc.data.get("location") or None,
        )

    def _dated_events(self, events: List[StoredDocument]):
        dated = []
        for doc in events:
            start = parse_timestamp(doc.data.get("startTime"), self.tz)
            if start is not None:
                dated.append((start, doc))
        return dated

    async def daily(self, user_id: str) -> DailyDigest:
        now = self._now()
        tasks, events, deals = await asyncio.gather(
            self.records.list_tasks(user_id),
            self.records.list_events(user_id),
            self.records.list_deals(user_id, limit=DAILY_DEAL_LIMIT),
        )

        open_tasks = [t for t in tasks if t.data.get("status") in OPEN_TASK_STATUSES]
        high = [t for t in open_tasks if t.data.get("priority") == TaskPriority.HIGH.value]

        todays = sorted(
            ((start, doc) for start, doc in self._dated_events(events) if start.date() == now.date()),
            key=lambda pair: pair[0],
        )

        return DailyDigest(
            date=format_long_date(now),
            tasks=DailyTasks(
                total=len(open_tasks),
                high_priority=len(high),
                titles=[t.data.get("title") or "Untitled" for t in open_tasks[:5]],
            ),
            meetings=[self._event_line(doc) for _, doc in todays],
            deals=DailyDeals(active=len(deals), total_value=sum(_value(d) for d in deals)),
        )

    async def tasks(self, user_id: str) -> TaskDigest:
        now = self._now()
        tasks = await self.records.list_tasks(user_id)
        open_tasks = [t for t in tasks if t.data.get("status") in OPEN_TASK_STATUSES]

        buckets = PriorityBuckets()
        for task in open_tasks:
            priority = task.data.get("priority")
            if priority in (p.value for p in TaskPriority):
                getattr(buckets, priority).append(task.data.get("title") or "Untitled")

        overdue = 0
        for task in open_tasks:
            due = parse_timestamp(task.data.get("dueDate"), self.tz)
            if due is not None and due < now:
                overdue += 1

        return TaskDigest(total=len(open_tasks), by_priority=buckets, overdue=overdue)

    async def meetings(self, user_id: str) -> MeetingDigest:
        now = self._now()
        events = await self.records.list_events(user_id)

        upcoming = sorted(
            ((start, doc) for start, doc in self._dated_events(events) if start >= now),
            key=lambda pair: pair[0],
        )
        week_end = now + timedelta(days=7)

        return MeetingDigest(
            today=[self._event_line(doc) for start, doc in upcoming if start.date() == now.date()],
            this_week=sum(1 for start, _ in upcoming if start <= week_end),
            upcoming=[self._event_line(doc, with_date=True) for _, doc in upcoming[:5]],
        )

    async def deals(self, user_id: str) -> DealDigest:
        deals = await self.records.list_deals(user_id, limit=DEALS_DIGEST_LIMIT)

        by_stage: Dict[str, StageTotals] = {}
        for deal in deals:
            stage = deal.data.get("stage") or "unknown"
            totals = by_stage.setdefault(stage, StageTotals())
            totals.count += 1
            totals.value += _value(deal)

        top = sorted(deals, key=_value, reverse=True)[:3]

        return DealDigest(
            total=len(deals),
            total_value=sum(_value(d) for d in deals),
            by_stage=by_stage,
            top_deals=[
                DealLine(name=d.data.get("name") or d.data.get("title") or "Untitled", value=_value(d), stage=d.data.get("stage"))
                for d in top
            ],
        )
