from typing import TypedDict, Annotated, List, Dict, Any, Optional, Literal, Callable
from langgraph.graph import StateGraph, END
from langgraph.graph.message import add_messages
from langchain_core.messages import BaseMessage, HumanMessage, AIMessage
from pydantic import Field
from datetime import datetime
from zoneinfo import ZoneInfo
import re
import time
import uuid
import structlog

from deskmate.domain.context.memory.session_memory import SessionMemoryStore
from deskmate.domain.errors import DeskmateError, ValidationError
from deskmate.domain.models.actions import (
    MUTATING_ACTIONS, ActionResult, ActionType, BaseAction, GeneralChatAction, parse_action
)
from deskmate.domain.models.agent_state import AgentProfile, CamelModel, SessionMemory, utcnow
from deskmate.domain.orchestration.core.prompts import build_system_prompt
from deskmate.domain.orchestration.dispatch.action_dispatcher import ActionDispatcher
from deskmate.domain.records.repository import RecordRepository
from deskmate.infrastructure.observability.logging import metrics
from deskmate.infrastructure.services.completion import CompletionService, extract_json_object

logger = structlog.get_logger(__name__)

# Prior messages sent to the model with each turn
HISTORY_LIMIT = 10

FALLBACK_REPLY = "Sorry, I didn't catch that. Could you say it again?"

_EMPHASIS = re.compile(r"\*\*|\*|__")
_UNDERSCORE_ITALIC = re.compile(r"(?<!\w)_(\S(?:[^_]*\S)?)_(?!\w)")
_WHITESPACE = re.compile(r"\s+")
_SURROUNDING_QUOTES = re.compile(r'^["\'“”]+|["\'“”]+$')


def clean_for_voice(text: str) -> str:
    """Strip emphasis markers and surrounding quotes; collapse whitespace"""

    cleaned = _EMPHASIS.sub("", text or "")
    cleaned = _UNDERSCORE_ITALIC.sub(r"\1", cleaned)
    cleaned = _WHITESPACE.sub(" ", cleaned).strip()
    return _SURROUNDING_QUOTES.sub("", cleaned).strip()


class PipelineResponse(CamelModel):
    """Result of one processed turn"""
    message_id: str
    text: str
    intent: str
    actions: List[ActionResult] = Field(default_factory=list)
    voice_text: str
    timestamp: datetime = Field(default_factory=utcnow)


class WorkflowState(TypedDict):
    """State for the turn graph"""
    messages: Annotated[List[BaseMessage], add_messages]
    user_id: str
    session_id: str
    text: str
    voice_mode: bool
    memory: Optional[SessionMemory]
    agent: Optional[AgentProfile]
    reply: str
    action: Optional[BaseAction]
    results: List[ActionResult]
    final_text: str


class MessagePipeline:
    """Turns one user message into a reply, applying at most one action"""

    def __init__(
        self,
        memory_store: SessionMemoryStore,
        completion: CompletionService,
        dispatcher: ActionDispatcher,
        records: RecordRepository,
        timezone_name: str = "UTC",
        clock: Callable[[], datetime] = utcnow,
    ):
        self.memory_store = memory_store
        self.completion = completion
        self.dispatcher = dispatcher
        self.records = records
        self.tz = ZoneInfo(timezone_name)
        self.clock = clock
        self.workflow = self._create_workflow()

    def _create_workflow(self):
        """Create the turn graph"""

        workflow = StateGraph(WorkflowState)

        workflow.add_node("load_memory", self.load_memory_node)
        workflow.add_node("consult_model", self.consult_model_node)
        workflow.add_node("dispatch_action", self.dispatch_action_node)
        workflow.add_node("remember", self.remember_node)

        workflow.set_entry_point("load_memory")
        workflow.add_edge("load_memory", "consult_model")

        workflow.add_conditional_edges(
            "consult_model",
            self.route_after_model,
            {
                "dispatch": "dispatch_action",
                "chat": "remember"
            }
        )

        workflow.add_edge("dispatch_action", "remember")
        workflow.add_edge("remember", END)

        return workflow.compile()

    async def load_memory_node(self, state: WorkflowState) -> Dict[str, Any]:
        """Load the session memory and the agent identity"""
        logger.debug("Loading memory", session_id=state["session_id"])

        memory = await self.memory_store.get_memory(state["user_id"], state["session_id"])

        try:
            agent = await self.records.get_agent_profile(state["user_id"])
        except DeskmateError as e:
            logger.warning("Agent profile lookup failed, using default", error=e.message)
            agent = AgentProfile(name=self.records.default_agent_name)

        history: List[BaseMessage] = []
        for message in memory.recent_messages[-HISTORY_LIMIT:]:
            if message.role == "user":
                history.append(HumanMessage(content=message.content))
            else:
                history.append(AIMessage(content=message.content))
        history.append(HumanMessage(content=state["text"]))

        return {"memory": memory, "agent": agent, "messages": history}

    async def consult_model_node(self, state: WorkflowState) -> Dict[str, Any]:
        """Ask the completion service for a reply and an optional action"""
        logger.debug("Consulting model", session_id=state["session_id"])

        system_prompt = build_system_prompt(
            state["agent"].name,
            self.clock().astimezone(self.tz),
            state["memory"],
            voice_mode=state["voice_mode"],
        )

        started = time.perf_counter()
        raw = await self.completion.complete(list(state["messages"]), system_prompt)
        metrics.record_latency("completion", (time.perf_counter() - started) * 1000)

        parsed = extract_json_object(raw)
        if parsed is None:
            # Plain prose is a conversational reply
            return {"reply": (raw or "").strip(), "action": GeneralChatAction(), "results": []}

        reply = str(parsed.get("reply") or parsed.get("response") or "").strip()
        try:
            action = parse_action(parsed.get("action"))
        except ValidationError as e:
            logger.info("Action rejected", session_id=state["session_id"], reason=e.message)
            action_type = ActionType(e.details.get("action_type", ActionType.GENERAL_CHAT.value))
            return {
                "reply": reply,
                "action": None,
                "results": [ActionResult(type=action_type, success=False, message=e.message)],
            }

        return {"reply": reply, "action": action, "results": []}

    async def dispatch_action_node(self, state: WorkflowState) -> Dict[str, Any]:
        """Apply the requested action"""

        result = await self.dispatcher.dispatch(state["user_id"], state["action"], session_id=state["session_id"])
        return {"results": state["results"] + [result]}

    async def remember_node(self, state: WorkflowState) -> Dict[str, Any]:
        """Compose the final reply and record the exchange"""

        parts = [state["reply"]] + [r.message for r in state["results"] if r.message]
        final_text = " ".join(p.strip() for p in parts if p and p.strip()) or FALLBACK_REPLY

        await self.memory_store.append_exchange(state["user_id"], state["session_id"], state["text"], final_text)

        if any(r.success and ActionType(r.type) in MUTATING_ACTIONS for r in state["results"]):
            await self.memory_store.update_counts(state["user_id"], state["session_id"])

        return {"final_text": final_text, "messages": [AIMessage(content=final_text)]}

    def route_after_model(self, state: WorkflowState) -> Literal["dispatch", "chat"]:
        """Dispatch only when the model asked for something other than chat"""

        action = state.get("action")
        if action is None or action.type == ActionType.GENERAL_CHAT.value:
            return "chat"
        return "dispatch"

    async def process(self, user_id: str, session_id: str, text: str, voice_mode: bool = False) -> PipelineResponse:
        """Process a message through the workflow"""

        started = time.perf_counter()

        initial_state: WorkflowState = {
            "messages": [],
            "user_id": user_id,
            "session_id": session_id,
            "text": text,
            "voice_mode": voice_mode,
            "memory": None,
            "agent": None,
            "reply": "",
            "action": None,
            "results": [],
            "final_text": "",
        }

        final_state = await self.workflow.ainvoke(initial_state)

        final_text = final_state["final_text"]
        voice_text = clean_for_voice(final_text)
        action = final_state.get("action")
        results = final_state["results"]

        if action is not None:
            intent = action.type
        elif results:
            intent = ActionType(results[0].type).value
        else:
            intent = ActionType.GENERAL_CHAT.value

        metrics.record_latency("pipeline", (time.perf_counter() - started) * 1000)
        logger.info("Turn processed", session_id=session_id, intent=intent, actions=len(results))

        return PipelineResponse(
            message_id=uuid.uuid4().hex,
            text=voice_text if voice_mode else final_text,
            intent=intent,
            actions=results,
            voice_text=voice_text,
        )
