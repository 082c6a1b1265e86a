"""
Text-completion service.

The pipeline talks to `CompletionService` with LangChain message types; the
Gemini adapter converts them into google-genai contents.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional
import json
import re

import structlog
from google import genai
from google.genai import types
from langchain_core.messages import AIMessage, BaseMessage, SystemMessage

from deskmate.config import Settings
from deskmate.domain.errors import ConfigurationError, ExternalServiceError

logger = structlog.get_logger(__name__)

_FENCE_PATTERN = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)


class CompletionService(ABC):
    """Produces the raw text of one model reply"""

    @abstractmethod
    async def complete(self, messages: List[BaseMessage], system_prompt: Optional[str] = None) -> str:
        ...


def extract_json_object(text: str) -> Optional[Dict[str, Any]]:
    """
    Best-effort JSON object extraction from model output.

    Handles raw JSON, markdown code fences and prose around a single object.
    Returns None when nothing parses to a dict.
    """

    if not text:
        return None

    cleaned = _FENCE_PATTERN.sub("", text.strip()).strip()
    candidates = [cleaned]
    start, end = cleaned.find("{"), cleaned.rfind("}")
    if start != -1 and end > start:
        candidates.append(cleaned[start:end + 1])

    for candidate in candidates:
        try:
            value = json.loads(candidate)
        except json.JSONDecodeError:
            continue
        if isinstance(value, dict):
            return value
    return None


class GeminiCompletionService(CompletionService):
    """Completion backed by the Gemini API through google-genai"""

    def __init__(self, settings: Settings):
        self.settings = settings
        self._client: Optional[genai.Client] = None

    def _get_client(self) -> genai.Client:
        if not self.settings.google_ai_api_key:
            raise ConfigurationError("completion", "Gemini API key must be configured")
        if self._client is None:
            self._client = genai.Client(api_key=self.settings.google_ai_api_key)
        return self._client

    @staticmethod
    def _to_contents(messages: List[BaseMessage]) -> List[types.Content]:
        contents = []
        for message in messages:
            if isinstance(message, SystemMessage):
                continue
            role = "model" if isinstance(message, AIMessage) else "user"
            contents.append(types.Content(role=role, parts=[types.Part.from_text(text=str(message.content))]))
        return contents

    async def complete(self, messages: List[BaseMessage], system_prompt: Optional[str] = None) -> str:
        client = self._get_client()

        # System messages in the list are folded into the instruction
        instructions = [str(m.content) for m in messages if isinstance(m, SystemMessage)]
        if system_prompt:
            instructions.insert(0, system_prompt)

        config = types.GenerateContentConfig(
            system_instruction="\n\n".join(instructions) or None,
            temperature=self.settings.gemini_temperature,
            max_output_tokens=self.settings.gemini_max_output_tokens,
        )

        try:
            response = await client.aio.models.generate_content(
                model=self.settings.gemini_model,
                contents=self._to_contents(messages),
                config=config,
            )
        except Exception as e:
            logger.error("Gemini completion failed", model=self.settings.gemini_model, error=str(e))
            raise ExternalServiceError("completion", "Completion service request failed", {"error": str(e)}) from e

        text = getattr(response, "text", None) or ""
        logger.debug("Gemini completion received", model=self.settings.gemini_model, length=len(text))
        return text
