"""Conversational agent client.

The dashboard only needs `run(prompt) -> text`. The model is created lazily
from Settings so the server starts without an API key; routes check
`is_available` and answer 503 when the agent is not configured.
"""

import json
import time
from typing import Any, Dict, List, Optional

from langchain_anthropic import ChatAnthropic
from langchain_core.messages import HumanMessage

from core.config import Settings
from core.errors import AgentUnavailableError
from core.logging import get_logger, log_agent_call

logger = get_logger(__name__)


def message_text(content: Any) -> str:
    """Flatten a chat model message content (str or content blocks) to text."""
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts = []
        for block in content:
            if isinstance(block, str):
                parts.append(block)
            elif isinstance(block, dict) and block.get("type") == "text":
                parts.append(block.get("text", ""))
        return "".join(parts)
    return str(content)


def extract_json_array(text: str) -> List[Dict[str, Any]]:
    """Find the first JSON array of objects embedded in agent output.

    Each '[' is tried as the start of a JSON value, so nested arrays and
    bracketed prose before the payload are handled.
    """
    text = text or ""
    decoder = json.JSONDecoder()
    start = text.find("[")
    while start != -1:
        try:
            parsed, end = decoder.raw_decode(text, start)
        except json.JSONDecodeError:
            start = text.find("[", start + 1)
            continue
        if isinstance(parsed, list) and any(isinstance(item, dict) for item in parsed):
            return [item for item in parsed if isinstance(item, dict)]
        start = text.find("[", end)
    if "[" in text:
        logger.warning("No JSON array of objects found in agent response")
    return []


class AgentService:
    """Thin async wrapper around the Anthropic chat model."""

    def __init__(self, settings: Settings):
        self.settings = settings
        self._model: Optional[ChatAnthropic] = None

    @property
    def is_available(self) -> bool:
        return bool(self.settings.anthropic_api_key)

    def _get_model(self) -> ChatAnthropic:
        if self._model is None:
            self._model = ChatAnthropic(
                model=self.settings.agent_model,
                api_key=self.settings.anthropic_api_key,
                temperature=self.settings.agent_temperature,
                timeout=self.settings.agent_timeout,
                max_retries=2,
            )
        return self._model

    async def run(self, prompt: str) -> str:
        """Send one prompt and return the text reply."""
        if not self.is_available:
            raise AgentUnavailableError("Agent is not configured (ANTHROPIC_API_KEY missing)")

        start = time.perf_counter()
        try:
            response = await self._get_model().ainvoke([HumanMessage(content=prompt)])
        except Exception as e:
            log_agent_call(logger, self.settings.agent_model, "run", False, error=str(e))
            raise

        duration_ms = int((time.perf_counter() - start) * 1000)
        log_agent_call(logger, self.settings.agent_model, "run", True, duration_ms=duration_ms)
        return message_text(response.content)
