"""Base class for the language-model collaborators."""

from __future__ import annotations

import json
import logging
import re
from abc import ABC, abstractmethod
from pathlib import Path
from string import Template
from typing import Any, Protocol

from pydantic import BaseModel

from ra_agent.errors import CollaboratorError

logger = logging.getLogger(__name__)

_PROMPTS_DIR = Path(__file__).parent.parent / "prompts"
_JSON_FENCE = re.compile(r"```(?:json)?\s*\n(.*?)\n?```", re.DOTALL)


class ChatService(Protocol):
    def send_message(self, prompt: str) -> str: ...


class AgentResponse(BaseModel):
    """Outcome of one agent call; failures carry ``error`` instead of raising."""

    success: bool
    data: Any = None
    error: str | None = None


def load_prompt(name: str) -> Template:
    """Load ``prompts/<name>.md`` as a ``$placeholder`` template."""
    path = _PROMPTS_DIR / f"{name}.md"
    return Template(path.read_text(encoding="utf-8"))


def extract_json(text: str) -> Any:
    """Parse JSON from a reply, unwrapping a fenced ```json block if present."""
    match = _JSON_FENCE.search(text)
    cleaned = match.group(1) if match else text
    try:
        return json.loads(cleaned.strip())
    except json.JSONDecodeError as e:
        raise CollaboratorError(f"Response is not valid JSON: {e}") from e


class BaseAgent(ABC):
    """A named prompt + response parser run against a ``ChatService``."""

    prompt_name: str = ""

    def __init__(self, name: str, description: str):
        self.name = name
        self.description = description

    @abstractmethod
    def get_prompt(self, context: dict[str, Any]) -> str:
        """Render the prompt for ``context``."""

    def parse_response(self, text: str) -> Any:
        """Parse the raw reply; JSON by default."""
        return extract_json(text)

    def render(self, **values: Any) -> str:
        return load_prompt(self.prompt_name).safe_substitute(**values)

    def execute(self, context: dict[str, Any], service: ChatService) -> AgentResponse:
        """Prompt the model and parse its reply into an ``AgentResponse``."""
        try:
            prompt = self.get_prompt(context)
            reply = service.send_message(prompt)
            return AgentResponse(success=True, data=self.parse_response(reply))
        except Exception as e:
            logger.warning("Error executing %s: %s", self.name, e)
            return AgentResponse(success=False, error=str(e))
