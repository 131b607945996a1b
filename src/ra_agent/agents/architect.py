"""Database architect: proposes a normalized schema plan from input headers."""

from __future__ import annotations

from typing import Any

from ra_agent.agents.base import BaseAgent
from ra_agent.models import SchemaPlan

ARCHITECT = "Database Architect"


class DatabaseArchitectAgent(BaseAgent):
    prompt_name = "architect"

    def __init__(self) -> None:
        super().__init__(ARCHITECT, "Designs a normalized relational database schema from flat data.")

    def get_prompt(self, context: dict[str, Any]) -> str:
        return self.render(headers=", ".join(context["headers"]))

    def parse_response(self, text: str) -> SchemaPlan:
        return SchemaPlan.from_llm(super().parse_response(text))
