"""BI analyst: proposes report requests for a stored schema plan."""

from __future__ import annotations

import json
import logging
from typing import Any

from pydantic import ValidationError

from ra_agent.agents.base import BaseAgent
from ra_agent.errors import CollaboratorError
from ra_agent.models import ReportSuggestion, SchemaPlan

logger = logging.getLogger(__name__)

ANALYST = "BI Analyst"


class BIAnalystAgent(BaseAgent):
    prompt_name = "analyst"

    def __init__(self) -> None:
        super().__init__(
            ANALYST, "Proposes insightful business intelligence reports based on a database schema."
        )

    def get_prompt(self, context: dict[str, Any]) -> str:
        plan: SchemaPlan = context["plan"]
        schema = {
            name: {
                "columns": table.columns,
                "primary_key": table.primary_key,
                "natural_key_for_uniqueness": table.natural_key,
                "foreign_keys": {col: str(fk) for col, fk in table.foreign_keys.items()},
            }
            for name, table in plan.tables.items()
        }
        return self.render(schema=json.dumps(schema, indent=2))

    def parse_response(self, text: str) -> list[ReportSuggestion]:
        payload = super().parse_response(text)
        if isinstance(payload, dict):
            payload = payload.get("reports") or payload.get("suggestions") or [payload]
        if not isinstance(payload, list):
            raise CollaboratorError("Expected a list of report suggestions")

        suggestions: list[ReportSuggestion] = []
        for i, item in enumerate(payload):
            try:
                suggestions.append(ReportSuggestion.model_validate(item))
            except ValidationError as e:
                logger.warning("Skipping malformed report suggestion #%d: %s", i + 1, e)
        if not suggestions:
            raise CollaboratorError("No usable report suggestions in response")
        return suggestions
