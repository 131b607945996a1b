"""Summarizer: one-paragraph narrative of a report's sample rows."""

from __future__ import annotations

import json
from typing import Any

from ra_agent.agents.base import BaseAgent

SUMMARIZER = "Summarizer"
MAX_SAMPLE_ROWS = 20


class SummarizerAgent(BaseAgent):
    prompt_name = "summarizer"

    def __init__(self) -> None:
        super().__init__(SUMMARIZER, "Summarizes the key insights from a report.")

    def get_prompt(self, context: dict[str, Any]) -> str:
        sample = list(context.get("sample_rows", []))[:MAX_SAMPLE_ROWS]
        return self.render(
            title=context.get("title", ""),
            description=context.get("description", ""),
            data=json.dumps(sample, indent=2, default=str),
        )

    def parse_response(self, text: str) -> str:
        # Plain text, not JSON.
        return text.strip()
