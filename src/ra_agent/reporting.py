"""Report workflow: suggestions from the BI analyst, execution, summarization."""

from __future__ import annotations

import logging
from datetime import datetime

from pydantic import ValidationError

from ra_agent.agents.analyst import ANALYST
from ra_agent.agents.manager import AgentManager
from ra_agent.agents.summarizer import SUMMARIZER
from ra_agent.config import Settings
from ra_agent.errors import CollaboratorError, SchemaPlanError
from ra_agent.models import ReportDocument, ReportRequest, ReportSuggestion
from ra_agent.query.engine import ReportQueryEngine
from ra_agent.storage.store import TableStore

logger = logging.getLogger(__name__)

SUGGESTIONS_CONFIG = "report_suggestions"
NO_SUMMARY = "Could not generate summary."


class ReportService:
    """Ties the query engine to the analyst and summarizer collaborators."""

    def __init__(
        self,
        store: TableStore,
        agents: AgentManager,
        settings: Settings | None = None,
        engine: ReportQueryEngine | None = None,
    ):
        self.store = store
        self.agents = agents
        self.settings = settings or Settings()
        self.engine = engine or ReportQueryEngine(store, self.settings.join_precedence)

    def suggest_reports(self) -> list[ReportSuggestion]:
        """Ask the BI analyst for reports over the stored schema plan.

        Suggestions are cached in the store's config for later `ra report` calls.

        Raises:
            SchemaPlanError: No schema plan has been stored yet.
            CollaboratorError: The analyst returned nothing usable.
        """
        plan = self.store.load_schema_plan()
        if plan is None:
            raise SchemaPlanError("Database schema not found. Ingest a file first.")

        response = self.agents.run(ANALYST, {"plan": plan})
        if not response.success:
            raise CollaboratorError(f"Failed to get report suggestions: {response.error}")

        suggestions: list[ReportSuggestion] = response.data
        self.store.save_config(
            SUGGESTIONS_CONFIG, [s.model_dump(mode="json") for s in suggestions]
        )
        logger.info("Received %d report suggestions", len(suggestions))
        return suggestions

    def saved_suggestions(self) -> list[ReportSuggestion]:
        """Suggestions cached by the last ``suggest_reports`` call."""
        raw = self.store.load_config(SUGGESTIONS_CONFIG) or []
        suggestions = []
        for item in raw:
            try:
                suggestions.append(ReportSuggestion.model_validate(item))
            except ValidationError as e:
                logger.warning("Dropping unreadable cached suggestion: %s", e)
        return suggestions

    def summarize(self, title: str, description: str, rows: list[dict]) -> str:
        """One-paragraph summary of the report; a fixed note when unavailable."""
        context = {
            "title": title,
            "description": description,
            "sample_rows": rows[: self.settings.summary_sample_rows],
        }
        response = self.agents.run(SUMMARIZER, context)
        if not response.success:
            logger.warning("Failed to get summary from AI: %s", response.error)
            return NO_SUMMARY
        return response.data

    def run_request(
        self, request: ReportRequest, *, title: str = "Ad-hoc report", description: str = ""
    ) -> ReportDocument:
        """Execute a request and summarize its result.

        Raises:
            QueryExecutionError: If the request is malformed.
        """
        logger.info("Generating report: %s", title)
        result = self.engine.execute(request)
        summary = self.summarize(title, description, result.rows)
        return ReportDocument(
            title=title,
            description=description,
            summary=summary,
            result=result,
            generated_at=datetime.now(),
        )

    def run_suggestion(self, suggestion: ReportSuggestion) -> ReportDocument:
        return self.run_request(
            suggestion.to_request(), title=suggestion.title, description=suggestion.description
        )
