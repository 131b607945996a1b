"""Ingestion pipeline: preview, schema proposal, full parse, per-table materialization.

Stages of one run::

    IDLE -> PARSING_PREVIEW -> AWAITING_SCHEMA_PLAN -> PARSING_FULL
         -> MATERIALIZING_TABLES -> PERSISTING_SCHEMA -> DONE

A failed, invalid or cyclic schema proposal switches to MANUAL_SINGLE_TABLE,
which stores the rows unchanged under one table name. An empty plan halts
the run before any table is written. Tables are materialized one at a time
and persisted as they finish; a failing table stops the run without undoing
the tables already written. The schema plan is saved only after every table
succeeded.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Callable

from ra_agent.agents.architect import ARCHITECT
from ra_agent.agents.manager import AgentManager
from ra_agent.config import Settings
from ra_agent.errors import (
    ReportArchitectError,
    SchemaPlanError,
    SourceParseError,
    TableMaterializationError,
)
from ra_agent.models import Row, SchemaPlan
from ra_agent.pipeline.context import PipelineContext, PipelineStage, TableOutcome
from ra_agent.pipeline.lookup import NaturalKeyEncoder
from ra_agent.pipeline.materializer import TableMaterializer
from ra_agent.pipeline.ordering import resolve_execution_order
from ra_agent.pipeline.source import RowStreamSource
from ra_agent.storage.store import TableStore

logger = logging.getLogger(__name__)


def default_table_name(path: Path) -> str:
    return path.stem


class PipelineOrchestrator:
    """Runs ingestions against a store, one at a time.

    Args:
        store: Destination for materialized tables and the schema plan.
        agents: Agent registry used for the schema proposal.
        settings: Application settings.
        fallback_namer: Picks the table name when the schema proposal fails.
    """

    def __init__(
        self,
        store: TableStore,
        agents: AgentManager,
        settings: Settings | None = None,
        fallback_namer: Callable[[Path], str | None] = default_table_name,
    ):
        self.store = store
        self.agents = agents
        self.settings = settings or Settings()
        self.fallback_namer = fallback_namer
        self.encoder = NaturalKeyEncoder(self.settings.key_encoding, self.settings.key_delimiter)

    # -- stages -------------------------------------------------------------

    def propose_plan(self, headers: list[str]) -> tuple[SchemaPlan, list[str]]:
        """Ask the architect for a plan and order it.

        Raises:
            SchemaPlanError: Collaborator failure, invalid plan or cycle.
                An empty plan is returned with an empty order.
        """
        response = self.agents.run(ARCHITECT, {"headers": headers})
        if not response.success:
            raise SchemaPlanError(f"AI Architect failed: {response.error}")
        plan = response.data
        if not isinstance(plan, SchemaPlan):
            plan = SchemaPlan.from_llm(plan)
        return plan, resolve_execution_order(plan)

    def ingest(self, path: Path, *, table_name: str | None = None) -> PipelineContext:
        """Run one ingestion of ``path``.

        Args:
            path: CSV file to ingest.
            table_name: Skip the schema proposal and store the file as this table.

        Returns:
            The run's PipelineContext (stage DONE).

        Raises:
            SourceParseError: The file could not be parsed.
            SchemaPlanError: The proposed plan is empty; no table is written.
            TableMaterializationError: A table failed; earlier tables stay persisted.
        """
        ctx = PipelineContext(source=Path(path))
        logger.info("Starting ingestion of %s", ctx.source.name)
        try:
            if table_name:
                self._ingest_single_table(ctx, table_name)
                return ctx

            ctx.advance(PipelineStage.PARSING_PREVIEW)
            preview = RowStreamSource.preview(
                ctx.source, rows=self.settings.preview_rows
            ).collect()
            if not preview:
                raise SourceParseError(f"No rows found in {ctx.source.name}")
            ctx.headers = list(preview[0])

            ctx.advance(PipelineStage.AWAITING_SCHEMA_PLAN)
            try:
                ctx.plan, ctx.order = self.propose_plan(ctx.headers)
            except SchemaPlanError as e:
                logger.warning("%s; falling back to a single table", e)
                name = self.fallback_namer(ctx.source) or default_table_name(ctx.source)
                self._ingest_single_table(ctx, name)
                return ctx
            if not ctx.order:
                raise SchemaPlanError(
                    "Schema plan is empty or has no executable order; pipeline halting"
                )

            logger.info("Schema plan:\n%s", "\n".join(ctx.plan.summary_lines()))
            logger.info("Table processing order: %s", ctx.order)

            ctx.advance(PipelineStage.PARSING_FULL)
            rows = RowStreamSource(ctx.source, chunk_size=self.settings.chunk_size).collect()
            if not rows:
                raise SourceParseError(f"Could not parse any data from {ctx.source.name}")

            ctx.advance(PipelineStage.MATERIALIZING_TABLES)
            self._materialize_tables(ctx, rows)

            ctx.advance(PipelineStage.PERSISTING_SCHEMA)
            self.store.save_schema_plan(ctx.plan)
            logger.info("Full database schema saved")

            ctx.advance(PipelineStage.DONE)
            logger.info("Pipeline completed: %d tables", len(ctx.outcomes))
        except ReportArchitectError as e:
            logger.error("Pipeline halted at %s: %s", ctx.stage.value, e)
            ctx.fail(e)
            raise
        return ctx

    def _materialize_tables(self, ctx: PipelineContext, rows: list[Row]) -> None:
        """Materialize and persist each table in dependency order."""
        materializer = TableMaterializer(ctx.plan, ctx.registry, self.encoder)
        for name in ctx.order:
            schema = ctx.plan.get(name)
            ctx.current_table = name
            try:
                existing = None
                if self.settings.resume_surrogate_ids and self.store.has_table(name):
                    existing = self.store.load_rows(name)
                result = materializer.materialize(schema, rows, existing)
                written = self.store.save_rows(name, result.table.rows)
            except Exception as e:
                raise TableMaterializationError(name, str(e)) from e

            ctx.registry.register(result.lookup)
            ctx.warnings.extend(result.warnings)
            ctx.record(
                TableOutcome(
                    name=name,
                    rows_written=written,
                    input_rows=result.input_rows,
                    duplicates=result.duplicates,
                    warnings=len(result.warnings),
                )
            )
        ctx.current_table = None

    def _ingest_single_table(self, ctx: PipelineContext, name: str) -> None:
        """Store every row unchanged under ``name``."""
        ctx.advance(PipelineStage.MANUAL_SINGLE_TABLE)
        rows = RowStreamSource(ctx.source, chunk_size=self.settings.chunk_size).collect()
        ctx.current_table = name
        written = self.store.save_rows(name, rows)
        ctx.record(TableOutcome(name=name, rows_written=written, input_rows=len(rows)))
        ctx.current_table = None
        ctx.advance(PipelineStage.DONE)
        logger.info("Table '%s' updated/created with %d rows", name, written)
