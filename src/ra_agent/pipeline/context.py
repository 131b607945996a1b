"""Per-run state of one ingestion.

Each ingestion gets its own PipelineContext, so the current table, the
lookup maps and the plan are passed explicitly instead of living in
module-level globals.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

from ra_agent.errors import MissingDependencyWarning
from ra_agent.models import SchemaPlan
from ra_agent.pipeline.lookup import LookupMapRegistry

logger = logging.getLogger(__name__)


class PipelineStage(str, Enum):
    IDLE = "idle"
    PARSING_PREVIEW = "parsing_preview"
    AWAITING_SCHEMA_PLAN = "awaiting_schema_plan"
    MANUAL_SINGLE_TABLE = "manual_single_table"
    PARSING_FULL = "parsing_full"
    MATERIALIZING_TABLES = "materializing_tables"
    PERSISTING_SCHEMA = "persisting_schema"
    DONE = "done"
    FAILED = "failed"


@dataclass
class TableOutcome:
    """What one table step wrote."""

    name: str
    rows_written: int
    input_rows: int = 0
    duplicates: int = 0
    warnings: int = 0


@dataclass
class PipelineContext:
    """Mutable state for a single ingestion run."""

    source: Path
    stage: PipelineStage = PipelineStage.IDLE
    headers: list[str] = field(default_factory=list)
    plan: SchemaPlan | None = None
    order: list[str] = field(default_factory=list)
    registry: LookupMapRegistry = field(default_factory=LookupMapRegistry)
    current_table: str | None = None
    outcomes: list[TableOutcome] = field(default_factory=list)
    warnings: list[MissingDependencyWarning] = field(default_factory=list)
    stages: list[PipelineStage] = field(default_factory=list)
    error: str | None = None

    def advance(self, stage: PipelineStage) -> None:
        logger.debug("Pipeline stage: %s -> %s", self.stage.value, stage.value)
        self.stages.append(stage)
        self.stage = stage

    def fail(self, error: Exception) -> None:
        self.error = str(error)
        self.advance(PipelineStage.FAILED)

    def record(self, outcome: TableOutcome) -> None:
        self.outcomes.append(outcome)

    @property
    def persisted_tables(self) -> list[str]:
        return [o.name for o in self.outcomes]

    @property
    def succeeded(self) -> bool:
        return self.stage is PipelineStage.DONE
