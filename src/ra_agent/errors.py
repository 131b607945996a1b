"""Exception taxonomy for ingestion and report execution."""

from __future__ import annotations


class ReportArchitectError(Exception):
    """Base class for all errors raised by ra_agent."""


class SourceParseError(ReportArchitectError):
    """Raised when the input file (or one of its rows) cannot be parsed."""


class SchemaPlanError(ReportArchitectError):
    """Raised when no usable schema plan is available."""


class CyclicDependencyError(SchemaPlanError):
    """Raised when foreign keys form a cycle between tables."""

    def __init__(self, tables: list[str]):
        self.tables = tables
        super().__init__(
            "Foreign keys form a cycle between tables: " + ", ".join(tables)
        )


class TableMaterializationError(ReportArchitectError):
    """Raised when a single table fails to materialize; halts the run."""

    def __init__(self, table: str, message: str):
        self.table = table
        super().__init__(f"Failed to process table '{table}': {message}")


class QueryExecutionError(ReportArchitectError):
    """Raised for malformed report requests."""


class CollaboratorError(ReportArchitectError):
    """Raised when a language-model collaborator returns no usable answer."""


class MissingDependencyWarning(UserWarning):
    """A foreign key could not be resolved against its parent lookup map.

    Never raised: materialization logs it, records it and keeps the row.
    """

    def __init__(
        self, table: str, column: str, parent_table: str, reason: str, rows: int = 1
    ):
        self.table = table
        self.column = column
        self.parent_table = parent_table
        self.reason = reason
        self.rows = rows
        super().__init__(f"{table}.{column} -> {parent_table}: {reason} ({rows} rows)")
