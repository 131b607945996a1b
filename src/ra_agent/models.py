"""Pydantic models for schema plans, report requests and report results."""

from __future__ import annotations

import ast
import json
from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import (
    AliasChoices,
    BaseModel,
    Field,
    ValidationError,
    field_validator,
    model_validator,
)

from ra_agent.errors import SchemaPlanError

GENERATED_ID = "generated_id"

Row = dict[str, Any]


def _parse_stringified(value: str) -> Any | None:
    """Best-effort parse for JSON/Python-literal strings from model output."""
    text = value.strip()
    if not text:
        return None

    for parser in (json.loads, ast.literal_eval):
        try:
            return parser(text)
        except Exception:
            continue
    return None


def _coerce_str_list(value: Any) -> list[str]:
    """Coerce scalar or stringified collections into list[str]."""
    if value is None:
        return []

    if isinstance(value, str):
        parsed = _parse_stringified(value)
        if isinstance(parsed, (list, tuple, set)):
            return [str(v) for v in parsed]
        text = value.strip()
        return [text] if text else []

    if isinstance(value, (list, tuple, set)):
        return [str(v) for v in value]

    return [str(value)]


def _unique(names: list[str]) -> list[str]:
    return list(dict.fromkeys(names))


# --- Enums ---


class AggregationMethod(str, Enum):
    SUM = "SUM"
    COUNT = "COUNT"
    AVG = "AVG"


class JoinPrecedence(str, Enum):
    """Which side wins when joined rows share a field name."""

    CHILD = "child"
    PARENT = "parent"


# --- Schema plan ---


class ForeignKey(BaseModel):
    """Reference from a local column to ``parent_table.parent_column``."""

    model_config = {"frozen": True}

    parent_table: str = Field(validation_alias=AliasChoices("parent_table", "parentTable", "table"))
    parent_column: str = Field(
        default=GENERATED_ID,
        validation_alias=AliasChoices("parent_column", "parentColumn", "column"),
    )

    @model_validator(mode="before")
    @classmethod
    def _from_dotted(cls, value: Any) -> Any:
        # Model output uses "parent_table.parent_column" strings.
        if isinstance(value, str):
            table, _, column = value.strip().partition(".")
            return {"parent_table": table.strip(), "parent_column": column.strip() or GENERATED_ID}
        if isinstance(value, (list, tuple)) and len(value) == 2:
            return {"parent_table": value[0], "parent_column": value[1]}
        return value

    def __str__(self) -> str:
        return f"{self.parent_table}.{self.parent_column}"


class TableSchema(BaseModel):
    """One table of a schema plan.

    ``primary_key`` is normally the generated surrogate column; junction
    tables may instead declare their combined foreign keys as a list.
    """

    name: str = ""
    columns: list[str]
    primary_key: str | list[str] = Field(
        default=GENERATED_ID,
        validation_alias=AliasChoices("primary_key", "primaryKey"),
    )
    natural_key: list[str] = Field(
        default_factory=list,
        validation_alias=AliasChoices("natural_key", "naturalKey", "natural_key_for_uniqueness"),
    )
    foreign_keys: dict[str, ForeignKey] = Field(
        default_factory=dict,
        validation_alias=AliasChoices("foreign_keys", "foreignKeys"),
    )

    @field_validator("columns", "natural_key", mode="before")
    @classmethod
    def _normalize_names(cls, value: Any) -> list[str]:
        return _unique(_coerce_str_list(value))

    @field_validator("primary_key", mode="before")
    @classmethod
    def _normalize_primary_key(cls, value: Any) -> Any:
        if isinstance(value, str) and "," in value:
            value = [part.strip() for part in value.split(",") if part.strip()]
        if isinstance(value, (list, tuple)):
            names = _unique([str(v) for v in value])
            return names[0] if len(names) == 1 else names
        return value

    @field_validator("foreign_keys", mode="before")
    @classmethod
    def _normalize_foreign_keys(cls, value: Any) -> Any:
        if value is None:
            return {}
        if isinstance(value, str):
            parsed = _parse_stringified(value)
            return parsed if isinstance(parsed, dict) else {}
        return value

    @model_validator(mode="after")
    def _check_columns(self) -> TableSchema:
        declared = set(self.columns)
        label = self.name or "table"
        missing_pk = [c for c in self.primary_key_columns if c not in declared]
        if missing_pk:
            raise ValueError(f"{label}: primary key {missing_pk} not in columns")
        missing_nk = [c for c in self.natural_key if c not in declared]
        if missing_nk:
            raise ValueError(f"{label}: natural key {missing_nk} not in columns")
        missing_fk = [c for c in self.foreign_keys if c not in declared]
        if missing_fk:
            raise ValueError(f"{label}: foreign key columns {missing_fk} not in columns")
        return self

    @property
    def primary_key_columns(self) -> list[str]:
        if isinstance(self.primary_key, list):
            return list(self.primary_key)
        return [self.primary_key]

    @property
    def surrogate_column(self) -> str | None:
        """Column receiving the generated id, if the table has one."""
        if isinstance(self.primary_key, str) and self.primary_key not in self.foreign_keys:
            return self.primary_key
        if GENERATED_ID in self.columns:
            return GENERATED_ID
        return None

    @property
    def key_fields(self) -> list[str]:
        """Fields forming the natural key (all non-surrogate columns if none declared)."""
        if self.natural_key:
            return list(self.natural_key)
        return [c for c in self.columns if c != self.surrogate_column]

    @property
    def is_root(self) -> bool:
        return not self.foreign_keys

    @property
    def parents(self) -> list[str]:
        return _unique([fk.parent_table for fk in self.foreign_keys.values()])


class SchemaPlan(BaseModel):
    """Ordered mapping of table name to ``TableSchema``."""

    tables: dict[str, TableSchema] = Field(default_factory=dict)

    @model_validator(mode="before")
    @classmethod
    def _unwrap(cls, value: Any) -> Any:
        # Accepts {"schema": {...}}, {"tables": {...}} or a bare mapping.
        if isinstance(value, str):
            value = _parse_stringified(value) or {}
        if not isinstance(value, dict):
            return value
        if isinstance(value.get("tables"), dict) and len(value) == 1:
            return value
        if "schema" in value:
            value = value["schema"] or {}
        return {"tables": value}

    @model_validator(mode="after")
    def _check_references(self) -> SchemaPlan:
        for name, table in self.tables.items():
            table.name = name
            for column, fk in table.foreign_keys.items():
                if fk.parent_table not in self.tables:
                    raise ValueError(
                        f"{name}.{column} references unknown table '{fk.parent_table}'"
                    )
        return self

    @classmethod
    def from_llm(cls, payload: Any) -> SchemaPlan:
        """Validate collaborator output, raising ``SchemaPlanError`` if invalid.

        An empty plan is valid here; the orchestrator halts on it.
        """
        try:
            return cls.model_validate(payload)
        except ValidationError as e:
            raise SchemaPlanError(f"Invalid schema plan: {e}") from e

    @property
    def is_empty(self) -> bool:
        return not self.tables

    def names(self) -> list[str]:
        return list(self.tables)

    def get(self, name: str) -> TableSchema | None:
        return self.tables.get(name)

    def summary_lines(self) -> list[str]:
        return [
            f"- Table: '{name}' (PK: {table.primary_key}, "
            f"Natural Key: [{', '.join(table.natural_key)}])"
            for name, table in self.tables.items()
        ]


class MaterializedTable(BaseModel):
    """A table's final row set, every row carrying exactly ``columns``."""

    name: str
    columns: list[str]
    rows: list[Row] = Field(default_factory=list)

    @model_validator(mode="after")
    def _check_row_shape(self) -> MaterializedTable:
        for i, row in enumerate(self.rows):
            if list(row) != self.columns:
                raise ValueError(
                    f"{self.name}: row {i} has columns {list(row)}, expected {self.columns}"
                )
        return self

    @property
    def row_count(self) -> int:
        return len(self.rows)


# --- Report requests ---


class JoinSpec(BaseModel):
    """Equi-join of one parent table onto one child table."""

    parent_table: str = Field(validation_alias=AliasChoices("parent_table", "parentTable"))
    parent_key: str = Field(validation_alias=AliasChoices("parent_key", "parentKey"))
    child_table: str = Field(validation_alias=AliasChoices("child_table", "childTable"))
    child_key: str = Field(validation_alias=AliasChoices("child_key", "childKey"))


class AggregationSpec(BaseModel):
    group_by: str = Field(validation_alias=AliasChoices("group_by", "groupBy"))
    column: str = ""
    method: AggregationMethod
    output_column: str = Field(
        validation_alias=AliasChoices(
            "output_column", "outputColumn", "newColumnName", "new_column_name"
        )
    )

    @field_validator("method", mode="before")
    @classmethod
    def _upper_method(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.strip().upper()
        return value


class ReportRequest(BaseModel):
    """Declarative description of one report query."""

    tables: list[str]
    join: JoinSpec | None = None
    columns: dict[str, list[str]] = Field(default_factory=dict)
    aggregation: AggregationSpec | None = None
    chart_kind: str = Field(
        default="bar", validation_alias=AliasChoices("chart_kind", "chartKind")
    )

    @field_validator("tables", mode="before")
    @classmethod
    def _normalize_tables(cls, value: Any) -> list[str]:
        return _coerce_str_list(value)

    @field_validator("columns", mode="before")
    @classmethod
    def _normalize_columns(cls, value: Any) -> Any:
        if value is None:
            return {}
        if isinstance(value, dict):
            return {str(k): _coerce_str_list(v) for k, v in value.items()}
        return value

    def expected_headers(self) -> list[str]:
        """Uniform output header set for this request."""
        if self.aggregation:
            return _unique([self.aggregation.group_by, self.aggregation.output_column])
        return _unique([c for cols in self.columns.values() for c in cols])

    def describe(self) -> str:
        text = " + ".join(self.tables)
        if self.join:
            text += (
                f" ON {self.join.child_table}.{self.join.child_key}"
                f" = {self.join.parent_table}.{self.join.parent_key}"
            )
        if self.aggregation:
            agg = self.aggregation
            text += f" | {agg.method.value}({agg.column}) BY {agg.group_by}"
        return text


class ReportSuggestion(BaseModel):
    """A report proposed by the BI analyst collaborator."""

    title: str
    description: str = ""
    query: ReportRequest
    chart_kind: str = Field(
        default="bar", validation_alias=AliasChoices("chart_kind", "chartKind")
    )

    @model_validator(mode="before")
    @classmethod
    def _chart_from_config(cls, value: Any) -> Any:
        if isinstance(value, dict) and "chart_kind" not in value and "chartKind" not in value:
            config = value.get("chart_config")
            if isinstance(config, dict) and config.get("type"):
                value = {**value, "chart_kind": config["type"]}
        return value

    def to_request(self) -> ReportRequest:
        return self.query.model_copy(update={"chart_kind": self.chart_kind})


# --- Report results ---


class ChartSeries(BaseModel):
    """Labels plus a single data series derived from a report result."""

    kind: str = "bar"
    label: str = ""
    label_column: str | None = None
    value_column: str | None = None
    labels: list[Any] = Field(default_factory=list)
    values: list[Any] = Field(default_factory=list)


class ReportResult(BaseModel):
    """Uniform result set of one report request."""

    request: ReportRequest
    columns: list[str] = Field(default_factory=list)
    rows: list[Row] = Field(default_factory=list)
    row_count: int = 0
    chart: ChartSeries = Field(default_factory=ChartSeries)
    execution_time_ms: float = 0.0


class ReportDocument(BaseModel):
    """A rendered report: result plus its title and summary."""

    title: str
    description: str = ""
    summary: str = ""
    result: ReportResult
    generated_at: datetime | None = None
