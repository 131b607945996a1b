"""In-memory report engine: load, equi-join, group-by aggregation, projection."""

from __future__ import annotations

import logging
import math
import re
import time
from dataclasses import dataclass
from typing import Any, Sequence

from ra_agent.models import (
    AggregationMethod,
    AggregationSpec,
    ChartSeries,
    JoinPrecedence,
    JoinSpec,
    ReportRequest,
    ReportResult,
    Row,
)
from ra_agent.query.guard import validate_request
from ra_agent.storage.store import TableStore

logger = logging.getLogger(__name__)

_NUMERIC_PREFIX = re.compile(r"^\s*([+-]?(?:Infinity|(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?))")


def parse_number(value: Any) -> float | None:
    """Parse the leading number of ``value``; None when nothing numeric is found.

    Strings are read like a lenient float parser: ``"12.5kg"`` gives 12.5,
    ``"x"`` and ``""`` give None. Booleans are not numbers.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number = float(value)
        return None if math.isnan(number) else number
    match = _NUMERIC_PREFIX.match(str(value))
    if not match:
        return None
    text = match.group(1)
    if text.lstrip("+-") == "Infinity":
        return -math.inf if text.startswith("-") else math.inf
    return float(text)


def _join_key(value: Any) -> Any:
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return value


def join_rows(
    parent_rows: Sequence[Row],
    child_rows: Sequence[Row],
    join: JoinSpec,
    precedence: JoinPrecedence = JoinPrecedence.CHILD,
) -> list[Row]:
    """Left-join parent rows onto child rows.

    Every child row is kept; unmatched children get ``None`` for each parent
    field. On duplicate parent keys the first parent row wins.
    """
    parent_map: dict[Any, Row] = {}
    parent_fields: dict[str, None] = {}
    for row in parent_rows:
        parent_fields.update(dict.fromkeys(row))
        key = _join_key(row.get(join.parent_key))
        if key is not None:
            parent_map.setdefault(key, row)

    joined: list[Row] = []
    unmatched = 0
    for child in child_rows:
        merged = dict(child)
        key = _join_key(child.get(join.child_key))
        parent = parent_map.get(key) if key is not None else None
        if parent is None:
            unmatched += 1
            for name in parent_fields:
                merged.setdefault(name, None)
        elif precedence is JoinPrecedence.PARENT:
            merged.update(parent)
        else:
            for name, value in parent.items():
                merged.setdefault(name, value)
        joined.append(merged)

    if unmatched:
        logger.info(
            "%d of %d %s rows had no matching %s row",
            unmatched, len(child_rows), join.child_table, join.parent_table,
        )
    return joined


def aggregate_rows(rows: Sequence[Row], spec: AggregationSpec) -> list[Row]:
    """Group rows by ``spec.group_by`` (first-seen order) and aggregate.

    SUM treats non-numeric values as 0; AVG ignores them entirely and is 0
    for a group without numeric values. Groups are keyed by value and type,
    so True, 1 and 1.0 stay separate groups.
    """
    totals: dict[tuple[str, Any], float] = {}
    counts: dict[tuple[str, Any], int] = {}
    labels: dict[tuple[str, Any], Any] = {}

    for row in rows:
        label = row.get(spec.group_by)
        group = (type(label).__name__, label)
        labels.setdefault(group, label)
        totals.setdefault(group, 0.0)
        counts.setdefault(group, 0)
        if spec.method is AggregationMethod.COUNT:
            counts[group] += 1
            continue
        value = parse_number(row.get(spec.column))
        if spec.method is AggregationMethod.SUM:
            totals[group] += value or 0.0
        elif value is not None:
            totals[group] += value
            counts[group] += 1

    result: list[Row] = []
    for group, total in totals.items():
        if spec.method is AggregationMethod.COUNT:
            value: float | int = counts[group]
        elif spec.method is AggregationMethod.AVG:
            value = total / counts[group] if counts[group] else 0.0
        else:
            value = total
        result.append({spec.group_by: labels[group], spec.output_column: value})
    return result


def project_rows(rows: Sequence[Row], headers: Sequence[str]) -> list[Row]:
    """Re-map rows to exactly ``headers``, missing fields becoming ``None``."""
    return [{h: row.get(h) for h in headers} for row in rows]


def chart_series(rows: Sequence[Row], headers: Sequence[str], request: ReportRequest) -> ChartSeries:
    """Derive labels and one data series from the uniform rows."""
    if request.aggregation:
        label_column = request.aggregation.group_by
        value_column = request.aggregation.output_column
    elif len(headers) >= 2:
        label_column, value_column = headers[0], headers[1]
    else:
        return ChartSeries(kind=request.chart_kind)

    return ChartSeries(
        kind=request.chart_kind,
        label=value_column,
        label_column=label_column,
        value_column=value_column,
        labels=[row.get(label_column) for row in rows],
        values=[row.get(value_column) for row in rows],
    )


@dataclass
class AuditEntry:
    """A single audit log entry for a report execution."""

    request: str
    execution_time_ms: float
    row_count: int
    error: str | None = None
    timestamp: float = 0.0


class ReportQueryEngine:
    """Executes report requests against tables in a ``TableStore``.

    Stateless between requests apart from the audit log.
    """

    def __init__(
        self,
        store: TableStore,
        precedence: JoinPrecedence | str = JoinPrecedence.CHILD,
    ):
        self.store = store
        self.precedence = JoinPrecedence(precedence)
        self.audit_log: list[AuditEntry] = []

    def execute(self, request: ReportRequest, *, record_audit: bool = True) -> ReportResult:
        """Run one report request.

        Raises:
            QueryExecutionError: If the request is malformed.

        Any failure, including store errors, is recorded in the audit log
        before it propagates.
        """
        start = time.perf_counter()
        audit = AuditEntry(request=request.describe(), execution_time_ms=0, row_count=0)
        audit.timestamp = time.time()

        try:
            request = validate_request(request, self.store.list_tables())
            data = {name: self.store.load_rows(name) for name in request.tables}

            if len(request.tables) == 1:
                rows = data[request.tables[0]]
            else:
                join = request.join
                rows = join_rows(
                    data[join.parent_table], data[join.child_table], join, self.precedence
                )

            if request.aggregation:
                rows = aggregate_rows(rows, request.aggregation)
                logger.debug("Aggregated into %d groups", len(rows))

            headers = request.expected_headers()
            uniform = project_rows(rows, headers)
            chart = chart_series(uniform, headers, request)
        except Exception as e:
            audit.execution_time_ms = (time.perf_counter() - start) * 1000
            audit.error = str(e)
            if record_audit:
                self.audit_log.append(audit)
            raise

        elapsed = (time.perf_counter() - start) * 1000
        audit.execution_time_ms = elapsed
        audit.row_count = len(uniform)
        if record_audit:
            self.audit_log.append(audit)

        return ReportResult(
            request=request,
            columns=list(headers),
            rows=uniform,
            row_count=len(uniform),
            chart=chart,
            execution_time_ms=elapsed,
        )

    def get_audit_entries(self) -> list[dict]:
        """Return the audit log as a list of dicts."""
        return [
            {
                "request": e.request,
                "execution_time_ms": e.execution_time_ms,
                "row_count": e.row_count,
                "error": e.error,
                "timestamp": e.timestamp,
            }
            for e in self.audit_log
        ]
