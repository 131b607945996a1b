"""Report request guard.

Validates that a request is executable by the in-memory engine:
- At least one table, at most one parent/child pair
- Every table exists in the store
- Multi-table requests carry a join over exactly those tables
- SUM/AVG aggregations name the column they aggregate
"""

from __future__ import annotations

import logging
from typing import Iterable

from ra_agent.errors import QueryExecutionError
from ra_agent.models import AggregationMethod, ReportRequest

logger = logging.getLogger(__name__)


def validate_request(
    request: ReportRequest, available: Iterable[str] | None = None
) -> ReportRequest:
    """Validate a report request.

    Args:
        request: The request to check.
        available: Table names present in the store; None skips the existence check.

    Returns:
        The request, with duplicate table names removed.

    Raises:
        QueryExecutionError: If the request is malformed.
    """
    tables = list(dict.fromkeys(request.tables))
    if not tables:
        raise QueryExecutionError("Report request names no tables")
    if len(tables) > 2:
        raise QueryExecutionError(
            f"Only one parent/child join is supported, got {len(tables)} tables"
        )

    if available is not None:
        known = set(available)
        unknown = [t for t in tables if t not in known]
        if unknown:
            raise QueryExecutionError(f"Unknown table(s): {', '.join(unknown)}")

    if len(tables) > 1:
        join = request.join
        if join is None:
            raise QueryExecutionError(
                f"Tables {tables} requested without a join specification"
            )
        if join.parent_table == join.child_table:
            raise QueryExecutionError("Join parent and child must be different tables")
        if {join.parent_table, join.child_table} != set(tables):
            raise QueryExecutionError(
                f"Join {join.child_table} -> {join.parent_table} does not match tables {tables}"
            )

    agg = request.aggregation
    if agg is not None:
        if not agg.group_by:
            raise QueryExecutionError("Aggregation requires a groupBy column")
        if not agg.output_column:
            raise QueryExecutionError("Aggregation requires an output column name")
        if agg.method in (AggregationMethod.SUM, AggregationMethod.AVG) and not agg.column:
            raise QueryExecutionError(f"{agg.method.value} aggregation requires a column")

    stray = [t for t in request.columns if t not in tables]
    if stray:
        logger.warning("Columns requested for tables outside the query: %s", stray)

    if tables != request.tables:
        return request.model_copy(update={"tables": tables})
    return request
