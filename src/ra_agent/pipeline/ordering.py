"""Dependency ordering over the foreign-key graph of a schema plan.

Tables are materialized parents-first so that every foreign key can be
resolved against a lookup map that already exists.
"""

from __future__ import annotations

import logging

from ra_agent.errors import CyclicDependencyError
from ra_agent.models import SchemaPlan

logger = logging.getLogger(__name__)


def _dependencies(plan: SchemaPlan) -> dict[str, list[str]]:
    """Map each table to the parents it references (self-references dropped)."""
    return {
        name: [p for p in table.parents if p != name]
        for name, table in plan.tables.items()
    }


def resolve_execution_order(plan: SchemaPlan | None) -> list[str]:
    """Return table names so that every table follows all of its parents.

    Kahn's algorithm; ties are broken by plan order, so a plan whose child
    tables only reference root tables yields roots first, then children.

    Raises:
        CyclicDependencyError: If the foreign keys form a cycle.
    """
    if plan is None or plan.is_empty:
        logger.warning("No schema plan to order; nothing will be processed")
        return []

    deps = _dependencies(plan)
    remaining = {name: set(parents) for name, parents in deps.items()}
    order: list[str] = []

    while remaining:
        ready = [name for name in plan.tables if name in remaining and not remaining[name]]
        if not ready:
            raise CyclicDependencyError(sorted(remaining))
        for name in ready:
            del remaining[name]
            order.append(name)
        for parents in remaining.values():
            parents.difference_update(ready)

    logger.debug("Resolved execution order: %s", order)
    return order


def get_upstream_chain(
    plan: SchemaPlan, table: str, visited: set[str] | None = None
) -> list[str]:
    """Return all tables ``table`` depends on (transitive), deepest first.

    Args:
        plan: Schema plan to traverse.
        table: Starting table name.
        visited: Internal set for cycle protection.
    """
    if visited is None:
        visited = set()
    if table in visited or table not in plan.tables:
        return []
    visited.add(table)
    result: list[str] = []
    for parent in _dependencies(plan)[table]:
        for name in get_upstream_chain(plan, parent, visited):
            if name not in result:
                result.append(name)
        if parent not in result:
            result.append(parent)
    return result


def get_downstream_chain(
    plan: SchemaPlan, table: str, visited: set[str] | None = None
) -> list[str]:
    """Return all tables that reference ``table`` (transitive), nearest first."""
    if visited is None:
        visited = set()
    if table in visited or table not in plan.tables:
        return []
    visited.add(table)
    deps = _dependencies(plan)
    result: list[str] = []
    for name, parents in deps.items():
        if table in parents and name not in visited:
            result.append(name)
            result.extend(get_downstream_chain(plan, name, visited))
    return result
