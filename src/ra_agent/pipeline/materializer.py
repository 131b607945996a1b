"""Table materialization: foreign keys, deduplication, surrogate ids, projection."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Sequence

from ra_agent.errors import MissingDependencyWarning
from ra_agent.models import ForeignKey, MaterializedTable, Row, SchemaPlan, TableSchema
from ra_agent.pipeline.lookup import LookupMap, LookupMapRegistry, NaturalKeyEncoder

logger = logging.getLogger(__name__)


@dataclass
class MaterializationResult:
    """Output of one table's materialization."""

    table: MaterializedTable
    lookup: LookupMap
    input_rows: int
    duplicates: int
    warnings: list[MissingDependencyWarning] = field(default_factory=list)


class TableMaterializer:
    """Turns the raw row stream into one normalized table.

    Root and child tables go through the same steps; for root tables the
    foreign-key step is a no-op.
    """

    def __init__(
        self,
        plan: SchemaPlan,
        registry: LookupMapRegistry,
        encoder: NaturalKeyEncoder | None = None,
    ):
        self.plan = plan
        self.registry = registry
        self.encoder = encoder or NaturalKeyEncoder()

    def materialize(
        self,
        schema: TableSchema,
        rows: Sequence[Row],
        existing_rows: Sequence[Row] | None = None,
    ) -> MaterializationResult:
        """Materialize ``schema`` from ``rows``.

        Args:
            schema: Table to build.
            rows: Full raw row stream, in input order.
            existing_rows: Rows already persisted for this table; their natural
                keys count as already seen and the id counter continues after them.

        Returns:
            MaterializationResult with the projected rows and the table's lookup map.
        """
        kind = "root" if schema.is_root else "child"
        logger.info("Processing %s table: %s", kind, schema.name)

        warnings: list[MissingDependencyWarning] = []
        enriched = self._populate_foreign_keys(schema, rows, warnings)

        if existing_rows:
            lookup = LookupMap.from_rows(schema, existing_rows, self.encoder)
            logger.info(
                "Continuing '%s' after %d stored keys (next id %s_%d)",
                schema.name, len(lookup), schema.name, lookup.next_index,
            )
        else:
            lookup = LookupMap(schema.name)

        key_fields = schema.key_fields
        surrogate_column = schema.surrogate_column
        final_rows: list[Row] = []
        duplicates = 0

        for row in enriched:
            key = self.encoder.encode(row, key_fields)
            if key in lookup:
                duplicates += 1
                continue
            surrogate = lookup.assign(key)
            final_rows.append(
                {
                    col: surrogate if col == surrogate_column else row.get(col)
                    for col in schema.columns
                }
            )

        logger.info(
            "Found %d unique rows for '%s' (%d duplicates discarded)",
            len(final_rows), schema.name, duplicates,
        )
        logger.debug("Lookup map sample for '%s': %s", schema.name, lookup.sample())

        table = MaterializedTable(name=schema.name, columns=list(schema.columns), rows=final_rows)
        return MaterializationResult(
            table=table,
            lookup=lookup,
            input_rows=len(rows),
            duplicates=duplicates,
            warnings=warnings,
        )

    def _populate_foreign_keys(
        self,
        schema: TableSchema,
        rows: Sequence[Row],
        warnings: list[MissingDependencyWarning],
    ) -> list[Row]:
        """Replace each foreign-key column with the parent's surrogate id.

        Parent natural keys are read from the raw row; unresolved references
        leave the column ``None``.
        """
        if schema.is_root:
            return [dict(row) for row in rows]

        resolvers: list[tuple[str, ForeignKey, TableSchema | None, LookupMap | None]] = []
        for column, fk in schema.foreign_keys.items():
            parent = self.plan.get(fk.parent_table)
            lookup = self.registry.get(fk.parent_table)
            if parent is None or lookup is None:
                warning = MissingDependencyWarning(
                    schema.name, column, fk.parent_table,
                    "parent lookup map is missing", rows=len(rows),
                )
                logger.warning("Prerequisite data missing for FK %s", warning)
                warnings.append(warning)
            resolvers.append((column, fk, parent, lookup))

        unresolved = {column: 0 for column in schema.foreign_keys}
        enriched: list[Row] = []
        for raw in rows:
            row = dict(raw)
            for column, fk, parent, lookup in resolvers:
                surrogate = None
                if parent is not None and lookup is not None:
                    surrogate = lookup.get(self.encoder.encode(raw, parent.key_fields))
                    if surrogate is None:
                        unresolved[column] += 1
                row[column] = surrogate
            enriched.append(row)

        for column, count in unresolved.items():
            if count:
                warning = MissingDependencyWarning(
                    schema.name, column, schema.foreign_keys[column].parent_table,
                    "natural key not found in parent lookup map", rows=count,
                )
                logger.warning("Unresolved references for FK %s", warning)
                warnings.append(warning)

        logger.info("Populated foreign keys for %d rows of '%s'", len(enriched), schema.name)
        return enriched
