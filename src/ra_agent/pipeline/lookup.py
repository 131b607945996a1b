"""Natural-key encoding and the per-run lookup map registry.

A lookup map translates a table's natural-key string into the surrogate id
generated for it. Maps live for one ingestion run; only their effect (the id
columns written into rows) is persisted.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from typing import Any, Iterable

from ra_agent.models import Row, TableSchema


def _key_part(value: Any) -> Any:
    """Normalize a field value so parsed 5 and 5.0 produce the same key."""
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return value


class NaturalKeyEncoder:
    """Builds the natural-key string of a row.

    ``delimited`` joins field values with ``delimiter``; absent and null
    fields contribute an empty string. ``json`` encodes the values as a JSON
    array so delimiters inside values cannot collide and null stays apart
    from the empty string. Absent and null fields encode alike in both modes,
    matching stored rows where a missing column is null.
    """

    def __init__(self, mode: str = "delimited", delimiter: str = "|"):
        if mode not in ("delimited", "json"):
            raise ValueError(f"Unknown key encoding: {mode!r}")
        self.mode = mode
        self.delimiter = delimiter

    def encode(self, row: Row, fields: Iterable[str]) -> str:
        if self.mode == "json":
            parts = [_key_part(row.get(name)) for name in fields]
            return json.dumps(parts, separators=(",", ":"), default=str)
        return self.delimiter.join(self._text(row.get(name)) for name in fields)

    @staticmethod
    def _text(value: Any) -> str:
        value = _key_part(value)
        if value is None:
            return ""
        if isinstance(value, bool):
            return "true" if value else "false"
        return str(value)


@dataclass
class LookupMap:
    """Natural key -> surrogate id for one table."""

    table: str
    entries: dict[str, str] = field(default_factory=dict)
    next_index: int = 1

    def assign(self, key: str) -> str:
        """Generate the next ``<table>_<n>`` id for ``key``."""
        surrogate = f"{self.table}_{self.next_index}"
        self.entries[key] = surrogate
        self.next_index += 1
        return surrogate

    def get(self, key: str) -> str | None:
        return self.entries.get(key)

    def sample(self, n: int = 5) -> dict[str, str]:
        return dict(list(self.entries.items())[:n])

    def __contains__(self, key: object) -> bool:
        return key in self.entries

    def __len__(self) -> int:
        return len(self.entries)

    @classmethod
    def from_rows(
        cls, schema: TableSchema, rows: Iterable[Row], encoder: NaturalKeyEncoder
    ) -> LookupMap:
        """Rebuild a map from already-persisted rows of ``schema``.

        The counter continues after the highest stored ``<table>_<n>`` id.
        """
        pattern = re.compile(rf"^{re.escape(schema.name)}_(\d+)$")
        lookup = cls(schema.name)
        highest = 0
        for row in rows:
            key = encoder.encode(row, schema.key_fields)
            if key in lookup.entries:
                continue
            surrogate = row.get(schema.surrogate_column) if schema.surrogate_column else None
            if surrogate is None:
                surrogate = f"{schema.name}_{len(lookup.entries) + 1}"
            surrogate = str(surrogate)
            lookup.entries[key] = surrogate
            match = pattern.match(surrogate)
            if match:
                highest = max(highest, int(match.group(1)))
        lookup.next_index = max(highest, len(lookup.entries)) + 1
        return lookup


class LookupMapRegistry:
    """Lookup maps of the tables processed so far in one run.

    Written only by the orchestrator's sequential materialization loop.
    """

    def __init__(self) -> None:
        self._maps: dict[str, LookupMap] = {}

    def register(self, lookup: LookupMap) -> None:
        self._maps[lookup.table] = lookup

    def get(self, table: str) -> LookupMap | None:
        return self._maps.get(table)

    def tables(self) -> list[str]:
        return list(self._maps)

    def clear(self) -> None:
        self._maps.clear()

    def __contains__(self, table: object) -> bool:
        return table in self._maps

    def __len__(self) -> int:
        return len(self._maps)
