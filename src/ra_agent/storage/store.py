"""SQLite-backed persistence for materialized tables, the schema plan and config."""

from __future__ import annotations

import json
import logging
import sqlite3
from pathlib import Path
from typing import Any, Iterable

from ra_agent.models import Row, SchemaPlan
from ra_agent.storage.connection import open_readonly, open_readwrite

logger = logging.getLogger(__name__)

SCHEMA_PLAN_ID = "master_schema"

_DDL = """
CREATE TABLE IF NOT EXISTS table_list (
    name TEXT PRIMARY KEY,
    position INTEGER NOT NULL
);
CREATE TABLE IF NOT EXISTS table_rows (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    table_name TEXT NOT NULL,
    row_json TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_table_rows_name ON table_rows (table_name);
CREATE TABLE IF NOT EXISTS schema_plan (
    id TEXT PRIMARY KEY,
    plan_json TEXT NOT NULL
);
CREATE TABLE IF NOT EXISTS config (
    key TEXT PRIMARY KEY,
    value_json TEXT NOT NULL
);
"""


class TableStore:
    """Key/value and table-scan store over a single SQLite file.

    Rows are kept as ordered JSON objects so their column order survives a
    round trip. ``readonly=True`` opens the file through the 3-layer
    read-only connection; writes then fail at the SQLite level.
    """

    def __init__(self, db_path: Path, *, readonly: bool = False, busy_timeout: int = 30):
        self.db_path = Path(db_path)
        self.readonly = readonly
        self.busy_timeout = busy_timeout
        self._conn: sqlite3.Connection | None = None

    def _get_connection(self) -> sqlite3.Connection:
        """Get or create the connection (creating the layout on first write use)."""
        if self._conn is None:
            if self.readonly:
                self._conn = open_readonly(self.db_path, busy_timeout=self.busy_timeout)
            else:
                self._conn = open_readwrite(self.db_path, busy_timeout=self.busy_timeout)
                self._conn.executescript(_DDL)
        return self._conn

    # -- tables -------------------------------------------------------------

    def list_tables(self) -> list[str]:
        rows = self._get_connection().execute(
            "SELECT name FROM table_list ORDER BY position"
        ).fetchall()
        return [row["name"] for row in rows]

    def save_rows(self, table: str, rows: Iterable[Row]) -> int:
        """Append rows to ``table`` and register its name. Returns rows written."""
        payload = [(table, json.dumps(row, default=str)) for row in rows]
        conn = self._get_connection()
        with conn:
            conn.execute(
                "INSERT OR IGNORE INTO table_list (name, position) "
                "SELECT ?, COALESCE(MAX(position), 0) + 1 FROM table_list",
                (table,),
            )
            conn.executemany(
                "INSERT INTO table_rows (table_name, row_json) VALUES (?, ?)", payload
            )
        logger.info("Saved %d rows to table '%s'", len(payload), table)
        return len(payload)

    def load_rows(self, table: str) -> list[Row]:
        rows = self._get_connection().execute(
            "SELECT row_json FROM table_rows WHERE table_name = ? ORDER BY id", (table,)
        ).fetchall()
        return [json.loads(row["row_json"]) for row in rows]

    def row_count(self, table: str) -> int:
        row = self._get_connection().execute(
            "SELECT COUNT(*) AS n FROM table_rows WHERE table_name = ?", (table,)
        ).fetchone()
        return int(row["n"])

    def has_table(self, table: str) -> bool:
        return table in self.list_tables()

    def delete_table(self, table: str) -> None:
        conn = self._get_connection()
        with conn:
            conn.execute("DELETE FROM table_rows WHERE table_name = ?", (table,))
            conn.execute("DELETE FROM table_list WHERE name = ?", (table,))
        logger.info("Deleted table '%s'", table)

    # -- schema plan --------------------------------------------------------

    def save_schema_plan(self, plan: SchemaPlan) -> None:
        conn = self._get_connection()
        with conn:
            conn.execute(
                "INSERT OR REPLACE INTO schema_plan (id, plan_json) VALUES (?, ?)",
                (SCHEMA_PLAN_ID, plan.model_dump_json()),
            )

    def load_schema_plan(self) -> SchemaPlan | None:
        row = self._get_connection().execute(
            "SELECT plan_json FROM schema_plan WHERE id = ?", (SCHEMA_PLAN_ID,)
        ).fetchone()
        if row is None:
            return None
        return SchemaPlan.model_validate_json(row["plan_json"])

    # -- config -------------------------------------------------------------

    def save_config(self, key: str, value: Any) -> None:
        conn = self._get_connection()
        with conn:
            conn.execute(
                "INSERT OR REPLACE INTO config (key, value_json) VALUES (?, ?)",
                (key, json.dumps(value, default=str)),
            )

    def load_config(self, key: str) -> Any | None:
        row = self._get_connection().execute(
            "SELECT value_json FROM config WHERE key = ?", (key,)
        ).fetchone()
        if row is None:
            return None
        return json.loads(row["value_json"])

    def close(self) -> None:
        """Close the database connection."""
        if self._conn:
            self._conn.close()
            self._conn = None

    def __enter__(self) -> TableStore:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()
