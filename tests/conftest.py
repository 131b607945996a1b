"""Shared pytest fixtures for the report architect test suite."""

from __future__ import annotations

import csv
import json
from pathlib import Path
from typing import Any

import pytest

from ra_agent.agents.manager import AgentManager
from ra_agent.config import Settings
from ra_agent.models import SchemaPlan
from ra_agent.storage.store import TableStore


ORDERS_HEADERS = ["product_name", "category", "customer", "quantity", "price"]

ORDERS_ROWS = [
    ["Widget", "Tools", "Ann", "2", "10.5"],
    ["Gadget", "Toys", "Bob", "1", "20"],
    ["Widget", "Tools", "Cid", "5", "10.5"],
    ["Doohickey", "Tools", "Ann", "3", "7"],
]

ORDERS_PLAN: dict[str, Any] = {
    "products": {
        "columns": ["generated_id", "product_name", "category", "price"],
        "primary_key": "generated_id",
        "natural_key_for_uniqueness": ["product_name"],
    },
    "orders": {
        "columns": ["generated_id", "product_id", "customer", "quantity"],
        "primary_key": "generated_id",
        "natural_key_for_uniqueness": ["product_id", "customer", "quantity"],
        "foreign_keys": {"product_id": "products.generated_id"},
    },
}


class FakeChatService:
    """ChatService returning canned replies in order and recording prompts."""

    def __init__(self, *replies: str):
        self.replies = list(replies)
        self.prompts: list[str] = []

    def send_message(self, prompt: str) -> str:
        self.prompts.append(prompt)
        if not self.replies:
            raise RuntimeError("No more canned replies")
        return self.replies.pop(0)


def write_csv(path: Path, headers: list[str], rows: list[list[Any]]) -> Path:
    with path.open("w", newline="", encoding="utf-8") as f:
        writer = csv.writer(f)
        writer.writerow(headers)
        writer.writerows(rows)
    return path


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    """Settings configured for testing."""
    settings = Settings(
        db_path=tmp_path / "runs" / "reports.db",
        runs_dir=tmp_path / "runs",
        temperature=0.0,
        chunk_size=2,
    )
    settings.ensure_dirs()
    return settings


@pytest.fixture
def store(settings: Settings) -> TableStore:
    """Fresh TableStore for each test."""
    s = TableStore(settings.db_path)
    yield s
    s.close()


@pytest.fixture
def orders_csv(tmp_path: Path) -> Path:
    return write_csv(tmp_path / "orders.csv", ORDERS_HEADERS, ORDERS_ROWS)


@pytest.fixture
def csv_file(tmp_path: Path):
    """Write a CSV under tmp_path: ``csv_file(name, headers, rows)``."""

    def _write(name: str, headers: list[str], rows: list[list[Any]]) -> Path:
        return write_csv(tmp_path / name, headers, rows)

    return _write


@pytest.fixture
def orders_plan() -> SchemaPlan:
    return SchemaPlan.model_validate(ORDERS_PLAN)


@pytest.fixture
def make_agents():
    """Build an AgentManager whose chat service replies with ``replies``."""

    def _make(*replies: str) -> tuple[AgentManager, FakeChatService]:
        service = FakeChatService(*replies)
        return AgentManager(lambda: service), service

    return _make


@pytest.fixture
def plan_reply() -> str:
    return "```json\n" + json.dumps({"schema": ORDERS_PLAN}) + "\n```"
