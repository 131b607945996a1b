"""Application configuration via environment variables."""

from __future__ import annotations

from pathlib import Path
from typing import Literal

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Settings loaded from environment with RA_ prefix."""

    model_config = {
        "env_prefix": "RA_",
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }

    # LLM (google_genai provider, key from GOOGLE_API_KEY or `ra set-key`)
    model_name: str = "gemini-2.5-flash"
    temperature: float = 0.0

    # Paths
    db_path: Path = Path("runs/reports.db")
    runs_dir: Path = Path("runs")

    # Row source
    preview_rows: int = 10
    chunk_size: int = 1000

    # Materialization
    key_encoding: Literal["delimited", "json"] = "delimited"
    key_delimiter: str = "|"
    resume_surrogate_ids: bool = True

    # Reports
    join_precedence: Literal["child", "parent"] = "child"
    summary_sample_rows: int = 20

    verbose: bool = False

    # Retry / AI service
    llm_refresh_interval_s: float = 600.0   # key refresh interval (seconds)
    llm_max_retries: int = 5                # max retries for transient errors
    llm_base_delay_s: float = 1.0           # initial backoff delay
    llm_max_delay_s: float = 60.0           # backoff cap

    def ensure_dirs(self) -> None:
        """Create required directories if they don't exist."""
        self.runs_dir.mkdir(parents=True, exist_ok=True)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
