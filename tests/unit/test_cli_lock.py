"""Unit tests for ingest lock helpers in CLI."""

from pathlib import Path

import pytest

from ra_agent.cli import _acquire_ingest_lock, _release_ingest_lock


class TestIngestLock:
    def test_acquire_and_release(self, tmp_path: Path):
        lock_path = tmp_path / ".ingest.lock"

        _acquire_ingest_lock(lock_path)
        assert lock_path.exists()
        assert '"pid"' in lock_path.read_text(encoding="utf-8")

        _release_ingest_lock(lock_path)
        assert not lock_path.exists()

    def test_second_acquire_fails(self, tmp_path: Path):
        lock_path = tmp_path / ".ingest.lock"
        _acquire_ingest_lock(lock_path)

        try:
            with pytest.raises(RuntimeError, match="already running"):
                _acquire_ingest_lock(lock_path)
        finally:
            _release_ingest_lock(lock_path)

    def test_release_without_lock(self, tmp_path: Path):
        _release_ingest_lock(tmp_path / ".ingest.lock")
