"""Row stream source: parses a CSV file in a worker thread.

The worker sends ``SourceEvent`` messages through a queue: any number of
``data`` batches followed by exactly one terminal ``complete`` or ``error``.
In preview mode parsing stops after ``row_limit`` rows and still completes
normally.
"""

from __future__ import annotations

import logging
import queue
import threading
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Iterator

import pandas as pd

from ra_agent.errors import SourceParseError
from ra_agent.models import Row

logger = logging.getLogger(__name__)


class EventKind(str, Enum):
    DATA = "data"
    COMPLETE = "complete"
    ERROR = "error"


@dataclass(frozen=True)
class SourceEvent:
    kind: EventKind
    rows: list[Row] = field(default_factory=list)
    message: str | None = None


def frame_to_rows(frame: pd.DataFrame) -> list[Row]:
    """Convert a parsed frame to plain-Python rows, NaN becoming ``None``."""
    frame = frame.astype(object).where(frame.notna(), None)
    return frame.to_dict(orient="records")


class RowStreamSource:
    """Streams parsed rows of a CSV file.

    Args:
        path: CSV file with a header row.
        row_limit: Stop after this many rows (preview mode); None parses everything.
        chunk_size: Rows per ``data`` batch.
    """

    def __init__(self, path: Path, *, row_limit: int | None = None, chunk_size: int = 1000):
        self.path = Path(path)
        self.row_limit = row_limit
        self.chunk_size = max(1, chunk_size)

    @classmethod
    def preview(cls, path: Path, rows: int = 10) -> RowStreamSource:
        return cls(path, row_limit=rows, chunk_size=rows)

    @property
    def is_preview(self) -> bool:
        return self.row_limit is not None

    def _produce(self, out: queue.Queue[SourceEvent]) -> None:
        """Worker body: parse the file and post events."""
        try:
            reader = pd.read_csv(
                self.path,
                chunksize=self.chunk_size,
                nrows=self.row_limit,
                skipinitialspace=True,
            )
            with reader:
                for chunk in reader:
                    out.put(SourceEvent(EventKind.DATA, rows=frame_to_rows(chunk)))
        except pd.errors.EmptyDataError:
            logger.warning("No data in %s", self.path)
        except (OSError, UnicodeDecodeError, pd.errors.ParserError) as e:
            out.put(SourceEvent(EventKind.ERROR, message=str(e)))
            return
        except Exception as e:
            logger.exception("Row source worker failed on %s", self.path)
            out.put(SourceEvent(EventKind.ERROR, message=f"{type(e).__name__}: {e}"))
            return
        out.put(SourceEvent(EventKind.COMPLETE))

    def iter_events(self) -> Iterator[SourceEvent]:
        """Start the worker and yield its events until the terminal one."""
        events: queue.Queue[SourceEvent] = queue.Queue()
        worker = threading.Thread(
            target=self._produce,
            args=(events,),
            name=f"row-source-{self.path.name}",
            daemon=True,
        )
        worker.start()
        try:
            while True:
                event = events.get()
                yield event
                if event.kind is not EventKind.DATA:
                    break
        finally:
            worker.join()

    def collect(self) -> list[Row]:
        """Buffer every row of the stream.

        Raises:
            SourceParseError: If the worker reports a parse error.
        """
        rows: list[Row] = []
        for event in self.iter_events():
            if event.kind is EventKind.DATA:
                rows.extend(event.rows)
            elif event.kind is EventKind.ERROR:
                raise SourceParseError(f"Error parsing {self.path.name}: {event.message}")
        mode = "preview" if self.is_preview else "full"
        logger.info("Parsed %d rows from %s (%s)", len(rows), self.path.name, mode)
        return rows
