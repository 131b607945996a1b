"""Report writer: produces the output artifacts of a report run."""

from __future__ import annotations

import json
import re
from datetime import datetime
from pathlib import Path

import pandas as pd

from ra_agent.config import Settings
from ra_agent.models import ReportDocument


def _slug(text: str) -> str:
    return re.sub(r"[^a-z0-9]+", "_", text.lower()).strip("_")[:40] or "report"


class ReportWriter:
    """Writes report artifacts to a run directory.

    Artifacts produced:
    - report.json: Full structured report (request, summary, rows, chart)
    - report.md: Human-readable markdown report
    - data.csv: The uniform result rows
    - audit_log.json: Query engine audit trail
    """

    def __init__(self, settings: Settings):
        self.settings = settings

    @property
    def _pointer(self) -> Path:
        return self.settings.runs_dir / "latest_run"

    def _resolve_run_dir(self, run_dir: Path | None = None) -> Path:
        """Resolve the run directory from explicit path or latest pointer."""
        if run_dir:
            return run_dir

        if self._pointer.exists():
            candidate = Path(self._pointer.read_text(encoding="utf-8").strip())
            if (candidate / "report.json").exists():
                return candidate

        candidates = [
            d for d in self.settings.runs_dir.iterdir()
            if d.is_dir() and (d / "report.json").exists()
        ] if self.settings.runs_dir.exists() else []
        if candidates:
            return max(candidates, key=lambda p: p.stat().st_mtime)

        raise FileNotFoundError("No report runs found. Run 'ra report' first.")

    def write_all(self, document: ReportDocument, audit_log: list[dict] | None = None) -> dict[str, Path]:
        """Write all artifacts for ``document`` into a new run directory.

        Returns:
            Dict mapping artifact name to file path.
        """
        stamp = (document.generated_at or datetime.now()).strftime("%Y%m%d_%H%M%S")
        run_dir = self.settings.runs_dir / f"{stamp}_{_slug(document.title)}"
        run_dir.mkdir(parents=True, exist_ok=True)

        artifacts: dict[str, Path] = {}

        json_path = run_dir / "report.json"
        json_path.write_text(document.model_dump_json(indent=2), encoding="utf-8")
        artifacts["report.json"] = json_path

        md_path = run_dir / "report.md"
        md_path.write_text(self._render_markdown(document), encoding="utf-8")
        artifacts["report.md"] = md_path

        csv_path = run_dir / "data.csv"
        frame = pd.DataFrame(document.result.rows, columns=document.result.columns)
        frame.to_csv(csv_path, index=False)
        artifacts["data.csv"] = csv_path

        audit_path = run_dir / "audit_log.json"
        audit_path.write_text(
            json.dumps(audit_log or [], indent=2, default=str), encoding="utf-8"
        )
        artifacts["audit_log.json"] = audit_path

        self._pointer.write_text(str(run_dir.resolve()), encoding="utf-8")
        return artifacts

    def load_document(self, run_dir: Path | None = None) -> ReportDocument:
        """Load ``report.json`` from a run directory (latest by default)."""
        run_dir = self._resolve_run_dir(run_dir)
        return ReportDocument.model_validate_json(
            (run_dir / "report.json").read_text(encoding="utf-8")
        )

    def _render_markdown(self, document: ReportDocument) -> str:
        """Render the report as markdown."""
        result = document.result
        lines = [f"# {document.title}", ""]
        if document.description:
            lines.extend([f"*{document.description}*", ""])

        lines.extend(["## Summary", "", document.summary or "_No summary._", ""])

        lines.extend(["## Data", ""])
        if result.columns:
            lines.append("| " + " | ".join(result.columns) + " |")
            lines.append("|" + "---|" * len(result.columns))
            for row in result.rows:
                cells = ["" if row.get(c) is None else str(row.get(c)) for c in result.columns]
                lines.append("| " + " | ".join(cells) + " |")
        lines.append("")

        chart = result.chart
        if chart.labels:
            lines.extend(
                [
                    "## Chart",
                    "",
                    f"- **Kind:** {chart.kind}",
                    f"- **Labels:** {chart.label_column}",
                    f"- **Series:** {chart.value_column}",
                    "",
                ]
            )

        lines.extend(
            [
                "## Query",
                "",
                f"- **Request:** {result.request.describe()}",
                f"- **Rows:** {result.row_count}",
                f"- **Generated:** {document.generated_at}",
                "",
            ]
        )
        return "\n".join(lines)
