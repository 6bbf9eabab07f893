"""Run artifacts: metadata, per-test reports and the rendered summary."""
from __future__ import annotations

import html
import json
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from goldqa.src.utils.config import CONFIG
from goldqa.src.utils.models import TestRun, TestSpecification


def build_summary(run: TestRun, tests: Sequence[TestSpecification] = ()) -> Dict[str, Any]:
    """Counters, pass rate and per-kind breakdown for a sealed run."""

    counters = run.counters()
    by_id = {test.id: test for test in tests}
    by_kind: Dict[str, Dict[str, int]] = {}
    for outcome in run.outcomes:
        test = by_id.get(outcome.test_id)
        kind = test.kind.value if test else "unknown"
        bucket = by_kind.setdefault(kind, {"passed": 0, "failed": 0, "error": 0, "skipped": 0})
        bucket[outcome.status.value] += 1

    total = counters["total"]
    return {
        "run_id": run.run_id,
        "started_at": run.started_at.isoformat(),
        "finished_at": run.finished_at.isoformat() if run.finished_at else None,
        "duration_ms": run.duration_ms,
        "counters": counters,
        "pass_rate": round(counters["passed"] / total * 100, 1) if total else 0.0,
        "by_kind": by_kind,
        "failures": [
            {"test_id": outcome.test_id, "status": outcome.status.value, "error": outcome.error}
            for outcome in run.outcomes
            if outcome.status.value in ("failed", "error")
        ],
    }


def render_summary_html(summary: Dict[str, Any], tests: Sequence[TestSpecification] = ()) -> str:
    names = {test.id: test.name or test.id for test in tests}
    counters = summary["counters"]
    rows: List[str] = []
    for failure in summary["failures"]:
        rows.append(
            "<tr><td>{}</td><td>{}</td><td>{}</td></tr>".format(
                html.escape(names.get(failure["test_id"], failure["test_id"])),
                html.escape(failure["status"]),
                html.escape(failure["error"] or ""),
            )
        )
    failure_table = (
        "<table><thead><tr><th>Test</th><th>Status</th><th>Detail</th></tr></thead><tbody>"
        + "".join(rows)
        + "</tbody></table>"
        if rows
        else "<p>All tests passed.</p>"
    )
    return (
        "<!DOCTYPE html><html><head><meta charset=\"utf-8\">"
        f"<title>GoldQA report {html.escape(summary['run_id'])}</title></head><body>"
        f"<h1>Run {html.escape(summary['run_id'])}</h1>"
        f"<p>Total {counters['total']} &middot; passed {counters['passed']} &middot; "
        f"failed {counters['failed']} &middot; error {counters['error']} &middot; "
        f"pass rate {summary['pass_rate']}% &middot; {summary['duration_ms']} ms</p>"
        f"{failure_table}</body></html>"
    )


class ReportWriter:
    """Writes ``<reports_dir>/<run_id>/`` artifacts for a sealed run."""

    def __init__(self, reports_dir: Path | str | None = None) -> None:
        self.reports_dir = Path(reports_dir) if reports_dir is not None else CONFIG.storage.reports_dir

    def write(
        self,
        run: TestRun,
        tests: Sequence[TestSpecification] = (),
        *,
        extra_metadata: Optional[Dict[str, Any]] = None,
    ) -> Path:
        if not run.sealed:
            raise ValueError(f"run {run.run_id} must be sealed before reporting")

        run_dir = self.reports_dir / run.run_id
        run_dir.mkdir(parents=True, exist_ok=True)
        by_id = {test.id: test for test in tests}
        summary = build_summary(run, tests)

        metadata = {
            "run_id": run.run_id,
            "started_at": run.started_at.isoformat(),
            "finished_at": run.finished_at.isoformat() if run.finished_at else None,
            "duration_ms": run.duration_ms,
            "counters": summary["counters"],
            "tests": [outcome.test_id for outcome in run.outcomes],
            **(extra_metadata or {}),
        }
        self._write_json(run_dir / "run-metadata.json", metadata)

        for outcome in run.outcomes:
            test = by_id.get(outcome.test_id)
            report = {
                "test": test.model_dump(mode="json") if test else {"id": outcome.test_id},
                "outcome": outcome.model_dump(mode="json"),
            }
            self._write_json(run_dir / outcome.test_id / "test-report.json", report)

        (run_dir / "summary-report.html").write_text(render_summary_html(summary, tests), encoding="utf-8")
        return run_dir

    @staticmethod
    def _write_json(path: Path, payload: Dict[str, Any]) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(payload, ensure_ascii=False, indent=2), encoding="utf-8")
