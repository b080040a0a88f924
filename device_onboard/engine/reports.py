"""Run report files written after each run."""

from __future__ import annotations

from pathlib import Path

from device_onboard.common.fs import write_csv, write_json
from device_onboard.common.models import RunOutcome

RESULT_HEADERS = ["serial", "result", "status", "reason", "import_id", "attempts"]


def write_run_report(out_dir: Path, run_id: str, outcome: RunOutcome) -> dict[str, Path]:
    summary_path = out_dir / f"{run_id}_summary.json"
    results_path = out_dir / f"{run_id}_results.csv"

    payload = outcome.to_dict()
    payload["run_id"] = run_id
    write_json(summary_path, payload)
    write_csv(results_path, RESULT_HEADERS, (row.to_dict() for row in outcome.results))
    return {"summary": summary_path, "results": results_path}
