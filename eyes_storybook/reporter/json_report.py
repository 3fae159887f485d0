"""JSON report output."""

from __future__ import annotations

import json
from pathlib import Path

from eyes_storybook.models.test_result import RunVerdict

from .aggregator import outcome_label


def generate_json_report(verdict: RunVerdict, output_path: Path) -> None:
    """Write a machine-readable JSON report."""
    report = verdict.model_dump(mode="json")
    report["summary"] = {
        "total": verdict.total,
        "passed": verdict.passed,
        "failed": verdict.failed,
        "new": verdict.new,
    }
    for entry, result in zip(report["results"], verdict.results):
        entry["outcome"] = outcome_label(result)

    output_path.parent.mkdir(parents=True, exist_ok=True)
    with open(output_path, "w") as f:
        json.dump(report, f, indent=2, default=str)
