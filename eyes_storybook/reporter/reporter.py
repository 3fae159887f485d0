"""Human-readable run summary and report files."""

from __future__ import annotations

import logging
from pathlib import Path

from rich.console import Console
from rich.markup import escape

from eyes_storybook.models.test_result import RunVerdict, TestResult

from .aggregator import outcome_label
from .json_report import generate_json_report

logger = logging.getLogger(__name__)


def summary_line(result: TestResult) -> str:
    size = str(result.host_display_size) if result.host_display_size else "unknown"
    return f"{result.name} [{size}] - {outcome_label(result)}"


def summary_lines(verdict: RunVerdict) -> list[str]:
    """Plain-text summary: one line per story, then the dashboard pointer."""
    if verdict.fatal_error is not None:
        return [f"Run failed: {verdict.fatal_error}"]
    if not verdict.results:
        return ["Test is finished but no results returned."]
    lines = [summary_line(r) for r in verdict.results]
    if verdict.dashboard_url:
        lines.append(f"See details at {verdict.dashboard_url}")
    return lines


class Reporter:
    """Prints the verdict and writes the configured report files."""

    def __init__(self, console: Console, report_output_dir: str | None = None):
        self.console = console
        self.report_output_dir = report_output_dir

    def print_summary(self, verdict: RunVerdict) -> None:
        lines = summary_lines(verdict)
        if verdict.fatal_error is not None:
            self.console.print(f"[red]{escape(lines[0])}[/red]")
            return
        if not verdict.results:
            self.console.print(escape(lines[0]))
            return

        self.console.print("\n[bold][EYES: TEST RESULTS]:[/bold]")
        for result, line in zip(verdict.results, lines):
            color = "red" if result.is_failed else "green"
            text = f"[{color}]{escape(line)}[/{color}]"
            if result.error:
                text += f" [dim]({escape(result.error)})[/dim]"
            self.console.print(text, highlight=False)

        self.console.print(
            f"\n{verdict.total} stories: [green]{verdict.passed} passed[/green], "
            f"[red]{verdict.failed} failed[/red], [green]{verdict.new} new[/green]"
        )
        if verdict.dashboard_url:
            self.console.print(f"[blue]{escape(lines[-1])}[/blue]")

    def generate_reports(self, verdict: RunVerdict, report_id: str) -> dict[str, str]:
        """Write report files; returns format -> file path."""
        if not self.report_output_dir:
            return {}
        path = Path(self.report_output_dir) / f"report_{report_id}.json"
        logger.debug("Generating JSON report...")
        generate_json_report(verdict, path)
        logger.info("JSON report: %s", path)
        return {"json": str(path)}
