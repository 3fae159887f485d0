"""Folds per-story results into the run verdict."""

from __future__ import annotations

import logging
from typing import Optional

from eyes_storybook.models.test_result import RunVerdict, TestResult

logger = logging.getLogger(__name__)

SUCCESS_EXIT_CODE = 0
FATAL_EXIT_CODE = 1
DIFFS_FOUND_EXIT_CODE = 130


def exit_code_for(results: list[TestResult], fatal: bool = False) -> int:
    """Fatal beats visual differences, which beat success. New baselines never fail."""
    if fatal:
        return FATAL_EXIT_CODE
    if any(r.is_failed for r in results):
        return DIFFS_FOUND_EXIT_CODE
    return SUCCESS_EXIT_CODE


def outcome_label(result: TestResult) -> str:
    if result.is_new:
        return "New"
    if result.is_failed:
        return f"Failed {result.failed_steps} of {result.steps}"
    return "Passed"


class ResultAggregator:
    """Collects results in any order; the verdict does not depend on it."""

    def __init__(self) -> None:
        self._results: list[TestResult] = []

    def add(self, result: TestResult) -> None:
        self._results.append(result)
        logger.info("[%s] %s", outcome_label(result).upper(), result.name)

    @property
    def results(self) -> list[TestResult]:
        return list(self._results)

    def verdict(self) -> RunVerdict:
        return RunVerdict(
            results=self.results,
            exit_code=exit_code_for(self._results),
            dashboard_url=self._dashboard_url(),
        )

    @staticmethod
    def fatal_verdict(error: BaseException) -> RunVerdict:
        # Partial results are never reported for an aborted run
        return RunVerdict(results=[], exit_code=FATAL_EXIT_CODE, fatal_error=str(error) or type(error).__name__)

    def _dashboard_url(self) -> Optional[str]:
        for result in self._results:
            if result.app_urls.batch:
                return result.app_urls.batch
        return None
