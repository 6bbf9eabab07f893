"""Replay of test specifications against the live UI."""
from __future__ import annotations

import asyncio
import re
import time
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from goldqa.src.backend.mcp_client import MCPClient
from goldqa.src.capture.stability import StabilityWaiter
from goldqa.src.execution.obstacles import NullObstacleHandler, ObstacleHandler
from goldqa.src.execution.validation import (
    ASCENDING,
    DEFAULT_CRITERIA,
    DESCENDING,
    check_rows,
    criteria_for,
    ensure_valid,
    expected_rows_for,
)
from goldqa.src.explorer.controls import ControlDriver
from goldqa.src.retrieval.index import DATA_EXPORT_KIND, RetrievalIndex
from goldqa.src.utils.errors import GoldQAError, TestExecutionError, ValidationMismatch
from goldqa.src.utils.models import (
    Row,
    TestKind,
    TestOutcome,
    TestRun,
    TestSpecification,
    TestStatus,
    ValidationReport,
    utc_now,
)
from goldqa.src.utils.trace import ExecutionTrace

ROW_EXTRACTION_SCRIPT = """
() => {
    const table = document.querySelector('table');
    if (!table) return [];
    let headers = Array.from(table.querySelectorAll('thead th')).map((th) => th.innerText.trim());
    const rows = Array.from(table.querySelectorAll('tbody tr'));
    return rows.map((tr) => {
        const cells = Array.from(tr.querySelectorAll('td, th'));
        const record = {};
        cells.forEach((cell, i) => {
            const key = headers[i] || `column_${i + 1}`;
            record[key] = cell.innerText.trim();
        });
        return record;
    });
}
"""

_SAFE_NAME_RE = re.compile(r"[^a-zA-Z0-9_.-]+")

SORT_OPTION_HINTS: Dict[str, Tuple[str, ...]] = {
    "asc": ("asc", "low to high", "a-z", "a to z", "oldest", "smallest"),
    "desc": ("desc", "high to low", "z-a", "z to a", "newest", "largest"),
}


def pick_sort_option(options: Sequence[str], field: str, direction: str) -> Optional[str]:
    """Option of a sort dropdown matching ``direction``, preferring ones that name ``field``."""

    hints = SORT_OPTION_HINTS["desc" if direction in DESCENDING else "asc"]
    matching = [option for option in options if any(hint in option.lower() for hint in hints)]
    for option in matching:
        if field.lower() in option.lower():
            return option
    return matching[0] if matching else None


def new_run_id() -> str:
    return f"run-{datetime.now(timezone.utc):%Y-%m-%dT%H-%M-%S-%f}Z"


class ExecutionEngine:
    """Executes tests one at a time and isolates each test's failures."""

    def __init__(
        self,
        backend: MCPClient,
        index: RetrievalIndex,
        *,
        waiter: StabilityWaiter | None = None,
        driver: ControlDriver | None = None,
        obstacle_handler: ObstacleHandler | None = None,
        criteria: Sequence[str] = DEFAULT_CRITERIA,
        baseline_selector: str = "body",
        results_indicator: str = "table",
        wait_timeout_ms: int = 5000,
        obstacle_timeout_s: float = 30.0,
        target_url: str | None = None,
        trace: ExecutionTrace | None = None,
        log_callback: Optional[Callable[[str], None]] = None,
    ) -> None:
        self.backend = backend
        self.target_url = target_url
        self._run_url = target_url
        self.index = index
        self.waiter = waiter or StabilityWaiter(backend)
        self.driver = driver or ControlDriver(backend, self.waiter, log_callback=log_callback)
        self.obstacle_handler = obstacle_handler or NullObstacleHandler()
        self.criteria = tuple(criteria)
        self.baseline_selector = baseline_selector
        self.results_indicator = results_indicator
        self.wait_timeout_ms = wait_timeout_ms
        self.obstacle_timeout_s = obstacle_timeout_s
        self.trace = trace or ExecutionTrace()
        self._log_callback = log_callback

    def _log(self, message: str) -> None:
        print(f"[ExecutionEngine] {message}")
        if self._log_callback:
            self._log_callback(message)

    # ------------------------------------------------------------------
    async def execute_all(
        self,
        tests: Sequence[TestSpecification],
        run_id: str | None = None,
        *,
        target_url: str | None = None,
    ) -> TestRun:
        """Run ``tests`` in order. Every test starts from a fresh load of its page:
        its own ``target_url``, else ``target_url``, else the page open when the
        first test started."""

        run = TestRun(run_id=run_id or new_run_id())
        self._run_url = target_url or self.target_url
        self._log(f"{run.run_id}: executing {len(tests)} test(s)")
        for test in tests:
            run.add_outcome(await self.execute(test, run.run_id))
        run.seal()
        self.trace.log_step("ExecutionEngine", "run", input={"run_id": run.run_id}, output=run.counters(), duration_ms=run.duration_ms)
        self._log(f"{run.run_id}: {run.counters()}")
        return run

    async def execute(self, test: TestSpecification, run_id: str) -> TestOutcome:
        started_at = utc_now()
        started = time.perf_counter()
        screenshots: Dict[str, str] = {}
        observed: List[Row] = []
        expected: List[Row] = []
        report: Optional[ValidationReport] = None

        try:
            self._validate_spec(test)
            await self._prepare_page(test)
            screenshots["before"] = await self._screenshot(run_id, test, "before")
            await self._apply(test)
            await self.waiter.wait()
            MCPClient.require(await self.backend.wait_for_selector(self.results_indicator, timeout_ms=self.wait_timeout_ms))
            observed = await self._extract_rows()
            screenshots["after"] = await self._screenshot(run_id, test, "after")
            screenshots["results"] = await self._screenshot(run_id, test, "results")
            expected = await self._expected_rows(test)
            report = check_rows(observed, expected, test, criteria_for(test, self.criteria))
        except Exception as exc:  # one broken test must not abort the run
            self._log(f"{test.id}: error: {exc}")
            return self._outcome(test, run_id, TestStatus.ERROR, started, started_at, observed, expected, screenshots, error=str(exc))

        try:
            ensure_valid(report)
        except ValidationMismatch as mismatch:
            self._log(f"{test.id}: failed: {mismatch}")
            return self._outcome(
                test, run_id, TestStatus.FAILED, started, started_at, observed, expected, screenshots,
                error=str(mismatch), report=report,
            )
        self._log(f"{test.id}: passed ({report.actual_count} row(s))")
        return self._outcome(test, run_id, TestStatus.PASSED, started, started_at, observed, expected, screenshots, report=report)

    # ------------------------------------------------------------------
    @staticmethod
    def _validate_spec(test: TestSpecification) -> None:
        missing = []
        if not test.target_field:
            missing.append("target field")
        if not test.target_selector:
            missing.append("selector")
        if not test.test_values:
            missing.append("test values")
        if missing:
            raise TestExecutionError(f"{test.id} is missing {', '.join(missing)}")

    async def _start_url(self) -> str:
        if not self._run_url:
            location = MCPClient.require(await self.backend.current_url())
            self._run_url = str(location.get("url") or "")
            if not self._run_url:
                raise TestExecutionError("no target url configured and the current page url is unknown")
        return self._run_url

    async def _prepare_page(self, test: TestSpecification) -> None:
        # always reload so state applied by the previous test never leaks in
        url = test.target_url or await self._start_url()
        MCPClient.require(await self.backend.navigate(url))
        MCPClient.require(await self.backend.wait_for_selector(self.baseline_selector, timeout_ms=self.wait_timeout_ms))
        try:
            dismissed = await asyncio.wait_for(self.obstacle_handler.dismiss(self.backend), timeout=self.obstacle_timeout_s)
        except asyncio.TimeoutError:
            self._log(f"{test.id}: obstacle check timed out; continuing")
        except GoldQAError as exc:
            self._log(f"{test.id}: obstacle check failed ({exc}); continuing")
        else:
            if dismissed:
                self._log(f"{test.id}: dismissed an overlay")

    async def _apply(self, test: TestSpecification) -> None:
        value = test.test_values[0]
        if test.kind is TestKind.FILTER:
            await self.driver.select(test.target_selector, value)
        elif test.kind in (TestKind.SEARCH, TestKind.NUMERIC_FILTER):
            await self.driver.search(test.target_selector, value)
        else:
            await self._apply_sort(test, value)

    async def _apply_sort(self, test: TestSpecification, value: str) -> None:
        """Sort dropdowns get a matching option; sortable headers are clicked once
        for ascending and twice for descending."""

        direction = value.strip().lower()
        elements = MCPClient.elements_of(await self.backend.query_elements(test.target_selector, limit=1))
        if elements and elements[0].get("tagName") == "select":
            option = value
            if direction in ASCENDING | DESCENDING:
                option = pick_sort_option([str(item) for item in elements[0].get("options") or []], test.target_field, direction)
                if option is None:
                    raise TestExecutionError(f"{test.id}: no {direction} option in {test.target_selector}")
            await self.driver.select(test.target_selector, option)
            return
        if direction not in ASCENDING | DESCENDING:
            await self.driver.select(test.target_selector, value)
            return

        for _ in range(2 if direction in DESCENDING else 1):
            MCPClient.require(await self.backend.click(test.target_selector))
            await self.waiter.wait()

    async def _screenshot(self, run_id: str, test: TestSpecification, stage: str) -> str:
        name = _SAFE_NAME_RE.sub("_", f"{run_id}-{test.id}-{stage}")
        result = MCPClient.require(await self.backend.screenshot(name))
        return str(result.get("path") or "")

    async def _extract_rows(self) -> List[Row]:
        result = MCPClient.require(await self.backend.evaluate(ROW_EXTRACTION_SCRIPT))
        raw = result.get("result") or []
        if not isinstance(raw, list):
            raise TestExecutionError("row extraction returned a non-list payload")
        return [{str(key): str(value) for key, value in row.items()} for row in raw if isinstance(row, dict)]

    async def _expected_rows(self, test: TestSpecification) -> List[Row]:
        """Gold-standard rows for the test, sourced from the indexed export."""

        # The similarity query confirms the field/value is grounded in the export;
        # the full scan of indexed export rows keeps the expected count complete.
        await self.index.query(f"{test.target_field}: {test.test_values[0]}", kinds=(DATA_EXPORT_KIND,))
        source = test.source_file or None
        candidates = self.index.export_rows(test.target_field, source=source)
        if not candidates:
            where = f" in {source!r}" if source else ""
            raise TestExecutionError(f"no indexed export rows{where} carry field {test.target_field!r}")
        return expected_rows_for(test, candidates)

    @staticmethod
    def _outcome(
        test: TestSpecification,
        run_id: str,
        status: TestStatus,
        started: float,
        started_at: datetime,
        observed: List[Row],
        expected: List[Row],
        screenshots: Dict[str, str],
        *,
        error: str | None = None,
        report: ValidationReport | None = None,
    ) -> TestOutcome:
        return TestOutcome(
            test_id=test.id,
            run_id=run_id,
            status=status,
            observed_data=observed,
            expected_data=expected,
            screenshot_refs=screenshots,
            duration_ms=int((time.perf_counter() - started) * 1000),
            error=error,
            validation=report,
            started_at=started_at,
        )
