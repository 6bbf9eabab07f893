"""Active exploration: exercise sampled values of each control and record effects."""
from __future__ import annotations

import re
from typing import Callable, Dict, Iterable, List, Optional, Sequence

from goldqa.src.backend.mcp_client import MCPClient
from goldqa.src.capture.differ import diff
from goldqa.src.capture.snapshot import StateSnapshotter
from goldqa.src.capture.stability import StabilityWaiter
from goldqa.src.explorer.controls import ControlDriver
from goldqa.src.explorer.discovery import ControlDiscovery
from goldqa.src.retrieval.index import DATA_EXPORT_KIND, RetrievalIndex
from goldqa.src.utils.config import CONFIG, ExplorationConfig
from goldqa.src.utils.errors import ExplorationError, GoldQAError
from goldqa.src.utils.models import ControlKind, DiscoveredControl, ExplorationFinding, SampledTrial
from goldqa.src.utils.trace import ExecutionTrace

SEARCH_TERM_QUERY = "string and categorical field values in the data export"
_CODE_LIKE_RE = re.compile(r"^[A-Z0-9_-]+$")
_MAX_TERM_LENGTH = 50


def sample_options(options: Sequence[str], k: int) -> List[str]:
    """First ``k`` options in discovery order."""
    return list(options[: max(k, 0)])


def search_terms_from_rows(rows: Iterable[Dict[str, str]]) -> List[str]:
    """Short, human-looking values suitable for typing into a search box."""

    terms: List[str] = []
    for row in rows:
        for value in row.values():
            text = str(value or "").strip()
            if not text or len(text) >= _MAX_TERM_LENGTH:
                continue
            if _CODE_LIKE_RE.match(text) or "http" in text or text.replace(".", "", 1).isdigit():
                continue
            if text not in terms:
                terms.append(text)
    return terms


class ActiveExplorer:
    """Discovers controls and records what sampled values do to the page."""

    def __init__(
        self,
        backend: MCPClient,
        index: RetrievalIndex,
        *,
        config: ExplorationConfig | None = None,
        snapshotter: StateSnapshotter | None = None,
        waiter: StabilityWaiter | None = None,
        driver: ControlDriver | None = None,
        discovery: ControlDiscovery | None = None,
        trace: ExecutionTrace | None = None,
        log_callback: Optional[Callable[[str], None]] = None,
    ) -> None:
        self.backend = backend
        self.index = index
        self.config = config or CONFIG.exploration
        self.trace = trace or ExecutionTrace()
        self._log_callback = log_callback
        self.snapshotter = snapshotter or StateSnapshotter(backend, log_callback=log_callback)
        self.waiter = waiter or StabilityWaiter(backend, self.config)
        self.driver = driver or ControlDriver(backend, self.waiter, log_callback=log_callback)
        self.discovery = discovery or ControlDiscovery(backend, log_callback=log_callback)

    def _log(self, message: str) -> None:
        print(f"[ActiveExplorer] {message}")
        if self._log_callback:
            self._log_callback(message)

    # ------------------------------------------------------------------
    async def discover(self) -> List[DiscoveredControl]:
        with self.trace.span("ActiveExplorer", "discover") as output:
            controls = await self.discovery.discover()
            output["controls"] = len(controls)
            output["skipped_heuristics"] = [error.heuristic for error in self.discovery.errors]
        return controls

    def sample(self, options: Sequence[str], k: int | None = None) -> List[str]:
        return sample_options(options, self.config.samples_per_control if k is None else k)

    async def explore(self, control: DiscoveredControl) -> ExplorationFinding:
        """Sample a control's values; any failure aborts with ExplorationError."""

        self._log(f"exploring {control.kind.value} {control.label!r} ({control.selector})")
        with self.trace.span("ActiveExplorer", "explore", input={"control": control.label}) as output:
            try:
                before = await self.snapshotter.capture()
                if control.kind is ControlKind.SEARCH_BOX:
                    options = await self._search_terms()
                else:
                    options = await self.driver.read_options(control)

                trials: List[SampledTrial] = []
                for value in self.sample(options):
                    await self.driver.apply(control, value)
                    stability = await self.waiter.wait()
                    after = await self.snapshotter.capture()
                    delta = diff(before, after)
                    reset = await self.driver.reset(control, before.url)
                    # next sample must start from a quiet page
                    settled = await self.waiter.wait()
                    trials.append(
                        SampledTrial(
                            option_or_term=value,
                            delta=delta,
                            after_screenshot_ref=after.screenshot_ref,
                            stable=stability.stable,
                            reset=reset,
                            settled_after_reset=settled.stable,
                        )
                    )
            except ExplorationError:
                raise
            except GoldQAError as exc:
                raise ExplorationError(control.label, str(exc)) from exc

            finding = ExplorationFinding(
                control=control,
                all_observed_options=list(options),
                sampled_trials=trials,
                before_screenshot_ref=before.screenshot_ref,
            )
            output.update(options=len(options), trials=len(trials), reset_failures=finding.reset_failures)
        return finding

    async def explore_all(self) -> List[ExplorationFinding]:
        """Explore every discovered control, indexing each finding as it lands."""

        controls = await self.discover()
        if len(controls) > self.config.max_controls:
            self._log(f"capping exploration at {self.config.max_controls} of {len(controls)} controls")
            controls = controls[: self.config.max_controls]

        findings: List[ExplorationFinding] = []
        for control in controls:
            finding = await self.explore(control)
            await self.index.ingest_finding(finding)
            findings.append(finding)
        self._log(f"explored {len(findings)} control(s)")
        return findings

    async def _search_terms(self) -> List[str]:
        rows = await self.index.query(SEARCH_TERM_QUERY, kinds=(DATA_EXPORT_KIND,))
        return search_terms_from_rows(rows)
