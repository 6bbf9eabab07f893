"""
GoldQA learning pipeline.

Ingests data exports, explores the UI, maps fields to controls, synthesizes
tests and replays them. Every stage awaits the previous one on a single
browser session.
"""
from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence

from goldqa.src.backend.mcp_client import MCPClient
from goldqa.src.execution.engine import ExecutionEngine
from goldqa.src.execution.obstacles import ReasoningObstacleHandler
from goldqa.src.explorer.active_explorer import ActiveExplorer
from goldqa.src.reporting.report import ReportWriter
from goldqa.src.reporting.storage import TestData, TestStorage
from goldqa.src.retrieval.embeddings import EmbeddingClient
from goldqa.src.retrieval.export import DataExport
from goldqa.src.retrieval.index import RetrievalIndex
from goldqa.src.retrieval.object_store import build_object_store
from goldqa.src.synthesis.generator import TestSynthesizer
from goldqa.src.synthesis.mapper import FieldMapper
from goldqa.src.synthesis.reasoning import ReasoningClient
from goldqa.src.utils.config import CONFIG, AppConfig
from goldqa.src.utils.errors import GoldQAError, IndexingError
from goldqa.src.utils.models import ExplorationFinding, FieldControlMapping, TestRun, TestSpecification
from goldqa.src.utils.trace import ExecutionTrace


@dataclass(slots=True)
class LearningResult:
    """Structured outcome of ``perform_complete_learning``; never raised."""

    success: bool
    error: Optional[str] = None
    findings: List[ExplorationFinding] = field(default_factory=list)
    mappings: List[FieldControlMapping] = field(default_factory=list)
    tests: List[TestSpecification] = field(default_factory=list)
    index_location: Optional[str] = None
    duration_ms: int = 0
    trace: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "error": self.error,
            "results": {
                "ui_elements": [finding.model_dump(mode="json") for finding in self.findings],
                "mappings": [mapping.model_dump(mode="json") for mapping in self.mappings],
                "test_cases": [test.model_dump(mode="json") for test in self.tests],
            },
            "index_location": self.index_location,
            "duration_ms": self.duration_ms,
            "execution_trace": self.trace,
        }


class LearningPipeline:
    """Wires the stages together around one ExecutionTrace."""

    def __init__(
        self,
        backend: MCPClient,
        index: RetrievalIndex,
        reasoning: ReasoningClient,
        *,
        config: AppConfig | None = None,
        explorer: ActiveExplorer | None = None,
        mapper: FieldMapper | None = None,
        synthesizer: TestSynthesizer | None = None,
        engine: ExecutionEngine | None = None,
        storage: TestStorage | None = None,
        report_writer: ReportWriter | None = None,
        trace: ExecutionTrace | None = None,
        log_callback: Optional[Callable[[str], None]] = None,
    ) -> None:
        self.config = config or CONFIG
        self.trace = trace or index.trace
        self.backend = backend
        self.index = index
        self.reasoning = reasoning
        self._log_callback = log_callback
        self.explorer = explorer or ActiveExplorer(
            backend, index, config=self.config.exploration, trace=self.trace, log_callback=log_callback
        )
        self.mapper = mapper or FieldMapper(index, reasoning, trace=self.trace, log_callback=log_callback)
        self.synthesizer = synthesizer or TestSynthesizer(index, reasoning, trace=self.trace, log_callback=log_callback)
        self.engine = engine or ExecutionEngine(
            backend,
            index,
            obstacle_handler=ReasoningObstacleHandler(reasoning),
            trace=self.trace,
            log_callback=log_callback,
        )
        self.storage = storage or TestStorage()
        self.report_writer = report_writer or ReportWriter(self.config.storage.reports_dir)
        self.last_report_dir = None

    @classmethod
    def from_config(
        cls,
        config: AppConfig | None = None,
        *,
        log_callback: Optional[Callable[[str], None]] = None,
    ) -> "LearningPipeline":
        settings = config or CONFIG
        trace = ExecutionTrace()
        backend = MCPClient(settings.mcp, log_callback=log_callback)
        index = RetrievalIndex(
            EmbeddingClient(settings.llm, max_chars=settings.retrieval.max_embedding_chars),
            config=settings.retrieval,
            store=build_object_store(settings.storage),
            trace=trace,
            log_callback=log_callback,
        )
        reasoning = ReasoningClient(settings.llm, trace=trace)
        return cls(backend, index, reasoning, config=settings, trace=trace, log_callback=log_callback)

    def _log(self, message: str) -> None:
        print(f"[LearningPipeline] {message}")
        if self._log_callback:
            self._log_callback(message)

    # ------------------------------------------------------------------
    async def ingest_exports(self, exports: Sequence[DataExport]) -> int:
        """Index every non-empty export; having no records at all is fatal."""

        indexed = 0
        for export in exports:
            if not export.rows:
                self._log(f"{export.name}: no records, skipped")
                continue
            await self.index.ingest_export(export)
            indexed += len(export.rows)
        if indexed == 0:
            raise IndexingError("no data export records to index")
        return indexed

    async def perform_complete_learning(
        self,
        exports: Sequence[DataExport],
        *,
        target_url: str | None = None,
    ) -> LearningResult:
        """Run learning under the configured timeout and report success or failure."""

        result = LearningResult(success=False)
        started = time.perf_counter()
        timeout = self.config.pipeline.learning_timeout_s
        try:
            await asyncio.wait_for(self._learn(exports, target_url or self.config.pipeline.target_url, result), timeout=timeout)
            result.success = True
        except asyncio.TimeoutError:
            result.error = f"learning timed out after {timeout:g}s"
        except GoldQAError as exc:
            result.error = f"{type(exc).__name__}: {exc}"
        except Exception as exc:
            result.error = f"unexpected {type(exc).__name__}: {exc}"

        result.duration_ms = int((time.perf_counter() - started) * 1000)
        self.trace.log_step(
            "LearningPipeline",
            "perform_complete_learning",
            output={"error": result.error, "tests": len(result.tests)},
            duration_ms=result.duration_ms,
            success=result.success,
        )
        result.trace = self.trace.to_dict()
        self._log("learning complete" if result.success else f"learning failed: {result.error}")
        return result

    async def _learn(self, exports: Sequence[DataExport], target_url: Optional[str], result: LearningResult) -> None:
        await self.ingest_exports(exports)

        if target_url:
            MCPClient.require(await self.backend.navigate(target_url))

        result.findings = await self.explorer.explore_all()
        result.mappings = await self.mapper.map_fields_to_controls(list(self.index.summaries.values()), result.findings)
        if self.index.store is not None:
            result.index_location = await self.index.persist()

        result.tests = await self.synthesizer.synthesize_tests(result.mappings)
        self.storage.save_test_cases(result.tests)

    async def run_tests(
        self,
        tests: Sequence[TestSpecification],
        run_id: str | None = None,
        *,
        target_url: str | None = None,
    ) -> TestRun:
        """Execute, seal, store and report one batch of tests."""

        run = await self.engine.execute_all(tests, run_id, target_url=target_url or self.config.pipeline.target_url)
        by_id = {test.id: test for test in tests}
        for outcome in run.outcomes:
            self.storage.save_result(outcome)
            test = by_id.get(outcome.test_id)
            if test is None:
                continue
            self.storage.save_data(
                TestData(
                    id=f"{run.run_id}-{test.id}",
                    test_case_id=test.id,
                    name=test.name or test.id,
                    inputs={test.target_field: test.test_values[0] if test.test_values else ""},
                    expected_outputs={"row_count": len(outcome.expected_data)},
                )
            )
        self.last_report_dir = self.report_writer.write(run, tests, extra_metadata={"trace": self.trace.get_summary()})
        self._log(f"report written to {self.last_report_dir}")
        return run
