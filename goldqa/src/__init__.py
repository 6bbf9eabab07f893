"""GoldQA package root exposing high-level pipeline helpers."""

from goldqa.src.backend.mcp_client import MCPClient
from goldqa.src.capture.differ import diff
from goldqa.src.capture.snapshot import StateSnapshotter
from goldqa.src.execution.engine import ExecutionEngine
from goldqa.src.explorer.active_explorer import ActiveExplorer
from goldqa.src.orchestrator import LearningPipeline, LearningResult
from goldqa.src.reporting.report import build_summary
from goldqa.src.retrieval.index import RetrievalIndex

__all__ = [
    "ActiveExplorer",
    "ExecutionEngine",
    "LearningPipeline",
    "LearningResult",
    "MCPClient",
    "RetrievalIndex",
    "StateSnapshotter",
    "build_summary",
    "diff",
]
