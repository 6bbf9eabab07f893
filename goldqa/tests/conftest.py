from __future__ import annotations

from typing import Any, Callable, Dict, List, Optional

import pytest

from goldqa.src.backend.mcp_client import MCPClient, ToolResult
from goldqa.src.capture.stability import DOM_FINGERPRINT_SCRIPT
from goldqa.src.execution.engine import ROW_EXTRACTION_SCRIPT
from goldqa.src.retrieval.export import DataExport
from goldqa.src.retrieval.index import RetrievalIndex
from goldqa.src.utils.config import ExplorationConfig, MCPConfig, RetrievalConfig
from goldqa.src.utils.errors import EmbeddingError

ITEMS_TSV = "Name\tRegion\tPrice\nAlpha\tNorth\t10\nBravo\tSouth\t20\nCharlie\tNorth\t30\n"

Handler = Callable[..., Optional[ToolResult]]


class FakeBackend(MCPClient):
    """In-memory stand-in for the automation host.

    ``elements`` maps a selector to a list of element dicts (or a callable
    returning one). ``handlers`` can override any action; returning None
    falls through to the default behaviour.
    """

    def __init__(self) -> None:
        super().__init__(MCPConfig(host_url="http://mcp.test", request_timeout=1, session_id="test"))
        self.url = "http://app.test/items"
        self.elements: Dict[str, Any] = {}
        self.handlers: Dict[str, Handler] = {}
        self.rows: List[Dict[str, str]] = []
        self.rows_by_value: Dict[str, List[Dict[str, str]]] = {}
        self.fingerprint: Optional[str] = "100:2000:3"
        self.applied: Optional[str] = None
        self.calls: List[tuple] = []

    def actions(self) -> List[str]:
        return [action for action, _ in self.calls]

    def _elements(self, selector: str) -> List[Dict[str, Any]]:
        value = self.elements.get(selector, [])
        if callable(value):
            value = value()
        if isinstance(value, Exception):
            raise value
        return list(value)

    async def call(self, action: str, **params: Any) -> ToolResult:
        self.calls.append((action, params))
        handler = self.handlers.get(action)
        if handler is not None:
            result = handler(**params)
            if result is not None:
                return result
        return self._default(action, params)

    def _default(self, action: str, params: Dict[str, Any]) -> ToolResult:
        if action == "get_current_url":
            return ToolResult(action, True, {"url": self.url})
        if action == "navigate":
            self.url = params["url"]
            self.applied = None
            return ToolResult(action, True, {"url": self.url})
        if action == "query_elements":
            elements = self._elements(params["selector"])
            return ToolResult(action, True, {"count": len(elements), "elements": elements})
        if action == "select_option":
            self.applied = params["label"]
            return ToolResult(action, True)
        if action == "fill":
            self.applied = params["value"] or None
            return ToolResult(action, True)
        if action == "screenshot":
            return ToolResult(action, True, {"path": f"/shots/{params.get('name', 'shot')}.png"})
        if action == "evaluate":
            if params["script"] == DOM_FINGERPRINT_SCRIPT:
                if self.fingerprint is None:
                    return ToolResult(action, False, error="evaluate failed")
                return ToolResult(action, True, {"result": self.fingerprint})
            if params["script"] == ROW_EXTRACTION_SCRIPT:
                rows = self.rows_by_value.get(self.applied or "", self.rows)
                return ToolResult(action, True, {"result": rows})
            return ToolResult(action, True, {"result": None})
        return ToolResult(action, True)


class FakeEmbedder:
    """Returns the vector of the first key contained in the text, else ``default``."""

    def __init__(self, default: Optional[List[float]] = None) -> None:
        self.default = default or [1.0, 0.5, 0.25]
        self.vectors: Dict[str, List[float]] = {}
        self.fail_on_call: Optional[int] = None
        self.calls: List[str] = []

    async def embed(self, text: str) -> List[float]:
        self.calls.append(text)
        if self.fail_on_call is not None and len(self.calls) == self.fail_on_call:
            raise EmbeddingError("embedding service unavailable")
        for key, vector in self.vectors.items():
            if key in text:
                return list(vector)
        return list(self.default)


class FakeReasoning:
    """Hands out queued replies in order; an Exception in the queue is raised."""

    def __init__(self, *replies: Any) -> None:
        self.replies: List[Any] = list(replies)
        self.requests: List[Dict[str, Any]] = []

    async def complete_json(self, messages, *, purpose: str = "reasoning") -> Any:
        self.requests.append({"purpose": purpose, "messages": messages})
        if not self.replies:
            raise AssertionError(f"unexpected reasoning call for {purpose}")
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return reply


@pytest.fixture
def backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
def embedder() -> FakeEmbedder:
    return FakeEmbedder()


@pytest.fixture
def retrieval_config() -> RetrievalConfig:
    return RetrievalConfig(chunk_size=50, top_k=10, min_similarity=0.7, max_embedding_chars=8000, max_records=None)


@pytest.fixture
def index(embedder, retrieval_config) -> RetrievalIndex:
    return RetrievalIndex(embedder, config=retrieval_config)


@pytest.fixture
def exploration_config() -> ExplorationConfig:
    return ExplorationConfig(
        samples_per_control=5,
        max_controls=10,
        settle_ms=0,
        stability_timeout_ms=1000,
        stability_quiet_ms=0,
        stability_poll_ms=0,
    )


@pytest.fixture
def items_export() -> DataExport:
    return DataExport.from_text("items.tsv", ITEMS_TSV)


@pytest.fixture
def reasoning() -> FakeReasoning:
    return FakeReasoning()
