"""Embedding-backed retrieval index over data exports and exploration findings."""
from __future__ import annotations

import asyncio
import math
import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from goldqa.src.retrieval.embeddings import Embedder, cosine_similarity
from goldqa.src.retrieval.export import DataExport, summarize_export
from goldqa.src.retrieval.object_store import ObjectStore
from goldqa.src.utils.config import CONFIG, RetrievalConfig
from goldqa.src.utils.errors import EmbeddingError, IndexingError, RetrievalMissError, StorageError
from goldqa.src.utils.models import DataSummary, ExplorationFinding, FieldControlMapping, Row
from goldqa.src.utils.trace import ExecutionTrace

DATA_EXPORT_KIND = "data_export"
UI_EXPLORATION_KIND = "ui_exploration"
MAPPING_KIND = "mapping"


@dataclass(slots=True, frozen=True)
class RetrievalRecord:
    """One embedded chunk of rows. Owned by the index and never mutated."""

    id: str
    source_label: str
    kind: str
    payload: Tuple[Row, ...]
    embedding: Tuple[float, ...]
    rendered_text: str
    created_at: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())


@dataclass(slots=True)
class ScoredRecord:
    record: RetrievalRecord
    similarity: float


def chunk_rows(rows: Sequence[Row], size: int) -> List[List[Row]]:
    return [list(rows[start : start + size]) for start in range(0, len(rows), size)]


def render_rows(rows: Iterable[Row]) -> str:
    return "\n".join(", ".join(f"{key}: {value}" for key, value in row.items()) for row in rows)


def _normalize_row(row: Any) -> Row:
    if not isinstance(row, Mapping):
        raise IndexingError(f"row must be a mapping, got {type(row).__name__}")
    return {str(key): "" if value is None else str(value) for key, value in row.items()}


def finding_rows(finding: ExplorationFinding) -> List[Row]:
    """Flatten a finding into rows: one for the control, one per trial."""

    control = finding.control
    rows: List[Row] = [
        {
            "record_type": "ui_element",
            "control_kind": control.kind.value,
            "label": control.label,
            "selector": control.selector,
            "options": ", ".join(finding.all_observed_options) or "none",
            "description": (
                f"{control.kind.value} labeled \"{control.label}\" with selector \"{control.selector}\". "
                f"Available options: {', '.join(finding.all_observed_options) or 'none'}."
            ),
        }
    ]
    for trial in finding.sampled_trials:
        effects = trial.delta.summary()
        rows.append(
            {
                "record_type": "ui_behavior",
                "label": control.label,
                "selector": control.selector,
                "value": trial.option_or_term,
                "effects": "; ".join(effects) if effects else "no observable change",
                "reset": trial.reset.method if trial.reset.succeeded else "failed",
            }
        )
    return rows


def mapping_rows(mappings: Iterable[FieldControlMapping]) -> List[Row]:
    return [
        {
            "record_type": "mapping",
            "data_field": mapping.data_field,
            "source_file": mapping.source_file,
            "control_label": mapping.control_label,
            "control_selector": mapping.control_selector,
            "confidence": f"{mapping.confidence:.2f}",
            "rationale": mapping.rationale,
        }
        for mapping in mappings
    ]


class RetrievalIndex:
    """Linear-scan vector index. Single writer, no eviction.

    ``max_records`` is a hard capacity: ingesting past it is an IndexingError.
    """

    def __init__(
        self,
        embedder: Embedder,
        *,
        config: RetrievalConfig | None = None,
        store: ObjectStore | None = None,
        trace: ExecutionTrace | None = None,
        log_callback: Optional[Callable[[str], None]] = None,
    ) -> None:
        self.embedder = embedder
        self.config = config or CONFIG.retrieval
        self.store = store
        self.trace = trace or ExecutionTrace()
        self._log_callback = log_callback
        self._records: Dict[str, RetrievalRecord] = {}
        self._dimension: Optional[int] = None
        self.summaries: Dict[str, DataSummary] = {}
        self.last_persisted: Optional[str] = None

    def _log(self, message: str) -> None:
        print(f"[RetrievalIndex] {message}")
        if self._log_callback:
            self._log_callback(message)

    def __len__(self) -> int:
        return len(self._records)

    @property
    def records(self) -> List[RetrievalRecord]:
        return list(self._records.values())

    @property
    def dimension(self) -> Optional[int]:
        return self._dimension

    # ------------------------------------------------------------------
    async def ingest(self, source_label: str, rows: Sequence[Any], *, kind: str = DATA_EXPORT_KIND) -> List[RetrievalRecord]:
        """Chunk, embed and store ``rows``. All chunks land or none do."""

        if self.config.chunk_size <= 0:
            raise IndexingError(f"chunk size must be positive, got {self.config.chunk_size}")
        normalized = [_normalize_row(row) for row in rows]
        if not normalized:
            raise IndexingError(f"no rows to index for {source_label!r}")

        staged: List[RetrievalRecord] = []
        dimension = self._dimension
        with self.trace.span("RetrievalIndex", "ingest", input={"source": source_label, "rows": len(normalized)}) as output:
            for chunk in chunk_rows(normalized, self.config.chunk_size):
                if not chunk:
                    raise IndexingError(f"empty chunk for {source_label!r}")
                text = render_rows(chunk)
                try:
                    vector = await self.embedder.embed(text[: self.config.max_embedding_chars])
                except EmbeddingError as exc:
                    raise IndexingError(f"embedding failed for {source_label!r}: {exc}") from exc
                self._check_vector(vector, dimension, source_label)
                dimension = len(vector)
                staged.append(
                    RetrievalRecord(
                        id=f"emb-{uuid.uuid4().hex}",
                        source_label=source_label,
                        kind=kind,
                        payload=tuple(chunk),
                        embedding=tuple(float(value) for value in vector),
                        rendered_text=text,
                    )
                )

            capacity = self.config.max_records
            if capacity is not None and len(self._records) + len(staged) > capacity:
                raise IndexingError(f"index capacity {capacity} exceeded by {source_label!r}")

            for record in staged:
                self._records[record.id] = record
            self._dimension = dimension
            output["chunks"] = len(staged)
        self._log(f"indexed {len(normalized)} row(s) from {source_label!r} in {len(staged)} chunk(s)")
        return staged

    @staticmethod
    def _check_vector(vector: Sequence[float], dimension: Optional[int], source_label: str) -> None:
        if not vector:
            raise IndexingError(f"empty embedding for {source_label!r}")
        if dimension is not None and len(vector) != dimension:
            raise IndexingError(f"embedding dimension {len(vector)} != index dimension {dimension}")
        if not all(math.isfinite(value) for value in vector):
            raise IndexingError(f"non-finite embedding for {source_label!r}")
        if not any(value != 0 for value in vector):
            raise IndexingError(f"zero-norm embedding for {source_label!r}")

    async def ingest_export(self, export: DataExport) -> List[RetrievalRecord]:
        self.summaries[export.name] = summarize_export(export)
        return await self.ingest(export.name, export.rows, kind=DATA_EXPORT_KIND)

    async def ingest_finding(self, finding: ExplorationFinding) -> List[RetrievalRecord]:
        return await self.ingest(f"ui:{finding.control.label}", finding_rows(finding), kind=UI_EXPLORATION_KIND)

    async def ingest_mappings(self, mappings: Sequence[FieldControlMapping]) -> List[RetrievalRecord]:
        return await self.ingest("mappings", mapping_rows(mappings), kind=MAPPING_KIND)

    # ------------------------------------------------------------------
    async def search(
        self,
        text: str,
        k: int | None = None,
        min_similarity: float | None = None,
        *,
        kinds: Sequence[str] | None = None,
    ) -> List[ScoredRecord]:
        """Top ``k`` records at or above ``min_similarity``, best first."""

        limit = self.config.top_k if k is None else k
        threshold = self.config.min_similarity if min_similarity is None else min_similarity
        candidates = [record for record in self._records.values() if kinds is None or record.kind in kinds]
        if not candidates:
            raise RetrievalMissError(text, threshold)

        query_vector = await self.embedder.embed(text[: self.config.max_embedding_chars])
        scored: List[ScoredRecord] = []
        for record in candidates:
            try:
                similarity = cosine_similarity(query_vector, record.embedding)
            except ValueError as exc:
                raise IndexingError(f"query embedding incompatible with index: {exc}") from exc
            scored.append(ScoredRecord(record=record, similarity=similarity))

        passing = [item for item in scored if item.similarity >= threshold]
        if not passing:
            best = max(item.similarity for item in scored)
            raise RetrievalMissError(text, threshold, best)
        passing.sort(key=lambda item: item.similarity, reverse=True)
        return passing[:limit]

    async def query(
        self,
        text: str,
        k: int | None = None,
        min_similarity: float | None = None,
        *,
        kinds: Sequence[str] | None = None,
    ) -> List[Row]:
        """Flattened rows of the top matching records."""
        hits = await self.search(text, k, min_similarity, kinds=kinds)
        self.trace.log_step(
            "RetrievalIndex",
            "query",
            input={"text": text, "k": k, "min_similarity": min_similarity},
            output={"records": len(hits), "best": round(hits[0].similarity, 4)},
        )
        return [dict(row) for hit in hits for row in hit.record.payload]

    def field_values(self, field_name: str) -> List[str]:
        """Distinct values of a data field across every indexed export."""

        values: List[str] = []
        for summary in self.summaries.values():
            for value in summary.unique_values.get(field_name, []):
                if value not in values:
                    values.append(value)
        for record in self._records.values():
            if record.kind != DATA_EXPORT_KIND:
                continue
            for row in record.payload:
                value = row.get(field_name)
                if value and value not in values:
                    values.append(value)
        return values

    def export_rows(self, field_name: str | None = None, source: str | None = None) -> List[Row]:
        """Every indexed data-export row, optionally only those carrying ``field_name``
        or coming from the export named ``source``."""
        rows: List[Row] = []
        for record in self._records.values():
            if record.kind != DATA_EXPORT_KIND:
                continue
            if source and record.source_label != source:
                continue
            rows.extend(dict(row) for row in record.payload if field_name is None or field_name in row)
        return rows

    # ------------------------------------------------------------------
    def stats(self) -> Dict[str, Any]:
        by_kind: Dict[str, int] = {}
        for record in self._records.values():
            by_kind[record.kind] = by_kind.get(record.kind, 0) + 1
        return {
            "total_records": len(self._records),
            "records_by_kind": by_kind,
            "sources": sorted({record.source_label for record in self._records.values()}),
            "dimension": self._dimension,
        }

    def to_payload(self) -> Dict[str, Any]:
        return {
            "metadata": {name: summary.model_dump() for name, summary in self.summaries.items()},
            "vectors": [asdict(record) for record in self._records.values()],
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "stats": self.stats(),
        }

    async def persist(self) -> str:
        """Write the index to the durable store. Failure is an IndexingError."""

        if self.store is None:
            raise IndexingError("no object store configured")
        key = f"vector-store-{datetime.now(timezone.utc):%Y%m%dT%H%M%S%fZ}.json"
        try:
            location = await asyncio.to_thread(self.store.put_json, key, self.to_payload())
        except StorageError as exc:
            raise IndexingError(f"persisting index failed: {exc}") from exc
        self.last_persisted = location
        self.trace.log_step("RetrievalIndex", "persist", output={"location": location, **self.stats()})
        self._log(f"persisted {len(self._records)} record(s) to {location}")
        return location
