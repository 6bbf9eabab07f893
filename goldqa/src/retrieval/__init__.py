"""Data export ingestion and embedding-based retrieval."""

from .embeddings import EmbeddingClient, cosine_similarity
from .export import DataExport, load_export, parse_tsv, summarize_export
from .index import RetrievalIndex, RetrievalRecord, ScoredRecord, chunk_rows, render_rows
from .object_store import LocalObjectStore, S3ObjectStore, build_object_store

__all__ = [
    "DataExport",
    "EmbeddingClient",
    "LocalObjectStore",
    "RetrievalIndex",
    "RetrievalRecord",
    "S3ObjectStore",
    "ScoredRecord",
    "build_object_store",
    "chunk_rows",
    "cosine_similarity",
    "load_export",
    "parse_tsv",
    "render_rows",
    "summarize_export",
]
