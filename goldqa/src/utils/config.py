"""Configuration helpers for GoldQA services."""
from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


@dataclass(slots=True)
class LLMConfig:
    """Settings for the reasoning and embedding services."""

    api_key: Optional[str] = os.getenv("OPENAI_API_KEY")
    model: str = os.getenv("GOLDQA_LLM_MODEL", "gpt-4.1")
    embedding_model: str = os.getenv("GOLDQA_EMBEDDING_MODEL", "text-embedding-3-small")
    request_timeout: float = 60.0
    max_completion_tokens: Optional[int] = None

    def __post_init__(self) -> None:
        max_tokens = os.getenv("GOLDQA_LLM_MAX_COMPLETION_TOKENS") or os.getenv("OPENAI_MAX_COMPLETION_TOKENS")
        if max_tokens:
            try:
                self.max_completion_tokens = int(max_tokens)
            except ValueError:
                self.max_completion_tokens = None


@dataclass(slots=True)
class MCPConfig:
    """Connection details for the Playwright MCP host."""

    host_url: str = os.getenv("MCP_HOST_URL", "http://localhost:8001")
    request_timeout: int = int(os.getenv("MCP_TIMEOUT", "45"))
    session_id: str = os.getenv("MCP_SESSION_ID", "default")


@dataclass(slots=True)
class RetrievalConfig:
    """Chunking and similarity thresholds for the retrieval index."""

    chunk_size: int = _env_int("RAG_CHUNK_SIZE", 50)
    top_k: int = _env_int("RAG_TOP_K_RESULTS", 10)
    min_similarity: float = _env_float("RAG_MIN_SIMILARITY", 0.7)
    max_embedding_chars: int = 8000
    max_records: Optional[int] = None

    def __post_init__(self) -> None:
        capacity = os.getenv("RAG_MAX_RECORDS")
        if capacity:
            try:
                self.max_records = int(capacity)
            except ValueError:
                self.max_records = None


@dataclass(slots=True)
class ExplorationConfig:
    """Budgets for active exploration of discovered controls."""

    samples_per_control: int = _env_int("GOLDQA_SAMPLES_PER_CONTROL", 5)
    max_controls: int = _env_int("GOLDQA_MAX_CONTROLS", 10)
    settle_ms: int = 2000
    stability_timeout_ms: int = 5000
    stability_quiet_ms: int = 500
    stability_poll_ms: int = 250


@dataclass(slots=True)
class StorageConfig:
    """Where the serialized index and run reports are written."""

    backend: str = os.getenv("GOLDQA_STORE_BACKEND", "local")
    local_root: Path = Path(os.getenv("GOLDQA_STORE_DIR", str(Path.home() / ".goldqa" / "store")))
    bucket: Optional[str] = os.getenv("S3_BUCKET_NAME")
    region: Optional[str] = os.getenv("AWS_REGION")
    reports_dir: Path = Path(os.getenv("GOLDQA_REPORTS_DIR", "test-reports"))


@dataclass(slots=True)
class PipelineConfig:
    """Top-level learning pipeline settings."""

    learning_timeout_s: float = _env_float("GOLDQA_LEARNING_TIMEOUT", 60.0)
    target_url: Optional[str] = os.getenv("GOLDQA_TARGET_URL")


@dataclass(slots=True)
class AppConfig:
    """Aggregated configuration for the pipeline."""

    llm: LLMConfig = field(default_factory=LLMConfig)
    mcp: MCPConfig = field(default_factory=MCPConfig)
    retrieval: RetrievalConfig = field(default_factory=RetrievalConfig)
    exploration: ExplorationConfig = field(default_factory=ExplorationConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    pipeline: PipelineConfig = field(default_factory=PipelineConfig)


def validate_environment(config: AppConfig) -> List[str]:
    """Return the names of required settings that are missing."""

    missing: List[str] = []
    if not config.llm.api_key:
        missing.append("OPENAI_API_KEY")
    if not config.mcp.host_url:
        missing.append("MCP_HOST_URL")
    if config.storage.backend == "s3" and not config.storage.bucket:
        missing.append("S3_BUCKET_NAME")
    if config.storage.backend not in {"local", "s3"}:
        missing.append("GOLDQA_STORE_BACKEND (local|s3)")
    return missing


CONFIG = AppConfig()
