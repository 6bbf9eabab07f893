"""Embedding service client and vector math."""
from __future__ import annotations

import asyncio
from typing import List, Protocol, Sequence

import numpy as np
import openai
from openai import OpenAI

from goldqa.src.utils.config import CONFIG, LLMConfig
from goldqa.src.utils.errors import EmbeddingError

MAX_EMBEDDING_CHARS = 8000


class Embedder(Protocol):
    async def embed(self, text: str) -> List[float]:
        ...


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """dot(a, b) / (|a| * |b|); 0.0 when either vector has zero norm."""

    va = np.asarray(a, dtype=float)
    vb = np.asarray(b, dtype=float)
    if va.shape != vb.shape:
        raise ValueError(f"dimension mismatch: {va.shape} vs {vb.shape}")
    norm = np.linalg.norm(va) * np.linalg.norm(vb)
    if norm == 0:
        return 0.0
    return float(np.dot(va, vb) / norm)


class EmbeddingClient:
    """OpenAI embeddings; input is truncated, never rejected, at the length ceiling."""

    def __init__(
        self,
        config: LLMConfig | None = None,
        *,
        client: OpenAI | None = None,
        max_chars: int = MAX_EMBEDDING_CHARS,
    ) -> None:
        self.config = config or CONFIG.llm
        self.client = client or OpenAI(api_key=self.config.api_key, timeout=self.config.request_timeout)
        self.max_chars = max_chars

    def _embed_sync(self, text: str) -> List[float]:
        response = self.client.embeddings.create(model=self.config.embedding_model, input=text[: self.max_chars])
        if not response.data:
            return []
        return list(response.data[0].embedding or [])

    async def embed(self, text: str) -> List[float]:
        try:
            vector = await asyncio.to_thread(self._embed_sync, text)
        except openai.OpenAIError as exc:
            raise EmbeddingError(f"embedding request failed: {exc}") from exc
        if not vector:
            raise EmbeddingError("embedding service returned an empty vector")
        return vector
