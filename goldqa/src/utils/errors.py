"""Error taxonomy shared by every GoldQA stage.

Errors that would let untrusted data leak into ground truth (exploration,
indexing, mapping, synthesis) are fatal for the learning run. Errors scoped to
a single test become that test's outcome instead of aborting the batch.
"""
from __future__ import annotations


class GoldQAError(Exception):
    """Base class for all pipeline errors."""


class BackendUnavailableError(GoldQAError):
    """The automation host could not be reached or answered with a server error."""


class ToolCallError(GoldQAError):
    """A tool call that had to succeed reported failure."""

    def __init__(self, action: str, reason: str | None = None) -> None:
        self.action = action
        self.reason = reason or "unknown failure"
        super().__init__(f"{action} failed: {self.reason}")


class CaptureError(GoldQAError):
    """A UI snapshot could not be obtained."""


class DiscoveryError(GoldQAError):
    """A single discovery heuristic failed. Logged and skipped."""

    def __init__(self, heuristic: str, reason: str) -> None:
        self.heuristic = heuristic
        self.reason = reason
        super().__init__(f"discovery heuristic {heuristic!r} failed: {reason}")


class ExplorationError(GoldQAError):
    """Exploring a control failed; the learning run is aborted."""

    def __init__(self, control_label: str, reason: str) -> None:
        self.control_label = control_label
        self.reason = reason
        super().__init__(f"exploration of {control_label!r} failed: {reason}")


class EmbeddingError(GoldQAError):
    """The embedding service failed or returned an unusable vector."""


class StorageError(GoldQAError):
    """The durable object store rejected a write."""


class IndexingError(GoldQAError):
    """Embedding, validation or persistence of retrieval records failed."""


class RetrievalMissError(GoldQAError):
    """No indexed record reached the similarity threshold."""

    def __init__(self, query: str, min_similarity: float, best: float | None = None) -> None:
        self.query = query
        self.min_similarity = min_similarity
        self.best = best
        detail = f", best match {best:.3f}" if best is not None else ""
        super().__init__(f"no records above {min_similarity:.2f} for {query!r}{detail}")


NoRelevantDataError = RetrievalMissError


class ReasoningServiceError(GoldQAError):
    """The reasoning service call itself failed."""


class MappingError(GoldQAError):
    """Field to control mapping produced nothing usable."""


class SynthesisError(GoldQAError):
    """Generated test specifications were malformed or fabricated."""


class ReasoningFormatError(SynthesisError):
    """The reasoning service reply did not contain a parseable JSON value."""


class TestExecutionError(GoldQAError):
    """A single test could not be executed."""

    __test__ = False


class ValidationMismatch(GoldQAError):
    """Observed rows disagree with the gold-standard rows."""

    def __init__(self, failures: list[str]) -> None:
        self.failures = list(failures)
        super().__init__("; ".join(self.failures) or "validation mismatch")


class RunSealedError(GoldQAError):
    """A sealed test run was modified."""


__all__ = [
    "GoldQAError",
    "BackendUnavailableError",
    "ToolCallError",
    "CaptureError",
    "DiscoveryError",
    "ExplorationError",
    "EmbeddingError",
    "StorageError",
    "IndexingError",
    "RetrievalMissError",
    "NoRelevantDataError",
    "ReasoningServiceError",
    "MappingError",
    "SynthesisError",
    "ReasoningFormatError",
    "TestExecutionError",
    "ValidationMismatch",
    "RunSealedError",
]
