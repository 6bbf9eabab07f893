"""UI state capture, diffing and stabilization."""

from .differ import diff
from .snapshot import StateSnapshotter, extract_result_count, generate_selector, parse_query_params
from .stability import StabilityResult, StabilityWaiter

__all__ = [
    "StateSnapshotter",
    "StabilityResult",
    "StabilityWaiter",
    "diff",
    "extract_result_count",
    "generate_selector",
    "parse_query_params",
]
