"""Test replay and gold-standard validation."""

from .engine import ExecutionEngine, new_run_id
from .obstacles import NullObstacleHandler, ReasoningObstacleHandler
from .validation import CONTENT_CRITERION, COUNT_CRITERION, check_rows, expected_rows_for

__all__ = [
    "CONTENT_CRITERION",
    "COUNT_CRITERION",
    "ExecutionEngine",
    "NullObstacleHandler",
    "ReasoningObstacleHandler",
    "check_rows",
    "expected_rows_for",
    "new_run_id",
]
