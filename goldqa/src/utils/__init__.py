"""Shared utilities: configuration, data models, errors and tracing."""

from .config import CONFIG, AppConfig, validate_environment
from .trace import ExecutionTrace

__all__ = ["CONFIG", "AppConfig", "ExecutionTrace", "validate_environment"]
