"""Run reports and in-memory result storage."""

from .report import ReportWriter, build_summary, render_summary_html
from .storage import TestData, TestStorage

__all__ = ["ReportWriter", "TestData", "TestStorage", "build_summary", "render_summary_html"]
