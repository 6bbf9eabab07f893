"""Structured UI state capture."""
from __future__ import annotations

import re
from typing import Callable, Dict, List, Optional, Tuple
from urllib.parse import parse_qsl, urlsplit

from goldqa.src.backend.mcp_client import MCPClient
from goldqa.src.utils.errors import BackendUnavailableError, CaptureError
from goldqa.src.utils.models import ControlState, UISnapshot, utc_now

RESULT_COUNT_SELECTORS: Tuple[str, ...] = (
    ".result-count",
    ".total-count",
    ".count",
    '[class*="count"]',
    '[class*="result"]',
    'span:has-text("result")',
    'div:has-text("Showing")',
    'p:has-text("result")',
)

CONTROL_SELECTORS: Tuple[str, ...] = (
    "select",
    '[role="combobox"]',
    '[role="listbox"]',
    ".dropdown",
    '[class*="dropdown"]',
    '[class*="select"]',
)

TABLE_ROW_SELECTOR = "table tbody tr"

_COUNT_PATTERN = re.compile(r"\d+.*result|showing.*\d+", re.IGNORECASE)
_OF_TOTAL_RE = re.compile(r"\bof\s+(\d[\d,]*)", re.IGNORECASE)
_N_RESULTS_RE = re.compile(r"(\d[\d,]*)\s+(?:results?|items?|records?)", re.IGNORECASE)
_FIRST_NUMBER_RE = re.compile(r"\d[\d,]*")


def parse_query_params(url: str) -> Dict[str, str]:
    """Flatten a URL query string; repeated keys keep the last value."""
    return dict(parse_qsl(urlsplit(url).query, keep_blank_values=True))


def extract_result_count(text: str) -> Optional[int]:
    """Return the count announced by a result indicator, or None."""

    if not text or not _COUNT_PATTERN.search(text):
        return None
    for pattern in (_OF_TOTAL_RE, _N_RESULTS_RE, _FIRST_NUMBER_RE):
        match = pattern.search(text)
        if match:
            digits = (match.group(1) if match.groups() else match.group(0)).replace(",", "")
            if digits.isdigit():
                return int(digits)
    return None


def generate_selector(element: Dict[str, object], fallback: str) -> str:
    """id, then first class token, then the heuristic that matched."""

    element_id = str(element.get("id") or "").strip()
    if element_id:
        return f"#{element_id}"
    class_name = str(element.get("className") or "").strip()
    if class_name:
        return f".{class_name.split()[0]}"
    return fallback


class StateSnapshotter:
    """Captures UISnapshot values through the automation backend."""

    def __init__(self, backend: MCPClient, *, log_callback: Optional[Callable[[str], None]] = None) -> None:
        self.backend = backend
        self._log_callback = log_callback
        self._captures = 0

    def _log(self, message: str) -> None:
        print(f"[StateSnapshotter] {message}")
        if self._log_callback:
            self._log_callback(message)

    async def capture(self) -> UISnapshot:
        """Snapshot the page. Raises CaptureError only when the backend is gone."""
        try:
            location = await self.backend.current_url()
            if not location.success or not location.get("url"):
                raise CaptureError(f"current location unavailable: {location.error}")
            url = str(location.get("url"))

            raw_text, count = await self._find_result_count()
            control_states = await self._collect_control_states()
            table_rows = await self._count_table_rows()
            screenshot_ref = await self._take_screenshot()
        except BackendUnavailableError as exc:
            raise CaptureError(str(exc)) from exc

        self._captures += 1
        return UISnapshot(
            url=url,
            query_params=parse_query_params(url),
            result_count=count,
            result_count_raw_text=raw_text,
            control_states=control_states,
            table_row_count=table_rows,
            screenshot_ref=screenshot_ref,
            captured_at=utc_now(),
        )

    # ------------------------------------------------------------------
    async def _find_result_count(self) -> Tuple[Optional[str], Optional[int]]:
        for selector in RESULT_COUNT_SELECTORS:
            result = await self.backend.query_elements(selector, limit=20)
            for element in MCPClient.elements_of(result):
                text = str(element.get("text") or "").strip()
                count = extract_result_count(text)
                if count is not None:
                    return text, count
        return None, None

    async def _collect_control_states(self) -> Dict[str, ControlState]:
        states: Dict[str, ControlState] = {}
        for selector in CONTROL_SELECTORS:
            result = await self.backend.query_elements(selector)
            for element in MCPClient.elements_of(result):
                options: List[str] = [str(option) for option in element.get("options") or []]
                if element.get("tagName") != "select" and not options:
                    continue
                key = generate_selector(element, selector)
                states.setdefault(key, ControlState(options=options))
        return states

    async def _count_table_rows(self) -> int:
        result = await self.backend.query_elements(TABLE_ROW_SELECTOR, limit=0)
        if not result.success:
            return 0
        try:
            return int(result.get("count", 0))
        except (TypeError, ValueError):
            return 0

    async def _take_screenshot(self) -> str:
        result = await self.backend.screenshot(f"state-{self._captures + 1}-{utc_now():%Y%m%dT%H%M%S%f}")
        if not result.success:
            self._log(f"screenshot failed: {result.error}")
            return ""
        return str(result.get("path") or "")
