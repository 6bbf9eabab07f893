"""Heuristic discovery of dropdowns and search boxes."""
from __future__ import annotations

from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from goldqa.src.backend.mcp_client import MCPClient
from goldqa.src.capture.snapshot import generate_selector
from goldqa.src.utils.errors import BackendUnavailableError, DiscoveryError
from goldqa.src.utils.models import ControlKind, DiscoveredControl

DROPDOWN_HEURISTICS: Tuple[str, ...] = (
    "select",
    '[role="combobox"]',
    '[role="button"][aria-expanded]',
    ".MuiSelect-select",
    ".MuiSelect-root",
    '[class*="MuiSelect-select"]',
    '[class*="ant-select-selector"]',
    'button[data-toggle="dropdown"]',
    'button[aria-haspopup="listbox"]',
    '[class*="select"]',
    '[class*="dropdown"]',
)

SEARCH_BOX_HEURISTICS: Tuple[str, ...] = (
    'input[type="search"]',
    'input[type="text"]',
    'input[placeholder*="search" i]',
    ".search-input",
    ".search-box",
)

_NON_INTERACTIVE_CLASS_HINTS = ("dropdownIconTextWrapper", "facetSectionName", "facetHeader")
_MAX_LABEL_TEXT = 50


def is_interactive_dropdown(element: Dict[str, Any]) -> bool:
    """Filter out headers and labels that merely look like dropdowns."""

    class_name = str(element.get("className") or "")
    if any(hint in class_name for hint in _NON_INTERACTIVE_CLASS_HINTS):
        return False
    if "header" in class_name and "select" not in class_name and "dropdown" not in class_name:
        return False

    tag = str(element.get("tagName") or "").lower()
    attributes = element.get("attributes") or {}
    role = attributes.get("role")

    if tag in {"select", "button"}:
        return True
    if role in {"combobox", "button"}:
        return True
    if "MuiSelect" in class_name or "ant-select" in class_name:
        return True
    if ("select" in class_name or "dropdown" in class_name) and tag in {"div", "span"}:
        if "onclick" in attributes or "tabindex" in attributes or "aria-expanded" in attributes:
            return True
        return bool(element.get("nested"))
    return False


def extract_label(element: Dict[str, Any]) -> Optional[str]:
    """aria-label, placeholder, short visible text, then the element id."""

    attributes = element.get("attributes") or {}
    for key in ("aria-label", "placeholder"):
        value = str(attributes.get(key) or "").strip()
        if value:
            return value
    text = str(element.get("text") or "").strip()
    if text and len(text) < _MAX_LABEL_TEXT:
        return text
    element_id = str(element.get("id") or "").strip()
    if element_id:
        return f"Element with ID {element_id}"
    return None


class ControlDiscovery:
    """Scans the page with ordered heuristics and deduplicates by selector."""

    def __init__(self, backend: MCPClient, *, log_callback: Optional[Callable[[str], None]] = None) -> None:
        self.backend = backend
        self._log_callback = log_callback
        self.errors: List[DiscoveryError] = []

    def _log(self, message: str) -> None:
        print(f"[ControlDiscovery] {message}")
        if self._log_callback:
            self._log_callback(message)

    async def discover(self) -> List[DiscoveredControl]:
        self.errors = []
        dropdowns = await self._discover_kind(ControlKind.DROPDOWN, DROPDOWN_HEURISTICS)
        search_boxes = await self._discover_kind(ControlKind.SEARCH_BOX, SEARCH_BOX_HEURISTICS)
        self._log(f"found {len(dropdowns)} dropdown(s), {len(search_boxes)} search box(es)")
        return dropdowns + search_boxes

    async def discover_dropdowns(self) -> List[DiscoveredControl]:
        return await self._discover_kind(ControlKind.DROPDOWN, DROPDOWN_HEURISTICS)

    async def discover_search_boxes(self) -> List[DiscoveredControl]:
        return await self._discover_kind(ControlKind.SEARCH_BOX, SEARCH_BOX_HEURISTICS)

    async def _discover_kind(self, kind: ControlKind, heuristics: Sequence[str]) -> List[DiscoveredControl]:
        found: Dict[str, DiscoveredControl] = {}
        for heuristic in heuristics:
            try:
                elements = await self._query(heuristic)
            except DiscoveryError as exc:
                self.errors.append(exc)
                self._log(str(exc))
                continue

            for element in elements:
                if element.get("visible") is False:
                    continue
                if kind is ControlKind.DROPDOWN and not is_interactive_dropdown(element):
                    continue
                selector = generate_selector(element, heuristic)
                if selector in found:
                    continue
                found[selector] = self._build_control(kind, element, selector, len(found) + 1)
        return list(found.values())

    async def _query(self, heuristic: str) -> List[Dict[str, Any]]:
        try:
            result = await self.backend.query_elements(heuristic)
        except BackendUnavailableError as exc:
            raise DiscoveryError(heuristic, str(exc)) from exc
        if not result.success:
            raise DiscoveryError(heuristic, result.error or "query failed")
        return MCPClient.elements_of(result)

    @staticmethod
    def _build_control(kind: ControlKind, element: Dict[str, Any], selector: str, ordinal: int) -> DiscoveredControl:
        attributes = element.get("attributes") or {}
        default_label = f"Dropdown {ordinal}" if kind is ControlKind.DROPDOWN else f"Search box {ordinal}"
        return DiscoveredControl(
            kind=kind,
            label=extract_label(element) or default_label,
            selector=selector,
            placeholder_text=attributes.get("placeholder") or None,
            accessible_name=attributes.get("aria-label") or None,
        )
