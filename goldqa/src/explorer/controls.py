"""Primitive interactions with discovered controls.

Shared by exploration and test replay so both drive controls identically.
"""
from __future__ import annotations

from typing import Callable, List, Optional, Tuple

from goldqa.src.backend.mcp_client import MCPClient
from goldqa.src.capture.stability import StabilityWaiter
from goldqa.src.utils.errors import BackendUnavailableError, ToolCallError
from goldqa.src.utils.models import ControlKind, DiscoveredControl, ResetOutcome

MENU_ITEM_SELECTORS: Tuple[str, ...] = (
    '[role="option"]',
    ".MuiMenuItem-root",
    ".ant-select-item",
    '[class*="menu-item"]',
    '[class*="dropdown-item"]',
)

RESET_SELECTORS: Tuple[str, ...] = (
    'button[class*="reset"]',
    'button[class*="clear"]',
    'button:has-text("Reset")',
    'button:has-text("Clear")',
    ".reset-button",
    ".clear-button",
)

PLACEHOLDER_OPTIONS = {"all", "none"}


def _clean_options(raw: List[object]) -> List[str]:
    options: List[str] = []
    for value in raw:
        text = str(value or "").strip()
        if not text or text.lower() in PLACEHOLDER_OPTIONS:
            continue
        if text not in options:
            options.append(text)
    return options


def _quote(value: str) -> str:
    return value.replace("\\", "\\\\").replace('"', '\\"')


class ControlDriver:
    """Reads, applies and resets values on a single control."""

    def __init__(
        self,
        backend: MCPClient,
        waiter: StabilityWaiter,
        *,
        log_callback: Optional[Callable[[str], None]] = None,
    ) -> None:
        self.backend = backend
        self.waiter = waiter
        self._log_callback = log_callback

    def _log(self, message: str) -> None:
        print(f"[ControlDriver] {message}")
        if self._log_callback:
            self._log_callback(message)

    async def _present(self, selector: str) -> bool:
        result = await self.backend.query_elements(selector, limit=1)
        return result.success and int(result.get("count", 0) or 0) > 0

    # ------------------------------------------------------------------
    async def read_options(self, control: DiscoveredControl) -> List[str]:
        """Option labels in page order, without All/None placeholders."""

        result = await self.backend.query_elements(control.selector, limit=1)
        elements = MCPClient.elements_of(result)
        if elements and elements[0].get("tagName") == "select":
            return _clean_options(list(elements[0].get("options") or []))

        MCPClient.require(await self.backend.click(control.selector))
        await self.waiter.wait()
        options: List[str] = []
        for selector in MENU_ITEM_SELECTORS:
            items = MCPClient.elements_of(await self.backend.query_elements(selector, limit=100))
            options = _clean_options([item.get("text") for item in items])
            if options:
                break
        await self.backend.press_key("Escape")
        return options

    async def apply(self, control: DiscoveredControl, value: str) -> None:
        if control.kind is ControlKind.SEARCH_BOX:
            await self.search(control.selector, value)
        else:
            await self.select(control.selector, value)

    async def select(self, selector: str, value: str) -> None:
        native = await self.backend.select_option(selector, value)
        if native.success:
            return

        MCPClient.require(await self.backend.click(selector))
        await self.waiter.wait()
        for item in MENU_ITEM_SELECTORS:
            option_selector = f'{item}:has-text("{_quote(value)}")'
            if not await self._present(option_selector):
                continue
            if (await self.backend.click(option_selector)).success:
                return
        raise ToolCallError("select", f"option {value!r} not selectable in {selector}")

    async def search(self, selector: str, term: str) -> None:
        MCPClient.require(await self.backend.fill(selector, term))
        MCPClient.require(await self.backend.press_key("Enter", selector=selector))

    async def reset(self, control: DiscoveredControl, neutral_url: Optional[str]) -> ResetOutcome:
        """Best effort return to a neutral state; the outcome says how it went."""

        last_error = ""
        try:
            for selector in RESET_SELECTORS:
                if not await self._present(selector):
                    continue
                result = await self.backend.click(selector)
                if result.success:
                    return ResetOutcome(succeeded=True, method=f"click {selector}")
                last_error = result.error or ""

            if control.kind is ControlKind.SEARCH_BOX:
                result = await self.backend.fill(control.selector, "")
                if result.success:
                    await self.backend.press_key("Enter", selector=control.selector)
                    return ResetOutcome(succeeded=True, method="clear search box")
                last_error = result.error or ""

            if neutral_url:
                result = await self.backend.navigate(neutral_url)
                if result.success:
                    return ResetOutcome(succeeded=True, method="navigate", detail=neutral_url)
                last_error = result.error or ""
        except BackendUnavailableError as exc:
            last_error = str(exc)

        self._log(f"reset of {control.label!r} failed: {last_error or 'no reset method applied'}")
        return ResetOutcome(succeeded=False, method="none", detail=last_error)
