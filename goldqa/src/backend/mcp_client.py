"""Client for the Playwright MCP host tool protocol."""
from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

import requests

from goldqa.src.utils.config import CONFIG, MCPConfig
from goldqa.src.utils.errors import BackendUnavailableError, ToolCallError


@dataclass(slots=True)
class ToolResult:
    """Outcome of a single tool call against the automation host."""

    action: str
    success: bool
    payload: Dict[str, Any] = field(default_factory=dict)
    error: Optional[str] = None

    def get(self, key: str, default: Any = None) -> Any:
        return self.payload.get(key, default)


class MCPClient:
    """Async wrapper around the MCP host's ``/execute`` endpoint.

    Each call is a blocking ``requests.post`` moved to a worker thread, so
    callers await them one at a time on a single browser session.
    """

    def __init__(
        self,
        config: MCPConfig | None = None,
        *,
        session: requests.Session | None = None,
        log_callback: Optional[Callable[[str], None]] = None,
    ) -> None:
        self.config = config or CONFIG.mcp
        self._http = session or requests.Session()
        self._log_callback = log_callback

    def _log(self, message: str) -> None:
        print(f"[MCPClient] {message}")
        if self._log_callback:
            self._log_callback(message)

    # ------------------------------------------------------------------
    def _post(self, action: str, params: Dict[str, Any]) -> ToolResult:
        payload = {
            "action": action,
            "params": {"session_id": self.config.session_id, **params},
        }
        try:
            response = self._http.post(
                f"{self.config.host_url}/execute",
                json=payload,
                timeout=self.config.request_timeout,
            )
        except requests.RequestException as exc:
            raise BackendUnavailableError(f"{action}: {exc}") from exc

        if response.status_code >= 500:
            raise BackendUnavailableError(f"{action}: HTTP {response.status_code}")

        try:
            data = response.json() if response.content else {}
        except ValueError:
            data = {}
        if not isinstance(data, dict):
            data = {"value": data}

        if response.status_code >= 400:
            detail = data.get("detail") or response.text or f"HTTP {response.status_code}"
            return ToolResult(action=action, success=False, payload=data, error=str(detail))

        success = bool(data.get("success", True))
        error = None if success else str(data.get("error") or data.get("message") or "tool reported failure")
        return ToolResult(action=action, success=success, payload=data, error=error)

    async def call(self, action: str, **params: Any) -> ToolResult:
        return await asyncio.to_thread(self._post, action, params)

    @staticmethod
    def require(result: ToolResult) -> ToolResult:
        if not result.success:
            raise ToolCallError(result.action, result.error)
        return result

    # ------------------------------------------------------------------
    async def navigate(self, url: str) -> ToolResult:
        return await self.call("navigate", url=url)

    async def click(self, selector: str) -> ToolResult:
        return await self.call("click", selector=selector)

    async def fill(self, selector: str, value: str) -> ToolResult:
        return await self.call("fill", selector=selector, value=value)

    async def press_key(self, key: str, selector: str | None = None) -> ToolResult:
        params: Dict[str, Any] = {"key": key}
        if selector:
            params["selector"] = selector
        return await self.call("press_key", **params)

    async def select_option(self, selector: str, label: str) -> ToolResult:
        return await self.call("select_option", selector=selector, label=label)

    async def query_elements(self, selector: str, *, limit: int = 50) -> ToolResult:
        return await self.call("query_elements", selector=selector, limit=limit)

    async def evaluate(self, script: str) -> ToolResult:
        return await self.call("evaluate", script=script)

    async def screenshot(self, name: str | None = None) -> ToolResult:
        params: Dict[str, Any] = {}
        if name:
            params["name"] = name
        return await self.call("screenshot", **params)

    async def wait_for_selector(self, selector: str, *, timeout_ms: int = 5000) -> ToolResult:
        return await self.call("wait_for_selector", selector=selector, timeout_ms=timeout_ms)

    async def current_url(self) -> ToolResult:
        return await self.call("get_current_url")

    async def visible_text(self) -> ToolResult:
        return await self.call("get_visible_text")

    # ------------------------------------------------------------------
    @staticmethod
    def elements_of(result: ToolResult) -> List[Dict[str, Any]]:
        """Element dicts from a successful ``query_elements`` result."""

        if not result.success:
            return []
        elements = result.payload.get("elements")
        if not isinstance(elements, list):
            return []
        return [element for element in elements if isinstance(element, dict)]

    def close(self) -> None:
        try:
            self._http.post(
                f"{self.config.host_url}/close_session",
                json={"action": "close_session", "params": {"session_id": self.config.session_id}},
                timeout=self.config.request_timeout,
            )
        except requests.RequestException as exc:
            self._log(f"close_session failed: {exc}")
        finally:
            self._http.close()
