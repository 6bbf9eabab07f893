"""MCP host: FastAPI front for a persistent Playwright browser session."""
from __future__ import annotations

import os
import uuid
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, Optional

from fastapi import FastAPI, HTTPException
from playwright.async_api import Browser, Error as PlaywrightError, Page, Playwright, async_playwright
from pydantic import BaseModel, Field

app = FastAPI(title="GoldQA MCP Host", description="Browser automation tools for GoldQA")

ARTIFACT_DIR = Path(os.getenv("GOLDQA_SCREENSHOT_DIR", "artifacts/screenshots"))
HEADLESS = os.getenv("GOLDQA_HEADLESS", "1") != "0"

_ELEMENT_SCRIPT = """
(els, limit) => els.slice(0, limit).map((el) => {
    const rect = el.getBoundingClientRect();
    const style = window.getComputedStyle(el);
    const attributes = {};
    for (const attr of el.attributes) attributes[attr.name] = attr.value;
    let options = [];
    if (el.tagName === 'SELECT') {
        options = Array.from(el.options).map((o) => (o.textContent || '').trim());
    } else {
        options = Array.from(el.querySelectorAll('[role="option"]')).map((o) => (o.textContent || '').trim());
    }
    return {
        tagName: el.tagName.toLowerCase(),
        id: el.id || '',
        className: typeof el.className === 'string' ? el.className : (el.getAttribute('class') || ''),
        text: (el.innerText || el.textContent || '').trim().slice(0, 200),
        attributes,
        options,
        nested: !!el.querySelector('svg, input, [class]'),
        visible: rect.width > 0 && rect.height > 0 && style.visibility !== 'hidden' && style.display !== 'none',
    };
})
"""


class BrowserSession:
    """Keeps one browser page alive across tool calls."""

    def __init__(self, session_id: str):
        self.session_id = session_id
        self.browser: Optional[Browser] = None
        self.page: Optional[Page] = None

    async def get_or_create_page(self) -> Page:
        if not self.browser:
            if not playwright_instance:
                raise HTTPException(status_code=503, detail="Playwright not initialized")
            self.browser = await playwright_instance.chromium.launch(headless=HEADLESS)
            self.page = await self.browser.new_page()
        return self.page

    async def close(self):
        if self.browser:
            await self.browser.close()
            self.browser = None
            self.page = None


active_sessions: Dict[str, BrowserSession] = {}
playwright_instance: Optional[Playwright] = None


class McpRequest(BaseModel):
    action: str = Field(..., description="Tool name, e.g. 'navigate' or 'query_elements'.")
    params: Dict[str, Any] = Field(default_factory=dict, description="Tool parameters.")


@app.on_event("startup")
async def startup_event():
    global playwright_instance
    print("[MCPHost] Initializing Playwright...")
    playwright_instance = await async_playwright().start()


@app.on_event("shutdown")
async def shutdown_event():
    for session in list(active_sessions.values()):
        await session.close()
    active_sessions.clear()
    if playwright_instance:
        print("[MCPHost] Stopping Playwright...")
        await playwright_instance.stop()


async def _page_for(params: Dict[str, Any]) -> Page:
    session_id = params.get("session_id", "default")
    if session_id not in active_sessions:
        active_sessions[session_id] = BrowserSession(session_id)
    return await active_sessions[session_id].get_or_create_page()


def _required(params: Dict[str, Any], key: str) -> Any:
    value = params.get(key)
    if value is None or value == "":
        raise HTTPException(status_code=400, detail=f"'{key}' is required")
    return value


# --- tools ---------------------------------------------------------------
async def _navigate(page: Page, params: Dict[str, Any]) -> Dict[str, Any]:
    await page.goto(_required(params, "url"), timeout=60000)
    try:
        await page.wait_for_load_state("networkidle", timeout=5000)
    except PlaywrightError:
        pass  # busy pages never go idle
    return {"url": page.url}


async def _click(page: Page, params: Dict[str, Any]) -> Dict[str, Any]:
    await page.locator(_required(params, "selector")).first.click(timeout=10000)
    return {}


async def _fill(page: Page, params: Dict[str, Any]) -> Dict[str, Any]:
    await page.locator(_required(params, "selector")).first.fill(str(params.get("value", "")), timeout=10000)
    return {}


async def _press_key(page: Page, params: Dict[str, Any]) -> Dict[str, Any]:
    key = _required(params, "key")
    selector = params.get("selector")
    if selector:
        await page.locator(selector).first.press(key, timeout=10000)
    else:
        await page.keyboard.press(key)
    return {}


async def _select_option(page: Page, params: Dict[str, Any]) -> Dict[str, Any]:
    selected = await page.locator(_required(params, "selector")).first.select_option(
        label=str(_required(params, "label")), timeout=10000
    )
    return {"selected": selected}


async def _query_elements(page: Page, params: Dict[str, Any]) -> Dict[str, Any]:
    locator = page.locator(_required(params, "selector"))
    limit = int(params.get("limit", 50))
    count = await locator.count()
    elements = await locator.evaluate_all(_ELEMENT_SCRIPT, limit) if count else []
    return {"count": count, "elements": elements}


async def _evaluate(page: Page, params: Dict[str, Any]) -> Dict[str, Any]:
    return {"result": await page.evaluate(_required(params, "script"))}


async def _screenshot(page: Page, params: Dict[str, Any]) -> Dict[str, Any]:
    ARTIFACT_DIR.mkdir(parents=True, exist_ok=True)
    name = params.get("name") or uuid.uuid4().hex
    path = ARTIFACT_DIR / f"{name}.png"
    await page.screenshot(path=str(path), full_page=bool(params.get("full_page", False)))
    return {"path": str(path)}


async def _wait_for_selector(page: Page, params: Dict[str, Any]) -> Dict[str, Any]:
    await page.wait_for_selector(_required(params, "selector"), timeout=int(params.get("timeout_ms", 5000)))
    return {}


async def _get_current_url(page: Page, params: Dict[str, Any]) -> Dict[str, Any]:
    return {"url": page.url}


async def _get_visible_text(page: Page, params: Dict[str, Any]) -> Dict[str, Any]:
    return {"text": await page.inner_text("body")}


TOOLS: Dict[str, Callable[[Page, Dict[str, Any]], Awaitable[Dict[str, Any]]]] = {
    "navigate": _navigate,
    "click": _click,
    "fill": _fill,
    "press_key": _press_key,
    "select_option": _select_option,
    "query_elements": _query_elements,
    "evaluate": _evaluate,
    "screenshot": _screenshot,
    "wait_for_selector": _wait_for_selector,
    "get_current_url": _get_current_url,
    "get_visible_text": _get_visible_text,
}


@app.post("/execute")
async def execute_action(request: McpRequest):
    """Run one tool. Tool failures come back as ``success: false``."""
    tool = TOOLS.get(request.action)
    if tool is None:
        raise HTTPException(status_code=400, detail=f"Action '{request.action}' not supported.")

    page = await _page_for(request.params)
    try:
        result = await tool(page, request.params)
    except PlaywrightError as exc:
        print(f"[MCPHost] {request.action} failed: {exc}")
        return {"success": False, "error": f"{type(exc).__name__}: {exc}"}
    return {"success": True, **result}


@app.post("/close_session")
async def close_session(request: McpRequest):
    session_id = request.params.get("session_id", "default")
    session = active_sessions.pop(session_id, None)
    if session is None:
        return {"success": False, "message": f"Session '{session_id}' not found"}
    await session.close()
    return {"success": True, "message": f"Session '{session_id}' closed"}


@app.get("/")
async def root():
    return {"message": "MCP Host is running.", "active_sessions": len(active_sessions), "tools": sorted(TOOLS)}


def main(host: str = "0.0.0.0", port: int = 8001) -> None:
    import uvicorn

    uvicorn.run(app, host=host, port=port)


if __name__ == "__main__":
    main()
