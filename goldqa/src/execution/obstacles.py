"""Popup and overlay dismissal before a test acts on the page."""
from __future__ import annotations

from typing import Protocol

from goldqa.src.backend.mcp_client import MCPClient
from goldqa.src.synthesis.reasoning import ReasoningClient

POPUP_PROMPT = (
    "Below is the visible text of a web page. Decide whether a popup, cookie banner or "
    "modal overlay is blocking the page. Reply with JSON "
    '{"hasPopup": true|false, "buttonSelector": "<css selector of the dismiss button>", '
    '"confidence": 0.0-1.0}.'
)
MAX_PAGE_TEXT = 4000


class ObstacleHandler(Protocol):
    async def dismiss(self, backend: MCPClient) -> bool:
        """Return True if something was dismissed."""
        ...


class NullObstacleHandler:
    async def dismiss(self, backend: MCPClient) -> bool:
        return False


class ReasoningObstacleHandler:
    """Asks the reasoning service whether an overlay is present and how to close it."""

    def __init__(self, reasoning: ReasoningClient, *, confidence_threshold: float = 0.6) -> None:
        self.reasoning = reasoning
        self.confidence_threshold = confidence_threshold

    async def dismiss(self, backend: MCPClient) -> bool:
        page = await backend.visible_text()
        text = str(page.get("text") or "")[:MAX_PAGE_TEXT] if page.success else ""
        if not text:
            return False

        reply = await self.reasoning.complete_json(
            [
                {"role": "system", "content": POPUP_PROMPT},
                {"role": "user", "content": text},
            ],
            purpose="popup_detection",
        )
        if not isinstance(reply, dict) or not reply.get("hasPopup"):
            return False
        try:
            confidence = float(reply.get("confidence", 0))
        except (TypeError, ValueError):
            return False
        selector = str(reply.get("buttonSelector") or "").strip()
        if confidence <= self.confidence_threshold or not selector:
            return False
        return (await backend.click(selector)).success
