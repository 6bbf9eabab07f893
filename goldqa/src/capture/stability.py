"""Wait until the page stops changing."""
from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

from goldqa.src.backend.mcp_client import MCPClient
from goldqa.src.utils.config import CONFIG, ExplorationConfig

# Cheap DOM fingerprint: element count, text length and row count.
DOM_FINGERPRINT_SCRIPT = (
    "() => [document.getElementsByTagName('*').length, "
    "(document.body ? document.body.innerText.length : 0), "
    "document.querySelectorAll('table tbody tr').length].join(':')"
)


@dataclass(slots=True)
class StabilityResult:
    stable: bool
    waited_ms: int
    polls: int
    fallback: bool = False


class StabilityWaiter:
    """Polls a DOM fingerprint until it holds steady for ``quiet_ms``.

    If the fingerprint cannot be read at all the waiter sleeps the fixed
    ``settle_ms`` instead. Instability is reported, never raised.
    """

    def __init__(
        self,
        backend: MCPClient,
        config: ExplorationConfig | None = None,
        *,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.backend = backend
        self.config = config or CONFIG.exploration
        self._sleep = sleep
        self._clock = clock

    async def _fingerprint(self) -> Optional[str]:
        result = await self.backend.evaluate(DOM_FINGERPRINT_SCRIPT)
        if not result.success:
            return None
        return str(result.get("result"))

    async def wait(self) -> StabilityResult:
        started = self._clock()
        timeout_s = self.config.stability_timeout_ms / 1000
        quiet_s = self.config.stability_quiet_ms / 1000
        poll_s = self.config.stability_poll_ms / 1000

        last = await self._fingerprint()
        polls = 1
        if last is None:
            await self._sleep(self.config.settle_ms / 1000)
            return StabilityResult(stable=False, waited_ms=self.config.settle_ms, polls=polls, fallback=True)

        unchanged_since = self._clock()
        while True:
            now = self._clock()
            if now - unchanged_since >= quiet_s:
                return StabilityResult(stable=True, waited_ms=int((now - started) * 1000), polls=polls)
            if now - started >= timeout_s:
                return StabilityResult(stable=False, waited_ms=int((now - started) * 1000), polls=polls)
            await self._sleep(poll_s)
            current = await self._fingerprint()
            polls += 1
            if current != last:
                last = current
                unchanged_since = self._clock()
