"""
Execution trace for one learning or test run.

A single ExecutionTrace is created by the caller, threaded through every
stage, and handed back with the result.

Entry format:
{
    "timestamp": "2025-10-22T14:00:00Z",
    "step": 3,
    "actor": "ActiveExplorer",
    "action": "explore",
    "input": {"control": "Region"},
    "output": {"trials": 2},
    "duration_ms": 4120,
    "success": true
}
"""
from __future__ import annotations

import json
import time
from collections import deque
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Deque, Dict, Iterator, List, Optional

TraceObserver = Callable[[Dict[str, Any]], None]

LLM_CALL_HISTORY = 20
_PREVIEW_CHARS = 500


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def _preview(value: Any) -> Any:
    if isinstance(value, str) and len(value) > _PREVIEW_CHARS:
        return value[:_PREVIEW_CHARS] + "..."
    return value


class ExecutionTrace:
    """Collects step entries and reasoning-service calls for one run."""

    def __init__(self, run_id: str | None = None) -> None:
        self.run_id = run_id or f"trace-{int(time.time())}"
        self._entries: List[Dict[str, Any]] = []
        self._llm_calls: Deque[Dict[str, Any]] = deque(maxlen=LLM_CALL_HISTORY)
        self._observers: List[TraceObserver] = []
        self._step = 0

    # ------------------------------------------------------------------
    def subscribe(self, observer: TraceObserver) -> None:
        self._observers.append(observer)

    def log_step(
        self,
        actor: str,
        action: str,
        *,
        input: Any = None,
        output: Any = None,
        duration_ms: int = 0,
        success: bool = True,
    ) -> Dict[str, Any]:
        self._step += 1
        entry = {
            "timestamp": _timestamp(),
            "step": self._step,
            "actor": actor,
            "action": action,
            "input": _preview(input),
            "output": _preview(output),
            "duration_ms": duration_ms,
            "success": success,
        }
        self._entries.append(entry)
        for observer in self._observers:
            observer(entry)
        return entry

    @contextmanager
    def span(self, actor: str, action: str, *, input: Any = None) -> Iterator[Dict[str, Any]]:
        """Time a block and log it; the yielded dict becomes the entry output."""

        output: Dict[str, Any] = {}
        started = time.perf_counter()
        try:
            yield output
        except Exception as exc:
            output.setdefault("error", str(exc))
            self.log_step(
                actor,
                action,
                input=input,
                output=output,
                duration_ms=int((time.perf_counter() - started) * 1000),
                success=False,
            )
            raise
        self.log_step(
            actor,
            action,
            input=input,
            output=output,
            duration_ms=int((time.perf_counter() - started) * 1000),
        )

    def log_llm_call(
        self,
        purpose: str,
        prompt: str,
        response: Optional[str],
        duration_ms: int,
        *,
        error: Optional[str] = None,
    ) -> None:
        self._llm_calls.append(
            {
                "timestamp": _timestamp(),
                "purpose": purpose,
                "prompt": _preview(prompt),
                "response": _preview(response),
                "duration_ms": duration_ms,
                "error": error,
            }
        )

    # ------------------------------------------------------------------
    @property
    def entries(self) -> List[Dict[str, Any]]:
        return list(self._entries)

    @property
    def llm_calls(self) -> List[Dict[str, Any]]:
        return list(self._llm_calls)

    def get_summary(self) -> Dict[str, Any]:
        by_actor: Dict[str, int] = {}
        failures = 0
        for entry in self._entries:
            by_actor[entry["actor"]] = by_actor.get(entry["actor"], 0) + 1
            if not entry["success"]:
                failures += 1
        return {
            "run_id": self.run_id,
            "total_steps": len(self._entries),
            "failed_steps": failures,
            "steps_by_actor": by_actor,
            "llm_calls": len(self._llm_calls),
            "total_duration_ms": sum(entry["duration_ms"] for entry in self._entries),
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            "run_id": self.run_id,
            "summary": self.get_summary(),
            "entries": self.entries,
            "llm_calls": self.llm_calls,
        }

    def save(self, path: Path | str) -> Path:
        target = Path(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(json.dumps(self.to_dict(), ensure_ascii=False, indent=2, default=str), encoding="utf-8")
        return target
