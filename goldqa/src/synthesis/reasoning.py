"""Reasoning service client and JSON extraction from free-text replies."""
from __future__ import annotations

import asyncio
import json
import time
from typing import Any, Dict, List, Optional

import openai
from openai import OpenAI

from goldqa.src.utils.config import CONFIG, LLMConfig
from goldqa.src.utils.errors import ReasoningFormatError, ReasoningServiceError
from goldqa.src.utils.trace import ExecutionTrace

Message = Dict[str, str]

_CLOSERS = {"{": "}", "[": "]"}


def _balanced_span(text: str, start: int) -> Optional[int]:
    """Index just past the bracket that closes ``text[start]``, or None."""

    stack = [_CLOSERS[text[start]]]
    in_string = False
    escaped = False
    for position in range(start + 1, len(text)):
        char = text[position]
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
            continue
        if char == '"':
            in_string = True
        elif char in _CLOSERS:
            stack.append(_CLOSERS[char])
        elif char in ("}", "]"):
            if char != stack.pop():
                return None
            if not stack:
                return position + 1
    return None


def extract_json(text: str) -> Any:
    """Parse the first balanced ``{...}`` or ``[...]`` in ``text``."""

    if not text:
        raise ReasoningFormatError("reasoning reply was empty")
    for start, char in enumerate(text):
        if char not in _CLOSERS:
            continue
        end = _balanced_span(text, start)
        if end is None:
            break
        try:
            return json.loads(text[start:end])
        except json.JSONDecodeError as exc:
            raise ReasoningFormatError(f"reasoning reply is not valid JSON: {exc}") from exc
    raise ReasoningFormatError("no balanced JSON object or array in reasoning reply")


class ReasoningClient:
    """Chat-completions wrapper; every call is recorded on the trace."""

    def __init__(
        self,
        config: LLMConfig | None = None,
        *,
        client: OpenAI | None = None,
        trace: ExecutionTrace | None = None,
    ) -> None:
        self.config = config or CONFIG.llm
        self.client = client or OpenAI(api_key=self.config.api_key, timeout=self.config.request_timeout)
        self.trace = trace or ExecutionTrace()

    def _complete_sync(self, messages: List[Message]) -> str:
        options: Dict[str, Any] = {}
        if self.config.max_completion_tokens:
            options["max_completion_tokens"] = self.config.max_completion_tokens
        response = self.client.chat.completions.create(model=self.config.model, messages=messages, **options)
        if not response.choices:
            raise ReasoningServiceError("reasoning service returned no choices")
        return response.choices[0].message.content or ""

    async def complete(self, messages: List[Message], *, purpose: str = "reasoning") -> str:
        prompt = "\n\n".join(f"[{message['role']}] {message['content']}" for message in messages)
        started = time.perf_counter()
        try:
            reply = await asyncio.to_thread(self._complete_sync, messages)
        except (openai.OpenAIError, ReasoningServiceError) as exc:
            self.trace.log_llm_call(purpose, prompt, None, int((time.perf_counter() - started) * 1000), error=str(exc))
            raise ReasoningServiceError(f"{purpose}: {exc}") from exc
        self.trace.log_llm_call(purpose, prompt, reply, int((time.perf_counter() - started) * 1000))
        return reply

    async def complete_json(self, messages: List[Message], *, purpose: str = "reasoning") -> Any:
        return extract_json(await self.complete(messages, purpose=purpose))
