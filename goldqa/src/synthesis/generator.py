"""Test specification synthesis from accepted mappings."""
from __future__ import annotations

import json
import uuid
from typing import Any, Callable, Dict, List, Optional, Sequence

from pydantic import ValidationError

from goldqa.src.retrieval.index import DATA_EXPORT_KIND, RetrievalIndex
from goldqa.src.synthesis.reasoning import ReasoningClient
from goldqa.src.utils.conditions import parse_numeric_condition
from goldqa.src.utils.errors import RetrievalMissError, SynthesisError
from goldqa.src.utils.models import FieldControlMapping, TestKind, TestSpecification
from goldqa.src.utils.trace import ExecutionTrace

SYNTHESIS_SYSTEM_PROMPT = (
    "You write UI test cases that check a web page against a data export. "
    "Only use test values from the observed values you are given. "
    'Reply with a JSON array of objects: {"name", "description", "type": '
    '"filter"|"search"|"sort"|"numericFilter", "dataField", "testValues", "steps", '
    '"selector", "validationCriteria", "priority"}.'
)

SORT_DIRECTIONS = {"asc", "desc", "ascending", "descending"}
OBSERVED_VALUE_LIMIT = 30


def new_batch_id() -> str:
    return f"batch-{uuid.uuid4().hex[:8]}"


class TestSynthesizer:
    """Turns mappings into TestSpecification values using only observed data."""

    __test__ = False

    def __init__(
        self,
        index: RetrievalIndex,
        reasoning: ReasoningClient,
        *,
        trace: ExecutionTrace | None = None,
        log_callback: Optional[Callable[[str], None]] = None,
    ) -> None:
        self.index = index
        self.reasoning = reasoning
        self.trace = trace or ExecutionTrace()
        self._log_callback = log_callback

    def _log(self, message: str) -> None:
        print(f"[TestSynthesizer] {message}")
        if self._log_callback:
            self._log_callback(message)

    async def synthesize_tests(
        self,
        mappings: Sequence[FieldControlMapping],
        batch_id: str | None = None,
    ) -> List[TestSpecification]:
        """Test ids are ``<batch_id>-test-NNN`` so batches never collide in storage."""

        if not mappings:
            raise SynthesisError("no mappings to synthesize tests from")

        batch = batch_id or new_batch_id()
        specs: List[TestSpecification] = []
        for mapping in mappings:
            observed = await self.observed_values(mapping)
            reply = await self.reasoning.complete_json(
                [
                    {"role": "system", "content": SYNTHESIS_SYSTEM_PROMPT},
                    {"role": "user", "content": self._build_prompt(mapping, observed)},
                ],
                purpose="test_synthesis",
            )
            if not isinstance(reply, list):
                raise SynthesisError(f"expected a JSON array of tests for {mapping.data_field!r}")
            for item in reply:
                spec = self._build_spec(item, mapping, f"{batch}-test-{len(specs) + 1:03d}")
                self._check_values(spec, observed)
                specs.append(spec)

        self.trace.log_step(
            "TestSynthesizer",
            "synthesize_tests",
            input={"mappings": len(mappings)},
            output={"tests": [spec.id for spec in specs]},
        )
        self._log(f"synthesized {len(specs)} test(s)")
        return specs

    async def observed_values(self, mapping: FieldControlMapping) -> List[str]:
        """Representative values of the mapped field as they appear in the export."""

        try:
            rows = await self.index.query(f"{mapping.data_field} values", kinds=(DATA_EXPORT_KIND,))
        except RetrievalMissError as exc:
            raise SynthesisError(f"no sample values for {mapping.data_field!r}: {exc}") from exc
        values: List[str] = []
        for value in [row.get(mapping.data_field, "") for row in rows] + self.index.field_values(mapping.data_field):
            if value and value not in values:
                values.append(value)
        return values

    # ------------------------------------------------------------------
    @staticmethod
    def _build_prompt(mapping: FieldControlMapping, observed: List[str]) -> str:
        context = {
            "dataField": mapping.data_field,
            "sourceFile": mapping.source_file,
            "controlLabel": mapping.control_label,
            "controlSelector": mapping.control_selector,
            "mappingConfidence": mapping.confidence,
            "observedValues": observed[:OBSERVED_VALUE_LIMIT],
        }
        return "MAPPING:\n" + json.dumps(context, ensure_ascii=False, indent=2)

    @staticmethod
    def _build_spec(item: Any, mapping: FieldControlMapping, test_id: str) -> TestSpecification:
        if not isinstance(item, dict):
            raise SynthesisError(f"test entry is not an object: {item!r}")
        data: Dict[str, Any] = dict(item)
        data["id"] = test_id
        data.setdefault("dataField", mapping.data_field)
        data["sourceFile"] = mapping.source_file
        data.pop("source_file", None)
        if not any(key in data for key in ("selector", "targetSelector", "target_selector")):
            data["selector"] = mapping.control_selector
        values = data.get("testValues")
        if isinstance(values, (str, int, float)):
            data["testValues"] = [str(values)]
        elif isinstance(values, list):
            data["testValues"] = [str(value) for value in values]
        try:
            return TestSpecification.model_validate(data)
        except ValidationError as exc:
            raise SynthesisError(f"malformed test specification: {exc}") from exc

    @staticmethod
    def _check_values(spec: TestSpecification, observed: List[str]) -> None:
        if not spec.test_values:
            raise SynthesisError(f"{spec.id} has no test values")
        known = {value.lower() for value in observed}
        for value in spec.test_values:
            if spec.kind is TestKind.NUMERIC_FILTER:
                ok = parse_numeric_condition(value) is not None
            elif spec.kind is TestKind.SORT:
                ok = value.lower() in SORT_DIRECTIONS or value.lower() in known
            else:
                ok = value.lower() in known
            if not ok:
                raise SynthesisError(f"{spec.id} uses value {value!r} not observed in {spec.target_field!r}")
