"""Field to control mapping grounded in retrieval results."""
from __future__ import annotations

import json
from typing import Any, Callable, Dict, List, Optional, Sequence

from pydantic import ValidationError

from goldqa.src.retrieval.index import DATA_EXPORT_KIND, RetrievalIndex
from goldqa.src.synthesis.reasoning import ReasoningClient
from goldqa.src.utils.errors import MappingError, ReasoningFormatError, RetrievalMissError
from goldqa.src.utils.models import DataSummary, ExplorationFinding, FieldControlMapping, Row
from goldqa.src.utils.trace import ExecutionTrace

MAPPING_SYSTEM_PROMPT = (
    "You match columns of a tab-separated data export to controls of a web UI. "
    "Use only field names and controls listed by the user. "
    'Reply with JSON: {"mappings": [{"dataField", "sourceFile", "controlLabel", '
    '"controlSelector", "confidence", "reasoning", "sampleValues", "dataMismatch"}]}.'
)

GROUNDING_ROWS_PER_CONTROL = 5


class FieldMapper:
    """Proposes FieldControlMapping values; an empty answer is fatal."""

    def __init__(
        self,
        index: RetrievalIndex,
        reasoning: ReasoningClient,
        *,
        min_similarity: float | None = None,
        trace: ExecutionTrace | None = None,
        log_callback: Optional[Callable[[str], None]] = None,
    ) -> None:
        self.index = index
        self.reasoning = reasoning
        self.min_similarity = min_similarity
        self.trace = trace or ExecutionTrace()
        self._log_callback = log_callback

    def _log(self, message: str) -> None:
        print(f"[FieldMapper] {message}")
        if self._log_callback:
            self._log_callback(message)

    async def map_fields_to_controls(
        self,
        data_summaries: Sequence[DataSummary],
        findings: Sequence[ExplorationFinding],
    ) -> List[FieldControlMapping]:
        if not data_summaries:
            raise MappingError("no data export summaries to map")
        if not findings:
            raise MappingError("no explored controls to map")

        grounding = await self._ground_controls(findings)
        messages = [
            {"role": "system", "content": MAPPING_SYSTEM_PROMPT},
            {"role": "user", "content": self._build_prompt(data_summaries, findings, grounding)},
        ]
        try:
            reply = await self.reasoning.complete_json(messages, purpose="field_mapping")
        except ReasoningFormatError as exc:
            raise MappingError(str(exc)) from exc

        mappings = self._parse_mappings(reply, data_summaries, findings)
        if not mappings:
            raise MappingError("reasoning service returned zero mappings")

        await self.index.ingest_mappings(mappings)
        self.trace.log_step(
            "FieldMapper",
            "map_fields_to_controls",
            input={"controls": len(findings), "exports": len(data_summaries)},
            output={"mappings": [f"{m.data_field} -> {m.control_label}" for m in mappings]},
        )
        self._log(f"{len(mappings)} mapping(s) accepted")
        return mappings

    # ------------------------------------------------------------------
    async def _ground_controls(self, findings: Sequence[ExplorationFinding]) -> Dict[str, List[Row]]:
        grounding: Dict[str, List[Row]] = {}
        for finding in findings:
            label = finding.control.label
            query = " ".join([label, *finding.all_observed_options[:10]])
            try:
                rows = await self.index.query(query, min_similarity=self.min_similarity, kinds=(DATA_EXPORT_KIND,))
            except RetrievalMissError as exc:
                raise MappingError(f"no data grounding for control {label!r}: {exc}") from exc
            grounding[label] = rows[:GROUNDING_ROWS_PER_CONTROL]
        return grounding

    @staticmethod
    def _build_prompt(
        data_summaries: Sequence[DataSummary],
        findings: Sequence[ExplorationFinding],
        grounding: Dict[str, List[Row]],
    ) -> str:
        exports = [
            {
                "sourceFile": summary.source_label,
                "fields": {header: summary.field_types.get(header, "string") for header in summary.headers},
                "uniqueValues": {header: values[:10] for header, values in summary.unique_values.items()},
            }
            for summary in data_summaries
        ]
        controls = [
            {
                "controlLabel": finding.control.label,
                "controlSelector": finding.control.selector,
                "kind": finding.control.kind.value,
                "options": finding.all_observed_options[:20],
                "observedEffects": [
                    {"value": trial.option_or_term, "effects": trial.delta.summary()}
                    for trial in finding.sampled_trials
                ],
                "matchingDataRows": grounding.get(finding.control.label, []),
            }
            for finding in findings
        ]
        return (
            "DATA EXPORTS:\n"
            + json.dumps(exports, ensure_ascii=False, indent=2)
            + "\n\nUI CONTROLS:\n"
            + json.dumps(controls, ensure_ascii=False, indent=2)
        )

    @staticmethod
    def _parse_mappings(
        reply: Any,
        data_summaries: Sequence[DataSummary],
        findings: Sequence[ExplorationFinding],
    ) -> List[FieldControlMapping]:
        items = reply.get("mappings") if isinstance(reply, dict) else reply
        if not isinstance(items, list):
            raise MappingError("mapping reply has no 'mappings' array")

        headers = {header: summary for summary in data_summaries for header in summary.headers}
        selectors = {finding.control.selector for finding in findings}
        mappings: List[FieldControlMapping] = []
        for item in items:
            try:
                mapping = FieldControlMapping.model_validate(item)
            except ValidationError as exc:
                raise MappingError(f"malformed mapping {item!r}: {exc}") from exc
            summary = headers.get(mapping.data_field)
            if summary is None:
                raise MappingError(f"mapping references unknown field {mapping.data_field!r}")
            if mapping.control_selector not in selectors:
                raise MappingError(f"mapping references unknown control {mapping.control_selector!r}")
            update: Dict[str, Any] = {}
            if not mapping.source_file:
                update["source_file"] = summary.source_label
            if not mapping.sample_values:
                update["sample_values"] = summary.unique_values.get(mapping.data_field, [])[:5]
            mappings.append(mapping.model_copy(update=update) if update else mapping)
        return mappings
