import asyncio
from types import SimpleNamespace

import openai
import pytest

from goldqa.src.synthesis.generator import TestSynthesizer as Synthesizer
from goldqa.src.synthesis.mapper import FieldMapper
from goldqa.src.synthesis.reasoning import ReasoningClient, extract_json
from goldqa.src.utils.config import LLMConfig
from goldqa.src.utils.errors import (
    MappingError,
    ReasoningFormatError,
    ReasoningServiceError,
    SynthesisError,
)
from goldqa.src.utils.models import (
    ControlKind,
    DiscoveredControl,
    ExplorationFinding,
    FieldControlMapping,
    TestKind,
)
from goldqa.src.utils.trace import ExecutionTrace

REGION_FINDING = ExplorationFinding(
    control=DiscoveredControl(kind=ControlKind.DROPDOWN, label="Region", selector="#region"),
    all_observed_options=["North", "South"],
)

REGION_MAPPING = FieldControlMapping(
    data_field="Region",
    source_file="items.tsv",
    control_label="Region",
    control_selector="#region",
    confidence=0.9,
)


class TestExtractJson:
    def test_object_inside_prose(self):
        assert extract_json('Sure! Here it is: {"a": [1, 2]} Hope that helps.') == {"a": [1, 2]}

    def test_array_inside_code_fence(self):
        assert extract_json('```json\n[{"name": "t"}]\n```') == [{"name": "t"}]

    def test_brackets_inside_strings(self):
        assert extract_json('{"selector": "a}b]", "n": 1} trailing }') == {"selector": "a}b]", "n": 1}

    @pytest.mark.parametrize("text", ["", "no json here", '{"a": 1', '{"a": tru}'])
    def test_unparseable_replies(self, text):
        with pytest.raises(ReasoningFormatError):
            extract_json(text)


class TestReasoningClient:
    def _client(self, create):
        return SimpleNamespace(chat=SimpleNamespace(completions=SimpleNamespace(create=create)))

    def test_reply_is_parsed_and_traced(self):
        def _create(model, messages, **options):
            return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content='{"ok": true}'))])

        trace = ExecutionTrace()
        client = ReasoningClient(LLMConfig(api_key="test"), client=self._client(_create), trace=trace)

        reply = asyncio.run(client.complete_json([{"role": "user", "content": "hi"}], purpose="ping"))

        assert reply == {"ok": True}
        assert trace.llm_calls[0]["purpose"] == "ping"
        assert trace.llm_calls[0]["error"] is None

    def test_service_failure(self):
        def _create(model, messages, **options):
            raise openai.OpenAIError("quota exceeded")

        trace = ExecutionTrace()
        client = ReasoningClient(LLMConfig(api_key="test"), client=self._client(_create), trace=trace)

        with pytest.raises(ReasoningServiceError, match="quota exceeded"):
            asyncio.run(client.complete([{"role": "user", "content": "hi"}]))
        assert trace.llm_calls[0]["error"] == "quota exceeded"

    def test_reply_without_choices_is_a_service_error(self):
        def _create(model, messages, **options):
            return SimpleNamespace(choices=[])

        trace = ExecutionTrace()
        client = ReasoningClient(LLMConfig(api_key="test"), client=self._client(_create), trace=trace)

        with pytest.raises(ReasoningServiceError, match="no choices"):
            asyncio.run(client.complete([{"role": "user", "content": "hi"}], purpose="mapping"))
        assert trace.llm_calls[0]["error"] == "reasoning service returned no choices"


class TestFieldMapper:
    def _mapper(self, index, reasoning):
        return FieldMapper(index, reasoning)

    def test_accepts_grounded_mappings(self, index, reasoning, items_export):
        asyncio.run(index.ingest_export(items_export))
        reasoning.replies = [
            {
                "mappings": [
                    {"tsvField": "Region", "uiLabel": "Region", "uiSelector": "#region", "confidence": 0.92, "reasoning": "same values"}
                ]
            }
        ]

        mappings = asyncio.run(
            self._mapper(index, reasoning).map_fields_to_controls(list(index.summaries.values()), [REGION_FINDING])
        )

        assert len(mappings) == 1
        assert mappings[0].source_file == "items.tsv"
        assert mappings[0].sample_values == ["North", "South"]
        assert mappings[0].rationale == "same values"
        assert index.stats()["records_by_kind"]["mapping"] == 1
        assert "UI CONTROLS" in reasoning.requests[0]["messages"][1]["content"]

    def test_zero_mappings_is_fatal(self, index, reasoning, items_export):
        asyncio.run(index.ingest_export(items_export))
        reasoning.replies = [{"mappings": []}]

        with pytest.raises(MappingError, match="zero mappings"):
            asyncio.run(
                self._mapper(index, reasoning).map_fields_to_controls(list(index.summaries.values()), [REGION_FINDING])
            )

    def test_unknown_field_is_rejected(self, index, reasoning, items_export):
        asyncio.run(index.ingest_export(items_export))
        reasoning.replies = [
            [{"dataField": "Colour", "controlLabel": "Region", "controlSelector": "#region", "confidence": 0.5}]
        ]

        with pytest.raises(MappingError, match="unknown field"):
            asyncio.run(
                self._mapper(index, reasoning).map_fields_to_controls(list(index.summaries.values()), [REGION_FINDING])
            )

    def test_control_without_grounding_is_fatal(self, index, reasoning, embedder, items_export):
        asyncio.run(index.ingest_export(items_export))
        embedder.vectors = {"Region North South": [-1.0, -0.5, -0.25]}

        with pytest.raises(MappingError, match="no data grounding"):
            asyncio.run(
                self._mapper(index, reasoning).map_fields_to_controls(list(index.summaries.values()), [REGION_FINDING])
            )
        assert reasoning.requests == []

    def test_nothing_to_map(self, index, reasoning):
        with pytest.raises(MappingError):
            asyncio.run(self._mapper(index, reasoning).map_fields_to_controls([], [REGION_FINDING]))


class TestSynthesizer:
    def test_builds_specs_from_observed_values(self, index, reasoning, items_export):
        asyncio.run(index.ingest_export(items_export))
        reasoning.replies = [
            [
                {"name": "Filter North", "type": "filter", "testValues": ["North"], "validationCriteria": ["count"]},
                {"name": "Sort descending", "type": "sort", "testValues": "desc"},
            ]
        ]

        specs = asyncio.run(Synthesizer(index, reasoning).synthesize_tests([REGION_MAPPING], batch_id="learn-1"))

        assert [spec.id for spec in specs] == ["learn-1-test-001", "learn-1-test-002"]
        assert specs[0].source_file == "items.tsv"
        assert specs[0].kind is TestKind.FILTER
        assert specs[0].target_field == "Region"
        assert specs[0].target_selector == "#region"
        assert specs[0].expected_result_descriptors == ["count"]
        assert specs[1].test_values == ["desc"]

    def test_batches_get_distinct_ids(self, index, reasoning, items_export):
        asyncio.run(index.ingest_export(items_export))
        reasoning.replies = [
            [{"type": "filter", "testValues": ["North"]}],
            [{"type": "filter", "testValues": ["North"]}],
        ]
        synthesizer = Synthesizer(index, reasoning)

        first = asyncio.run(synthesizer.synthesize_tests([REGION_MAPPING]))
        second = asyncio.run(synthesizer.synthesize_tests([REGION_MAPPING]))

        assert first[0].id.endswith("-test-001")
        assert second[0].id.endswith("-test-001")
        assert first[0].id != second[0].id

    def test_fabricated_value_is_rejected(self, index, reasoning, items_export):
        asyncio.run(index.ingest_export(items_export))
        reasoning.replies = [[{"name": "Filter Atlantis", "type": "filter", "testValues": ["Atlantis"]}]]

        with pytest.raises(SynthesisError, match="Atlantis"):
            asyncio.run(Synthesizer(index, reasoning).synthesize_tests([REGION_MAPPING]))

    def test_numeric_filter_needs_a_condition(self, index, reasoning, items_export):
        asyncio.run(index.ingest_export(items_export))
        price = REGION_MAPPING.model_copy(update={"data_field": "Price", "control_selector": "#price"})
        reasoning.replies = [[{"type": "numericFilter", "testValues": [">=20"]}], [{"type": "numericFilter", "testValues": ["cheap"]}]]
        synthesizer = Synthesizer(index, reasoning)

        specs = asyncio.run(synthesizer.synthesize_tests([price]))
        assert specs[0].test_values == [">=20"]
        with pytest.raises(SynthesisError):
            asyncio.run(synthesizer.synthesize_tests([price]))

    def test_non_array_reply(self, index, reasoning, items_export):
        asyncio.run(index.ingest_export(items_export))
        reasoning.replies = [{"tests": []}]

        with pytest.raises(SynthesisError):
            asyncio.run(Synthesizer(index, reasoning).synthesize_tests([REGION_MAPPING]))

    def test_no_mappings(self, index, reasoning):
        with pytest.raises(SynthesisError):
            asyncio.run(Synthesizer(index, reasoning).synthesize_tests([]))
