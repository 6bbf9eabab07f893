"""In-memory stores for generated tests, their results and their input data."""
from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any, Dict, Iterable, List, Optional

from goldqa.src.utils.models import TestOutcome, TestSpecification, TestStatus


@dataclass(slots=True)
class TestData:
    """Inputs a test feeds the UI and the outputs the export predicts."""

    __test__ = False

    id: str
    test_case_id: str
    name: str
    inputs: Dict[str, Any] = field(default_factory=dict)
    expected_outputs: Dict[str, Any] = field(default_factory=dict)


def _group_by(values: Iterable[str]) -> Dict[str, int]:
    counts: Dict[str, int] = {}
    for value in values:
        counts[value] = counts.get(value, 0) + 1
    return counts


@dataclass(slots=True)
class TestStorage:
    """Keyed by test id; results keep the latest outcome per test."""

    __test__ = False

    test_cases: Dict[str, TestSpecification] = field(default_factory=dict)
    results: Dict[str, TestOutcome] = field(default_factory=dict)
    data: Dict[str, TestData] = field(default_factory=dict)

    # ------------------------------------------------------------------
    def save_test_case(self, test: TestSpecification) -> None:
        self.test_cases[test.id] = test

    def save_test_cases(self, tests: Iterable[TestSpecification]) -> None:
        for test in tests:
            self.save_test_case(test)

    def get_test_case(self, test_id: str) -> Optional[TestSpecification]:
        return self.test_cases.get(test_id)

    def delete_test_case(self, test_id: str) -> bool:
        removed = self.test_cases.pop(test_id, None) is not None
        self.results.pop(test_id, None)
        for data_id in [key for key, item in self.data.items() if item.test_case_id == test_id]:
            del self.data[data_id]
        return removed

    def by_category(self, category: str) -> List[TestSpecification]:
        return [test for test in self.test_cases.values() if test.category == category]

    def by_priority(self, priority: str) -> List[TestSpecification]:
        wanted = priority.lower()
        return [test for test in self.test_cases.values() if test.priority.lower() == wanted]

    def search(self, query: str) -> List[TestSpecification]:
        needle = query.lower()
        hits: List[TestSpecification] = []
        for test in self.test_cases.values():
            haystack = " ".join([test.name, test.description, test.target_field, *test.tags, *test.test_values])
            if needle in haystack.lower():
                hits.append(test)
        return hits

    # ------------------------------------------------------------------
    def save_result(self, outcome: TestOutcome) -> None:
        self.results[outcome.test_id] = outcome

    def get_result(self, test_id: str) -> Optional[TestOutcome]:
        return self.results.get(test_id)

    def results_by_status(self, status: TestStatus | str) -> List[TestOutcome]:
        wanted = TestStatus(status)
        return [outcome for outcome in self.results.values() if outcome.status == wanted]

    def save_data(self, item: TestData) -> None:
        self.data[item.id] = item

    def get_data(self, data_id: str) -> Optional[TestData]:
        return self.data.get(data_id)

    def data_for_test(self, test_id: str) -> List[TestData]:
        return [item for item in self.data.values() if item.test_case_id == test_id]

    # ------------------------------------------------------------------
    def statistics(self) -> Dict[str, Any]:
        tests = list(self.test_cases.values())
        return {
            "total_test_cases": len(tests),
            "by_category": _group_by(test.category for test in tests),
            "by_priority": _group_by(test.priority for test in tests),
            "total_results": len(self.results),
            "by_status": _group_by(outcome.status.value for outcome in self.results.values()),
            "total_test_data": len(self.data),
        }

    def export_test_cases(self) -> List[Dict[str, Any]]:
        return [test.model_dump(mode="json") for test in self.test_cases.values()]

    def import_test_cases(self, payload: Iterable[Dict[str, Any]]) -> int:
        imported = 0
        for item in payload:
            self.save_test_case(TestSpecification.model_validate(item))
            imported += 1
        return imported

    def export_data(self) -> List[Dict[str, Any]]:
        return [asdict(item) for item in self.data.values()]

    def clear(self) -> None:
        self.test_cases.clear()
        self.results.clear()
        self.data.clear()
