"""Shared data models for GoldQA."""
from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Optional, Tuple

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, PrivateAttr

from goldqa.src.utils.errors import RunSealedError


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


Row = Dict[str, str]


# ---------------------------------------------------------------------------
# UI state
# ---------------------------------------------------------------------------
class ControlState(BaseModel):
    """Option set of a multi-option control at capture time."""

    model_config = ConfigDict(frozen=True)

    options: List[str] = Field(default_factory=list)


class UISnapshot(BaseModel):
    """Structured fingerprint of the page at one instant."""

    model_config = ConfigDict(frozen=True)

    url: str
    query_params: Dict[str, str] = Field(default_factory=dict)
    result_count: Optional[int] = None
    result_count_raw_text: Optional[str] = None
    control_states: Dict[str, ControlState] = Field(default_factory=dict)
    table_row_count: int = 0
    screenshot_ref: str = ""
    captured_at: datetime = Field(default_factory=utc_now)


class CountChange(BaseModel):
    model_config = ConfigDict(frozen=True)

    before: Optional[int] = None
    after: Optional[int] = None


class UrlChange(BaseModel):
    model_config = ConfigDict(frozen=True)

    before: str
    after: str


class OptionCountChange(BaseModel):
    model_config = ConfigDict(frozen=True)

    before_count: int
    after_count: int


class StateDelta(BaseModel):
    """Fields that differ between two snapshots. Absent means unchanged."""

    model_config = ConfigDict(frozen=True)

    result_count_change: Optional[CountChange] = None
    url_change: Optional[UrlChange] = None
    table_row_count_change: Optional[CountChange] = None
    cascading_control_changes: Dict[str, OptionCountChange] = Field(default_factory=dict)

    def is_empty(self) -> bool:
        return (
            self.result_count_change is None
            and self.url_change is None
            and self.table_row_count_change is None
            and not self.cascading_control_changes
        )

    def summary(self) -> List[str]:
        lines: List[str] = []
        if self.result_count_change:
            change = self.result_count_change
            lines.append(f"result count {change.before} -> {change.after}")
        if self.url_change:
            lines.append(f"url {self.url_change.before} -> {self.url_change.after}")
        if self.table_row_count_change:
            change = self.table_row_count_change
            lines.append(f"table rows {change.before} -> {change.after}")
        for selector, change in self.cascading_control_changes.items():
            lines.append(f"{selector} options {change.before_count} -> {change.after_count}")
        return lines


# ---------------------------------------------------------------------------
# Exploration
# ---------------------------------------------------------------------------
class ControlKind(str, Enum):
    DROPDOWN = "dropdown"
    SEARCH_BOX = "searchBox"


class DiscoveredControl(BaseModel):
    """Interactive control found on the page. Identity is the selector."""

    model_config = ConfigDict(frozen=True)

    kind: ControlKind
    label: str
    selector: str
    placeholder_text: Optional[str] = None
    accessible_name: Optional[str] = None


class ResetOutcome(BaseModel):
    """Result of returning a control to a neutral state after one sample."""

    model_config = ConfigDict(frozen=True)

    attempted: bool = True
    succeeded: bool = False
    method: str = ""
    detail: str = ""


class SampledTrial(BaseModel):
    model_config = ConfigDict(frozen=True)

    option_or_term: str
    delta: StateDelta
    after_screenshot_ref: str = ""
    stable: bool = True
    reset: ResetOutcome = Field(default_factory=ResetOutcome)
    settled_after_reset: bool = True


class ExplorationFinding(BaseModel):
    """Outcome of exploring one control across a sample of its values."""

    model_config = ConfigDict(frozen=True)

    control: DiscoveredControl
    all_observed_options: List[str] = Field(default_factory=list)
    sampled_trials: List[SampledTrial] = Field(default_factory=list)
    before_screenshot_ref: str = ""

    @property
    def reset_failures(self) -> int:
        return sum(1 for trial in self.sampled_trials if not trial.reset.succeeded)


# ---------------------------------------------------------------------------
# Data export
# ---------------------------------------------------------------------------
class DataSummary(BaseModel):
    """Profile of one data export used to ground reasoning prompts."""

    source_label: str
    headers: List[str] = Field(default_factory=list)
    record_count: int = 0
    field_types: Dict[str, str] = Field(default_factory=dict)
    unique_values: Dict[str, List[str]] = Field(default_factory=dict)
    sample_records: List[Row] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Mapping & synthesis
# ---------------------------------------------------------------------------
class FieldControlMapping(BaseModel):
    """Claimed correspondence between a data field and a UI control."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    data_field: str = Field(validation_alias=AliasChoices("data_field", "dataField", "tsvField"))
    source_file: str = Field(default="", validation_alias=AliasChoices("source_file", "sourceFile", "tsvFile"))
    control_label: str = Field(validation_alias=AliasChoices("control_label", "controlLabel", "uiLabel"))
    control_selector: str = Field(validation_alias=AliasChoices("control_selector", "controlSelector", "uiSelector"))
    confidence: float = Field(ge=0.0, le=1.0)
    rationale: str = Field(default="", validation_alias=AliasChoices("rationale", "reasoning"))
    sample_values: List[str] = Field(default_factory=list, validation_alias=AliasChoices("sample_values", "sampleValues"))
    data_mismatch: Optional[str] = Field(default=None, validation_alias=AliasChoices("data_mismatch", "dataMismatch"))


class TestKind(str, Enum):
    __test__ = False

    FILTER = "filter"
    SEARCH = "search"
    SORT = "sort"
    NUMERIC_FILTER = "numericFilter"


class TestSpecification(BaseModel):
    """Replayable test derived from one mapping."""

    __test__ = False
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str
    name: str = ""
    description: str = ""
    kind: TestKind = Field(validation_alias=AliasChoices("kind", "type"))
    target_field: str = Field(validation_alias=AliasChoices("target_field", "targetField", "dataField"))
    target_selector: str = Field(default="", validation_alias=AliasChoices("target_selector", "targetSelector", "selector"))
    test_values: List[str] = Field(default_factory=list, validation_alias=AliasChoices("test_values", "testValues"))
    steps: List[str] = Field(default_factory=list)
    expected_result_descriptors: List[str] = Field(
        default_factory=list,
        validation_alias=AliasChoices("expected_result_descriptors", "expectedResultDescriptors", "validationCriteria"),
    )
    target_url: Optional[str] = Field(default=None, validation_alias=AliasChoices("target_url", "targetUrl"))
    # export the mapping was grounded in; empty means every indexed export
    source_file: str = Field(default="", validation_alias=AliasChoices("source_file", "sourceFile"))
    results_selector: str = "table tbody tr"
    priority: str = "medium"
    tags: List[str] = Field(default_factory=list)

    @property
    def category(self) -> str:
        return self.kind.value


# ---------------------------------------------------------------------------
# Execution
# ---------------------------------------------------------------------------
class TestStatus(str, Enum):
    __test__ = False

    PASSED = "passed"
    FAILED = "failed"
    SKIPPED = "skipped"
    ERROR = "error"


class ValidationReport(BaseModel):
    criteria: List[str] = Field(default_factory=list)
    passed: bool = False
    expected_count: int = 0
    actual_count: int = 0
    failures: List[str] = Field(default_factory=list)


class TestOutcome(BaseModel):
    __test__ = False
    model_config = ConfigDict(frozen=True)

    test_id: str
    run_id: str
    status: TestStatus
    observed_data: List[Row] = Field(default_factory=list)
    expected_data: List[Row] = Field(default_factory=list)
    screenshot_refs: Dict[str, str] = Field(default_factory=dict)
    duration_ms: int = 0
    error: Optional[str] = None
    validation: Optional[ValidationReport] = None
    started_at: datetime = Field(default_factory=utc_now)


class TestRun(BaseModel):
    """Ordered outcomes of one batch execution. Sealed once complete."""

    __test__ = False

    run_id: str
    started_at: datetime = Field(default_factory=utc_now)
    finished_at: Optional[datetime] = None
    duration_ms: int = 0
    sealed: bool = False
    _outcomes: List[TestOutcome] = PrivateAttr(default_factory=list)

    @property
    def outcomes(self) -> Tuple[TestOutcome, ...]:
        return tuple(self._outcomes)

    def add_outcome(self, outcome: TestOutcome) -> None:
        if self.sealed:
            raise RunSealedError(f"run {self.run_id} is sealed")
        self._outcomes.append(outcome)

    def seal(self) -> None:
        if self.sealed:
            raise RunSealedError(f"run {self.run_id} is already sealed")
        self.finished_at = utc_now()
        self.duration_ms = int((self.finished_at - self.started_at).total_seconds() * 1000)
        self.sealed = True

    def count(self, status: TestStatus) -> int:
        return sum(1 for outcome in self.outcomes if outcome.status == status)

    @property
    def passed(self) -> int:
        return self.count(TestStatus.PASSED)

    @property
    def failed(self) -> int:
        return self.count(TestStatus.FAILED)

    @property
    def errors(self) -> int:
        return self.count(TestStatus.ERROR)

    @property
    def skipped(self) -> int:
        return self.count(TestStatus.SKIPPED)

    def counters(self) -> Dict[str, int]:
        return {
            "total": len(self.outcomes),
            "passed": self.passed,
            "failed": self.failed,
            "error": self.errors,
            "skipped": self.skipped,
        }


__all__ = [
    "Row",
    "utc_now",
    "ControlState",
    "UISnapshot",
    "CountChange",
    "UrlChange",
    "OptionCountChange",
    "StateDelta",
    "ControlKind",
    "DiscoveredControl",
    "ResetOutcome",
    "SampledTrial",
    "ExplorationFinding",
    "DataSummary",
    "FieldControlMapping",
    "TestKind",
    "TestSpecification",
    "TestStatus",
    "ValidationReport",
    "TestOutcome",
    "TestRun",
]
