"""Gold-standard expectations and observed-versus-expected comparison."""
from __future__ import annotations

from typing import Callable, List, Optional, Sequence, Tuple

from goldqa.src.utils.conditions import parse_numeric_condition, to_number
from goldqa.src.utils.errors import TestExecutionError, ValidationMismatch
from goldqa.src.utils.models import Row, TestKind, TestSpecification, ValidationReport

COUNT_CRITERION = "count"
CONTENT_CRITERION = "content"
DEFAULT_CRITERIA = (COUNT_CRITERION,)
ASCENDING = {"asc", "ascending"}
DESCENDING = {"desc", "descending"}


def criteria_for(test: TestSpecification, criteria: Sequence[str] = DEFAULT_CRITERIA) -> Tuple[str, ...]:
    """Criteria checked for ``test``; sort tests always include the ordering check."""
    if test.kind is TestKind.SORT and CONTENT_CRITERION not in criteria:
        return tuple(criteria) + (CONTENT_CRITERION,)
    return tuple(criteria)


def value_predicate(test: TestSpecification) -> Callable[[str], bool]:
    """Predicate a single cell must satisfy for the test's first value."""

    value = test.test_values[0]
    wanted = value.strip().lower()
    if test.kind is TestKind.FILTER:
        return lambda cell: cell.strip().lower() == wanted
    if test.kind is TestKind.SEARCH:
        return lambda cell: wanted in cell.lower()
    if test.kind is TestKind.NUMERIC_FILTER:
        condition = parse_numeric_condition(value)
        if condition is None:
            raise TestExecutionError(f"{test.id}: {value!r} is not a numeric condition")

        def _matches(cell: str) -> bool:
            number = to_number(cell)
            return number is not None and condition.matches(number)

        return _matches
    return lambda cell: True


def _sort_key(values: Sequence[str]) -> Callable[[str], object]:
    if values and all(to_number(value) is not None for value in values):
        return lambda value: to_number(value)
    return lambda value: value.lower()


def expected_rows_for(test: TestSpecification, rows: Sequence[Row]) -> List[Row]:
    """Rows of the data export the page should show after the test's action."""

    field = test.target_field
    carrying = [row for row in rows if field in row]
    if test.kind is TestKind.SORT:
        key = _sort_key([row[field] for row in carrying])
        descending = test.test_values[0].lower() in DESCENDING
        return sorted(carrying, key=lambda row: key(row[field]), reverse=descending)
    predicate = value_predicate(test)
    return [row for row in carrying if predicate(row[field])]


def _observed_column(observed: Sequence[Row], field: str) -> Optional[str]:
    if not observed:
        return None
    wanted = field.strip().lower()
    for key in observed[0]:
        if key.strip().lower() == wanted:
            return key
    return None


def _content_failures(observed: Sequence[Row], test: TestSpecification) -> List[str]:
    column = _observed_column(observed, test.target_field)
    if test.kind is TestKind.SORT:
        if column is None:
            return [f"column {test.target_field!r} not shown; cannot check ordering"]
        cells = [row.get(column, "") for row in observed]
        key = _sort_key(cells)
        expected_order = sorted(cells, key=key, reverse=test.test_values[0].lower() in DESCENDING)
        return [] if cells == expected_order else [f"rows are not sorted by {test.target_field!r}"]

    predicate = value_predicate(test)
    failures: List[str] = []
    for position, row in enumerate(observed, start=1):
        cells = [row.get(column, "")] if column else list(row.values())
        if not any(predicate(cell) for cell in cells):
            failures.append(f"row {position} does not match {test.test_values[0]!r}")
    return failures


def check_rows(
    observed: Sequence[Row],
    expected: Sequence[Row],
    test: TestSpecification,
    criteria: Sequence[str] = DEFAULT_CRITERIA,
) -> ValidationReport:
    failures: List[str] = []
    if COUNT_CRITERION in criteria and len(observed) != len(expected):
        failures.append(f"expected {len(expected)} row(s), observed {len(observed)}")
    if CONTENT_CRITERION in criteria:
        failures.extend(_content_failures(observed, test))
    return ValidationReport(
        criteria=list(criteria),
        passed=not failures,
        expected_count=len(expected),
        actual_count=len(observed),
        failures=failures,
    )


def ensure_valid(report: ValidationReport) -> None:
    if not report.passed:
        raise ValidationMismatch(report.failures)
