import asyncio

import pytest

from goldqa.src.backend.mcp_client import ToolResult
from goldqa.src.capture.differ import diff
from goldqa.src.capture.snapshot import StateSnapshotter, extract_result_count, generate_selector, parse_query_params
from goldqa.src.capture.stability import StabilityWaiter
from goldqa.src.utils.config import ExplorationConfig
from goldqa.src.utils.errors import BackendUnavailableError, CaptureError
from goldqa.src.utils.models import ControlState, UISnapshot


def _snapshot(**overrides) -> UISnapshot:
    values = {
        "url": "http://app.test/items",
        "result_count": 50,
        "control_states": {"#color": ControlState(options=["Red", "Green", "Blue"])},
        "table_row_count": 20,
    }
    values.update(overrides)
    return UISnapshot(**values)


class TestDiff:
    def test_identical_snapshots_give_empty_delta(self):
        before = _snapshot()
        delta = diff(before, _snapshot())

        assert delta.is_empty()
        assert delta.summary() == []

    def test_count_change_only(self):
        delta = diff(_snapshot(result_count=50), _snapshot(result_count=48))

        assert delta.result_count_change.before == 50
        assert delta.result_count_change.after == 48
        assert delta.url_change is None
        assert delta.table_row_count_change is None
        assert delta.cascading_control_changes == {}

    def test_url_and_row_count_changes(self):
        delta = diff(_snapshot(), _snapshot(url="http://app.test/items?color=Red", table_row_count=5))

        assert delta.url_change.after.endswith("color=Red")
        assert (delta.table_row_count_change.before, delta.table_row_count_change.after) == (20, 5)

    def test_cascading_option_changes(self):
        after = _snapshot(control_states={"#color": ControlState(options=["Red"])})

        delta = diff(_snapshot(), after)

        change = delta.cascading_control_changes["#color"]
        assert (change.before_count, change.after_count) == (3, 1)

    def test_disappearing_control_is_not_reported(self):
        delta = diff(_snapshot(), _snapshot(control_states={}))

        assert delta.is_empty()


class TestResultCountParsing:
    def test_prefers_total_after_of(self):
        assert extract_result_count("Showing 1-20 of 1,248 results") == 1248

    def test_number_before_results(self):
        assert extract_result_count("48 results found") == 48

    def test_text_without_count_phrase(self):
        assert extract_result_count("Filter by color") is None
        assert extract_result_count("") is None


def test_generate_selector_preference_order():
    assert generate_selector({"id": "color", "className": "form-select big"}, "select") == "#color"
    assert generate_selector({"className": "form-select big"}, "select") == ".form-select"
    assert generate_selector({}, "select") == "select"


def test_parse_query_params_keeps_blank_values():
    assert parse_query_params("http://app.test/items?color=Red&q=") == {"color": "Red", "q": ""}


class TestStateSnapshotter:
    def test_capture_collects_structured_state(self, backend):
        backend.url = "http://app.test/items?color=Red"
        backend.elements[".result-count"] = [{"text": "Showing 1-20 of 48 results"}]
        backend.elements["select"] = [{"tagName": "select", "id": "color", "options": ["All", "Red", "Blue"]}]
        backend.elements["table tbody tr"] = [{}] * 20

        snapshot = asyncio.run(StateSnapshotter(backend).capture())

        assert snapshot.url == "http://app.test/items?color=Red"
        assert snapshot.query_params == {"color": "Red"}
        assert snapshot.result_count == 48
        assert snapshot.result_count_raw_text == "Showing 1-20 of 48 results"
        assert snapshot.control_states["#color"].options == ["All", "Red", "Blue"]
        assert snapshot.table_row_count == 20
        assert snapshot.screenshot_ref.startswith("/shots/state-1-")

    def test_missing_pieces_degrade_instead_of_failing(self, backend):
        backend.handlers["screenshot"] = lambda **params: ToolResult("screenshot", False, error="no page")

        snapshot = asyncio.run(StateSnapshotter(backend).capture())

        assert snapshot.result_count is None
        assert snapshot.control_states == {}
        assert snapshot.table_row_count == 0
        assert snapshot.screenshot_ref == ""

    def test_unknown_location_is_a_capture_error(self, backend):
        backend.handlers["get_current_url"] = lambda **params: ToolResult("get_current_url", False, error="closed")

        with pytest.raises(CaptureError):
            asyncio.run(StateSnapshotter(backend).capture())

    def test_backend_outage_is_a_capture_error(self, backend):
        def _down(**params):
            raise BackendUnavailableError("connection refused")

        backend.handlers["query_elements"] = _down

        with pytest.raises(CaptureError, match="connection refused"):
            asyncio.run(StateSnapshotter(backend).capture())


class _Clock:
    def __init__(self):
        self.now = 0.0
        self.sleeps = []

    def __call__(self):
        return self.now

    async def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.now += seconds


def _waiter(backend, clock, **overrides):
    values = dict(settle_ms=2000, stability_timeout_ms=5000, stability_quiet_ms=500, stability_poll_ms=250)
    values.update(overrides)
    return StabilityWaiter(backend, ExplorationConfig(**values), sleep=clock.sleep, clock=clock)


class TestStabilityWaiter:
    def test_waits_for_quiet_period_after_last_change(self, backend):
        fingerprints = iter(["a", "b", "b", "b", "b"])
        backend.handlers["evaluate"] = lambda **params: ToolResult("evaluate", True, {"result": next(fingerprints)})
        clock = _Clock()

        result = asyncio.run(_waiter(backend, clock).wait())

        assert result.stable is True
        assert result.fallback is False
        assert result.polls == 4
        assert result.waited_ms == 750

    def test_reports_instability_at_timeout(self, backend):
        counter = iter(range(1000))
        backend.handlers["evaluate"] = lambda **params: ToolResult("evaluate", True, {"result": next(counter)})
        clock = _Clock()

        result = asyncio.run(_waiter(backend, clock, stability_timeout_ms=1000).wait())

        assert result.stable is False
        assert result.waited_ms >= 1000

    def test_falls_back_to_fixed_settle_when_unreadable(self, backend):
        backend.fingerprint = None
        clock = _Clock()

        result = asyncio.run(_waiter(backend, clock).wait())

        assert result.fallback is True
        assert result.stable is False
        assert clock.sleeps == [2.0]
