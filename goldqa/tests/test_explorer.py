import asyncio

import pytest

from goldqa.src.backend.mcp_client import ToolResult
from goldqa.src.capture.stability import StabilityWaiter
from goldqa.src.explorer.active_explorer import ActiveExplorer, sample_options, search_terms_from_rows
from goldqa.src.explorer.controls import ControlDriver
from goldqa.src.explorer.discovery import ControlDiscovery, extract_label, is_interactive_dropdown
from goldqa.src.utils.errors import BackendUnavailableError, ExplorationError
from goldqa.src.utils.models import ControlKind, DiscoveredControl

COLOR = DiscoveredControl(kind=ControlKind.DROPDOWN, label="Color", selector="#color")
SEARCH = DiscoveredControl(kind=ControlKind.SEARCH_BOX, label="Search", selector="#q")

COUNTS = {None: 50, "Red": 20, "Green": 18, "Blue": 12}


def _color_page(backend):
    backend.elements["#color"] = [{"tagName": "select", "id": "color", "options": ["All", "Red", "Green", "Blue"]}]
    backend.elements[".result-count"] = lambda: [{"text": f"{COUNTS[backend.applied]} results"}]


def _explorer(backend, index, config):
    return ActiveExplorer(backend, index, config=config)


class TestSampling:
    def test_takes_first_k_in_order(self):
        assert sample_options(["A", "B", "C", "D"], 2) == ["A", "B"]

    def test_fewer_options_than_budget(self):
        assert sample_options(["A"], 2) == ["A"]

    def test_non_positive_budget(self):
        assert sample_options(["A", "B"], 0) == []


def test_search_terms_skip_codes_urls_and_numbers():
    rows = [
        {"Name": "Alpha", "Code": "SKU-001", "Link": "https://x.test", "Price": "10.5"},
        {"Name": "Alpha", "Code": "AB_12", "Notes": "x" * 60},
        {"Name": "Bravo widget"},
    ]

    assert search_terms_from_rows(rows) == ["Alpha", "Bravo widget"]


class TestExplore:
    def test_samples_within_budget_and_records_effects(self, backend, index, exploration_config):
        _color_page(backend)
        exploration_config.samples_per_control = 2

        finding = asyncio.run(_explorer(backend, index, exploration_config).explore(COLOR))

        assert finding.all_observed_options == ["Red", "Green", "Blue"]
        assert [trial.option_or_term for trial in finding.sampled_trials] == ["Red", "Green"]
        first = finding.sampled_trials[0]
        assert first.delta.result_count_change.before == 50
        assert first.delta.result_count_change.after == 20
        assert first.reset.succeeded is True
        assert first.reset.method == "navigate"
        assert finding.reset_failures == 0

    def test_single_before_snapshot_per_control(self, backend, index, exploration_config):
        _color_page(backend)
        exploration_config.samples_per_control = 3

        asyncio.run(_explorer(backend, index, exploration_config).explore(COLOR))

        # one before capture plus one after capture per sampled option
        assert backend.actions().count("get_current_url") == 4

    def test_page_settles_after_each_reset(self, backend, index, exploration_config):
        _color_page(backend)
        backend.elements['button:has-text("Reset")'] = [{"tagName": "button", "text": "Reset"}]
        exploration_config.samples_per_control = 2

        finding = asyncio.run(_explorer(backend, index, exploration_config).explore(COLOR))

        actions = backend.actions()
        reset_click = actions.index("click")
        next_apply = actions.index("select_option", reset_click)
        assert "evaluate" in actions[reset_click:next_apply]
        assert actions[-1] == "evaluate"
        assert all(trial.settled_after_reset for trial in finding.sampled_trials)

    def test_unsettled_page_after_reset_is_recorded(self, backend, index, exploration_config):
        _color_page(backend)
        exploration_config.samples_per_control = 1
        backend.fingerprint = None

        finding = asyncio.run(_explorer(backend, index, exploration_config).explore(COLOR))

        assert finding.sampled_trials[0].settled_after_reset is False

    def test_unselectable_option_aborts_exploration(self, backend, index, exploration_config):
        _color_page(backend)
        backend.handlers["select_option"] = lambda **params: ToolResult("select_option", False, error="not a select")
        backend.handlers["click"] = lambda **params: ToolResult("click", False, error="detached")

        with pytest.raises(ExplorationError) as excinfo:
            asyncio.run(_explorer(backend, index, exploration_config).explore(COLOR))

        assert excinfo.value.control_label == "Color"

    def test_search_box_uses_terms_from_indexed_export(self, backend, index, exploration_config, items_export):
        asyncio.run(index.ingest_export(items_export))
        exploration_config.samples_per_control = 2

        finding = asyncio.run(_explorer(backend, index, exploration_config).explore(SEARCH))

        assert [trial.option_or_term for trial in finding.sampled_trials] == ["Alpha", "North"]
        fills = [params for action, params in backend.calls if action == "fill"]
        assert fills[0] == {"selector": "#q", "value": "Alpha"}

    def test_explore_all_indexes_each_finding(self, backend, index, exploration_config):
        _color_page(backend)
        backend.elements["select"] = [
            {"tagName": "select", "id": "color", "attributes": {"aria-label": "Color"}, "options": ["Red"]}
        ]
        exploration_config.samples_per_control = 1

        findings = asyncio.run(_explorer(backend, index, exploration_config).explore_all())

        assert [finding.control.selector for finding in findings] == ["#color"]
        assert index.stats()["records_by_kind"] == {"ui_exploration": 1}


class TestReset:
    def test_prefers_reset_button(self, backend, exploration_config):
        backend.elements['button:has-text("Reset")'] = [{"tagName": "button", "text": "Reset"}]
        driver = ControlDriver(backend, StabilityWaiter(backend, exploration_config))

        outcome = asyncio.run(driver.reset(COLOR, "http://app.test/items"))

        assert outcome.succeeded is True
        assert outcome.method == 'click button:has-text("Reset")'
        assert "navigate" not in backend.actions()

    def test_reports_failure_instead_of_raising(self, backend, exploration_config):
        backend.handlers["navigate"] = lambda **params: ToolResult("navigate", False, error="net::ERR_ABORTED")
        driver = ControlDriver(backend, StabilityWaiter(backend, exploration_config))

        outcome = asyncio.run(driver.reset(COLOR, "http://app.test/items"))

        assert outcome.succeeded is False
        assert outcome.detail == "net::ERR_ABORTED"


class TestDiscovery:
    def test_failed_heuristic_is_skipped_and_duplicates_merged(self, backend):
        def _query(selector, limit):
            if selector == '[role="combobox"]':
                raise BackendUnavailableError("timeout")
            return None

        region = {"tagName": "select", "id": "region", "attributes": {"aria-label": "Region"}, "options": ["North"]}
        search = {"tagName": "input", "className": "search-input", "attributes": {"placeholder": "Search items"}}
        backend.handlers["query_elements"] = _query
        backend.elements["select"] = [region]
        backend.elements['[class*="select"]'] = [region]
        backend.elements['input[type="search"]'] = [search]
        backend.elements[".search-input"] = [search]
        discovery = ControlDiscovery(backend)

        controls = asyncio.run(discovery.discover())

        assert [(c.kind, c.selector, c.label) for c in controls] == [
            (ControlKind.DROPDOWN, "#region", "Region"),
            (ControlKind.SEARCH_BOX, ".search-input", "Search items"),
        ]
        assert controls[1].placeholder_text == "Search items"
        assert [error.heuristic for error in discovery.errors] == ['[role="combobox"]']

    def test_hidden_and_decorative_elements_are_ignored(self, backend):
        backend.elements["select"] = [{"tagName": "select", "id": "hidden", "visible": False}]
        backend.elements['[class*="dropdown"]'] = [{"tagName": "div", "className": "facetHeader dropdown"}]

        controls = asyncio.run(ControlDiscovery(backend).discover_dropdowns())

        assert controls == []


def test_interactive_dropdown_heuristics():
    assert is_interactive_dropdown({"tagName": "select"})
    assert is_interactive_dropdown({"tagName": "div", "className": "my-dropdown", "attributes": {"tabindex": "0"}})
    assert not is_interactive_dropdown({"tagName": "div", "className": "my-dropdown"})
    assert not is_interactive_dropdown({"tagName": "div", "className": "table-header"})


def test_extract_label_order():
    assert extract_label({"attributes": {"aria-label": "Region", "placeholder": "Pick"}}) == "Region"
    assert extract_label({"attributes": {"placeholder": "Pick"}}) == "Pick"
    assert extract_label({"text": "Colour"}) == "Colour"
    assert extract_label({"id": "size"}) == "Element with ID size"
    assert extract_label({}) is None
