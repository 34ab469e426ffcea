"""Tests for widget lifecycle, chart replacement and dashboard refresh."""
from __future__ import annotations

import threading
import time
from datetime import date

import pytest

from core.charts import PLACEHOLDER_LABEL
from core.settings import Settings
from core.widgets import MAIN_PANEL, Dashboard, UnknownWidgetError, VegaChart, Widget, default_widgets


class _Handle:
    def __init__(self, series) -> None:
        self.series = series
        self.destroyed = False
        self.destroy_calls = 0

    def destroy(self) -> None:
        self.destroyed = True
        self.destroy_calls += 1


class _RecordingRenderer:
    """Keep every chart handle it hands out."""

    def __init__(self) -> None:
        self.handles = []

    def render(self, series):
        handle = _Handle(series)
        self.handles.append(handle)
        return handle


def _config(name: str):
    return {c.name: c for c in default_widgets(Settings())}[name]


def _widget(name: str, store, renderer=None) -> Widget:
    return Widget(_config(name), store, renderer=renderer or _RecordingRenderer(), today=date(2024, 5, 1))


def test_catalogue_offsets_and_policies():
    configs = {c.name: c for c in default_widgets(Settings(local_utc_offset_hours=-5))}
    assert len(configs) == 9
    assert configs["payment-method-consumption"].utc_offset_hours == 0
    assert configs["product-consumption-total"].utc_offset_hours == -5
    assert configs["visits-by-hour"].chart_type == "doughnut"
    assert configs["user-money-consumption"].empty_selector == "all"


def test_mount_draws_one_chart_per_bucket(store):
    widget = _widget("payment-method-consumption", store)
    widget.mount()

    assert widget.mounted
    assert len(widget.records) == 4
    assert set(widget.panels) == {"day", "month", "year"}
    day = widget.panels["day"].series
    assert day.labels == ["cash", "card", "unknown"]
    assert day.values == [13.0, 0.0, 0.0]


def test_set_filter_replaces_chart(store):
    renderer = _RecordingRenderer()
    widget = _widget("payment-method-consumption", store, renderer)
    widget.mount()
    old = widget.panels["month"].chart

    series = widget.set_filter("month", "2024-05")

    new = widget.panels["month"].chart
    assert old.destroyed
    assert not new.destroyed
    assert new is renderer.handles[-1]
    assert series.values == [13.0, 5.0, 0.0]
    assert series.total == 18.0


class _SlowRenderer(_RecordingRenderer):
    def render(self, series):
        time.sleep(0.05)
        return super().render(series)


def test_concurrent_filter_changes_replace_each_chart_once(store):
    renderer = _SlowRenderer()
    widget = _widget("payment-method-consumption", store, renderer)
    widget.mount()
    start = threading.Barrier(2)
    errors = []

    def change(selector: str) -> None:
        try:
            start.wait()
            widget.set_filter("month", selector)
        except Exception as exc:
            errors.append(exc)

    threads = [threading.Thread(target=change, args=(s,)) for s in ("2024-05", "2024-06")]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert errors == []
    live = {id(p.chart) for p in widget.panels.values()}
    for handle in renderer.handles:
        if id(handle) in live:
            assert handle.destroy_calls == 0
        else:
            assert handle.destroy_calls == 1
    month = widget.panels["month"]
    assert month.series.total == {"2024-05": 18.0, "2024-06": 7.0}[month.filters.selector]


def test_payload_matches_filter_under_lock(store):
    widget = _widget("payment-type-totals", store)
    widget.mount()

    with widget.lock:
        widget.set_filter("year", "2024")
        body = widget.payload(MAIN_PANEL)

    assert body["panels"][MAIN_PANEL]["filters"]["bucket"] == "year"
    assert body["panels"][MAIN_PANEL]["filters"]["selector"] == "2024"


def test_set_filter_rejects_unknown_bucket(store):
    widget = _widget("payment-method-consumption", store)
    widget.mount()
    with pytest.raises(ValueError):
        widget.set_filter("week", "2024-05")


def test_colours_are_stable_across_redraws(store):
    widget = _widget("product-consumption-total", store)
    widget.mount()
    first = widget.set_filter("month", "2024-05").colors
    widget.set_filter("day", "2024-05-01")
    again = widget.set_filter("month", "2024-05").colors
    assert first == again


def test_single_selector_widget_switches_active_bucket(store):
    widget = _widget("user-money-consumption", store)
    widget.mount()

    assert widget.panel_keys() == [MAIN_PANEL]
    everything = widget.panels[MAIN_PANEL].series
    assert everything.labels == ["user-a", "user-b", "user-c"]
    assert everything.total == 25.0

    series = widget.set_filter("month", "2024-06")
    assert widget.active_bucket == "month"
    assert series.labels == ["user-c"]
    assert widget.panels[MAIN_PANEL].filters.bucket == "month"


def test_grouped_widget_backfills(store):
    widget = _widget("user-product-consumption", store)
    widget.mount()

    series = widget.set_filter("month", "2024-05")

    assert series.labels == ["A", "B", "C"]
    assert [ds.label for ds in series.datasets] == ["user-a", "user-b"]
    assert all(len(ds.values) == 3 for ds in series.datasets)
    assert series.datasets[1].values == [0.0, 0.0, 6.0]


def test_hour_widget_uses_fixed_palette(store):
    widget = _widget("visits-by-hour", store)
    widget.mount()

    series = widget.set_filter("day", "2024-05-01")

    # 08:00Z and 20:00Z at UTC-5 are 03:00 and 15:00 local.
    assert series.values == [0.0, 50.0, 50.0]
    assert series.colors["morning"] == "#FF6384"


def test_empty_range_shows_placeholder(store):
    widget = _widget("product-consumption-total", store)
    widget.mount()
    series = widget.set_filter("year", "1999")
    assert series.labels == [PLACEHOLDER_LABEL]
    assert series.values == [0.0]


def test_refresh_failure_keeps_previous_records(store, failing_store):
    widget = _widget("payment-method-consumption", store)
    widget.mount()
    loaded = list(widget.records)

    widget.store = failing_store
    assert widget.refresh() is False
    assert widget.records == loaded
    assert failing_store.calls == 1


def test_first_load_failure_degrades_to_empty(failing_store):
    widget = _widget("payment-method-consumption", failing_store)
    widget.mount()

    assert widget.records == []
    assert widget.panels["day"].series.labels == [PLACEHOLDER_LABEL]


def test_unmount_tears_down_charts(store):
    renderer = _RecordingRenderer()
    widget = _widget("payment-method-consumption", store, renderer)
    widget.mount()
    live = [p.chart for p in widget.panels.values()]

    widget.unmount()

    assert all(h.destroyed for h in live)
    assert widget.panels == {}
    assert widget.records == []
    assert not widget.mounted


def test_default_renderer_produces_vega_spec(store):
    widget = Widget(_config("visits-by-hour"), store, today=date(2024, 5, 1))
    widget.mount()
    chart = widget.panels["day"].chart
    assert isinstance(chart, VegaChart)
    assert "$schema" in chart.spec


def test_payload_shape(store):
    widget = _widget("payment-method-consumption", store)
    widget.mount()
    payload = widget.payload("month")
    assert payload["widget"] == "payment-method-consumption"
    assert list(payload["panels"]) == ["month"]
    assert payload["panels"]["month"]["filters"]["selector"] == "2024-05"
    assert payload["panels"]["month"]["series"]["labels"] == ["cash", "card", "unknown"]


def test_dashboard_shares_one_fetch(store):
    calls = []

    class _CountingStore:
        def fetch_all(self, collection):
            calls.append(collection)
            return store.fetch_all(collection)

    dashboard = Dashboard.from_settings(_CountingStore(), Settings(), renderer=_RecordingRenderer(), today=date(2024, 5, 1))
    assert dashboard.mount() is True

    assert calls == ["DatosFidelizacion"]
    assert len(dashboard.records) == 4
    assert all(len(w.records) == 4 for w in dashboard.widgets.values())


def test_dashboard_refresh_replaces_records_wholesale(store):
    dashboard = Dashboard.from_settings(store, Settings(), renderer=_RecordingRenderer(), today=date(2024, 5, 1))
    dashboard.mount()

    store.put("DatosFidelizacion", "doc-2", {})
    assert dashboard.refresh() is True
    assert [r.user_id for r in dashboard.records] == ["user-a", "user-a", "user-b"]


def test_dashboard_unknown_widget(store):
    dashboard = Dashboard.from_settings(store, Settings())
    with pytest.raises(UnknownWidgetError):
        dashboard.widget("nope")


def test_dashboard_failed_refresh_keeps_state(store, failing_store):
    dashboard = Dashboard.from_settings(store, Settings(), renderer=_RecordingRenderer())
    dashboard.mount()
    dashboard.store = failing_store
    assert dashboard.refresh() is False
    assert len(dashboard.records) == 4
