"""Dashboard widgets: owned state, lifecycle and chart replacement.

A ``Widget`` is created on mount, has its record list replaced wholesale on
every refresh and is torn down on unmount. Filter changes re-run filter,
aggregate and present synchronously against the in-memory records and
replace the chart: the new chart is rendered first, then the old one is
destroyed. Each widget serialises its own state changes behind a
re-entrant lock, since the API serves requests from a thread pool.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import asdict, dataclass, field
from datetime import date
from typing import Any, Dict, List, Optional, Protocol, Sequence, Tuple

from core.aggregations import GroupedResult, aggregate
from core.charts import HOUR_CLASS_COLORS, ChartSeries, ColorRegistry, build_chart, present, present_grouped, to_vega_spec
from core.filters import BUCKETS, ChartFilters, default_selector, filter_records, normalize_bucket, normalize_filters
from core.records import VisitRecord, normalize, payment_types
from core.settings import Settings
from core.store import DocumentStore


logger = logging.getLogger(__name__)

MAIN_PANEL = "main"


class UnknownWidgetError(KeyError):
    """Raised when a widget name is not in the dashboard catalogue."""


@dataclass(frozen=True)
class WidgetConfig:
    name: str
    title: str
    dimension: str
    dimension_label: str
    chart_type: str = "bar"
    value_source: str = "payments"
    utc_offset_hours: int = 0
    empty_selector: str = "none"
    buckets: Tuple[str, ...] = BUCKETS
    single_selector: bool = False
    zero_fill_labels: bool = False


def default_widgets(settings: Optional[Settings] = None) -> List[WidgetConfig]:
    local = (settings or Settings()).local_utc_offset_hours
    return [
        WidgetConfig(
            name="payment-method-consumption",
            title="Total consumption by payment method",
            dimension="payment_type",
            dimension_label="Consumption",
            zero_fill_labels=True,
        ),
        WidgetConfig(
            name="payment-type-totals",
            title="Consumption by payment method (all users)",
            dimension="payment_type",
            dimension_label="Total by payment method",
            empty_selector="all",
            single_selector=True,
        ),
        WidgetConfig(
            name="user-money-consumption",
            title="Consumption by user",
            dimension="user",
            dimension_label="Total consumption per user",
            empty_selector="all",
            single_selector=True,
        ),
        WidgetConfig(
            name="product-consumption-total",
            title="Total product consumption",
            dimension="product",
            dimension_label="Product consumption",
            value_source="products",
            utc_offset_hours=local,
        ),
        WidgetConfig(
            name="user-product-consumption",
            title="Product consumption by user",
            dimension="user_product",
            dimension_label="Product consumption",
            value_source="products",
            utc_offset_hours=local,
        ),
        WidgetConfig(
            name="user-product",
            title="Product consumption per user",
            dimension="user_product",
            dimension_label="Product consumption",
            value_source="products",
            utc_offset_hours=local,
            empty_selector="all",
            single_selector=True,
        ),
        WidgetConfig(
            name="visits-by-hour",
            title="Visits by time of day",
            dimension="hour_class",
            dimension_label="Visits (%)",
            chart_type="doughnut",
            utc_offset_hours=local,
        ),
        WidgetConfig(
            name="visits-by-hour-user",
            title="Visits by time of day and user",
            dimension="user_hour_class",
            dimension_label="Visits (%)",
            utc_offset_hours=local,
            empty_selector="all",
            single_selector=True,
        ),
        WidgetConfig(
            name="products-consumed",
            title="Units consumed per product",
            dimension="product_quantity",
            dimension_label="Units consumed",
            value_source="products",
            utc_offset_hours=local,
            empty_selector="all",
            single_selector=True,
        ),
    ]


class ChartHandle(Protocol):
    def destroy(self) -> None:
        ...


class ChartRenderer(Protocol):
    def render(self, series: ChartSeries) -> ChartHandle:
        ...


@dataclass
class VegaChart:
    spec: Dict[str, Any]
    destroyed: bool = False

    def destroy(self) -> None:
        self.destroyed = True


class VegaRenderer:
    """Renders presented series into Vega-Lite specs via Altair."""

    def render(self, series: ChartSeries) -> VegaChart:
        return VegaChart(spec=to_vega_spec(build_chart(series)))


@dataclass
class Panel:
    filters: ChartFilters
    series: ChartSeries
    chart: Optional[ChartHandle] = None


class Widget:
    def __init__(
        self,
        config: WidgetConfig,
        store: Optional[DocumentStore] = None,
        *,
        collection: str = "DatosFidelizacion",
        renderer: Optional[ChartRenderer] = None,
        today: Optional[date] = None,
    ) -> None:
        self.config = config
        self.store = store
        self.collection = collection
        self.renderer: ChartRenderer = renderer or VegaRenderer()
        self.records: List[VisitRecord] = []
        self.mounted = False
        self.colors = ColorRegistry(HOUR_CLASS_COLORS if "hour_class" in config.dimension else None)
        self.active_bucket = config.buckets[0]
        self.selectors: Dict[str, str] = {
            b: ("" if config.empty_selector == "all" else default_selector(b, today)) for b in config.buckets
        }
        self.panels: Dict[str, Panel] = {}
        self._known_labels: List[str] = []
        self.lock = threading.RLock()

    @property
    def name(self) -> str:
        return self.config.name

    def panel_keys(self) -> List[str]:
        return [MAIN_PANEL] if self.config.single_selector else list(self.config.buckets)

    # ---------------- Lifecycle ----------------
    def mount(self) -> None:
        self.mounted = True
        self.refresh()

    def refresh(self) -> bool:
        """Re-fetch and replace the record list; keep the previous one on failure."""
        if self.store is None:
            self.redraw()
            return False
        try:
            documents = self.store.fetch_all(self.collection)
        except Exception:
            logger.exception("Widget %s: fetch from %s failed", self.name, self.collection)
            self.redraw()
            return False
        self.load(normalize(documents))
        return True

    def load(self, records: Sequence[VisitRecord]) -> None:
        with self.lock:
            self.records = list(records)
            self._known_labels = payment_types(self.records) if self.config.zero_fill_labels else []
            self.redraw()

    def unmount(self) -> None:
        with self.lock:
            for panel in self.panels.values():
                if panel.chart is not None:
                    panel.chart.destroy()
            self.panels.clear()
            self.records = []
            self.mounted = False

    # ---------------- Filtering ----------------
    def filters_for(self, key: str) -> ChartFilters:
        bucket = self.active_bucket if key == MAIN_PANEL else key
        return ChartFilters(
            bucket=bucket,
            selector=self.selectors.get(bucket, ""),
            utc_offset_hours=self.config.utc_offset_hours,
            empty_selector=self.config.empty_selector,
        )

    def panel_key(self, bucket: object) -> str:
        """Panel redrawn when ``bucket`` changes."""
        bucket = normalize_bucket(bucket, default="")
        if bucket not in self.config.buckets:
            raise ValueError(f"{self.name}: unsupported bucket {bucket!r}")
        return MAIN_PANEL if self.config.single_selector else bucket

    def set_filter(self, bucket: object, selector: object) -> ChartSeries:
        key = self.panel_key(bucket)
        filters = normalize_filters(
            {"bucket": bucket, "selector": selector},
            utc_offset_hours=self.config.utc_offset_hours,
            empty_selector=self.config.empty_selector,
        )
        with self.lock:
            self.selectors[filters.bucket] = filters.selector
            if self.config.single_selector:
                self.active_bucket = filters.bucket
            return self.update(key)

    # ---------------- Compute ----------------
    def compute(self, filters: ChartFilters) -> ChartSeries:
        c = self.config
        filtered = filter_records(self.records, filters)
        kwargs: Dict[str, Any] = {}
        if c.dimension == "payment_type":
            kwargs["known_types"] = self._known_labels or None
        elif c.dimension == "user":
            kwargs["source"] = c.value_source
        elif c.dimension in ("hour_class", "user_hour_class"):
            kwargs["utc_offset_hours"] = c.utc_offset_hours
        result = aggregate(filtered, c.dimension, **kwargs)
        if isinstance(result, GroupedResult):
            return present_grouped(result, c.dimension_label, colors=self.colors, title=c.title)
        return present(result, c.dimension_label, colors=self.colors, chart_type=c.chart_type, title=c.title)  # type: ignore[arg-type]

    def update(self, key: str) -> ChartSeries:
        # One replacement at a time per widget: the panel read here is the one destroyed below.
        with self.lock:
            filters = self.filters_for(key)
            series = self.compute(filters)
            previous = self.panels.get(key)
            chart = self.renderer.render(series)
            self.panels[key] = Panel(filters=filters, series=series, chart=chart)
            if previous is not None and previous.chart is not None:
                previous.chart.destroy()
            return series

    def redraw(self) -> None:
        with self.lock:
            for key in self.panel_keys():
                self.update(key)

    def payload(self, key: Optional[str] = None) -> Dict[str, Any]:
        keys = [key] if key else self.panel_keys()
        panels = {}
        with self.lock:
            for k in keys:
                panel = self.panels.get(k)
                if panel is None:
                    self.update(k)
                    panel = self.panels[k]
                panels[k] = {
                    "filters": asdict(panel.filters),
                    "series": panel.series.to_dict(),
                    "chart": getattr(panel.chart, "spec", None),
                }
            records = len(self.records)
        return {
            "widget": self.name,
            "title": self.config.title,
            "chart_type": self.config.chart_type,
            "records": records,
            "panels": panels,
        }


@dataclass
class Dashboard:
    """Every configured widget over one shared fetch per refresh."""

    store: Optional[DocumentStore]
    configs: List[WidgetConfig] = field(default_factory=list)
    collection: str = "DatosFidelizacion"
    renderer: Optional[ChartRenderer] = None
    today: Optional[date] = None
    widgets: Dict[str, Widget] = field(default_factory=dict, init=False)
    records: List[VisitRecord] = field(default_factory=list, init=False)
    lock: threading.RLock = field(default_factory=threading.RLock, init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        for config in self.configs:
            self.widgets[config.name] = Widget(
                config,
                self.store,
                collection=self.collection,
                renderer=self.renderer,
                today=self.today,
            )

    @classmethod
    def from_settings(cls, store: Optional[DocumentStore], settings: Settings, **kwargs: Any) -> "Dashboard":
        return cls(store=store, configs=default_widgets(settings), collection=settings.collection, **kwargs)

    def widget(self, name: str) -> Widget:
        try:
            return self.widgets[name]
        except KeyError:
            raise UnknownWidgetError(name) from None

    def mount(self) -> bool:
        for w in self.widgets.values():
            w.mounted = True
        return self.refresh()

    def refresh(self) -> bool:
        if self.store is None:
            return False
        try:
            documents = self.store.fetch_all(self.collection)
        except Exception:
            logger.exception("Dashboard: fetch from %s failed", self.collection)
            return False
        records = normalize(documents)
        with self.lock:
            self.records = records
            logger.info("Dashboard: loaded %d visit records", len(records))
            for w in self.widgets.values():
                w.load(records)
        return True

    def unmount(self) -> None:
        with self.lock:
            for w in self.widgets.values():
                w.unmount()
            self.records = []
