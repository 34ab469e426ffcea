from __future__ import annotations

import hashlib
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Literal, Mapping, Optional

import altair as alt
import pandas as pd

from core.aggregations import AFTERNOON, MORNING, NIGHT, AggregateResult, GroupedResult

alt.data_transformers.disable_max_rows()

ChartType = Literal["bar", "doughnut"]

PLACEHOLDER_LABEL = "no data"
HOUR_CLASS_COLORS = {MORNING: "#FF6384", AFTERNOON: "#36A2EB", NIGHT: "#FFCE56"}


def color_for_key(key: str) -> str:
    """Deterministic ``#rrggbb`` colour derived from the key's characters."""
    digest = hashlib.md5(str(key).encode("utf-8")).digest()
    return "#{:02x}{:02x}{:02x}".format(digest[0], digest[1], digest[2])


class ColorRegistry:
    """Colours per group key, fixed for the lifetime of the registry."""

    def __init__(self, fixed: Optional[Mapping[str, str]] = None) -> None:
        self._colors: Dict[str, str] = dict(fixed or {})

    def color_of(self, key: str) -> str:
        key = str(key)
        if key not in self._colors:
            self._colors[key] = color_for_key(key)
        return self._colors[key]


@dataclass
class Dataset:
    label: str
    values: List[float]
    colors: List[str]


@dataclass
class ChartSeries:
    chart_type: str
    title: str
    labels: List[str]
    datasets: List[Dataset]
    colors: Dict[str, str] = field(default_factory=dict)
    total: float = 0.0
    totals: Dict[str, float] = field(default_factory=dict)
    stacked: bool = False

    @property
    def values(self) -> List[float]:
        return self.datasets[0].values if self.datasets else []

    def color_of(self, key: str) -> Optional[str]:
        return self.colors.get(key)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def present(
    result: AggregateResult,
    dimension_label: str,
    *,
    colors: Optional[ColorRegistry] = None,
    chart_type: ChartType = "bar",
    title: str = "",
) -> ChartSeries:
    colors = colors or ColorRegistry()
    if result.is_empty:
        labels, values = [PLACEHOLDER_LABEL], [0.0]
    else:
        labels, values = list(result.labels), result.series()
    color_map = {label: colors.color_of(label) for label in labels}
    dataset = Dataset(label=dimension_label, values=values, colors=[color_map[l] for l in labels])
    totals = {} if result.is_empty else dict(zip(labels, values))
    return ChartSeries(
        chart_type=chart_type,
        title=title or dimension_label,
        labels=labels,
        datasets=[dataset],
        colors=color_map,
        total=float(sum(values)),
        totals=totals,
    )


def present_grouped(
    grouped: GroupedResult,
    dimension_label: str,
    *,
    colors: Optional[ColorRegistry] = None,
    stacked: bool = True,
    title: str = "",
) -> ChartSeries:
    colors = colors or ColorRegistry()
    if grouped.is_empty:
        color = colors.color_of(PLACEHOLDER_LABEL)
        return ChartSeries(
            chart_type="bar",
            title=title or dimension_label,
            labels=[PLACEHOLDER_LABEL],
            datasets=[Dataset(label=dimension_label, values=[0.0], colors=[color])],
            colors={PLACEHOLDER_LABEL: color},
            total=0.0,
            totals={},
            stacked=stacked,
        )
    datasets = []
    color_map: Dict[str, str] = {}
    for key, values in grouped.series.items():
        color_map[key] = colors.color_of(key)
        datasets.append(Dataset(label=key, values=list(values), colors=[color_map[key]] * len(values)))
    return ChartSeries(
        chart_type="bar",
        title=title or dimension_label,
        labels=list(grouped.labels),
        datasets=datasets,
        colors=color_map,
        total=grouped.total,
        totals=dict(grouped.totals),
        stacked=stacked,
    )


def series_frame(series: ChartSeries) -> pd.DataFrame:
    rows = [
        {"label": label, "series": ds.label, "value": value, "color": color}
        for ds in series.datasets
        for label, value, color in zip(series.labels, ds.values, ds.colors)
    ]
    return pd.DataFrame(rows, columns=["label", "series", "value", "color"])


def build_chart(series: ChartSeries) -> alt.Chart:
    """Altair chart for a presented series (bar, stacked bar or doughnut)."""
    df = series_frame(series)
    tooltip = [alt.Tooltip("label:N", title="Label"), alt.Tooltip("series:N", title="Series"), alt.Tooltip("value:Q", format=",.2f")]

    if series.chart_type == "doughnut":
        scale = alt.Scale(domain=series.labels, range=[series.colors[l] for l in series.labels])
        return (
            alt.Chart(df)
            .mark_arc(innerRadius=60)
            .encode(
                theta=alt.Theta("value:Q", stack=True),
                color=alt.Color("label:N", scale=scale, sort=series.labels, title=series.title),
                tooltip=tooltip,
            )
            .properties(title=series.title)
        )

    if len(series.datasets) > 1:
        keys = [ds.label for ds in series.datasets]
        color = alt.Color("series:N", scale=alt.Scale(domain=keys, range=[series.colors[k] for k in keys]), sort=keys)
    else:
        color = alt.Color(
            "label:N",
            scale=alt.Scale(domain=series.labels, range=[series.colors[l] for l in series.labels]),
            legend=None,
        )
    return (
        alt.Chart(df)
        .mark_bar()
        .encode(
            x=alt.X("label:N", sort=series.labels, title=None),
            y=alt.Y("value:Q", stack="zero" if series.stacked else None, title=series.title),
            color=color,
            tooltip=tooltip,
        )
        .properties(title=series.title)
    )


def to_vega_spec(chart: alt.Chart) -> Dict[str, Any]:
    """Convert an Altair chart into a Vega-Lite spec dict (JSON-serializable)."""
    return chart.to_dict()
