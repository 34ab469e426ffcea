"""Group-and-sum of filtered visit records.

Every result keeps its labels in first-seen order while scanning the
filtered records; nothing is sorted by value or name.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal
from typing import Callable, Dict, Iterable, List, Literal, Optional, Sequence

import pandas as pd

from core.filters import local_time
from core.records import VisitRecord, payments_frame, products_frame

ValueSource = Literal["payments", "products"]

MORNING = "morning"
AFTERNOON = "afternoon"
NIGHT = "night"
HOUR_CLASSES = (MORNING, AFTERNOON, NIGHT)


@dataclass
class AggregateResult:
    values: Dict[str, float] = field(default_factory=dict)
    labels: List[str] = field(default_factory=list)
    total: float = 0.0

    @property
    def is_empty(self) -> bool:
        return not self.labels

    def series(self) -> List[float]:
        return [self.values[label] for label in self.labels]


@dataclass
class GroupedResult:
    """Several series aligned to one label axis."""

    labels: List[str] = field(default_factory=list)
    series: Dict[str, List[float]] = field(default_factory=dict)
    totals: Dict[str, float] = field(default_factory=dict)

    @property
    def total(self) -> float:
        return float(sum(self.totals.values()))

    @property
    def is_empty(self) -> bool:
        return not self.labels or not self.series


def round_half_up(value: float, ndigits: int = 2) -> float:
    q = Decimal(10) ** -ndigits
    return float(Decimal(str(value)).quantize(q, rounding=ROUND_HALF_UP))


def hour_class(hour: int) -> str:
    if 6 <= hour < 12:
        return MORNING
    if 12 <= hour < 17:
        return AFTERNOON
    return NIGHT


def first_seen(values: Iterable[object]) -> List[str]:
    return list(dict.fromkeys(str(v) for v in values))


def _sum_by(df: pd.DataFrame, key: str, value: str, seed: Optional[Sequence[str]] = None) -> AggregateResult:
    labels: List[str] = []
    values: Dict[str, float] = {}
    for label in seed or []:
        if label not in values:
            labels.append(label)
            values[label] = 0.0
    if not df.empty:
        amounts = pd.to_numeric(df[value], errors="coerce").fillna(0.0)
        grouped = amounts.groupby(df[key].astype(str), sort=False).sum()
        for label, amount in grouped.items():
            if label not in values:
                labels.append(label)
                values[label] = 0.0
            values[label] += float(amount)
    return AggregateResult(values=values, labels=labels, total=float(sum(values.values())))


def by_payment_type(records: Sequence[VisitRecord], known_types: Optional[Sequence[str]] = None) -> AggregateResult:
    """Sum payment totals per method type.

    ``known_types`` pre-seeds the label axis with zeros so a chart keeps the
    same categories between redraws even when a type has no payments in the
    selected range.
    """
    return _sum_by(payments_frame(records), "method_type", "total", seed=known_types)


def by_user(records: Sequence[VisitRecord], source: ValueSource = "payments") -> AggregateResult:
    users = first_seen(r.user_id for r in records)
    if source == "products":
        return _sum_by(products_frame(records), "user_id", "subtotal", seed=users)
    return _sum_by(payments_frame(records), "user_id", "total", seed=users)


def by_product(records: Sequence[VisitRecord]) -> AggregateResult:
    return _sum_by(products_frame(records), "name", "subtotal")


def product_quantities(records: Sequence[VisitRecord]) -> AggregateResult:
    """Units consumed per product name."""
    return _sum_by(products_frame(records), "name", "quantity")


def _hour_percentages(counts: Dict[str, int]) -> Dict[str, float]:
    n = sum(counts.values())
    if not n:
        return {c: 0.0 for c in HOUR_CLASSES}
    return {c: round_half_up(counts[c] / n * 100, 2) for c in HOUR_CLASSES}


def by_hour_class(records: Sequence[VisitRecord], utc_offset_hours: int = 0) -> AggregateResult:
    """Share of visits (percent, 2 decimals) per time-of-day class."""
    counts = {c: 0 for c in HOUR_CLASSES}
    for record in records:
        counts[hour_class(local_time(record.start_time, utc_offset_hours).hour)] += 1
    values = _hour_percentages(counts)
    return AggregateResult(values=values, labels=list(HOUR_CLASSES), total=float(sum(values.values())))


def by_user_hour_class(records: Sequence[VisitRecord], utc_offset_hours: int = 0) -> GroupedResult:
    """Per-user share of visits per time-of-day class; one series per class."""
    counts: Dict[str, Dict[str, int]] = {}
    for record in records:
        per_user = counts.setdefault(record.user_id, {c: 0 for c in HOUR_CLASSES})
        per_user[hour_class(local_time(record.start_time, utc_offset_hours).hour)] += 1
    users = list(counts)
    shares = {user: _hour_percentages(counts[user]) for user in users}
    series = {c: [shares[user][c] for user in users] for c in HOUR_CLASSES}
    totals = {c: float(sum(values)) for c, values in series.items()}
    return GroupedResult(labels=users, series=series, totals=totals)


def by_user_product(records: Sequence[VisitRecord]) -> GroupedResult:
    """Product spend per user: labels are product names, one series per user.

    Every series has a value for every label; products a user never bought
    are zero.
    """
    users = first_seen(r.user_id for r in records)
    df = products_frame(records)
    if df.empty:
        return GroupedResult(labels=[], series={u: [] for u in users}, totals={u: 0.0 for u in users})

    df["user_id"] = df["user_id"].astype(str)
    df["name"] = df["name"].astype(str)
    df["subtotal"] = pd.to_numeric(df["subtotal"], errors="coerce").fillna(0.0)
    labels = [str(x) for x in pd.unique(df["name"])]
    pivot = (
        df.groupby(["user_id", "name"], sort=False)["subtotal"]
        .sum()
        .unstack(fill_value=0.0)
        .reindex(index=users, columns=labels, fill_value=0.0)
    )
    series = {user: [float(v) for v in pivot.loc[user].tolist()] for user in users}
    totals = {user: float(sum(values)) for user, values in series.items()}
    return GroupedResult(labels=labels, series=series, totals=totals)


DIMENSIONS: Dict[str, Callable[..., object]] = {
    "payment_type": by_payment_type,
    "user": by_user,
    "product": by_product,
    "product_quantity": product_quantities,
    "hour_class": by_hour_class,
    "user_hour_class": by_user_hour_class,
    "user_product": by_user_product,
}


def aggregate(records: Sequence[VisitRecord], dimension: str, **kwargs) -> object:
    try:
        fn = DIMENSIONS[dimension]
    except KeyError:
        raise ValueError(f"unknown dimension: {dimension!r}") from None
    return fn(records, **kwargs)
