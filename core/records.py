"""Normalization of raw loyalty documents into typed visit records.

Raw documents nest two levels deep: ``{owner_key: {entry_key: entry}}`` where
each entry may carry ``fecha_inicio`` (store timestamp), ``pago`` (payment
sub-entries) and ``producto`` (product sub-entries).
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Iterable, List, Mapping, Optional

import pandas as pd


logger = logging.getLogger(__name__)

UNKNOWN = "unknown"

PAYMENT_COLUMNS = ["user_id", "start_time", "method_type", "total", "tip"]
PRODUCT_COLUMNS = ["user_id", "start_time", "product_id", "name", "quantity", "unit_price", "subtotal"]


@dataclass(frozen=True)
class PaymentEntry:
    tip: float = 0.0
    method_type: str = UNKNOWN
    total: float = 0.0


@dataclass(frozen=True)
class ProductEntry:
    quantity: int = 0
    product_id: str = UNKNOWN
    unit_price: float = 0.0
    name: str = UNKNOWN

    @property
    def subtotal(self) -> float:
        return self.quantity * self.unit_price


@dataclass(frozen=True)
class VisitRecord:
    user_id: str
    start_time: datetime
    payments: List[PaymentEntry] = field(default_factory=list)
    products: List[ProductEntry] = field(default_factory=list)


def as_float(value: object, default: float = 0.0) -> float:
    """Parse a loosely-typed amount; NaN, inf and garbage become ``default``."""
    if value is None or isinstance(value, bool):
        return default
    try:
        out = float(value)  # type: ignore[arg-type]
    except Exception:
        return default
    if math.isnan(out) or math.isinf(out):
        return default
    return out


def as_int(value: object, default: int = 0) -> int:
    out = as_float(value, float(default))
    return int(out)


def as_label(value: object, default: str = UNKNOWN) -> str:
    if value is None:
        return default
    s = str(value).strip()
    return s or default


def to_timestamp(value: object) -> Optional[datetime]:
    """Convert a store-native timestamp into an aware UTC ``datetime``.

    Accepts ``datetime`` (naive values are taken as UTC), ``pandas.Timestamp``,
    objects exposing ``to_datetime()``/``ToDatetime()`` and ISO-8601 strings.
    Returns ``None`` for anything else.
    """
    if value is None or value is pd.NaT:
        return None
    if isinstance(value, pd.Timestamp):
        value = value.to_pydatetime()
    elif isinstance(value, str):
        text = value.strip()
        if text.endswith(("Z", "z")):
            text = text[:-1] + "+00:00"
        try:
            value = datetime.fromisoformat(text)
        except ValueError:
            return None
    elif not isinstance(value, datetime):
        converter = getattr(value, "to_datetime", None) or getattr(value, "ToDatetime", None)
        if not callable(converter):
            return None
        try:
            value = converter()
        except Exception:
            return None
    if not isinstance(value, datetime) or value is pd.NaT:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _as_mapping(obj: object) -> Optional[Mapping[str, Any]]:
    if isinstance(obj, Mapping):
        return obj
    to_dict = getattr(obj, "to_dict", None)
    if callable(to_dict):
        data = to_dict()
        if isinstance(data, Mapping):
            return data
    return None


def _sub_entries(entry: Mapping[str, Any], key: str) -> List[Mapping[str, Any]]:
    raw = entry.get(key)
    if isinstance(raw, Mapping):
        values = raw.values()
    elif isinstance(raw, (list, tuple)):
        values = raw
    else:
        return []
    return [v if isinstance(v, Mapping) else {} for v in values]


def parse_payment(raw: Mapping[str, Any]) -> PaymentEntry:
    return PaymentEntry(
        tip=max(0.0, as_float(raw.get("propina"))),
        method_type=as_label(raw.get("tipo")),
        total=max(0.0, as_float(raw.get("total"))),
    )


def parse_product(raw: Mapping[str, Any]) -> ProductEntry:
    return ProductEntry(
        quantity=as_int(raw.get("cantidad")),
        product_id=as_label(raw.get("idproducto")),
        unit_price=as_float(raw.get("precio")),
        name=as_label(raw.get("producto")),
    )


def normalize(documents: Iterable[object]) -> List[VisitRecord]:
    """Flatten raw documents into visit records.

    Entries without a convertible ``fecha_inicio`` are skipped. The source
    documents are only read.
    """
    records: List[VisitRecord] = []
    skipped = 0
    for doc in documents:
        data = _as_mapping(doc)
        if data is None:
            continue
        for owner_key, owner_entries in data.items():
            if not isinstance(owner_entries, Mapping):
                continue
            for entry in owner_entries.values():
                if not isinstance(entry, Mapping):
                    continue
                start_time = to_timestamp(entry.get("fecha_inicio"))
                if start_time is None:
                    skipped += 1
                    continue
                records.append(
                    VisitRecord(
                        user_id=str(owner_key),
                        start_time=start_time,
                        payments=[parse_payment(p) for p in _sub_entries(entry, "pago")],
                        products=[parse_product(p) for p in _sub_entries(entry, "producto")],
                    )
                )
    if skipped:
        logger.debug("normalize: skipped %d entries without a valid fecha_inicio", skipped)
    return records


def payment_types(records: Iterable[VisitRecord]) -> List[str]:
    """Every payment method seen, in first-seen order."""
    seen: dict = {}
    for record in records:
        for payment in record.payments:
            seen.setdefault(payment.method_type, None)
    return list(seen)


# ---------------- Frames ----------------
def payments_frame(records: Iterable[VisitRecord]) -> pd.DataFrame:
    rows = [
        (r.user_id, r.start_time, p.method_type, p.total, p.tip)
        for r in records
        for p in r.payments
    ]
    df = pd.DataFrame.from_records(rows, columns=PAYMENT_COLUMNS)
    return df.astype({"total": float, "tip": float})


def products_frame(records: Iterable[VisitRecord]) -> pd.DataFrame:
    rows = [
        (r.user_id, r.start_time, p.product_id, p.name, p.quantity, p.unit_price, p.subtotal)
        for r in records
        for p in r.products
    ]
    df = pd.DataFrame.from_records(rows, columns=PRODUCT_COLUMNS)
    return df.astype({"quantity": int, "unit_price": float, "subtotal": float})
