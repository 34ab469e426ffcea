from __future__ import annotations

from typing import Any, List

import pandas as pd

from core.records import as_int, to_timestamp
from core.store import DocumentStore

POINTS_COLUMNS = ["id", "cliente", "fecha", "puntos"]


def _fecha(value: Any) -> str:
    ts = to_timestamp(value)
    if ts is not None:
        return ts.strftime("%Y-%m-%d")
    s = str(value).strip() if value is not None else ""
    return s or "N/A"


def points_frame(documents: List[Any]) -> pd.DataFrame:
    rows = []
    for doc in documents:
        data = doc.to_dict() if hasattr(doc, "to_dict") else dict(doc)
        rows.append(
            {
                "id": str(getattr(doc, "id", data.get("id", ""))),
                "cliente": str(data.get("cliente") or "N/A"),
                "fecha": _fecha(data.get("fecha")),
                "puntos": as_int(data.get("puntos")),
            }
        )
    return pd.DataFrame(rows, columns=POINTS_COLUMNS)


def load_points_table(store: DocumentStore, collection: str) -> pd.DataFrame:
    """Loyalty points per customer document, one row per document."""
    return points_frame(store.fetch_all(collection))
