from __future__ import annotations

from typing import Dict, List, Optional, Union

from pydantic import BaseModel, Field


class ChartFiltersModel(BaseModel):
    bucket: str = "day"
    selector: Optional[Union[str, int]] = None


class WidgetMetaModel(BaseModel):
    name: str
    title: str
    chart_type: str
    buckets: List[str] = Field(default_factory=list)
    single_selector: bool = False
    empty_selector: str = "none"
    utc_offset_hours: int = 0


class MetaWidgetsResponse(BaseModel):
    widgets: List[WidgetMetaModel]


class RefreshResponse(BaseModel):
    ok: bool
    records: int
    widgets: Dict[str, int] = Field(default_factory=dict)
