from __future__ import annotations

import logging
import math
from contextlib import asynccontextmanager
from typing import Optional

import numpy as np
import pandas as pd
from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from api.schemas import ChartFiltersModel, MetaWidgetsResponse, RefreshResponse, WidgetMetaModel
from core.points import load_points_table
from core.settings import Settings, get_settings
from core.store import DocumentStore, FirestoreStore
from core.widgets import Dashboard, UnknownWidgetError


logger = logging.getLogger(__name__)


def _json(data: object, status_code: int = 200) -> JSONResponse:
    """Return JSON with safe encoding for pandas/numpy objects."""

    def _safe_float(value: object) -> float | None:
        try:
            out = float(value)  # type: ignore[arg-type]
        except Exception:
            return None
        if math.isnan(out) or math.isinf(out):
            return None
        return out

    return JSONResponse(
        status_code=status_code,
        content=jsonable_encoder(
            data,
            custom_encoder={
                type(pd.NA): lambda _: None,
                np.integer: int,
                float: _safe_float,
                np.floating: _safe_float,
                np.bool_: bool,
                np.ndarray: lambda arr: arr.tolist(),
                pd.Timestamp: lambda ts: ts.isoformat(),
            },
        ),
    )


def _error(exc: Exception, status_code: int = 500) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": str(exc), "type": type(exc).__name__})


def create_app(store: Optional[DocumentStore] = None, settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        app.state.store = store if store is not None else FirestoreStore(project=settings.firestore_project)
        app.state.dashboard = Dashboard.from_settings(app.state.store, settings)
        app.state.dashboard.mount()
        yield
        app.state.dashboard.unmount()

    app = FastAPI(title="Loyalty Dashboard API", version="0.1.0", lifespan=lifespan)
    app.state.settings = settings

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["http://localhost:3000", "http://127.0.0.1:3000"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    def _dashboard(request: Request) -> Dashboard:
        return request.app.state.dashboard

    @app.get("/meta/widgets")
    def meta_widgets(request: Request):
        dashboard = _dashboard(request)
        widgets = [
            WidgetMetaModel(
                name=w.config.name,
                title=w.config.title,
                chart_type=w.config.chart_type,
                buckets=list(w.config.buckets),
                single_selector=w.config.single_selector,
                empty_selector=w.config.empty_selector,
                utc_offset_hours=w.config.utc_offset_hours,
            )
            for w in dashboard.widgets.values()
        ]
        return _json(MetaWidgetsResponse(widgets=widgets))

    @app.get("/widgets/{name}")
    def widget_payload(name: str, request: Request):
        try:
            return _json(_dashboard(request).widget(name).payload())
        except UnknownWidgetError:
            return _json({"error": f"unknown widget: {name}", "type": "UnknownWidgetError"}, status_code=404)
        except Exception as exc:
            logger.exception("widget_payload failed")
            return _error(exc)

    @app.post("/widgets/{name}")
    def widget_filter(name: str, filters: ChartFiltersModel, request: Request):
        try:
            widget = _dashboard(request).widget(name)
        except UnknownWidgetError:
            return _json({"error": f"unknown widget: {name}", "type": "UnknownWidgetError"}, status_code=404)
        try:
            raw = filters.model_dump()
            key = widget.panel_key(raw["bucket"])
            with widget.lock:
                widget.set_filter(raw["bucket"], raw["selector"])
                return _json(widget.payload(key))
        except ValueError as exc:
            return _error(exc, status_code=422)
        except Exception as exc:
            logger.exception("widget_filter failed")
            return _error(exc)

    @app.post("/refresh")
    def refresh(request: Request):
        dashboard = _dashboard(request)
        try:
            ok = dashboard.refresh()
            return _json(
                RefreshResponse(
                    ok=ok,
                    records=len(dashboard.records),
                    widgets={name: len(w.records) for name, w in dashboard.widgets.items()},
                )
            )
        except Exception as exc:
            logger.exception("refresh failed")
            return _error(exc)

    @app.get("/points")
    def points(request: Request):
        try:
            df = load_points_table(request.app.state.store, settings.points_collection)
            return _json({"rows": df.to_dict(orient="records")})
        except Exception as exc:
            logger.exception("points failed")
            return _json({"rows": [], "error": str(exc), "type": type(exc).__name__})

    return app


app = create_app()
