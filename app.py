import logging
from contextlib import contextmanager
from datetime import date
from pathlib import Path
from typing import Optional

import altair as alt
import pandas as pd
import streamlit as st

from core.charts import PLACEHOLDER_LABEL, build_chart
from core.points import load_points_table
from core.settings import get_settings
from core.store import FirestoreStore, InMemoryStore
from core.widgets import MAIN_PANEL, Dashboard, Widget

alt.data_transformers.disable_max_rows()

settings = get_settings()
logging.basicConfig(level=settings.log_level)
logger = logging.getLogger(__name__)

BUCKET_LABELS = {"day": "Day", "month": "Month", "year": "Year"}


# ---------- UI / layout helpers ----------
def inject_base_styles():
    if st.session_state.get("_base_css_injected"):
        return
    st.markdown(
        """
        <style>
        .card {border: 1px solid #e5e7eb;border-radius: 12px;padding: 16px;background: #ffffff;
               box-shadow: 0 1px 2px rgba(0,0,0,0.04); margin-bottom: 12px;}
        .card-title {font-weight: 600;font-size: 1.0rem;color: #111827;margin-bottom: 8px;}
        .totals p {margin: 0;text-align: center;}
        </style>
        """,
        unsafe_allow_html=True,
    )
    st.session_state["_base_css_injected"] = True


@contextmanager
def card(title: str):
    container = st.container()
    container.markdown(f"<div class='card'><div class='card-title'>{title}</div>", unsafe_allow_html=True)
    body = container.container()
    with body:
        yield body
    container.markdown("</div>", unsafe_allow_html=True)


def make_store():
    if settings.fixture_path:
        return InMemoryStore.from_json(Path(settings.fixture_path))
    return FirestoreStore(project=settings.firestore_project)


def get_dashboard() -> Dashboard:
    dashboard: Optional[Dashboard] = st.session_state.get("dashboard")
    if dashboard is None:
        dashboard = Dashboard.from_settings(make_store(), settings)
        if not dashboard.mount():
            st.warning("Could not load data from the document store. Showing empty charts.")
        st.session_state["dashboard"] = dashboard
    return dashboard


def selector_input(widget: Widget, bucket: str, key: str) -> str:
    current = widget.selectors.get(bucket, "")
    if bucket == "day":
        default = date.fromisoformat(current) if current else None
        value = st.date_input("Day", value=default, key=key)
        return value.isoformat() if value else ""
    if bucket == "month":
        return st.text_input("Month (YYYY-MM)", value=current, key=key)
    return st.text_input("Year", value=current, key=key)


def render_totals(widget: Widget, panel_key: str):
    series = widget.panels[panel_key].series
    if series.labels == [PLACEHOLDER_LABEL]:
        st.info("No data for the selected range.")
        return
    suffix = "%" if "hour_class" in widget.config.dimension else ""
    lines = [f"<p>{k}: <strong>{v:,.2f}{suffix}</strong></p>" for k, v in series.totals.items()]
    if not suffix:
        lines.append(f"<p>Total: <strong>{series.total:,.2f}</strong></p>")
    st.markdown(f"<div class='totals'>{''.join(lines)}</div>", unsafe_allow_html=True)


def render_panel(widget: Widget, panel_key: str):
    if panel_key == MAIN_PANEL:
        bucket = st.selectbox(
            "Filter by",
            list(widget.config.buckets),
            index=list(widget.config.buckets).index(widget.active_bucket),
            format_func=lambda b: BUCKET_LABELS[b],
            key=f"{widget.name}-bucket",
        )
    else:
        bucket = panel_key
    selector = selector_input(widget, bucket, key=f"{widget.name}-{panel_key}-{bucket}")
    if (
        panel_key not in widget.panels
        or selector != widget.selectors.get(bucket, "")
        or (panel_key == MAIN_PANEL and bucket != widget.active_bucket)
    ):
        widget.set_filter(bucket, selector)
    st.altair_chart(build_chart(widget.panels[panel_key].series), use_container_width=True)
    render_totals(widget, panel_key)


def render_widget_page(widget: Widget):
    st.subheader(widget.config.title)
    keys = widget.panel_keys()
    cols = st.columns(len(keys))
    for col, panel_key in zip(cols, keys):
        with col:
            title = "Filtered" if panel_key == MAIN_PANEL else f"By {BUCKET_LABELS[panel_key].lower()}"
            with card(title):
                render_panel(widget, panel_key)


def render_points_page(dashboard: Dashboard):
    st.subheader("Loyalty points")
    try:
        df = load_points_table(dashboard.store, settings.points_collection)
    except Exception:
        logger.exception("points table failed")
        df = pd.DataFrame()
    if df.empty:
        st.info("No loyalty points found.")
        return
    st.dataframe(df, hide_index=True)


# ---------- UI setup ----------
st.set_page_config(page_title="Loyalty Dashboard", layout="wide")
inject_base_styles()
st.title("Loyalty Dashboard")
st.caption("Consumption and visit patterns from loyalty-program transactions.")

dashboard = get_dashboard()

with st.sidebar:
    st.markdown("### Navigate")
    names = list(dashboard.widgets)
    page = st.radio(
        "Navigate",
        names + ["points"],
        format_func=lambda n: dashboard.widgets[n].config.title if n in dashboard.widgets else "Loyalty points",
    )
    st.markdown("---")
    if st.button("Refresh data"):
        if not dashboard.refresh():
            st.warning("Refresh failed; showing the previously loaded data.")
    st.caption(f"{len(dashboard.records)} visits loaded")

if page == "points":
    render_points_page(dashboard)
else:
    render_widget_page(dashboard.widget(page))
