"""Core (UI-agnostic) loyalty dashboard logic.

This package contains:
- record normalization (store documents -> typed visit records)
- time-range filtering (day / month / year selectors)
- aggregation by payment type, user, product and time of day
- presentation (chart-ready series, stable colours, Altair -> Vega-Lite)
- widget lifecycle over a document store
"""
