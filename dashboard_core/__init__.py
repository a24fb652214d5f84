"""Dashboard builder core (UI-agnostic).

This package contains:
- the record / dataset / filter data model (pydantic)
- hierarchy reconstruction for exported dashboard data (tree)
- KPI aggregation with double-counting avoidance (kpi)
- the data file exporter and its CLI (export_data)
"""
