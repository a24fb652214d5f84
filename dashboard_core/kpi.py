"""
dashboard_core.kpi — KPI aggregation over a de-duplicated record selection.

Pure-computation module. Zero I/O. Zero global state.
Deterministic for identical inputs: every "first" below means first by
input order.

Selection policy (double-counting avoidance):

    1. Pick value or volume records. Empty → None.
    2. Filter by selected geographies (empty = all) and, except in
       geography mode, by the target segment type.
    3. Geography mode: per geography, keep only the first segment type
       seen; within it prefer leaf records, else level-1 roll-ups,
       else the lowest roll-up level present.
    4. Other modes: prefer leaf records, else level-1 roll-ups, else one
       record per (geography, segment type) with the lowest level.
    5. Nothing selected but geographies were selected → retry for the
       target segment type across all geographies. Still nothing → None.

Metrics:
    start/end year = min/max year key of the first selected record
    cagr           = ((end / start) ** (1 / years) - 1) * 100
    growth         = end - start, (end - start) / start * 100

Values are already in the dataset's declared unit. No conversion.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Sequence

from dashboard_core.constants import (
    ALL_GEOGRAPHIES_LABEL,
    DATA_TYPE_LABELS,
    TOP_AGGREGATION_LEVEL,
    UNKNOWN_LEVEL_RANK,
    VIEW_MODE_GEOGRAPHY,
)
from dashboard_core.diagnostics import (
    KPI_FALLBACK_ALL_GEOGRAPHIES,
    KPI_NO_DATA,
    Diagnostics,
)
from dashboard_core.models import Dataset, KpiFilters, KpiSummary, SegmentRecord
from dashboard_core.timeseries import available_years, sum_year

logger = logging.getLogger("dashboard.kpi")


# ---------------------------------------------------------------------------
# Record selection
# ---------------------------------------------------------------------------

def level_rank(record: SegmentRecord) -> int:
    """Sort rank of a record's aggregation level. Unknown ranks last."""
    if record.aggregation_level:
        return record.aggregation_level
    return UNKNOWN_LEVEL_RANK


def filter_records(
    records: Sequence[SegmentRecord],
    geographies: Sequence[str],
    segment_type: str,
    geography_mode: bool,
) -> list[SegmentRecord]:
    """Step 2: geography filter, plus segment-type filter outside geography mode."""
    wanted = set(geographies)
    out: list[SegmentRecord] = []
    for record in records:
        if wanted and record.geography not in wanted:
            continue
        if not geography_mode and record.segment_type != segment_type:
            continue
        out.append(record)
    return out


def _leaf_or_top_level(records: Sequence[SegmentRecord]) -> list[SegmentRecord]:
    leaves = [r for r in records if not r.is_aggregated]
    if leaves:
        return leaves
    return [r for r in records if r.aggregation_level == TOP_AGGREGATION_LEVEL]


def select_geography_mode(records: Sequence[SegmentRecord]) -> list[SegmentRecord]:
    """Step 3: one segment type per geography, then leaf / level preference.

    The segment type used for a geography is the first one encountered in
    input order. There is no semantic ranking between segment types.
    """
    by_geography: dict[str, dict[str, list[SegmentRecord]]] = {}
    for record in records:
        by_type = by_geography.setdefault(record.geography, {})
        by_type.setdefault(record.segment_type, []).append(record)

    selected: list[SegmentRecord] = []
    for by_type in by_geography.values():
        first_type_records = next(iter(by_type.values()))
        chosen = _leaf_or_top_level(first_type_records)
        if not chosen:
            min_rank = min(level_rank(r) for r in first_type_records)
            chosen = [r for r in first_type_records if level_rank(r) == min_rank]
        selected.extend(chosen)
    return selected


def select_standard(records: Sequence[SegmentRecord]) -> list[SegmentRecord]:
    """Step 4: leaf records, else level-1 roll-ups, else lowest level per pair."""
    chosen = _leaf_or_top_level(records)
    if chosen:
        return chosen

    best: dict[tuple[str, str], SegmentRecord] = {}
    for record in records:
        key = (record.geography, record.segment_type)
        existing = best.get(key)
        if existing is None or level_rank(record) < level_rank(existing):
            best[key] = record
    return list(best.values())


def select_records(
    records: Sequence[SegmentRecord],
    geographies: Sequence[str],
    segment_type: str,
    geography_mode: bool,
) -> list[SegmentRecord]:
    """Steps 2-4 for one geography selection."""
    filtered = filter_records(records, geographies, segment_type, geography_mode)
    if not filtered:
        return []
    if geography_mode:
        return select_geography_mode(filtered)
    return select_standard(filtered)


# ---------------------------------------------------------------------------
# Metrics
# ---------------------------------------------------------------------------

def compute_cagr(start_value: float, end_value: float, years: int) -> float:
    """Compound annual growth rate in percent. 0 when undefined."""
    if start_value > 0 and years > 0:
        return ((end_value / start_value) ** (1 / years) - 1) * 100
    return 0.0


def growth_percentage(start_value: float, end_value: float) -> float:
    if start_value == 0:
        return 0.0
    return (end_value - start_value) / start_value * 100


def geography_label(geographies: Sequence[str]) -> str:
    """Human-readable label for the geographies actually aggregated."""
    if not geographies:
        return ALL_GEOGRAPHIES_LABEL
    if len(geographies) == 1:
        return geographies[0]
    shown = ", ".join(geographies[:2])
    more = "..." if len(geographies) > 2 else ""
    return f"{len(geographies)} Geographies ({shown}{more})"


def segment_type_label(selected: Sequence[SegmentRecord], target: str) -> str:
    """Segment types actually aggregated, first-seen order.

    Differs from ``target`` only in geography mode, where each geography
    may contribute a different segment type.
    """
    used: dict[str, None] = {}
    for record in selected:
        used.setdefault(record.segment_type, None)
    if not used:
        return target
    return ", ".join(used)


def resolve_segment_type(dataset: Dataset, filters: KpiFilters) -> str | None:
    if filters.segment_type:
        return filters.segment_type
    segment_types = dataset.segment_types()
    return segment_types[0] if segment_types else None


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

def compute_kpis(
    dataset: Dataset,
    filters: KpiFilters,
    diagnostics: Diagnostics | None = None,
) -> KpiSummary | None:
    """Compute roll-up KPIs for the current filter selection.

    Returns:
        KpiSummary, or None when no record can be aggregated. None is
        "no data", never a zero-filled summary.

    Raises:
        TypeError: If ``dataset`` or ``filters`` is not the expected model.
    """
    if not isinstance(dataset, Dataset):
        raise TypeError(f"dataset must be a Dataset, got {type(dataset).__name__}")
    if not isinstance(filters, KpiFilters):
        raise TypeError(f"filters must be KpiFilters, got {type(filters).__name__}")

    diag = diagnostics if diagnostics is not None else Diagnostics()

    segment_type = resolve_segment_type(dataset, filters)
    if segment_type is None:
        diag.record(KPI_NO_DATA, "No segment type available", data_type=filters.data_type)
        return None

    records = dataset.records_for(filters.data_type)
    if not records:
        diag.record(KPI_NO_DATA, "Dataset is empty", data_type=filters.data_type)
        return None

    geography_mode = filters.view_mode == VIEW_MODE_GEOGRAPHY
    geographies = list(filters.geographies)

    selected = select_records(records, geographies, segment_type, geography_mode)

    fallback_applied = False
    if not selected and geographies:
        selected = select_records(records, (), segment_type, geography_mode=False)
        if selected:
            fallback_applied = True
            diag.record(
                KPI_FALLBACK_ALL_GEOGRAPHIES,
                "No records for the selected geographies, using all geographies",
                requested=geographies,
                segment_type=segment_type,
            )
            geographies = []

    if not selected:
        diag.record(
            KPI_NO_DATA,
            "No records match the filters",
            data_type=filters.data_type,
            segment_type=segment_type,
            view_mode=filters.view_mode,
        )
        return None

    years = available_years(selected[0].time_series)
    if years:
        start_year, end_year = years[0], years[-1]
    else:
        start_year, end_year = filters.year_range

    market_size_start = sum_year(selected, start_year)
    market_size_end = sum_year(selected, end_year)

    summary = KpiSummary(
        market_size_start=market_size_start,
        market_size_end=market_size_end,
        start_year=start_year,
        end_year=end_year,
        cagr=compute_cagr(market_size_start, market_size_end, end_year - start_year),
        absolute_growth=market_size_end - market_size_start,
        growth_percentage=growth_percentage(market_size_start, market_size_end),
        currency=filters.currency or dataset.metadata.currency,
        unit=dataset.unit_for(filters.data_type),
        data_type=filters.data_type,
        data_type_label=DATA_TYPE_LABELS[filters.data_type],
        geography_label=geography_label(geographies),
        segment_type_label=segment_type_label(selected, segment_type),
        geographies_used=sorted({r.geography for r in selected}),
        segment_type=segment_type,
        record_count=len(selected),
        fallback_applied=fallback_applied,
    )

    logger.debug(json.dumps({
        "event": "kpi_computed",
        "data_type": filters.data_type,
        "view_mode": filters.view_mode,
        "segment_type": segment_type,
        "records": len(selected),
        "start_year": start_year,
        "end_year": end_year,
        "fallback": fallback_applied,
    }))
    return summary
