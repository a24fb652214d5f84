"""
dashboard_core.timeseries — Shared record-walking helpers.

Year keys arrive as either integers or strings ("2024"). Every lookup
goes through year_value(), which tries the integer key first and the
string form second. No other module indexes a time series directly.
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Mapping
from typing import Any

from dashboard_core.models import SegmentRecord

_LEADING_INT_RE = re.compile(r"^\s*([+-]?\d+)")


def parse_year(key: Any) -> int | None:
    """Parse a year key leniently (leading integer digits). None if unparsable."""
    if isinstance(key, bool):
        return None
    if isinstance(key, int):
        return key
    match = _LEADING_INT_RE.match(str(key))
    if not match:
        return None
    return int(match.group(1))


def available_years(time_series: Mapping[Any, Any]) -> list[int]:
    """Sorted, de-duplicated parsable years of a time series."""
    years = {y for y in (parse_year(k) for k in time_series) if y is not None}
    return sorted(years)


def year_value(time_series: Mapping[Any, Any], year: int) -> float:
    """Value for ``year``, trying the numeric key then its string form.

    Missing or zero values both yield 0.0.
    """
    for key in (year, str(year)):
        value = time_series.get(key)
        if value:
            return float(value)
    return 0.0


def sum_year(records: Iterable[SegmentRecord], year: int) -> float:
    return sum(year_value(r.time_series, year) for r in records)


def segment_path(record: SegmentRecord) -> list[str]:
    """Present hierarchy labels in level order. Absent/empty levels are skipped."""
    return [label for label in record.segment_hierarchy if label]
