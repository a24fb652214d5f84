"""
dashboard_core.constants — Single source of truth for dashboard core constants.

Every module that needs these values MUST import from here.
No hardcoded duplicates anywhere in the codebase.
"""

from __future__ import annotations

import re

# ---------------------------------------------------------------------------
# Recursion guards
# ---------------------------------------------------------------------------

MAX_SEGMENT_DEPTH: int = 10
"""Maximum number of hierarchy levels walked per record when rebuilding
the export tree. Longer paths are truncated, never rejected."""

MAX_HIERARCHY_DEPTH: int = 20
"""Maximum recursion level when expanding a segment dimension's
parent -> children mapping into a structure-only tree."""

# ---------------------------------------------------------------------------
# Aggregation levels
# ---------------------------------------------------------------------------

TOP_AGGREGATION_LEVEL: int = 1
"""Aggregation level of a top-level total."""

UNKNOWN_LEVEL_RANK: int = 999
"""Sort rank of an aggregated record whose aggregation_level is unknown."""

# ---------------------------------------------------------------------------
# Filters
# ---------------------------------------------------------------------------

DATA_TYPE_VALUE: str = "value"
DATA_TYPE_VOLUME: str = "volume"
DATA_TYPES: frozenset[str] = frozenset({DATA_TYPE_VALUE, DATA_TYPE_VOLUME})

VIEW_MODE_NORMAL: str = "normal"
VIEW_MODE_GEOGRAPHY: str = "geography-mode"
VIEW_MODE_MATRIX: str = "matrix"
VIEW_MODES: frozenset[str] = frozenset({VIEW_MODE_NORMAL, VIEW_MODE_GEOGRAPHY, VIEW_MODE_MATRIX})

DEFAULT_YEAR_RANGE: tuple[int, int] = (2024, 2032)
"""Used for start/end year only when the selected records carry no parsable year."""

# ---------------------------------------------------------------------------
# Display echo
# ---------------------------------------------------------------------------

DEFAULT_CURRENCY: str = "USD"
DEFAULT_VALUE_UNIT: str = "Million"
DEFAULT_VOLUME_UNIT: str = "Units"

DATA_TYPE_LABELS: dict[str, str] = {
    DATA_TYPE_VALUE: "Market Size",
    DATA_TYPE_VOLUME: "Market Volume",
}

ALL_GEOGRAPHIES_LABEL: str = "All Geographies"

# ---------------------------------------------------------------------------
# Tree keys
# ---------------------------------------------------------------------------

CAGR_KEY: str = "CAGR"
AGGREGATED_KEY: str = "_aggregated"
LEVEL_KEY: str = "_level"

YEAR_KEY_RE: re.Pattern[str] = re.compile(r"\d{4}")
"""Whole keys treated as year data when stripping a tree down to its structure."""

# ---------------------------------------------------------------------------
# Export files
# ---------------------------------------------------------------------------

VALUE_FILE: str = "value.json"
VOLUME_FILE: str = "volume.json"
SEGMENTATION_FILE: str = "segmentation_analysis.json"
