"""
dashboard_core.tree — Hierarchy reconstruction for export and structure views.

Pure-computation module. Zero I/O. Zero global state.

Exported tree shape (the one externally observable format):

    {
      "<geography>": {
        "<segment type>": {
          "<level 1 label>": {
            "<level 2 label>": {
              "2024": 100.0,
              "2032": 200.0,
              "CAGR": "9.05%",        # only when the record carries a cagr
              "_aggregated": true,    # only for roll-up records
              "_level": 1             # only when the roll-up level is known
            }
          }
        }
      }
    }

Guards:
    - rebuild_tree() walks at most MAX_SEGMENT_DEPTH levels per record.
    - rebuild_structure() recurses at most MAX_HIERARCHY_DEPTH levels and
      skips any label already on its own ancestor path.
    Both are non-fatal: the offending branch is truncated, a diagnostic
    is recorded, and the remaining input is processed.
"""

from __future__ import annotations

import copy
import json
import logging
from collections.abc import Iterable, Mapping, Sequence
from typing import Any

from dashboard_core.constants import (
    AGGREGATED_KEY,
    CAGR_KEY,
    LEVEL_KEY,
    MAX_HIERARCHY_DEPTH,
    MAX_SEGMENT_DEPTH,
    YEAR_KEY_RE,
)
from dashboard_core.diagnostics import (
    CIRCULAR_REFERENCE,
    DIMENSION_SKIPPED,
    HIERARCHY_DEPTH_EXCEEDED,
    SEGMENT_DEPTH_EXCEEDED,
    Diagnostics,
)
from dashboard_core.models import SegmentDimension, SegmentRecord
from dashboard_core.timeseries import segment_path

logger = logging.getLogger("dashboard.tree")

PATH_SEPARATOR = " > "


def format_cagr(cagr: float) -> str:
    """Render an authored CAGR as a percentage string ("5%", "5.25%")."""
    if float(cagr).is_integer():
        return f"{int(cagr)}%"
    return f"{cagr}%"


# ---------------------------------------------------------------------------
# Record-driven reconstruction
# ---------------------------------------------------------------------------

def rebuild_tree(
    records: Iterable[SegmentRecord],
    diagnostics: Diagnostics | None = None,
) -> dict[str, Any]:
    """Rebuild the nested geography → segment type → levels → years tree.

    Records sharing a path merge into the same leaf; later records
    overwrite earlier year values at that path.
    """
    diag = diagnostics if diagnostics is not None else Diagnostics()
    tree: dict[str, Any] = {}
    count = 0

    for index, record in enumerate(records):
        count += 1
        node: dict[str, Any] = tree.setdefault(record.geography, {}).setdefault(
            record.segment_type, {}
        )

        path = segment_path(record)
        if len(path) > MAX_SEGMENT_DEPTH:
            diag.record(
                SEGMENT_DEPTH_EXCEEDED,
                f"Segment path truncated at {MAX_SEGMENT_DEPTH} levels",
                index=index,
                geography=record.geography,
                segment_type=record.segment_type,
                depth=len(path),
                path=PATH_SEPARATOR.join(path[:MAX_SEGMENT_DEPTH]),
            )
            path = path[:MAX_SEGMENT_DEPTH]

        for label in path:
            child = node.get(label)
            if not isinstance(child, dict):
                child = {}
                node[label] = child
            node = child

        for year, value in record.time_series.items():
            node[str(year)] = value

        if record.cagr:
            node[CAGR_KEY] = format_cagr(record.cagr)

        if record.is_aggregated:
            node[AGGREGATED_KEY] = True
            if record.aggregation_level is not None:
                node[LEVEL_KEY] = record.aggregation_level

    logger.debug(json.dumps({
        "event": "tree_rebuilt",
        "records": count,
        "geographies": len(tree),
        "truncated": diag.count(SEGMENT_DEPTH_EXCEEDED),
    }))
    return tree


# ---------------------------------------------------------------------------
# Dimension-driven structure
# ---------------------------------------------------------------------------

def top_level_items(dimension: SegmentDimension) -> list[str]:
    """Items never listed as a child anywhere in the hierarchy mapping."""
    children: set[str] = set()
    for kids in (dimension.hierarchy or {}).values():
        children.update(kids)
    return [item for item in dimension.items if item not in children]


def _expand(
    items: Sequence[str],
    hierarchy: Mapping[str, Sequence[str]],
    parent: dict[str, Any],
    level: int,
    ancestors: frozenset[str],
    path: tuple[str, ...],
    segment_type: str,
    diag: Diagnostics,
) -> None:
    """Expand ``items`` under ``parent``.

    ``ancestors`` holds the labels on the current path only, so a shared
    sub-tree reached through two parents is expanded under both.
    """
    if level > MAX_HIERARCHY_DEPTH:
        diag.record(
            HIERARCHY_DEPTH_EXCEEDED,
            f"Hierarchy expansion stopped at level {MAX_HIERARCHY_DEPTH}",
            segment_type=segment_type,
            path=PATH_SEPARATOR.join(path),
        )
        return

    for item in items:
        if item in ancestors:
            diag.record(
                CIRCULAR_REFERENCE,
                "Label repeats on its own ancestor path, skipped",
                segment_type=segment_type,
                path=PATH_SEPARATOR.join(path + (item,)),
            )
            continue

        node = parent.setdefault(item, {})
        children = hierarchy.get(item)
        if children:
            _expand(
                children,
                hierarchy,
                node,
                level + 1,
                ancestors | {item},
                path + (item,),
                segment_type,
                diag,
            )


def build_dimension_structure(
    segment_type: str,
    dimension: SegmentDimension,
    diagnostics: Diagnostics | None = None,
) -> dict[str, Any]:
    """Structure-only node for one segment dimension.

    An empty item list or a missing hierarchy mapping yields {}.
    """
    diag = diagnostics if diagnostics is not None else Diagnostics()
    node: dict[str, Any] = {}
    if not dimension.items or dimension.hierarchy is None:
        return node
    _expand(
        top_level_items(dimension),
        dimension.hierarchy,
        node,
        0,
        frozenset(),
        (),
        segment_type,
        diag,
    )
    return node


def rebuild_structure(
    all_geographies: Iterable[str],
    segment_dimensions: Mapping[str, SegmentDimension | Mapping[str, Any] | None],
    diagnostics: Diagnostics | None = None,
) -> dict[str, Any]:
    """Build geography → segment type → hierarchy with no year data.

    Each dimension is expanded once; every geography receives its own
    deep copy so callers may mutate one branch without touching another.
    """
    diag = diagnostics if diagnostics is not None else Diagnostics()

    templates: dict[str, dict[str, Any]] = {}
    for segment_type, dimension in segment_dimensions.items():
        if dimension is None:
            dimension = SegmentDimension()
        elif isinstance(dimension, Mapping):
            dimension = SegmentDimension.model_validate(dict(dimension))
        elif not isinstance(dimension, SegmentDimension):
            diag.record(
                DIMENSION_SKIPPED,
                "Segment dimension is not an object, emitted as an empty node",
                segment_type=segment_type,
                got=type(dimension).__name__,
            )
            dimension = SegmentDimension()
        templates[segment_type] = build_dimension_structure(segment_type, dimension, diag)

    result: dict[str, Any] = {}
    for geography in all_geographies:
        result[geography] = {
            segment_type: copy.deepcopy(template)
            for segment_type, template in templates.items()
        }

    logger.debug(json.dumps({
        "event": "structure_rebuilt",
        "geographies": len(result),
        "segment_types": len(templates),
        "circular_references": diag.count(CIRCULAR_REFERENCE),
        "depth_exceeded": diag.count(HIERARCHY_DEPTH_EXCEEDED),
    }))
    return result


# ---------------------------------------------------------------------------
# Tree utilities
# ---------------------------------------------------------------------------

def strip_year_data(tree: Mapping[str, Any]) -> dict[str, Any]:
    """Copy of ``tree`` without 4-digit year keys or CAGR entries.

    Markers such as _aggregated / _level are kept.
    """
    out: dict[str, Any] = {}
    for key, value in tree.items():
        if key == CAGR_KEY or YEAR_KEY_RE.fullmatch(str(key)):
            continue
        if isinstance(value, Mapping):
            out[key] = strip_year_data(value)
        else:
            out[key] = copy.deepcopy(value)
    return out
