"""
dashboard_core.diagnostics — Diagnostic channel for non-fatal data hazards.

Structural hazards (depth overflow, circular hierarchy references,
truncated paths) never raise. They are recorded on a Diagnostics
collector and logged as structured JSON so callers can observe them.

Design contract:
    - One collector per top-level call. Never shared across calls
      unless the caller passes the same instance explicitly.
    - record() never raises.
    - to_dict() is JSON-serializable.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any

logger = logging.getLogger("dashboard.diagnostics")

# ---------------------------------------------------------------------------
# Event names
# ---------------------------------------------------------------------------

SEGMENT_DEPTH_EXCEEDED: str = "segment_depth_exceeded"
HIERARCHY_DEPTH_EXCEEDED: str = "hierarchy_depth_exceeded"
CIRCULAR_REFERENCE: str = "circular_reference"
DIMENSION_SKIPPED: str = "dimension_skipped"
KPI_NO_DATA: str = "kpi_no_data"
KPI_FALLBACK_ALL_GEOGRAPHIES: str = "kpi_fallback_all_geographies"

WARNING_EVENTS: frozenset[str] = frozenset({
    SEGMENT_DEPTH_EXCEEDED,
    HIERARCHY_DEPTH_EXCEEDED,
    CIRCULAR_REFERENCE,
    DIMENSION_SKIPPED,
})


@dataclass
class Diagnostics:
    """Collected hazards from one reconstruction or aggregation call.

    Fields:
        events: List of event dicts, each {event, detail, **context}.
    """
    events: list[dict[str, Any]] = field(default_factory=list)

    def record(self, event: str, detail: str, **context: Any) -> None:
        """Record an event and log it. Warning-class events log at WARNING."""
        entry = {"event": event, "detail": detail, **context}
        self.events.append(entry)
        level = logging.WARNING if event in WARNING_EVENTS else logging.INFO
        logger.log(level, json.dumps(entry, default=str, ensure_ascii=False))

    def count(self, event: str) -> int:
        return sum(1 for e in self.events if e["event"] == event)

    def has(self, event: str) -> bool:
        return any(e["event"] == event for e in self.events)

    def __len__(self) -> int:
        return len(self.events)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a plain dict for JSON output."""
        counts: dict[str, int] = {}
        for e in self.events:
            counts[e["event"]] = counts.get(e["event"], 0) + 1
        return {
            "event_count": len(self.events),
            "counts": counts,
            "events": list(self.events),
        }
