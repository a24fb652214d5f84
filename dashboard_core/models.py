"""
dashboard_core.models — Data model for segment records, datasets and KPI filters.

Tolerant, never-raise-on-shape validation for everything that arrives from
the spreadsheet converter:
    - Missing hierarchy levels → skipped
    - Non-numeric / NaN / Inf time-series values → dropped
    - Unparsable aggregation levels → None
    - Unknown keys → silently ignored
    - camelCase aliases → accepted alongside snake_case names

Only reject:
    - A record without a geography or segment type
    - A payload that is not a JSON object (DashboardDataError)

Wire shape accepted by Dataset.from_payload():
    {
      "metadata": {"currency": "USD", "value_unit": "Million", ...},
      "dimensions": {
          "geographies": {"all_geographies": [...]},
          "segments": {"<segment type>": {"items": [...], "hierarchy": {...}}}
      },
      "data": {
          "value":  {"geography_segment_matrix": [<record>, ...]},
          "volume": {"geography_segment_matrix": [<record>, ...]}
      }
    }

The flat shape (value / volume / all_geographies / segment_dimensions /
metadata at top level) is accepted as well.
"""

from __future__ import annotations

import math
import re
from typing import Any, Dict, List, Literal, Optional, Tuple, Union

from pydantic import BaseModel, Field, ValidationError, field_validator

from dashboard_core.constants import (
    DATA_TYPE_VALUE,
    DATA_TYPE_VOLUME,
    DEFAULT_CURRENCY,
    DEFAULT_VALUE_UNIT,
    DEFAULT_VOLUME_UNIT,
    DEFAULT_YEAR_RANGE,
    VIEW_MODE_NORMAL,
)
from dashboard_core.diagnostics import Diagnostics

_LEVEL_KEY_RE = re.compile(r"(\d+)$")

RECORD_SKIPPED: str = "record_skipped"


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


class DashboardDataError(ValueError):
    """Raised when a dataset payload is not usable at all."""


# ---------------------------------------------------------------------------
# Coercion helpers
# ---------------------------------------------------------------------------

def _finite_float(value: Any) -> float | None:
    """Coerce to a finite float. Returns None for anything else."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, str):
        value = value.strip().rstrip("%").replace(",", "")
        if not value:
            return None
    try:
        f = float(value)
    except (TypeError, ValueError):
        return None
    if math.isnan(f) or math.isinf(f):
        return None
    return f


def _label_or_none(value: Any) -> str | None:
    if value is None:
        return None
    label = str(value).strip()
    return label or None


# ---------------------------------------------------------------------------
# SegmentRecord
# ---------------------------------------------------------------------------


class SegmentRecord(BaseModel):
    """One row of the flat geography x segment dataset."""

    model_config = {"extra": "ignore", "populate_by_name": True, "frozen": True}

    geography: str
    segment_type: str = Field(..., alias="segmentType")
    segment_hierarchy: List[Optional[str]] = Field(default_factory=list, alias="segmentHierarchy")
    time_series: Dict[Union[int, str], float] = Field(default_factory=dict, alias="timeSeries")
    cagr: Optional[float] = None
    is_aggregated: bool = Field(default=False, alias="isAggregated")
    aggregation_level: Optional[int] = Field(default=None, alias="aggregationLevel")

    @field_validator("geography", "segment_type", mode="before")
    @classmethod
    def _require_label(cls, v: Any) -> str:
        label = _label_or_none(v)
        if label is None:
            raise ValueError("must be a non-empty string")
        return label

    @field_validator("segment_hierarchy", mode="before")
    @classmethod
    def _normalize_hierarchy(cls, v: Any) -> list[str | None]:
        """Accept {"level_1": ..} / {"level1": ..} mappings or a plain list."""
        if v is None:
            return []
        if isinstance(v, dict):
            numbered: list[tuple[int, Any]] = []
            for key, label in v.items():
                match = _LEVEL_KEY_RE.search(str(key))
                if match:
                    numbered.append((int(match.group(1)), label))
            numbered.sort(key=lambda item: item[0])
            return [_label_or_none(label) for _, label in numbered]
        if isinstance(v, (list, tuple)):
            return [_label_or_none(label) for label in v]
        return []

    @field_validator("time_series", mode="before")
    @classmethod
    def _normalize_time_series(cls, v: Any) -> dict[int | str, float]:
        if not isinstance(v, dict):
            return {}
        out: dict[int | str, float] = {}
        for year, raw in v.items():
            value = _finite_float(raw)
            if value is None:
                continue
            key = year if isinstance(year, int) and not isinstance(year, bool) else str(year).strip()
            out[key] = value
        return out

    @field_validator("cagr", mode="before")
    @classmethod
    def _coerce_cagr(cls, v: Any) -> float | None:
        return _finite_float(v)

    @field_validator("is_aggregated", mode="before")
    @classmethod
    def _coerce_flag(cls, v: Any) -> bool:
        if isinstance(v, str):
            return v.strip().lower() in {"true", "1", "yes"}
        return bool(v)

    @field_validator("aggregation_level", mode="before")
    @classmethod
    def _coerce_level(cls, v: Any) -> int | None:
        f = _finite_float(v)
        if f is None or not f.is_integer():
            return None
        return int(f)


# ---------------------------------------------------------------------------
# Dimensions & metadata
# ---------------------------------------------------------------------------


class SegmentDimension(BaseModel):
    """Item list plus parent -> children mapping for one segment type.

    The mapping is a forest on well-formed input but may contain cycles
    or excess depth; consumers guard against both. A missing mapping
    (None) is distinct from an empty one ({}): the latter declares a
    flat item list.
    """

    model_config = {"extra": "ignore"}

    items: List[str] = Field(default_factory=list)
    hierarchy: Optional[Dict[str, List[str]]] = None

    @field_validator("items", mode="before")
    @classmethod
    def _normalize_items(cls, v: Any) -> list[str]:
        if not isinstance(v, (list, tuple)):
            return []
        return [label for label in (_label_or_none(i) for i in v) if label is not None]

    @field_validator("hierarchy", mode="before")
    @classmethod
    def _normalize_mapping(cls, v: Any) -> dict[str, list[str]] | None:
        """None when the mapping is missing or not an object; {} means a flat item list."""
        if not isinstance(v, dict):
            return None
        out: dict[str, list[str]] = {}
        for parent, children in v.items():
            parent_label = _label_or_none(parent)
            if parent_label is None or not isinstance(children, (list, tuple)):
                continue
            out[parent_label] = [
                label for label in (_label_or_none(c) for c in children) if label is not None
            ]
        return out


class DatasetMetadata(BaseModel):
    model_config = {"extra": "ignore", "populate_by_name": True}

    currency: str = DEFAULT_CURRENCY
    value_unit: str = Field(default=DEFAULT_VALUE_UNIT, alias="valueUnit")
    volume_unit: str = Field(default=DEFAULT_VOLUME_UNIT, alias="volumeUnit")

    @field_validator("currency", "value_unit", "volume_unit", mode="before")
    @classmethod
    def _default_blank(cls, v: Any, info: Any) -> Any:
        if _label_or_none(v) is None:
            return cls.model_fields[info.field_name].default
        return str(v).strip()


# ---------------------------------------------------------------------------
# Dataset
# ---------------------------------------------------------------------------


def _parse_records(
    raw: Any,
    data_type: str,
    diagnostics: Diagnostics | None,
) -> list[SegmentRecord]:
    """Validate each record independently. Invalid rows are skipped, not fatal."""
    if not isinstance(raw, (list, tuple)):
        return []
    records: list[SegmentRecord] = []
    for index, row in enumerate(raw):
        try:
            records.append(SegmentRecord.model_validate(row))
        except ValidationError as exc:
            if diagnostics is not None:
                diagnostics.record(
                    RECORD_SKIPPED,
                    f"{data_type} record {index} failed validation",
                    data_type=data_type,
                    index=index,
                    errors=[e.get("msg", "invalid") for e in exc.errors()],
                )
    return records


def _matrix(section: Any) -> Any:
    if isinstance(section, dict):
        return section.get("geography_segment_matrix")
    return section


class Dataset(BaseModel):
    """Parallel value / volume record collections plus their dimensions."""

    model_config = {"extra": "ignore", "populate_by_name": True}

    value: List[SegmentRecord] = Field(default_factory=list)
    volume: Optional[List[SegmentRecord]] = None
    all_geographies: List[str] = Field(default_factory=list, alias="allGeographies")
    segment_dimensions: Dict[str, SegmentDimension] = Field(
        default_factory=dict, alias="segmentDimensions",
    )
    metadata: DatasetMetadata = Field(default_factory=DatasetMetadata)

    @field_validator("all_geographies", mode="before")
    @classmethod
    def _normalize_geographies(cls, v: Any) -> list[str]:
        if not isinstance(v, (list, tuple)):
            return []
        return [label for label in (_label_or_none(g) for g in v) if label is not None]

    @field_validator("segment_dimensions", mode="before")
    @classmethod
    def _normalize_dimensions(cls, v: Any) -> dict[str, Any]:
        if not isinstance(v, dict):
            return {}
        return {str(k): (d if isinstance(d, (dict, SegmentDimension)) else {}) for k, d in v.items()}

    @field_validator("metadata", mode="before")
    @classmethod
    def _default_metadata(cls, v: Any) -> Any:
        return v if isinstance(v, (dict, DatasetMetadata)) else {}

    def records_for(self, data_type: str) -> list[SegmentRecord]:
        """Return the record list for 'value' or 'volume' (empty if absent)."""
        if data_type == DATA_TYPE_VOLUME:
            return list(self.volume or [])
        return list(self.value)

    def segment_types(self) -> list[str]:
        """Declared segment types, else the segment types seen in value records."""
        if self.segment_dimensions:
            return list(self.segment_dimensions)
        seen: dict[str, None] = {}
        for record in self.value:
            seen.setdefault(record.segment_type, None)
        return list(seen)

    def unit_for(self, data_type: str) -> str:
        if data_type == DATA_TYPE_VOLUME:
            return self.metadata.volume_unit
        return self.metadata.value_unit

    @classmethod
    def from_payload(
        cls,
        payload: Any,
        diagnostics: Diagnostics | None = None,
    ) -> Dataset:
        """Build a Dataset from the converter's JSON payload (nested or flat).

        Raises:
            DashboardDataError: If the payload is not a JSON object.
        """
        if not isinstance(payload, dict):
            raise DashboardDataError(
                f"Dataset payload must be a JSON object, got {type(payload).__name__}."
            )

        if isinstance(payload.get("data"), dict):
            data = payload["data"]
            dimensions = payload.get("dimensions")
            if not isinstance(dimensions, dict):
                dimensions = {}
            geographies = dimensions.get("geographies") or {}
            raw_value = _matrix(data.get(DATA_TYPE_VALUE))
            raw_volume = _matrix(data.get(DATA_TYPE_VOLUME))
            all_geographies = (
                geographies.get("all_geographies") if isinstance(geographies, dict) else geographies
            )
            segment_dimensions = dimensions.get("segments")
        else:
            raw_value = payload.get(DATA_TYPE_VALUE)
            raw_volume = payload.get(DATA_TYPE_VOLUME)
            all_geographies = payload.get("all_geographies", payload.get("allGeographies"))
            segment_dimensions = payload.get(
                "segment_dimensions", payload.get("segmentDimensions")
            )

        volume = _parse_records(raw_volume, DATA_TYPE_VOLUME, diagnostics)
        return cls(
            value=_parse_records(raw_value, DATA_TYPE_VALUE, diagnostics),
            volume=volume or None,
            all_geographies=all_geographies,
            segment_dimensions=segment_dimensions,
            metadata=payload.get("metadata"),
        )


# ---------------------------------------------------------------------------
# KPI filters & summary
# ---------------------------------------------------------------------------


class KpiFilters(BaseModel):
    """Filter selection supplied by the filter-state provider."""

    model_config = {"extra": "ignore", "populate_by_name": True}

    geographies: List[str] = Field(default_factory=list)
    segment_type: Optional[str] = Field(default=None, alias="segmentType")
    data_type: Literal["value", "volume"] = Field(default=DATA_TYPE_VALUE, alias="dataType")
    year_range: Tuple[int, int] = Field(default=DEFAULT_YEAR_RANGE, alias="yearRange")
    view_mode: Literal["normal", "geography-mode", "matrix"] = Field(
        default=VIEW_MODE_NORMAL, alias="viewMode",
    )
    currency: Optional[str] = None

    @field_validator("geographies", mode="before")
    @classmethod
    def _dedupe_geographies(cls, v: Any) -> list[str]:
        if v is None:
            return []
        if isinstance(v, str):
            v = [v]
        seen: dict[str, None] = {}
        for g in v:
            label = _label_or_none(g)
            if label is not None:
                seen.setdefault(label, None)
        return list(seen)

    @field_validator("segment_type", "currency", mode="before")
    @classmethod
    def _blank_to_none(cls, v: Any) -> str | None:
        return _label_or_none(v)

    @field_validator("year_range", mode="before")
    @classmethod
    def _default_year_range(cls, v: Any) -> Any:
        if v is None:
            return DEFAULT_YEAR_RANGE
        return v


class KpiSummary(BaseModel):
    """Roll-up KPIs for the display collaborator. Raw numbers, no formatting."""

    market_size_start: float
    market_size_end: float
    start_year: int
    end_year: int
    cagr: float
    absolute_growth: float
    growth_percentage: float
    currency: str
    unit: str
    data_type: str
    data_type_label: str
    geography_label: str
    segment_type_label: str
    geographies_used: List[str] = Field(default_factory=list)
    segment_type: str
    record_count: int
    fallback_applied: bool = False
