"""
tests/test_models.py — Data model contract tests (dashboard_core.models).

Covers tolerant coercion of converter output, camelCase aliases, the
nested and flat dataset payload shapes, and filter validation.

Requires: pytest, pydantic
"""

from __future__ import annotations

import typing

import pytest
from pydantic import ValidationError

from dashboard_core.constants import (
    DATA_TYPES,
    DEFAULT_CURRENCY,
    DEFAULT_VALUE_UNIT,
    DEFAULT_YEAR_RANGE,
    VIEW_MODES,
)
from dashboard_core.diagnostics import Diagnostics
from dashboard_core.models import (
    RECORD_SKIPPED,
    DashboardDataError,
    Dataset,
    DatasetMetadata,
    KpiFilters,
    SegmentDimension,
    SegmentRecord,
)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

def _wire_payload() -> dict:
    return {
        "metadata": {"currency": "EUR", "value_unit": "Billion"},
        "dimensions": {
            "geographies": {"all_geographies": ["US", "UK"]},
            "segments": {
                "By Product": {
                    "items": ["Hardware", "Servers", "Software"],
                    "hierarchy": {"Hardware": ["Servers"]},
                },
            },
        },
        "data": {
            "value": {
                "geography_segment_matrix": [
                    {
                        "geography": "US",
                        "segment_type": "By Product",
                        "segment_hierarchy": {"level_1": "Hardware", "level_2": "Servers"},
                        "time_series": {"2024": 100, "2032": 200},
                        "cagr": 9.05,
                        "is_aggregated": False,
                    },
                    {
                        "geography": "UK",
                        "segment_type": "By Product",
                        "segment_hierarchy": {"level_1": "Hardware"},
                        "time_series": {"2024": 40, "2032": 60},
                        "is_aggregated": True,
                        "aggregation_level": 1,
                    },
                ],
            },
            "volume": {"geography_segment_matrix": []},
        },
    }


# ---------------------------------------------------------------------------
# SegmentRecord
# ---------------------------------------------------------------------------

class TestSegmentRecord:
    def test_camel_case_aliases(self):
        record = SegmentRecord.model_validate({
            "geography": "US",
            "segmentType": "By Product",
            "segmentHierarchy": ["A", "B"],
            "timeSeries": {"2024": 1},
            "isAggregated": True,
            "aggregationLevel": 2,
        })
        assert record.segment_type == "By Product"
        assert record.segment_hierarchy == ["A", "B"]
        assert record.is_aggregated is True
        assert record.aggregation_level == 2

    def test_hierarchy_mapping_sorted_by_level_number(self):
        record = SegmentRecord(
            geography="US",
            segment_type="By Product",
            segment_hierarchy={"level_2": "B", "level10": "J", "level_1": "A", "note": "x"},
        )
        assert record.segment_hierarchy == ["A", "B", "J"]

    def test_hierarchy_blank_levels_become_none(self):
        record = SegmentRecord(
            geography="US", segment_type="By Product",
            segment_hierarchy={"level_1": "A", "level_2": "  ", "level_3": None},
        )
        assert record.segment_hierarchy == ["A", None, None]

    def test_time_series_coercion(self):
        record = SegmentRecord(
            geography="US",
            segment_type="By Product",
            time_series={
                "2024": "1,200",
                "2025": "n/a",
                "2026": float("nan"),
                "2027": None,
                "2029": True,
                "2030": float("inf"),
                2028: 5,
            },
        )
        assert record.time_series == {"2024": 1200.0, 2028: 5.0}

    def test_scalar_coercion(self):
        record = SegmentRecord(
            geography=" US ",
            segment_type="By Product",
            cagr="5.2%",
            is_aggregated="true",
            aggregation_level="2",
        )
        assert record.geography == "US"
        assert record.cagr == pytest.approx(5.2)
        assert record.is_aggregated is True
        assert record.aggregation_level == 2

    @pytest.mark.parametrize("level,expected", [(1.5, None), ("2.5", None), ("2.0", 2), (3.0, 3)])
    def test_fractional_level_rejected(self, level, expected):
        record = SegmentRecord(geography="US", segment_type="T", aggregation_level=level)
        assert record.aggregation_level == expected

    def test_unparsable_level_is_none(self):
        record = SegmentRecord(geography="US", segment_type="T", aggregation_level="top")
        assert record.aggregation_level is None

    def test_unknown_keys_ignored(self):
        record = SegmentRecord.model_validate({"geography": "US", "segment_type": "T", "color": "red"})
        assert not hasattr(record, "color")

    @pytest.mark.parametrize("geography", [None, "", "   "])
    def test_geography_required(self, geography):
        with pytest.raises(ValidationError):
            SegmentRecord(geography=geography, segment_type="By Product")

    def test_segment_type_required(self):
        with pytest.raises(ValidationError):
            SegmentRecord.model_validate({"geography": "US"})

    def test_frozen(self):
        record = SegmentRecord(geography="US", segment_type="T")
        with pytest.raises(ValidationError):
            record.geography = "UK"


# ---------------------------------------------------------------------------
# Dimensions & metadata
# ---------------------------------------------------------------------------

class TestSegmentDimension:
    def test_missing_hierarchy_is_none(self):
        assert SegmentDimension(items=["A"]).hierarchy is None

    def test_non_mapping_hierarchy_is_none(self):
        assert SegmentDimension(items=["A"], hierarchy=["A"]).hierarchy is None

    def test_empty_hierarchy_kept(self):
        assert SegmentDimension(items=["A"], hierarchy={}).hierarchy == {}

    def test_malformed_entries_dropped(self):
        dim = SegmentDimension(
            items=["A", "", None, "B"],
            hierarchy={"A": ["A1", "", None], "B": "not-a-list", "": ["X"]},
        )
        assert dim.items == ["A", "B"]
        assert dim.hierarchy == {"A": ["A1"]}

    def test_non_list_items(self):
        assert SegmentDimension(items="A").items == []


class TestDatasetMetadata:
    def test_defaults(self):
        meta = DatasetMetadata()
        assert meta.currency == DEFAULT_CURRENCY
        assert meta.value_unit == DEFAULT_VALUE_UNIT

    def test_blank_values_fall_back(self):
        meta = DatasetMetadata(currency="  ", value_unit=None)
        assert meta.currency == DEFAULT_CURRENCY
        assert meta.value_unit == DEFAULT_VALUE_UNIT

    def test_alias(self):
        assert DatasetMetadata.model_validate({"valueUnit": "Billion"}).value_unit == "Billion"


# ---------------------------------------------------------------------------
# Dataset
# ---------------------------------------------------------------------------

class TestDatasetFromPayload:
    def test_nested_wire_shape(self):
        dataset = Dataset.from_payload(_wire_payload())
        assert len(dataset.value) == 2
        assert dataset.value[0].segment_hierarchy == ["Hardware", "Servers"]
        assert dataset.volume is None
        assert dataset.all_geographies == ["US", "UK"]
        assert dataset.segment_dimensions["By Product"].hierarchy == {"Hardware": ["Servers"]}
        assert dataset.metadata.currency == "EUR"
        assert dataset.metadata.value_unit == "Billion"

    def test_flat_shape(self):
        dataset = Dataset.from_payload({
            "value": [{"geography": "US", "segmentType": "By Product"}],
            "volume": [{"geography": "US", "segmentType": "By Product"}],
            "allGeographies": ["US"],
            "segmentDimensions": {"By Product": {"items": ["A"], "hierarchy": {}}},
        })
        assert len(dataset.value) == 1
        assert len(dataset.volume) == 1
        assert dataset.all_geographies == ["US"]
        assert dataset.segment_dimensions["By Product"].items == ["A"]
        assert dataset.metadata.currency == DEFAULT_CURRENCY

    def test_invalid_records_skipped(self):
        payload = _wire_payload()
        payload["data"]["value"]["geography_segment_matrix"].append({"segment_type": "By Product"})
        diag = Diagnostics()
        dataset = Dataset.from_payload(payload, diag)
        assert len(dataset.value) == 2
        assert diag.count(RECORD_SKIPPED) == 1
        assert diag.events[0]["index"] == 2

    def test_missing_sections(self):
        dataset = Dataset.from_payload({"data": {}})
        assert dataset.value == []
        assert dataset.volume is None
        assert dataset.all_geographies == []
        assert dataset.segment_dimensions == {}

    def test_null_dimension_becomes_empty(self):
        payload = _wire_payload()
        payload["dimensions"]["segments"]["By Region"] = None
        dataset = Dataset.from_payload(payload)
        assert dataset.segment_dimensions["By Region"].items == []
        assert dataset.segment_dimensions["By Region"].hierarchy is None

    def test_non_object_dimension_becomes_empty(self):
        dataset = Dataset.from_payload({
            "value": [],
            "segment_dimensions": {"By Product": ["A"], "By Region": {"items": ["North"], "hierarchy": {}}},
        })
        assert dataset.segment_dimensions["By Product"].items == []
        assert dataset.segment_dimensions["By Product"].hierarchy is None
        assert dataset.segment_dimensions["By Region"].items == ["North"]

    @pytest.mark.parametrize("dimensions", [["oops"], "oops", 7])
    def test_non_object_dimensions_section(self, dimensions):
        payload = _wire_payload()
        payload["dimensions"] = dimensions
        dataset = Dataset.from_payload(payload)
        assert len(dataset.value) == 2
        assert dataset.all_geographies == []
        assert dataset.segment_dimensions == {}

    def test_non_object_segments_and_metadata(self):
        payload = _wire_payload()
        payload["dimensions"]["segments"] = ["By Product"]
        payload["metadata"] = ["EUR"]
        dataset = Dataset.from_payload(payload)
        assert dataset.segment_dimensions == {}
        assert dataset.metadata.currency == DEFAULT_CURRENCY

    @pytest.mark.parametrize("payload", [None, [], "dataset", 42])
    def test_non_object_rejected(self, payload):
        with pytest.raises(DashboardDataError):
            Dataset.from_payload(payload)


class TestDatasetAccessors:
    def test_records_for(self):
        dataset = Dataset.from_payload(_wire_payload())
        assert len(dataset.records_for("value")) == 2
        assert dataset.records_for("volume") == []

    def test_segment_types_declared(self):
        assert Dataset.from_payload(_wire_payload()).segment_types() == ["By Product"]

    def test_segment_types_from_records(self):
        dataset = Dataset(value=[
            SegmentRecord(geography="US", segment_type="By Region"),
            SegmentRecord(geography="US", segment_type="By Product"),
            SegmentRecord(geography="UK", segment_type="By Region"),
        ])
        assert dataset.segment_types() == ["By Region", "By Product"]

    def test_unit_for(self):
        dataset = Dataset(metadata={"valueUnit": "Billion", "volumeUnit": "Tons"})
        assert dataset.unit_for("value") == "Billion"
        assert dataset.unit_for("volume") == "Tons"


# ---------------------------------------------------------------------------
# KpiFilters
# ---------------------------------------------------------------------------

class TestKpiFilters:
    def test_defaults(self):
        filters = KpiFilters()
        assert filters.geographies == []
        assert filters.segment_type is None
        assert filters.data_type == "value"
        assert filters.year_range == DEFAULT_YEAR_RANGE
        assert filters.view_mode == "normal"

    def test_geographies_deduplicated(self):
        assert KpiFilters(geographies=["US", "US", " UK", "", None]).geographies == ["US", "UK"]

    def test_single_geography_string(self):
        assert KpiFilters(geographies="US").geographies == ["US"]

    def test_aliases(self):
        filters = KpiFilters.model_validate({
            "segmentType": "By Product",
            "dataType": "volume",
            "yearRange": [2020, 2030],
            "viewMode": "geography-mode",
        })
        assert filters.segment_type == "By Product"
        assert filters.data_type == "volume"
        assert filters.year_range == (2020, 2030)
        assert filters.view_mode == "geography-mode"

    def test_blank_segment_type_is_none(self):
        assert KpiFilters(segment_type="  ").segment_type is None

    def test_null_year_range_defaults(self):
        assert KpiFilters(year_range=None).year_range == DEFAULT_YEAR_RANGE

    @pytest.mark.parametrize("field,value", [("view_mode", "grid"), ("data_type", "price")])
    def test_invalid_choice_rejected(self, field, value):
        with pytest.raises(ValidationError):
            KpiFilters(**{field: value})

    def test_choices_match_constants(self):
        fields = KpiFilters.model_fields
        assert set(typing.get_args(fields["data_type"].annotation)) == DATA_TYPES
        assert set(typing.get_args(fields["view_mode"].annotation)) == VIEW_MODES
