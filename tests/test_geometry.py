"""Tests for geometry parsing, cleaning and boundary assembly."""

import json
from types import SimpleNamespace
from unittest.mock import Mock

import pytest
from sqlalchemy.dialects import postgresql
from sqlalchemy.orm import Session

from electoral_atlas.errors import GeometryParseError, InvalidLevel
from electoral_atlas.geometry import (
    GeometryRepository,
    build_boundary_features,
    calculate_bbox,
    clean_geometry,
    explode_multipolygons,
    geometry_bounds,
    parse_geometry,
)

from conftest import boundary, square


def boundary_row(unit_id, name, geojson, level=2, parent_id=1):
    return SimpleNamespace(
        id=unit_id, name=name, code=f"D{unit_id}", level=level, parent_id=parent_id, geojson=geojson
    )


class TestParseGeometry:
    """Tests for parse_geometry."""

    def test_parses_geojson_text(self):
        assert parse_geometry(json.dumps(square(0, 0)))["type"] == "Polygon"

    def test_passes_mappings_through(self):
        geometry = square(0, 0)
        assert parse_geometry(geometry) is geometry

    def test_none_is_none(self):
        assert parse_geometry(None) is None

    def test_invalid_text(self):
        with pytest.raises(GeometryParseError) as exc_info:
            parse_geometry("{not json", unit_id=7)
        assert exc_info.value.unit_id == 7

    def test_mapping_without_coordinates(self):
        with pytest.raises(GeometryParseError):
            parse_geometry({"type": "Polygon"})


class TestCleanGeometry:
    """Tests for clean_geometry."""

    def test_keeps_valid_polygon(self):
        assert clean_geometry(square(0, 0)) == square(0, 0)

    def test_drops_empty_holes(self):
        geometry = {"type": "Polygon", "coordinates": square(0, 0)["coordinates"] + [[]]}
        assert len(clean_geometry(geometry)["coordinates"]) == 1

    def test_empty_outer_ring_drops_polygon(self):
        assert clean_geometry({"type": "Polygon", "coordinates": [[]]}) is None

    def test_multipolygon_keeps_valid_parts(self):
        geometry = {
            "type": "MultiPolygon",
            "coordinates": [square(0, 0)["coordinates"], [[]], []],
        }
        cleaned = clean_geometry(geometry)
        assert cleaned["type"] == "MultiPolygon"
        assert len(cleaned["coordinates"]) == 1

    def test_non_polygon_types(self):
        assert clean_geometry({"type": "Point", "coordinates": [1, 2]}) is None
        assert clean_geometry(None) is None


class TestBounds:
    """Tests for geometry_bounds and calculate_bbox."""

    def test_geometry_bounds(self):
        assert geometry_bounds(square(30, 1, size=2)) == [30, 1, 32, 3]

    def test_bbox_covers_all_features(self, district_features):
        assert calculate_bbox(district_features) == [30.0, 0.0, 33.0, 1.0]

    def test_bbox_of_nothing(self):
        assert calculate_bbox([]) is None


class TestExplodeMultipolygons:
    """Tests for explode_multipolygons."""

    def test_parts_get_indexed_ids(self):
        multi = {
            "type": "MultiPolygon",
            "coordinates": [square(0, 0)["coordinates"], square(5, 5)["coordinates"]],
        }
        features = explode_multipolygons(
            [boundary(7, "Islands", 2, 1, multi), boundary(8, "Main", 2, 1, square(1, 1))]
        )

        assert [f["id"] for f in features] == ["7-0", "7-1", 8]
        assert features[1]["geometry"]["type"] == "Polygon"
        assert features[1]["properties"]["name"] == "Islands"


class TestBuildBoundaryFeatures:
    """Tests for build_boundary_features."""

    def test_skips_unusable_geometry(self):
        rows = [
            boundary_row(10, "Alpha", json.dumps(square(30, 0))),
            boundary_row(11, "Bravo", "garbage"),
            boundary_row(12, "Charlie", json.dumps({"type": "Polygon", "coordinates": [[]]})),
        ]

        features, skipped = build_boundary_features(rows)

        assert [f["id"] for f in features] == [10]
        assert features[0]["properties"]["code"] == "D10"
        assert skipped == 2


class TestGeometryRepository:
    """Tests for GeometryRepository."""

    def test_get_boundaries_collection(self):
        session = Mock(spec=Session)
        session.execute.return_value.all.return_value = [
            boundary_row(10, "Alpha", json.dumps(square(30, 0))),
            boundary_row(11, "Bravo", None),
        ]

        collection = GeometryRepository(session).get_boundaries(2)

        assert collection["type"] == "FeatureCollection"
        assert collection["metadata"]["count"] == 1
        assert collection["metadata"]["skipped"] == 1
        assert collection["metadata"]["level"] == 2

    def test_invalid_level_before_query(self):
        session = Mock(spec=Session)
        with pytest.raises(InvalidLevel):
            GeometryRepository(session).get_boundaries(7)
        session.execute.assert_not_called()

    def test_unit_ids_restrict_query(self):
        session = Mock(spec=Session)
        session.execute.return_value.all.return_value = []

        GeometryRepository(session).get_boundaries(5, unit_ids=[10000, 10001])

        stmt = session.execute.call_args.args[0]
        sql = str(stmt.compile(dialect=postgresql.dialect()))
        assert "administrative_units.id IN" in sql
        assert "administrative_units.parent_id =" not in sql
