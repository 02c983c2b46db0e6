"""Tests for the server-side AtlasService."""

from types import SimpleNamespace
from unittest.mock import Mock

import pytest
from sqlalchemy.exc import ProgrammingError
from sqlalchemy.orm import Session

from electoral_atlas.aggregation import AggregateResult, RankedEntry
from electoral_atlas.errors import InvalidCoordinates, NotFound, SpatialIndexUnavailable
from electoral_atlas.geometry import GeometryRepository
from electoral_atlas.lineage import DistrictLineage, DistrictSplitResolver
from electoral_atlas.service import AtlasService, swing_row

from conftest import boundary, square


def election(election_id, code="PRES"):
    return SimpleNamespace(id=election_id, name=f"Election {election_id}", year=2021, code=code)


def result_row(unit_id, candidate_id, votes):
    return SimpleNamespace(
        admin_unit_id=unit_id,
        candidate_id=candidate_id,
        candidate_name=f"Candidate {candidate_id}",
        abbreviation={1: "NRM", 2: "NUP"}[candidate_id],
        color={1: "#ffff00", 2: "#ff0000"}[candidate_id],
        votes=votes,
    )


def query_result(first=None, rows=()):
    result = Mock()
    result.first.return_value = first
    result.all.return_value = list(rows)
    return result


@pytest.fixture
def db_session():
    session = Mock(spec=Session)
    session.execute.return_value = query_result(
        first=election(1),
        rows=[
            result_row(10000, 1, 100),
            result_row(10000, 2, 50),
            result_row(10001, 2, 70),
            result_row(11000, 2, 90),
            result_row(11000, 1, 10),
        ],
    )
    return session


@pytest.fixture
def lineage():
    # Charlie was carved out of Alpha
    return DistrictSplitResolver([DistrictLineage(12, 10, 2019)])


@pytest.fixture
def service(db_session, test_settings, sample_tree, lineage, district_features):
    service = AtlasService(db_session, test_settings, tree=sample_tree, resolver=lineage)
    service.geometry = Mock(spec=GeometryRepository)
    service.geometry.get_boundaries.return_value = {
        "type": "FeatureCollection",
        "features": district_features,
        "metadata": {"level": 2, "parentId": None, "count": 3, "skipped": 0},
    }
    return service


class TestGetMetricData:
    """Tests for AtlasService.get_metric_data."""

    def test_national_districts_with_inheritance(self, service):
        payload = service.get_metric_data("results", 2, entity_id=1)

        assert payload["countField"] == "totalVotes"
        assert payload["count"] == 3
        rows = {row["unitId"]: row for row in payload["data"]}
        assert rows[10]["totalVotes"] == 220
        assert rows[10]["winner"]["group"] == "NUP"
        assert rows[12]["inherited"] is True
        assert rows[12]["inheritedFrom"] == "Alpha"
        assert rows[12]["totalVotes"] == 220
        assert payload["metadata"]["unitsWithData"] == 3
        assert payload["metadata"]["inheritedUnits"] == 1
        assert payload["metadata"]["storageLevel"] == 5
        assert payload["metadata"]["electionType"] == "PRES"

    def test_parent_filter_disables_inheritance(self, service):
        payload = service.get_metric_data("results", 3, parent_id=10, entity_id=1)

        assert [row["unitId"] for row in payload["data"]] == [100, 101]
        assert not any(row["inherited"] for row in payload["data"])

    def test_unattributed_records_are_reported(self, service, db_session):
        db_session.execute.return_value.all.return_value.append(result_row(55555, 1, 3))

        payload = service.get_metric_data("results", 2, entity_id=1)

        assert payload["metadata"]["unattributedRecords"] == 1


class TestGetAggregatedResults:
    """Tests for AtlasService.get_aggregated_results."""

    def test_joined_collection(self, service):
        collection = service.get_aggregated_results(1, 2)

        assert collection["type"] == "FeatureCollection"
        assert collection["bbox"] == [30.0, 0.0, 33.0, 1.0]
        assert collection["metadata"]["unitCount"] == 3
        charlie = collection["features"][2]["properties"]
        assert charlie["inherited"] is True
        assert charlie["winnerColor"] == "#ff0000"

    def test_units_without_results_use_neutral_color(self, service):
        service._resolver = DistrictSplitResolver([])

        collection = service.get_aggregated_results(1, 2)

        charlie = collection["features"][2]["properties"]
        assert charlie["noData"] is True
        assert charlie["winnerColor"] == "#cccccc"
        assert collection["metadata"]["unitCount"] == 2

    def test_multipolygons_are_exploded(self, service):
        islands = {
            "type": "MultiPolygon",
            "coordinates": [square(30, 0)["coordinates"], square(30, 2)["coordinates"]],
        }
        service.geometry.get_boundaries.return_value["features"] = [
            boundary(10, "Alpha", 2, 1, islands)
        ]

        collection = service.get_aggregated_results(1, 2)

        assert [f["id"] for f in collection["features"]] == ["10-0", "10-1"]
        assert collection["features"][1]["properties"]["totalVotes"] == 220

    def test_direct_parent_filters_boundaries_by_parent(self, service):
        service.get_aggregated_results(1, 3, parent_id=10)

        service.geometry.get_boundaries.assert_called_once_with(3, 10)

    def test_distant_ancestor_scopes_boundaries_through_tree(self, service):
        collection = service.get_aggregated_results(1, 5, parent_id=10)

        _, kwargs = service.geometry.get_boundaries.call_args
        assert service.geometry.get_boundaries.call_args.args == (5,)
        assert sorted(kwargs["unit_ids"]) == [10000, 10001, 10100]
        assert collection["metadata"]["parentId"] == 10

    def test_get_boundaries_uses_the_same_scope(self, service):
        boundaries = service.get_boundaries("5", parent_id=10)

        assert sorted(service.geometry.get_boundaries.call_args.kwargs["unit_ids"]) == [
            10000,
            10001,
            10100,
        ]
        assert boundaries["metadata"]["parentId"] == 10


class TestPointLookup:
    """Tests for AtlasService.point_lookup."""

    def test_units_finest_first(self, service, db_session):
        db_session.execute.return_value = query_result(
            rows=[
                SimpleNamespace(id=10000, name="Parish One", code=None, level=5, parent_id=1000),
                SimpleNamespace(id=10, name="Alpha", code="D10", level=2, parent_id=1),
            ]
        )

        found = service.point_lookup("32.58", "0.31")

        assert found["coordinates"] == {"lng": 32.58, "lat": 0.31}
        assert found["primary"]["unitId"] == 10000
        assert [u["level"] for u in found["units"]] == [5, 2]

    @pytest.mark.parametrize("lng,lat", [("abc", 1), (None, 1), (32.5, 91), (0.0, 0.0)])
    def test_invalid_or_foreign_coordinates(self, service, db_session, lng, lat):
        db_session.execute.reset_mock()
        with pytest.raises(InvalidCoordinates):
            service.point_lookup(lng, lat)
        db_session.execute.assert_not_called()

    def test_nothing_found(self, service, db_session):
        db_session.execute.return_value = query_result(rows=[])
        with pytest.raises(NotFound):
            service.point_lookup(32.5, 0.3)

    def test_missing_spatial_functions(self, service, db_session):
        db_session.execute.side_effect = ProgrammingError(
            "SELECT ...", {}, Exception("function st_makepoint(double precision) does not exist")
        )

        with pytest.raises(SpatialIndexUnavailable) as exc_info:
            service.point_lookup(32.5, 0.3)

        assert exc_info.value.to_payload()["fallback"] == "Use boundary-based navigation instead."
        db_session.rollback.assert_called_once()

    def test_other_database_errors_propagate(self, service, db_session):
        db_session.execute.side_effect = ProgrammingError(
            "SELECT ...", {}, Exception("relation does not exist")
        )
        with pytest.raises(ProgrammingError):
            service.point_lookup(32.5, 0.3)


class TestUnitDetailsAndTotals:
    """Tests for get_unit_details and get_national_totals."""

    def test_unit_details(self, service):
        details = service.get_unit_details(1000)

        assert [crumb["id"] for crumb in details["breadcrumb"]] == [1, 10, 100, 1000]
        assert details["childCount"] == 2
        assert details["levelName"] == "Subcounty"

    def test_unknown_unit(self, service):
        with pytest.raises(NotFound):
            service.get_unit_details(31337)

    def test_national_totals(self, service):
        totals = service.get_national_totals(1)

        assert totals["totalVotes"] == 320
        assert [c["id"] for c in totals["candidates"]] == [2, 1]
        assert totals["leader"]["name"] == "Candidate 2"
        assert totals["candidates"][0]["percentage"] == 65.62


def ranked(party, share):
    return RankedEntry(key=party, label=party, count=int(share * 100), share=share, group=party)


def unit_result(winner=None, records=1):
    return AggregateResult(
        unit_id=10,
        unit_name="Alpha",
        level=2,
        entries=[winner] if winner else [],
        winner=winner,
        record_count=records if winner else 0,
    )


class TestSwing:
    """Tests for swing classification."""

    @pytest.mark.parametrize(
        "previous,current,swing_type,value",
        [
            (ranked("NRM", 0.6), ranked("NRM", 0.7), "gained", 10.0),
            (ranked("NRM", 0.6), ranked("NRM", 0.5), "lost", -10.0),
            (ranked("NRM", 0.6), ranked("NRM", 0.6), "stable", 0.0),
            (ranked("NUP", 0.6), ranked("NRM", 0.5), "changed", 0.0),
            (None, ranked("NRM", 0.5), "new", 0.0),
            (ranked("NRM", 0.6), None, "no_data", 0.0),
        ],
    )
    def test_swing_row(self, previous, current, swing_type, value):
        row = swing_row(unit_result(current), unit_result(previous))

        assert row["swingType"] == swing_type
        assert row["swingValue"] == value
        assert row["noData"] is (swing_type == "no_data")

    def test_missing_previous_unit(self):
        assert swing_row(unit_result(ranked("NRM", 0.5)), None)["swingType"] == "new"

    def test_election_swing_collection(self, service, db_session):
        service._resolver = DistrictSplitResolver([])
        db_session.execute.side_effect = [
            query_result(first=election(1, "WOMAN_MP")),
            query_result(
                rows=[
                    result_row(10, 1, 60),
                    result_row(10, 2, 40),
                    result_row(11, 2, 90),
                    result_row(11, 1, 10),
                ]
            ),
            query_result(first=election(2, "WOMAN_MP")),
            query_result(
                rows=[
                    result_row(10, 1, 70),
                    result_row(10, 2, 30),
                    result_row(11, 1, 55),
                    result_row(11, 2, 45),
                    result_row(12, 2, 20),
                ]
            ),
        ]

        collection = service.get_election_swing(1, 2)

        swings = {f["id"]: f["properties"] for f in collection["features"]}
        assert swings[10]["swingType"] == "gained"
        assert swings[10]["swingValue"] == 10.0
        assert swings[11]["swingType"] == "changed"
        assert swings[11]["swingParty"] == "NRM"
        assert swings[12]["swingType"] == "new"
        assert swings[12]["swingColor"] == "#ff0000"
        assert collection["metadata"]["currentElectionId"] == 2
