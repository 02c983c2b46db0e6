"""Tests for rolling metric records up the administrative hierarchy."""

from types import SimpleNamespace
from unittest.mock import Mock

import pytest
from sqlalchemy.orm import Session

from electoral_atlas.aggregation import (
    DomainInstance,
    MetricAggregator,
    MetricRecord,
    aggregate_records,
    scope_units,
)
from electoral_atlas.errors import InvalidDomain, InvalidLevel, NotFound
from electoral_atlas.hierarchy import AdminTree

from conftest import unit

PRESIDENTIAL = DomainInstance(domain="results", entity_id=1, storage_level=5)


def vote(unit_id, candidate_id, count):
    party = {1: "NRM", 2: "NUP"}.get(candidate_id)
    return MetricRecord(
        unit_id=unit_id,
        count=count,
        key=candidate_id,
        label=f"Candidate {candidate_id}",
        group=party,
        color="#ffff00" if candidate_id == 1 else "#ff0000",
    )


@pytest.fixture
def parish_votes():
    return [
        vote(10000, 1, 100),
        vote(10000, 2, 50),
        vote(10001, 1, 30),
        vote(10001, 2, 70),
        vote(10100, 1, 20),
        vote(10100, 2, 20),
        vote(11000, 1, 10),
        vote(11000, 2, 90),
    ]


class TestScopeUnits:
    """Tests for scope_units."""

    def test_national_scope(self, sample_tree):
        assert [u.id for u in scope_units(sample_tree, 2)] == [10, 11, 12]

    def test_parent_coarser_than_level(self, sample_tree):
        assert [u.id for u in scope_units(sample_tree, 4, parent_id=10)] == [1000, 1010]

    def test_parent_finer_than_level_gives_its_ancestor(self, sample_tree):
        assert [u.id for u in scope_units(sample_tree, 2, parent_id=1000)] == [10]


class TestAggregateRecords:
    """Tests for aggregate_records."""

    def test_rolls_parishes_up_to_districts(self, sample_tree, parish_votes):
        results, stats = aggregate_records(sample_tree, PRESIDENTIAL, parish_votes, 2)

        assert list(results) == [10, 11, 12]
        alpha = results[10]
        assert alpha.total_count == 290
        assert alpha.winner.key == 1
        assert [e.count for e in alpha.entries] == [150, 140]
        assert alpha.margin == pytest.approx(10 / 290)
        assert results[11].winner.key == 2
        assert results[11].winner.group == "NUP"
        assert stats["attributed"] == 8

    def test_every_unit_in_scope_is_present(self, sample_tree, parish_votes):
        """Units without records are returned as no-data rather than omitted."""
        results, _ = aggregate_records(sample_tree, PRESIDENTIAL, parish_votes, 2)

        charlie = results[12]
        assert charlie.total_count == 0
        assert charlie.winner is None
        assert charlie.no_data
        assert charlie.to_dict()["noData"] is True

    def test_totals_are_conserved_across_levels(self, sample_tree, parish_votes):
        expected = sum(r.count for r in parish_votes)
        for level in (1, 2, 3, 4, 5):
            results, _ = aggregate_records(sample_tree, PRESIDENTIAL, parish_votes, level)
            assert sum(r.total_count for r in results.values()) == expected

    def test_entries_sum_to_total(self, sample_tree, parish_votes):
        results, _ = aggregate_records(sample_tree, PRESIDENTIAL, parish_votes, 3)
        for result in results.values():
            assert sum(e.count for e in result.entries) == result.total_count

    def test_tie_goes_to_lowest_entry_id(self, sample_tree):
        records = [vote(10100, 2, 20), vote(10100, 1, 20)]
        results, _ = aggregate_records(sample_tree, PRESIDENTIAL, records, 3, parent_id=10)

        assert results[101].winner.key == 1
        assert results[101].margin == 0.0

    def test_parent_filter_limits_output(self, sample_tree, parish_votes):
        results, stats = aggregate_records(
            sample_tree, PRESIDENTIAL, parish_votes, 3, parent_id=10
        )

        assert list(results) == [100, 101]
        assert results[100].total_count == 250
        assert stats["out_of_scope"] == 2

    def test_storage_coarser_than_target_reports_at_storage_level(self, sample_tree):
        constituency = DomainInstance(domain="results", entity_id=2, storage_level=3)
        records = [vote(100, 1, 5), vote(110, 2, 7)]

        results, _ = aggregate_records(sample_tree, constituency, records, 5)

        assert set(results) == {100, 101, 110}
        assert {r.level for r in results.values()} == {3}
        assert results[110].total_count == 7

    def test_unattributed_records_are_counted(self, sample_units):
        tree = AdminTree(sample_units + [unit(20000, "Lost Parish", 5, 777)], strict=False)
        records = [
            vote(10000, 1, 10),
            vote(99999, 1, 5),  # unknown unit
            vote(100, 1, 5),  # not at the storage level
            vote(20000, 1, 5),  # no ancestor at level 2
        ]

        results, stats = aggregate_records(tree, PRESIDENTIAL, records, 2)

        assert stats == {
            "records": 4,
            "attributed": 1,
            "unknown_unit": 1,
            "off_level": 1,
            "orphaned": 1,
            "out_of_scope": 0,
        }
        assert results[10].total_count == 10

    def test_zero_votes_have_no_winner(self, sample_tree):
        results, _ = aggregate_records(sample_tree, PRESIDENTIAL, [vote(10000, 1, 0)], 2)

        assert results[10].winner is None
        assert results[10].has_data

    def test_invalid_level(self, sample_tree):
        with pytest.raises(InvalidLevel):
            aggregate_records(sample_tree, PRESIDENTIAL, [], 6)


def result_row(unit_id, candidate_id, votes):
    return SimpleNamespace(
        admin_unit_id=unit_id,
        candidate_id=candidate_id,
        candidate_name=f"Candidate {candidate_id}",
        abbreviation={1: "NRM", 2: "NUP"}.get(candidate_id),
        color=None,
        votes=votes,
    )


@pytest.fixture
def election_session():
    """Session returning a presidential election and its parish results."""
    session = Mock(spec=Session)
    session.execute.return_value.first.return_value = SimpleNamespace(
        id=1, name="Presidential 2021", year=2021, code="PRES"
    )
    session.execute.return_value.all.return_value = [
        result_row(10000, 1, 100),
        result_row(10000, 2, 50),
        result_row(11000, 2, 90),
        result_row(11000, 3, 10),
    ]
    return session


class TestMetricAggregator:
    """Tests for MetricAggregator."""

    def test_run_aggregates_election_results(self, sample_tree, test_settings, election_session):
        aggregation = MetricAggregator(sample_tree, test_settings).run(
            election_session, "results", 2, entity_id="1"
        )

        assert aggregation.instance.storage_level == 5
        assert aggregation.level == 2
        assert aggregation.total_count == 250
        assert aggregation.results[10].winner.group == "NRM"
        # Candidates without a party are independents
        bravo_entries = {e.key: e for e in aggregation.results[11].entries}
        assert bravo_entries[3].group == "IND"
        assert bravo_entries[3].color == "#808080"

    def test_invalid_level_raised_before_query(self, sample_tree, test_settings):
        session = Mock(spec=Session)
        with pytest.raises(InvalidLevel):
            MetricAggregator(sample_tree, test_settings).run(session, "results", 0, entity_id=1)
        session.execute.assert_not_called()

    def test_unknown_domain_lists_available(self, sample_tree, test_settings):
        session = Mock(spec=Session)
        with pytest.raises(InvalidDomain) as exc_info:
            MetricAggregator(sample_tree, test_settings).run(session, "weather", 2)
        assert "results" in exc_info.value.available
        session.execute.assert_not_called()

    def test_unknown_parent(self, sample_tree, test_settings):
        session = Mock(spec=Session)
        with pytest.raises(NotFound):
            MetricAggregator(sample_tree, test_settings).run(
                session, "results", 3, parent_id=4242, entity_id=1
            )
        session.execute.assert_not_called()

    def test_missing_election(self, sample_tree, test_settings):
        session = Mock(spec=Session)
        session.execute.return_value.first.return_value = None
        with pytest.raises(NotFound, match="Election not found"):
            MetricAggregator(sample_tree, test_settings).aggregate(
                session, "results", 2, entity_id=5
            )

    def test_national_totals(self, sample_tree, test_settings, election_session):
        result = MetricAggregator(sample_tree, test_settings).national_totals(
            election_session, "results", 1
        )

        assert result.unit_name == "Uganda"
        assert result.total_count == 250
        assert [e.key for e in result.entries] == [2, 1, 3]
        assert result.winner.key == 2
        assert result.entries[0].share == pytest.approx(140 / 250)
