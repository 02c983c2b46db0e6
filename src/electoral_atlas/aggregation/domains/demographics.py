"""Census demographics domain: parish-level population counts."""

from typing import Any, Optional, Union

from loguru import logger
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from electoral_atlas.errors import NotFound
from electoral_atlas.models import AdministrativeUnit, Demographics

from ..base import (
    AggregateResult,
    DomainInstance,
    MetricDomain,
    MetricRecord,
    check_filters,
    coerce_entity_id,
)
from ..registry import MetricDomainRegistry

PARISH_LEVEL = 5

# Demographics column -> serialized field
BREAKDOWN_FIELDS = {
    "male_population": "malePopulation",
    "female_population": "femalePopulation",
    "voting_age_population": "votingAgePopulation",
    "youth_population": "youthPopulation",
    "elderly_population": "elderlyPopulation",
    "number_of_households": "numberOfHouseholds",
}


def _percent(part: int, whole: int) -> float:
    return round(part / whole * 100, 1) if whole else 0.0


@MetricDomainRegistry.register
class DemographicsDomain(MetricDomain):
    """Population totals and breakdowns, recorded per parish for a census year."""

    @property
    def domain_name(self) -> str:
        return "demographics"

    @property
    def count_field(self) -> str:
        return "totalPopulation"

    def resolve(
        self, session: Session, entity_id: Optional[Union[int, str]], target_level: int
    ) -> DomainInstance:
        census_year = (
            self.settings.default_census_year
            if entity_id is None
            else coerce_entity_id(entity_id, "census year")
        )

        stmt = select(func.count(Demographics.id)).where(Demographics.census_year == census_year)
        row_count = session.execute(stmt).scalar() or 0
        if row_count == 0:
            raise NotFound(f"No demographics data for census year {census_year}")

        logger.debug("Census {} has {} parish rows", census_year, row_count)
        return DomainInstance(
            domain=self.domain_name,
            entity_id=census_year,
            storage_level=PARISH_LEVEL,
            label=f"Census {census_year}",
            metadata={"censusYear": census_year},
        )

    def fetch_records(
        self,
        session: Session,
        instance: DomainInstance,
        unit_ids: Optional[list[int]] = None,
        **filters: Any,
    ) -> list[MetricRecord]:
        check_filters(self.domain_name, filters, set())

        sums = [
            func.sum(getattr(Demographics, column)).label(column) for column in BREAKDOWN_FIELDS
        ]
        stmt = (
            select(
                Demographics.admin_unit_id,
                func.sum(Demographics.total_population).label("total_population"),
                *sums,
            )
            .join(AdministrativeUnit, Demographics.admin_unit_id == AdministrativeUnit.id)
            .where(
                Demographics.census_year == instance.entity_id,
                AdministrativeUnit.level == instance.storage_level,
            )
            .group_by(Demographics.admin_unit_id)
        )
        if unit_ids is not None:
            stmt = stmt.where(Demographics.admin_unit_id.in_(unit_ids))

        rows = session.execute(stmt).all()
        logger.debug("Fetched demographics for {} parishes", len(rows))

        records = []
        for row in rows:
            extras = {
                field: int(getattr(row, column) or 0) for column, field in BREAKDOWN_FIELDS.items()
            }
            extras["parishCount"] = 1
            records.append(
                MetricRecord(
                    unit_id=row.admin_unit_id,
                    count=int(row.total_population or 0),
                    extras=extras,
                )
            )
        return records

    def finalize(self, result: AggregateResult) -> AggregateResult:
        for field in BREAKDOWN_FIELDS.values():
            result.extras.setdefault(field, 0)
        result.extras.setdefault("parishCount", 0)
        result.extras["votingAgePercent"] = _percent(
            result.extras["votingAgePopulation"], result.total_count
        )
        result.extras["malePercent"] = _percent(result.extras["malePopulation"], result.total_count)
        return result
