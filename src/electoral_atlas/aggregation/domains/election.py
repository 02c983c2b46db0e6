"""Election results domain: candidate votes per administrative unit."""

from typing import Any, Optional, Union

from loguru import logger
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from electoral_atlas.errors import NotFound
from electoral_atlas.models import (
    AdministrativeUnit,
    Candidate,
    Election,
    ElectionType,
    PoliticalParty,
    Result,
)

from ..base import (
    DomainInstance,
    MetricDomain,
    MetricRecord,
    check_filters,
    coerce_entity_id,
)
from ..registry import MetricDomainRegistry

INDEPENDENT_ABBREVIATION = "IND"
INDEPENDENT_COLOR = "#808080"


@MetricDomainRegistry.register
class ElectionResultsDomain(MetricDomain):
    """Approved votes per candidate, stored at a level fixed by the election type.

    Presidential results are captured per parish, constituency MP results per
    constituency and district woman MP results per district.
    """

    @property
    def domain_name(self) -> str:
        return "results"

    @property
    def count_field(self) -> str:
        return "totalVotes"

    @property
    def entries_field(self) -> Optional[str]:
        return "candidates"

    @property
    def supports_inheritance(self) -> bool:
        return True

    def storage_level_for(self, type_code: Optional[str]) -> int:
        """Level results of an election type are recorded at."""
        config = self.settings.aggregation
        if type_code is None:
            return config.default_storage_level
        return config.storage_levels.get(type_code, config.default_storage_level)

    def resolve(
        self, session: Session, entity_id: Optional[Union[int, str]], target_level: int
    ) -> DomainInstance:
        if entity_id is None:
            raise NotFound("An election id is required for election results")
        election_id = coerce_entity_id(entity_id, "election id")

        stmt = (
            select(Election.id, Election.name, Election.year, ElectionType.code)
            .outerjoin(ElectionType, Election.election_type_id == ElectionType.id)
            .where(Election.id == election_id)
        )
        row = session.execute(stmt).first()
        if row is None:
            raise NotFound(f"Election not found: {election_id}")

        storage_level = self.storage_level_for(row.code)
        logger.debug(
            "Election {} ({}) type={} stores results at level {}",
            election_id,
            row.name,
            row.code,
            storage_level,
        )
        return DomainInstance(
            domain=self.domain_name,
            entity_id=election_id,
            storage_level=storage_level,
            label=row.name,
            metadata={"year": row.year, "electionType": row.code},
        )

    def fetch_records(
        self,
        session: Session,
        instance: DomainInstance,
        unit_ids: Optional[list[int]] = None,
        **filters: Any,
    ) -> list[MetricRecord]:
        check_filters(self.domain_name, filters, {"candidate_ids"})

        stmt = (
            select(
                Result.admin_unit_id,
                Candidate.id.label("candidate_id"),
                Candidate.name.label("candidate_name"),
                PoliticalParty.abbreviation,
                PoliticalParty.color,
                func.sum(Result.votes).label("votes"),
            )
            .join(Candidate, Result.candidate_id == Candidate.id)
            .outerjoin(PoliticalParty, Candidate.party_id == PoliticalParty.id)
            .join(AdministrativeUnit, Result.admin_unit_id == AdministrativeUnit.id)
            .where(
                Result.election_id == instance.entity_id,
                Result.status.in_(self.settings.aggregation.public_result_statuses),
                AdministrativeUnit.level == instance.storage_level,
            )
            .group_by(
                Result.admin_unit_id,
                Candidate.id,
                Candidate.name,
                PoliticalParty.abbreviation,
                PoliticalParty.color,
            )
        )
        if unit_ids is not None:
            stmt = stmt.where(Result.admin_unit_id.in_(unit_ids))
        if filters.get("candidate_ids"):
            stmt = stmt.where(Candidate.id.in_(filters["candidate_ids"]))

        rows = session.execute(stmt).all()
        logger.debug("Fetched {} grouped result rows for election {}", len(rows), instance.entity_id)

        return [
            MetricRecord(
                unit_id=row.admin_unit_id,
                count=int(row.votes or 0),
                key=row.candidate_id,
                label=row.candidate_name,
                group=row.abbreviation or INDEPENDENT_ABBREVIATION,
                color=row.color or INDEPENDENT_COLOR,
            )
            for row in rows
        ]
