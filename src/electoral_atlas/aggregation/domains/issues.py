"""Electoral issues domain: incident counts and casualties per unit."""

from datetime import date
from typing import Any, Optional, Union

from loguru import logger
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from electoral_atlas.errors import NotFound
from electoral_atlas.models import Election, ElectoralIssue, IssueCategory

from ..base import (
    AggregateResult,
    DomainInstance,
    MetricDomain,
    MetricRecord,
    check_filters,
    coerce_entity_id,
)
from ..registry import MetricDomainRegistry

# Each incident records its location at every level from district down
LOCATION_COLUMNS = {
    2: ElectoralIssue.district_id,
    3: ElectoralIssue.constituency_id,
    4: ElectoralIssue.subcounty_id,
    5: ElectoralIssue.parish_id,
}

TOP_CATEGORY_LIMIT = 5


@MetricDomainRegistry.register
class IssuesDomain(MetricDomain):
    """Public electoral incidents counted by category.

    Because incidents carry a location column for every level from district
    down, records are read at the requested level directly; subregion views
    roll up from districts.
    """

    @property
    def domain_name(self) -> str:
        return "issues"

    @property
    def count_field(self) -> str:
        return "issueCount"

    @property
    def entries_field(self) -> Optional[str]:
        return "categories"

    def resolve(
        self, session: Session, entity_id: Optional[Union[int, str]], target_level: int
    ) -> DomainInstance:
        storage_level = max(target_level, min(LOCATION_COLUMNS))

        election_id = None
        label = "All incidents"
        if entity_id is not None:
            election_id = coerce_entity_id(entity_id, "election id")
            row = session.execute(
                select(Election.id, Election.name).where(Election.id == election_id)
            ).first()
            if row is None:
                raise NotFound(f"Election not found: {election_id}")
            label = f"Incidents: {row.name}"

        return DomainInstance(
            domain=self.domain_name,
            entity_id=election_id,
            storage_level=storage_level,
            label=label,
        )

    def fetch_records(
        self,
        session: Session,
        instance: DomainInstance,
        unit_ids: Optional[list[int]] = None,
        **filters: Any,
    ) -> list[MetricRecord]:
        check_filters(
            self.domain_name,
            filters,
            {"category_ids", "start_date", "end_date", "min_severity"},
        )
        location = LOCATION_COLUMNS[instance.storage_level]

        stmt = (
            select(
                location.label("unit_id"),
                IssueCategory.id.label("category_id"),
                IssueCategory.name,
                IssueCategory.code,
                IssueCategory.color,
                func.count(ElectoralIssue.id).label("issue_count"),
                func.sum(ElectoralIssue.death_count).label("deaths"),
                func.sum(ElectoralIssue.injury_count).label("injuries"),
                func.sum(ElectoralIssue.arrest_count).label("arrests"),
            )
            .join(IssueCategory, ElectoralIssue.issue_category_id == IssueCategory.id)
            .where(
                location.isnot(None),
                ElectoralIssue.status.in_(self.settings.aggregation.public_issue_statuses),
            )
            .group_by(
                location,
                IssueCategory.id,
                IssueCategory.name,
                IssueCategory.code,
                IssueCategory.color,
            )
        )
        if instance.entity_id is not None:
            stmt = stmt.where(ElectoralIssue.election_id == instance.entity_id)
        if unit_ids is not None:
            stmt = stmt.where(location.in_(unit_ids))
        if filters.get("category_ids"):
            stmt = stmt.where(IssueCategory.id.in_(filters["category_ids"]))
        if filters.get("start_date"):
            stmt = stmt.where(ElectoralIssue.date >= _as_date(filters["start_date"]))
        if filters.get("end_date"):
            stmt = stmt.where(ElectoralIssue.date <= _as_date(filters["end_date"]))
        if filters.get("min_severity"):
            stmt = stmt.where(IssueCategory.severity >= int(filters["min_severity"]))

        rows = session.execute(stmt).all()
        logger.debug(
            "Fetched {} grouped issue rows at level {}", len(rows), instance.storage_level
        )

        return [
            MetricRecord(
                unit_id=row.unit_id,
                count=int(row.issue_count or 0),
                key=row.category_id,
                label=row.name,
                group=row.code,
                color=row.color,
                extras={
                    "deaths": int(row.deaths or 0),
                    "injuries": int(row.injuries or 0),
                    "arrests": int(row.arrests or 0),
                },
            )
            for row in rows
        ]

    def finalize(self, result: AggregateResult) -> AggregateResult:
        for field in ("deaths", "injuries", "arrests"):
            result.extras.setdefault(field, 0)
        result.extras["topCategories"] = [
            entry.label for entry in result.entries[:TOP_CATEGORY_LIMIT]
        ]
        return result


def _as_date(value: Union[str, date]) -> date:
    """Accept ISO date strings as well as date objects."""
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(value)
    except ValueError:
        raise ValueError(f"Invalid date: {value!r}. Expected YYYY-MM-DD") from None
