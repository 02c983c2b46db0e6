"""District-split lineage: back-filling new districts from the district they split from."""

from dataclasses import dataclass
from typing import Iterable, Mapping, Optional

from loguru import logger
from sqlalchemy import select
from sqlalchemy.orm import Session

from electoral_atlas.aggregation.base import AggregateResult
from electoral_atlas.models import DistrictHistory

DISTRICT_LEVEL = 2


@dataclass(frozen=True)
class DistrictLineage:
    """A district created in ``split_year`` out of ``parent_unit_id``."""

    current_unit_id: int
    parent_unit_id: int
    split_year: int


def load_lineage(session: Session) -> list[DistrictLineage]:
    """Load every district lineage entry."""
    rows = session.execute(
        select(
            DistrictHistory.current_district_id,
            DistrictHistory.parent_district_id,
            DistrictHistory.split_year,
        )
    ).all()
    logger.debug("Loaded {} district lineage entries", len(rows))
    return [
        DistrictLineage(
            current_unit_id=row.current_district_id,
            parent_unit_id=row.parent_district_id,
            split_year=row.split_year,
        )
        for row in rows
    ]


class DistrictSplitResolver:
    """Copies a pre-split district's aggregate into districts that have none.

    Only the national district view (level 2, no parent filter) is resolved;
    lineage is recorded for districts only.
    """

    def __init__(self, lineage: Iterable[DistrictLineage]):
        self._by_current: dict[int, DistrictLineage] = {}
        for entry in lineage:
            if entry.current_unit_id == entry.parent_unit_id:
                logger.warning(
                    "Ignoring self-referencing lineage for district {}", entry.current_unit_id
                )
                continue
            self._by_current[entry.current_unit_id] = entry

    def __len__(self) -> int:
        return len(self._by_current)

    def lineage_for(self, unit_id: int) -> Optional[DistrictLineage]:
        return self._by_current.get(unit_id)

    def resolve_inheritance(
        self,
        level: int,
        results: Mapping[int, AggregateResult],
        parent_id: Optional[int] = None,
    ) -> dict[int, AggregateResult]:
        """
        Fill districts without data from their pre-split district.

        A district with no records and a lineage entry receives a copy of its
        ancestor's result, flagged ``inherited``. Ancestors that are missing,
        have no data, or are themselves inherited leave the district as
        "no data".

        Args:
            level: Level of ``results``
            results: Aggregated results keyed by unit id
            parent_id: Parent filter the results were computed with

        Returns:
            New mapping; ``results`` is not modified
        """
        resolved = dict(results)
        if level != DISTRICT_LEVEL or parent_id is not None:
            return resolved

        inherited = 0
        for unit_id, result in results.items():
            if result.has_data:
                continue
            entry = self._by_current.get(unit_id)
            if entry is None:
                continue
            source = results.get(entry.parent_unit_id)
            if source is None or source.inherited or not source.has_data:
                logger.debug(
                    "District {} has lineage to {} but the ancestor has no data",
                    unit_id,
                    entry.parent_unit_id,
                )
                continue
            resolved[unit_id] = result.inherit_from(source)
            inherited += 1

        if inherited:
            logger.info("Inherited results for {} split districts", inherited)
        return resolved
