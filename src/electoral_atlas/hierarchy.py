"""In-memory administrative hierarchy with a materialized ancestor closure.

The hierarchy is a forest of depth five (Subregion, District, Constituency,
Subcounty, Parish). It is loaded once, validated, and then treated as
read-only: every unit's ancestors are precomputed so aggregation can map a
record to its ancestor at any level with a single dictionary lookup instead
of walking parent pointers per record.
"""

import re
from dataclasses import dataclass
from typing import Any, Iterable, Iterator, Optional

from loguru import logger
from sqlalchemy import select
from sqlalchemy.orm import Session

from electoral_atlas.errors import InvalidLevel, NotFound
from electoral_atlas.models import AdministrativeUnit

MIN_LEVEL = 1
MAX_LEVEL = 5

LEVEL_NAMES = {
    1: "Subregion",
    2: "District",
    3: "Constituency",
    4: "Subcounty",
    5: "Parish",
}

# Dataset spellings -> canonical database spellings
SPELLING_VARIATIONS = {
    "LUWERO": "LUWEERO",
    "LWERO": "LUWEERO",
    "KABALORE": "KABAROLE",
    "KABALOLE": "KABAROLE",
    "RUKINGIRI": "RUKUNGIRI",
    "BUNDIBUJO": "BUNDIBUGYO",
    "KIOGA": "KYOGA",
}

_SUFFIX_PATTERN = re.compile(r"\s+(MUNICIPALITY|T\.?C\.?|TOWN\s+COUNCIL|DIVISION|WARD)$")


def validate_level(level: Any) -> int:
    """
    Check that ``level`` names one of the five administrative levels.

    Digit strings (as received from query parameters) are accepted.

    Returns:
        The level as an int

    Raises:
        InvalidLevel: If the level is not an integer between 1 and 5
    """
    if isinstance(level, bool):
        raise InvalidLevel(level)
    if isinstance(level, str) and level.strip().isdigit():
        level = int(level.strip())
    if not isinstance(level, int) or not MIN_LEVEL <= level <= MAX_LEVEL:
        raise InvalidLevel(level)
    return level


def normalize_name(name: Optional[str]) -> str:
    """Normalize a unit name for matching across datasets.

    Uppercases, collapses whitespace, turns underscores into hyphens, strips
    municipality/town-council style suffixes and applies known spelling fixes.
    """
    if not name:
        return ""
    normalized = " ".join(name.upper().replace("_", "-").split())
    normalized = _SUFFIX_PATTERN.sub("", normalized)
    return SPELLING_VARIATIONS.get(normalized, normalized)


@dataclass(frozen=True)
class AdminUnitNode:
    """A single administrative unit, without geometry."""

    id: int
    name: str
    level: int
    parent_id: Optional[int] = None
    code: Optional[str] = None
    registered_voters: Optional[int] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "level": self.level,
            "levelName": LEVEL_NAMES.get(self.level),
            "parentId": self.parent_id,
            "code": self.code,
            "registeredVoters": self.registered_voters,
        }


class AdminTree:
    """Read-only administrative forest with an ancestor closure.

    Args:
        units: All administrative units
        strict: Raise on forest violations instead of logging and continuing
    """

    def __init__(self, units: Iterable[AdminUnitNode], strict: bool = True):
        self._units: dict[int, AdminUnitNode] = {}
        self._children: dict[Optional[int], list[int]] = {}
        self._closure: dict[int, dict[int, int]] = {}

        for unit in units:
            validate_level(unit.level)
            self._units[unit.id] = unit

        self._violations = self._validate(strict)

        for unit in sorted(self._units.values(), key=lambda u: (u.level, u.id)):
            self._children.setdefault(unit.parent_id, []).append(unit.id)
            inherited = self._closure.get(unit.parent_id, {}) if unit.parent_id is not None else {}
            chain = dict(inherited)
            chain[unit.level] = unit.id
            self._closure[unit.id] = chain

        logger.debug(
            "Built admin tree: {} units, {} forest violations", len(self._units), self._violations
        )

    def _validate(self, strict: bool) -> int:
        violations = 0
        for unit in self._units.values():
            problem = None
            if unit.level == MIN_LEVEL:
                if unit.parent_id is not None:
                    problem = f"level-1 unit {unit.id} has parent {unit.parent_id}"
            else:
                parent = self._units.get(unit.parent_id) if unit.parent_id is not None else None
                if parent is None:
                    problem = f"unit {unit.id} (level {unit.level}) has no parent"
                elif parent.level != unit.level - 1:
                    problem = (
                        f"unit {unit.id} (level {unit.level}) has parent {parent.id} "
                        f"at level {parent.level}"
                    )
            if problem:
                if strict:
                    raise ValueError(f"Invalid administrative hierarchy: {problem}")
                logger.warning("Administrative hierarchy violation: {}", problem)
                violations += 1
        return violations

    def __len__(self) -> int:
        return len(self._units)

    def __contains__(self, unit_id: object) -> bool:
        return unit_id in self._units

    def __iter__(self) -> Iterator[AdminUnitNode]:
        return iter(self._units.values())

    @property
    def violations(self) -> int:
        return self._violations

    def get(self, unit_id: int) -> AdminUnitNode:
        """Return the unit with ``unit_id``.

        Raises:
            NotFound: If no such unit exists
        """
        try:
            return self._units[unit_id]
        except KeyError:
            raise NotFound(f"Administrative unit not found: {unit_id}") from None

    def units_at(self, level: int, parent_id: Optional[int] = None) -> list[AdminUnitNode]:
        """Units at ``level``, optionally restricted to descendants of ``parent_id``.

        ``parent_id`` may name an ancestor at any coarser level, not only the
        direct parent. Results are ordered by name, then id.
        """
        level = validate_level(level)
        if parent_id is None:
            units = [u for u in self._units.values() if u.level == level]
        else:
            anchor = self.get(parent_id)
            units = [
                u
                for u in self._units.values()
                if u.level == level and self._closure[u.id].get(anchor.level) == anchor.id
                and u.id != anchor.id
            ]
        return sorted(units, key=lambda u: (u.name, u.id))

    def children(self, unit_id: Optional[int]) -> list[AdminUnitNode]:
        """Direct children of ``unit_id`` (``None`` gives the level-1 roots)."""
        return [self._units[cid] for cid in self._children.get(unit_id, [])]

    def ancestor_at(self, unit_id: int, level: int) -> Optional[int]:
        """Id of the ancestor of ``unit_id`` at ``level`` (itself when levels match)."""
        chain = self._closure.get(unit_id)
        if chain is None:
            return None
        return chain.get(level)

    def closure(self, unit_id: int) -> dict[int, int]:
        """Mapping of level -> ancestor id for ``unit_id``, including itself."""
        return dict(self._closure.get(unit_id, {}))

    def breadcrumb(self, unit_id: int) -> list[AdminUnitNode]:
        """Ancestors of ``unit_id`` from the coarsest down to the unit itself."""
        self.get(unit_id)
        chain = self._closure[unit_id]
        return [self._units[chain[level]] for level in sorted(chain)]

    def descendants_at(self, unit_id: int, level: int) -> list[AdminUnitNode]:
        """Descendants of ``unit_id`` at a finer ``level``."""
        anchor = self.get(unit_id)
        if validate_level(level) <= anchor.level:
            return []
        return self.units_at(level, parent_id=unit_id)

    def find_by_name(self, name: str, level: Optional[int] = None) -> Optional[AdminUnitNode]:
        """Find a unit by normalized name, optionally at a given level.

        When several units share the name the lowest id is returned.
        """
        wanted = normalize_name(name)
        matches = [
            u
            for u in self._units.values()
            if normalize_name(u.name) == wanted and (level is None or u.level == level)
        ]
        if not matches:
            return None
        if len(matches) > 1:
            logger.debug("Name '{}' matches {} units, using lowest id", name, len(matches))
        return min(matches, key=lambda u: u.id)


def load_admin_tree(session: Session, strict: bool = False) -> AdminTree:
    """
    Load every administrative unit (without geometry) into an AdminTree.

    Args:
        session: Database session
        strict: Raise on hierarchy violations instead of logging them

    Returns:
        Populated AdminTree
    """
    stmt = select(
        AdministrativeUnit.id,
        AdministrativeUnit.name,
        AdministrativeUnit.level,
        AdministrativeUnit.parent_id,
        AdministrativeUnit.code,
        AdministrativeUnit.registered_voters,
    )
    rows = session.execute(stmt).all()
    logger.info("Loaded {} administrative units", len(rows))

    return AdminTree(
        (
            AdminUnitNode(
                id=row.id,
                name=row.name,
                level=row.level,
                parent_id=row.parent_id,
                code=row.code,
                registered_voters=row.registered_voters,
            )
            for row in rows
        ),
        strict=strict,
    )
