"""Abstract base classes and result types for metric domains."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field, replace
from typing import Any, Optional, Union

from sqlalchemy.orm import Session

from electoral_atlas.config import Settings

EntryKey = Union[int, str]


@dataclass(frozen=True)
class MetricRecord:
    """One grouped row of raw data attached to the unit it is stored at.

    ``key`` identifies the ranked entry (candidate, issue category) the count
    belongs to; ``None`` means the record only contributes to the unit total
    (demographics have no ranked entries).
    """

    unit_id: int
    count: int
    key: Optional[EntryKey] = None
    label: Optional[str] = None
    group: Optional[str] = None
    color: Optional[str] = None
    extras: dict[str, int] = field(default_factory=dict)


@dataclass(frozen=True)
class RankedEntry:
    """A candidate or category with its summed count inside one unit."""

    key: EntryKey
    label: Optional[str]
    count: int
    share: float = 0.0
    group: Optional[str] = None
    color: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.key,
            "name": self.label,
            "group": self.group,
            "color": self.color,
            "count": self.count,
            "percentage": round(self.share * 100, 2),
        }


@dataclass(frozen=True)
class DomainInstance:
    """A concrete dataset within a domain, e.g. one election or one census year."""

    domain: str
    entity_id: Optional[Union[int, str]]
    storage_level: int
    label: Optional[str] = None
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class AggregateResult:
    """Per-unit statistics at a requested level.

    ``record_count`` counts the grouped records attributed to the unit. A unit
    with no records and no inherited values is rendered as "no data".
    """

    unit_id: int
    unit_name: str
    level: int
    parent_id: Optional[int] = None
    total_count: int = 0
    entries: list[RankedEntry] = field(default_factory=list)
    winner: Optional[RankedEntry] = None
    margin: float = 0.0
    extras: dict[str, Any] = field(default_factory=dict)
    record_count: int = 0
    inherited: bool = False
    inherited_from: Optional[str] = None

    @property
    def has_data(self) -> bool:
        return self.record_count > 0 or self.inherited

    @property
    def no_data(self) -> bool:
        return not self.has_data

    def inherit_from(self, source: "AggregateResult") -> "AggregateResult":
        """Copy of this unit carrying ``source``'s statistics, flagged as inherited."""
        return replace(
            self,
            total_count=source.total_count,
            entries=list(source.entries),
            winner=source.winner,
            margin=source.margin,
            extras=dict(source.extras),
            record_count=0,
            inherited=True,
            inherited_from=source.unit_name,
        )

    def to_dict(
        self, count_field: str = "totalCount", entries_field: Optional[str] = "entries"
    ) -> dict[str, Any]:
        data: dict[str, Any] = {
            "unitId": self.unit_id,
            "unitName": self.unit_name,
            "level": self.level,
            "parentId": self.parent_id,
            count_field: self.total_count,
        }
        if entries_field:
            data[entries_field] = [entry.to_dict() for entry in self.entries]
            data["winner"] = self.winner.to_dict() if self.winner else None
            data["winnerColor"] = self.winner.color if self.winner else None
            data["margin"] = round(self.margin, 4)
        data.update(self.extras)
        data["inherited"] = self.inherited
        data["inheritedFrom"] = self.inherited_from
        data["noData"] = self.no_data
        return data


class MetricDomain(ABC):
    """Abstract base class for a family of metrics that can be aggregated."""

    def __init__(self, settings: Settings):
        """Initialize the domain with application settings.

        Args:
            settings: Settings providing status filters and storage levels
        """
        self.settings = settings

    @property
    @abstractmethod
    def domain_name(self) -> str:
        """Unique identifier for this domain."""
        pass

    @property
    @abstractmethod
    def count_field(self) -> str:
        """Name of the per-unit total in serialized output."""
        pass

    @property
    def entries_field(self) -> Optional[str]:
        """Name of the ranked entry list in serialized output, or None."""
        return None

    @property
    def supports_inheritance(self) -> bool:
        """Whether district-split lineage may back-fill missing district values."""
        return False

    @abstractmethod
    def resolve(
        self, session: Session, entity_id: Optional[Union[int, str]], target_level: int
    ) -> DomainInstance:
        """Look up the dataset and the level its records are stored at.

        Args:
            session: Database session
            entity_id: Election id, census year, ... (domain-specific, may be None)
            target_level: Level the caller wants results at

        Returns:
            DomainInstance describing the dataset

        Raises:
            NotFound: If the dataset does not exist
        """
        pass

    @abstractmethod
    def fetch_records(
        self,
        session: Session,
        instance: DomainInstance,
        unit_ids: Optional[list[int]] = None,
        **filters: Any,
    ) -> list[MetricRecord]:
        """Fetch public records grouped by storage unit and entry.

        Args:
            session: Database session
            instance: Resolved dataset
            unit_ids: Restrict to these storage-level units (None for all)
            **filters: Domain-specific filters

        Returns:
            List of MetricRecord objects
        """
        pass

    def finalize(self, result: AggregateResult) -> AggregateResult:
        """Hook for derived statistics once a unit's counts are summed."""
        return result


def check_filters(domain_name: str, filters: dict[str, Any], allowed: set[str]) -> None:
    """Reject filter names a domain does not understand.

    Raises:
        ValueError: If any filter is not in ``allowed``
    """
    unknown = sorted(name for name in filters if name not in allowed)
    if unknown:
        raise ValueError(
            f"Unsupported filters for {domain_name}: {', '.join(unknown)}. "
            f"Supported: {', '.join(sorted(allowed)) or 'none'}"
        )


def coerce_entity_id(value: Any, what: str) -> int:
    """Convert an entity id received as text or number to int.

    Raises:
        ValueError: If the value is not an integer
    """
    if isinstance(value, bool):
        raise ValueError(f"Invalid {what}: {value!r}")
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValueError(f"Invalid {what}: {value!r}") from None
