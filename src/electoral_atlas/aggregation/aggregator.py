"""Aggregation of stored metric records up the administrative hierarchy.

Records arrive already grouped by (storage unit, entry) from the database.
Each record is attributed to its ancestor at the requested level through the
tree's precomputed closure, so the whole request is one pass over the
records rather than a tree walk per target unit.
"""

import time
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Iterable, Optional, Union

from loguru import logger
from sqlalchemy.orm import Session

from electoral_atlas.config import Settings
from electoral_atlas.hierarchy import AdminTree, AdminUnitNode, validate_level

from .base import (
    AggregateResult,
    DomainInstance,
    EntryKey,
    MetricDomain,
    MetricRecord,
    RankedEntry,
)
from .registry import MetricDomainRegistry


@dataclass
class Aggregation:
    """Outcome of one aggregation request."""

    domain: MetricDomain
    instance: DomainInstance
    requested_level: int
    level: int
    parent_id: Optional[int]
    results: dict[int, AggregateResult]
    stats: dict[str, int] = field(default_factory=dict)

    @property
    def total_count(self) -> int:
        return sum(result.total_count for result in self.results.values())


class _UnitAccumulator:
    def __init__(self) -> None:
        self.total = 0
        self.record_count = 0
        self.entries: dict[EntryKey, list[Any]] = {}
        self.extras: Counter = Counter()

    def add(self, record: MetricRecord) -> None:
        self.total += record.count
        self.record_count += 1
        if record.key is not None:
            entry = self.entries.get(record.key)
            if entry is None:
                self.entries[record.key] = [record.label, record.group, record.color, record.count]
            else:
                entry[3] += record.count
        self.extras.update(record.extras)


def _entry_sort_key(item: tuple[EntryKey, list[Any]]) -> tuple:
    key, values = item
    # Highest count first; equal counts fall back to the lowest entry id
    return (-values[3], isinstance(key, str), key)


def _build_result(
    unit_id: int,
    unit_name: str,
    level: int,
    parent_id: Optional[int],
    acc: _UnitAccumulator,
) -> AggregateResult:
    total = acc.total
    entries = [
        RankedEntry(
            key=key,
            label=label,
            count=count,
            share=(count / total) if total else 0.0,
            group=group,
            color=color,
        )
        for key, (label, group, color, count) in sorted(acc.entries.items(), key=_entry_sort_key)
    ]
    winner = entries[0] if entries and total > 0 else None
    margin = entries[0].share - entries[1].share if len(entries) >= 2 and total > 0 else 0.0
    return AggregateResult(
        unit_id=unit_id,
        unit_name=unit_name,
        level=level,
        parent_id=parent_id,
        total_count=total,
        entries=entries,
        winner=winner,
        margin=margin,
        extras=dict(acc.extras),
        record_count=acc.record_count,
    )


def scope_units(tree: AdminTree, level: int, parent_id: Optional[int] = None) -> list[AdminUnitNode]:
    """Units at ``level`` that fall inside ``parent_id``.

    When the parent is at or below ``level`` the scope is the parent's own
    ancestor at ``level``.
    """
    if parent_id is None:
        return tree.units_at(level)
    parent = tree.get(parent_id)
    if parent.level < level:
        return tree.units_at(level, parent_id=parent_id)
    ancestor = tree.ancestor_at(parent_id, level)
    return [tree.get(ancestor)] if ancestor is not None else []


def aggregate_records(
    tree: AdminTree,
    instance: DomainInstance,
    records: Iterable[MetricRecord],
    target_level: int,
    parent_id: Optional[int] = None,
    domain: Optional[MetricDomain] = None,
) -> tuple[dict[int, AggregateResult], dict[str, int]]:
    """
    Sum records into per-unit results at ``target_level``.

    Records stored below the target level are rolled up to their ancestor.
    Records stored above it cannot be split, so results are reported at the
    storage level instead (the returned results carry that level).

    Args:
        tree: Administrative hierarchy
        instance: Dataset the records belong to
        records: Grouped records at the instance's storage level
        target_level: Requested level (1-5)
        parent_id: Restrict output to units inside this unit
        domain: Domain whose ``finalize`` hook post-processes each result

    Returns:
        Tuple of (results keyed by unit id in display order, attribution stats)
    """
    target_level = validate_level(target_level)
    level = min(target_level, instance.storage_level)
    units = scope_units(tree, level, parent_id)

    accumulators = {unit.id: _UnitAccumulator() for unit in units}
    stats = {
        "records": 0,
        "attributed": 0,
        "unknown_unit": 0,
        "off_level": 0,
        "orphaned": 0,
        "out_of_scope": 0,
    }

    for record in records:
        stats["records"] += 1
        if record.unit_id not in tree:
            stats["unknown_unit"] += 1
            continue
        if tree.get(record.unit_id).level != instance.storage_level:
            stats["off_level"] += 1
            continue
        ancestor = tree.ancestor_at(record.unit_id, level)
        if ancestor is None:
            stats["orphaned"] += 1
            continue
        acc = accumulators.get(ancestor)
        if acc is None:
            stats["out_of_scope"] += 1
            continue
        acc.add(record)
        stats["attributed"] += 1

    unattributed = stats["unknown_unit"] + stats["off_level"] + stats["orphaned"]
    if unattributed:
        logger.warning(
            "{} {}: {} records could not be attributed (unknown={}, off_level={}, orphaned={})",
            instance.domain,
            instance.entity_id,
            unattributed,
            stats["unknown_unit"],
            stats["off_level"],
            stats["orphaned"],
        )

    results: dict[int, AggregateResult] = {}
    for unit in units:
        result = _build_result(unit.id, unit.name, unit.level, unit.parent_id, accumulators[unit.id])
        results[unit.id] = domain.finalize(result) if domain else result

    return results, stats


class MetricAggregator:
    """Computes per-unit statistics for any registered domain at any level.

    Args:
        tree: Administrative hierarchy shared by all requests
        settings: Application settings passed to domains
    """

    def __init__(self, tree: AdminTree, settings: Settings):
        self.tree = tree
        self.settings = settings

    def run(
        self,
        session: Session,
        domain: str,
        target_level: int,
        parent_id: Optional[int] = None,
        entity_id: Optional[Union[int, str]] = None,
        **filters: Any,
    ) -> Aggregation:
        """
        Aggregate a domain at ``target_level``, returning results with context.

        Raises:
            InvalidLevel: If target_level is outside 1-5
            InvalidDomain: If the domain is not registered
            NotFound: If the parent unit or the dataset does not exist
        """
        target_level = validate_level(target_level)
        metric_domain = MetricDomainRegistry.get_domain(domain, self.settings)
        if parent_id is not None:
            self.tree.get(parent_id)

        started = time.perf_counter()
        instance = metric_domain.resolve(session, entity_id, target_level)
        level = min(target_level, instance.storage_level)

        unit_ids = None
        if parent_id is not None:
            unit_ids = [u.id for u in scope_units(self.tree, instance.storage_level, parent_id)]

        records = metric_domain.fetch_records(session, instance, unit_ids=unit_ids, **filters)
        results, stats = aggregate_records(
            self.tree, instance, records, target_level, parent_id, domain=metric_domain
        )

        logger.info(
            "Aggregated {} {} at level {} (stored at {}, parent={}): {} units, {} records in {:.0f} ms",
            domain,
            instance.entity_id,
            level,
            instance.storage_level,
            parent_id,
            len(results),
            stats["attributed"],
            (time.perf_counter() - started) * 1000,
        )

        return Aggregation(
            domain=metric_domain,
            instance=instance,
            requested_level=target_level,
            level=level,
            parent_id=parent_id,
            results=results,
            stats=stats,
        )

    def aggregate(
        self,
        session: Session,
        domain: str,
        target_level: int,
        parent_id: Optional[int] = None,
        entity_id: Optional[Union[int, str]] = None,
        **filters: Any,
    ) -> dict[int, AggregateResult]:
        """Aggregate a domain at ``target_level``; every unit in scope is present."""
        return self.run(session, domain, target_level, parent_id, entity_id, **filters).results

    def national_totals(
        self,
        session: Session,
        domain: str,
        entity_id: Optional[Union[int, str]] = None,
        **filters: Any,
    ) -> AggregateResult:
        """
        Sum every public record of a dataset into a single country-wide result.

        Returns:
            AggregateResult with unit_id 0 and level 0 for the whole country
        """
        metric_domain = MetricDomainRegistry.get_domain(domain, self.settings)
        instance = metric_domain.resolve(session, entity_id, 1)
        records = metric_domain.fetch_records(session, instance, **filters)

        acc = _UnitAccumulator()
        for record in records:
            acc.add(record)

        result = _build_result(0, self.settings.country_name, 0, None, acc)
        logger.info(
            "National totals for {} {}: {} from {} records",
            domain,
            instance.entity_id,
            result.total_count,
            result.record_count,
        )
        return metric_domain.finalize(result)
