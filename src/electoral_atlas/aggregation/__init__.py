"""Metric aggregation over the administrative hierarchy.

Each metric family (election results, census demographics, electoral
issues) is a MetricDomain registered with MetricDomainRegistry. The
MetricAggregator resolves a domain by name and rolls its stored records up
to any requested level.
"""

from .aggregator import Aggregation, MetricAggregator, aggregate_records, scope_units
from .base import (
    AggregateResult,
    DomainInstance,
    MetricDomain,
    MetricRecord,
    RankedEntry,
)
from .registry import MetricDomainRegistry
from . import domains  # noqa: F401

__all__ = [
    "AggregateResult",
    "Aggregation",
    "DomainInstance",
    "MetricAggregator",
    "MetricDomain",
    "MetricDomainRegistry",
    "MetricRecord",
    "RankedEntry",
    "aggregate_records",
    "scope_units",
]
