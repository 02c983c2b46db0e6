"""Server-side map data operations backing the HTTP API."""

import math
from typing import Any, Optional, Union

from loguru import logger
from sqlalchemy import func, select
from sqlalchemy.exc import DBAPIError
from sqlalchemy.orm import Session

from electoral_atlas.aggregation import AggregateResult, MetricAggregator, scope_units
from electoral_atlas.config import Settings
from electoral_atlas.errors import InvalidCoordinates, NotFound, SpatialIndexUnavailable
from electoral_atlas.geometry import GeometryRepository, explode_multipolygons
from electoral_atlas.hierarchy import AdminTree, load_admin_tree, validate_level
from electoral_atlas.join import index_by_unit, join_boundaries
from electoral_atlas.lineage import DistrictSplitResolver, load_lineage
from electoral_atlas.models import AdministrativeUnit

POINT_LOOKUP_LIMIT = 5
NO_DATA_COLOR = "#cccccc"


def _parse_coordinate(value: Any, name: str, low: float, high: float) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise InvalidCoordinates(f"Invalid {name}: {value!r}") from None
    if math.isnan(number) or not low <= number <= high:
        raise InvalidCoordinates(f"Invalid {name}: {value!r}. Must be between {low} and {high}")
    return number


class AtlasService:
    """Boundary, statistics and point lookup operations over one database session.

    The administrative tree and district lineage are loaded on first use and
    reused for the lifetime of the service.

    Args:
        session: Database session
        settings: Application settings
        tree: Preloaded administrative tree (loaded from the session if omitted)
        resolver: Preloaded lineage resolver (loaded from the session if omitted)
    """

    def __init__(
        self,
        session: Session,
        settings: Settings,
        tree: Optional[AdminTree] = None,
        resolver: Optional[DistrictSplitResolver] = None,
    ):
        self.session = session
        self.settings = settings
        self._tree = tree
        self._resolver = resolver
        self.geometry = GeometryRepository(session)

    @property
    def tree(self) -> AdminTree:
        if self._tree is None:
            self._tree = load_admin_tree(self.session)
        return self._tree

    @property
    def resolver(self) -> DistrictSplitResolver:
        if self._resolver is None:
            self._resolver = DistrictSplitResolver(load_lineage(self.session))
        return self._resolver

    @property
    def aggregator(self) -> MetricAggregator:
        return MetricAggregator(self.tree, self.settings)

    def get_boundaries(self, level: Any, parent_id: Optional[int] = None) -> dict[str, Any]:
        """Geometry-only FeatureCollection for a level."""
        return self._scoped_boundaries(validate_level(level), parent_id)

    def _scoped_boundaries(self, level: int, parent_id: Optional[int]) -> dict[str, Any]:
        """Boundaries at ``level`` inside ``parent_id``, matching the aggregation scope.

        A direct parent filters on ``parent_id``; any other ancestor is
        resolved to its descendants at ``level`` through the tree.
        """
        if parent_id is None or self.tree.get(parent_id).level == level - 1:
            return self.geometry.get_boundaries(level, parent_id)
        unit_ids = [unit.id for unit in scope_units(self.tree, level, parent_id)]
        boundaries = self.geometry.get_boundaries(level, unit_ids=unit_ids)
        boundaries["metadata"]["parentId"] = parent_id
        return boundaries

    def _resolved_results(
        self,
        domain: str,
        level: Any,
        parent_id: Optional[int],
        entity_id: Optional[Union[int, str]],
        filters: dict[str, Any],
    ):
        aggregation = self.aggregator.run(
            self.session, domain, validate_level(level), parent_id, entity_id, **filters
        )
        results = aggregation.results
        if aggregation.domain.supports_inheritance:
            results = self.resolver.resolve_inheritance(aggregation.level, results, parent_id)
        return aggregation, results

    def get_metric_data(
        self,
        domain: str,
        level: Any,
        parent_id: Optional[int] = None,
        entity_id: Optional[Union[int, str]] = None,
        **filters: Any,
    ) -> dict[str, Any]:
        """
        Statistics for every unit at a level, without geometry.

        Returns:
            Dictionary with domain, level, parentId, countField, count, data
            (one row per unit) and metadata

        Raises:
            InvalidLevel: If level is outside 1-5
            InvalidDomain: If the domain is not registered
            NotFound: If the dataset or parent unit does not exist
        """
        filters = {name: value for name, value in filters.items() if value is not None}
        aggregation, results = self._resolved_results(domain, level, parent_id, entity_id, filters)
        metric = aggregation.domain
        data = [
            result.to_dict(metric.count_field, metric.entries_field) for result in results.values()
        ]

        return {
            "domain": metric.domain_name,
            "entityId": aggregation.instance.entity_id,
            "level": aggregation.level,
            "requestedLevel": aggregation.requested_level,
            "parentId": parent_id,
            "countField": metric.count_field,
            "count": len(data),
            "data": data,
            "metadata": {
                "label": aggregation.instance.label,
                "storageLevel": aggregation.instance.storage_level,
                "unitsWithData": sum(1 for r in results.values() if r.has_data),
                "inheritedUnits": sum(1 for r in results.values() if r.inherited),
                "unattributedRecords": aggregation.stats["unknown_unit"]
                + aggregation.stats["off_level"]
                + aggregation.stats["orphaned"],
                **aggregation.instance.metadata,
            },
        }

    def get_aggregated_results(
        self, election_id: Union[int, str], level: Any, parent_id: Optional[int] = None
    ) -> dict[str, Any]:
        """
        Election results joined with boundaries, ready to render.

        MultiPolygons are split into Polygon parts. Units without results get
        ``noData`` and the neutral fill colour.

        Returns:
            GeoJSON FeatureCollection with ``bbox`` and ``metadata.unitCount``
        """
        metric = self.get_metric_data("results", level, parent_id, election_id)
        boundaries = self._scoped_boundaries(metric["level"], parent_id)

        joined = join_boundaries(
            boundaries["features"],
            index_by_unit(metric["data"]),
            count_field=metric["countField"],
        )
        for feature in joined["features"]:
            properties = feature["properties"]
            if properties.get("noData"):
                properties["winnerColor"] = NO_DATA_COLOR

        return {
            "type": "FeatureCollection",
            "features": explode_multipolygons(joined["features"]),
            "bbox": joined["bbox"],
            "metadata": {
                "electionId": metric["entityId"],
                "level": metric["level"],
                "parentId": parent_id,
                "unitCount": metric["metadata"]["unitsWithData"],
                "featureCount": joined["metadata"]["featureCount"],
                "skipped": boundaries["metadata"]["skipped"] + joined["metadata"]["skipped"],
            },
        }

    def point_lookup(self, lng: Any, lat: Any, level: Any = None) -> dict[str, Any]:
        """
        Administrative units containing a point, finest level first.

        Raises:
            InvalidCoordinates: If the point is malformed or outside the country
            NotFound: If no unit contains the point
            SpatialIndexUnavailable: If PostGIS functions are not available
        """
        lng = _parse_coordinate(lng, "longitude", -180.0, 180.0)
        lat = _parse_coordinate(lat, "latitude", -90.0, 90.0)
        min_lng, min_lat, max_lng, max_lat = self.settings.country_bounds
        if not (min_lng <= lng <= max_lng and min_lat <= lat <= max_lat):
            raise InvalidCoordinates(
                f"Coordinates ({lng}, {lat}) are outside {self.settings.country_name}"
            )

        point = func.ST_SetSRID(func.ST_MakePoint(lng, lat), 4326)
        stmt = (
            select(
                AdministrativeUnit.id,
                AdministrativeUnit.name,
                AdministrativeUnit.code,
                AdministrativeUnit.level,
                AdministrativeUnit.parent_id,
            )
            .where(AdministrativeUnit.geom.isnot(None), func.ST_Contains(AdministrativeUnit.geom, point))
            .order_by(AdministrativeUnit.level.desc())
            .limit(POINT_LOOKUP_LIMIT)
        )
        if level is not None:
            stmt = stmt.where(AdministrativeUnit.level == validate_level(level))

        try:
            rows = self.session.execute(stmt).all()
        except DBAPIError as e:
            if "st_" in str(e).lower():
                logger.error("Spatial point lookup unavailable: {}", str(e))
                self.session.rollback()
                raise SpatialIndexUnavailable() from e
            raise

        if not rows:
            raise NotFound(f"No administrative unit found at ({lng}, {lat})")

        units = [
            {
                "unitId": row.id,
                "name": row.name,
                "code": row.code,
                "level": row.level,
                "parentId": row.parent_id,
            }
            for row in rows
        ]
        return {"coordinates": {"lng": lng, "lat": lat}, "units": units, "primary": units[0]}

    def get_unit_details(self, unit_id: int) -> dict[str, Any]:
        """A unit with its breadcrumb from the coarsest ancestor and its child count."""
        unit = self.tree.get(unit_id)
        details = unit.to_dict()
        details["breadcrumb"] = [
            {"id": node.id, "name": node.name, "level": node.level}
            for node in self.tree.breadcrumb(unit_id)
        ]
        details["childCount"] = len(self.tree.children(unit_id))
        return details

    def get_national_totals(self, election_id: Union[int, str]) -> dict[str, Any]:
        """Country-wide candidate totals, ranked, with the current leader."""
        result = self.aggregator.national_totals(self.session, "results", election_id)
        candidates = [entry.to_dict() for entry in result.entries]
        return {
            "electionId": election_id,
            "totalVotes": result.total_count,
            "reportingRecords": result.record_count,
            "candidates": candidates,
            "leader": candidates[0] if candidates and result.winner else None,
            "margin": round(result.margin, 4),
        }

    def get_election_swing(
        self,
        previous_election_id: Union[int, str],
        current_election_id: Union[int, str],
        level: Any = 2,
        parent_id: Optional[int] = None,
    ) -> dict[str, Any]:
        """
        Compare winners of two elections unit by unit.

        Swing types: ``changed`` (different winning party), ``gained`` /
        ``lost`` / ``stable`` (same party, share up / down / equal), ``new``
        (no previous winner) and ``no_data`` (no current winner).

        Returns:
            GeoJSON FeatureCollection of swing statistics joined with boundaries
        """
        _, previous = self._resolved_results(
            "results", level, parent_id, previous_election_id, {}
        )
        aggregation, current = self._resolved_results(
            "results", level, parent_id, current_election_id, {}
        )

        rows = [
            swing_row(current_result, previous.get(unit_id))
            for unit_id, current_result in current.items()
        ]
        boundaries = self._scoped_boundaries(aggregation.level, parent_id)
        joined = join_boundaries(boundaries["features"], index_by_unit(rows))
        joined["metadata"].update(
            {
                "level": aggregation.level,
                "parentId": parent_id,
                "previousElectionId": previous_election_id,
                "currentElectionId": current_election_id,
            }
        )
        return joined


def swing_row(current: AggregateResult, previous: Optional[AggregateResult]) -> dict[str, Any]:
    """Swing statistics for one unit between two elections."""
    cur = current.winner if current.has_data else None
    prev = previous.winner if previous is not None and previous.has_data else None

    swing_type = "no_data"
    swing_value = 0.0
    swing_party = None
    swing_color = "#808080"

    if cur is not None and prev is not None:
        swing_party = cur.group
        swing_color = cur.color or swing_color
        if cur.group != prev.group:
            swing_type = "changed"
        else:
            swing_value = (cur.share - prev.share) * 100
            swing_type = "gained" if swing_value > 0 else "lost" if swing_value < 0 else "stable"
    elif cur is not None:
        swing_type = "new"
        swing_party = cur.group
        swing_color = cur.color or swing_color

    return {
        "unitId": current.unit_id,
        "unitName": current.unit_name,
        "level": current.level,
        "previousWinner": prev.to_dict() if prev else None,
        "currentWinner": cur.to_dict() if cur else None,
        "swingType": swing_type,
        "swingValue": round(swing_value, 1),
        "swingParty": swing_party,
        "swingColor": swing_color,
        "noData": swing_type == "no_data",
    }
