"""Boundary geometry: parsing, cleaning and GeoJSON assembly.

Geometry is large and rarely changes, so it is served separately from the
statistics that colour it. Everything here works on plain GeoJSON mappings
as returned by PostGIS ``ST_AsGeoJSON``.
"""

import json
from datetime import datetime, timezone
from typing import Any, Iterable, Iterator, Optional

from loguru import logger
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from electoral_atlas.errors import GeometryParseError
from electoral_atlas.hierarchy import validate_level
from electoral_atlas.models import AdministrativeUnit

POLYGON_TYPES = ("Polygon", "MultiPolygon")


def parse_geometry(raw: Any, unit_id: Optional[int] = None) -> Optional[dict[str, Any]]:
    """
    Parse stored geometry into a GeoJSON mapping.

    Args:
        raw: GeoJSON text, an already decoded mapping, or None
        unit_id: Unit the geometry belongs to (for error reporting)

    Returns:
        GeoJSON geometry mapping, or None when ``raw`` is None

    Raises:
        GeometryParseError: If the value is not a GeoJSON geometry
    """
    if raw is None:
        return None
    if isinstance(raw, (str, bytes)):
        try:
            raw = json.loads(raw)
        except ValueError as e:
            raise GeometryParseError(f"Invalid GeoJSON for unit {unit_id}: {e}", unit_id) from e
    if not isinstance(raw, dict) or "type" not in raw or "coordinates" not in raw:
        raise GeometryParseError(f"Not a GeoJSON geometry for unit {unit_id}", unit_id)
    return raw


def _valid_ring(ring: Any) -> bool:
    if not isinstance(ring, list) or not ring:
        return False
    first = ring[0]
    return isinstance(first, (list, tuple)) and len(first) >= 2


def _clean_polygon(rings: Any) -> Optional[list]:
    if not isinstance(rings, list) or not rings or not _valid_ring(rings[0]):
        return None
    return [ring for ring in rings if _valid_ring(ring)]


def clean_geometry(geometry: Optional[dict[str, Any]]) -> Optional[dict[str, Any]]:
    """
    Drop empty rings and polygons from a Polygon or MultiPolygon.

    A polygon whose outer ring is empty is removed entirely; empty inner
    rings are removed from otherwise valid polygons.

    Returns:
        Cleaned geometry, or None if nothing renderable remains
    """
    if not geometry:
        return None
    geom_type = geometry.get("type")
    coordinates = geometry.get("coordinates")

    if geom_type == "Polygon":
        rings = _clean_polygon(coordinates)
        return {"type": "Polygon", "coordinates": rings} if rings else None

    if geom_type == "MultiPolygon":
        if not isinstance(coordinates, list):
            return None
        polygons = [p for p in (_clean_polygon(rings) for rings in coordinates) if p]
        return {"type": "MultiPolygon", "coordinates": polygons} if polygons else None

    return None


def outer_rings(geometry: Optional[dict[str, Any]]) -> Iterator[list]:
    """Yield the outer ring of each polygon in a Polygon or MultiPolygon."""
    if not geometry:
        return
    coordinates = geometry.get("coordinates") or []
    if geometry.get("type") == "Polygon":
        if coordinates:
            yield coordinates[0]
    elif geometry.get("type") == "MultiPolygon":
        for polygon in coordinates:
            if polygon:
                yield polygon[0]


def geometry_bounds(geometry: Optional[dict[str, Any]]) -> Optional[list[float]]:
    """Bounding box ``[min_lng, min_lat, max_lng, max_lat]`` of the outer rings."""
    lngs: list[float] = []
    lats: list[float] = []
    for ring in outer_rings(geometry):
        for position in ring:
            lngs.append(position[0])
            lats.append(position[1])
    if not lngs:
        return None
    return [min(lngs), min(lats), max(lngs), max(lats)]


def calculate_bbox(features: Iterable[dict[str, Any]]) -> Optional[list[float]]:
    """
    Bounding box covering every feature, for zoom-to-fit.

    Returns:
        ``[min_lng, min_lat, max_lng, max_lat]`` or None if there are no coordinates
    """
    boxes = [b for b in (geometry_bounds(f.get("geometry")) for f in features) if b]
    if not boxes:
        return None
    return [
        min(b[0] for b in boxes),
        min(b[1] for b in boxes),
        max(b[2] for b in boxes),
        max(b[3] for b in boxes),
    ]


def explode_multipolygons(features: Iterable[dict[str, Any]]) -> list[dict[str, Any]]:
    """
    Split MultiPolygon features into one Polygon feature per part.

    Parts get ids ``"<id>-<index>"`` and share the original properties.
    """
    exploded = []
    for feature in features:
        geometry = feature.get("geometry") or {}
        if geometry.get("type") != "MultiPolygon":
            exploded.append(feature)
            continue
        for idx, rings in enumerate(geometry.get("coordinates") or []):
            exploded.append(
                {
                    "type": "Feature",
                    "id": f"{feature.get('id')}-{idx}",
                    "properties": dict(feature.get("properties") or {}),
                    "geometry": {"type": "Polygon", "coordinates": rings},
                }
            )
    return exploded


def boundary_feature(
    unit_id: int,
    name: str,
    level: int,
    parent_id: Optional[int],
    geometry: dict[str, Any],
    code: Optional[str] = None,
) -> dict[str, Any]:
    """GeoJSON feature for a unit's boundary, without statistics."""
    return {
        "type": "Feature",
        "id": unit_id,
        "properties": {
            "unitId": unit_id,
            "name": name,
            "code": code,
            "level": level,
            "parentId": parent_id,
        },
        "geometry": geometry,
    }


def build_boundary_features(rows: Iterable[Any]) -> tuple[list[dict[str, Any]], int]:
    """
    Turn query rows into boundary features, skipping unusable geometry.

    Args:
        rows: Objects with id, name, code, level, parent_id and geojson attributes

    Returns:
        Tuple of (features, skipped count)
    """
    features = []
    skipped = 0
    for row in rows:
        try:
            geometry = parse_geometry(row.geojson, row.id)
        except GeometryParseError as e:
            logger.warning("Skipping unit {}: {}", row.id, e)
            skipped += 1
            continue
        cleaned = clean_geometry(geometry)
        if cleaned is None:
            logger.warning("Skipping unit {} ({}): empty geometry after cleaning", row.id, row.name)
            skipped += 1
            continue
        features.append(
            boundary_feature(row.id, row.name, row.level, row.parent_id, cleaned, code=row.code)
        )
    return features, skipped


class GeometryRepository:
    """Reads unit boundaries from PostGIS as GeoJSON."""

    def __init__(self, session: Session):
        self.session = session

    def get_boundaries(
        self,
        level: int,
        parent_id: Optional[int] = None,
        unit_ids: Optional[list[int]] = None,
    ) -> dict[str, Any]:
        """
        Boundaries of every unit at ``level``, optionally only children of ``parent_id``.

        ``unit_ids`` restricts the result to those units, for scopes that are
        not a direct parent (e.g. every parish of a district).

        Returns:
            GeoJSON FeatureCollection with ``metadata`` {level, parentId, count,
            skipped, generatedAt}

        Raises:
            InvalidLevel: If level is outside 1-5
        """
        level = validate_level(level)
        stmt = (
            select(
                AdministrativeUnit.id,
                AdministrativeUnit.name,
                AdministrativeUnit.code,
                AdministrativeUnit.level,
                AdministrativeUnit.parent_id,
                func.ST_AsGeoJSON(AdministrativeUnit.geom).label("geojson"),
            )
            .where(AdministrativeUnit.level == level, AdministrativeUnit.geom.isnot(None))
            .order_by(AdministrativeUnit.name)
        )
        if parent_id is not None:
            stmt = stmt.where(AdministrativeUnit.parent_id == parent_id)
        if unit_ids is not None:
            stmt = stmt.where(AdministrativeUnit.id.in_(unit_ids))

        features, skipped = build_boundary_features(self.session.execute(stmt).all())
        logger.info(
            "Boundaries level={} parent={}: {} features, {} skipped",
            level,
            parent_id,
            len(features),
            skipped,
        )
        return {
            "type": "FeatureCollection",
            "features": features,
            "metadata": {
                "level": level,
                "parentId": parent_id,
                "count": len(features),
                "skipped": skipped,
                "generatedAt": datetime.now(timezone.utc).isoformat(),
            },
        }
