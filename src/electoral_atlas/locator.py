"""Client-side point location over cached boundary geometry.

Uses the even-odd ray casting rule. Interior holes are ignored unless
``respect_holes`` is set: administrative units almost never have holes and
the original map behaviour checks outer rings only.
"""

from typing import Any, Iterable, Optional

from electoral_atlas.cache import CacheKey, LevelCache
from electoral_atlas.geometry import geometry_bounds


def point_in_ring(lng: float, lat: float, ring: list) -> bool:
    """Even-odd test of a point against one closed ring of ``[lng, lat]`` positions."""
    if not ring or len(ring) < 3:
        return False
    inside = False
    j = len(ring) - 1
    for i in range(len(ring)):
        xi, yi = ring[i][0], ring[i][1]
        xj, yj = ring[j][0], ring[j][1]
        if (yi > lat) != (yj > lat) and lng < (xj - xi) * (lat - yi) / (yj - yi) + xi:
            inside = not inside
        j = i
    return inside


def _point_in_polygon(lng: float, lat: float, rings: list, respect_holes: bool) -> bool:
    if not rings or not point_in_ring(lng, lat, rings[0]):
        return False
    if respect_holes:
        return not any(point_in_ring(lng, lat, hole) for hole in rings[1:])
    return True


def point_in_geometry(
    lng: float, lat: float, geometry: Optional[dict[str, Any]], respect_holes: bool = False
) -> bool:
    """Whether a point falls inside a Polygon or any part of a MultiPolygon."""
    if not geometry:
        return False
    coordinates = geometry.get("coordinates") or []
    if geometry.get("type") == "Polygon":
        return _point_in_polygon(lng, lat, coordinates, respect_holes)
    if geometry.get("type") == "MultiPolygon":
        return any(_point_in_polygon(lng, lat, rings, respect_holes) for rings in coordinates)
    return False


def _within(lng: float, lat: float, bounds: Optional[list[float]]) -> bool:
    return bounds is not None and bounds[0] <= lng <= bounds[2] and bounds[1] <= lat <= bounds[3]


def locate(
    lng: float,
    lat: float,
    features: Iterable[dict[str, Any]],
    respect_holes: bool = False,
) -> Optional[dict[str, Any]]:
    """
    Find the first feature containing a point.

    Features whose bounding box excludes the point are rejected before the
    ring test.

    Returns:
        The containing feature, or None
    """
    for feature in features:
        geometry = feature.get("geometry")
        if not _within(lng, lat, geometry_bounds(geometry)):
            continue
        if point_in_geometry(lng, lat, geometry, respect_holes):
            return feature
    return None


class PointLocator:
    """Finds units under a map click using only geometry already in the cache."""

    def __init__(self, cache: LevelCache, respect_holes: bool = False):
        self.cache = cache
        self.respect_holes = respect_holes

    def locate_in_cache(self, key: CacheKey, lng: float, lat: float) -> Optional[dict[str, Any]]:
        """Locate a point in the cached view ``key``; never fetches.

        Returns None when the view is not cached or no feature contains the point.
        """
        if not self.cache.has(key):
            return None
        entry = self.cache.get(key)
        if entry is None:
            return None
        features = (entry.data or {}).get("features") or []
        return locate(lng, lat, features, self.respect_holes)
