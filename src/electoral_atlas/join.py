"""Joining boundary geometry with per-unit statistics."""

from typing import Any, Iterable, Mapping, Optional

from loguru import logger

from electoral_atlas.geometry import calculate_bbox, clean_geometry


def index_by_unit(
    rows: Iterable[Mapping[str, Any]], key: str = "unitId"
) -> dict[int, dict[str, Any]]:
    """Index statistic rows (as returned by the metric data endpoint) by unit id."""
    indexed: dict[int, dict[str, Any]] = {}
    for row in rows:
        unit_id = row.get(key)
        if unit_id is None:
            continue
        indexed[int(unit_id)] = dict(row)
    return indexed


def _feature_unit_id(feature: Mapping[str, Any]) -> Optional[int]:
    properties = feature.get("properties") or {}
    unit_id = properties.get("unitId", feature.get("id"))
    if unit_id is None:
        return None
    try:
        return int(unit_id)
    except (TypeError, ValueError):
        return None


def join_boundaries(
    features: Iterable[Mapping[str, Any]],
    stats_by_id: Mapping[int, Mapping[str, Any]],
    parent_filter: Optional[int] = None,
    count_field: Optional[str] = None,
) -> dict[str, Any]:
    """
    Attach statistics to boundary features by unit id.

    Every feature that survives geometry cleaning (and the optional parent
    filter) is returned: features without a matching statistic are marked
    ``noData``. Statistics for units without a boundary are dropped.

    Args:
        features: Boundary features with ``properties.unitId`` and ``properties.parentId``
        stats_by_id: Statistic rows keyed by unit id
        parent_filter: Keep only features whose parentId equals this value
        count_field: Statistic field copied to ``properties.value`` for styling

    Returns:
        GeoJSON FeatureCollection with ``bbox`` and ``metadata`` {featureCount,
        skipped, filteredOut, unmatchedStatistics}
    """
    output = []
    skipped = 0
    filtered_out = 0
    matched: set[int] = set()

    for feature in features:
        properties = dict(feature.get("properties") or {})
        if parent_filter is not None and properties.get("parentId") != parent_filter:
            filtered_out += 1
            continue

        geometry = clean_geometry(feature.get("geometry"))
        if geometry is None:
            skipped += 1
            continue

        unit_id = _feature_unit_id(feature)
        stats = stats_by_id.get(unit_id) if unit_id is not None else None
        if stats is not None:
            matched.add(unit_id)
            properties.update(stats)
            properties["noData"] = bool(stats.get("noData", False))
            if count_field:
                properties["value"] = stats.get(count_field, 0)
        else:
            properties["noData"] = True
            if count_field:
                properties["value"] = None

        output.append(
            {
                "type": "Feature",
                "id": feature.get("id", unit_id),
                "properties": properties,
                "geometry": geometry,
            }
        )

    unmatched = len([uid for uid in stats_by_id if uid not in matched])
    if skipped or unmatched:
        logger.debug(
            "Join: {} features, {} skipped geometries, {} statistics without boundary",
            len(output),
            skipped,
            unmatched,
        )

    return {
        "type": "FeatureCollection",
        "features": output,
        "bbox": calculate_bbox(output),
        "metadata": {
            "featureCount": len(output),
            "skipped": skipped,
            "filteredOut": filtered_out,
            "unmatchedStatistics": unmatched,
        },
    }
