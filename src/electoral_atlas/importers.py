"""Import administrative boundaries, district lineage and census data."""

import json
from pathlib import Path
from typing import Any, Optional

import pandas as pd
from geoalchemy2 import WKTElement
from loguru import logger
from shapely.geometry import shape
from sqlalchemy import select
from sqlalchemy.orm import Session

from electoral_atlas.hierarchy import AdminTree, normalize_name, validate_level
from electoral_atlas.models import AdministrativeUnit, Demographics, DistrictHistory

# Property keys tried in order when the caller does not name one
_ID_CANDIDATES = ["code", "CODE", "id", "ID", "OBJECTID", "pcode"]
_NAME_CANDIDATES = ["name", "NAME", "Name", "DNAME", "dname"]

LINEAGE_REQUIRED_COLUMNS = ["Current District", "Parent District", "Split Year"]

DEMOGRAPHICS_LOCATION_COLUMNS = ["District", "Constituency", "Subcounty", "Parish"]

# CSV header -> Demographics column
DEMOGRAPHICS_COUNT_COLUMNS = {
    "Total Population": "total_population",
    "Male Population": "male_population",
    "Female Population": "female_population",
    "Voting Age Population": "voting_age_population",
    "Youth Population": "youth_population",
    "Elderly Population": "elderly_population",
    "Households": "number_of_households",
}


def _first_property(props: dict[str, Any], explicit: Optional[str], candidates: list[str]) -> Any:
    if explicit:
        return props.get(explicit)
    for candidate in candidates:
        if props.get(candidate) is not None:
            return props[candidate]
    return None


def read_boundary_features(file_path: Path) -> list[dict]:
    """
    Read features from a GeoJSON FeatureCollection.

    Raises:
        FileNotFoundError: If the file doesn't exist
        ValueError: If the file is not a FeatureCollection or has no features
    """
    if not file_path.exists():
        raise FileNotFoundError(f"File not found: {file_path}")
    if file_path.suffix.lower() not in (".geojson", ".json"):
        raise ValueError(f"Unsupported file format '{file_path.suffix}'. Supported: .geojson, .json")

    with open(file_path) as f:
        data = json.load(f)

    if data.get("type") != "FeatureCollection":
        raise ValueError(f"Invalid GeoJSON: expected FeatureCollection, got {data.get('type')}")
    features = data.get("features") or []
    if not features:
        raise ValueError("No features found in GeoJSON file")

    logger.info("Read {} features from {}", len(features), file_path.name)
    return features


def import_admin_boundaries(
    session: Session,
    file_path: Path,
    level: int,
    id_property: Optional[str] = None,
    name_property: Optional[str] = None,
    parent_property: Optional[str] = None,
    clear_existing: bool = False,
) -> dict[str, int]:
    """Import administrative units for one level from GeoJSON.

    Feature ids are stored as the unit ``code``. The parent is looked up
    among the units one level up, first by code and then by normalized name.

    Args:
        session: Database session
        file_path: Path to a .geojson file
        level: Administrative level of every feature in the file
        id_property: Property key holding the unit code (auto-detected if omitted)
        name_property: Property key holding the unit name (auto-detected if omitted)
        parent_property: Property key holding the parent's code or name
        clear_existing: Delete existing units at this level first

    Returns:
        Dictionary with statistics: total, success, failed, skipped
    """
    level = validate_level(level)
    logger.info("Importing level {} boundaries from {}", level, file_path)

    if clear_existing:
        count = session.query(AdministrativeUnit).filter(AdministrativeUnit.level == level).count()
        if count > 0:
            logger.info("Clearing {} existing level {} units...", count, level)
            session.query(AdministrativeUnit).filter(AdministrativeUnit.level == level).delete()
            session.commit()

    features = read_boundary_features(file_path)
    stats: dict[str, int] = {"total": len(features), "success": 0, "failed": 0, "skipped": 0}

    existing_codes = {
        row[0]
        for row in session.query(AdministrativeUnit.code)
        .filter(AdministrativeUnit.level == level)
        .all()
        if row[0] is not None
    }

    parents_by_code: dict[str, int] = {}
    parents_by_name: dict[str, int] = {}
    if level > 1:
        for row in session.execute(
            select(AdministrativeUnit.id, AdministrativeUnit.code, AdministrativeUnit.name).where(
                AdministrativeUnit.level == level - 1
            )
        ).all():
            if row.code:
                parents_by_code[str(row.code)] = row.id
            parents_by_name.setdefault(normalize_name(row.name), row.id)

    for idx, feature in enumerate(features, 1):
        try:
            props = feature.get("properties") or {}
            geometry = feature.get("geometry")

            if not geometry:
                logger.warning("Feature {}: Missing geometry, skipping", idx)
                stats["skipped"] += 1
                continue

            code = _first_property(props, id_property, _ID_CANDIDATES)
            name = _first_property(props, name_property, _NAME_CANDIDATES)
            if code is None and not name:
                logger.warning("Feature {}: No id or name property, skipping", idx)
                stats["skipped"] += 1
                continue
            code = str(code).strip() if code is not None else None
            name = str(name).strip() if name else f"Unit {code}"

            if code is not None and code in existing_codes:
                logger.debug("Unit {} already exists at level {}, skipping", code, level)
                stats["skipped"] += 1
                continue

            parent_id = None
            if level > 1:
                parent_ref = props.get(parent_property) if parent_property else None
                if parent_ref is not None:
                    parent_id = parents_by_code.get(str(parent_ref).strip())
                    if parent_id is None:
                        parent_id = parents_by_name.get(normalize_name(str(parent_ref)))
                if parent_id is None:
                    logger.warning(
                        "Feature {}: Parent '{}' not found at level {}, skipping",
                        idx,
                        parent_ref,
                        level - 1,
                    )
                    stats["skipped"] += 1
                    continue

            voters = props.get("registered_voters") or props.get("REG_VOTERS")
            unit = AdministrativeUnit(
                name=name,
                code=code,
                level=level,
                parent_id=parent_id,
                registered_voters=int(voters) if voters is not None else None,
                geom=WKTElement(shape(geometry).wkt, srid=4326),
            )
            session.add(unit)
            if code is not None:
                existing_codes.add(code)
            stats["success"] += 1

            if stats["success"] % 100 == 0:
                logger.info("Progress: {}/{} units imported...", stats["success"], len(features))

        except Exception as e:
            logger.warning("Feature {}: Failed to import - {}", idx, e)
            stats["failed"] += 1

    session.commit()

    logger.info(
        "Import complete: {} imported, {} skipped, {} failed",
        stats["success"],
        stats["skipped"],
        stats["failed"],
    )
    return stats


def _read_csv(file_path: str, required: list[str]) -> pd.DataFrame:
    path = Path(file_path)
    if not path.exists():
        logger.error("CSV file not found: {}", file_path)
        raise FileNotFoundError(f"CSV file not found: {file_path}")

    logger.info("Reading CSV file: {}", file_path)
    # Empty cells stay empty strings, not NaN
    df = pd.read_csv(file_path, dtype=str, keep_default_na=False)
    logger.debug("CSV loaded with {} rows and {} columns", len(df), len(df.columns))

    missing_columns = [col for col in required if col not in df.columns]
    if missing_columns:
        logger.error("Missing required columns: {}", missing_columns)
        raise ValueError(
            f"Missing required columns: {', '.join(missing_columns)}. "
            f"Required: {', '.join(required)}"
        )
    return df


def read_lineage_csv(file_path: str) -> pd.DataFrame:
    """
    Read a district lineage CSV.

    Columns: ``Current District``, ``Parent District``, ``Split Year`` and an
    optional ``Notes``.

    Raises:
        FileNotFoundError: If the CSV file doesn't exist
        ValueError: If required columns are missing
    """
    return _read_csv(file_path, LINEAGE_REQUIRED_COLUMNS)


def import_district_history(session: Session, df: pd.DataFrame, tree: AdminTree) -> dict[str, int]:
    """
    Store district split lineage, matching district names against the tree.

    Existing entries for a district are replaced.

    Returns:
        Dictionary with statistics: total, success, unmatched, failed
    """
    stats = {"total": len(df), "success": 0, "unmatched": 0, "failed": 0}

    for idx, row in enumerate(df.to_dict("records"), 1):
        current = tree.find_by_name(row.get("Current District") or "", level=2)
        parent = tree.find_by_name(row.get("Parent District") or "", level=2)
        if current is None or parent is None:
            logger.warning(
                "Row {}: District not found ({} <- {})",
                idx,
                row.get("Current District"),
                row.get("Parent District"),
            )
            stats["unmatched"] += 1
            continue
        if current.id == parent.id:
            logger.warning("Row {}: District {} cannot split from itself", idx, current.name)
            stats["failed"] += 1
            continue

        try:
            split_year = int(str(row.get("Split Year")).strip())
        except ValueError:
            logger.warning("Row {}: Invalid split year {!r}", idx, row.get("Split Year"))
            stats["failed"] += 1
            continue

        session.query(DistrictHistory).filter(
            DistrictHistory.current_district_id == current.id
        ).delete()
        session.add(
            DistrictHistory(
                current_district_id=current.id,
                parent_district_id=parent.id,
                split_year=split_year,
                notes=row.get("Notes") or None,
            )
        )
        stats["success"] += 1

    session.commit()
    logger.info(
        "District history import complete: {} imported, {} unmatched, {} failed",
        stats["success"],
        stats["unmatched"],
        stats["failed"],
    )
    return stats


def read_demographics_csv(file_path: str) -> pd.DataFrame:
    """
    Read a parish-level census CSV.

    The location columns and ``Total Population`` are required; the other
    count columns default to 0 when absent.

    Raises:
        FileNotFoundError: If the CSV file doesn't exist
        ValueError: If required columns are missing
    """
    df = _read_csv(file_path, DEMOGRAPHICS_LOCATION_COLUMNS + ["Total Population"])
    for column in DEMOGRAPHICS_COUNT_COLUMNS:
        if column not in df.columns:
            df[column] = "0"
    return df


def _parish_index(tree: AdminTree) -> tuple[dict[tuple, int], dict[tuple, list[int]]]:
    """Parish ids keyed by full normalized path and by (district, parish)."""
    by_path: dict[tuple, int] = {}
    by_district: dict[tuple, list[int]] = {}
    for unit in tree:
        if unit.level != 5:
            continue
        names = {node.level: normalize_name(node.name) for node in tree.breadcrumb(unit.id)}
        path = tuple(names.get(level, "") for level in (2, 3, 4, 5))
        by_path.setdefault(path, unit.id)
        by_district.setdefault((path[0], path[3]), []).append(unit.id)
    return by_path, by_district


def _count(value: Any) -> int:
    number = pd.to_numeric(value, errors="coerce")
    return 0 if pd.isna(number) else int(number)


def import_demographics(
    session: Session,
    df: pd.DataFrame,
    tree: AdminTree,
    census_year: int,
    source: Optional[str] = None,
) -> dict[str, int]:
    """
    Store parish census counts for a census year.

    Parishes are matched by their full normalized name path; when that fails
    a (district, parish) pair that names exactly one parish is used.
    Parishes that already have counts for the year are skipped.

    Returns:
        Dictionary with statistics: total, success, skipped, unmatched
    """
    by_path, by_district = _parish_index(tree)
    existing = {
        row[0]
        for row in session.query(Demographics.admin_unit_id)
        .filter(Demographics.census_year == census_year)
        .all()
    }
    stats = {"total": len(df), "success": 0, "skipped": 0, "unmatched": 0}

    for idx, row in enumerate(df.to_dict("records"), 1):
        path = tuple(normalize_name(row.get(col)) for col in DEMOGRAPHICS_LOCATION_COLUMNS)
        parish_id = by_path.get(path)
        if parish_id is None:
            candidates = by_district.get((path[0], path[3]), [])
            parish_id = candidates[0] if len(candidates) == 1 else None
        if parish_id is None:
            logger.debug("Row {}: No parish matches {}", idx, " / ".join(path))
            stats["unmatched"] += 1
            continue
        if parish_id in existing:
            stats["skipped"] += 1
            continue

        counts = {attr: _count(row.get(col)) for col, attr in DEMOGRAPHICS_COUNT_COLUMNS.items()}
        session.add(
            Demographics(admin_unit_id=parish_id, census_year=census_year, source=source, **counts)
        )
        existing.add(parish_id)
        stats["success"] += 1

    session.commit()
    if stats["unmatched"]:
        logger.warning("{} census rows did not match any parish", stats["unmatched"])
    logger.info(
        "Demographics import complete: {} imported, {} skipped, {} unmatched",
        stats["success"],
        stats["skipped"],
        stats["unmatched"],
    )
    return stats
