"""Command-line interface for Electoral Atlas using Typer."""

import json
from pathlib import Path
from typing import NoReturn

import typer
from loguru import logger
from rich.console import Console
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.table import Table

from electoral_atlas.config import get_settings
from electoral_atlas.database import init_database, session_scope
from electoral_atlas.errors import AtlasError
from electoral_atlas.hierarchy import LEVEL_NAMES, load_admin_tree
from electoral_atlas.logging import setup_logging
from electoral_atlas.service import AtlasService

app = typer.Typer(
    name="electoral-atlas",
    help="Electoral Atlas: aggregate election, census and incident data on administrative maps",
    add_completion=True,
)


@app.callback()
def main(
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Enable verbose logging (DEBUG level)",
    ),
) -> None:
    """
    Electoral Atlas CLI - build and query administrative map data.
    """
    settings = get_settings()
    if verbose:
        settings.log_level = "DEBUG"
    setup_logging(settings)

    logger.debug("Verbose mode enabled")


def _fail(action: str, error: Exception) -> NoReturn:
    logger.error("{} failed: {}", action, str(error))
    typer.secho(f"✗ {action} failed: {error}", fg=typer.colors.RED, bold=True)
    raise typer.Exit(code=1)


def _stats_table(title: str, stats: dict[str, int]) -> Table:
    table = Table(title=title, show_header=True, header_style="bold magenta")
    table.add_column("Status", style="cyan")
    table.add_column("Count", justify="right", style="green")
    for name, count in stats.items():
        table.add_row(name.capitalize(), f"{count:,}", style="bold" if name == "total" else None)
    return table


@app.command()
def init_db(
    drop: bool = typer.Option(
        False,
        "--drop",
        help="Drop existing tables before creating new ones",
    ),
    no_migrations: bool = typer.Option(
        False,
        "--no-migrations",
        help="Create tables directly from the models instead of running Alembic",
    ),
) -> None:
    """Initialize the PostGIS database schema."""
    logger.info("init-db command called with drop={}", drop)

    settings = get_settings()

    if drop:
        typer.secho("WARNING: This will drop all existing tables!", fg=typer.colors.RED, bold=True)
        if not typer.confirm("Are you sure you want to continue?"):
            typer.secho("Operation cancelled", fg=typer.colors.YELLOW)
            raise typer.Abort()

    try:
        init_database(drop_tables=drop, settings=settings, run_migrations=not no_migrations)
    except Exception as e:
        _fail("Database initialization", e)

    typer.secho("✓ Database initialized successfully", fg=typer.colors.GREEN, bold=True)


@app.command()
def import_boundaries(
    geojson_file: Path = typer.Argument(..., help="Path to a GeoJSON FeatureCollection"),
    level: int = typer.Option(..., "--level", "-l", help="Administrative level (1-5)"),
    id_property: str | None = typer.Option(None, "--id-property", help="Feature code property"),
    name_property: str | None = typer.Option(None, "--name-property", help="Feature name property"),
    parent_property: str | None = typer.Option(
        None, "--parent-property", help="Property holding the parent's code or name"
    ),
    clear: bool = typer.Option(False, "--clear", help="Delete existing units at this level first"),
) -> None:
    """Import administrative unit boundaries for one level."""
    from electoral_atlas.importers import import_admin_boundaries

    logger.info("import-boundaries command called with file: {}, level: {}", geojson_file, level)
    settings = get_settings()

    try:
        with session_scope(settings) as session:
            stats = import_admin_boundaries(
                session,
                geojson_file,
                level,
                id_property=id_property,
                name_property=name_property,
                parent_property=parent_property,
                clear_existing=clear,
            )
    except Exception as e:
        _fail("Boundary import", e)

    Console().print(_stats_table(f"{LEVEL_NAMES[level]} Boundaries", stats))


@app.command()
def import_lineage(
    csv_file: Path = typer.Argument(..., help="CSV with Current District, Parent District, Split Year"),
) -> None:
    """Import district split lineage used for result inheritance."""
    from electoral_atlas.importers import import_district_history, read_lineage_csv

    logger.info("import-lineage command called with file: {}", csv_file)
    settings = get_settings()

    try:
        with session_scope(settings) as session:
            df = read_lineage_csv(str(csv_file))
            stats = import_district_history(session, df, load_admin_tree(session))
    except Exception as e:
        _fail("Lineage import", e)

    Console().print(_stats_table("District History", stats))


@app.command()
def import_demographics(
    csv_file: Path = typer.Argument(..., help="Parish-level census CSV"),
    year: int | None = typer.Option(None, "--year", "-y", help="Census year (default from settings)"),
    source: str | None = typer.Option(None, "--source", help="Data source label"),
) -> None:
    """Import parish census counts."""
    from electoral_atlas.importers import import_demographics as run_import
    from electoral_atlas.importers import read_demographics_csv

    settings = get_settings()
    census_year = year or settings.default_census_year
    logger.info("import-demographics command called with file: {}, year: {}", csv_file, census_year)

    try:
        with session_scope(settings) as session:
            df = read_demographics_csv(str(csv_file))
            stats = run_import(session, df, load_admin_tree(session), census_year, source=source)
    except Exception as e:
        _fail("Demographics import", e)

    Console().print(_stats_table(f"Census {census_year}", stats))


@app.command()
def aggregate(
    domain: str = typer.Argument(..., help="Metric domain (results, demographics, issues)"),
    level: int = typer.Option(2, "--level", "-l", help="Administrative level (1-5)"),
    parent_id: int | None = typer.Option(None, "--parent", "-p", help="Restrict to a parent unit"),
    entity_id: str | None = typer.Option(
        None, "--entity", "-e", help="Election id or census year"
    ),
    limit: int = typer.Option(25, "--limit", help="Rows to display"),
) -> None:
    """Aggregate a metric to a level and print the per-unit totals."""
    logger.info("aggregate command called with domain={}, level={}, parent={}", domain, level, parent_id)
    settings = get_settings()

    try:
        with session_scope(settings) as session:
            with Progress(
                SpinnerColumn(),
                TextColumn("[progress.description]{task.description}"),
                transient=True,
            ) as progress:
                task = progress.add_task("Aggregating...", total=None)
                payload = AtlasService(session, settings).get_metric_data(
                    domain, level, parent_id, entity_id
                )
                progress.update(task, completed=True)
    except (AtlasError, ValueError) as e:
        _fail("Aggregation", e)

    count_field = payload["countField"]
    rows = sorted(payload["data"], key=lambda row: -row[count_field])

    table = Table(
        title=f"{payload['domain']} by {LEVEL_NAMES[payload['level']]}",
        show_header=True,
        header_style="bold magenta",
    )
    table.add_column("Unit", style="cyan")
    table.add_column("Total", justify="right", style="green")
    table.add_column("Leader", style="yellow")
    table.add_column("Margin", justify="right")
    for row in rows[:limit]:
        winner = row.get("winner") or {}
        table.add_row(
            row["unitName"],
            f"{row[count_field]:,}",
            winner.get("name") or ("(inherited)" if row.get("inherited") else "-"),
            f"{row['margin'] * 100:.1f}%" if winner else "-",
        )
    Console().print(table)

    if payload["level"] != payload["requestedLevel"]:
        typer.secho(
            f"  Data is stored at level {payload['level']}; shown at that level",
            fg=typer.colors.YELLOW,
        )
    typer.secho(
        f"  {payload['metadata']['unitsWithData']:,} of {payload['count']:,} units have data",
        fg=typer.colors.GREEN,
    )


@app.command()
def export_map(
    election_id: int = typer.Argument(..., help="Election id"),
    output_file: Path = typer.Argument(..., help="Output GeoJSON path"),
    level: int = typer.Option(2, "--level", "-l", help="Administrative level (1-5)"),
    parent_id: int | None = typer.Option(None, "--parent", "-p", help="Restrict to a parent unit"),
) -> None:
    """Write election results joined with boundaries to a GeoJSON file."""
    logger.info("export-map command called with election={}, output={}", election_id, output_file)
    settings = get_settings()

    try:
        with session_scope(settings) as session:
            collection = AtlasService(session, settings).get_aggregated_results(
                election_id, level, parent_id
            )
            output_file.parent.mkdir(parents=True, exist_ok=True)
            with open(output_file, "w") as f:
                json.dump(collection, f)
    except (AtlasError, OSError) as e:
        _fail("Map export", e)

    typer.secho(
        f"✓ Wrote {len(collection['features']):,} features to {output_file}",
        fg=typer.colors.GREEN,
        bold=True,
    )


@app.command()
def locate(
    lng: float = typer.Argument(..., help="Longitude"),
    lat: float = typer.Argument(..., help="Latitude"),
) -> None:
    """Find the administrative units containing a point."""
    logger.info("locate command called with ({}, {})", lng, lat)
    settings = get_settings()

    try:
        with session_scope(settings) as session:
            found = AtlasService(session, settings).point_lookup(lng, lat)
    except AtlasError as e:
        fallback = getattr(e, "fallback", None)
        if fallback:
            typer.secho(f"  {fallback}", fg=typer.colors.YELLOW)
        _fail("Point lookup", e)

    table = Table(title=f"Units at ({lng}, {lat})", show_header=True, header_style="bold magenta")
    table.add_column("Level", style="cyan")
    table.add_column("Name", style="green")
    table.add_column("Id", justify="right")
    for unit in found["units"]:
        table.add_row(LEVEL_NAMES[unit["level"]], unit["name"], str(unit["unitId"]))
    Console().print(table)


if __name__ == "__main__":
    app()
