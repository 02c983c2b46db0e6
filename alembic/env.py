"""Alembic environment for the Electoral Atlas schema.

The database URL comes from ``alembic -x url=...`` when given, otherwise
from the ELECTORAL_ATLAS_DATABASE_URL setting. Geometry columns are
rendered through GeoAlchemy2 so autogenerated revisions keep their SRID
and spatial indexes.
"""

from logging.config import fileConfig

from alembic import context
from geoalchemy2 import alembic_helpers
from sqlalchemy import engine_from_config, pool

from electoral_atlas.config import get_settings
from electoral_atlas.models import Base

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = Base.metadata

# Installed by the PostGIS and topology extensions, never by our models
POSTGIS_TABLES = {"spatial_ref_sys", "topology", "layer"}


def database_url() -> str:
    return context.get_x_argument(as_dictionary=True).get("url") or get_settings().database_url


def include_object(obj, name, type_, reflected, compare_to):
    """Leave extension tables out of autogenerate comparisons."""
    if type_ == "table" and (name in POSTGIS_TABLES or name == "alembic_version"):
        return False
    return alembic_helpers.include_object(obj, name, type_, reflected, compare_to)


def configure_options() -> dict:
    return {
        "target_metadata": target_metadata,
        "include_object": include_object,
        "process_revision_directives": alembic_helpers.writer,
        "render_item": alembic_helpers.render_item,
        "compare_type": True,
    }


def run_migrations_offline() -> None:
    """Emit SQL for the migrations without connecting."""
    context.configure(
        url=database_url(),
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        **configure_options(),
    )

    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    """Run the migrations against a live PostGIS database."""
    config.set_main_option("sqlalchemy.url", database_url())
    connectable = engine_from_config(
        config.get_section(config.config_ini_section, {}),
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )

    with connectable.connect() as connection:
        context.configure(connection=connection, **configure_options())

        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
