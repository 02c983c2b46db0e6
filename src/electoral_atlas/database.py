"""Database engine, sessions and schema setup for Electoral Atlas."""

from collections.abc import Iterator
from contextlib import contextmanager

from loguru import logger
from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import Session

from electoral_atlas.config import Settings
from electoral_atlas.models import Base


def get_engine(settings: Settings) -> Engine:
    """
    Create a SQLAlchemy engine for the configured PostGIS database.

    Args:
        settings: Application settings containing the database URL

    Returns:
        SQLAlchemy Engine instance
    """
    logger.debug(
        "Creating database engine for {}",
        make_url(settings.database_url).render_as_string(hide_password=True),
    )
    return create_engine(settings.database_url, echo=settings.database_echo, pool_pre_ping=True)


def get_session(engine: Engine) -> Session:
    """Create a new database session bound to ``engine``."""
    return Session(engine)


@contextmanager
def session_scope(settings: Settings) -> Iterator[Session]:
    """
    Open a session on a fresh engine for one unit of work.

    The session is rolled back if the block raises, and the exception is
    re-raised. The session is closed and the engine disposed either way.
    Committing is left to the block.

    Usage:
        with session_scope(settings) as session:
            import_admin_boundaries(session, path, level=2)
    """
    engine = get_engine(settings)
    session = get_session(engine)
    try:
        yield session
    except Exception:
        logger.debug("Rolling back session after error")
        session.rollback()
        raise
    finally:
        session.close()
        engine.dispose()


def ensure_postgis(engine: Engine) -> str:
    """Create the PostGIS extension if needed and return its version."""
    with engine.connect() as conn:
        conn.execute(text("CREATE EXTENSION IF NOT EXISTS postgis;"))
        version = conn.execute(text("SELECT postgis_lib_version();")).scalar()
        conn.commit()
    logger.info("PostGIS {} available", version)
    return version


def init_database(drop_tables: bool, settings: Settings, run_migrations: bool = True) -> None:
    """
    Initialize the administrative map schema.

    Enables PostGIS, optionally drops every model table and the migration
    history, then upgrades to the latest Alembic revision or, when
    ``run_migrations`` is False, creates the model tables directly.

    Args:
        drop_tables: If True, drop all existing tables and migration history first
        settings: Application settings containing database URL
        run_migrations: If True, upgrade to the latest migration (default: True)

    Raises:
        sqlalchemy.exc.SQLAlchemyError: If the database cannot be prepared
    """
    logger.info("Initializing database schema")
    engine = get_engine(settings)

    try:
        ensure_postgis(engine)

        if drop_tables:
            logger.warning("Dropping all map tables and migration history")
            with engine.connect() as conn:
                conn.execute(text("DROP TABLE IF EXISTS alembic_version CASCADE;"))
                conn.commit()
            Base.metadata.drop_all(engine)

        if run_migrations:
            from electoral_atlas.migrations import upgrade_database

            upgrade_database("head")
            logger.info("Database migrated to head")
        else:
            Base.metadata.create_all(engine)
            logger.info("Created {} tables from the models", len(Base.metadata.tables))

    except Exception as e:
        logger.error("Failed to initialize database: {}", e)
        raise
    finally:
        engine.dispose()
