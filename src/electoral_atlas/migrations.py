"""Schema migration helpers wrapping Alembic commands."""

from pathlib import Path
from typing import Optional

from alembic import command as alembic_command
from alembic.config import Config
from alembic.runtime.migration import MigrationContext
from alembic.script import ScriptDirectory
from loguru import logger

from electoral_atlas.config import Settings, get_settings

# src/electoral_atlas/migrations.py -> project root
PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent


def get_alembic_config(project_root: Optional[Path] = None) -> Config:
    """
    Build the Alembic configuration for this project.

    Args:
        project_root: Directory holding alembic.ini and alembic/ (default: repository root)

    Returns:
        Configured Alembic Config object

    Raises:
        FileNotFoundError: If alembic.ini is not found
    """
    root = project_root or PROJECT_ROOT
    alembic_ini = root / "alembic.ini"

    if not alembic_ini.exists():
        raise FileNotFoundError(f"Alembic config not found: {alembic_ini}")

    logger.debug("Loading Alembic config from: {}", alembic_ini)
    config = Config(str(alembic_ini))
    config.set_main_option("script_location", str(root / "alembic"))
    return config


def create_migration(message: str, autogenerate: bool = True) -> None:
    """
    Create a new revision file under alembic/versions.

    Args:
        message: Revision description
        autogenerate: Compare models against the database to fill in operations
    """
    logger.info("Creating migration: {}", message)
    config = get_alembic_config()

    try:
        alembic_command.revision(config, message=message, autogenerate=autogenerate)
        logger.info("Migration created successfully")
    except Exception as e:
        logger.error("Failed to create migration: {}", str(e))
        raise


def upgrade_database(revision: str = "head") -> None:
    """Upgrade the database to ``revision`` (latest by default)."""
    logger.info("Upgrading database to revision: {}", revision)
    config = get_alembic_config()

    try:
        alembic_command.upgrade(config, revision)
        logger.info("Database upgraded successfully to: {}", revision)
    except Exception as e:
        logger.error("Failed to upgrade database: {}", str(e))
        raise


def downgrade_database(revision: str) -> None:
    """Downgrade the database to ``revision``."""
    logger.info("Downgrading database to revision: {}", revision)
    config = get_alembic_config()

    try:
        alembic_command.downgrade(config, revision)
        logger.info("Database downgraded successfully to: {}", revision)
    except Exception as e:
        logger.error("Failed to downgrade database: {}", str(e))
        raise


def show_current_revision(settings: Optional[Settings] = None) -> Optional[str]:
    """
    Get the revision the database is currently stamped with.

    Args:
        settings: Application settings (loaded from the environment if omitted)

    Returns:
        Current revision string or None if no migrations applied
    """
    from electoral_atlas.database import get_engine

    engine = get_engine(settings or get_settings())

    try:
        with engine.connect() as connection:
            current_rev = MigrationContext.configure(connection).get_current_revision()
            logger.debug("Current revision: {}", current_rev)
            return current_rev
    except Exception as e:
        logger.error("Failed to get current revision: {}", str(e))
        raise
    finally:
        engine.dispose()


def show_history(project_root: Optional[Path] = None) -> list[tuple[str, str]]:
    """
    List all revisions, newest first.

    Returns:
        List of (revision, description) tuples
    """
    script = ScriptDirectory.from_config(get_alembic_config(project_root))
    revisions = [
        (revision.revision, revision.doc or "(no description)")
        for revision in script.walk_revisions()
    ]
    logger.debug("Found {} migrations", len(revisions))
    return revisions
