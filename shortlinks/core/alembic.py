"""Alembic migration utilities and helpers.

The ``short_urls`` table is owned by the Alembic revisions under
``alembic/versions``. These helpers let the store apply them at startup
and report which revision a database is on.
"""

import logging
from pathlib import Path
from typing import Optional

from alembic import command
from alembic.config import Config
from alembic.runtime.migration import MigrationContext
from sqlalchemy import create_engine
from sqlalchemy.engine import make_url

from shortlinks.core.config import settings

logger = logging.getLogger(__name__)

# Project paths
ALEMBIC_DIR = Path(__file__).resolve().parent.parent.parent / "alembic"
ALEMBIC_INI = Path(__file__).resolve().parent.parent.parent / "alembic.ini"


def get_alembic_config(database_url: Optional[str] = None) -> Config:
    """Build an Alembic config pointing at this project's migration scripts.

    Args:
        database_url: SQLAlchemy URL to migrate; defaults to the configured one

    Returns:
        Config: Alembic configuration object
    """
    alembic_cfg = Config(str(ALEMBIC_INI))
    alembic_cfg.set_main_option("script_location", str(ALEMBIC_DIR))
    alembic_cfg.set_main_option(
        "sqlalchemy.url",
        # ConfigParser interpolation treats % specially
        (database_url or str(settings.SQLALCHEMY_DATABASE_URI)).replace("%", "%%")
    )
    alembic_cfg.attributes["configure_logger"] = False
    return alembic_cfg


def run_migrations(database_url: Optional[str] = None, revision: str = "head") -> None:
    """Apply pending Alembic migrations.

    ``alembic/env.py`` drives an async engine with ``asyncio.run``, so this
    must not be called from a running event loop; use ``asyncio.to_thread``.

    Args:
        database_url: SQLAlchemy URL to migrate; defaults to the configured one
        revision: Target revision
    """
    try:
        command.upgrade(get_alembic_config(database_url), revision)
        logger.info(f"Successfully applied Alembic migrations up to {revision}")
    except Exception as e:
        logger.error(f"Failed to run migrations: {e}")
        raise


def _sync_url(database_url: str) -> str:
    """Swap an async driver for its synchronous counterpart."""
    url = make_url(database_url)
    drivers = {
        "postgresql+asyncpg": "postgresql+psycopg",
        "sqlite+aiosqlite": "sqlite",
    }
    return url.set(drivername=drivers.get(url.drivername, url.drivername)).render_as_string(
        hide_password=False
    )


def get_current_revision(database_url: Optional[str] = None) -> Optional[str]:
    """Get the current Alembic revision of the database.

    Returns:
        str: Current revision identifier or None if it cannot be determined
    """
    engine = create_engine(_sync_url(database_url or str(settings.SQLALCHEMY_DATABASE_URI)))
    try:
        with engine.connect() as conn:
            return MigrationContext.configure(conn).get_current_revision()
    except Exception as e:
        logger.error(f"Failed to get current revision: {e}")
        return None
    finally:
        engine.dispose()
