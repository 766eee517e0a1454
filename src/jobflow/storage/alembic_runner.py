"""Run the jobflow Alembic migrations from code."""

from __future__ import annotations

import logging
from pathlib import Path

from alembic import command
from alembic.config import Config

logger = logging.getLogger(__name__)

PROJECT_ROOT = Path(__file__).resolve().parents[3]


def alembic_config(db_path: Path) -> Config:
    """Alembic config pointed at ``db_path`` and the repository's migration scripts."""

    config = Config(str(PROJECT_ROOT / "alembic.ini"))
    config.set_main_option("script_location", str(PROJECT_ROOT / "alembic"))
    config.set_main_option("sqlalchemy.url", f"sqlite:///{db_path}")
    return config


def upgrade_head(db_path: Path) -> None:
    """Create or upgrade the schema of ``db_path`` to the latest revision."""

    db_path.parent.mkdir(parents=True, exist_ok=True)
    logger.debug("Upgrading schema of %s", db_path)
    command.upgrade(alembic_config(db_path), "head")
