"""Schema bootstrap and Alembic upgrades for the iftar database."""

from __future__ import annotations

import logging
import shutil
from pathlib import Path

from alembic import command
from alembic.config import Config
from alembic.runtime.migration import MigrationContext
from alembic.script import ScriptDirectory
from sqlalchemy import inspect

from .config import settings
from .database import engine

logger = logging.getLogger(__name__)


def init_db() -> None:
    upgrade_database(make_backup=False)


def alembic_url(url) -> str:
    """Render ``url`` for Alembic's configparser, where ``%`` starts interpolation."""
    if not isinstance(url, str):
        url = url.render_as_string(hide_password=False)
    return url.replace("%", "%%")


def _alembic_config() -> Config:
    script_location = Path(__file__).resolve().parent / "alembic"
    config = Config()
    config.set_main_option("script_location", str(script_location))
    config.set_main_option("sqlalchemy.url", alembic_url(engine.url))
    return config


def current_revision() -> str | None:
    with engine.connect() as connection:
        return MigrationContext.configure(connection).get_current_revision()


def head_revision() -> str | None:
    return ScriptDirectory.from_config(_alembic_config()).get_current_head()


def _backup_sqlite_file() -> str | None:
    db_path = Path(settings.database_path)
    if engine.dialect.name != "sqlite" or not db_path.exists():
        return None
    backup_path = db_path.with_suffix(db_path.suffix + ".bak")
    shutil.copy(db_path, backup_path)
    return f"Backup created at {backup_path}"


def upgrade_database(*, make_backup: bool = True) -> list[str]:
    """Bring the schema to the latest Alembic revision.

    Returns the actions taken; an empty list means the database was already
    at head. A SQLite file is copied to ``*.bak`` before pending migrations
    run unless ``make_backup`` is false.
    """
    inspector = inspect(engine)
    has_alembic = inspector.has_table("alembic_version")
    has_events = inspector.has_table("events")
    config = _alembic_config()

    if not has_alembic and not has_events:
        command.upgrade(config, "head")
        return ["Ran Alembic upgrade to head (fresh database)"]
    if not has_alembic:
        # Tables created outside Alembic already match the models.
        command.stamp(config, "head")
        return ["Stamped existing database to Alembic head"]

    current, head = current_revision(), head_revision()
    if current == head:
        return []

    actions: list[str] = []
    if make_backup:
        backup = _backup_sqlite_file()
        if backup:
            actions.append(backup)
    logger.info("Upgrading database from %s to %s", current, head)
    command.upgrade(config, "head")
    actions.append("Applied Alembic migrations to head")
    return actions
