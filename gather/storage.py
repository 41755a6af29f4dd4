"""Schema management for the Gather database."""

from __future__ import annotations

import logging
import shutil
from pathlib import Path

from alembic import command
from alembic.config import Config
from alembic.runtime.migration import MigrationContext
from alembic.script import ScriptDirectory
from sqlalchemy import inspect
from sqlalchemy.engine import Connection

from .config import settings
from .database import engine

logger = logging.getLogger("uvicorn.error")

MIGRATIONS_DIR = Path(__file__).resolve().parent / "alembic"


def init_db() -> None:
    upgrade_database(make_backup=False)


def _alembic_config(connection: Connection) -> Config:
    """Build an in-memory Alembic config bound to ``connection``.

    The connection travels through ``config.attributes`` so the engine URL
    never passes through Alembic's ini interpolation.
    """
    config = Config()
    config.set_main_option("script_location", str(MIGRATIONS_DIR))
    config.attributes["connection"] = connection
    return config


def head_revision() -> str | None:
    return ScriptDirectory(str(MIGRATIONS_DIR)).get_current_head()


def current_revision(connection: Connection) -> str | None:
    return MigrationContext.configure(connection).get_current_revision()


def backup_database(db_path: Path) -> Path | None:
    """Copy the SQLite file next to itself as ``<name>.bak``."""
    if not db_path.exists():
        return None
    backup_path = db_path.with_name(f"{db_path.name}.bak")
    shutil.copy2(db_path, backup_path)
    return backup_path


def upgrade_database(*, make_backup: bool = True) -> list[str]:
    """Bring the schema to the newest migration and describe what happened.

    A database whose Gather tables were created without Alembic (for example
    by ``Base.metadata.create_all``) is stamped rather than migrated.
    """
    actions: list[str] = []
    if make_backup and engine.dialect.name == "sqlite":
        backup_path = backup_database(Path(settings.database_path))
        if backup_path:
            actions.append(f"Backed up {settings.database_path} to {backup_path}")

    head = head_revision()
    with engine.begin() as connection:
        before = current_revision(connection)
        config = _alembic_config(connection)
        if before is None and inspect(connection).has_table("events"):
            command.stamp(config, "head")
            actions.append(f"Stamped existing Gather tables at {head}")
        elif before == head:
            actions.append(f"Schema already at {head}")
        else:
            command.upgrade(config, "head")
            actions.append(f"Upgraded schema from {before or 'empty database'} to {head}")

    for action in actions:
        logger.info(action)
    return actions
