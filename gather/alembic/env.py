"""Alembic environment for Gather.

``storage.upgrade_database`` hands over an open connection in
``config.attributes["connection"]``. Running ``alembic`` by hand falls back
to the configured Gather database.
"""

from __future__ import annotations

from alembic import context

from gather import database
from gather.models import Base

config = context.config
target_metadata = Base.metadata


def _configure(connection) -> None:
    context.configure(
        connection=connection,
        target_metadata=target_metadata,
        compare_type=True,
        render_as_batch=connection.dialect.name == "sqlite",
    )
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_offline() -> None:
    context.configure(
        url=database.DATABASE_URL,
        target_metadata=target_metadata,
        literal_binds=True,
        render_as_batch=database.DATABASE_URL.startswith("sqlite"),
    )
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    shared = config.attributes.get("connection")
    if shared is not None:
        _configure(shared)
        return
    with database.engine.begin() as connection:
        _configure(connection)


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
