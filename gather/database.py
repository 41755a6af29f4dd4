"""Database helpers for Gather."""

from __future__ import annotations

from contextlib import contextmanager

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import scoped_session, sessionmaker

from .config import settings

DATABASE_URL = f"sqlite:///{settings.database_path}"


def enable_sqlite_write_locks(target: Engine) -> Engine:
    """Start every SQLite transaction with ``BEGIN IMMEDIATE``.

    pysqlite normally defers ``BEGIN`` until the first write, so two requests
    can both read the attendee count before either inserts. Taking the write
    lock up front serializes the capacity check with the insert that follows.
    """

    if target.dialect.name != "sqlite":
        return target

    @event.listens_for(target, "connect")
    def _disable_pysqlite_begin(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(target, "begin")
    def _begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    return target


def build_engine(url: str, *, busy_timeout: int | None = None) -> Engine:
    connect_args: dict = {"check_same_thread": False}
    if busy_timeout is not None:
        connect_args["timeout"] = busy_timeout
    return enable_sqlite_write_locks(
        create_engine(url, connect_args=connect_args, future=True)
    )


def build_session_factory(bind: Engine):
    return scoped_session(
        sessionmaker(
            bind=bind,
            autoflush=False,
            autocommit=False,
            future=True,
            expire_on_commit=False,
        )
    )


engine = build_engine(DATABASE_URL, busy_timeout=settings.sqlite_busy_timeout_seconds)
SessionLocal = build_session_factory(engine)


@contextmanager
def get_session():
    """Context manager returning a SQLAlchemy session."""
    session = SessionLocal()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
