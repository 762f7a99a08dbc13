"""
Database configuration and session management.

- Defaults to SQLite for local dev
- Supports Postgres via APPHARBOR_DATABASE_URL

Services never commit: the owner of the session (request dependency, CLI
command) decides the transaction boundary.
"""

from __future__ import annotations

import os
from contextlib import contextmanager
from typing import Generator, Optional

from sqlalchemy import create_engine, event, inspect
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from appharbor.config import get_settings
from appharbor.exceptions import ConfigurationError
from appharbor.models.base import Base

SCHEMA_MODES = ("create_all", "migrations")


def get_database_url() -> str:
    settings = get_settings()
    return settings.DATABASE_URL


def create_db_engine(database_url: Optional[str] = None, *, echo: bool = False) -> Engine:
    url = database_url or get_database_url()

    connect_args: dict = {}
    if "sqlite" in url:
        connect_args["check_same_thread"] = False

    if url.startswith("sqlite:///:memory:") or url == "sqlite://":
        from sqlalchemy.pool import StaticPool

        engine = create_engine(
            url,
            echo=echo,
            connect_args=connect_args,
            poolclass=StaticPool,
        )
    else:
        engine = create_engine(
            url,
            echo=echo,
            pool_pre_ping=True,
            pool_recycle=3600,
            connect_args=connect_args,
        )

    if "sqlite" in url:

        @event.listens_for(engine, "connect")
        def _set_sqlite_pragma(dbapi_connection, _connection_record):
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()
            # Let SQLAlchemy emit BEGIN itself so SAVEPOINTs nest correctly.
            dbapi_connection.isolation_level = None

        @event.listens_for(engine, "begin")
        def _sqlite_begin(conn):
            conn.exec_driver_sql("BEGIN")

    return engine


def make_sessionmaker(bind: Engine) -> sessionmaker:
    return sessionmaker(
        autocommit=False, autoflush=False, expire_on_commit=False, bind=bind
    )


if os.getenv("ALEMBIC_RUNNING") != "true":
    engine = create_db_engine()
    SessionLocal = make_sessionmaker(engine)
else:  # pragma: no cover
    engine = None
    SessionLocal = None


def get_db() -> Generator[Session, None, None]:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def get_db_session() -> Generator[Session, None, None]:
    session = SessionLocal()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def import_all_models() -> None:
    """Register every ORM model on Base.metadata before create_all()."""
    from appharbor.app_registry import models as _registry_models  # noqa: F401


def init_db(*, create_tables: bool = False, bind_engine: Optional[Engine] = None) -> None:
    """
    Initialize database schema.

    When SCHEMA_MODE=migrations, this will NOT auto-create tables.
    Use `alembic upgrade head` for production deployments.
    """
    settings = get_settings()
    target_engine = bind_engine or engine
    if not target_engine:
        raise ConfigurationError("Database engine is not initialized")

    if not create_tables:
        return

    if settings.SCHEMA_MODE not in SCHEMA_MODES:
        raise ConfigurationError(
            f"Unknown SCHEMA_MODE '{settings.SCHEMA_MODE}'", config_key="SCHEMA_MODE"
        )

    if settings.SCHEMA_MODE == "migrations":
        existing_tables = inspect(target_engine).get_table_names()
        if not existing_tables:
            raise ConfigurationError(
                "SCHEMA_MODE=migrations: Database is empty. "
                "Run `alembic upgrade head` first to create tables.",
                config_key="SCHEMA_MODE",
            )
        return

    import_all_models()
    Base.metadata.create_all(bind=target_engine, checkfirst=True)
