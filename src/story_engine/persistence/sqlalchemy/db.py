from __future__ import annotations

import logging

from sqlalchemy import Engine, create_engine, event, inspect
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from .base import Base

logger = logging.getLogger(__name__)

DEFAULT_URL = "sqlite+pysqlite:///:memory:"


def _enable_sqlite_foreign_keys(dbapi_connection, _connection_record) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def build_engine(url: str = DEFAULT_URL, *, echo: bool = False) -> Engine:
    """Engine for the story tables.

    In-memory sqlite shares one connection so every unit of work sees the
    same database.
    """
    if url.startswith("sqlite") and ":memory:" in url:
        engine = create_engine(
            url,
            echo=echo,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    else:
        engine = create_engine(url, echo=echo)

    if engine.dialect.name == "sqlite":
        event.listen(engine, "connect", _enable_sqlite_foreign_keys)
    return engine


def build_session_factory(engine: Engine) -> sessionmaker[Session]:
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


def create_schema(engine: Engine) -> list[str]:
    """Create whichever story tables are missing and return their names."""
    existing = set(inspect(engine).get_table_names())
    missing = [table for name, table in Base.metadata.tables.items() if name not in existing]
    if not missing:
        return []
    Base.metadata.create_all(engine, tables=missing)
    created = sorted(table.name for table in missing)
    logger.info("Created story tables: %s", ", ".join(created))
    return created
