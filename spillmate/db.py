from __future__ import annotations
from typing import Generator
import logging

from sqlalchemy import event
from sqlmodel import SQLModel, create_engine, Session

from spillmate import config

logger = logging.getLogger(__name__)

_IS_SQLITE = config.DATABASE_URL.startswith("sqlite")
engine = create_engine(
    config.DATABASE_URL,
    echo=False,
    connect_args={"check_same_thread": False} if _IS_SQLITE else {},
)

if _IS_SQLITE:
    @event.listens_for(engine, "connect")
    def _sqlite_foreign_keys(dbapi_conn, _record):
        # Ensure FK enforcement on SQLite
        cur = dbapi_conn.cursor()
        cur.execute("PRAGMA foreign_keys=ON")
        cur.close()


def _add_missing_columns():
    """SQLite doesn't add columns to existing tables via create_all, so older
    databases get any missing nullable column added with ALTER TABLE."""
    with engine.begin() as conn:
        for table in SQLModel.metadata.sorted_tables:
            res = conn.exec_driver_sql(f"PRAGMA table_info('{table.name}')")
            existing = {r[1] for r in res.fetchall()}
            if not existing:
                continue
            for col in table.columns:
                if col.name in existing or not col.nullable:
                    continue
                ddl = col.type.compile(dialect=engine.dialect)
                logger.info("Adding column %s.%s (%s)", table.name, col.name, ddl)
                conn.exec_driver_sql(f"ALTER TABLE {table.name} ADD COLUMN {col.name} {ddl}")


def init_db():
    # Import models so their tables are registered on the metadata
    from spillmate import models  # noqa: F401

    SQLModel.metadata.create_all(engine)
    if _IS_SQLITE:
        try:
            _add_missing_columns()
        except Exception:
            # The app still runs; new fields won't persist until a manual migration.
            logger.exception("Column migration failed; continuing")


def get_session() -> Generator[Session, None, None]:
    with Session(engine) as session:
        yield session
