from __future__ import annotations

from collections.abc import Generator

from sqlalchemy import event
from sqlalchemy.engine import Engine
from sqlmodel import Session, SQLModel, create_engine

from app.config import get_settings


@event.listens_for(Engine, "connect")
def _set_sqlite_pragmas(dbapi_connection, connection_record):
    if type(dbapi_connection).__module__.split(".")[0] != "sqlite3":
        return
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.execute("PRAGMA busy_timeout=5000")
    cursor.close()


_db_url = get_settings().db_url
engine = create_engine(
    _db_url,
    echo=False,
    connect_args={"check_same_thread": False} if _db_url.startswith("sqlite") else {},
)


def create_db_and_tables() -> None:
    SQLModel.metadata.create_all(engine)
    _run_migrations(engine)


def _run_migrations(eng) -> None:
    """Forward-only schema additions that create_all does not cover."""
    from sqlalchemy import inspect, text

    indexes = [i["name"] for i in inspect(eng).get_indexes("service_media")]
    if "ix_service_media_status_updated" not in indexes:
        with eng.begin() as conn:
            conn.execute(text(
                "CREATE INDEX IF NOT EXISTS ix_service_media_status_updated "
                "ON service_media(processing_status, updated_at)"
            ))


def get_session() -> Generator[Session, None, None]:
    with Session(engine) as session:
        yield session
