from __future__ import annotations

import os
from collections.abc import Iterator
from contextlib import contextmanager

from sqlalchemy import event, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import OperationalError
from sqlmodel import Session, create_engine

from rbac_engine.domain.errors import StoreUnavailableError

DATABASE_URL = os.getenv(
    "DATABASE_URL",
    "postgresql+psycopg://rbac:rbac@db:5432/rbac",
)


def enable_sqlite_foreign_keys(target: Engine) -> None:
    @event.listens_for(target, "connect")
    def _enable_foreign_keys(dbapi_connection: object, _connection_record: object) -> None:
        cursor = dbapi_connection.cursor()  # type: ignore[attr-defined]
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


def _build_engine(url: str) -> Engine:
    if url.startswith("sqlite"):
        built = create_engine(url, connect_args={"check_same_thread": False})
        enable_sqlite_foreign_keys(built)
        return built
    return create_engine(url, pool_pre_ping=True)


engine = _build_engine(DATABASE_URL)


def get_engine() -> Engine:
    return engine


@contextmanager
def session_scope() -> Iterator[Session]:
    """Open a store session; uncommitted work is rolled back on exit.

    Connection-level failures surface as ``StoreUnavailableError``.
    """
    try:
        with Session(get_engine(), expire_on_commit=False) as session:
            yield session
    except OperationalError as exc:
        raise StoreUnavailableError("identity store unavailable") from exc


def check_db_ready() -> bool:
    try:
        with get_engine().connect() as conn:
            conn.execute(text("SELECT 1"))
        return True
    except Exception:
        return False
