from __future__ import annotations

import os
from typing import Any

from sqlalchemy import event, text
from sqlalchemy.engine import Engine
from sqlmodel import create_engine

DATABASE_URL = os.getenv(
    "DATABASE_URL",
    "postgresql+psycopg://workflow:workflow@db:5432/procedure_workflow",
)


def build_engine(url: str) -> Engine:
    kwargs: dict[str, Any] = {"pool_pre_ping": True}
    if url.startswith("sqlite"):
        kwargs["connect_args"] = {"check_same_thread": False}
    built = create_engine(url, **kwargs)
    if url.startswith("sqlite"):

        @event.listens_for(built, "connect")
        def _configure_sqlite(dbapi_connection: Any, _connection_record: object) -> None:
            # Hand transaction control to SQLAlchemy so BEGIN is emitted by the listener below.
            dbapi_connection.isolation_level = None
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

        @event.listens_for(built, "begin")
        def _begin_immediate(conn: Any) -> None:
            # Take the write lock up front; sqlite cannot upgrade a read lock under contention.
            conn.exec_driver_sql("BEGIN IMMEDIATE")

    return built


engine = build_engine(DATABASE_URL)


def get_engine() -> Engine:
    return engine


def check_db_ready() -> bool:
    try:
        with get_engine().connect() as conn:
            conn.execute(text("SELECT 1"))
        return True
    except Exception:
        return False
