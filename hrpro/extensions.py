"""Flask extension instances and shared listeners."""

from __future__ import annotations

from flask_sqlalchemy import SQLAlchemy
from sqlalchemy import event
from sqlalchemy.engine import Engine


db = SQLAlchemy()

_sqlite_listener_registered = False


def init_sqlite_foreign_keys() -> None:
    """Enforce ON DELETE rules when running against SQLite."""
    global _sqlite_listener_registered
    if _sqlite_listener_registered:
        return

    @event.listens_for(Engine, "connect")
    def enable_foreign_keys(dbapi_connection, _connection_record) -> None:
        module = type(dbapi_connection).__module__
        if not module.startswith("sqlite3"):
            return
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    _sqlite_listener_registered = True
