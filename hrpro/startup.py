"""Operations the desktop shell calls before anyone has signed in.

None of these take an access token: they run while the database may still be
unconfigured or unreachable.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from flask import Flask
from sqlalchemy import create_engine, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.pool import NullPool

from hrpro.config import Config
from hrpro.errors import ConfigError, HRError, OperationError, ValidationError
from hrpro.local_config import (
    DatabaseConfig,
    ensure_jwt_secret,
    resolve_database_url,
    save_local_database_config,
)


logger = logging.getLogger(__name__)

CONNECT_TIMEOUT_SECONDS = 10


@dataclass
class StartupHealth:
    db_ok: bool
    runtime_ok: bool
    db_error: str = ""
    runtime_error: str = ""

    def to_dict(self) -> dict:
        payload: dict = {"dbOk": self.db_ok, "runtimeOk": self.runtime_ok}
        if self.db_error:
            payload["dbError"] = self.db_error
        if self.runtime_error:
            payload["runtimeError"] = self.runtime_error
        return payload


def get_startup_health(config_object: type[Config] = Config) -> StartupHealth:
    """Check that a JWT secret and a database URL can be resolved.

    A missing secret is generated and persisted, so the runtime side only
    fails on unreadable config or bad token lifetimes. No connection is made.
    """
    runtime_error = ""
    try:
        if not (config_object.JWT_SECRET or "").strip():
            ensure_jwt_secret()
        config_object.token_lifetimes()
    except (HRError, OSError) as exc:
        runtime_error = str(exc).strip()

    db_error = ""
    try:
        if not config_object.SQLALCHEMY_DATABASE_URI:
            resolve_database_url()
    except HRError as exc:
        db_error = str(exc).strip()

    return StartupHealth(
        db_ok=not db_error,
        runtime_ok=not runtime_error,
        db_error=db_error,
        runtime_error=runtime_error,
    )


def test_database_connection(database: DatabaseConfig) -> dict:
    """Open a throwaway connection with the given parameters and run ``SELECT 1``."""
    database = database.normalized()
    try:
        database.validate()
    except ConfigError as exc:
        raise ValidationError(exc.message) from exc
    return check_connection(database.connection_string())


def check_connection(url: str) -> dict:
    connect_args = {"connect_timeout": CONNECT_TIMEOUT_SECONDS} if url.startswith("postgresql") else {}
    engine = create_engine(url, poolclass=NullPool, connect_args=connect_args)
    try:
        with engine.connect() as connection:
            connection.execute(text("SELECT 1"))
    except SQLAlchemyError as exc:
        logger.warning("Database connection check failed: %s", exc)
        raise OperationError(f"database connection failed: {exc}", kind="database") from exc
    finally:
        engine.dispose()
    return {"ok": True}


def save_database_config(database: DatabaseConfig) -> dict:
    """Persist the connection parameters and make sure a JWT secret exists."""
    try:
        save_local_database_config(database)
    except ConfigError as exc:
        raise ValidationError(exc.message) from exc
    ensure_jwt_secret()
    logger.info("Database configuration saved.")
    return {"ok": True}


def reload_config_and_reconnect(config_object: type[Config] = Config, run_migrations: bool = True):
    """Rebuild the app and services from the current configuration.

    Returns ``(app, services)``. Raises ConfigError while the health check
    reports either side as invalid.
    """
    from hrpro import bootstrap, create_app

    health = get_startup_health(config_object)
    if not health.runtime_ok:
        raise ConfigError(f"runtime configuration is invalid: {health.runtime_error}")
    if not health.db_ok:
        raise ConfigError(f"database configuration is invalid: {health.db_error}")

    app: Flask = create_app(config_object)
    with app.app_context():
        check_connection(app.config["SQLALCHEMY_DATABASE_URI"])
    services = bootstrap(app, run_migrations=run_migrations)
    logger.info("Configuration reloaded and database reconnected.")
    return app, services
