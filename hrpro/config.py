"""Application configuration."""

from __future__ import annotations

import os

from hrpro.errors import ConfigError


DEFAULT_ACCESS_TOKEN_EXPIRY_MINUTES = 15
DEFAULT_REFRESH_TOKEN_EXPIRY_HOURS = 168


def _positive_int_env(name: str, default: int) -> int:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError as exc:
        raise ConfigError(f"invalid {name}") from exc
    if value <= 0:
        raise ConfigError(f"{name} must be positive")
    return value


class Config:
    ENV = os.getenv("APP_ENV", "development").strip() or "development"
    SQLALCHEMY_DATABASE_URI = os.getenv("APP_DB_CONNECTION_STRING", "").strip() or None
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    # 20 open connections, 10 kept idle, recycled after 30 minutes.
    SQLALCHEMY_ENGINE_OPTIONS = {
        "pool_pre_ping": True,
        "pool_size": 10,
        "max_overflow": 10,
        "pool_recycle": 1800,
    }

    JWT_SECRET = os.getenv("APP_JWT_SECRET", "").strip()
    # None means "parse from the environment" in token_lifetimes().
    ACCESS_TOKEN_EXPIRY_MINUTES: int | None = None
    REFRESH_TOKEN_EXPIRY_HOURS: int | None = None
    BCRYPT_ROUNDS = 12

    INITIAL_ADMIN_USERNAME = os.getenv("APP_INITIAL_ADMIN_USERNAME", "").strip()
    INITIAL_ADMIN_PASSWORD = os.getenv("APP_INITIAL_ADMIN_PASSWORD", "")
    INITIAL_ADMIN_ROLE = os.getenv("APP_INITIAL_ADMIN_ROLE", "Admin").strip() or "Admin"

    CONFIG_DIR = os.getenv("APP_CONFIG_DIR", "").strip() or None
    STORAGE_DIR = os.getenv("APP_STORAGE_DIR", "").strip() or None

    OPERATION_TIMEOUT_SECONDS = 10

    @classmethod
    def token_lifetimes(cls) -> dict[str, int]:
        """Parse the token lifetimes, raising ConfigError on bad values."""
        return {
            "ACCESS_TOKEN_EXPIRY_MINUTES": _positive_int_env(
                "APP_ACCESS_TOKEN_EXPIRY_MINUTES", DEFAULT_ACCESS_TOKEN_EXPIRY_MINUTES
            ),
            "REFRESH_TOKEN_EXPIRY_HOURS": _positive_int_env(
                "APP_REFRESH_TOKEN_EXPIRY_HOURS", DEFAULT_REFRESH_TOKEN_EXPIRY_HOURS
            ),
        }
