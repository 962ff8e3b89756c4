from __future__ import annotations

import pytest

from hrpro import startup
from hrpro.config import Config
from hrpro.errors import ConfigError, OperationError, ValidationError
from hrpro.extensions import db
from hrpro.local_config import DatabaseConfig, load_local_config


POSTGRES_URL = "postgresql+psycopg://u:p@localhost:5432/hrpro?sslmode=disable"


class UnconfiguredConfig(Config):
    TESTING = True
    ENV = "test"
    SQLALCHEMY_DATABASE_URI = None
    SQLALCHEMY_ENGINE_OPTIONS = {}
    JWT_SECRET = ""


@pytest.fixture(autouse=True)
def config_dir(tmp_path, monkeypatch):
    monkeypatch.setenv("APP_CONFIG_DIR", str(tmp_path / "config"))
    for name in (
        "APP_JWT_SECRET",
        "APP_DB_CONNECTION_STRING",
        "APP_ACCESS_TOKEN_EXPIRY_MINUTES",
        "APP_REFRESH_TOKEN_EXPIRY_HOURS",
    ):
        monkeypatch.delenv(name, raising=False)
    return tmp_path / "config"


def test_health_generates_missing_runtime_secret(monkeypatch):
    monkeypatch.setenv("APP_DB_CONNECTION_STRING", POSTGRES_URL)

    health = startup.get_startup_health(UnconfiguredConfig)

    assert health.db_ok and health.runtime_ok
    assert health.to_dict() == {"dbOk": True, "runtimeOk": True}
    assert load_local_config().jwt_secret


def test_health_reports_missing_database():
    health = startup.get_startup_health(UnconfiguredConfig)

    assert health.runtime_ok
    assert not health.db_ok
    assert health.to_dict()["dbError"] == "database is not configured"


def test_health_reports_bad_token_lifetime(monkeypatch):
    monkeypatch.setenv("APP_DB_CONNECTION_STRING", POSTGRES_URL)
    monkeypatch.setenv("APP_ACCESS_TOKEN_EXPIRY_MINUTES", "soon")

    health = startup.get_startup_health(UnconfiguredConfig)

    assert health.db_ok
    assert not health.runtime_ok
    assert "APP_ACCESS_TOKEN_EXPIRY_MINUTES" in health.runtime_error


def test_connection_check_rejects_incomplete_parameters():
    with pytest.raises(ValidationError, match="database host is required"):
        startup.test_database_connection(DatabaseConfig(host="  ", database="hrpro", user="hr"))


def test_connection_check_reports_unreachable_server():
    params = DatabaseConfig(host="127.0.0.1", port=1, database="hrpro", user="hr", password="secret")

    with pytest.raises(OperationError) as excinfo:
        startup.test_database_connection(params)

    assert excinfo.value.kind == "database"
    assert str(excinfo.value).startswith("database connection failed")


def test_connection_check_accepts_reachable_database(tmp_path):
    assert startup.check_connection(f"sqlite+pysqlite:///{tmp_path / 'hr.db'}") == {"ok": True}


def test_save_database_config_persists_parameters_and_secret():
    result = startup.save_database_config(
        DatabaseConfig(host=" db.local ", port=5433, database=" hrpro ", user=" hr ", password="pw", sslmode="require")
    )

    assert result == {"ok": True}
    saved = load_local_config()
    assert saved.database == DatabaseConfig(
        host="db.local", port=5433, database="hrpro", user="hr", password="pw", sslmode="require"
    )
    assert saved.jwt_secret
    assert startup.get_startup_health(UnconfiguredConfig).db_ok


def test_save_database_config_rejects_bad_port():
    with pytest.raises(ValidationError, match="port"):
        startup.save_database_config(DatabaseConfig(host="db", port=70000, database="hrpro", user="hr"))

    assert load_local_config().database is None


def test_reload_refuses_while_database_is_unconfigured():
    with pytest.raises(ConfigError, match="database configuration is invalid"):
        startup.reload_config_and_reconnect(UnconfiguredConfig)


def test_reload_rebuilds_services(tmp_path):
    class FileConfig(UnconfiguredConfig):
        SQLALCHEMY_DATABASE_URI = f"sqlite+pysqlite:///{tmp_path / 'hr.db'}"
        STORAGE_DIR = str(tmp_path / "storage")
        INITIAL_ADMIN_USERNAME = ""
        INITIAL_ADMIN_PASSWORD = ""

    app, services = startup.reload_config_and_reconnect(FileConfig)

    assert services.handlers is not None
    assert app.config["JWT_SECRET"] == load_local_config().jwt_secret
    with app.app_context():
        db.engine.dispose()
