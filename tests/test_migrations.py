from __future__ import annotations

from sqlalchemy import inspect, text

from hrpro import create_app
from hrpro.config import Config
from hrpro.extensions import db
from hrpro.migrate import alembic_config, run_migrations


EXPECTED_TABLES = {
    "users",
    "refresh_tokens",
    "departments",
    "employees",
    "attendance_records",
    "lunch_daily",
    "leave_types",
    "leave_entitlements",
    "leave_locked_dates",
    "leave_requests",
    "payroll_batches",
    "payroll_entries",
    "audit_logs",
    "app_settings",
}


def test_upgrade_creates_schema(tmp_path, monkeypatch):
    monkeypatch.setenv("APP_CONFIG_DIR", str(tmp_path / "config"))

    class FileConfig(Config):
        TESTING = True
        SQLALCHEMY_DATABASE_URI = f"sqlite+pysqlite:///{tmp_path / 'hr.db'}"
        SQLALCHEMY_ENGINE_OPTIONS = {}
        JWT_SECRET = "migration-test-secret"

    app = create_app(FileConfig)
    run_migrations(app)

    with app.app_context():
        tables = set(inspect(db.engine).get_table_names())
        assert EXPECTED_TABLES <= tables
        with db.engine.connect() as connection:
            version = connection.execute(text("SELECT version_num FROM alembic_version")).scalar_one()
        assert version == "0001_initial"
        db.engine.dispose()


def test_alembic_config_escapes_percent():
    cfg = alembic_config("postgresql+psycopg://user:p%40ss@db/hr")

    assert cfg.get_main_option("sqlalchemy.url") == "postgresql+psycopg://user:p%40ss@db/hr"
