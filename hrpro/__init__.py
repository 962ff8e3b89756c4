"""Flask application factory and service bootstrap."""

from __future__ import annotations

from datetime import timedelta
from pathlib import Path

from flask import Flask

from hrpro.config import Config
from hrpro.extensions import db, init_sqlite_foreign_keys
from hrpro.handlers import Handlers
from hrpro.local_config import app_config_dir, ensure_jwt_secret, resolve_database_url
from hrpro.migrate import run_migrations as apply_migrations
from hrpro.services import (
    AttendanceService,
    AuditService,
    AuthService,
    DashboardService,
    DepartmentService,
    EmployeeService,
    LeaveService,
    PayrollService,
    ReportService,
    Services,
    SettingsService,
    UserService,
)
from hrpro.services.audit import DatabaseAuditRecorder
from hrpro.storage import ContractStore, LogoStore


LOGO_SUBDIR = "logos"


def create_app(config_object: type[Config] = Config) -> Flask:
    app = Flask(__name__, instance_relative_config=False)
    app.config.from_object(config_object)

    if not app.config.get("SQLALCHEMY_DATABASE_URI"):
        app.config["SQLALCHEMY_DATABASE_URI"] = resolve_database_url()
    if app.config.get("ACCESS_TOKEN_EXPIRY_MINUTES") is None or app.config.get("REFRESH_TOKEN_EXPIRY_HOURS") is None:
        for key, value in config_object.token_lifetimes().items():
            if app.config.get(key) is None:
                app.config[key] = value

    _apply_statement_timeout(app)
    db.init_app(app)
    init_sqlite_foreign_keys()

    # Ensure model metadata is loaded for migrations and tests.
    from hrpro import models as _models  # noqa: F401

    return app


def _apply_statement_timeout(app: Flask) -> None:
    """Bound every PostgreSQL statement by OPERATION_TIMEOUT_SECONDS."""
    uri = app.config.get("SQLALCHEMY_DATABASE_URI") or ""
    timeout_ms = int(app.config.get("OPERATION_TIMEOUT_SECONDS") or 0) * 1000
    if not uri.startswith("postgresql") or timeout_ms <= 0:
        return
    options = dict(app.config.get("SQLALCHEMY_ENGINE_OPTIONS") or {})
    connect_args = dict(options.get("connect_args") or {})
    connect_args.setdefault("options", f"-c statement_timeout={timeout_ms}")
    options["connect_args"] = connect_args
    app.config["SQLALCHEMY_ENGINE_OPTIONS"] = options


def storage_root(app: Flask) -> Path:
    configured = (app.config.get("STORAGE_DIR") or "").strip()
    return Path(configured) if configured else app_config_dir()


def bootstrap(app: Flask, run_migrations: bool = True) -> Services:
    """Build and wire every engine, then seed the first account."""
    with app.app_context():
        jwt_secret = (app.config.get("JWT_SECRET") or "").strip() or ensure_jwt_secret()
        app.config["JWT_SECRET"] = jwt_secret

        if run_migrations and app.config.get("ENV") != "production":
            apply_migrations(app)

        auth = AuthService(
            jwt_secret,
            access_token_lifetime=timedelta(minutes=app.config["ACCESS_TOKEN_EXPIRY_MINUTES"]),
            refresh_token_lifetime=timedelta(hours=app.config["REFRESH_TOKEN_EXPIRY_HOURS"]),
        )
        services = Services(
            auth=auth,
            audit=AuditService(),
            attendance=AttendanceService(),
            leave=LeaveService(),
            payroll=PayrollService(),
            employees=EmployeeService(),
            departments=DepartmentService(),
            users=UserService(),
            settings=SettingsService(),
            dashboard=DashboardService(),
            reports=ReportService(),
        )

        recorder = DatabaseAuditRecorder()
        for service in services.audited():
            service.set_audit_recorder(recorder)

        services.attendance.set_lunch_defaults_provider(services.settings)
        services.employees.set_phone_defaults_provider(services.settings)
        services.attendance.set_leave_integration(services.leave)

        root = storage_root(app)
        services.contract_store = ContractStore(root)
        services.logo_store = LogoStore(root / LOGO_SUBDIR)
        services.employees.set_contract_store(services.contract_store)
        services.settings.set_logo_store(services.logo_store)
        app.logger.info("Storage root resolved to %s.", root)

        seeded = auth.seed_initial_admin(
            app.config.get("INITIAL_ADMIN_USERNAME"),
            app.config.get("INITIAL_ADMIN_PASSWORD"),
            app.config.get("INITIAL_ADMIN_ROLE"),
        )
        if not seeded:
            app.logger.info("Initial admin seeding skipped.")

    services.handlers = Handlers.from_services(services)
    return services
