from __future__ import annotations

from datetime import date, timedelta
from decimal import Decimal
from typing import Iterator

import pytest
from sqlalchemy.pool import StaticPool

from hrpro import bootstrap, create_app
from hrpro.authorization import Claims
from hrpro.config import Config
from hrpro.extensions import db
from hrpro.models import Employee, User
from hrpro.security import create_access_token, hash_password


TEST_JWT_SECRET = "test-secret-with-enough-length-for-hs256"

SEEDED_USERS = [
    (1, "admin", "admin"),
    (2, "hr", "hr_officer"),
    (3, "finance", "finance_officer"),
    (4, "viewer", "viewer"),
    (5, "master", "master_admin"),
]


class TestConfig(Config):
    TESTING = True
    ENV = "test"
    SQLALCHEMY_DATABASE_URI = "sqlite+pysqlite:///:memory:"
    SQLALCHEMY_ENGINE_OPTIONS = {
        "connect_args": {"check_same_thread": False},
        "poolclass": StaticPool,
    }
    JWT_SECRET = TEST_JWT_SECRET
    ACCESS_TOKEN_EXPIRY_MINUTES = 15
    REFRESH_TOKEN_EXPIRY_HOURS = 168
    BCRYPT_ROUNDS = 4
    INITIAL_ADMIN_USERNAME = ""
    INITIAL_ADMIN_PASSWORD = ""


@pytest.fixture()
def app(tmp_path, monkeypatch) -> Iterator:
    monkeypatch.setenv("APP_CONFIG_DIR", str(tmp_path / "config"))
    for name in ("APP_DEFAULT_COUNTRY_NAME", "APP_DEFAULT_COUNTRY_ISO2", "APP_DEFAULT_COUNTRY_CALLING_CODE"):
        monkeypatch.delenv(name, raising=False)

    app = create_app(TestConfig)
    app.config["STORAGE_DIR"] = str(tmp_path / "storage")
    with app.app_context():
        db.create_all()
        db.session.add_all(
            [
                User(id=user_id, username=username, password_hash=hash_password("password123"), role=role, is_active=True)
                for user_id, username, role in SEEDED_USERS
            ]
        )
        db.session.commit()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture()
def services(app):
    return bootstrap(app, run_migrations=False)


@pytest.fixture()
def handlers(services):
    return services.handlers


@pytest.fixture()
def claims() -> dict[str, Claims]:
    return {role: Claims(user_id=user_id, username=username, role=role) for user_id, username, role in SEEDED_USERS}


@pytest.fixture()
def token_for(claims):
    def build(role: str, lifetime: timedelta = timedelta(minutes=15)) -> str:
        return create_access_token(claims[role], TEST_JWT_SECRET, lifetime)

    return build


@pytest.fixture()
def make_employee():
    def build(
        employee_id: int | None = None,
        first_name: str = "Amina",
        last_name: str = "Okello",
        status: str = "Active",
        salary: str = "1000000",
        department_id: int | None = None,
    ) -> Employee:
        employee = Employee(
            id=employee_id,
            first_name=first_name,
            last_name=last_name,
            position="Officer",
            employment_status=status,
            date_of_hire=date(2024, 1, 15),
            base_salary_amount=Decimal(salary),
            department_id=department_id,
        )
        db.session.add(employee)
        db.session.commit()
        return employee

    return build
