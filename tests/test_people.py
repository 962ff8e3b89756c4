from __future__ import annotations

from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import select

from hrpro.errors import (
    CannotDeactivateSelfError,
    CannotRemoveOwnAdminError,
    DepartmentHasEmployeesError,
    DuplicateNameError,
    DuplicateUsernameError,
    ForbiddenError,
    NotFoundError,
    OperationError,
    ValidationError,
)
from hrpro.extensions import db
from hrpro.models import AuditLog, Department, Employee, User
from hrpro.security import verify_password
from hrpro.services.employees import EmployeeInput, resolve_contract_extension


def _employee_input(**overrides) -> EmployeeInput:
    values = dict(
        first_name=" Grace ",
        last_name="Nakato",
        position="Accountant",
        employment_status="Active",
        date_of_hire="2025-03-01",
        base_salary_amount="1200000",
    )
    values.update(overrides)
    return EmployeeInput(**values)


def test_create_employee_normalizes_fields(services, claims):
    employee = services.employees.create_employee(
        claims["hr_officer"],
        _employee_input(gender="female", phone="0772 123 456", email="grace@example.com"),
    )

    assert employee.first_name == "Grace"
    assert employee.gender == "Female"
    assert employee.phone == "+256772123456"
    assert employee.phone_e164 == "+256772123456"
    assert employee.date_of_hire == date(2025, 3, 1)
    assert employee.base_salary_amount == Decimal("1200000")
    log = db.session.execute(select(AuditLog).where(AuditLog.action == "employee.create")).scalar_one()
    assert log.metadata_json["name"] == "Grace Nakato"


def test_employee_validation(services, claims):
    hr = claims["hr_officer"]
    cases = [
        _employee_input(first_name="  "),
        _employee_input(date_of_hire="01/03/2025"),
        _employee_input(base_salary_amount="-5"),
        _employee_input(base_salary_amount="lots"),
        _employee_input(gender="other"),
        _employee_input(email="not-an-email"),
        _employee_input(phone="abc"),
        _employee_input(department_id=999),
    ]
    for data in cases:
        with pytest.raises(ValidationError):
            services.employees.create_employee(hr, data)


def test_employee_phone_uses_configured_country(services, claims, monkeypatch):
    monkeypatch.setenv("APP_DEFAULT_COUNTRY_ISO2", "TZ")
    monkeypatch.setenv("APP_DEFAULT_COUNTRY_CALLING_CODE", "+255")

    employee = services.employees.create_employee(claims["admin"], _employee_input(phone="0712345678"))

    assert employee.phone_e164 == "+255712345678"


def test_employee_listing_and_roles(services, claims, make_employee):
    department = services.departments.create_department(claims["hr_officer"], "Finance")
    make_employee(first_name="Alice", department_id=department.id)
    make_employee(first_name="Bob", status="Inactive")

    page = services.employees.list_employees(claims["viewer"], q="ali")
    assert [e.first_name for e in page.items] == ["Alice"]
    assert page.items[0].department_name == "Finance"

    inactive = services.employees.list_employees(claims["finance_officer"], status="Inactive")
    assert [e.first_name for e in inactive.items] == ["Bob"]

    with pytest.raises(ForbiddenError):
        services.employees.create_employee(claims["viewer"], _employee_input())
    with pytest.raises(ForbiddenError):
        services.employees.list_employees(None)


def test_update_and_delete_employee(services, claims, make_employee):
    employee = make_employee()

    updated = services.employees.update_employee(
        claims["admin"], employee.id, _employee_input(position="Senior Accountant")
    )
    assert updated.position == "Senior Accountant"

    services.employees.delete_employee(claims["admin"], employee.id)
    assert db.session.get(Employee, employee.id) is None
    with pytest.raises(NotFoundError):
        services.employees.get_employee(claims["admin"], employee.id)


def test_contract_upload_replace_and_remove(services, claims, make_employee):
    employee = make_employee()
    hr = claims["hr_officer"]

    services.employees.upload_contract(hr, employee.id, "contract.pdf", "application/pdf", b"%PDF-1.4 first")
    first_path = db.session.get(Employee, employee.id).contract_file_path
    assert first_path.startswith(f"employees/{employee.id}/contract/")
    assert first_path.endswith(".pdf")

    services.employees.upload_contract(hr, employee.id, "contract.docx", None, b"PK second")
    second_path = db.session.get(Employee, employee.id).contract_file_path
    assert second_path.endswith(".docx")
    assert not services.contract_store.resolve(first_path).exists()

    stored = services.employees.get_contract(claims["viewer"], employee.id)
    assert stored.data == b"PK second"

    services.employees.remove_contract(hr, employee.id)
    assert db.session.get(Employee, employee.id).contract_file_path is None
    assert not services.contract_store.resolve(second_path).exists()
    with pytest.raises(NotFoundError):
        services.employees.get_contract(hr, employee.id)


def test_contract_extension_from_sanitized_filename():
    assert resolve_contract_extension("contract.bin", "application/pdf; charset=binary") == ".pdf"
    assert resolve_contract_extension("  ../../secret/Contract Final.DOC ", None) == ".doc"
    assert resolve_contract_extension("../offer.docx", "application/octet-stream") == ".docx"
    with pytest.raises(ValidationError):
        resolve_contract_extension("contract.pdf.exe", None)
    with pytest.raises(ValidationError):
        resolve_contract_extension("../../", None)


def test_contract_rejects_unknown_type_and_empty_file(services, claims, make_employee):
    employee = make_employee()

    with pytest.raises(ValidationError):
        services.employees.upload_contract(claims["admin"], employee.id, "photo.png", "image/png", b"\x89PNG")
    with pytest.raises(ValidationError):
        services.employees.upload_contract(claims["admin"], employee.id, "contract.pdf", "application/pdf", b"")


def test_contract_store_refuses_paths_outside_root(services):
    with pytest.raises(NotFoundError):
        services.contract_store.read_contract("../../etc/passwd")


def test_department_crud(services, claims, make_employee):
    hr = claims["hr_officer"]
    finance = services.departments.create_department(hr, " Finance ", "Money")
    ops = services.departments.create_department(hr, "Operations")

    with pytest.raises(DuplicateNameError):
        services.departments.create_department(hr, "finance")
    with pytest.raises(DuplicateNameError):
        services.departments.update_department(hr, ops.id, "FINANCE")

    renamed = services.departments.update_department(hr, ops.id, "Ops", "  ")
    assert renamed.name == "Ops"
    assert renamed.description is None

    make_employee(department_id=finance.id)
    assert services.departments.get_department(claims["viewer"], finance.id).employee_count == 1
    with pytest.raises(DepartmentHasEmployeesError):
        services.departments.delete_department(hr, finance.id)

    services.departments.delete_department(hr, ops.id)
    assert db.session.get(Department, ops.id) is None
    with pytest.raises(NotFoundError):
        services.departments.delete_department(hr, ops.id)


def test_department_handler_prefixes(handlers, token_for):
    handlers.departments.create_department(token_for("admin"), "Finance")

    with pytest.raises(OperationError) as excinfo:
        handlers.departments.create_department(token_for("admin"), "FINANCE")
    assert excinfo.value.kind == "duplicate_name"
    assert str(excinfo.value).startswith("duplicate department name:")

    with pytest.raises(ForbiddenError):
        handlers.departments.create_department(token_for("viewer"), "Sales")


def test_department_search(services, claims):
    services.departments.create_department(claims["admin"], "Finance", "Payroll and budgets")
    services.departments.create_department(claims["admin"], "Operations")

    page = services.departments.list_departments(claims["viewer"], q="budget")

    assert [d.name for d in page.items] == ["Finance"]
    assert page.total_count == 1


def test_user_administration(services, claims):
    admin = claims["admin"]
    user = services.users.create_user(admin, " clerk ", "long-enough", "HR Officer")

    assert user.username == "clerk"
    assert user.role == "hr_officer"
    assert user.is_active is True

    with pytest.raises(DuplicateUsernameError):
        services.users.create_user(admin, "CLERK", "long-enough", "viewer")
    with pytest.raises(ValidationError):
        services.users.create_user(admin, "shorty", "short", "viewer")
    with pytest.raises(ValidationError):
        services.users.create_user(admin, "boss", "long-enough", "master_admin")

    updated = services.users.update_user(admin, user.id, "clerk2", "viewer")
    assert updated.role == "viewer"

    services.users.reset_user_password(admin, user.id, "brand-new-password")
    assert verify_password("brand-new-password", db.session.get(User, user.id).password_hash)

    assert services.users.set_user_active(admin, user.id, False).is_active is False
    actions = set(db.session.execute(select(AuditLog.action)).scalars())
    assert {"user.create", "user.update", "user.reset_password", "user.deactivate"} <= actions


def test_admin_cannot_lock_themselves_out(services, claims):
    admin = claims["admin"]

    with pytest.raises(CannotDeactivateSelfError):
        services.users.set_user_active(admin, admin.user_id, False)
    with pytest.raises(CannotRemoveOwnAdminError):
        services.users.update_user(admin, admin.user_id, "admin", "viewer")


def test_user_admin_is_admin_only(services, claims):
    for role in ("hr_officer", "finance_officer", "viewer"):
        with pytest.raises(ForbiddenError):
            services.users.list_users(claims[role])

    page = services.users.list_users(claims["admin"], q="fin")
    assert [u.username for u in page.items] == ["finance"]
