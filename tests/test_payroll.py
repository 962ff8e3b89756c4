from __future__ import annotations

import csv
import io
from decimal import Decimal

import pytest
from sqlalchemy import select

from hrpro.errors import (
    DuplicateMonthError,
    ExportNotAllowedError,
    ForbiddenError,
    ImmutableBatchError,
    InvalidTransitionError,
    OperationError,
    ValidationError,
)
from hrpro.extensions import db
from hrpro.models import PayrollBatchStatus, PayrollEntry
from hrpro.services.payroll import PayrollStore, PayrollTx


class FailOnSecondInsertTx(PayrollTx):
    def __init__(self, session) -> None:
        super().__init__(session)
        self.inserts = 0

    def create_entry(self, batch_id, employee_id, base_salary):
        self.inserts += 1
        if self.inserts == 2:
            raise RuntimeError("insert failed")
        return super().create_entry(batch_id, employee_id, base_salary)


def _entries(batch_id: int) -> list[PayrollEntry]:
    return list(
        db.session.execute(
            select(PayrollEntry).where(PayrollEntry.batch_id == batch_id).order_by(PayrollEntry.employee_id)
        ).scalars()
    )


def test_batch_lifecycle(services, claims, make_employee):
    make_employee(employee_id=1, first_name="Ann", salary="1000000")
    make_employee(employee_id=2, first_name="Ben", salary="800000")
    make_employee(employee_id=3, first_name="Cat", salary="500000", status="Inactive")
    finance = claims["finance_officer"]

    batch = services.payroll.create_batch(finance, "2026-02")
    assert batch.status == PayrollBatchStatus.DRAFT

    assert services.payroll.generate_entries(finance, batch.id) == 2
    detail = services.payroll.get_batch(finance, batch.id)
    assert sorted(entry.employee_id for entry in detail.entries) == [1, 2]

    entry = next(e for e in detail.entries if e.employee_id == 1)
    updated = services.payroll.update_entry_amounts(finance, entry.id, "150000.50", 20000, "100000.25")
    assert updated.gross_pay == Decimal("1150000.50")
    assert updated.net_pay == Decimal("1030000.25")

    with pytest.raises(ExportNotAllowedError):
        services.payroll.export_batch_csv(finance, batch.id)
    with pytest.raises(InvalidTransitionError):
        services.payroll.lock_batch(finance, batch.id)

    assert services.payroll.approve_batch(finance, batch.id).status == PayrollBatchStatus.APPROVED
    assert services.payroll.lock_batch(finance, batch.id).status == PayrollBatchStatus.LOCKED

    with pytest.raises(ImmutableBatchError):
        services.payroll.update_entry_amounts(finance, entry.id, 1, 1, 1)
    with pytest.raises(ImmutableBatchError):
        services.payroll.generate_entries(finance, batch.id)
    with pytest.raises(InvalidTransitionError):
        services.payroll.approve_batch(finance, batch.id)


def test_generate_is_all_or_nothing(services, claims, make_employee):
    make_employee(employee_id=1, first_name="Ann", last_name="Alpha", salary="1000000")
    make_employee(employee_id=2, first_name="Ben", last_name="Beta", salary="800000")
    admin = claims["admin"]
    batch = services.payroll.create_batch(admin, "2026-03")
    db.session.add(PayrollEntry(batch_id=batch.id, employee_id=1, base_salary=Decimal("500")))
    db.session.commit()

    services.payroll.store = PayrollStore(FailOnSecondInsertTx)
    with pytest.raises(RuntimeError):
        services.payroll.generate_entries(admin, batch.id)

    entries = _entries(batch.id)
    assert [(e.employee_id, e.base_salary) for e in entries] == [(1, Decimal("500.00"))]


def test_entry_arithmetic_holds_on_insert(services, claims, make_employee):
    make_employee(employee_id=1)
    batch = services.payroll.create_batch(claims["admin"], "2026-04")
    entry = PayrollEntry(
        batch_id=batch.id,
        employee_id=1,
        base_salary=Decimal("100.10"),
        allowances_total=Decimal("10.05"),
        deductions_total=Decimal("5.00"),
        tax_total=Decimal("2.50"),
    )
    db.session.add(entry)
    db.session.commit()

    assert entry.gross_pay == Decimal("110.15")
    assert entry.net_pay == Decimal("102.65")


def test_duplicate_month_and_bad_month(handlers, token_for):
    handlers.payroll.create_batch(token_for("finance_officer"), "2026-02")

    with pytest.raises(OperationError) as excinfo:
        handlers.payroll.create_batch(token_for("finance_officer"), "2026-02")
    assert excinfo.value.kind == "duplicate_month"
    assert isinstance(excinfo.value.__cause__, DuplicateMonthError)

    with pytest.raises(OperationError) as excinfo:
        handlers.payroll.create_batch(token_for("finance_officer"), "2026-13")
    assert excinfo.value.kind == "validation"


def test_negative_amounts_rejected(services, claims, make_employee):
    make_employee(employee_id=1)
    batch = services.payroll.create_batch(claims["admin"], "2026-05")
    services.payroll.generate_entries(claims["admin"], batch.id)
    entry = _entries(batch.id)[0]

    with pytest.raises(ValidationError):
        services.payroll.update_entry_amounts(claims["admin"], entry.id, -1, 0, 0)


def test_payroll_roles(services, claims):
    with pytest.raises(ForbiddenError):
        services.payroll.create_batch(claims["hr_officer"], "2026-02")
    with pytest.raises(ForbiddenError):
        services.payroll.list_batches(claims["viewer"])


def test_export_approved_batch_csv(services, claims, make_employee):
    make_employee(employee_id=1, first_name="Ann", last_name="Alpha", salary="1000")
    admin = claims["admin"]
    batch = services.payroll.create_batch(admin, "2026-06")
    services.payroll.generate_entries(admin, batch.id)
    services.payroll.approve_batch(admin, batch.id)

    export = services.payroll.export_batch_csv(admin, batch.id)

    assert export.filename == "payroll-2026-06.csv"
    rows = list(csv.reader(io.StringIO(export.data.decode("utf-8"))))
    assert rows[0] == [
        "Employee ID", "Employee Name", "Base Salary", "Allowances", "Deductions", "Tax", "Gross Pay", "Net Pay",
    ]
    assert rows[1] == ["1", "Ann Alpha", "1000.00", "0.00", "0.00", "0.00", "1000.00", "1000.00"]


def test_list_batches_filters(services, claims):
    admin = claims["admin"]
    services.payroll.create_batch(admin, "2026-01")
    second = services.payroll.create_batch(admin, "2026-02")
    services.payroll.approve_batch(admin, second.id)

    page = services.payroll.list_batches(admin)
    assert [b.month for b in page.items] == ["2026-02", "2026-01"]
    assert page.total_count == 2

    approved = services.payroll.list_batches(admin, status="Approved")
    assert [b.month for b in approved.items] == ["2026-02"]
