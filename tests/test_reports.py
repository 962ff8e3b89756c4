from __future__ import annotations

import json
from datetime import date, datetime, timezone
from decimal import Decimal

import pytest

from hrpro.errors import ExportLimitExceededError, ForbiddenError, OperationError, ValidationError
from hrpro.extensions import db
from hrpro.models import (
    AttendanceRecord,
    AttendanceStatus,
    AuditLog,
    LeaveRequest,
    LeaveRequestStatus,
    LeaveType,
    PayrollBatch,
    PayrollBatchStatus,
    PayrollEntry,
)
from hrpro.services.reports import (
    AttendanceSummaryFilter,
    AuditReportFilter,
    EmployeeReportFilter,
    LeaveReportFilter,
    PayrollBatchReportFilter,
    ReportService,
    validate_date_range,
)


def _csv_lines(export) -> list[str]:
    return export.data.decode("utf-8").splitlines()


@pytest.fixture()
def reports(app):
    return ReportService(today=lambda: date(2026, 3, 15))


@pytest.fixture()
def staff(services, claims, make_employee):
    finance = services.departments.create_department(claims["admin"], "Finance")
    alice = make_employee(first_name="Alice", last_name="Achan", department_id=finance.id)
    bob = make_employee(first_name="Bob", last_name="Byaruhanga", status="Inactive", salary="750000")
    return alice, bob


def test_validate_date_range():
    assert validate_date_range("2026-03-01", date(2026, 3, 31)) == (date(2026, 3, 1), date(2026, 3, 31))
    with pytest.raises(ValidationError):
        validate_date_range("", "2026-03-31")
    with pytest.raises(ValidationError):
        validate_date_range("2026-04-01", "2026-03-31")
    with pytest.raises(ValidationError):
        validate_date_range("2026/03/01", "2026-03-31")


def test_employee_report_redacts_salary_for_non_finance(reports, claims, staff):
    finance_rows = reports.list_employee_report(claims["finance_officer"]).items
    viewer_rows = reports.list_employee_report(claims["viewer"]).items

    assert [r.employee_name for r in finance_rows] == ["Alice Achan", "Bob Byaruhanga"]
    assert finance_rows[0].department_name == "Finance"
    assert finance_rows[1].department_name == "-"
    assert finance_rows[1].base_salary_amount == Decimal("750000")
    assert all(r.base_salary_amount is None for r in viewer_rows)


def test_employee_report_filters(reports, claims, staff):
    viewer = claims["viewer"]

    inactive = reports.list_employee_report(viewer, EmployeeReportFilter(employment_status="inactive"))
    assert [r.employee_name for r in inactive.items] == ["Bob Byaruhanga"]

    search = reports.list_employee_report(viewer, EmployeeReportFilter(q="ACH"))
    assert search.total_count == 1

    with pytest.raises(ValidationError):
        reports.list_employee_report(viewer, EmployeeReportFilter(employment_status="Retired"))
    with pytest.raises(ValidationError):
        reports.list_employee_report(viewer, EmployeeReportFilter(department_id=-1))
    with pytest.raises(ValidationError):
        reports.list_employee_report(viewer, EmployeeReportFilter(q="x" * 201))


def test_employee_csv_export(reports, claims, staff):
    admin_export = reports.export_employee_report_csv(claims["admin"])
    viewer_export = reports.export_employee_report_csv(claims["viewer"])

    assert admin_export.filename == "employee-list-2026-03-15.csv"
    assert admin_export.mime_type == "text/csv;charset=utf-8"
    lines = _csv_lines(admin_export)
    assert lines[0] == "employee_name,department_name,position,status,date_of_hire,phone,email,base_salary_amount"
    assert lines[1] == "Alice Achan,Finance,Officer,Active,2024-01-15,,,1000000.00"
    assert _csv_lines(viewer_export)[1].endswith(",2024-01-15,,,")


def test_export_limit(reports, handlers, token_for, claims, staff, monkeypatch):
    monkeypatch.setattr("hrpro.services.reports.MAX_EXPORT_ROWS", 1)

    with pytest.raises(ExportLimitExceededError):
        reports.export_employee_report_csv(claims["admin"])
    with pytest.raises(OperationError) as excinfo:
        handlers.reports.export_employee_report_csv(token_for("admin"))
    assert excinfo.value.kind == "export_limit_exceeded"
    assert reports.list_employee_report(claims["admin"]).total_count == 2


def test_leave_report(reports, claims, staff):
    alice, bob = staff
    annual = LeaveType(name="Annual")
    db.session.add(annual)
    db.session.flush()
    db.session.add_all(
        [
            LeaveRequest(
                employee_id=alice.id, leave_type_id=annual.id,
                start_date=date(2026, 3, 30), end_date=date(2026, 4, 1), working_days=Decimal("3"),
                status=LeaveRequestStatus.APPROVED, approved_by=2,
                approved_at=datetime(2026, 3, 20, 10, 0, tzinfo=timezone.utc),
            ),
            LeaveRequest(
                employee_id=bob.id, leave_type_id=annual.id,
                start_date=date(2026, 5, 4), end_date=date(2026, 5, 4), working_days=Decimal("1"),
            ),
        ]
    )
    db.session.commit()
    window = LeaveReportFilter(date_from="2026-03-01", date_to="2026-03-31")

    page = reports.list_leave_requests_report(claims["hr_officer"], window)
    assert [(r.employee_name, r.status, r.approved_by) for r in page.items] == [("Alice Achan", "Approved", "hr")]

    export = reports.export_leave_requests_report_csv(claims["viewer"], window)
    assert export.filename == "leave-requests-2026-03-01_to_2026-03-31.csv"
    assert _csv_lines(export)[1] == "Alice Achan,Finance,Annual,2026-03-30,2026-04-01,3.00,Approved,hr,2026-03-20"

    pending = LeaveReportFilter(date_from="2026-05-01", date_to="2026-05-31", status="Pending")
    assert reports.list_leave_requests_report(claims["admin"], pending).total_count == 1
    with pytest.raises(ValidationError):
        reports.list_leave_requests_report(claims["admin"], LeaveReportFilter("2026-05-01", "2026-05-31", status="Maybe"))
    with pytest.raises(ForbiddenError):
        reports.list_leave_requests_report(claims["finance_officer"], window)


def test_attendance_summary_counts_unmarked_days(reports, claims, staff):
    alice, bob = staff
    db.session.add_all(
        [
            AttendanceRecord(attendance_date=date(2026, 3, 2), employee_id=alice.id, status=AttendanceStatus.PRESENT),
            AttendanceRecord(attendance_date=date(2026, 3, 3), employee_id=alice.id, status=AttendanceStatus.LATE),
            AttendanceRecord(attendance_date=date(2026, 3, 4), employee_id=alice.id, status=AttendanceStatus.ABSENT),
            AttendanceRecord(attendance_date=date(2026, 3, 9), employee_id=alice.id, status=AttendanceStatus.PRESENT),
        ]
    )
    db.session.commit()
    window = AttendanceSummaryFilter(date_from="2026-03-02", date_to="2026-03-06")

    rows = reports.list_attendance_summary_report(claims["viewer"], window).items
    by_name = {r.employee_name: r for r in rows}

    alice_row = by_name["Alice Achan"]
    assert (alice_row.present_count, alice_row.late_count, alice_row.absent_count) == (1, 1, 1)
    assert alice_row.unmarked_count == 2
    assert by_name["Bob Byaruhanga"].unmarked_count == 5

    export = reports.export_attendance_summary_report_csv(claims["admin"], window)
    assert export.filename == "attendance-summary-2026-03-02_to_2026-03-06.csv"
    assert _csv_lines(export)[1] == "Alice Achan,Finance,1,1,0,1,0,2"


def test_payroll_batches_report(reports, claims, staff):
    alice, bob = staff
    january = PayrollBatch(month="2026-01", status=PayrollBatchStatus.LOCKED)
    february = PayrollBatch(month="2026-02")
    db.session.add_all([january, february])
    db.session.flush()
    db.session.add_all(
        [
            PayrollEntry(batch_id=january.id, employee_id=alice.id, base_salary=Decimal("1000000")),
            PayrollEntry(batch_id=january.id, employee_id=bob.id, base_salary=Decimal("750000"),
                         tax_total=Decimal("50000")),
        ]
    )
    db.session.commit()

    rows = reports.list_payroll_batches_report(claims["finance_officer"]).items
    assert [(r.month, r.status, r.entries_count) for r in rows] == [("2026-02", "Draft", 0), ("2026-01", "Locked", 2)]
    assert rows[1].total_net_pay == Decimal("1700000")

    locked = reports.list_payroll_batches_report(claims["admin"], PayrollBatchReportFilter(status="Locked"))
    assert [r.month for r in locked.items] == ["2026-01"]
    ranged = reports.list_payroll_batches_report(claims["admin"], PayrollBatchReportFilter(month_from="2026-02"))
    assert [r.month for r in ranged.items] == ["2026-02"]

    export = reports.export_payroll_batches_report_csv(claims["admin"])
    assert export.filename == "payroll-batches-2026-03-15.csv"
    assert _csv_lines(export)[2].endswith(",2,1700000.00")

    with pytest.raises(ValidationError):
        reports.list_payroll_batches_report(claims["admin"], PayrollBatchReportFilter(month_from="2026-3"))
    with pytest.raises(ValidationError):
        reports.list_payroll_batches_report(
            claims["admin"], PayrollBatchReportFilter(month_from="2026-03", month_to="2026-01")
        )
    with pytest.raises(ForbiddenError):
        reports.list_payroll_batches_report(claims["hr_officer"])


def test_audit_log_report_window(reports, claims, app):
    db.session.add_all(
        [
            AuditLog(actor_user_id=2, action="employee.create", entity_type="employee", entity_id=7,
                     metadata_json={"name": "Alice"}, created_at=datetime(2026, 3, 1, 23, 30, tzinfo=timezone.utc)),
            AuditLog(actor_user_id=None, action="auth.login_failed",
                     created_at=datetime(2026, 3, 1, 0, 0, tzinfo=timezone.utc)),
            AuditLog(actor_user_id=1, action="employee.create", entity_type="employee", entity_id=8,
                     created_at=datetime(2026, 3, 2, 0, 0, tzinfo=timezone.utc)),
        ]
    )
    db.session.commit()
    one_day = AuditReportFilter(date_from="2026-03-01", date_to="2026-03-01")

    rows = reports.list_audit_log_report(claims["admin"], one_day).items
    assert [(r.action, r.actor_username) for r in rows] == [("employee.create", "hr"), ("auth.login_failed", "-")]
    assert json.loads(rows[0].metadata_json) == {"name": "Alice"}
    assert rows[1].metadata_json == "{}"

    filtered = reports.list_audit_log_report(
        claims["admin"], AuditReportFilter(date_from="2026-03-01", date_to="2026-03-02", actor_user_id=1)
    )
    assert [r.entity_id for r in filtered.items] == [8]

    export = reports.export_audit_log_report_csv(claims["admin"], one_day)
    assert export.filename == "audit-log-2026-03-01_to_2026-03-01.csv"
    assert _csv_lines(export)[0] == "created_at,actor_username,action,entity_type,entity_id,metadata_json"

    with pytest.raises(ForbiddenError):
        reports.list_audit_log_report(claims["hr_officer"], one_day)
    with pytest.raises(ValidationError):
        reports.list_audit_log_report(claims["admin"], AuditReportFilter("2026-03-01", "2026-03-01", action="a" * 151))
