from __future__ import annotations

from datetime import date

import pytest
from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from hrpro.authorization import Claims
from hrpro.errors import (
    ForbiddenError,
    LeaveIntegrationError,
    LockedError,
    NotAbsentError,
    OperationError,
    ValidationError,
)
from hrpro.extensions import db
from hrpro.models import AppSetting, AttendanceRecord, AttendanceStatus, AuditLog, LeaveRequest, LeaveType, User
from hrpro.security import hash_password
from hrpro.services.attendance import calculate_lunch_totals


DAY = date(2026, 2, 21)
WEEKDAY = date(2026, 2, 20)


def _seed_absent(employee_id: int = 9, day: date = DAY) -> AttendanceRecord:
    record = AttendanceRecord(
        attendance_date=day,
        employee_id=employee_id,
        status=AttendanceStatus.ABSENT,
        marked_by_user_id=2,
        is_locked=True,
    )
    db.session.add(record)
    db.session.commit()
    return record


def _audit(action: str) -> list[AuditLog]:
    return list(db.session.execute(select(AuditLog).where(AuditLog.action == action)).scalars())


def test_first_mark_creates_locked_record(services, claims, make_employee):
    make_employee(employee_id=9)

    record = services.attendance.upsert_attendance(claims["hr_officer"], "2026-02-21", 9, " Present ", "on time")

    assert record.status == AttendanceStatus.PRESENT
    assert record.is_locked is True
    assert record.lock_reason == "on time"
    assert len(_audit("attendance.mark")) == 1


def test_locked_override_is_audited(services, claims, make_employee):
    make_employee(employee_id=9)
    _seed_absent()

    record = services.attendance.upsert_attendance(claims["admin"], "2026-02-21", 9, "present", "corrected")

    assert record.status == AttendanceStatus.PRESENT
    assert record.is_locked is True
    assert record.lock_reason == "corrected"
    events = _audit("attendance.override")
    assert len(events) == 1
    assert events[0].metadata_json["old_status"] == "absent"
    assert events[0].metadata_json["new_status"] == "present"
    assert events[0].metadata_json["reason"] == "corrected"


def test_override_keeps_existing_reason_when_none_given(services, claims, make_employee):
    make_employee(employee_id=9)
    record = _seed_absent()
    record.lock_reason = "initial"
    db.session.commit()

    record = services.attendance.upsert_attendance(claims["master_admin"], DAY, 9, "late")

    assert record.status == AttendanceStatus.LATE
    assert record.lock_reason == "initial"


def test_hr_officer_cannot_change_locked_record(services, claims, make_employee):
    make_employee(employee_id=9)
    _seed_absent()

    with pytest.raises(LockedError):
        services.attendance.upsert_attendance(claims["hr_officer"], DAY, 9, "present", "corrected")

    record = db.session.execute(select(AttendanceRecord)).scalar_one()
    assert record.status == AttendanceStatus.ABSENT


def test_viewer_cannot_mark_attendance(services, claims, make_employee):
    make_employee(employee_id=9)

    with pytest.raises(ForbiddenError):
        services.attendance.upsert_attendance(claims["viewer"], DAY, 9, "present")


def test_invalid_status_and_date_are_rejected(handlers, token_for, make_employee):
    make_employee(employee_id=9)

    with pytest.raises(OperationError) as excinfo:
        handlers.attendance.upsert_attendance(token_for("hr_officer"), "2026-02-21", 9, "sleeping")
    assert excinfo.value.kind == "validation"
    assert str(excinfo.value).startswith("validation error:")

    with pytest.raises(OperationError) as excinfo:
        handlers.attendance.upsert_attendance(token_for("hr_officer"), "21/02/2026", 9, "present")
    assert excinfo.value.kind == "validation"


def test_list_by_date_defaults_unmarked_and_flags(services, claims, make_employee):
    make_employee(employee_id=9, first_name="Brian")
    make_employee(employee_id=10, first_name="Alice")
    _seed_absent()

    rows = services.attendance.list_by_date(claims["hr_officer"], DAY)

    assert [row.employee_name.split()[0] for row in rows] == ["Alice", "Brian"]
    alice, brian = rows
    assert alice.status == "unmarked"
    assert alice.is_locked is False
    assert alice.can_edit is True
    assert brian.status == "absent"
    assert brian.can_post_to_leave is True
    assert brian.can_edit is False

    admin_rows = services.attendance.list_by_date(claims["admin"], DAY)
    assert all(row.can_edit for row in admin_rows)

    viewer_rows = services.attendance.list_by_date(claims["viewer"], DAY)
    assert not any(row.can_edit or row.can_post_to_leave for row in viewer_rows)


def test_staff_sees_only_own_row(services, make_employee):
    make_employee(employee_id=21, first_name="Own")
    make_employee(employee_id=22, first_name="Other")
    db.session.add(User(id=21, username="staff21", password_hash=hash_password("password123"), role="staff"))
    db.session.commit()

    rows = services.attendance.list_by_date(Claims(user_id=21, username="staff21", role="staff"), DAY)

    assert [row.employee_id for row in rows] == [21]


def test_my_attendance_range_requires_ordered_dates(services, claims):
    with pytest.raises(ValidationError):
        services.attendance.get_my_attendance_range(claims["admin"], "2026-02-10", "2026-02-01")


def test_lunch_totals_arithmetic():
    summary = calculate_lunch_totals(8, 3, 2, 12000, 4000)

    assert summary.total_plates == 10
    assert summary.total_cost_amount == 120000
    assert summary.staff_contribution_total == 32000
    assert summary.organization_balance == 88000


def test_lunch_summary_uses_settings_defaults_for_new_day(services, claims, make_employee):
    db.session.add(
        AppSetting(key="lunch_defaults", value_json={"plate_cost_amount": 15000, "staff_contribution_amount": 5000})
    )
    db.session.commit()

    for employee_id, status in ((31, "present"), (32, "late"), (33, "field"), (34, "absent")):
        make_employee(employee_id=employee_id)
        services.attendance.upsert_attendance(claims["hr_officer"], DAY, employee_id, status)

    summary = services.attendance.upsert_lunch_visitors(claims["hr_officer"], DAY, 3)

    assert summary.staff_present_count == 2
    assert summary.staff_field_count == 1
    assert summary.visitors_count == 3
    assert summary.plate_cost_amount == 15000
    assert summary.total_plates == 5
    assert summary.organization_balance == 5 * 15000 - 2 * 5000
    assert summary.can_edit_visitors is True

    viewer_summary = services.attendance.get_lunch_summary(claims["viewer"], DAY)
    assert viewer_summary.can_edit_visitors is False
    assert viewer_summary.visitors_count == 3


def test_negative_visitors_rejected(services, claims):
    with pytest.raises(ValidationError):
        services.attendance.upsert_lunch_visitors(claims["admin"], DAY, -1)


class FailingLeave:
    def create_single_day_leave_from_attendance(self, claims, employee_id, attendance_date):
        raise LeaveIntegrationError("no active leave type is configured")


def test_post_absent_to_leave_failure_leaves_attendance_untouched(services, claims, make_employee):
    make_employee(employee_id=9)
    _seed_absent()
    services.attendance.set_leave_integration(FailingLeave())

    with pytest.raises(LeaveIntegrationError):
        services.attendance.post_absent_to_leave(claims["hr_officer"], DAY, 9)

    record = db.session.execute(select(AttendanceRecord)).scalar_one()
    assert record.status == AttendanceStatus.ABSENT
    events = _audit("attendance.post_absent_to_leave")
    assert len(events) == 1
    assert events[0].metadata_json["result"] == "failed"
    assert events[0].metadata_json["error"]


class DisconnectedLeave:
    def create_single_day_leave_from_attendance(self, claims, employee_id, attendance_date):
        raise OperationalError("INSERT INTO leave_requests", {}, Exception("connection lost"))


def test_post_absent_to_leave_wraps_database_failures(services, claims, make_employee):
    make_employee(employee_id=9)
    _seed_absent()
    services.attendance.set_leave_integration(DisconnectedLeave())

    with pytest.raises(LeaveIntegrationError, match="connection lost") as excinfo:
        services.attendance.post_absent_to_leave(claims["hr_officer"], DAY, 9)

    assert isinstance(excinfo.value.__cause__, OperationalError)
    record = db.session.execute(select(AttendanceRecord)).scalar_one()
    assert record.status == AttendanceStatus.ABSENT
    events = _audit("attendance.post_absent_to_leave")
    assert len(events) == 1
    assert events[0].metadata_json["result"] == "failed"


def test_post_absent_to_leave_failure_surfaces_leave_integration_kind(handlers, services, token_for, make_employee):
    make_employee(employee_id=9)
    _seed_absent()
    services.attendance.set_leave_integration(FailingLeave())

    with pytest.raises(OperationError) as excinfo:
        handlers.attendance.post_absent_to_leave(token_for("hr_officer"), "2026-02-21", 9)

    assert excinfo.value.kind == "leave_integration"
    assert str(excinfo.value).startswith("leave integration failed:")


def test_post_absent_to_leave_creates_request_then_updates_attendance(services, claims, make_employee):
    make_employee(employee_id=9)
    _seed_absent(day=WEEKDAY)
    db.session.add(LeaveType(name="Annual", counts_toward_entitlement=False))
    db.session.commit()

    result = services.attendance.post_absent_to_leave(claims["hr_officer"], WEEKDAY, 9)

    assert result.success is True
    assert result.status == "leave"
    request = db.session.get(LeaveRequest, result.leave_id)
    assert request.employee_id == 9
    assert request.start_date == WEEKDAY and request.end_date == WEEKDAY
    record = db.session.execute(select(AttendanceRecord)).scalar_one()
    assert record.status == AttendanceStatus.LEAVE
    assert record.lock_reason == "post_absent_to_leave"
    assert _audit("attendance.post_absent_to_leave")[0].metadata_json["result"] == "success"


def test_post_absent_requires_absent_status(services, claims, make_employee):
    make_employee(employee_id=9)
    services.attendance.upsert_attendance(claims["hr_officer"], DAY, 9, "present")

    with pytest.raises(NotAbsentError):
        services.attendance.post_absent_to_leave(claims["hr_officer"], DAY, 9)
