"""Daily attendance marking, lunch totals and posting absences to leave.

Attendance rows are written locked. Only admin-class callers may change a
locked row, and every such change is audited as an override.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from typing import Protocol

from flask import current_app
from sqlalchemy import and_, case, func, select
from sqlalchemy.exc import SQLAlchemyError

from hrpro.authorization import (
    Claims,
    actor_id,
    can_mark_attendance,
    can_override_locked,
    can_read_all_attendance,
    is_staff,
    require_claims,
)
from hrpro.errors import (
    ForbiddenError,
    HRError,
    LeaveIntegrationError,
    LockedError,
    NotAbsentError,
    NotFoundError,
    ValidationError,
)
from hrpro.extensions import db
from hrpro.models import AttendanceRecord, AttendanceStatus, Department, Employee, LunchDaily, now_utc
from hrpro.services.audit import AuditedService
from hrpro.validation import normalize_optional, parse_iso_date


STATUS_UNMARKED = "unmarked"
DEFAULT_PLATE_COST_AMOUNT = 12000
DEFAULT_STAFF_CONTRIBUTION_AMOUNT = 4000
POST_ABSENT_REASON = "post_absent_to_leave"


class LeaveIntegration(Protocol):
    def create_single_day_leave_from_attendance(
        self, claims: Claims, employee_id: int, attendance_date: date
    ) -> int: ...


class LunchDefaultsProvider(Protocol):
    def get_lunch_defaults(self) -> tuple[int, int]: ...


@dataclass
class AttendanceRow:
    employee_id: int
    employee_name: str
    department_name: str | None
    attendance_id: int | None
    status: str
    is_locked: bool
    marked_by_user_id: int | None = None
    marked_at: datetime | None = None
    can_post_to_leave: bool = False
    can_edit: bool = False


@dataclass
class LunchSummary:
    attendance_date: str
    staff_present_count: int
    staff_field_count: int
    visitors_count: int
    total_plates: int
    plate_cost_amount: int
    total_cost_amount: int
    staff_contribution_amount: int
    staff_contribution_total: int
    organization_balance: int
    can_edit_visitors: bool = False


@dataclass(frozen=True)
class PostAbsentToLeaveResult:
    success: bool
    message: str
    leave_id: int | None
    status: str


def validate_status(value: str | None) -> AttendanceStatus:
    normalized = (value or "").strip().lower()
    try:
        return AttendanceStatus(normalized)
    except ValueError as exc:
        raise ValidationError("status must be present|late|field|absent|leave") from exc


def calculate_lunch_totals(
    staff_present_count: int,
    staff_field_count: int,
    visitors_count: int,
    plate_cost_amount: int,
    staff_contribution_amount: int,
    attendance_date: str = "",
) -> LunchSummary:
    total_plates = staff_present_count + visitors_count
    total_cost = total_plates * plate_cost_amount
    contribution_total = staff_present_count * staff_contribution_amount
    return LunchSummary(
        attendance_date=attendance_date,
        staff_present_count=staff_present_count,
        staff_field_count=staff_field_count,
        visitors_count=visitors_count,
        total_plates=total_plates,
        plate_cost_amount=plate_cost_amount,
        total_cost_amount=total_cost,
        staff_contribution_amount=staff_contribution_amount,
        staff_contribution_total=contribution_total,
        organization_balance=total_cost - contribution_total,
    )


class AttendanceService(AuditedService):
    def __init__(self, leave: LeaveIntegration | None = None) -> None:
        super().__init__()
        self.leave = leave
        self.lunch_defaults_provider: LunchDefaultsProvider | None = None

    def set_leave_integration(self, leave: LeaveIntegration | None) -> None:
        self.leave = leave

    def set_lunch_defaults_provider(self, provider: LunchDefaultsProvider | None) -> None:
        self.lunch_defaults_provider = provider

    def list_by_date(self, claims: Claims | None, attendance_date: str | date) -> list[AttendanceRow]:
        claims = require_claims(claims)
        day = parse_iso_date(attendance_date)

        if can_read_all_attendance(claims):
            rows = self._rows_for_date(day)
            markable = can_mark_attendance(claims)
            override = can_override_locked(claims)
            for row in rows:
                row.can_post_to_leave = markable and row.status == AttendanceStatus.ABSENT.value
                row.can_edit = markable and (not row.is_locked or override)
            return rows

        if not is_staff(claims):
            raise ForbiddenError()
        # Staff accounts share their id with the employee row they belong to.
        return self._rows_for_date(day, employee_id=claims.user_id)

    def upsert_attendance(
        self,
        claims: Claims | None,
        attendance_date: str | date,
        employee_id: int,
        status: str,
        reason: str | None = None,
    ) -> AttendanceRecord:
        claims = require_claims(claims)
        if employee_id is None or employee_id <= 0:
            raise ValidationError("employee id must be positive")
        if not can_mark_attendance(claims):
            raise ForbiddenError()

        day = parse_iso_date(attendance_date)
        new_status = validate_status(status)
        reason = normalize_optional(reason)
        if db.session.get(Employee, employee_id) is None:
            raise NotFoundError("employee not found")

        existing = self._find_record(day, employee_id)
        if existing is None:
            record = AttendanceRecord(
                attendance_date=day,
                employee_id=employee_id,
                status=new_status,
                marked_by_user_id=actor_id(claims),
                marked_at=now_utc(),
                is_locked=True,
                lock_reason=reason,
            )
            db.session.add(record)
            db.session.commit()
            self._record_mark(claims, record)
            return record

        if existing.is_locked and not can_override_locked(claims):
            raise LockedError()

        was_locked = existing.is_locked
        old_status = existing.status
        existing.status = new_status
        existing.marked_by_user_id = actor_id(claims)
        existing.marked_at = now_utc()
        existing.is_locked = True
        if reason is not None:
            existing.lock_reason = reason
        db.session.commit()

        if was_locked:
            self.audit.record(
                actor_id(claims),
                "attendance.override",
                "attendance_record",
                existing.id,
                {
                    "attendance_date": day.isoformat(),
                    "employee_id": employee_id,
                    "old_status": old_status.value,
                    "new_status": new_status.value,
                    "reason": reason or "",
                },
            )
        else:
            self._record_mark(claims, existing)
        return existing

    def get_my_attendance_range(
        self, claims: Claims | None, start_date: str | date, end_date: str | date
    ) -> list[AttendanceRecord]:
        claims = require_claims(claims)
        start = parse_iso_date(start_date)
        end = parse_iso_date(end_date)
        if end < start:
            raise ValidationError("end date must be on or after start date")
        stmt = (
            select(AttendanceRecord)
            .where(
                AttendanceRecord.employee_id == claims.user_id,
                AttendanceRecord.attendance_date >= start,
                AttendanceRecord.attendance_date <= end,
            )
            .order_by(AttendanceRecord.attendance_date.asc())
        )
        return list(db.session.execute(stmt).scalars().all())

    def get_lunch_summary(self, claims: Claims | None, attendance_date: str | date) -> LunchSummary:
        claims = require_claims(claims)
        if not (can_read_all_attendance(claims) or is_staff(claims)):
            raise ForbiddenError()
        day = parse_iso_date(attendance_date)

        staff_present, staff_field = self._count_for_lunch(day)
        visitors = 0
        plate_cost, contribution = self._lunch_defaults()
        daily = db.session.get(LunchDaily, day)
        if daily is not None:
            visitors = daily.visitors_count
            plate_cost = daily.plate_cost_amount
            contribution = daily.staff_contribution_amount

        summary = calculate_lunch_totals(
            staff_present, staff_field, visitors, plate_cost, contribution, attendance_date=day.isoformat()
        )
        summary.can_edit_visitors = can_mark_attendance(claims)
        return summary

    def upsert_lunch_visitors(
        self, claims: Claims | None, attendance_date: str | date, visitors_count: int
    ) -> LunchSummary:
        claims = require_claims(claims)
        if not can_mark_attendance(claims):
            raise ForbiddenError()
        if visitors_count is None or visitors_count < 0:
            raise ValidationError("visitors count must be >= 0")
        day = parse_iso_date(attendance_date)

        daily = db.session.get(LunchDaily, day)
        if daily is None:
            plate_cost, contribution = self._lunch_defaults()
            daily = LunchDaily(
                attendance_date=day,
                plate_cost_amount=plate_cost,
                staff_contribution_amount=contribution,
            )
            db.session.add(daily)
        daily.visitors_count = visitors_count
        daily.updated_by_user_id = actor_id(claims)
        db.session.commit()

        summary = self.get_lunch_summary(claims, day)
        self.audit.record(
            actor_id(claims),
            "lunch.update_visitors",
            "lunch_daily",
            None,
            {"attendance_date": day.isoformat(), "visitors_count": visitors_count},
        )
        return summary

    def post_absent_to_leave(
        self, claims: Claims | None, attendance_date: str | date, employee_id: int
    ) -> PostAbsentToLeaveResult:
        claims = require_claims(claims)
        if employee_id is None or employee_id <= 0:
            raise ValidationError("employee id must be positive")
        if not can_mark_attendance(claims):
            raise ForbiddenError()
        if self.leave is None:
            raise LeaveIntegrationError("leave module is unavailable")

        day = parse_iso_date(attendance_date)
        if db.session.get(Employee, employee_id) is None:
            raise NotFoundError("employee not found")
        record = self._find_record(day, employee_id)
        if record is None:
            raise NotFoundError("attendance record not found")
        if record.status != AttendanceStatus.ABSENT:
            raise NotAbsentError()

        # Attendance is rewritten only once the leave request exists.
        record_id = record.id
        try:
            leave_id = self.leave.create_single_day_leave_from_attendance(claims, employee_id, day)
        except Exception as exc:
            db.session.rollback()
            self.audit.record(
                actor_id(claims),
                "attendance.post_absent_to_leave",
                "attendance_record",
                record_id,
                {
                    "attendance_date": day.isoformat(),
                    "employee_id": employee_id,
                    "result": "failed",
                    "error": str(exc),
                },
            )
            raise LeaveIntegrationError(str(exc)) from exc

        record.status = AttendanceStatus.LEAVE
        record.marked_by_user_id = actor_id(claims)
        record.marked_at = now_utc()
        record.is_locked = True
        record.lock_reason = POST_ABSENT_REASON
        db.session.commit()

        self.audit.record(
            actor_id(claims),
            "attendance.post_absent_to_leave",
            "attendance_record",
            record.id,
            {
                "attendance_date": day.isoformat(),
                "employee_id": employee_id,
                "result": "success",
                "leave_id": leave_id,
            },
        )
        return PostAbsentToLeaveResult(
            success=True,
            message="Absent posted to leave",
            leave_id=leave_id,
            status=AttendanceStatus.LEAVE.value,
        )

    def _find_record(self, day: date, employee_id: int) -> AttendanceRecord | None:
        return db.session.execute(
            select(AttendanceRecord).where(
                AttendanceRecord.attendance_date == day,
                AttendanceRecord.employee_id == employee_id,
            )
        ).scalar_one_or_none()

    def _rows_for_date(self, day: date, employee_id: int | None = None) -> list[AttendanceRow]:
        stmt = (
            select(Employee, Department.name, AttendanceRecord)
            .outerjoin(Department, Department.id == Employee.department_id)
            .outerjoin(
                AttendanceRecord,
                and_(AttendanceRecord.employee_id == Employee.id, AttendanceRecord.attendance_date == day),
            )
            .order_by(Employee.first_name.asc(), Employee.last_name.asc())
        )
        if employee_id is not None:
            stmt = stmt.where(Employee.id == employee_id)

        rows: list[AttendanceRow] = []
        for employee, department_name, record in db.session.execute(stmt).all():
            rows.append(
                AttendanceRow(
                    employee_id=employee.id,
                    employee_name=employee.full_name,
                    department_name=department_name,
                    attendance_id=record.id if record else None,
                    status=record.status.value if record else STATUS_UNMARKED,
                    is_locked=record.is_locked if record else False,
                    marked_by_user_id=record.marked_by_user_id if record else None,
                    marked_at=record.marked_at if record else None,
                )
            )
        return rows

    def _count_for_lunch(self, day: date) -> tuple[int, int]:
        present = func.coalesce(
            func.sum(
                case(
                    (AttendanceRecord.status.in_([AttendanceStatus.PRESENT, AttendanceStatus.LATE]), 1),
                    else_=0,
                )
            ),
            0,
        )
        field = func.coalesce(func.sum(case((AttendanceRecord.status == AttendanceStatus.FIELD, 1), else_=0)), 0)
        staff_present, staff_field = db.session.execute(
            select(present, field).where(AttendanceRecord.attendance_date == day)
        ).one()
        return int(staff_present), int(staff_field)

    def _lunch_defaults(self) -> tuple[int, int]:
        if self.lunch_defaults_provider is None:
            return DEFAULT_PLATE_COST_AMOUNT, DEFAULT_STAFF_CONTRIBUTION_AMOUNT
        try:
            return self.lunch_defaults_provider.get_lunch_defaults()
        except (HRError, SQLAlchemyError):
            db.session.rollback()
            current_app.logger.warning("lunch defaults lookup failed", exc_info=True)
            return DEFAULT_PLATE_COST_AMOUNT, DEFAULT_STAFF_CONTRIBUTION_AMOUNT

    def _record_mark(self, claims: Claims, record: AttendanceRecord) -> None:
        self.audit.record(
            actor_id(claims),
            "attendance.mark",
            "attendance_record",
            record.id,
            {
                "attendance_date": record.attendance_date.isoformat(),
                "employee_id": record.employee_id,
                "status": record.status.value,
            },
        )
