"""Tabular reports with paged listing and capped CSV export."""

from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from decimal import Decimal
from typing import Any, Callable

from sqlalchemy import Select, case, func, or_, select
from sqlalchemy.orm import aliased

from hrpro.authorization import Claims, Role, can_view_salaries, require_roles
from hrpro.errors import ExportLimitExceededError, ValidationError
from hrpro.extensions import db
from hrpro.models import (
    AttendanceRecord,
    AttendanceStatus,
    AuditLog,
    Department,
    Employee,
    LeaveRequest,
    LeaveRequestStatus,
    LeaveType,
    PayrollBatch,
    PayrollBatchStatus,
    PayrollEntry,
    User,
)
from hrpro.pagination import Page, count_rows, normalize_paging, paginate
from hrpro.report_export import ExportFile, csv_export, format_money
from hrpro.validation import MONTH_PATTERN, parse_iso_date


MAX_EXPORT_ROWS = 50000
MAX_SEARCH_LENGTH = 200
MAX_AUDIT_FILTER_LENGTH = 150
NO_DEPARTMENT = "-"

EMPLOYEE_REPORT_ROLES = {Role.ADMIN, Role.HR_OFFICER, Role.FINANCE_OFFICER, Role.VIEWER}
LEAVE_REPORT_ROLES = {Role.ADMIN, Role.HR_OFFICER, Role.VIEWER}
ATTENDANCE_REPORT_ROLES = {Role.ADMIN, Role.HR_OFFICER, Role.VIEWER}
PAYROLL_REPORT_ROLES = {Role.ADMIN, Role.FINANCE_OFFICER}
AUDIT_REPORT_ROLES = {Role.ADMIN}

EMPLOYEE_STATUSES = {"Active", "Inactive", "active", "inactive"}

EMPLOYEE_CSV_HEADERS = [
    "employee_name", "department_name", "position", "status", "date_of_hire", "phone", "email", "base_salary_amount",
]
LEAVE_CSV_HEADERS = [
    "employee_name", "department_name", "leave_type", "start_date", "end_date", "working_days", "status",
    "approved_by", "approved_at",
]
ATTENDANCE_CSV_HEADERS = [
    "employee_name", "department_name", "present_count", "late_count", "field_count", "absent_count",
    "leave_count", "unmarked_count",
]
PAYROLL_CSV_HEADERS = [
    "month", "status", "created_at", "approved_at", "locked_at", "entries_count", "total_net_pay",
]
AUDIT_CSV_HEADERS = ["created_at", "actor_username", "action", "entity_type", "entity_id", "metadata_json"]


@dataclass
class EmployeeReportFilter:
    department_id: int | None = None
    employment_status: str | None = None
    q: str | None = None


@dataclass
class LeaveReportFilter:
    date_from: str | date | None = None
    date_to: str | date | None = None
    department_id: int | None = None
    employee_id: int | None = None
    leave_type_id: int | None = None
    status: str | None = None


@dataclass
class AttendanceSummaryFilter:
    date_from: str | date | None = None
    date_to: str | date | None = None
    department_id: int | None = None
    employee_id: int | None = None


@dataclass
class PayrollBatchReportFilter:
    month_from: str | None = None
    month_to: str | None = None
    status: str | None = None


@dataclass
class AuditReportFilter:
    date_from: str | date | None = None
    date_to: str | date | None = None
    actor_user_id: int | None = None
    action: str | None = None
    entity_type: str | None = None


@dataclass
class EmployeeReportRow:
    employee_name: str
    department_name: str
    position: str
    status: str
    date_of_hire: date
    phone: str
    email: str
    base_salary_amount: Decimal | None


@dataclass
class LeaveReportRow:
    employee_name: str
    department_name: str
    leave_type: str
    start_date: date
    end_date: date
    working_days: Decimal
    status: str
    approved_by: str | None
    approved_at: datetime | None


@dataclass
class AttendanceSummaryRow:
    employee_id: int
    employee_name: str
    department_name: str
    present_count: int
    late_count: int
    field_count: int
    absent_count: int
    leave_count: int
    unmarked_count: int


@dataclass
class PayrollBatchReportRow:
    month: str
    status: str
    created_at: datetime
    approved_at: datetime | None
    locked_at: datetime | None
    entries_count: int
    total_net_pay: Decimal


@dataclass
class AuditReportRow:
    created_at: datetime
    actor_username: str
    action: str
    entity_type: str
    entity_id: int | None
    metadata_json: str


def _blank(value: str | date | None) -> bool:
    if isinstance(value, date):
        return False
    return not (value or "").strip()


def validate_date_range(date_from: str | date | None, date_to: str | date | None) -> tuple[date, date]:
    if _blank(date_from) or _blank(date_to):
        raise ValidationError("date range is required")
    start = parse_iso_date(date_from, "date_from")
    end = parse_iso_date(date_to, "date_to")
    if start > end:
        raise ValidationError("date_from must be before or equal to date_to")
    return start, end


def _require_positive_filter(value: int | None, field: str) -> None:
    if value is not None and value <= 0:
        raise ValidationError(f"{field} must be positive")


def _day(value: datetime | date | None) -> str:
    if value is None:
        return ""
    if isinstance(value, datetime):
        return value.date().isoformat()
    return value.isoformat()


def _employee_name():
    return func.trim(Employee.first_name + " " + Employee.last_name + " " + func.coalesce(Employee.other_name, ""))


def _department_name():
    return func.coalesce(Department.name, NO_DEPARTMENT)


def _status_count(status: AttendanceStatus):
    return func.coalesce(func.sum(case((AttendanceRecord.status == status, 1), else_=0)), 0)


class ReportService:
    def __init__(self, today: Callable[[], date] = date.today) -> None:
        self.today = today

    # Employees

    def list_employee_report(
        self,
        claims: Claims | None,
        filters: EmployeeReportFilter | None = None,
        page: int | None = None,
        page_size: int | None = None,
    ) -> Page[EmployeeReportRow]:
        require_roles(claims, EMPLOYEE_REPORT_ROLES)
        stmt = self._employee_query(filters or EmployeeReportFilter())
        return self._page(stmt, page, page_size, self._employee_row_factory(claims))

    def export_employee_report_csv(
        self, claims: Claims | None, filters: EmployeeReportFilter | None = None
    ) -> ExportFile:
        require_roles(claims, EMPLOYEE_REPORT_ROLES)
        stmt = self._employee_query(filters or EmployeeReportFilter())
        rows = self._export_rows(stmt, self._employee_row_factory(claims))
        return csv_export(
            f"employee-list-{self.today().isoformat()}.csv",
            EMPLOYEE_CSV_HEADERS,
            [
                [
                    row.employee_name,
                    row.department_name,
                    row.position,
                    row.status,
                    _day(row.date_of_hire),
                    row.phone,
                    row.email,
                    "" if row.base_salary_amount is None else format_money(row.base_salary_amount),
                ]
                for row in rows
            ],
        )

    @staticmethod
    def _employee_query(filters: EmployeeReportFilter) -> Select:
        _require_positive_filter(filters.department_id, "department id")
        search = (filters.q or "").strip()
        if len(search) > MAX_SEARCH_LENGTH:
            raise ValidationError("search text is too long")
        status = (filters.employment_status or "").strip()
        if status and status not in EMPLOYEE_STATUSES:
            raise ValidationError("invalid employment status")

        stmt = (
            select(
                _employee_name().label("employee_name"),
                _department_name().label("department_name"),
                Employee.position,
                Employee.employment_status,
                Employee.date_of_hire,
                func.coalesce(Employee.phone, "").label("phone"),
                func.coalesce(Employee.email, "").label("email"),
                Employee.base_salary_amount,
            )
            .select_from(Employee)
            .outerjoin(Department, Department.id == Employee.department_id)
        )
        if filters.department_id:
            stmt = stmt.where(Employee.department_id == filters.department_id)
        if status:
            stmt = stmt.where(func.lower(Employee.employment_status) == status.lower())
        if search:
            like = f"%{search.lower()}%"
            stmt = stmt.where(
                or_(
                    func.lower(_employee_name()).like(like),
                    func.lower(func.coalesce(Employee.email, "")).like(like),
                    func.lower(func.coalesce(Employee.phone, "")).like(like),
                )
            )
        return stmt.order_by(func.lower(Employee.last_name), func.lower(Employee.first_name), Employee.id)

    @staticmethod
    def _employee_row_factory(claims: Claims) -> Callable[[Any], EmployeeReportRow]:
        show_salary = can_view_salaries(claims)

        def build(row: Any) -> EmployeeReportRow:
            return EmployeeReportRow(
                employee_name=row.employee_name,
                department_name=row.department_name,
                position=row.position,
                status=row.employment_status,
                date_of_hire=row.date_of_hire,
                phone=row.phone,
                email=row.email,
                base_salary_amount=Decimal(row.base_salary_amount) if show_salary else None,
            )

        return build

    # Leave requests

    def list_leave_requests_report(
        self,
        claims: Claims | None,
        filters: LeaveReportFilter,
        page: int | None = None,
        page_size: int | None = None,
    ) -> Page[LeaveReportRow]:
        require_roles(claims, LEAVE_REPORT_ROLES)
        stmt, _, _ = self._leave_query(filters)
        return self._page(stmt, page, page_size, self._leave_row)

    def export_leave_requests_report_csv(self, claims: Claims | None, filters: LeaveReportFilter) -> ExportFile:
        require_roles(claims, LEAVE_REPORT_ROLES)
        stmt, start, end = self._leave_query(filters)
        rows = self._export_rows(stmt, self._leave_row)
        return csv_export(
            f"leave-requests-{start.isoformat()}_to_{end.isoformat()}.csv",
            LEAVE_CSV_HEADERS,
            [
                [
                    row.employee_name,
                    row.department_name,
                    row.leave_type,
                    _day(row.start_date),
                    _day(row.end_date),
                    format_money(row.working_days),
                    row.status,
                    row.approved_by or "",
                    _day(row.approved_at),
                ]
                for row in rows
            ],
        )

    @staticmethod
    def _leave_query(filters: LeaveReportFilter) -> tuple[Select, date, date]:
        start, end = validate_date_range(filters.date_from, filters.date_to)
        _require_positive_filter(filters.department_id, "department id")
        _require_positive_filter(filters.employee_id, "employee id")
        _require_positive_filter(filters.leave_type_id, "leave type id")
        status = (filters.status or "").strip()
        if status:
            try:
                status = LeaveRequestStatus(status)
            except ValueError as exc:
                raise ValidationError("invalid leave status") from exc

        approver = aliased(User)
        stmt = (
            select(
                _employee_name().label("employee_name"),
                _department_name().label("department_name"),
                LeaveType.name.label("leave_type"),
                LeaveRequest.start_date,
                LeaveRequest.end_date,
                LeaveRequest.working_days,
                LeaveRequest.status,
                approver.username.label("approved_by"),
                LeaveRequest.approved_at,
            )
            .select_from(LeaveRequest)
            .join(Employee, Employee.id == LeaveRequest.employee_id)
            .outerjoin(Department, Department.id == Employee.department_id)
            .join(LeaveType, LeaveType.id == LeaveRequest.leave_type_id)
            .outerjoin(approver, approver.id == LeaveRequest.approved_by)
            .where(LeaveRequest.start_date <= end, LeaveRequest.end_date >= start)
        )
        if filters.department_id:
            stmt = stmt.where(Employee.department_id == filters.department_id)
        if filters.employee_id:
            stmt = stmt.where(LeaveRequest.employee_id == filters.employee_id)
        if filters.leave_type_id:
            stmt = stmt.where(LeaveRequest.leave_type_id == filters.leave_type_id)
        if status:
            stmt = stmt.where(LeaveRequest.status == status)
        return stmt.order_by(LeaveRequest.start_date.desc(), LeaveRequest.id.desc()), start, end

    @staticmethod
    def _leave_row(row: Any) -> LeaveReportRow:
        return LeaveReportRow(
            employee_name=row.employee_name,
            department_name=row.department_name,
            leave_type=row.leave_type,
            start_date=row.start_date,
            end_date=row.end_date,
            working_days=Decimal(row.working_days),
            status=row.status.value,
            approved_by=row.approved_by,
            approved_at=row.approved_at,
        )

    # Attendance summary

    def list_attendance_summary_report(
        self,
        claims: Claims | None,
        filters: AttendanceSummaryFilter,
        page: int | None = None,
        page_size: int | None = None,
    ) -> Page[AttendanceSummaryRow]:
        require_roles(claims, ATTENDANCE_REPORT_ROLES)
        stmt, start, end = self._attendance_query(filters)
        return self._page(stmt, page, page_size, self._attendance_row_factory(start, end))

    def export_attendance_summary_report_csv(
        self, claims: Claims | None, filters: AttendanceSummaryFilter
    ) -> ExportFile:
        require_roles(claims, ATTENDANCE_REPORT_ROLES)
        stmt, start, end = self._attendance_query(filters)
        rows = self._export_rows(stmt, self._attendance_row_factory(start, end))
        return csv_export(
            f"attendance-summary-{start.isoformat()}_to_{end.isoformat()}.csv",
            ATTENDANCE_CSV_HEADERS,
            [
                [
                    row.employee_name,
                    row.department_name,
                    row.present_count,
                    row.late_count,
                    row.field_count,
                    row.absent_count,
                    row.leave_count,
                    row.unmarked_count,
                ]
                for row in rows
            ],
        )

    @staticmethod
    def _attendance_query(filters: AttendanceSummaryFilter) -> tuple[Select, date, date]:
        start, end = validate_date_range(filters.date_from, filters.date_to)
        _require_positive_filter(filters.department_id, "department id")
        _require_positive_filter(filters.employee_id, "employee id")

        stmt = (
            select(
                Employee.id.label("employee_id"),
                _employee_name().label("employee_name"),
                _department_name().label("department_name"),
                _status_count(AttendanceStatus.PRESENT).label("present_count"),
                _status_count(AttendanceStatus.LATE).label("late_count"),
                _status_count(AttendanceStatus.FIELD).label("field_count"),
                _status_count(AttendanceStatus.ABSENT).label("absent_count"),
                _status_count(AttendanceStatus.LEAVE).label("leave_count"),
                func.count(AttendanceRecord.id).label("marked_count"),
            )
            .select_from(Employee)
            .outerjoin(Department, Department.id == Employee.department_id)
            .outerjoin(
                AttendanceRecord,
                (AttendanceRecord.employee_id == Employee.id)
                & (AttendanceRecord.attendance_date >= start)
                & (AttendanceRecord.attendance_date <= end),
            )
        )
        if filters.department_id:
            stmt = stmt.where(Employee.department_id == filters.department_id)
        if filters.employee_id:
            stmt = stmt.where(Employee.id == filters.employee_id)
        stmt = stmt.group_by(
            Employee.id, Employee.first_name, Employee.last_name, Employee.other_name, Department.name
        ).order_by(func.lower(Employee.last_name), func.lower(Employee.first_name), Employee.id)
        return stmt, start, end

    @staticmethod
    def _attendance_row_factory(start: date, end: date) -> Callable[[Any], AttendanceSummaryRow]:
        total_days = (end - start).days + 1

        def build(row: Any) -> AttendanceSummaryRow:
            return AttendanceSummaryRow(
                employee_id=row.employee_id,
                employee_name=row.employee_name,
                department_name=row.department_name,
                present_count=int(row.present_count),
                late_count=int(row.late_count),
                field_count=int(row.field_count),
                absent_count=int(row.absent_count),
                leave_count=int(row.leave_count),
                unmarked_count=max(0, total_days - int(row.marked_count)),
            )

        return build

    # Payroll batches

    def list_payroll_batches_report(
        self,
        claims: Claims | None,
        filters: PayrollBatchReportFilter | None = None,
        page: int | None = None,
        page_size: int | None = None,
    ) -> Page[PayrollBatchReportRow]:
        require_roles(claims, PAYROLL_REPORT_ROLES)
        stmt = self._payroll_query(filters or PayrollBatchReportFilter())
        return self._page(stmt, page, page_size, self._payroll_row)

    def export_payroll_batches_report_csv(
        self, claims: Claims | None, filters: PayrollBatchReportFilter | None = None
    ) -> ExportFile:
        require_roles(claims, PAYROLL_REPORT_ROLES)
        stmt = self._payroll_query(filters or PayrollBatchReportFilter())
        rows = self._export_rows(stmt, self._payroll_row)
        return csv_export(
            f"payroll-batches-{self.today().isoformat()}.csv",
            PAYROLL_CSV_HEADERS,
            [
                [
                    row.month,
                    row.status,
                    _day(row.created_at),
                    _day(row.approved_at),
                    _day(row.locked_at),
                    row.entries_count,
                    format_money(row.total_net_pay),
                ]
                for row in rows
            ],
        )

    @staticmethod
    def _payroll_query(filters: PayrollBatchReportFilter) -> Select:
        month_from = (filters.month_from or "").strip()
        month_to = (filters.month_to or "").strip()
        if month_from and not MONTH_PATTERN.match(month_from):
            raise ValidationError("month_from must be YYYY-MM")
        if month_to and not MONTH_PATTERN.match(month_to):
            raise ValidationError("month_to must be YYYY-MM")
        if month_from and month_to and month_from > month_to:
            raise ValidationError("month_from must be before or equal to month_to")
        status = (filters.status or "").strip()
        if status:
            try:
                status = PayrollBatchStatus(status)
            except ValueError as exc:
                raise ValidationError("invalid payroll status") from exc

        stmt = (
            select(
                PayrollBatch.month,
                PayrollBatch.status,
                PayrollBatch.created_at,
                PayrollBatch.approved_at,
                PayrollBatch.locked_at,
                func.count(PayrollEntry.id).label("entries_count"),
                func.coalesce(func.sum(PayrollEntry.net_pay), 0).label("total_net_pay"),
            )
            .select_from(PayrollBatch)
            .outerjoin(PayrollEntry, PayrollEntry.batch_id == PayrollBatch.id)
        )
        if month_from:
            stmt = stmt.where(PayrollBatch.month >= month_from)
        if month_to:
            stmt = stmt.where(PayrollBatch.month <= month_to)
        if status:
            stmt = stmt.where(PayrollBatch.status == status)
        return stmt.group_by(
            PayrollBatch.id,
            PayrollBatch.month,
            PayrollBatch.status,
            PayrollBatch.created_at,
            PayrollBatch.approved_at,
            PayrollBatch.locked_at,
        ).order_by(PayrollBatch.month.desc(), PayrollBatch.id.desc())

    @staticmethod
    def _payroll_row(row: Any) -> PayrollBatchReportRow:
        return PayrollBatchReportRow(
            month=row.month,
            status=row.status.value,
            created_at=row.created_at,
            approved_at=row.approved_at,
            locked_at=row.locked_at,
            entries_count=int(row.entries_count),
            total_net_pay=Decimal(str(row.total_net_pay)),
        )

    # Audit log

    def list_audit_log_report(
        self,
        claims: Claims | None,
        filters: AuditReportFilter,
        page: int | None = None,
        page_size: int | None = None,
    ) -> Page[AuditReportRow]:
        require_roles(claims, AUDIT_REPORT_ROLES)
        stmt, _, _ = self._audit_query(filters)
        return self._page(stmt, page, page_size, self._audit_row)

    def export_audit_log_report_csv(self, claims: Claims | None, filters: AuditReportFilter) -> ExportFile:
        require_roles(claims, AUDIT_REPORT_ROLES)
        stmt, start, end = self._audit_query(filters)
        rows = self._export_rows(stmt, self._audit_row)
        return csv_export(
            f"audit-log-{start.isoformat()}_to_{end.isoformat()}.csv",
            AUDIT_CSV_HEADERS,
            [
                [
                    _day(row.created_at),
                    row.actor_username,
                    row.action,
                    row.entity_type,
                    row.entity_id,
                    row.metadata_json,
                ]
                for row in rows
            ],
        )

    @staticmethod
    def _audit_query(filters: AuditReportFilter) -> tuple[Select, date, date]:
        start, end = validate_date_range(filters.date_from, filters.date_to)
        _require_positive_filter(filters.actor_user_id, "actor user id")
        action = (filters.action or "").strip()
        entity_type = (filters.entity_type or "").strip()
        if len(action) > MAX_AUDIT_FILTER_LENGTH:
            raise ValidationError("action is too long")
        if len(entity_type) > MAX_AUDIT_FILTER_LENGTH:
            raise ValidationError("entity type is too long")

        window_start = datetime.combine(start, time.min, tzinfo=timezone.utc)
        window_end = datetime.combine(end + timedelta(days=1), time.min, tzinfo=timezone.utc)
        stmt = (
            select(AuditLog, func.coalesce(User.username, "-").label("actor_username"))
            .outerjoin(User, User.id == AuditLog.actor_user_id)
            .where(AuditLog.created_at >= window_start, AuditLog.created_at < window_end)
        )
        if filters.actor_user_id:
            stmt = stmt.where(AuditLog.actor_user_id == filters.actor_user_id)
        if action:
            stmt = stmt.where(AuditLog.action == action)
        if entity_type:
            stmt = stmt.where(AuditLog.entity_type == entity_type)
        return stmt.order_by(AuditLog.created_at.desc(), AuditLog.id.desc()), start, end

    @staticmethod
    def _audit_row(row: Any) -> AuditReportRow:
        log = row[0]
        return AuditReportRow(
            created_at=log.created_at,
            actor_username=row.actor_username,
            action=log.action,
            entity_type=log.entity_type or "",
            entity_id=log.entity_id,
            metadata_json=json.dumps(log.metadata_json if log.metadata_json is not None else {}),
        )

    # Shared

    @staticmethod
    def _page(stmt: Select, page: int | None, page_size: int | None, build: Callable[[Any], Any]) -> Page:
        page, page_size = normalize_paging(page, page_size)
        total = count_rows(stmt)
        rows = db.session.execute(paginate(stmt, page, page_size)).all()
        return Page(items=[build(row) for row in rows], total_count=total, page=page, page_size=page_size)

    @staticmethod
    def _export_rows(stmt: Select, build: Callable[[Any], Any]) -> list:
        total = count_rows(stmt)
        if total > MAX_EXPORT_ROWS:
            raise ExportLimitExceededError(f"reduce result set below {MAX_EXPORT_ROWS} rows")
        return [build(row) for row in db.session.execute(stmt.limit(MAX_EXPORT_ROWS)).all()]
