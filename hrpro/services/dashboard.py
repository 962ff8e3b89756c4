"""Dashboard aggregates, trimmed by role."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Callable

from sqlalchemy import case, func, select

from hrpro.authorization import DASHBOARD_ROLES, Claims, Role, normalize_role, require_roles
from hrpro.extensions import db
from hrpro.models import (
    AuditLog,
    Department,
    Employee,
    LeaveRequest,
    LeaveRequestStatus,
    PayrollBatch,
    PayrollEntry,
    User,
)


RECENT_AUDIT_LIMIT = 10
UNASSIGNED_DEPARTMENT = "Unassigned"
PAYROLL_SNAPSHOT_ROLES = {Role.ADMIN.value, Role.HR_OFFICER.value, Role.FINANCE_OFFICER.value}


@dataclass
class DepartmentHeadcount:
    department_name: str
    count: int


@dataclass
class RecentAuditEvent:
    id: int
    actor_user_id: int | None
    actor_username: str | None
    action: str
    entity_type: str | None
    entity_id: int | None
    created_at: datetime


@dataclass
class DashboardSummary:
    total_employees: int = 0
    active_employees: int = 0
    inactive_employees: int = 0
    pending_leave_requests: int = 0
    approved_leave_this_month: int = 0
    employees_on_leave_today: int = 0
    current_payroll_status: str | None = None
    current_payroll_total: Decimal | None = None
    active_users: int | None = None
    employees_per_department: list[DepartmentHeadcount] = field(default_factory=list)
    recent_audit_events: list[RecentAuditEvent] = field(default_factory=list)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def month_bounds(now: datetime) -> tuple[datetime, datetime]:
    start = datetime(now.year, now.month, 1, tzinfo=timezone.utc)
    if now.month == 12:
        end = datetime(now.year + 1, 1, 1, tzinfo=timezone.utc)
    else:
        end = datetime(now.year, now.month + 1, 1, tzinfo=timezone.utc)
    return start, end


class DashboardService:
    def __init__(self, clock: Callable[[], datetime] = _utc_now) -> None:
        self.clock = clock

    def get_dashboard_summary(self, claims: Claims | None) -> DashboardSummary:
        require_roles(claims, DASHBOARD_ROLES)
        role = normalize_role(claims.role)
        now = self.clock().astimezone(timezone.utc)

        summary = DashboardSummary()
        summary.total_employees, summary.active_employees, summary.inactive_employees = self._employee_counts()
        summary.pending_leave_requests = self._count_pending_leave()
        summary.approved_leave_this_month = self._count_approved_in_month(now)
        summary.employees_on_leave_today = self._count_on_leave(now)
        summary.employees_per_department = self._employees_per_department()

        if role in PAYROLL_SNAPSHOT_ROLES:
            snapshot = self._current_payroll_snapshot()
            if snapshot is not None:
                summary.current_payroll_status, summary.current_payroll_total = snapshot

        if role == Role.ADMIN.value:
            summary.active_users = db.session.execute(
                select(func.count(User.id)).where(User.is_active.is_(True))
            ).scalar_one()
            summary.recent_audit_events = self._recent_audit_events(RECENT_AUDIT_LIMIT)

        if role == Role.VIEWER.value:
            summary.current_payroll_status = None
            summary.current_payroll_total = None
            summary.active_users = None
            summary.recent_audit_events = []
        return summary

    @staticmethod
    def _employee_counts() -> tuple[int, int, int]:
        is_active = func.lower(func.trim(Employee.employment_status)) == "active"
        total, active = db.session.execute(
            select(func.count(Employee.id), func.coalesce(func.sum(case((is_active, 1), else_=0)), 0))
        ).one()
        return int(total), int(active), int(total) - int(active)

    @staticmethod
    def _count_pending_leave() -> int:
        return db.session.execute(
            select(func.count(LeaveRequest.id)).where(LeaveRequest.status == LeaveRequestStatus.PENDING)
        ).scalar_one()

    @staticmethod
    def _count_approved_in_month(now: datetime) -> int:
        start, end = month_bounds(now)
        return db.session.execute(
            select(func.count(LeaveRequest.id)).where(
                LeaveRequest.status == LeaveRequestStatus.APPROVED,
                LeaveRequest.approved_at >= start,
                LeaveRequest.approved_at < end,
            )
        ).scalar_one()

    @staticmethod
    def _count_on_leave(now: datetime) -> int:
        today = now.date()
        return db.session.execute(
            select(func.count(func.distinct(LeaveRequest.employee_id))).where(
                LeaveRequest.status == LeaveRequestStatus.APPROVED,
                LeaveRequest.start_date <= today,
                LeaveRequest.end_date >= today,
            )
        ).scalar_one()

    @staticmethod
    def _employees_per_department() -> list[DepartmentHeadcount]:
        name = func.coalesce(Department.name, UNASSIGNED_DEPARTMENT)
        headcount = func.count(Employee.id)
        rows = db.session.execute(
            select(name.label("department_name"), headcount.label("count"))
            .select_from(Employee)
            .outerjoin(Department, Department.id == Employee.department_id)
            .group_by(name)
            .order_by(headcount.desc(), name.asc())
        ).all()
        return [DepartmentHeadcount(department_name=row.department_name, count=row.count) for row in rows]

    @staticmethod
    def _current_payroll_snapshot() -> tuple[str, Decimal] | None:
        row = db.session.execute(
            select(PayrollBatch.status, func.coalesce(func.sum(PayrollEntry.net_pay), 0))
            .outerjoin(PayrollEntry, PayrollEntry.batch_id == PayrollBatch.id)
            .group_by(PayrollBatch.id, PayrollBatch.status, PayrollBatch.month)
            .order_by(PayrollBatch.month.desc())
            .limit(1)
        ).first()
        if row is None:
            return None
        status, total = row
        return status.value, Decimal(str(total))

    @staticmethod
    def _recent_audit_events(limit: int) -> list[RecentAuditEvent]:
        rows = db.session.execute(
            select(AuditLog, User.username)
            .outerjoin(User, User.id == AuditLog.actor_user_id)
            .order_by(AuditLog.created_at.desc(), AuditLog.id.desc())
            .limit(limit)
        ).all()
        return [
            RecentAuditEvent(
                id=log.id,
                actor_user_id=log.actor_user_id,
                actor_username=username,
                action=log.action,
                entity_type=log.entity_type,
                entity_id=log.entity_id,
                created_at=log.created_at,
            )
            for log, username in rows
        ]
