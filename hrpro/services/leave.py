"""Leave types, locked dates, entitlements and the leave request lifecycle."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, timedelta
from decimal import Decimal

from sqlalchemy import case, extract, func, select
from sqlalchemy.orm import joinedload

from hrpro.authorization import LEAVE_ADMIN_ROLES, Claims, actor_id, can_manage_leave, require_claims, require_roles
from hrpro.errors import (
    InsufficientBalanceError,
    InvalidTransitionError,
    LockedDateConflictError,
    NotFoundError,
    OverlapApprovedError,
    ValidationError,
)
from hrpro.extensions import db
from hrpro.models import (
    Department,
    Employee,
    LeaveEntitlement,
    LeaveLockedDate,
    LeaveRequest,
    LeaveRequestStatus,
    LeaveType,
    now_utc,
)
from hrpro.services.audit import AuditedService
from hrpro.validation import normalize_optional, parse_iso_date, parse_optional_date, require_positive_id


ZERO = Decimal("0")
REJECTED_DEFAULT_REASON = "Rejected"

# (from, to) -> who may perform it: "admin" for admin/HR only, "self" for admin/HR or the owner.
TRANSITIONS = {
    (LeaveRequestStatus.PENDING, LeaveRequestStatus.APPROVED): "admin",
    (LeaveRequestStatus.PENDING, LeaveRequestStatus.REJECTED): "admin",
    (LeaveRequestStatus.PENDING, LeaveRequestStatus.CANCELLED): "self",
    (LeaveRequestStatus.APPROVED, LeaveRequestStatus.CANCELLED): "admin",
}


@dataclass
class LeaveTypeInput:
    name: str
    paid: bool = True
    counts_toward_entitlement: bool = True
    requires_attachment: bool = False
    requires_approval: bool = True


@dataclass
class ApplyLeaveInput:
    leave_type_id: int
    start_date: str | date
    end_date: str | date
    reason: str | None = None


@dataclass
class LeaveRequestFilter:
    status: str | None = None
    date_from: str | date | None = None
    date_to: str | date | None = None
    employee: str | None = None
    leave_type: str | None = None
    department: str | None = None


@dataclass(frozen=True)
class LeaveBalance:
    employee_id: int
    year: int
    total_days: Decimal
    reserved_days: Decimal
    approved_days: Decimal
    pending_days: Decimal
    available_days: Decimal


def calculate_working_days(start: date, end: date) -> list[date]:
    """Monday to Friday dates in the inclusive range."""
    if end < start:
        raise ValidationError("end date must be on/after start date")
    days = []
    current = start
    while current <= end:
        if current.weekday() < 5:
            days.append(current)
        current += timedelta(days=1)
    if not days:
        raise ValidationError("selected range has no working days")
    return days


def compute_available(total: Decimal, reserved: Decimal, approved: Decimal, pending: Decimal) -> Decimal:
    return max(ZERO, total - reserved - approved - pending)


def can_transition(
    current: LeaveRequestStatus, target: LeaveRequestStatus, actor_is_admin_or_hr: bool, is_self: bool
) -> bool:
    rule = TRANSITIONS.get((current, target))
    if rule == "admin":
        return actor_is_admin_or_hr
    if rule == "self":
        return actor_is_admin_or_hr or is_self
    return False


def _current_year() -> int:
    return now_utc().year


class LeaveService(AuditedService):
    # Leave types

    def list_leave_types(self, claims: Claims | None, active_only: bool = False) -> list[LeaveType]:
        require_claims(claims)
        stmt = select(LeaveType).order_by(LeaveType.name.asc())
        if active_only:
            stmt = stmt.where(LeaveType.active.is_(True))
        return list(db.session.execute(stmt).scalars().all())

    def create_leave_type(self, claims: Claims | None, data: LeaveTypeInput) -> LeaveType:
        require_roles(claims, LEAVE_ADMIN_ROLES)
        name = self._leave_type_name(data)
        leave_type = LeaveType(
            name=name,
            paid=data.paid,
            counts_toward_entitlement=data.counts_toward_entitlement,
            requires_attachment=data.requires_attachment,
            requires_approval=data.requires_approval,
            active=True,
        )
        db.session.add(leave_type)
        db.session.commit()
        self.audit.record(actor_id(claims), "leave.type.create", "leave_type", leave_type.id, {"name": name})
        return leave_type

    def update_leave_type(self, claims: Claims | None, leave_type_id: int, data: LeaveTypeInput) -> LeaveType:
        require_roles(claims, LEAVE_ADMIN_ROLES)
        require_positive_id(leave_type_id, "leave type id")
        name = self._leave_type_name(data)
        leave_type = db.session.get(LeaveType, leave_type_id)
        if leave_type is None:
            raise NotFoundError("leave type not found")
        leave_type.name = name
        leave_type.paid = data.paid
        leave_type.counts_toward_entitlement = data.counts_toward_entitlement
        leave_type.requires_attachment = data.requires_attachment
        leave_type.requires_approval = data.requires_approval
        db.session.commit()
        self.audit.record(actor_id(claims), "leave.type.update", "leave_type", leave_type.id, {"name": name})
        return leave_type

    def set_leave_type_active(self, claims: Claims | None, leave_type_id: int, active: bool) -> LeaveType:
        require_roles(claims, LEAVE_ADMIN_ROLES)
        require_positive_id(leave_type_id, "leave type id")
        leave_type = db.session.get(LeaveType, leave_type_id)
        if leave_type is None:
            raise NotFoundError("leave type not found")
        leave_type.active = bool(active)
        db.session.commit()
        self.audit.record(
            actor_id(claims), "leave.type.set_active", "leave_type", leave_type.id, {"active": leave_type.active}
        )
        return leave_type

    @staticmethod
    def _leave_type_name(data: LeaveTypeInput) -> str:
        name = (data.name or "").strip()
        if not name:
            raise ValidationError("leave type name is required")
        return name

    # Locked dates

    def list_locked_dates(self, claims: Claims | None, year: int | None = None) -> list[LeaveLockedDate]:
        require_claims(claims)
        year = year if year and year > 0 else _current_year()
        stmt = (
            select(LeaveLockedDate)
            .where(LeaveLockedDate.locked_date >= date(year, 1, 1), LeaveLockedDate.locked_date <= date(year, 12, 31))
            .order_by(LeaveLockedDate.locked_date.asc())
        )
        return list(db.session.execute(stmt).scalars().all())

    def lock_date(self, claims: Claims | None, locked_date: str | date, reason: str | None = None) -> LeaveLockedDate:
        require_roles(claims, LEAVE_ADMIN_ROLES)
        day = parse_iso_date(locked_date)
        reason = normalize_optional(reason)

        row = db.session.execute(
            select(LeaveLockedDate).where(LeaveLockedDate.locked_date == day)
        ).scalar_one_or_none()
        if row is None:
            row = LeaveLockedDate(locked_date=day, created_by=actor_id(claims))
            db.session.add(row)
        row.reason = reason
        db.session.commit()
        self.audit.record(
            actor_id(claims), "leave.locked_date.lock", "leave_locked_date", row.id,
            {"date": day.isoformat(), "reason": reason},
        )
        return row

    def unlock_date(self, claims: Claims | None, locked_date: str | date) -> None:
        require_roles(claims, LEAVE_ADMIN_ROLES)
        day = parse_iso_date(locked_date)
        row = db.session.execute(
            select(LeaveLockedDate).where(LeaveLockedDate.locked_date == day)
        ).scalar_one_or_none()
        if row is None:
            raise NotFoundError("locked date not found")
        row_id = row.id
        db.session.delete(row)
        db.session.commit()
        self.audit.record(
            actor_id(claims), "leave.locked_date.unlock", "leave_locked_date", row_id, {"date": day.isoformat()}
        )

    # Entitlements and balances

    def upsert_entitlement(
        self,
        claims: Claims | None,
        employee_id: int,
        year: int,
        total_days: Decimal | float | int,
        reserved_days: Decimal | float | int = 0,
    ) -> LeaveEntitlement:
        require_roles(claims, LEAVE_ADMIN_ROLES)
        require_positive_id(employee_id, "employee id")
        if not year or year <= 0:
            raise ValidationError("year is required")
        total = Decimal(str(total_days))
        reserved = Decimal(str(reserved_days))
        if total < 0 or reserved < 0:
            raise ValidationError("total/reserved days must be >= 0")
        if reserved > total:
            raise ValidationError("reserved days cannot exceed total days")
        self._require_employee(employee_id)

        entitlement = db.session.execute(
            select(LeaveEntitlement).where(LeaveEntitlement.employee_id == employee_id, LeaveEntitlement.year == year)
        ).scalar_one_or_none()
        if entitlement is None:
            entitlement = LeaveEntitlement(employee_id=employee_id, year=year)
            db.session.add(entitlement)
        entitlement.total_days = total
        entitlement.reserved_days = reserved
        db.session.commit()
        self.audit.record(
            actor_id(claims), "leave.entitlement.upsert", "leave_entitlement", entitlement.id,
            {"employee_id": employee_id, "year": year, "total_days": total, "reserved_days": reserved},
        )
        return entitlement

    def get_my_leave_balance(self, claims: Claims | None, year: int | None = None) -> LeaveBalance:
        claims = require_claims(claims)
        return self._balance(claims.user_id, year)

    def get_leave_balance(self, claims: Claims | None, employee_id: int, year: int | None = None) -> LeaveBalance:
        require_roles(claims, LEAVE_ADMIN_ROLES)
        return self._balance(employee_id, year)

    def _balance(self, employee_id: int, year: int | None) -> LeaveBalance:
        require_positive_id(employee_id, "employee id")
        year = year if year and year > 0 else _current_year()
        self._require_employee(employee_id)

        entitlement = db.session.execute(
            select(LeaveEntitlement).where(LeaveEntitlement.employee_id == employee_id, LeaveEntitlement.year == year)
        ).scalar_one_or_none()
        total = Decimal(entitlement.total_days) if entitlement else ZERO
        reserved = Decimal(entitlement.reserved_days) if entitlement else ZERO
        approved, pending = self._consumed_days(employee_id, year)

        return LeaveBalance(
            employee_id=employee_id,
            year=year,
            total_days=total,
            reserved_days=reserved,
            approved_days=approved,
            pending_days=pending,
            available_days=compute_available(total, reserved, approved, pending),
        )

    def _consumed_days(self, employee_id: int, year: int) -> tuple[Decimal, Decimal]:
        def sum_for(status: LeaveRequestStatus):
            return func.coalesce(
                func.sum(case((LeaveRequest.status == status, LeaveRequest.working_days), else_=0)), 0
            )

        approved, pending = db.session.execute(
            select(sum_for(LeaveRequestStatus.APPROVED), sum_for(LeaveRequestStatus.PENDING))
            .join(LeaveType, LeaveType.id == LeaveRequest.leave_type_id)
            .where(
                LeaveRequest.employee_id == employee_id,
                extract("year", LeaveRequest.start_date) == year,
                LeaveType.counts_toward_entitlement.is_(True),
            )
        ).one()
        return Decimal(str(approved)), Decimal(str(pending))

    # Requests

    def apply_leave(self, claims: Claims | None, data: ApplyLeaveInput) -> LeaveRequest:
        claims = require_claims(claims)
        require_positive_id(data.leave_type_id, "leave type id")
        start = parse_iso_date(data.start_date, "start date")
        end = parse_iso_date(data.end_date, "end date")

        leave_type = db.session.get(LeaveType, data.leave_type_id)
        if leave_type is None or not leave_type.active:
            raise ValidationError("leave type is not available")

        request = self._create_request(claims.user_id, leave_type, start, end, normalize_optional(data.reason))
        self.audit.record(
            actor_id(claims), "leave.request.create", "leave_request", request.id,
            {
                "employee_id": request.employee_id,
                "leave_type_id": leave_type.id,
                "start_date": start.isoformat(),
                "end_date": end.isoformat(),
                "working_days": request.working_days,
            },
        )
        return request

    def create_single_day_leave_from_attendance(
        self, claims: Claims | None, employee_id: int, attendance_date: str | date
    ) -> int:
        """Raise a one-day request for an employee marked absent; returns its id."""
        claims = require_claims(claims)
        require_positive_id(employee_id, "employee id")
        day = parse_iso_date(attendance_date)

        leave_type = self._attendance_leave_type()
        request = self._create_request(employee_id, leave_type, day, day, "Posted from attendance (absent)")
        self.audit.record(
            actor_id(claims), "leave.request.create", "leave_request", request.id,
            {
                "employee_id": employee_id,
                "leave_type_id": leave_type.id,
                "start_date": day.isoformat(),
                "end_date": day.isoformat(),
                "working_days": request.working_days,
                "source": "attendance",
            },
        )
        return request.id

    def _attendance_leave_type(self) -> LeaveType:
        leave_type = db.session.execute(
            select(LeaveType)
            .where(LeaveType.active.is_(True))
            .order_by(LeaveType.counts_toward_entitlement.desc(), LeaveType.id.asc())
            .limit(1)
        ).scalar_one_or_none()
        if leave_type is None:
            raise ValidationError("no active leave type is configured")
        return leave_type

    def _create_request(
        self, employee_id: int, leave_type: LeaveType, start: date, end: date, reason: str | None
    ) -> LeaveRequest:
        if start.year != end.year:
            raise ValidationError("leave request must be in a single calendar year")
        working_dates = calculate_working_days(start, end)
        working_days = Decimal(len(working_dates))
        self._require_employee(employee_id)

        locked = set(
            db.session.execute(
                select(LeaveLockedDate.locked_date).where(
                    LeaveLockedDate.locked_date >= start, LeaveLockedDate.locked_date <= end
                )
            ).scalars()
        )
        if locked.intersection(working_dates):
            raise LockedDateConflictError()

        if self._has_approved_overlap(employee_id, start, end):
            raise OverlapApprovedError()

        if leave_type.counts_toward_entitlement:
            balance = self._balance(employee_id, start.year)
            if working_days > balance.available_days:
                raise InsufficientBalanceError()

        request = LeaveRequest(
            employee_id=employee_id,
            leave_type_id=leave_type.id,
            start_date=start,
            end_date=end,
            working_days=working_days,
            status=LeaveRequestStatus.PENDING,
            reason=reason,
        )
        db.session.add(request)
        db.session.commit()
        return request

    def _has_approved_overlap(self, employee_id: int, start: date, end: date) -> bool:
        stmt = select(LeaveRequest.id).where(
            LeaveRequest.employee_id == employee_id,
            LeaveRequest.status == LeaveRequestStatus.APPROVED,
            LeaveRequest.start_date <= end,
            LeaveRequest.end_date >= start,
        )
        return db.session.execute(select(stmt.exists())).scalar_one()

    def list_my_leave_requests(
        self, claims: Claims | None, filters: LeaveRequestFilter | None = None
    ) -> list[LeaveRequest]:
        claims = require_claims(claims)
        return self._list_requests(filters, employee_id=claims.user_id)

    def list_all_leave_requests(
        self, claims: Claims | None, filters: LeaveRequestFilter | None = None
    ) -> list[LeaveRequest]:
        require_roles(claims, LEAVE_ADMIN_ROLES)
        return self._list_requests(filters)

    def _list_requests(self, filters: LeaveRequestFilter | None, employee_id: int | None = None) -> list[LeaveRequest]:
        filters = filters or LeaveRequestFilter()
        stmt = (
            select(LeaveRequest)
            .join(Employee, Employee.id == LeaveRequest.employee_id)
            .join(LeaveType, LeaveType.id == LeaveRequest.leave_type_id)
            .outerjoin(Department, Department.id == Employee.department_id)
            .options(joinedload(LeaveRequest.employee).joinedload(Employee.department), joinedload(LeaveRequest.leave_type))
        )
        if employee_id is not None:
            stmt = stmt.where(LeaveRequest.employee_id == employee_id)

        status = (filters.status or "").strip()
        if status:
            try:
                stmt = stmt.where(LeaveRequest.status == LeaveRequestStatus(status))
            except ValueError as exc:
                raise ValidationError("status must be Pending|Approved|Rejected|Cancelled") from exc
        date_from = parse_optional_date(filters.date_from, "date from")
        if date_from is not None:
            stmt = stmt.where(LeaveRequest.start_date >= date_from)
        date_to = parse_optional_date(filters.date_to, "date to")
        if date_to is not None:
            stmt = stmt.where(LeaveRequest.end_date <= date_to)

        employee = (filters.employee or "").strip().lower()
        if employee:
            full_name = func.lower(func.trim(Employee.first_name + " " + Employee.last_name))
            stmt = stmt.where(full_name.like(f"%{employee}%"))
        leave_type = (filters.leave_type or "").strip().lower()
        if leave_type:
            stmt = stmt.where(func.lower(LeaveType.name).like(f"%{leave_type}%"))
        department = (filters.department or "").strip().lower()
        if department:
            stmt = stmt.where(func.lower(func.coalesce(Department.name, "")).like(f"%{department}%"))

        stmt = stmt.order_by(LeaveRequest.created_at.desc(), LeaveRequest.id.desc())
        return list(db.session.execute(stmt).unique().scalars().all())

    def approve_leave(self, claims: Claims | None, request_id: int) -> LeaveRequest:
        claims = require_claims(claims)
        request = self._get_request(request_id)
        if not can_transition(request.status, LeaveRequestStatus.APPROVED, can_manage_leave(claims), False):
            raise InvalidTransitionError()

        request.status = LeaveRequestStatus.APPROVED
        request.approved_by = actor_id(claims)
        request.approved_at = now_utc()
        db.session.commit()
        self._record_transition(claims, "leave.request.approve", request)
        return request

    def reject_leave(self, claims: Claims | None, request_id: int, reason: str | None = None) -> LeaveRequest:
        claims = require_claims(claims)
        request = self._get_request(request_id)
        if not can_transition(request.status, LeaveRequestStatus.REJECTED, can_manage_leave(claims), False):
            raise InvalidTransitionError()

        request.status = LeaveRequestStatus.REJECTED
        request.approved_by = actor_id(claims)
        request.approved_at = None
        request.reason = normalize_optional(reason) or REJECTED_DEFAULT_REASON
        db.session.commit()
        self._record_transition(claims, "leave.request.reject", request)
        return request

    def cancel_leave(self, claims: Claims | None, request_id: int) -> LeaveRequest:
        claims = require_claims(claims)
        request = self._get_request(request_id)
        admin_or_hr = can_manage_leave(claims)
        is_self = request.employee_id == claims.user_id
        if not can_transition(request.status, LeaveRequestStatus.CANCELLED, admin_or_hr, is_self):
            raise InvalidTransitionError()

        request.status = LeaveRequestStatus.CANCELLED
        if admin_or_hr:
            request.approved_by = actor_id(claims)
            request.approved_at = now_utc()
        else:
            request.approved_by = None
            request.approved_at = None
        db.session.commit()
        self._record_transition(claims, "leave.request.cancel", request)
        return request

    def _get_request(self, request_id: int) -> LeaveRequest:
        require_positive_id(request_id, "leave request id")
        request = db.session.get(LeaveRequest, request_id)
        if request is None:
            raise NotFoundError("leave request not found")
        return request

    def _record_transition(self, claims: Claims, action: str, request: LeaveRequest) -> None:
        self.audit.record(
            actor_id(claims), action, "leave_request", request.id,
            {"employee_id": request.employee_id, "status": request.status.value},
        )

    @staticmethod
    def _require_employee(employee_id: int) -> None:
        if db.session.get(Employee, employee_id) is None:
            raise NotFoundError("employee not found")
