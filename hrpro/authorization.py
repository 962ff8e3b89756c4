"""Role normalization and capability checks shared by every engine."""

from __future__ import annotations

import enum
from dataclasses import dataclass

from hrpro.errors import ForbiddenError


class Role(str, enum.Enum):
    ADMIN = "admin"
    HR_OFFICER = "hr_officer"
    FINANCE_OFFICER = "finance_officer"
    VIEWER = "viewer"
    STAFF = "staff"
    MASTER_ADMIN = "master_admin"


ASSIGNABLE_ROLES = {Role.ADMIN, Role.HR_OFFICER, Role.FINANCE_OFFICER, Role.VIEWER}

ADMIN_CLASS_ROLES = {Role.ADMIN, Role.MASTER_ADMIN}
ATTENDANCE_READ_ALL_ROLES = {Role.ADMIN, Role.MASTER_ADMIN, Role.HR_OFFICER, Role.FINANCE_OFFICER, Role.VIEWER}
ATTENDANCE_MARK_ROLES = {Role.ADMIN, Role.MASTER_ADMIN, Role.HR_OFFICER}
LEAVE_ADMIN_ROLES = {Role.ADMIN, Role.HR_OFFICER}
PEOPLE_WRITE_ROLES = {Role.ADMIN, Role.HR_OFFICER}
PEOPLE_READ_ROLES = {Role.ADMIN, Role.HR_OFFICER, Role.FINANCE_OFFICER, Role.VIEWER}
PAYROLL_ROLES = {Role.ADMIN, Role.FINANCE_OFFICER}
DASHBOARD_ROLES = {Role.ADMIN, Role.HR_OFFICER, Role.FINANCE_OFFICER, Role.VIEWER}
SALARY_VISIBLE_ROLES = {Role.ADMIN, Role.FINANCE_OFFICER}


@dataclass(frozen=True)
class Claims:
    user_id: int
    username: str
    role: str


def normalize_role(role: str | None) -> str:
    """Collapse "HR Officer", "hr_officer" and " hr  officer " to one form."""
    if not role:
        return ""
    return "_".join(role.strip().lower().split())


def has_role(claims: Claims | None, roles: set[Role] | set[str]) -> bool:
    if claims is None:
        return False
    current = normalize_role(claims.role)
    return any(current == normalize_role(getattr(role, "value", role)) for role in roles)


def require_roles(claims: Claims | None, roles: set[Role] | set[str]) -> Claims:
    if claims is None or not has_role(claims, roles):
        raise ForbiddenError()
    return claims


def require_claims(claims: Claims | None) -> Claims:
    if claims is None:
        raise ForbiddenError("claims are required")
    return claims


def can_override_locked(claims: Claims | None) -> bool:
    return has_role(claims, ADMIN_CLASS_ROLES)


def can_read_all_attendance(claims: Claims | None) -> bool:
    return has_role(claims, ATTENDANCE_READ_ALL_ROLES)


def can_mark_attendance(claims: Claims | None) -> bool:
    return has_role(claims, ATTENDANCE_MARK_ROLES)


def is_staff(claims: Claims | None) -> bool:
    return has_role(claims, {Role.STAFF})


def can_manage_leave(claims: Claims | None) -> bool:
    return has_role(claims, LEAVE_ADMIN_ROLES)


def can_view_salaries(claims: Claims | None) -> bool:
    return has_role(claims, SALARY_VISIBLE_ROLES)


def actor_id(claims: Claims | None) -> int | None:
    if claims is None or claims.user_id <= 0:
        return None
    return claims.user_id
