"""Operation surface consumed by the desktop shell."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from hrpro.handlers.admin import AuditHandler, DashboardHandler, ReportHandler, SettingsHandler
from hrpro.handlers.attendance import AttendanceHandler
from hrpro.handlers.auth import AuthHandler
from hrpro.handlers.leave import LeaveHandler
from hrpro.handlers.payroll import PayrollHandler
from hrpro.handlers.people import DepartmentHandler, EmployeeHandler, UserHandler

if TYPE_CHECKING:
    from hrpro.services import Services


@dataclass
class Handlers:
    auth: AuthHandler
    attendance: AttendanceHandler
    leave: LeaveHandler
    payroll: PayrollHandler
    employees: EmployeeHandler
    departments: DepartmentHandler
    users: UserHandler
    settings: SettingsHandler
    dashboard: DashboardHandler
    reports: ReportHandler
    audit: AuditHandler

    @classmethod
    def from_services(cls, services: "Services") -> "Handlers":
        auth = services.auth
        return cls(
            auth=AuthHandler(auth),
            attendance=AttendanceHandler(auth, services.attendance),
            leave=LeaveHandler(auth, services.leave),
            payroll=PayrollHandler(auth, services.payroll),
            employees=EmployeeHandler(auth, services.employees),
            departments=DepartmentHandler(auth, services.departments),
            users=UserHandler(auth, services.users),
            settings=SettingsHandler(auth, services.settings),
            dashboard=DashboardHandler(auth, services.dashboard),
            reports=ReportHandler(auth, services.reports),
            audit=AuditHandler(auth, services.audit),
        )
