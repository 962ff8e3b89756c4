"""Domain engines and the container that holds them after bootstrap."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from hrpro.services.attendance import AttendanceService
from hrpro.services.audit import AuditService
from hrpro.services.auth import AuthService
from hrpro.services.dashboard import DashboardService
from hrpro.services.departments import DepartmentService
from hrpro.services.employees import EmployeeService
from hrpro.services.leave import LeaveService
from hrpro.services.payroll import PayrollService
from hrpro.services.reports import ReportService
from hrpro.services.settings import SettingsService
from hrpro.services.users import UserService
from hrpro.storage import ContractStore, LogoStore

if TYPE_CHECKING:
    from hrpro.handlers import Handlers


@dataclass
class Services:
    auth: AuthService
    audit: AuditService
    attendance: AttendanceService
    leave: LeaveService
    payroll: PayrollService
    employees: EmployeeService
    departments: DepartmentService
    users: UserService
    settings: SettingsService
    dashboard: DashboardService
    reports: ReportService
    contract_store: ContractStore | None = None
    logo_store: LogoStore | None = None
    handlers: "Handlers | None" = field(default=None, repr=False)

    def audited(self) -> list:
        return [
            self.auth,
            self.attendance,
            self.leave,
            self.payroll,
            self.employees,
            self.departments,
            self.users,
            self.settings,
        ]
