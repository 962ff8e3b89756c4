"""Settings, dashboard, reports and the audit log."""

from __future__ import annotations

from hrpro.handlers.base import Handler, operation
from hrpro.services.audit import AuditService
from hrpro.services.dashboard import DashboardService
from hrpro.services.reports import (
    AttendanceSummaryFilter,
    AuditReportFilter,
    EmployeeReportFilter,
    LeaveReportFilter,
    PayrollBatchReportFilter,
    ReportService,
)
from hrpro.services.settings import CompanyProfileInput, SettingsService, UpdateSettingsInput


class SettingsHandler(Handler):
    def __init__(self, auth_service, service: SettingsService) -> None:
        super().__init__(auth_service)
        self.service = service

    @operation
    def get_settings(self, access_token: str | None):
        return self.service.get_settings(self.claims(access_token))

    @operation
    def update_settings(self, access_token: str | None, data: UpdateSettingsInput):
        return self.service.update_settings(self.claims(access_token), data)

    @operation
    def get_company_profile(self, access_token: str | None):
        return self.service.get_company_profile(self.claims(access_token))

    @operation
    def save_company_profile(self, access_token: str | None, data: CompanyProfileInput):
        return self.service.save_company_profile(self.claims(access_token), data)

    @operation
    def upload_company_logo(self, access_token: str | None, filename: str, mime_type: str | None, data: bytes):
        return self.service.upload_company_logo(self.claims(access_token), filename, mime_type, data)

    @operation
    def get_company_logo(self, access_token: str | None):
        return self.service.get_company_logo(self.claims(access_token))

    @operation
    def remove_company_logo(self, access_token: str | None):
        return self.service.remove_company_logo(self.claims(access_token))


class DashboardHandler(Handler):
    def __init__(self, auth_service, service: DashboardService) -> None:
        super().__init__(auth_service)
        self.service = service

    @operation
    def get_dashboard_summary(self, access_token: str | None):
        return self.service.get_dashboard_summary(self.claims(access_token))


class AuditHandler(Handler):
    def __init__(self, auth_service, service: AuditService) -> None:
        super().__init__(auth_service)
        self.service = service

    @operation
    def list_audit_logs(
        self, access_token: str | None, page: int | None = None, page_size: int | None = None, q: str | None = None
    ):
        return self.service.list_audit_logs(self.claims(access_token), page, page_size, q)


class ReportHandler(Handler):
    def __init__(self, auth_service, service: ReportService) -> None:
        super().__init__(auth_service)
        self.service = service

    @operation
    def list_employee_report(
        self, access_token: str | None, filters: EmployeeReportFilter | None = None, page=None, page_size=None
    ):
        return self.service.list_employee_report(self.claims(access_token), filters, page, page_size)

    @operation
    def export_employee_report_csv(self, access_token: str | None, filters: EmployeeReportFilter | None = None):
        return self.service.export_employee_report_csv(self.claims(access_token), filters)

    @operation
    def list_leave_requests_report(
        self, access_token: str | None, filters: LeaveReportFilter, page=None, page_size=None
    ):
        return self.service.list_leave_requests_report(self.claims(access_token), filters, page, page_size)

    @operation
    def export_leave_requests_report_csv(self, access_token: str | None, filters: LeaveReportFilter):
        return self.service.export_leave_requests_report_csv(self.claims(access_token), filters)

    @operation
    def list_attendance_summary_report(
        self, access_token: str | None, filters: AttendanceSummaryFilter, page=None, page_size=None
    ):
        return self.service.list_attendance_summary_report(self.claims(access_token), filters, page, page_size)

    @operation
    def export_attendance_summary_report_csv(self, access_token: str | None, filters: AttendanceSummaryFilter):
        return self.service.export_attendance_summary_report_csv(self.claims(access_token), filters)

    @operation
    def list_payroll_batches_report(
        self, access_token: str | None, filters: PayrollBatchReportFilter | None = None, page=None, page_size=None
    ):
        return self.service.list_payroll_batches_report(self.claims(access_token), filters, page, page_size)

    @operation
    def export_payroll_batches_report_csv(
        self, access_token: str | None, filters: PayrollBatchReportFilter | None = None
    ):
        return self.service.export_payroll_batches_report_csv(self.claims(access_token), filters)

    @operation
    def list_audit_log_report(self, access_token: str | None, filters: AuditReportFilter, page=None, page_size=None):
        return self.service.list_audit_log_report(self.claims(access_token), filters, page, page_size)

    @operation
    def export_audit_log_report_csv(self, access_token: str | None, filters: AuditReportFilter):
        return self.service.export_audit_log_report_csv(self.claims(access_token), filters)
