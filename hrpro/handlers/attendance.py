"""Attendance and lunch operations."""

from __future__ import annotations

from hrpro.handlers.base import Handler, operation
from hrpro.services.attendance import AttendanceService


class AttendanceHandler(Handler):
    def __init__(self, auth_service, service: AttendanceService) -> None:
        super().__init__(auth_service)
        self.service = service

    @operation
    def list_attendance_by_date(self, access_token: str | None, attendance_date: str):
        return self.service.list_by_date(self.claims(access_token), attendance_date)

    @operation
    def upsert_attendance(
        self, access_token: str | None, attendance_date: str, employee_id: int, status: str, reason: str | None = None
    ):
        return self.service.upsert_attendance(self.claims(access_token), attendance_date, employee_id, status, reason)

    @operation
    def get_my_attendance_range(self, access_token: str | None, start_date: str, end_date: str):
        return self.service.get_my_attendance_range(self.claims(access_token), start_date, end_date)

    @operation
    def get_lunch_summary(self, access_token: str | None, attendance_date: str):
        return self.service.get_lunch_summary(self.claims(access_token), attendance_date)

    @operation
    def upsert_lunch_visitors(self, access_token: str | None, attendance_date: str, visitors_count: int):
        return self.service.upsert_lunch_visitors(self.claims(access_token), attendance_date, visitors_count)

    @operation
    def post_absent_to_leave(self, access_token: str | None, attendance_date: str, employee_id: int):
        return self.service.post_absent_to_leave(self.claims(access_token), attendance_date, employee_id)
