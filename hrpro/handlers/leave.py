"""Leave types, locked dates, balances and requests."""

from __future__ import annotations

from hrpro.handlers.base import Handler, operation
from hrpro.services.leave import ApplyLeaveInput, LeaveRequestFilter, LeaveService, LeaveTypeInput


class LeaveHandler(Handler):
    def __init__(self, auth_service, service: LeaveService) -> None:
        super().__init__(auth_service)
        self.service = service

    @operation
    def list_leave_types(self, access_token: str | None, active_only: bool = False):
        return self.service.list_leave_types(self.claims(access_token), active_only)

    @operation
    def create_leave_type(self, access_token: str | None, data: LeaveTypeInput):
        return self.service.create_leave_type(self.claims(access_token), data)

    @operation
    def update_leave_type(self, access_token: str | None, leave_type_id: int, data: LeaveTypeInput):
        return self.service.update_leave_type(self.claims(access_token), leave_type_id, data)

    @operation
    def set_leave_type_active(self, access_token: str | None, leave_type_id: int, active: bool):
        return self.service.set_leave_type_active(self.claims(access_token), leave_type_id, active)

    @operation
    def list_locked_dates(self, access_token: str | None, year: int | None = None):
        return self.service.list_locked_dates(self.claims(access_token), year)

    @operation
    def lock_date(self, access_token: str | None, locked_date: str, reason: str | None = None):
        return self.service.lock_date(self.claims(access_token), locked_date, reason)

    @operation
    def unlock_date(self, access_token: str | None, locked_date: str) -> None:
        self.service.unlock_date(self.claims(access_token), locked_date)

    @operation
    def upsert_entitlement(
        self, access_token: str | None, employee_id: int, year: int, total_days, reserved_days=0
    ):
        return self.service.upsert_entitlement(
            self.claims(access_token), employee_id, year, total_days, reserved_days
        )

    @operation
    def get_my_leave_balance(self, access_token: str | None, year: int | None = None):
        return self.service.get_my_leave_balance(self.claims(access_token), year)

    @operation
    def get_leave_balance(self, access_token: str | None, employee_id: int, year: int | None = None):
        return self.service.get_leave_balance(self.claims(access_token), employee_id, year)

    @operation
    def apply_leave(self, access_token: str | None, data: ApplyLeaveInput):
        return self.service.apply_leave(self.claims(access_token), data)

    @operation
    def list_my_leave_requests(self, access_token: str | None, filters: LeaveRequestFilter | None = None):
        return self.service.list_my_leave_requests(self.claims(access_token), filters)

    @operation
    def list_all_leave_requests(self, access_token: str | None, filters: LeaveRequestFilter | None = None):
        return self.service.list_all_leave_requests(self.claims(access_token), filters)

    @operation
    def approve_leave(self, access_token: str | None, request_id: int):
        return self.service.approve_leave(self.claims(access_token), request_id)

    @operation
    def reject_leave(self, access_token: str | None, request_id: int, reason: str | None = None):
        return self.service.reject_leave(self.claims(access_token), request_id, reason)

    @operation
    def cancel_leave(self, access_token: str | None, request_id: int):
        return self.service.cancel_leave(self.claims(access_token), request_id)
