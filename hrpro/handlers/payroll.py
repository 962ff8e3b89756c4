"""Payroll batch operations."""

from __future__ import annotations

from hrpro.handlers.base import Handler, operation
from hrpro.services.payroll import PayrollService


class PayrollHandler(Handler):
    def __init__(self, auth_service, service: PayrollService) -> None:
        super().__init__(auth_service)
        self.service = service

    @operation
    def list_batches(
        self,
        access_token: str | None,
        month: str | None = None,
        status: str | None = None,
        page: int | None = None,
        page_size: int | None = None,
    ):
        return self.service.list_batches(self.claims(access_token), month, status, page, page_size)

    @operation
    def create_batch(self, access_token: str | None, month: str):
        return self.service.create_batch(self.claims(access_token), month)

    @operation
    def get_batch(self, access_token: str | None, batch_id: int):
        return self.service.get_batch(self.claims(access_token), batch_id)

    @operation
    def generate_entries(self, access_token: str | None, batch_id: int) -> int:
        return self.service.generate_entries(self.claims(access_token), batch_id)

    @operation
    def update_entry_amounts(
        self, access_token: str | None, entry_id: int, allowances_total, deductions_total, tax_total
    ):
        return self.service.update_entry_amounts(
            self.claims(access_token), entry_id, allowances_total, deductions_total, tax_total
        )

    @operation
    def approve_batch(self, access_token: str | None, batch_id: int):
        return self.service.approve_batch(self.claims(access_token), batch_id)

    @operation
    def lock_batch(self, access_token: str | None, batch_id: int):
        return self.service.lock_batch(self.claims(access_token), batch_id)

    @operation
    def export_batch_csv(self, access_token: str | None, batch_id: int):
        return self.service.export_batch_csv(self.claims(access_token), batch_id)
