"""Monthly payroll batches: Draft -> Approved -> Locked."""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Callable, TypeVar

from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, joinedload

from hrpro.authorization import PAYROLL_ROLES, Claims, actor_id, require_roles
from hrpro.errors import (
    DuplicateMonthError,
    ExportNotAllowedError,
    ImmutableBatchError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)
from hrpro.extensions import db
from hrpro.models import Employee, PayrollBatch, PayrollBatchStatus, PayrollEntry, now_utc
from hrpro.pagination import Page, count_rows, normalize_paging, paginate
from hrpro.report_export import ExportFile, csv_export, format_money
from hrpro.services.audit import AuditedService
from hrpro.validation import require_positive_id, validate_month


PAYROLL_CSV_HEADERS = [
    "Employee ID",
    "Employee Name",
    "Base Salary",
    "Allowances",
    "Deductions",
    "Tax",
    "Gross Pay",
    "Net Pay",
]
ZERO = Decimal("0")

T = TypeVar("T")


@dataclass
class PayrollBatchDetail:
    batch: PayrollBatch
    entries: list[PayrollEntry] = field(default_factory=list)


class PayrollTx:
    """Operations available inside a payroll generation transaction."""

    def __init__(self, session: Session) -> None:
        self.session = session

    def delete_entries_by_batch(self, batch_id: int) -> None:
        self.session.execute(delete(PayrollEntry).where(PayrollEntry.batch_id == batch_id))

    def list_active_employee_salaries(self) -> list[tuple[int, Decimal]]:
        stmt = (
            select(Employee.id, Employee.base_salary_amount)
            .where(func.lower(func.trim(Employee.employment_status)) == "active")
            .order_by(Employee.last_name.asc(), Employee.first_name.asc())
        )
        return [(employee_id, Decimal(salary)) for employee_id, salary in self.session.execute(stmt).all()]

    def create_entry(self, batch_id: int, employee_id: int, base_salary: Decimal) -> PayrollEntry:
        entry = PayrollEntry(
            batch_id=batch_id,
            employee_id=employee_id,
            base_salary=base_salary,
            allowances_total=ZERO,
            deductions_total=ZERO,
            tax_total=ZERO,
        )
        self.session.add(entry)
        self.session.flush()
        return entry


class PayrollStore:
    def __init__(self, tx_class: type[PayrollTx] = PayrollTx) -> None:
        self.tx_class = tx_class

    def with_tx(self, fn: Callable[[PayrollTx], T]) -> T:
        """Run fn in one transaction; commit on success, roll back on any error."""
        session = db.session
        try:
            result = fn(self.tx_class(session))
            session.commit()
        except Exception:
            session.rollback()
            raise
        return result


def _amount(value: Decimal | float | int | str | None, field_name: str) -> Decimal:
    try:
        amount = Decimal(str(value if value is not None else 0))
    except InvalidOperation as exc:
        raise ValidationError(f"{field_name} must be a number") from exc
    if amount < 0:
        raise ValidationError("amounts must be non-negative")
    return amount


class PayrollService(AuditedService):
    def __init__(self, store: PayrollStore | None = None) -> None:
        super().__init__()
        self.store = store or PayrollStore()

    def list_batches(
        self,
        claims: Claims | None,
        month: str | None = None,
        status: str | None = None,
        page: int | None = None,
        page_size: int | None = None,
    ) -> Page[PayrollBatch]:
        require_roles(claims, PAYROLL_ROLES)
        page, page_size = normalize_paging(page, page_size)

        stmt = select(PayrollBatch)
        if month and month.strip():
            stmt = stmt.where(PayrollBatch.month == validate_month(month))
        if status and status.strip():
            try:
                stmt = stmt.where(PayrollBatch.status == PayrollBatchStatus(status.strip()))
            except ValueError as exc:
                raise ValidationError("invalid payroll status") from exc

        total = count_rows(stmt)
        stmt = paginate(stmt.order_by(PayrollBatch.month.desc(), PayrollBatch.id.desc()), page, page_size)
        items = list(db.session.execute(stmt).scalars().all())
        return Page(items=items, total_count=total, page=page, page_size=page_size)

    def create_batch(self, claims: Claims | None, month: str) -> PayrollBatch:
        require_roles(claims, PAYROLL_ROLES)
        month = validate_month(month)

        batch = PayrollBatch(month=month, status=PayrollBatchStatus.DRAFT, created_by=actor_id(claims))
        db.session.add(batch)
        try:
            db.session.commit()
        except IntegrityError as exc:
            db.session.rollback()
            raise DuplicateMonthError() from exc

        self.audit.record(actor_id(claims), "payroll.batch.create", "payroll_batch", batch.id, {"month": month})
        return batch

    def get_batch(self, claims: Claims | None, batch_id: int) -> PayrollBatchDetail:
        require_roles(claims, PAYROLL_ROLES)
        batch = self._get_batch(batch_id)
        return PayrollBatchDetail(batch=batch, entries=self._entries(batch.id))

    def generate_entries(self, claims: Claims | None, batch_id: int) -> int:
        require_roles(claims, PAYROLL_ROLES)
        batch = self._get_batch(batch_id)
        if batch.status != PayrollBatchStatus.DRAFT:
            raise ImmutableBatchError()
        month = batch.month

        def generate(tx: PayrollTx) -> int:
            tx.delete_entries_by_batch(batch_id)
            count = 0
            for employee_id, base_salary in tx.list_active_employee_salaries():
                tx.create_entry(batch_id, employee_id, base_salary)
                count += 1
            return count

        generated = self.store.with_tx(generate)
        self.audit.record(
            actor_id(claims), "payroll.batch.generate", "payroll_batch", batch_id,
            {"month": month, "entries_generated": generated},
        )
        return generated

    def update_entry_amounts(
        self,
        claims: Claims | None,
        entry_id: int,
        allowances_total: Decimal | float | int,
        deductions_total: Decimal | float | int,
        tax_total: Decimal | float | int,
    ) -> PayrollEntry:
        require_roles(claims, PAYROLL_ROLES)
        require_positive_id(entry_id, "entry id")
        allowances = _amount(allowances_total, "allowances total")
        deductions = _amount(deductions_total, "deductions total")
        tax = _amount(tax_total, "tax total")

        entry = db.session.get(PayrollEntry, entry_id)
        if entry is None:
            raise NotFoundError("payroll entry not found")
        batch = db.session.get(PayrollBatch, entry.batch_id)
        if batch is None:
            raise NotFoundError("payroll batch not found")
        if batch.status != PayrollBatchStatus.DRAFT:
            raise ImmutableBatchError()

        entry.allowances_total = allowances
        entry.deductions_total = deductions
        entry.tax_total = tax
        entry.recalculate()
        db.session.commit()

        self.audit.record(
            actor_id(claims), "payroll.entry.update", "payroll_entry", entry.id,
            {
                "batch_id": entry.batch_id,
                "employee_id": entry.employee_id,
                "allowances_total": allowances,
                "deductions_total": deductions,
                "tax_total": tax,
            },
        )
        return entry

    def approve_batch(self, claims: Claims | None, batch_id: int) -> PayrollBatch:
        require_roles(claims, PAYROLL_ROLES)
        batch = self._get_batch(batch_id)
        if batch.status != PayrollBatchStatus.DRAFT:
            raise InvalidTransitionError()

        batch.status = PayrollBatchStatus.APPROVED
        batch.approved_by = actor_id(claims)
        batch.approved_at = now_utc()
        db.session.commit()
        self._record_status(claims, "payroll.batch.approve", batch)
        return batch

    def lock_batch(self, claims: Claims | None, batch_id: int) -> PayrollBatch:
        require_roles(claims, PAYROLL_ROLES)
        batch = self._get_batch(batch_id)
        if batch.status != PayrollBatchStatus.APPROVED:
            raise InvalidTransitionError()

        batch.status = PayrollBatchStatus.LOCKED
        batch.locked_at = now_utc()
        db.session.commit()
        self._record_status(claims, "payroll.batch.lock", batch)
        return batch

    def export_batch_csv(self, claims: Claims | None, batch_id: int) -> ExportFile:
        require_roles(claims, PAYROLL_ROLES)
        batch = self._get_batch(batch_id)
        if batch.status not in (PayrollBatchStatus.APPROVED, PayrollBatchStatus.LOCKED):
            raise ExportNotAllowedError()

        rows = [
            [
                entry.employee_id,
                entry.employee.full_name,
                format_money(entry.base_salary),
                format_money(entry.allowances_total),
                format_money(entry.deductions_total),
                format_money(entry.tax_total),
                format_money(entry.gross_pay),
                format_money(entry.net_pay),
            ]
            for entry in self._entries(batch.id)
        ]
        export = csv_export(f"payroll-{batch.month}.csv", PAYROLL_CSV_HEADERS, rows)
        self.audit.record(
            actor_id(claims), "payroll.batch.export", "payroll_batch", batch.id,
            {"month": batch.month, "rows": len(rows)},
        )
        return export

    def _get_batch(self, batch_id: int) -> PayrollBatch:
        require_positive_id(batch_id, "batch id")
        batch = db.session.get(PayrollBatch, batch_id)
        if batch is None:
            raise NotFoundError("payroll batch not found")
        return batch

    def _entries(self, batch_id: int) -> list[PayrollEntry]:
        stmt = (
            select(PayrollEntry)
            .join(Employee, Employee.id == PayrollEntry.employee_id)
            .where(PayrollEntry.batch_id == batch_id)
            .options(joinedload(PayrollEntry.employee))
            .order_by(Employee.last_name.asc(), Employee.first_name.asc(), PayrollEntry.id.asc())
        )
        return list(db.session.execute(stmt).scalars().all())

    def _record_status(self, claims: Claims, action: str, batch: PayrollBatch) -> None:
        self.audit.record(
            actor_id(claims), action, "payroll_batch", batch.id, {"month": batch.month, "status": batch.status.value}
        )
