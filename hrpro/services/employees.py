"""Employee records and their contract files."""

from __future__ import annotations

import mimetypes
from dataclasses import dataclass
from datetime import date
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Protocol

from email_validator import EmailNotValidError, validate_email
from flask import current_app
from sqlalchemy import func, or_, select
from sqlalchemy.exc import SQLAlchemyError
from werkzeug.utils import secure_filename

from hrpro.authorization import PEOPLE_READ_ROLES, PEOPLE_WRITE_ROLES, Claims, actor_id, require_roles
from hrpro.errors import NotFoundError, ValidationError
from hrpro.extensions import db
from hrpro.models import Department, Employee
from hrpro.pagination import Page, count_rows, normalize_paging, paginate
from hrpro.phone import PHONE_INPUT_PATTERN, normalize_phone
from hrpro.services.audit import AuditedService
from hrpro.storage import ContractStore, StoredFile
from hrpro.validation import DATE_PATTERN, normalize_optional, require_positive_id


MAX_CONTRACT_SIZE_BYTES = 10 * 1024 * 1024
GENDERS = {"Male", "Female"}
CONTRACT_MIME_EXTENSIONS = {
    "application/pdf": ".pdf",
    "application/msword": ".doc",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document": ".docx",
}


class PhoneDefaultsProvider(Protocol):
    def get_phone_defaults(self) -> tuple[str, str]: ...


@dataclass
class EmployeeInput:
    first_name: str
    last_name: str
    position: str
    employment_status: str
    date_of_hire: str | date
    base_salary_amount: Decimal | float | int | str = 0
    other_name: str | None = None
    gender: str | None = None
    date_of_birth: str | date | None = None
    phone: str | None = None
    email: str | None = None
    national_id: str | None = None
    address: str | None = None
    job_description: str | None = None
    contract_url: str | None = None
    department_id: int | None = None


def _parse_date(value: str | date | None, field: str, required: bool) -> date | None:
    if isinstance(value, date):
        return value
    text = (value or "").strip()
    if not text:
        if required:
            raise ValidationError(f"{field} is required")
        return None
    if not DATE_PATTERN.match(text):
        raise ValidationError(f"{field} must use YYYY-MM-DD")
    try:
        return date.fromisoformat(text)
    except ValueError as exc:
        raise ValidationError(f"{field} must use YYYY-MM-DD") from exc


def resolve_contract_extension(filename: str | None, mime_type: str | None) -> str:
    mime = (mime_type or "").strip().lower().split(";", 1)[0].strip()
    if mime in CONTRACT_MIME_EXTENSIONS:
        return CONTRACT_MIME_EXTENSIONS[mime]
    ext = Path(secure_filename((filename or "").strip())).suffix.lower()
    if ext in (".pdf", ".doc", ".docx"):
        return ext
    raise ValidationError("contract file must be pdf/doc/docx")


class EmployeeService(AuditedService):
    def __init__(self, contract_store: ContractStore | None = None) -> None:
        super().__init__()
        self.contract_store = contract_store
        self.phone_defaults_provider: PhoneDefaultsProvider | None = None

    def set_contract_store(self, store: ContractStore | None) -> None:
        self.contract_store = store

    def set_phone_defaults_provider(self, provider: PhoneDefaultsProvider | None) -> None:
        self.phone_defaults_provider = provider

    def list_employees(
        self,
        claims: Claims | None,
        page: int | None = None,
        page_size: int | None = None,
        q: str | None = None,
        status: str | None = None,
        department_id: int | None = None,
    ) -> Page[Employee]:
        require_roles(claims, PEOPLE_READ_ROLES)
        page, page_size = normalize_paging(page, page_size)

        stmt = select(Employee)
        search = (q or "").strip().lower()
        if search:
            like = f"%{search}%"
            stmt = stmt.where(
                or_(
                    func.lower(Employee.first_name).like(like),
                    func.lower(Employee.last_name).like(like),
                    func.lower(func.coalesce(Employee.other_name, "")).like(like),
                )
            )
        if status and status.strip():
            stmt = stmt.where(Employee.employment_status == status.strip())
        if department_id:
            stmt = stmt.where(Employee.department_id == department_id)

        total = count_rows(stmt)
        stmt = paginate(stmt.order_by(Employee.created_at.desc(), Employee.id.desc()), page, page_size)
        items = list(db.session.execute(stmt).scalars().all())
        return Page(items=items, total_count=total, page=page, page_size=page_size)

    def get_employee(self, claims: Claims | None, employee_id: int) -> Employee:
        require_roles(claims, PEOPLE_READ_ROLES)
        return self._get(employee_id)

    def create_employee(self, claims: Claims | None, data: EmployeeInput) -> Employee:
        require_roles(claims, PEOPLE_WRITE_ROLES)
        values = self._normalize(data)
        employee = Employee(**values)
        db.session.add(employee)
        db.session.commit()
        self._record(claims, "employee.create", employee)
        return employee

    def update_employee(self, claims: Claims | None, employee_id: int, data: EmployeeInput) -> Employee:
        require_roles(claims, PEOPLE_WRITE_ROLES)
        require_positive_id(employee_id)
        values = self._normalize(data)
        employee = self._get(employee_id)
        for key, value in values.items():
            setattr(employee, key, value)
        db.session.commit()
        self._record(claims, "employee.update", employee)
        return employee

    def delete_employee(self, claims: Claims | None, employee_id: int) -> None:
        require_roles(claims, PEOPLE_WRITE_ROLES)
        employee = self._get(employee_id)
        contract_path = employee.contract_file_path
        name = employee.full_name
        db.session.delete(employee)
        db.session.commit()
        self._delete_file_quietly(contract_path)
        self.audit.record(actor_id(claims), "employee.delete", "employee", employee_id, {"name": name})

    def upload_contract(
        self,
        claims: Claims | None,
        employee_id: int,
        filename: str | None,
        mime_type: str | None,
        data: bytes | None,
    ) -> Employee:
        require_roles(claims, PEOPLE_WRITE_ROLES)
        require_positive_id(employee_id, "employee id")
        if not data:
            raise ValidationError("contract file is required")
        if len(data) > MAX_CONTRACT_SIZE_BYTES:
            raise ValidationError(f"contract file exceeds {MAX_CONTRACT_SIZE_BYTES} bytes")
        store = self._require_store()

        employee = self._get(employee_id)
        extension = resolve_contract_extension(filename, mime_type)
        previous_path = normalize_optional(employee.contract_file_path)
        new_path = store.save_contract(employee_id, extension, data)

        try:
            employee.contract_file_path = new_path
            db.session.commit()
        except SQLAlchemyError:
            db.session.rollback()
            self._delete_file_quietly(new_path)
            raise

        if previous_path and previous_path != new_path:
            self._delete_file_quietly(previous_path)
        self.audit.record(
            actor_id(claims), "employee.contract.upload", "employee", employee_id,
            {"contract_file_path": new_path, "size_bytes": len(data)},
        )
        return employee

    def remove_contract(self, claims: Claims | None, employee_id: int) -> Employee:
        require_roles(claims, PEOPLE_WRITE_ROLES)
        require_positive_id(employee_id, "employee id")
        employee = self._get(employee_id)
        previous_path = normalize_optional(employee.contract_file_path)

        employee.contract_file_path = None
        db.session.commit()
        if previous_path:
            self._delete_file_quietly(previous_path)
        self.audit.record(
            actor_id(claims), "employee.contract.remove", "employee", employee_id,
            {"contract_file_path": previous_path},
        )
        return employee

    def get_contract(self, claims: Claims | None, employee_id: int) -> StoredFile:
        require_roles(claims, PEOPLE_READ_ROLES)
        employee = self._get(employee_id)
        path = normalize_optional(employee.contract_file_path)
        if not path:
            raise NotFoundError("employee has no contract file")
        data = self._require_store().read_contract(path)
        filename = path.rsplit("/", 1)[-1]
        mime_type = mimetypes.guess_type(filename)[0] or "application/octet-stream"
        return StoredFile(filename=filename, mime_type=mime_type, data=data)

    def _get(self, employee_id: int) -> Employee:
        require_positive_id(employee_id)
        employee = db.session.get(Employee, employee_id)
        if employee is None:
            raise NotFoundError("employee not found")
        return employee

    def _require_store(self) -> ContractStore:
        if self.contract_store is None:
            raise RuntimeError("contract store is not configured")
        return self.contract_store

    def _delete_file_quietly(self, relative_path: str | None) -> None:
        if not relative_path or self.contract_store is None:
            return
        try:
            self.contract_store.delete_contract(relative_path)
        except (OSError, ValueError):
            current_app.logger.warning("failed to delete contract file %s", relative_path, exc_info=True)

    def _normalize(self, data: EmployeeInput) -> dict:
        first_name = (data.first_name or "").strip()
        last_name = (data.last_name or "").strip()
        position = (data.position or "").strip()
        employment_status = (data.employment_status or "").strip()
        for field, value in (
            ("first_name", first_name),
            ("last_name", last_name),
            ("position", position),
            ("employment_status", employment_status),
        ):
            if not value:
                raise ValidationError(f"{field} is required")
        date_of_hire = _parse_date(data.date_of_hire, "date_of_hire", required=True)

        try:
            salary = Decimal(str(data.base_salary_amount if data.base_salary_amount is not None else 0))
        except InvalidOperation as exc:
            raise ValidationError("base_salary_amount must be a number") from exc
        if salary < 0:
            raise ValidationError("base_salary_amount must be >= 0")

        gender = normalize_optional(data.gender)
        if gender is not None:
            gender = gender.capitalize()
            if gender not in GENDERS:
                raise ValidationError("gender must be Male or Female")

        email = normalize_optional(data.email)
        if email is not None:
            try:
                validate_email(email, check_deliverability=False)
            except EmailNotValidError as exc:
                raise ValidationError("email is invalid") from exc

        phone = normalize_optional(data.phone)
        if phone is not None:
            if not PHONE_INPUT_PATTERN.match(phone):
                raise ValidationError("phone is invalid")
            iso2, calling_code = self._phone_defaults()
            try:
                phone = normalize_phone(phone, iso2, calling_code)
            except ValidationError as exc:
                raise ValidationError("phone is invalid") from exc

        department_id = data.department_id or None
        if department_id is not None and db.session.get(Department, department_id) is None:
            raise ValidationError("department does not exist")

        return {
            "first_name": first_name,
            "last_name": last_name,
            "other_name": normalize_optional(data.other_name),
            "gender": gender,
            "date_of_birth": _parse_date(data.date_of_birth, "date_of_birth", required=False),
            "phone": phone,
            "phone_e164": phone,
            "email": email,
            "national_id": normalize_optional(data.national_id),
            "address": normalize_optional(data.address),
            "job_description": normalize_optional(data.job_description),
            "contract_url": normalize_optional(data.contract_url),
            "department_id": department_id,
            "position": position,
            "employment_status": employment_status,
            "date_of_hire": date_of_hire,
            "base_salary_amount": salary,
        }

    def _phone_defaults(self) -> tuple[str, str]:
        if self.phone_defaults_provider is None:
            return "UG", "+256"
        iso2, calling_code = self.phone_defaults_provider.get_phone_defaults()
        return (iso2 or "UG"), (calling_code or "+256")

    def _record(self, claims: Claims | None, action: str, employee: Employee) -> None:
        self.audit.record(
            actor_id(claims), action, "employee", employee.id,
            {"name": employee.full_name, "employment_status": employee.employment_status},
        )
