"""Departments: unique names, guarded deletion."""

from __future__ import annotations

from sqlalchemy import func, or_, select

from hrpro.authorization import PEOPLE_READ_ROLES, PEOPLE_WRITE_ROLES, Claims, actor_id, require_roles
from hrpro.errors import DepartmentHasEmployeesError, DuplicateNameError, NotFoundError, ValidationError
from hrpro.extensions import db
from hrpro.models import Department, Employee
from hrpro.pagination import Page, count_rows, normalize_paging, paginate
from hrpro.services.audit import AuditedService
from hrpro.validation import normalize_optional, require_positive_id


class DepartmentService(AuditedService):
    def list_departments(
        self,
        claims: Claims | None,
        page: int | None = None,
        page_size: int | None = None,
        q: str | None = None,
    ) -> Page[Department]:
        require_roles(claims, PEOPLE_READ_ROLES)
        page, page_size = normalize_paging(page, page_size)

        stmt = select(Department)
        search = (q or "").strip().lower()
        if search:
            like = f"%{search}%"
            stmt = stmt.where(
                or_(
                    func.lower(Department.name).like(like),
                    func.lower(func.coalesce(Department.description, "")).like(like),
                )
            )
        total = count_rows(stmt)
        stmt = paginate(stmt.order_by(Department.created_at.desc(), Department.id.desc()), page, page_size)
        items = list(db.session.execute(stmt).scalars().all())
        return Page(items=items, total_count=total, page=page, page_size=page_size)

    def get_department(self, claims: Claims | None, department_id: int) -> Department:
        require_roles(claims, PEOPLE_READ_ROLES)
        return self._get(department_id)

    def create_department(self, claims: Claims | None, name: str, description: str | None = None) -> Department:
        require_roles(claims, PEOPLE_WRITE_ROLES)
        name = self._validated_name(name)
        self._ensure_unique(name)

        department = Department(name=name, description=normalize_optional(description))
        db.session.add(department)
        db.session.commit()
        self._record(claims, "department.create", department)
        return department

    def update_department(
        self, claims: Claims | None, department_id: int, name: str, description: str | None = None
    ) -> Department:
        require_roles(claims, PEOPLE_WRITE_ROLES)
        require_positive_id(department_id)
        name = self._validated_name(name)
        department = self._get(department_id)
        self._ensure_unique(name, exclude_id=department.id)

        department.name = name
        department.description = normalize_optional(description)
        db.session.commit()
        self._record(claims, "department.update", department)
        return department

    def delete_department(self, claims: Claims | None, department_id: int) -> None:
        require_roles(claims, PEOPLE_WRITE_ROLES)
        require_positive_id(department_id)
        in_use = db.session.execute(
            select(func.count(Employee.id)).where(Employee.department_id == department_id)
        ).scalar_one()
        if in_use:
            raise DepartmentHasEmployeesError()

        department = self._get(department_id)
        name = department.name
        db.session.delete(department)
        db.session.commit()
        self.audit.record(actor_id(claims), "department.delete", "department", department_id, {"name": name})

    def _get(self, department_id: int) -> Department:
        require_positive_id(department_id)
        department = db.session.get(Department, department_id)
        if department is None:
            raise NotFoundError("department not found")
        return department

    @staticmethod
    def _validated_name(name: str | None) -> str:
        name = (name or "").strip()
        if not name:
            raise ValidationError("name is required")
        return name

    @staticmethod
    def _ensure_unique(name: str, exclude_id: int | None = None) -> None:
        stmt = select(Department.id).where(func.lower(Department.name) == name.lower())
        if exclude_id is not None:
            stmt = stmt.where(Department.id != exclude_id)
        if db.session.execute(select(stmt.exists())).scalar_one():
            raise DuplicateNameError()

    def _record(self, claims: Claims | None, action: str, department: Department) -> None:
        self.audit.record(actor_id(claims), action, "department", department.id, {"name": department.name})
