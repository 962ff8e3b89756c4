"""Employees, departments and users."""

from __future__ import annotations

from hrpro.handlers.base import Handler, operation
from hrpro.services.departments import DepartmentService
from hrpro.services.employees import EmployeeInput, EmployeeService
from hrpro.services.users import UserService


class EmployeeHandler(Handler):
    def __init__(self, auth_service, service: EmployeeService) -> None:
        super().__init__(auth_service)
        self.service = service

    @operation
    def list_employees(
        self,
        access_token: str | None,
        page: int | None = None,
        page_size: int | None = None,
        q: str | None = None,
        status: str | None = None,
        department_id: int | None = None,
    ):
        return self.service.list_employees(self.claims(access_token), page, page_size, q, status, department_id)

    @operation
    def get_employee(self, access_token: str | None, employee_id: int):
        return self.service.get_employee(self.claims(access_token), employee_id)

    @operation
    def create_employee(self, access_token: str | None, data: EmployeeInput):
        return self.service.create_employee(self.claims(access_token), data)

    @operation
    def update_employee(self, access_token: str | None, employee_id: int, data: EmployeeInput):
        return self.service.update_employee(self.claims(access_token), employee_id, data)

    @operation
    def delete_employee(self, access_token: str | None, employee_id: int) -> None:
        self.service.delete_employee(self.claims(access_token), employee_id)

    @operation
    def upload_contract(
        self, access_token: str | None, employee_id: int, filename: str, mime_type: str | None, data: bytes
    ):
        return self.service.upload_contract(self.claims(access_token), employee_id, filename, mime_type, data)

    @operation
    def remove_contract(self, access_token: str | None, employee_id: int):
        return self.service.remove_contract(self.claims(access_token), employee_id)

    @operation
    def get_contract(self, access_token: str | None, employee_id: int):
        return self.service.get_contract(self.claims(access_token), employee_id)


class DepartmentHandler(Handler):
    def __init__(self, auth_service, service: DepartmentService) -> None:
        super().__init__(auth_service)
        self.service = service

    @operation
    def list_departments(
        self, access_token: str | None, page: int | None = None, page_size: int | None = None, q: str | None = None
    ):
        return self.service.list_departments(self.claims(access_token), page, page_size, q)

    @operation
    def get_department(self, access_token: str | None, department_id: int):
        return self.service.get_department(self.claims(access_token), department_id)

    @operation
    def create_department(self, access_token: str | None, name: str, description: str | None = None):
        return self.service.create_department(self.claims(access_token), name, description)

    @operation
    def update_department(
        self, access_token: str | None, department_id: int, name: str, description: str | None = None
    ):
        return self.service.update_department(self.claims(access_token), department_id, name, description)

    @operation
    def delete_department(self, access_token: str | None, department_id: int) -> None:
        self.service.delete_department(self.claims(access_token), department_id)


class UserHandler(Handler):
    def __init__(self, auth_service, service: UserService) -> None:
        super().__init__(auth_service)
        self.service = service

    @operation
    def list_users(
        self, access_token: str | None, page: int | None = None, page_size: int | None = None, q: str | None = None
    ):
        return self.service.list_users(self.claims(access_token), page, page_size, q)

    @operation
    def get_user(self, access_token: str | None, user_id: int):
        return self.service.get_user(self.claims(access_token), user_id)

    @operation
    def create_user(self, access_token: str | None, username: str, password: str, role: str):
        return self.service.create_user(self.claims(access_token), username, password, role)

    @operation
    def update_user(self, access_token: str | None, user_id: int, username: str, role: str):
        return self.service.update_user(self.claims(access_token), user_id, username, role)

    @operation
    def reset_user_password(self, access_token: str | None, user_id: int, new_password: str) -> None:
        self.service.reset_user_password(self.claims(access_token), user_id, new_password)

    @operation
    def set_user_active(self, access_token: str | None, user_id: int, active: bool):
        return self.service.set_user_active(self.claims(access_token), user_id, active)
