"""User administration (admin only)."""

from __future__ import annotations

from sqlalchemy import func, select

from hrpro.authorization import ASSIGNABLE_ROLES, Claims, Role, actor_id, normalize_role, require_roles
from hrpro.errors import (
    CannotDeactivateSelfError,
    CannotRemoveOwnAdminError,
    DuplicateUsernameError,
    NotFoundError,
    ValidationError,
)
from hrpro.extensions import db
from hrpro.models import User
from hrpro.pagination import Page, count_rows, normalize_paging, paginate
from hrpro.security import hash_password
from hrpro.services.audit import AuditedService
from hrpro.validation import require_positive_id


MIN_PASSWORD_LENGTH = 8
USER_ADMIN_ROLES = {Role.ADMIN}


def validate_role(role: str | None) -> str:
    normalized = normalize_role(role)
    if normalized not in {r.value for r in ASSIGNABLE_ROLES}:
        raise ValidationError("role must be one of admin, hr_officer, finance_officer, viewer")
    return normalized


def _validate_password(password: str | None) -> str:
    if len(password or "") < MIN_PASSWORD_LENGTH:
        raise ValidationError(f"password must be at least {MIN_PASSWORD_LENGTH} characters")
    return password


class UserService(AuditedService):
    def list_users(
        self,
        claims: Claims | None,
        page: int | None = None,
        page_size: int | None = None,
        q: str | None = None,
    ) -> Page[User]:
        require_roles(claims, USER_ADMIN_ROLES)
        page, page_size = normalize_paging(page, page_size)

        stmt = select(User)
        search = (q or "").strip().lower()
        if search:
            stmt = stmt.where(func.lower(User.username).like(f"%{search}%"))
        total = count_rows(stmt)
        stmt = paginate(stmt.order_by(User.created_at.desc(), User.id.desc()), page, page_size)
        items = list(db.session.execute(stmt).scalars().all())
        return Page(items=items, total_count=total, page=page, page_size=page_size)

    def get_user(self, claims: Claims | None, user_id: int) -> User:
        require_roles(claims, USER_ADMIN_ROLES)
        return self._get(user_id)

    def create_user(self, claims: Claims | None, username: str, password: str, role: str) -> User:
        require_roles(claims, USER_ADMIN_ROLES)
        username = self._validated_username(username)
        password = _validate_password(password)
        role = validate_role(role)
        self._ensure_unique(username)

        user = User(username=username, password_hash=hash_password(password), role=role, is_active=True)
        db.session.add(user)
        db.session.commit()
        self._record(claims, "user.create", user, {"username": user.username, "role": user.role})
        return user

    def update_user(self, claims: Claims | None, user_id: int, username: str, role: str) -> User:
        require_roles(claims, USER_ADMIN_ROLES)
        require_positive_id(user_id)
        username = self._validated_username(username)
        role = validate_role(role)
        self._ensure_unique(username, exclude_id=user_id)

        if claims.user_id == user_id and normalize_role(claims.role) == Role.ADMIN.value and role != Role.ADMIN.value:
            raise CannotRemoveOwnAdminError()

        user = self._get(user_id)
        user.username = username
        user.role = role
        db.session.commit()
        self._record(claims, "user.update", user, {"username": user.username, "role": user.role})
        return user

    def reset_user_password(self, claims: Claims | None, user_id: int, new_password: str) -> None:
        require_roles(claims, USER_ADMIN_ROLES)
        require_positive_id(user_id)
        new_password = _validate_password(new_password)

        user = self._get(user_id)
        user.password_hash = hash_password(new_password)
        db.session.commit()
        self._record(claims, "user.reset_password", user, {"user_id": user.id})

    def set_user_active(self, claims: Claims | None, user_id: int, active: bool) -> User:
        require_roles(claims, USER_ADMIN_ROLES)
        require_positive_id(user_id)
        if claims.user_id == user_id and not active:
            raise CannotDeactivateSelfError()

        user = self._get(user_id)
        user.is_active = bool(active)
        db.session.commit()
        action = "user.activate" if user.is_active else "user.deactivate"
        self._record(claims, action, user, {"username": user.username, "active": user.is_active})
        return user

    def _get(self, user_id: int) -> User:
        require_positive_id(user_id)
        user = db.session.get(User, user_id)
        if user is None:
            raise NotFoundError("user not found")
        return user

    @staticmethod
    def _validated_username(username: str | None) -> str:
        username = (username or "").strip()
        if not username:
            raise ValidationError("username is required")
        return username

    @staticmethod
    def _ensure_unique(username: str, exclude_id: int | None = None) -> None:
        stmt = select(User.id).where(func.lower(User.username) == username.lower())
        if exclude_id is not None:
            stmt = stmt.where(User.id != exclude_id)
        if db.session.execute(select(stmt.exists())).scalar_one():
            raise DuplicateUsernameError()

    def _record(self, claims: Claims, action: str, user: User, metadata: dict) -> None:
        self.audit.record(actor_id(claims), action, "user", user.id, metadata)
