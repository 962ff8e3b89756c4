"""Authentication: login, logout, refresh rotation and access token checks."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta

from flask import current_app
from sqlalchemy import func, select, update

from hrpro.authorization import Claims, normalize_role
from hrpro.errors import (
    InactiveUserError,
    InvalidCredentialsError,
    RefreshExpiredError,
    RefreshInvalidError,
    RefreshReusedError,
)
from hrpro.extensions import db
from hrpro.models import RefreshToken, User, as_utc, now_utc
from hrpro.security import (
    create_access_token,
    decode_access_token,
    generate_refresh_token,
    hash_password,
    hash_refresh_token,
    verify_password,
)
from hrpro.services.audit import AuditedService


@dataclass(frozen=True)
class AuthUser:
    id: int
    username: str
    role: str


@dataclass(frozen=True)
class LoginResult:
    access_token: str
    refresh_token: str
    user: AuthUser


class AuthService(AuditedService):
    def __init__(
        self,
        jwt_secret: str,
        access_token_lifetime: timedelta = timedelta(minutes=15),
        refresh_token_lifetime: timedelta = timedelta(hours=168),
    ) -> None:
        super().__init__()
        self.jwt_secret = jwt_secret
        self.access_token_lifetime = access_token_lifetime
        self.refresh_token_lifetime = refresh_token_lifetime

    def login(self, username: str, password: str) -> LoginResult:
        username = (username or "").strip()
        if not username or not password:
            self._record_login_failure(None, username)
            raise InvalidCredentialsError()

        user = self._find_user_by_username(username)
        if user is None:
            self._record_login_failure(None, username)
            raise InvalidCredentialsError()
        if not verify_password(password, user.password_hash):
            self._record_login_failure(user.id, username)
            raise InvalidCredentialsError()
        if not user.is_active:
            self._record_login_failure(user.id, username)
            raise InactiveUserError()

        result = self._issue_tokens(user)
        user.last_login_at = now_utc()
        db.session.commit()

        self.audit.record(user.id, "user.login.success", "user", user.id, {"username": user.username})
        self.audit.record(
            user.id, "token.refresh", "user", user.id, {"username": user.username, "source": "login"}
        )
        return result

    def logout(self, refresh_token: str | None) -> None:
        raw = (refresh_token or "").strip()
        if not raw:
            return
        db.session.execute(
            update(RefreshToken)
            .where(RefreshToken.token_hash == hash_refresh_token(raw), RefreshToken.revoked_at.is_(None))
            .values(revoked_at=now_utc())
        )
        db.session.commit()

    def refresh(self, refresh_token: str | None) -> LoginResult:
        raw = (refresh_token or "").strip()
        if not raw:
            raise RefreshInvalidError()

        stored = db.session.execute(
            select(RefreshToken)
            .where(RefreshToken.token_hash == hash_refresh_token(raw))
            .order_by(RefreshToken.id.desc())
            .limit(1)
        ).scalar_one_or_none()
        if stored is None:
            raise RefreshInvalidError()

        now = now_utc()
        if stored.revoked_at is not None:
            self._handle_reuse(stored.user_id)
            raise RefreshReusedError()
        if as_utc(stored.expires_at) <= now:
            stored.revoked_at = now
            db.session.commit()
            raise RefreshExpiredError()

        user = db.session.get(User, stored.user_id)
        if user is None or not user.is_active:
            raise RefreshInvalidError()

        # Conditional revoke: a concurrent refresh that already revoked it counts as reuse.
        revoked = db.session.execute(
            update(RefreshToken)
            .where(RefreshToken.id == stored.id, RefreshToken.revoked_at.is_(None))
            .values(revoked_at=now)
        )
        if revoked.rowcount != 1:
            db.session.rollback()
            self._handle_reuse(user.id)
            raise RefreshReusedError()

        result = self._issue_tokens(user)
        db.session.commit()
        self.audit.record(
            user.id, "token.refresh", "user", user.id, {"username": user.username, "source": "refresh"}
        )
        return result

    def validate_access_token(self, raw_token: str | None) -> Claims:
        return decode_access_token(raw_token, self.jwt_secret)

    def get_me(self, raw_token: str | None) -> AuthUser:
        claims = self.validate_access_token(raw_token)
        user = db.session.get(User, claims.user_id)
        if user is None:
            raise InvalidCredentialsError()
        return AuthUser(id=user.id, username=user.username, role=user.role)

    def seed_initial_admin(self, username: str | None, password: str | None, role: str | None) -> bool:
        username = (username or "").strip()
        role = normalize_role(role)
        if not username or not password or not role:
            return False
        if self._find_user_by_username(username) is not None:
            return False

        db.session.add(User(username=username, password_hash=hash_password(password), role=role, is_active=True))
        db.session.commit()
        current_app.logger.info("Seeded initial user %s with role %s.", username, role)
        return True

    def _issue_tokens(self, user: User) -> LoginResult:
        claims = Claims(user_id=user.id, username=user.username, role=user.role)
        access_token = create_access_token(claims, self.jwt_secret, self.access_token_lifetime)
        raw_refresh = generate_refresh_token()
        db.session.add(
            RefreshToken(
                user_id=user.id,
                token_hash=hash_refresh_token(raw_refresh),
                expires_at=now_utc() + self.refresh_token_lifetime,
            )
        )
        return LoginResult(
            access_token=access_token,
            refresh_token=raw_refresh,
            user=AuthUser(id=user.id, username=user.username, role=user.role),
        )

    def _handle_reuse(self, user_id: int) -> None:
        db.session.execute(
            update(RefreshToken)
            .where(RefreshToken.user_id == user_id, RefreshToken.revoked_at.is_(None))
            .values(revoked_at=now_utc())
        )
        db.session.commit()
        self.audit.record(user_id, "token.refresh.reuse", "user", user_id, {"user_id": user_id})

    def _find_user_by_username(self, username: str) -> User | None:
        return db.session.execute(
            select(User).where(func.lower(User.username) == username.lower()).limit(1)
        ).scalar_one_or_none()

    def _record_login_failure(self, user_id: int | None, username: str) -> None:
        self.audit.record(user_id, "user.login.fail", "user", user_id, {"username": username})
