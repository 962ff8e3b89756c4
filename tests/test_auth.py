from __future__ import annotations

from datetime import timedelta

import pytest
from jose import jwt
from sqlalchemy import select

from hrpro.errors import (
    AccessTokenExpiredError,
    AccessTokenInvalidError,
    AccessTokenMissingError,
    InactiveUserError,
    InvalidCredentialsError,
    OperationError,
    RefreshExpiredError,
    RefreshReusedError,
)
from hrpro.extensions import db
from hrpro.handlers.base import AUTH_EXPIRED, AUTH_UNAUTHORIZED
from hrpro.models import AuditLog, RefreshToken, User, now_utc
from hrpro.security import decode_access_token, hash_refresh_token, strip_bearer


def _actions() -> list[str]:
    return list(db.session.execute(select(AuditLog.action).order_by(AuditLog.id)).scalars())


def test_login_issues_tokens_and_stores_only_hash(app, services):
    result = services.auth.login(" Admin ", "password123")

    assert result.user.username == "admin"
    assert result.user.role == "admin"
    claims = decode_access_token(result.access_token, app.config["JWT_SECRET"])
    assert claims.user_id == 1
    stored = db.session.execute(select(RefreshToken)).scalar_one()
    assert stored.token_hash == hash_refresh_token(result.refresh_token)
    assert stored.token_hash != result.refresh_token
    assert db.session.get(User, 1).last_login_at is not None
    assert "user.login.success" in _actions()


def test_login_failures(services):
    with pytest.raises(InvalidCredentialsError):
        services.auth.login("admin", "wrong-password")
    with pytest.raises(InvalidCredentialsError):
        services.auth.login("nobody", "password123")

    db.session.get(User, 4).is_active = False
    db.session.commit()
    with pytest.raises(InactiveUserError):
        services.auth.login("viewer", "password123")

    assert _actions().count("user.login.fail") == 3


def test_login_handler_hides_failure_reason(handlers):
    db.session.get(User, 4).is_active = False
    db.session.commit()

    for username, password in (("admin", "nope-nope"), ("viewer", "password123")):
        with pytest.raises(OperationError) as excinfo:
            handlers.auth.login(username, password)
        assert str(excinfo.value) == "authentication failed"


def test_refresh_rotates_and_detects_reuse(services):
    first = services.auth.login("hr", "password123")

    second = services.auth.refresh(first.refresh_token)
    assert second.refresh_token != first.refresh_token

    with pytest.raises(RefreshReusedError):
        services.auth.refresh(first.refresh_token)

    active = db.session.execute(select(RefreshToken).where(RefreshToken.revoked_at.is_(None))).scalars().all()
    assert active == []
    assert "token.refresh.reuse" in _actions()


def test_expired_refresh_token_is_revoked(services):
    result = services.auth.login("hr", "password123")
    stored = db.session.execute(select(RefreshToken)).scalar_one()
    stored.expires_at = now_utc() - timedelta(minutes=1)
    db.session.commit()

    with pytest.raises(RefreshExpiredError):
        services.auth.refresh(result.refresh_token)

    assert db.session.execute(select(RefreshToken)).scalar_one().revoked_at is not None


def test_logout_revokes_refresh_token(services):
    result = services.auth.login("finance", "password123")

    services.auth.logout(result.refresh_token)
    services.auth.logout("")

    assert db.session.execute(select(RefreshToken)).scalar_one().revoked_at is not None


def test_access_token_errors(services, token_for):
    expired = token_for("admin", lifetime=timedelta(seconds=-5))
    with pytest.raises(AccessTokenExpiredError):
        services.auth.validate_access_token(expired)
    with pytest.raises(AccessTokenInvalidError):
        services.auth.validate_access_token("not-a-jwt")
    with pytest.raises(AccessTokenMissingError):
        services.auth.validate_access_token("   ")

    forged = jwt.encode({"user_id": 1, "username": "admin", "role": "admin"}, "other-secret", algorithm="HS256")
    with pytest.raises(AccessTokenInvalidError):
        services.auth.validate_access_token(forged)


def test_handler_maps_token_errors(handlers, token_for):
    with pytest.raises(OperationError) as excinfo:
        handlers.dashboard.get_dashboard_summary(token_for("admin", lifetime=timedelta(seconds=-5)))
    assert str(excinfo.value) == AUTH_EXPIRED

    for bad in (None, "", "Bearer garbage"):
        with pytest.raises(OperationError) as excinfo:
            handlers.dashboard.get_dashboard_summary(bad)
        assert str(excinfo.value) == AUTH_UNAUTHORIZED


def test_bearer_prefix_is_accepted(handlers, token_for):
    token = token_for("viewer")

    assert strip_bearer(f"Bearer {token}") == token
    assert strip_bearer(f"bearer {token}") == token
    assert strip_bearer(f"  BEARER  {token} ") == token
    assert handlers.auth.get_me(f"Bearer {token}").username == "viewer"
    assert handlers.auth.get_me(f"bearer {token}").username == "viewer"


def test_seed_initial_admin_is_idempotent(services):
    assert services.auth.seed_initial_admin("owner", "password123", "Admin") is True
    assert services.auth.seed_initial_admin("OWNER", "password123", "Admin") is False
    assert services.auth.seed_initial_admin("", "password123", "Admin") is False

    owner = db.session.execute(select(User).where(User.username == "owner")).scalar_one()
    assert owner.role == "admin"
