"""Password hashing, signed access tokens and refresh token helpers."""

from __future__ import annotations

import base64
import hashlib
import secrets
from datetime import datetime, timedelta, timezone

from flask import current_app, has_app_context
from jose import ExpiredSignatureError, JWTError, jwt
from passlib.context import CryptContext

from hrpro.authorization import Claims
from hrpro.errors import AccessTokenExpiredError, AccessTokenInvalidError, AccessTokenMissingError


JWT_ALGORITHM = "HS256"
BEARER_PREFIX = "Bearer "

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


def _password_context() -> CryptContext:
    rounds = current_app.config.get("BCRYPT_ROUNDS") if has_app_context() else None
    if not rounds:
        return pwd_context
    return pwd_context.copy(bcrypt__rounds=rounds)


def hash_password(raw_value: str) -> str:
    return _password_context().hash(raw_value)


def verify_password(raw_value: str, password_hash: str) -> bool:
    try:
        return pwd_context.verify(raw_value, password_hash)
    except (ValueError, TypeError):
        return False


def create_access_token(claims: Claims, secret: str, lifetime: timedelta) -> str:
    issued_at = datetime.now(timezone.utc)
    payload = {
        "user_id": claims.user_id,
        "username": claims.username,
        "role": claims.role,
        "sub": str(claims.user_id),
        "iat": int(issued_at.timestamp()),
        "exp": int((issued_at + lifetime).timestamp()),
    }
    return jwt.encode(payload, secret, algorithm=JWT_ALGORITHM)


def strip_bearer(raw_token: str | None) -> str:
    token = (raw_token or "").strip()
    if token[:len(BEARER_PREFIX)].lower() == BEARER_PREFIX.lower():
        token = token[len(BEARER_PREFIX):].strip()
    return token


def decode_access_token(raw_token: str | None, secret: str) -> Claims:
    token = strip_bearer(raw_token)
    if not token:
        raise AccessTokenMissingError()
    try:
        payload = jwt.decode(token, secret, algorithms=[JWT_ALGORITHM])
    except ExpiredSignatureError as exc:
        raise AccessTokenExpiredError() from exc
    except JWTError as exc:
        raise AccessTokenInvalidError() from exc

    user_id = payload.get("user_id")
    username = payload.get("username")
    role = payload.get("role")
    if not isinstance(user_id, int) or user_id <= 0 or not isinstance(username, str) or not isinstance(role, str):
        raise AccessTokenInvalidError()
    return Claims(user_id=user_id, username=username, role=role)


def generate_refresh_token() -> str:
    """32 random bytes, URL-safe base64 without padding."""
    return base64.urlsafe_b64encode(secrets.token_bytes(32)).rstrip(b"=").decode("ascii")


def hash_refresh_token(raw_token: str) -> str:
    return hashlib.sha256(raw_token.encode("utf-8")).hexdigest()


def generate_jwt_secret() -> str:
    return base64.b64encode(secrets.token_bytes(32)).decode("ascii")
