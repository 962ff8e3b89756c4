"""Shared plumbing for the operation surface.

Handlers validate the caller's access token, remember the actor for audit
events and translate engine errors into ``OperationError`` with a short
prefix the shell can show as-is.
"""

from __future__ import annotations

import functools
from typing import Callable

from flask import g
from sqlalchemy.exc import SQLAlchemyError

from hrpro.authorization import Claims
from hrpro.errors import (
    AccessTokenExpiredError,
    AccessTokenInvalidError,
    AccessTokenMissingError,
    ForbiddenError,
    HRError,
    OperationError,
)
from hrpro.extensions import db
from hrpro.services.auth import AuthService


AUTH_EXPIRED = "AUTH_EXPIRED"
AUTH_UNAUTHORIZED = "AUTH_UNAUTHORIZED"

ERROR_PREFIXES = {
    "validation": "validation error",
    "not_found": "not found",
    "locked": "record locked",
    "not_absent": "status check failed",
    "leave_integration": "leave integration failed",
    "locked_date_conflict": "locked date conflict",
    "overlap_approved": "approved leave overlap",
    "insufficient_balance": "insufficient balance",
    "invalid_transition": "invalid status transition",
    "duplicate_month": "duplicate month",
    "immutable_batch": "batch is immutable",
    "export_not_allowed": "export not allowed",
    "duplicate_name": "duplicate department name",
    "department_has_employees": "department has employees",
    "duplicate_username": "duplicate username",
    "cannot_deactivate_self": "cannot deactivate self",
    "cannot_remove_own_admin": "cannot remove own admin role",
    "export_limit_exceeded": "export limit exceeded",
}


def wrap_error(error: HRError) -> HRError:
    if isinstance(error, (ForbiddenError, OperationError)):
        return error
    if isinstance(error, AccessTokenExpiredError):
        return OperationError(AUTH_EXPIRED, kind=error.kind)
    if isinstance(error, (AccessTokenMissingError, AccessTokenInvalidError)):
        return OperationError(AUTH_UNAUTHORIZED, kind=error.kind)
    prefix = ERROR_PREFIXES.get(error.kind)
    if prefix is None:
        wrapped = OperationError(str(error), kind=error.kind)
        wrapped.__cause__ = error
        return wrapped
    return OperationError.wrap(prefix, error)


def operation(view: Callable):
    @functools.wraps(view)
    def wrapped(*args, **kwargs):
        try:
            return view(*args, **kwargs)
        except HRError as exc:
            wrapped_error = wrap_error(exc)
            if wrapped_error is exc:
                raise
            raise wrapped_error from exc
        except SQLAlchemyError:
            db.session.rollback()
            raise

    return wrapped


class Handler:
    def __init__(self, auth_service: AuthService) -> None:
        self.auth_service = auth_service

    def claims(self, access_token: str | None) -> Claims:
        claims = self.auth_service.validate_access_token(access_token)
        g.actor_user_id = claims.user_id
        return claims
