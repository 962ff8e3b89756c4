"""Login, logout, token refresh and the current user."""

from __future__ import annotations

from hrpro.errors import InactiveUserError, InvalidCredentialsError, OperationError
from hrpro.handlers.base import Handler, operation
from hrpro.services.auth import AuthUser, LoginResult


AUTHENTICATION_FAILED = "authentication failed"


class AuthHandler(Handler):
    @operation
    def login(self, username: str, password: str) -> LoginResult:
        try:
            return self.auth_service.login(username, password)
        except (InvalidCredentialsError, InactiveUserError) as exc:
            raise OperationError(AUTHENTICATION_FAILED, kind=exc.kind) from exc

    @operation
    def logout(self, refresh_token: str | None) -> None:
        self.auth_service.logout(refresh_token)

    @operation
    def refresh(self, refresh_token: str | None) -> LoginResult:
        return self.auth_service.refresh(refresh_token)

    @operation
    def get_me(self, access_token: str | None) -> AuthUser:
        self.claims(access_token)
        try:
            return self.auth_service.get_me(access_token)
        except InvalidCredentialsError as exc:
            raise OperationError(AUTHENTICATION_FAILED, kind=exc.kind) from exc

    @operation
    def validate(self, access_token: str | None):
        """Return the claims for a token; the shell uses this for session checks."""
        return self.claims(access_token)
