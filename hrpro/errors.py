"""Error kinds raised by the engines and wrapped at the handler boundary."""

from __future__ import annotations


class HRError(Exception):
    kind = "error"
    default_message = "operation failed"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.default_message)
        self.message = message or self.default_message


class ConfigError(HRError):
    kind = "config"
    default_message = "invalid configuration"


class ValidationError(HRError):
    kind = "validation"
    default_message = "validation failed"


class NotFoundError(HRError):
    kind = "not_found"
    default_message = "record not found"


class ForbiddenError(HRError):
    kind = "forbidden"
    default_message = "forbidden"


class LockedError(HRError):
    kind = "locked"
    default_message = "attendance record is locked"


class NotAbsentError(HRError):
    kind = "not_absent"
    default_message = "attendance status must be absent"


class LeaveIntegrationError(HRError):
    kind = "leave_integration"
    default_message = "leave integration failed"


class LockedDateConflictError(HRError):
    kind = "locked_date_conflict"
    default_message = "requested dates include locked date"


class OverlapApprovedError(HRError):
    kind = "overlap_approved"
    default_message = "requested dates overlap approved leave"


class InsufficientBalanceError(HRError):
    kind = "insufficient_balance"
    default_message = "insufficient leave balance"


class InvalidTransitionError(HRError):
    kind = "invalid_transition"
    default_message = "invalid status transition"


class DuplicateMonthError(HRError):
    kind = "duplicate_month"
    default_message = "payroll batch already exists for month"


class ImmutableBatchError(HRError):
    kind = "immutable_batch"
    default_message = "batch is immutable"


class ExportNotAllowedError(HRError):
    kind = "export_not_allowed"
    default_message = "export allowed only for approved or locked batches"


class DuplicateNameError(HRError):
    kind = "duplicate_name"
    default_message = "department name already exists"


class DepartmentHasEmployeesError(HRError):
    kind = "department_has_employees"
    default_message = "department has employees"


class DuplicateUsernameError(HRError):
    kind = "duplicate_username"
    default_message = "username already exists"


class CannotDeactivateSelfError(HRError):
    kind = "cannot_deactivate_self"
    default_message = "cannot deactivate own account"


class CannotRemoveOwnAdminError(HRError):
    kind = "cannot_remove_own_admin"
    default_message = "cannot remove own admin role"


class InvalidCredentialsError(HRError):
    kind = "invalid_credentials"
    default_message = "invalid credentials"


class InactiveUserError(HRError):
    kind = "inactive_user"
    default_message = "user is inactive"


class AccessTokenMissingError(HRError):
    kind = "access_token_missing"
    default_message = "access token is required"


class AccessTokenExpiredError(HRError):
    kind = "access_token_expired"
    default_message = "access token expired"


class AccessTokenInvalidError(HRError):
    kind = "access_token_invalid"
    default_message = "access token is invalid"


class RefreshInvalidError(HRError):
    kind = "refresh_invalid"
    default_message = "auth.refresh_invalid"


class RefreshExpiredError(HRError):
    kind = "refresh_expired"
    default_message = "auth.refresh_expired"


class RefreshReusedError(HRError):
    kind = "refresh_reused"
    default_message = "auth.refresh_reused"


class ExportLimitExceededError(HRError):
    kind = "export_limit_exceeded"
    default_message = "export limit exceeded"


class OperationError(HRError):
    """Error surfaced to the shell; keeps the kind of the engine error it wraps."""

    def __init__(self, message: str, kind: str = "error") -> None:
        super().__init__(message)
        self.kind = kind

    @classmethod
    def wrap(cls, prefix: str, error: HRError) -> "OperationError":
        wrapped = cls(f"{prefix}: {error}", kind=error.kind)
        wrapped.__cause__ = error
        return wrapped
