"""
Error taxonomy shared by the grant store, the HTTP routes and the client.

Every error carries the HTTP status it maps to, so routes can raise domain
errors directly and the exception handler in ``app.main`` renders them.
"""
from typing import Any

from fastapi import status


class AppError(Exception):
    code: str = "APP_ERROR"
    message: str = "Application error"
    status_code: int = status.HTTP_400_BAD_REQUEST

    def __init__(
        self,
        message: str | None = None,
        *,
        errors: dict[str, list[str]] | None = None,
        status_code: int | None = None,
    ):
        if message is not None:
            self.message = message
        if status_code is not None:
            self.status_code = status_code
        self.errors: dict[str, list[str]] = errors or {}
        super().__init__(self.message)

    def payload(self) -> dict[str, Any]:
        body: dict[str, Any] = {"code": self.code, "message": self.message}
        if self.errors:
            body["errors"] = self.errors
        return body


class ValidationFailed(AppError):
    code = "VALIDATION_FAILED"
    message = "The given data was invalid."
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY

    @classmethod
    def from_errors(cls, errors: dict[str, list[str]]) -> "ValidationFailed":
        """Build an error whose message is the first field error."""
        first = next((m[0] for m in errors.values() if m), cls.message)
        return cls(first, errors=errors)

    @property
    def first_error(self) -> str:
        """First field error, or the general message when there is none."""
        for messages in self.errors.values():
            if messages:
                return messages[0]
        return self.message


class UnknownPermission(ValidationFailed):
    code = "UNKNOWN_PERMISSION"

    def __init__(self, names, field: str = "permissions"):
        self.names = sorted(names)
        message = f"Unknown permission(s): {', '.join(self.names)}"
        super().__init__(message, errors={field: [message]})


class UnknownRole(ValidationFailed):
    code = "UNKNOWN_ROLE"

    def __init__(self, names, field: str = "roles"):
        self.names = sorted(names)
        message = f"Unknown role(s): {', '.join(self.names)}"
        super().__init__(message, errors={field: [message]})


class UnknownScope(ValidationFailed):
    code = "UNKNOWN_SCOPE"

    def __init__(self, field: str, value: Any):
        self.field = field
        self.value = value
        message = f"Unknown {field.removesuffix('_id')}: {value}"
        super().__init__(message, errors={field: [message]})


class InvalidSelection(AppError):
    """A scoped action was attempted without a complete scope key."""
    code = "INVALID_SELECTION"
    message = "Select a role and a program first."
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY


class Unauthorized(AppError):
    code = "UNAUTHORIZED"
    message = "Unauthenticated."
    status_code = status.HTTP_401_UNAUTHORIZED


class Forbidden(Unauthorized):
    code = "FORBIDDEN"
    message = "This action is unauthorized."
    status_code = status.HTTP_403_FORBIDDEN


class CsrfTokenExpired(Unauthorized):
    code = "CSRF_TOKEN_EXPIRED"
    message = "Session expired or CSRF token mismatch. Please refresh and try again."
    status_code = 419


class Unavailable(AppError):
    code = "UNAVAILABLE"
    message = "The grant store is unavailable."
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE


class NotAvailable(Unavailable):
    code = "NOT_AVAILABLE"
    message = "The permission registry is unavailable."


class StaleWrite(AppError):
    code = "STALE_WRITE"
    message = "A newer write to this scope has already been committed."
    status_code = status.HTTP_409_CONFLICT


class SaveInProgress(AppError):
    code = "SAVE_IN_PROGRESS"
    message = "A save for this scope is already in progress."
    status_code = status.HTTP_409_CONFLICT


class RequestFailed(AppError):
    code = "REQUEST_FAILED"
    message = "Request failed."
