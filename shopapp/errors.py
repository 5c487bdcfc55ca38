"""Service-level errors surfaced to the HTTP layer."""

from __future__ import annotations


class ServiceError(RuntimeError):
    """Base error; ``status_code`` is the HTTP status the API responds with."""

    status_code = 400

    def payload(self) -> dict:
        return {"error": str(self)}


class NotFoundError(ServiceError):
    status_code = 404


class PermissionDenied(ServiceError):
    status_code = 403


class InvalidTransition(ServiceError):
    status_code = 409


class InsufficientStock(ServiceError):
    status_code = 409


class DuplicateEmail(ServiceError):
    status_code = 409


class OrderTooLarge(ServiceError):
    status_code = 413


class InvalidCredentials(ServiceError):
    status_code = 401

    def __init__(self, message: str = "Invalid credentials", *, remaining_attempts: int | None = None):
        super().__init__(message)
        self.remaining_attempts = remaining_attempts

    def payload(self) -> dict:
        data = super().payload()
        if self.remaining_attempts is not None:
            data["remaining_attempts"] = self.remaining_attempts
        return data


class AccountLocked(ServiceError):
    status_code = 423

    def __init__(self, remaining_minutes: int):
        super().__init__(f"Account locked. Try again in {remaining_minutes} minute(s)")
        self.remaining_minutes = remaining_minutes

    def payload(self) -> dict:
        return {"error": str(self), "remaining_minutes": self.remaining_minutes}
