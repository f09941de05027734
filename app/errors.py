from __future__ import annotations


class DomainError(Exception):
    status_code = 400

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {'detail': self.message}


class ValidationError(DomainError, ValueError):
    status_code = 400

    def __init__(self, message: str, *, field: str | None = None) -> None:
        super().__init__(message)
        self.field = field

    def to_dict(self) -> dict:
        return {'detail': self.message, 'field': self.field}


class ConflictError(DomainError):
    status_code = 409


class NotFoundError(DomainError):
    status_code = 404


class PermissionDeniedError(DomainError):
    status_code = 403


class PartialFailureError(DomainError):
    """A multi-step write failed after some rows were written; the savepoint was rolled back."""

    status_code = 500
