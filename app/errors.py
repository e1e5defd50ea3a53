from __future__ import annotations


class BackOfficeError(Exception):
    """Base class for failures surfaced to callers of the payroll workflows."""

    kind = "error"

    def __init__(self, message: str = "") -> None:
        super().__init__(message)
        self.message = message


class ValidationError(BackOfficeError, ValueError):
    kind = "validation"


class PermissionDenied(BackOfficeError, PermissionError):
    kind = "permission"

    def __init__(self, message: str = "Permission denied.") -> None:
        super().__init__(message)


class NotFoundError(BackOfficeError, LookupError):
    kind = "not_found"


class ConflictError(BackOfficeError):
    kind = "conflict"


class StoreError(BackOfficeError, RuntimeError):
    kind = "store"
