from __future__ import annotations

from typing import Literal

WriteStage = Literal["facility", "facility_services", "transaction"]


class DirectoryError(Exception):
    """Base error for the facility directory."""

    code = "DIRECTORY_ERROR"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class InvalidInputError(DirectoryError):
    """Caller-supplied data failed a precondition; nothing was written."""

    code = "INVALID_INPUT"

    def __init__(self, field: str, message: str) -> None:
        super().__init__(message)
        self.field = field


class StorageReadError(DirectoryError):
    """The search query could not be executed."""

    code = "SEARCH_UNAVAILABLE"


class StorageWriteError(DirectoryError):
    """A registration write failed.

    ``stage`` tells whether the facility row itself failed (nothing to clean up)
    or the association batch failed after the facility row was created, in which
    case ``compensated`` reports that the facility row has been deleted again.
    """

    code = "REGISTRATION_FAILED"

    def __init__(self, stage: WriteStage, message: str, *, compensated: bool = False) -> None:
        super().__init__(message)
        self.stage = stage
        self.compensated = compensated


class CompensationFailedError(DirectoryError):
    """Rollback of a half-registered facility failed; manual reconciliation is required."""

    code = "REGISTRATION_INCONSISTENT"

    def __init__(self, facility_id: int, message: str) -> None:
        super().__init__(message)
        self.facility_id = facility_id


class StorageOperationError(RuntimeError):
    """Constraint violation raised by the in-memory storage adapter."""
