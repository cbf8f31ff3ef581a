from __future__ import annotations

import enum
from typing import Any

from fastapi import status


class ErrorCode(str, enum.Enum):
    UNBALANCED_ENTRY = "UNBALANCED_ENTRY"
    INVALID_ACCOUNT = "INVALID_ACCOUNT"
    NO_ACCOUNTING_PERIOD = "NO_ACCOUNTING_PERIOD"
    PERIOD_CLOSED = "PERIOD_CLOSED"
    NOT_FOUND = "NOT_FOUND"
    ENTRY_APPROVED = "ENTRY_APPROVED"
    ENTRY_NOT_EDITABLE = "ENTRY_NOT_EDITABLE"
    INVALID_STATUS = "INVALID_STATUS"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    ENTRY_NUMBER_CONFLICT = "ENTRY_NUMBER_CONFLICT"
    ENTRY_NUMBER_EXHAUSTED = "ENTRY_NUMBER_EXHAUSTED"
    CSV_IMPORT_FAILED = "CSV_IMPORT_FAILED"
    INVALID_CSV_HEADER = "INVALID_CSV_HEADER"
    CSV_TOO_LARGE = "CSV_TOO_LARGE"
    INVALID_PERIOD_RANGE = "INVALID_PERIOD_RANGE"
    PERIOD_OVERLAP = "PERIOD_OVERLAP"
    PERIOD_HAS_ENTRIES = "PERIOD_HAS_ENTRIES"
    PERIOD_OPEN = "PERIOD_OPEN"
    DUPLICATE_ACCOUNT_CODE = "DUPLICATE_ACCOUNT_CODE"
    ORGANIZATION_REQUIRED = "ORGANIZATION_REQUIRED"
    FORBIDDEN = "FORBIDDEN"


_STATUS_BY_CODE: dict[ErrorCode, int] = {
    ErrorCode.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorCode.UNBALANCED_ENTRY: status.HTTP_422_UNPROCESSABLE_ENTITY,
    ErrorCode.INVALID_ACCOUNT: status.HTTP_422_UNPROCESSABLE_ENTITY,
    ErrorCode.NO_ACCOUNTING_PERIOD: status.HTTP_422_UNPROCESSABLE_ENTITY,
    ErrorCode.VALIDATION_ERROR: status.HTTP_422_UNPROCESSABLE_ENTITY,
    ErrorCode.CSV_IMPORT_FAILED: status.HTTP_422_UNPROCESSABLE_ENTITY,
    ErrorCode.INVALID_PERIOD_RANGE: status.HTTP_422_UNPROCESSABLE_ENTITY,
    ErrorCode.PERIOD_CLOSED: status.HTTP_409_CONFLICT,
    ErrorCode.ENTRY_APPROVED: status.HTTP_409_CONFLICT,
    ErrorCode.ENTRY_NOT_EDITABLE: status.HTTP_409_CONFLICT,
    ErrorCode.INVALID_STATUS: status.HTTP_409_CONFLICT,
    ErrorCode.ENTRY_NUMBER_CONFLICT: status.HTTP_409_CONFLICT,
    ErrorCode.ENTRY_NUMBER_EXHAUSTED: status.HTTP_409_CONFLICT,
    ErrorCode.PERIOD_OVERLAP: status.HTTP_409_CONFLICT,
    ErrorCode.PERIOD_HAS_ENTRIES: status.HTTP_409_CONFLICT,
    ErrorCode.PERIOD_OPEN: status.HTTP_409_CONFLICT,
    ErrorCode.DUPLICATE_ACCOUNT_CODE: status.HTTP_409_CONFLICT,
    ErrorCode.INVALID_CSV_HEADER: status.HTTP_400_BAD_REQUEST,
    ErrorCode.CSV_TOO_LARGE: status.HTTP_400_BAD_REQUEST,
    ErrorCode.ORGANIZATION_REQUIRED: status.HTTP_400_BAD_REQUEST,
    ErrorCode.FORBIDDEN: status.HTTP_403_FORBIDDEN,
}


class BookkeepingError(Exception):
    """Domain failure carrying a machine-readable code for the API layer."""

    def __init__(self, code: ErrorCode, message: str, *, details: Any = None) -> None:
        self.code = code
        self.message = message
        self.details = details
        self.status_code = _STATUS_BY_CODE.get(code, status.HTTP_400_BAD_REQUEST)
        super().__init__(f"{code.value}: {message}")


class CsvImportError(BookkeepingError):
    """Raised when any CSV row fails; `errors` lists every failing row."""

    def __init__(self, errors: list[str]) -> None:
        self.errors = list(errors)
        super().__init__(
            ErrorCode.CSV_IMPORT_FAILED,
            f"CSV import failed with {len(self.errors)} error(s)",
            details=self.errors,
        )
