from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Any, Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, model_validator


AccountTypeName = Literal["ASSET", "LIABILITY", "EQUITY", "REVENUE", "EXPENSE"]
JournalStatusName = Literal["DRAFT", "APPROVED"]


class AccountCreate(BaseModel):
    code: str = Field(min_length=1, max_length=32)
    name: str = Field(min_length=1, max_length=255)
    account_type: AccountTypeName
    is_active: bool = True


class AccountRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    organization_id: str
    code: str
    name: str
    account_type: AccountTypeName
    is_active: bool
    created_at: datetime


class AccountSummary(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    code: str
    name: str
    account_type: AccountTypeName


class AccountingPeriodCreate(BaseModel):
    name: str = Field(min_length=1, max_length=128)
    start_date: date
    end_date: date
    is_active: bool = True


class AccountingPeriodRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    organization_id: str
    name: str
    start_date: date
    end_date: date
    is_active: bool
    created_at: datetime


class JournalLineInput(BaseModel):
    account_id: UUID
    debit_amount: Decimal = Field(default=Decimal("0"), ge=Decimal("0"), max_digits=18, decimal_places=2)
    credit_amount: Decimal = Field(default=Decimal("0"), ge=Decimal("0"), max_digits=18, decimal_places=2)
    description: str | None = None
    tax_rate: Decimal | None = Field(default=None, ge=Decimal("0"), max_digits=5, decimal_places=2)


class JournalEntryCreate(BaseModel):
    entry_date: date
    description: str = Field(min_length=1)
    document_number: str | None = Field(default=None, max_length=64)
    lines: list[JournalLineInput] = Field(min_length=2)


class JournalEntryUpdate(BaseModel):
    description: str | None = Field(default=None, min_length=1)
    document_number: str | None = Field(default=None, max_length=64)
    lines: list[JournalLineInput] | None = Field(default=None, min_length=2)

    @model_validator(mode="after")
    def _reject_empty_update(self) -> JournalEntryUpdate:
        if not self.model_fields_set:
            raise ValueError("at least one of description, document_number or lines is required")
        return self


class JournalLineRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    journal_entry_id: UUID
    line_number: int
    account_id: UUID
    account: AccountSummary
    debit_amount: Decimal
    credit_amount: Decimal
    description: str | None
    tax_rate: Decimal | None


class JournalEntryRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    organization_id: str
    accounting_period_id: UUID
    entry_number: str
    entry_date: date
    description: str
    document_number: str | None
    status: JournalStatusName
    created_by: str
    approved_by: str | None
    approved_at: datetime | None
    created_at: datetime
    updated_at: datetime
    lines: list[JournalLineRead] = Field(default_factory=list)


class PageMeta(BaseModel):
    page: int
    limit: int
    total: int
    total_pages: int


class JournalEntryPage(BaseModel):
    data: list[JournalEntryRead]
    meta: PageMeta


class CsvJournalRecord(BaseModel):
    """One CSV row: a two-leg entry moving `amount` from the credit to the debit account."""

    entry_date: str
    debit_account_name: str
    credit_account_name: str
    amount: str
    description: str = ""


class JournalImportResult(BaseModel):
    created: int
    entries: list[JournalEntryRead]


class ErrorEnvelope(BaseModel):
    code: str
    message: str
    details: Any = None
    correlation_id: str | None = None
