from __future__ import annotations

import csv
import io
import logging
import uuid
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal, InvalidOperation

from opentelemetry import trace
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload

from app.bookkeeping.accounts import AccountService
from app.bookkeeping.context import POSTING_ROLES, BookkeepingContext
from app.bookkeeping.errors import BookkeepingError, CsvImportError, ErrorCode
from app.bookkeeping.models import Account, AccountingPeriod, JournalEntry, JournalEntryLine, JournalStatus
from app.bookkeeping.numbering import EntryNumberSequencer
from app.bookkeeping.periods import AccountingPeriodService, pick_covering_period
from app.bookkeeping.schemas import CsvJournalRecord, JournalEntryRead
from app.bookkeeping.service import is_entry_number_conflict, to_entry_read
from app.core.config import get_settings
from app.core.database import transaction
from app.metrics import observe_journal_entries_created, observe_journal_import_rows


logger = logging.getLogger("app.bookkeeping.import")
tracer = trace.get_tracer("app.bookkeeping.import")

CENT = Decimal("0.01")

HEADER_ALIASES: dict[str, tuple[str, ...]] = {
    "entry_date": ("date", "entry_date", "日付"),
    "debit_account_name": ("debit_account", "debit_account_name", "debit", "借方勘定"),
    "credit_account_name": ("credit_account", "credit_account_name", "credit", "貸方勘定"),
    "amount": ("amount", "金額"),
    "description": ("description", "memo", "摘要"),
}
REQUIRED_COLUMNS = ("entry_date", "debit_account_name", "credit_account_name", "amount")
DATE_FORMATS = ("%Y-%m-%d", "%Y/%m/%d", "%d/%m/%Y")
# Amounts must fit Numeric(18, 2).
MAX_AMOUNT = Decimal(10) ** 16
_AMOUNT_NOISE = str.maketrans("", "", ",¥￥")


def decode_csv_bytes(payload: bytes) -> str:
    try:
        return payload.decode("utf-8-sig")
    except UnicodeDecodeError as exc:
        raise BookkeepingError(ErrorCode.VALIDATION_ERROR, "CSV file must be UTF-8 encoded") from exc


def _resolve_columns(fieldnames: Sequence[str]) -> dict[str, str]:
    normalized = {name.strip().lower(): name for name in fieldnames if name}
    columns: dict[str, str] = {}
    for canonical, aliases in HEADER_ALIASES.items():
        for alias in aliases:
            if alias.lower() in normalized:
                columns[canonical] = normalized[alias.lower()]
                break
    return columns


def parse_csv_records(text: str) -> list[CsvJournalRecord]:
    reader = csv.DictReader(io.StringIO(text))
    columns = _resolve_columns(reader.fieldnames or [])
    missing = [name for name in REQUIRED_COLUMNS if name not in columns]
    if missing:
        raise BookkeepingError(
            ErrorCode.INVALID_CSV_HEADER,
            "CSV header must contain: date, debit_account, credit_account, amount, description",
            details={"missing": missing},
        )

    max_rows = get_settings().csv_import_max_rows
    records: list[CsvJournalRecord] = []
    for raw_row in reader:
        row = {key: (value.strip() if isinstance(value, str) else "") for key, value in raw_row.items() if key}
        if not any(row.values()):
            continue
        records.append(
            CsvJournalRecord(**{canonical: row.get(column, "") for canonical, column in columns.items()})
        )
        if len(records) > max_rows:
            raise BookkeepingError(ErrorCode.CSV_TOO_LARGE, f"CSV import is limited to {max_rows} rows")
    return records


def _parse_amount(raw: str) -> Decimal | None:
    """Positive amount with at most two decimal places, or None."""
    try:
        amount = Decimal(raw.translate(_AMOUNT_NOISE).strip())
        if not amount.is_finite() or amount >= MAX_AMOUNT:
            return None
        quantized = amount.quantize(CENT)
    except InvalidOperation:
        return None
    if quantized != amount or quantized <= 0:
        return None
    return quantized


def _parse_date(raw: str) -> date | None:
    for fmt in DATE_FORMATS:
        try:
            return datetime.strptime(raw, fmt).date()
        except ValueError:
            continue
    return None


@dataclass(slots=True)
class JournalEntryImporter:
    """Creates one two-line DRAFT entry per CSV row, all-or-nothing.

    Every row is checked so the caller gets a complete error report; any row
    error rolls back the whole batch.
    """

    accounts: AccountService = field(default_factory=AccountService)
    periods: AccountingPeriodService = field(default_factory=AccountingPeriodService)

    def import_csv(self, session: Session, ctx: BookkeepingContext, payload: bytes) -> list[JournalEntryRead]:
        ctx.require_any_role(POSTING_ROLES)
        return self.import_records(session, ctx, parse_csv_records(decode_csv_bytes(payload)))

    def import_records(
        self,
        session: Session,
        ctx: BookkeepingContext,
        records: Sequence[CsvJournalRecord],
    ) -> list[JournalEntryRead]:
        ctx.require_any_role(POSTING_ROLES)
        with tracer.start_as_current_span("journal_entry.import") as span:
            span.set_attribute("organization_id", ctx.organization_id)
            span.set_attribute("row_count", len(records))
            if ctx.correlation_id:
                span.set_attribute("correlation_id", ctx.correlation_id)
            logger.info("journal_import.started", extra={"organization_id": ctx.organization_id, "row_count": len(records)})

            errors: list[str] = []
            created: list[JournalEntry] = []
            try:
                with transaction(session):
                    accounts_by_key = self._account_lookup(self.accounts.list_active_accounts(session, ctx.organization_id))
                    periods = self.periods.list_all_periods(session, ctx.organization_id)
                    sequencer = EntryNumberSequencer.preload(session, ctx.organization_id)

                    for row_number, record in enumerate(records, start=1):
                        result = self._build_entry(ctx, row_number, record, accounts_by_key, periods, sequencer)
                        if isinstance(result, str):
                            errors.append(result)
                            continue
                        session.add(result)
                        created.append(result)

                    if errors:
                        raise CsvImportError(errors)
                    session.flush()
                    created_ids = [entry.id for entry in created]
            except CsvImportError:
                observe_journal_import_rows("rejected", len(errors))
                logger.info(
                    "journal_import.rejected",
                    extra={"organization_id": ctx.organization_id, "row_count": len(records), "error_count": len(errors)},
                )
                raise
            except IntegrityError as exc:
                if not is_entry_number_conflict(exc):
                    raise
                raise BookkeepingError(
                    ErrorCode.ENTRY_NUMBER_CONFLICT,
                    "entry numbers were taken by a concurrent writer; retry the import",
                ) from exc

        observe_journal_import_rows("created", len(created_ids))
        observe_journal_entries_created("csv", len(created_ids))
        logger.info(
            "journal_import.completed",
            extra={"organization_id": ctx.organization_id, "row_count": len(created_ids)},
        )
        return self._load_entries(session, ctx.organization_id, created_ids)

    @staticmethod
    def _account_lookup(accounts: Sequence[Account]) -> dict[str, Account]:
        """CSV cells may name an account by code or by name; a name wins over a clashing code."""
        lookup = {account.code: account for account in accounts}
        lookup.update({account.name: account for account in accounts})
        return lookup

    def _build_entry(
        self,
        ctx: BookkeepingContext,
        row_number: int,
        record: CsvJournalRecord,
        accounts_by_key: dict[str, Account],
        periods: Sequence[AccountingPeriod],
        sequencer: EntryNumberSequencer,
    ) -> JournalEntry | str:
        prefix = f"Row {row_number}"
        debit_account = accounts_by_key.get(record.debit_account_name)
        if debit_account is None:
            return f'{prefix}: debit account "{record.debit_account_name}" not found'
        credit_account = accounts_by_key.get(record.credit_account_name)
        if credit_account is None:
            return f'{prefix}: credit account "{record.credit_account_name}" not found'

        amount = _parse_amount(record.amount)
        if amount is None:
            return f'{prefix}: invalid amount "{record.amount}"'

        entry_date = _parse_date(record.entry_date)
        if entry_date is None:
            return f'{prefix}: invalid date "{record.entry_date}"'

        period = pick_covering_period(periods, entry_date)
        if period is None:
            return f'{prefix}: no accounting period covers "{record.entry_date}"'
        if not period.is_active:
            return f"{prefix}: accounting period {period.name} is closed"

        try:
            entry_number = sequencer.next(entry_date)
        except BookkeepingError as exc:
            return f"{prefix}: {exc.message}"

        description = record.description or ""
        return JournalEntry(
            organization_id=ctx.organization_id,
            accounting_period_id=period.id,
            entry_number=entry_number,
            entry_date=entry_date,
            description=description,
            status=JournalStatus.DRAFT.value,
            created_by=ctx.user_id,
            lines=[
                JournalEntryLine(
                    account_id=debit_account.id,
                    line_number=1,
                    debit_amount=amount,
                    credit_amount=Decimal("0"),
                    description=description,
                ),
                JournalEntryLine(
                    account_id=credit_account.id,
                    line_number=2,
                    debit_amount=Decimal("0"),
                    credit_amount=amount,
                    description=description,
                ),
            ],
        )

    def _load_entries(self, session: Session, organization_id: str, entry_ids: list[uuid.UUID]) -> list[JournalEntryRead]:
        if not entry_ids:
            return []
        rows = session.scalars(
            select(JournalEntry)
            .where(JournalEntry.organization_id == organization_id, JournalEntry.id.in_(entry_ids))
            .options(selectinload(JournalEntry.lines).selectinload(JournalEntryLine.account))
            .order_by(JournalEntry.entry_number.asc())
        ).all()
        return [to_entry_read(row) for row in rows]


journal_entry_importer = JournalEntryImporter()
