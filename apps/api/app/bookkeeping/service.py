from __future__ import annotations

import logging
import math
import uuid
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import NoReturn

from opentelemetry import trace
from sqlalchemy import Select, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload

from app.bookkeeping.accounts import AccountService
from app.bookkeeping.balance import validate_balance
from app.bookkeeping.context import ADMIN_ROLES, POSTING_ROLES, READ_ROLES, BookkeepingContext
from app.bookkeeping.errors import BookkeepingError, ErrorCode
from app.bookkeeping.models import AccountingPeriod, JournalEntry, JournalEntryLine, JournalStatus, utcnow
from app.bookkeeping.numbering import generate_entry_number
from app.bookkeeping.periods import AccountingPeriodService
from app.bookkeeping.schemas import (
    JournalEntryCreate,
    JournalEntryPage,
    JournalEntryRead,
    JournalEntryUpdate,
    JournalLineInput,
    PageMeta,
)
from app.core.config import get_settings
from app.core.database import transaction
from app.metrics import (
    observe_journal_entries_created,
    observe_journal_entry_approved,
    observe_journal_entry_deleted,
    observe_journal_entry_failure,
)


logger = logging.getLogger("app.bookkeeping.journal")
tracer = trace.get_tracer("app.bookkeeping.journal")

MIN_LINES = 2
MAX_PAGE_SIZE = 100


def is_entry_number_conflict(exc: IntegrityError) -> bool:
    message = str(exc.orig)
    return "uq_bk_entry_number" in message or "bk_journal_entry.entry_number" in message


def build_lines(lines: Sequence[JournalLineInput]) -> list[JournalEntryLine]:
    return [
        JournalEntryLine(
            account_id=line.account_id,
            line_number=index,
            debit_amount=Decimal(line.debit_amount),
            credit_amount=Decimal(line.credit_amount),
            description=line.description,
            tax_rate=line.tax_rate,
        )
        for index, line in enumerate(lines, start=1)
    ]


def to_entry_read(entry: JournalEntry) -> JournalEntryRead:
    return JournalEntryRead.model_validate(entry)


@dataclass(slots=True)
class JournalEntryService:
    """DRAFT -> APPROVED lifecycle of journal entries.

    Every validation runs before the first write; every write runs inside one
    transaction so a header is never visible without its lines.
    """

    accounts: AccountService = field(default_factory=AccountService)
    periods: AccountingPeriodService = field(default_factory=AccountingPeriodService)

    def create_entry(self, session: Session, ctx: BookkeepingContext, request: JournalEntryCreate) -> JournalEntryRead:
        ctx.require_any_role(POSTING_ROLES)
        with tracer.start_as_current_span("journal_entry.create") as span:
            span.set_attribute("organization_id", ctx.organization_id)
            if ctx.correlation_id:
                span.set_attribute("correlation_id", ctx.correlation_id)

            self._require_minimum_lines(ctx, request.lines)
            if not validate_balance(request.lines):
                self._fail(ctx, ErrorCode.UNBALANCED_ENTRY, "total debits and credits do not match")
            self._require_accounts(session, ctx, request.lines)
            period = self._resolve_open_period(session, ctx, request.entry_date)

            entry_id = self._insert_entry(session, ctx, request, period.id)
            entry = self._load_entry(session, ctx.organization_id, entry_id)
            if entry is None:
                raise RuntimeError("journal entry vanished after insert")
            span.set_attribute("entry_id", str(entry.id))

        observe_journal_entries_created("api")
        logger.info(
            "journal_entry.created",
            extra={"organization_id": ctx.organization_id, "entry_id": str(entry.id), "entry_number": entry.entry_number},
        )
        return to_entry_read(entry)

    def update_entry(
        self,
        session: Session,
        ctx: BookkeepingContext,
        entry_id: uuid.UUID,
        request: JournalEntryUpdate,
    ) -> JournalEntryRead:
        ctx.require_any_role(POSTING_ROLES)
        with tracer.start_as_current_span("journal_entry.update") as span:
            span.set_attribute("organization_id", ctx.organization_id)
            span.set_attribute("entry_id", str(entry_id))

            entry = self._get_scoped(session, ctx, entry_id, for_update=True)
            self._require_draft(ctx, entry)

            if request.lines is not None:
                self._require_minimum_lines(ctx, request.lines)
                self._require_accounts(session, ctx, request.lines)
                if not validate_balance(request.lines):
                    self._fail(ctx, ErrorCode.UNBALANCED_ENTRY, "total debits and credits do not match")

            fields_set = request.model_fields_set
            with transaction(session):
                if "description" in fields_set and request.description is not None:
                    entry.description = request.description
                if "document_number" in fields_set:
                    entry.document_number = request.document_number
                if request.lines is not None:
                    entry.lines.clear()
                    # Old lines must be gone before new ones reuse their line numbers.
                    session.flush()
                    entry.lines.extend(build_lines(request.lines))
                entry.updated_at = utcnow()

        updated = self._load_entry(session, ctx.organization_id, entry_id)
        if updated is None:
            self._fail(ctx, ErrorCode.NOT_FOUND, "journal entry not found")
        logger.info(
            "journal_entry.updated",
            extra={"organization_id": ctx.organization_id, "entry_id": str(entry_id), "entry_number": updated.entry_number},
        )
        return to_entry_read(updated)

    def delete_entry(self, session: Session, ctx: BookkeepingContext, entry_id: uuid.UUID) -> None:
        ctx.require_any_role(ADMIN_ROLES)
        with tracer.start_as_current_span("journal_entry.delete") as span:
            span.set_attribute("organization_id", ctx.organization_id)
            span.set_attribute("entry_id", str(entry_id))

            entry = self._get_scoped(session, ctx, entry_id)
            self._require_draft(ctx, entry)

            with transaction(session):
                # A concurrent delete or approval may have landed since the first read.
                locked = self._get_scoped(session, ctx, entry_id, for_update=True)
                self._require_draft(ctx, locked)
                entry_number = locked.entry_number
                session.delete(locked)

        observe_journal_entry_deleted()
        logger.info(
            "journal_entry.deleted",
            extra={"organization_id": ctx.organization_id, "entry_id": str(entry_id), "entry_number": entry_number},
        )

    def approve_entry(self, session: Session, ctx: BookkeepingContext, entry_id: uuid.UUID) -> JournalEntryRead:
        ctx.require_any_role(POSTING_ROLES)
        with tracer.start_as_current_span("journal_entry.approve") as span:
            span.set_attribute("organization_id", ctx.organization_id)
            span.set_attribute("entry_id", str(entry_id))

            with transaction(session):
                entry = self._get_scoped(session, ctx, entry_id, for_update=True)
                if entry.status != JournalStatus.DRAFT.value:
                    self._fail(ctx, ErrorCode.INVALID_STATUS, "only draft entries can be approved")
                # Persisted lines, not caller input: they may have changed since creation.
                if len(entry.lines) < MIN_LINES or not validate_balance(entry.lines):
                    self._fail(ctx, ErrorCode.UNBALANCED_ENTRY, "persisted lines are not balanced")
                if not entry.accounting_period.is_active:
                    self._fail(
                        ctx,
                        ErrorCode.PERIOD_CLOSED,
                        f"accounting period {entry.accounting_period.name} is closed",
                    )
                entry.status = JournalStatus.APPROVED.value
                entry.approved_by = ctx.user_id
                entry.approved_at = utcnow()

        approved = self._load_entry(session, ctx.organization_id, entry_id)
        if approved is None:
            self._fail(ctx, ErrorCode.NOT_FOUND, "journal entry not found")
        observe_journal_entry_approved()
        logger.info(
            "journal_entry.approved",
            extra={"organization_id": ctx.organization_id, "entry_id": str(entry_id), "entry_number": approved.entry_number},
        )
        return to_entry_read(approved)

    def get_entry(self, session: Session, ctx: BookkeepingContext, entry_id: uuid.UUID) -> JournalEntryRead:
        ctx.require_any_role(READ_ROLES)
        entry = self._load_entry(session, ctx.organization_id, entry_id)
        if entry is None:
            raise BookkeepingError(ErrorCode.NOT_FOUND, "journal entry not found")
        return to_entry_read(entry)

    def list_entries(
        self,
        session: Session,
        ctx: BookkeepingContext,
        *,
        from_date: date | None = None,
        to_date: date | None = None,
        status: JournalStatus | None = None,
        page: int = 1,
        limit: int = 20,
    ) -> JournalEntryPage:
        ctx.require_any_role(READ_ROLES)
        limit = max(1, min(limit, MAX_PAGE_SIZE))
        page = max(1, page)

        stmt: Select[tuple[JournalEntry]] = select(JournalEntry).where(JournalEntry.organization_id == ctx.organization_id)
        if from_date is not None:
            stmt = stmt.where(JournalEntry.entry_date >= from_date)
        if to_date is not None:
            stmt = stmt.where(JournalEntry.entry_date <= to_date)
        if status is not None:
            stmt = stmt.where(JournalEntry.status == status.value)

        total = session.scalar(select(func.count()).select_from(stmt.subquery())) or 0
        rows = session.scalars(
            stmt.options(selectinload(JournalEntry.lines).selectinload(JournalEntryLine.account))
            .order_by(JournalEntry.entry_date.desc(), JournalEntry.entry_number.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        ).all()
        return JournalEntryPage(
            data=[to_entry_read(row) for row in rows],
            meta=PageMeta(page=page, limit=limit, total=total, total_pages=math.ceil(total / limit)),
        )

    def _insert_entry(
        self,
        session: Session,
        ctx: BookkeepingContext,
        request: JournalEntryCreate,
        period_id: uuid.UUID,
    ) -> uuid.UUID:
        # Numbers are read-then-written; the unique constraint catches a racing
        # writer and the whole insert is retried with a fresh number.
        attempts = max(1, get_settings().entry_number_max_attempts)
        for attempt in range(1, attempts + 1):
            try:
                with transaction(session):
                    entry = JournalEntry(
                        organization_id=ctx.organization_id,
                        accounting_period_id=period_id,
                        entry_number=generate_entry_number(session, request.entry_date, ctx.organization_id),
                        entry_date=request.entry_date,
                        description=request.description,
                        document_number=request.document_number,
                        status=JournalStatus.DRAFT.value,
                        created_by=ctx.user_id,
                        lines=build_lines(request.lines),
                    )
                    session.add(entry)
                    session.flush()
                    entry_id = entry.id
                return entry_id
            except IntegrityError as exc:
                if not is_entry_number_conflict(exc):
                    raise
                logger.warning(
                    "journal_entry.number_conflict",
                    extra={"organization_id": ctx.organization_id, "attempt": attempt},
                )
        self._fail(ctx, ErrorCode.ENTRY_NUMBER_CONFLICT, "could not allocate a unique entry number")

    def _resolve_open_period(self, session: Session, ctx: BookkeepingContext, entry_date: date) -> AccountingPeriod:
        period = self.periods.resolve_period(session, entry_date, ctx.organization_id)
        if period is None:
            self._fail(ctx, ErrorCode.NO_ACCOUNTING_PERIOD, f"no accounting period covers {entry_date.isoformat()}")
        if not period.is_active:
            self._fail(ctx, ErrorCode.PERIOD_CLOSED, f"accounting period {period.name} is closed")
        return period

    def _require_minimum_lines(self, ctx: BookkeepingContext, lines: Sequence[JournalLineInput]) -> None:
        if len(lines) < MIN_LINES:
            self._fail(ctx, ErrorCode.VALIDATION_ERROR, f"a journal entry needs at least {MIN_LINES} lines")

    def _require_accounts(self, session: Session, ctx: BookkeepingContext, lines: Sequence[JournalLineInput]) -> None:
        requested = {line.account_id for line in lines}
        found = self.accounts.find_accounts_by_ids(session, requested, ctx.organization_id)
        if len(found) != len(requested):
            self._fail(ctx, ErrorCode.INVALID_ACCOUNT, "one or more accounts do not belong to the organization")

    def _require_draft(self, ctx: BookkeepingContext, entry: JournalEntry) -> None:
        if entry.status == JournalStatus.APPROVED.value:
            self._fail(ctx, ErrorCode.ENTRY_APPROVED, "approved entries cannot be changed")
        if entry.status != JournalStatus.DRAFT.value:
            self._fail(ctx, ErrorCode.ENTRY_NOT_EDITABLE, "only draft entries can be changed")

    def _get_scoped(
        self,
        session: Session,
        ctx: BookkeepingContext,
        entry_id: uuid.UUID,
        *,
        for_update: bool = False,
    ) -> JournalEntry:
        stmt = (
            select(JournalEntry)
            .where(JournalEntry.id == entry_id, JournalEntry.organization_id == ctx.organization_id)
            .options(selectinload(JournalEntry.lines))
            .execution_options(populate_existing=True)
        )
        if for_update:
            stmt = stmt.with_for_update()
        entry = session.scalar(stmt)
        if entry is None:
            self._fail(ctx, ErrorCode.NOT_FOUND, "journal entry not found")
        return entry

    def _load_entry(self, session: Session, organization_id: str, entry_id: uuid.UUID) -> JournalEntry | None:
        return session.scalar(
            select(JournalEntry)
            .where(JournalEntry.id == entry_id, JournalEntry.organization_id == organization_id)
            .options(selectinload(JournalEntry.lines).selectinload(JournalEntryLine.account))
            .execution_options(populate_existing=True)
        )

    def _fail(self, ctx: BookkeepingContext, code: ErrorCode, message: str) -> NoReturn:
        observe_journal_entry_failure(code.value.lower())
        logger.info(
            "journal_entry.rejected",
            extra={"organization_id": ctx.organization_id, "error_code": code.value, "error": message},
        )
        raise BookkeepingError(code, message)


journal_entry_service = JournalEntryService()
