from __future__ import annotations

from datetime import date
import uuid

from fastapi import APIRouter, Depends, File, Header, Query, Request, Response, UploadFile, status
from sqlalchemy.orm import Session

from app.bookkeeping.accounts import account_service
from app.bookkeeping.context import BookkeepingContext
from app.bookkeeping.errors import BookkeepingError, ErrorCode
from app.bookkeeping.importer import journal_entry_importer
from app.bookkeeping.models import JournalStatus
from app.bookkeeping.periods import accounting_period_service
from app.bookkeeping.schemas import (
    AccountCreate,
    AccountRead,
    AccountingPeriodCreate,
    AccountingPeriodRead,
    JournalEntryCreate,
    JournalEntryPage,
    JournalEntryRead,
    JournalEntryUpdate,
    JournalImportResult,
)
from app.bookkeeping.service import journal_entry_service
from app.context import get_correlation_id
from app.core.auth import AuthUser, get_current_user as get_auth_user
from app.core.database import get_db


router = APIRouter(prefix="/api/journal-entries", tags=["bookkeeping.journal_entries"])
accounts_router = APIRouter(prefix="/api/accounts", tags=["bookkeeping.accounts"])
periods_router = APIRouter(prefix="/api/accounting-periods", tags=["bookkeeping.periods"])


def get_bookkeeping_context(
    request: Request,
    auth_user: AuthUser = Depends(get_auth_user),
    organization_id: str | None = Header(default=None, alias="x-organization-id"),
) -> BookkeepingContext:
    if not organization_id or not organization_id.strip():
        raise BookkeepingError(ErrorCode.ORGANIZATION_REQUIRED, "x-organization-id header is required")
    correlation_id = get_correlation_id() or getattr(request.state, "correlation_id", None)
    return BookkeepingContext(
        organization_id=organization_id.strip(),
        user_id=auth_user.sub,
        roles=[str(role) for role in auth_user.roles],
        correlation_id=correlation_id,
    )


@router.post("", response_model=JournalEntryRead, status_code=status.HTTP_201_CREATED)
def create_journal_entry(
    payload: JournalEntryCreate,
    db: Session = Depends(get_db),
    ctx: BookkeepingContext = Depends(get_bookkeeping_context),
) -> JournalEntryRead:
    return journal_entry_service.create_entry(db, ctx, payload)


@router.get("", response_model=JournalEntryPage)
def list_journal_entries(
    from_date: date | None = Query(default=None, alias="from"),
    to_date: date | None = Query(default=None, alias="to"),
    entry_status: JournalStatus | None = Query(default=None, alias="status"),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1),
    db: Session = Depends(get_db),
    ctx: BookkeepingContext = Depends(get_bookkeeping_context),
) -> JournalEntryPage:
    return journal_entry_service.list_entries(
        db,
        ctx,
        from_date=from_date,
        to_date=to_date,
        status=entry_status,
        page=page,
        limit=limit,
    )


@router.post("/import", response_model=JournalImportResult, status_code=status.HTTP_201_CREATED)
def import_journal_entries(
    file: UploadFile = File(...),
    db: Session = Depends(get_db),
    ctx: BookkeepingContext = Depends(get_bookkeeping_context),
) -> JournalImportResult:
    payload = file.file.read()
    entries = journal_entry_importer.import_csv(db, ctx, payload)
    return JournalImportResult(created=len(entries), entries=entries)


@router.get("/{entry_id}", response_model=JournalEntryRead)
def get_journal_entry(
    entry_id: uuid.UUID,
    db: Session = Depends(get_db),
    ctx: BookkeepingContext = Depends(get_bookkeeping_context),
) -> JournalEntryRead:
    return journal_entry_service.get_entry(db, ctx, entry_id)


@router.put("/{entry_id}", response_model=JournalEntryRead)
def update_journal_entry(
    entry_id: uuid.UUID,
    payload: JournalEntryUpdate,
    db: Session = Depends(get_db),
    ctx: BookkeepingContext = Depends(get_bookkeeping_context),
) -> JournalEntryRead:
    return journal_entry_service.update_entry(db, ctx, entry_id, payload)


@router.delete("/{entry_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_journal_entry(
    entry_id: uuid.UUID,
    db: Session = Depends(get_db),
    ctx: BookkeepingContext = Depends(get_bookkeeping_context),
) -> Response:
    journal_entry_service.delete_entry(db, ctx, entry_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/{entry_id}/approve", response_model=JournalEntryRead)
def approve_journal_entry(
    entry_id: uuid.UUID,
    db: Session = Depends(get_db),
    ctx: BookkeepingContext = Depends(get_bookkeeping_context),
) -> JournalEntryRead:
    return journal_entry_service.approve_entry(db, ctx, entry_id)


@accounts_router.get("", response_model=list[AccountRead])
def list_accounts(
    active: bool | None = Query(default=None),
    db: Session = Depends(get_db),
    ctx: BookkeepingContext = Depends(get_bookkeeping_context),
) -> list[AccountRead]:
    return account_service.list_accounts(db, ctx, active=active)


@accounts_router.post("", response_model=AccountRead, status_code=status.HTTP_201_CREATED)
def create_account(
    payload: AccountCreate,
    db: Session = Depends(get_db),
    ctx: BookkeepingContext = Depends(get_bookkeeping_context),
) -> AccountRead:
    return account_service.create_account(db, ctx, payload)


@accounts_router.post("/seed", response_model=list[AccountRead])
def seed_chart_of_accounts(
    db: Session = Depends(get_db),
    ctx: BookkeepingContext = Depends(get_bookkeeping_context),
) -> list[AccountRead]:
    return account_service.seed_chart_of_accounts(db, ctx)


@periods_router.get("", response_model=list[AccountingPeriodRead])
def list_accounting_periods(
    active: bool | None = Query(default=None),
    db: Session = Depends(get_db),
    ctx: BookkeepingContext = Depends(get_bookkeeping_context),
) -> list[AccountingPeriodRead]:
    return accounting_period_service.list_periods(db, ctx, active=active)


@periods_router.post("", response_model=AccountingPeriodRead, status_code=status.HTTP_201_CREATED)
def create_accounting_period(
    payload: AccountingPeriodCreate,
    db: Session = Depends(get_db),
    ctx: BookkeepingContext = Depends(get_bookkeeping_context),
) -> AccountingPeriodRead:
    return accounting_period_service.create_period(db, ctx, payload)


@periods_router.post("/{period_id}/close", response_model=AccountingPeriodRead)
def close_accounting_period(
    period_id: uuid.UUID,
    db: Session = Depends(get_db),
    ctx: BookkeepingContext = Depends(get_bookkeeping_context),
) -> AccountingPeriodRead:
    return accounting_period_service.close_period(db, ctx, period_id)


@periods_router.post("/{period_id}/reopen", response_model=AccountingPeriodRead)
def reopen_accounting_period(
    period_id: uuid.UUID,
    db: Session = Depends(get_db),
    ctx: BookkeepingContext = Depends(get_bookkeeping_context),
) -> AccountingPeriodRead:
    return accounting_period_service.reopen_period(db, ctx, period_id)


@periods_router.delete("/{period_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_accounting_period(
    period_id: uuid.UUID,
    db: Session = Depends(get_db),
    ctx: BookkeepingContext = Depends(get_bookkeeping_context),
) -> Response:
    accounting_period_service.delete_period(db, ctx, period_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
