from __future__ import annotations

import logging
import uuid
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import date

from sqlalchemy import Select, func, select
from sqlalchemy.orm import Session

from app.bookkeeping.context import ADMIN_ROLES, READ_ROLES, BookkeepingContext
from app.bookkeeping.errors import BookkeepingError, ErrorCode
from app.bookkeeping.models import AccountingPeriod, JournalEntry
from app.bookkeeping.schemas import AccountingPeriodCreate, AccountingPeriodRead
from app.core.database import transaction


logger = logging.getLogger("app.bookkeeping.periods")


def pick_covering_period(periods: Sequence[AccountingPeriod], entry_date: date) -> AccountingPeriod | None:
    """Select the period governing `entry_date` from an in-memory list, preferring open ones."""
    covering = [period for period in periods if period.start_date <= entry_date <= period.end_date]
    if not covering:
        return None
    covering.sort(key=lambda period: (not period.is_active, period.start_date))
    return covering[0]


@dataclass(slots=True)
class AccountingPeriodService:
    def resolve_period(self, session: Session, entry_date: date, organization_id: str) -> AccountingPeriod | None:
        """Find the period covering `entry_date`.

        Closed periods are returned too; refusing to post into them is the caller's decision.
        """
        return session.scalar(
            select(AccountingPeriod)
            .where(
                AccountingPeriod.organization_id == organization_id,
                AccountingPeriod.start_date <= entry_date,
                AccountingPeriod.end_date >= entry_date,
            )
            .order_by(AccountingPeriod.is_active.desc(), AccountingPeriod.start_date.asc())
            .limit(1)
        )

    def list_all_periods(self, session: Session, organization_id: str) -> list[AccountingPeriod]:
        return list(
            session.scalars(
                select(AccountingPeriod)
                .where(AccountingPeriod.organization_id == organization_id)
                .order_by(AccountingPeriod.start_date.asc())
            ).all()
        )

    def list_active_periods(self, session: Session, organization_id: str) -> list[AccountingPeriod]:
        return [period for period in self.list_all_periods(session, organization_id) if period.is_active]

    def list_periods(
        self,
        session: Session,
        ctx: BookkeepingContext,
        *,
        active: bool | None = None,
    ) -> list[AccountingPeriodRead]:
        ctx.require_any_role(READ_ROLES)
        stmt: Select[tuple[AccountingPeriod]] = select(AccountingPeriod).where(
            AccountingPeriod.organization_id == ctx.organization_id
        )
        if active is not None:
            stmt = stmt.where(AccountingPeriod.is_active.is_(active))
        rows = session.scalars(stmt.order_by(AccountingPeriod.start_date.desc())).all()
        return [AccountingPeriodRead.model_validate(item) for item in rows]

    def create_period(
        self,
        session: Session,
        ctx: BookkeepingContext,
        dto: AccountingPeriodCreate,
    ) -> AccountingPeriodRead:
        ctx.require_any_role(ADMIN_ROLES)
        if dto.start_date >= dto.end_date:
            raise BookkeepingError(ErrorCode.INVALID_PERIOD_RANGE, "start_date must be before end_date")

        overlapping = session.scalar(
            select(AccountingPeriod)
            .where(
                AccountingPeriod.organization_id == ctx.organization_id,
                AccountingPeriod.start_date <= dto.end_date,
                AccountingPeriod.end_date >= dto.start_date,
            )
            .limit(1)
        )
        if overlapping is not None:
            raise BookkeepingError(
                ErrorCode.PERIOD_OVERLAP,
                f"period overlaps {overlapping.name} ({overlapping.start_date} - {overlapping.end_date})",
            )

        period = AccountingPeriod(organization_id=ctx.organization_id, **dto.model_dump(mode="python"))
        with transaction(session):
            session.add(period)
        session.refresh(period)
        logger.info("period.created", extra={"organization_id": ctx.organization_id, "period_id": str(period.id)})
        return AccountingPeriodRead.model_validate(period)

    def close_period(self, session: Session, ctx: BookkeepingContext, period_id: uuid.UUID) -> AccountingPeriodRead:
        return self._set_open(session, ctx, period_id, is_active=False)

    def reopen_period(self, session: Session, ctx: BookkeepingContext, period_id: uuid.UUID) -> AccountingPeriodRead:
        return self._set_open(session, ctx, period_id, is_active=True)

    def delete_period(self, session: Session, ctx: BookkeepingContext, period_id: uuid.UUID) -> None:
        ctx.require_any_role(ADMIN_ROLES)
        with transaction(session):
            period = self._get_scoped(session, ctx, period_id)
            if period.is_active:
                raise BookkeepingError(ErrorCode.PERIOD_OPEN, "close the accounting period before deleting it")
            entry_count = session.scalar(
                select(func.count()).select_from(JournalEntry).where(JournalEntry.accounting_period_id == period.id)
            )
            if entry_count:
                raise BookkeepingError(
                    ErrorCode.PERIOD_HAS_ENTRIES,
                    f"accounting period has {entry_count} journal entries",
                )
            session.delete(period)
        logger.info("period.deleted", extra={"organization_id": ctx.organization_id, "period_id": str(period_id)})

    def _set_open(
        self,
        session: Session,
        ctx: BookkeepingContext,
        period_id: uuid.UUID,
        *,
        is_active: bool,
    ) -> AccountingPeriodRead:
        ctx.require_any_role(ADMIN_ROLES)
        with transaction(session):
            period = self._get_scoped(session, ctx, period_id)
            period.is_active = is_active
        session.refresh(period)
        logger.info(
            "period.reopened" if is_active else "period.closed",
            extra={"organization_id": ctx.organization_id, "period_id": str(period_id)},
        )
        return AccountingPeriodRead.model_validate(period)

    def _get_scoped(self, session: Session, ctx: BookkeepingContext, period_id: uuid.UUID) -> AccountingPeriod:
        period = session.scalar(
            select(AccountingPeriod).where(
                AccountingPeriod.id == period_id,
                AccountingPeriod.organization_id == ctx.organization_id,
            )
        )
        if period is None:
            raise BookkeepingError(ErrorCode.NOT_FOUND, "accounting period not found")
        return period


accounting_period_service = AccountingPeriodService()
