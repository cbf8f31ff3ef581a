from __future__ import annotations

import logging
import uuid
from collections.abc import Iterable
from dataclasses import dataclass

from sqlalchemy import Select, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.bookkeeping.context import ADMIN_ROLES, READ_ROLES, BookkeepingContext
from app.bookkeeping.errors import BookkeepingError, ErrorCode
from app.bookkeeping.models import Account, AccountType
from app.bookkeeping.schemas import AccountCreate, AccountRead
from app.core.database import transaction


logger = logging.getLogger("app.bookkeeping.accounts")

DEFAULT_CHART: list[tuple[str, str, AccountType]] = [
    ("1110", "Cash", AccountType.ASSET),
    ("1130", "Accounts Receivable", AccountType.ASSET),
    ("2110", "Accounts Payable", AccountType.LIABILITY),
    ("3110", "Capital", AccountType.EQUITY),
    ("4110", "Sales", AccountType.REVENUE),
    ("5110", "Purchases", AccountType.EXPENSE),
    ("5210", "Salaries", AccountType.EXPENSE),
]


@dataclass(slots=True)
class AccountService:
    """Read-mostly account directory; the journal only needs existence and type lookups."""

    def find_accounts_by_ids(
        self,
        session: Session,
        ids: Iterable[uuid.UUID],
        organization_id: str,
    ) -> list[Account]:
        unique_ids = set(ids)
        if not unique_ids:
            return []
        return list(
            session.scalars(
                select(Account).where(Account.id.in_(unique_ids), Account.organization_id == organization_id)
            ).all()
        )

    def find_account_by_name(self, session: Session, name: str, organization_id: str) -> Account | None:
        return session.scalar(
            select(Account)
            .where(Account.organization_id == organization_id, Account.name == name)
            .order_by(Account.is_active.desc(), Account.code.asc())
            .limit(1)
        )

    def list_active_accounts(self, session: Session, organization_id: str) -> list[Account]:
        return list(
            session.scalars(
                select(Account)
                .where(Account.organization_id == organization_id, Account.is_active.is_(True))
                .order_by(Account.code.asc())
            ).all()
        )

    def list_accounts(
        self,
        session: Session,
        ctx: BookkeepingContext,
        *,
        active: bool | None = None,
    ) -> list[AccountRead]:
        ctx.require_any_role(READ_ROLES)
        stmt: Select[tuple[Account]] = select(Account).where(Account.organization_id == ctx.organization_id)
        if active is not None:
            stmt = stmt.where(Account.is_active.is_(active))
        rows = session.scalars(stmt.order_by(Account.code.asc())).all()
        return [AccountRead.model_validate(item) for item in rows]

    def create_account(self, session: Session, ctx: BookkeepingContext, dto: AccountCreate) -> AccountRead:
        ctx.require_any_role(ADMIN_ROLES)
        account = Account(organization_id=ctx.organization_id, **dto.model_dump(mode="python"))
        try:
            with transaction(session):
                session.add(account)
        except IntegrityError as exc:
            raise BookkeepingError(ErrorCode.DUPLICATE_ACCOUNT_CODE, f"account code {dto.code} already exists") from exc
        session.refresh(account)
        return AccountRead.model_validate(account)

    def seed_chart_of_accounts(self, session: Session, ctx: BookkeepingContext) -> list[AccountRead]:
        ctx.require_any_role(ADMIN_ROLES)
        existing_codes = set(
            session.scalars(select(Account.code).where(Account.organization_id == ctx.organization_id)).all()
        )

        created: list[Account] = []
        with transaction(session):
            for code, name, account_type in DEFAULT_CHART:
                if code in existing_codes:
                    continue
                account = Account(
                    organization_id=ctx.organization_id,
                    code=code,
                    name=name,
                    account_type=account_type.value,
                    is_active=True,
                )
                session.add(account)
                created.append(account)

        logger.info("accounts.seeded", extra={"organization_id": ctx.organization_id, "row_count": len(created)})
        return [AccountRead.model_validate(item) for item in created]


account_service = AccountService()
