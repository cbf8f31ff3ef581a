from __future__ import annotations

from collections.abc import Generator
from datetime import date

import pytest
from sqlalchemy import create_engine, func, select
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from app.bookkeeping.context import BookkeepingContext
from app.bookkeeping.errors import BookkeepingError, CsvImportError, ErrorCode
from app.bookkeeping.importer import JournalEntryImporter, parse_csv_records
from app.bookkeeping.models import Account, AccountingPeriod, JournalEntry
from app.bookkeeping.schemas import CsvJournalRecord
from app.core.config import get_settings
from app.core.database import Base


@pytest.fixture()
def db_session() -> Generator[Session, None, None]:
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False)
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture(autouse=True)
def clear_settings() -> Generator[None, None, None]:
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture(autouse=True)
def chart(db_session: Session) -> None:
    for code, name, account_type in (
        ("1110", "Cash", "ASSET"),
        ("4110", "Sales", "REVENUE"),
        ("5110", "Purchases", "EXPENSE"),
    ):
        db_session.add(Account(organization_id="org-a", code=code, name=name, account_type=account_type, is_active=True))
    db_session.add(Account(organization_id="org-a", code="9990", name="Retired", account_type="EXPENSE", is_active=False))
    db_session.add(
        AccountingPeriod(
            organization_id="org-a",
            name="FY2024",
            start_date=date(2024, 1, 1),
            end_date=date(2024, 12, 31),
            is_active=True,
        )
    )
    db_session.add(
        AccountingPeriod(
            organization_id="org-a",
            name="FY2023",
            start_date=date(2023, 1, 1),
            end_date=date(2023, 12, 31),
            is_active=False,
        )
    )
    db_session.commit()


def _ctx(roles: list[str] | None = None) -> BookkeepingContext:
    return BookkeepingContext(organization_id="org-a", user_id="importer-1", roles=roles or ["accountant"])


def _entry_count(session: Session) -> int:
    return session.scalar(select(func.count()).select_from(JournalEntry)) or 0


def test_import_creates_one_draft_entry_per_row(db_session: Session) -> None:
    payload = (
        "date,debit_account,credit_account,amount,description\n"
        "2024-03-01,Cash,Sales,1000,Cash sale\n"
        "2024/03/05,Purchases,Cash,\"2,500.50\",Stock\n"
    ).encode("utf-8")

    entries = JournalEntryImporter().import_csv(db_session, _ctx(), payload)

    assert [entry.entry_number for entry in entries] == ["2024030001", "2024030002"]
    assert all(entry.status == "DRAFT" for entry in entries)
    first, second = entries
    assert first.description == "Cash sale"
    assert [line.account.name for line in first.lines] == ["Cash", "Sales"]
    assert str(second.lines[0].debit_amount) == "2500.50"
    assert second.lines[1].credit_amount == second.lines[0].debit_amount
    assert second.entry_date == date(2024, 3, 5)


def test_one_bad_row_rejects_the_whole_file(db_session: Session) -> None:
    payload = (
        "date,debit_account,credit_account,amount,description\n"
        "2024-03-01,Cash,Sales,1000,ok\n"
        "2024-03-02,Unknown,Sales,500,bad\n"
        "2024-03-03,Cash,Sales,700,ok\n"
    ).encode("utf-8")

    with pytest.raises(CsvImportError) as exc_info:
        JournalEntryImporter().import_csv(db_session, _ctx(), payload)

    assert exc_info.value.code == ErrorCode.CSV_IMPORT_FAILED
    assert exc_info.value.errors == ['Row 2: debit account "Unknown" not found']
    assert exc_info.value.details == exc_info.value.errors
    assert _entry_count(db_session) == 0


def test_every_failing_row_is_reported(db_session: Session) -> None:
    payload = (
        "date,debit_account,credit_account,amount,description\n"
        "2024-03-01,Cash,Nowhere,100,\n"
        "2024-03-01,Cash,Sales,abc,\n"
        "2024-03-01,Cash,Sales,-5,\n"
        "2024.03.01,Cash,Sales,100,\n"
        "2030-01-01,Cash,Sales,100,\n"
        "2023-06-01,Cash,Sales,100,\n"
        "2024-03-01,Retired,Sales,100,\n"
        "2024-03-01,Cash,Sales,0.004,\n"
        "2024-03-01,Cash,Sales,12.345,\n"
        "2024-03-01,Cash,Sales,1e30,\n"
        "2024-03-01,Cash,Sales,10000000000000000,\n"
        "2024-03-01,Cash,Sales,100,fine\n"
    ).encode("utf-8")

    with pytest.raises(CsvImportError) as exc_info:
        JournalEntryImporter().import_csv(db_session, _ctx(), payload)

    assert exc_info.value.errors == [
        'Row 1: credit account "Nowhere" not found',
        'Row 2: invalid amount "abc"',
        'Row 3: invalid amount "-5"',
        'Row 4: invalid date "2024.03.01"',
        'Row 5: no accounting period covers "2030-01-01"',
        "Row 6: accounting period FY2023 is closed",
        'Row 7: debit account "Retired" not found',
        'Row 8: invalid amount "0.004"',
        'Row 9: invalid amount "12.345"',
        'Row 10: invalid amount "1e30"',
        'Row 11: invalid amount "10000000000000000"',
    ]
    assert _entry_count(db_session) == 0


@pytest.mark.parametrize("amount", ["0.004", "0.001", "1e-9", "1e30", "9999999999999999.995", "NaN", "Infinity", ""])
def test_amounts_that_cannot_be_stored_are_row_errors(db_session: Session, amount: str) -> None:
    record = CsvJournalRecord(entry_date="2024-03-01", debit_account_name="Cash", credit_account_name="Sales", amount=amount)

    with pytest.raises(CsvImportError) as exc_info:
        JournalEntryImporter().import_records(db_session, _ctx(), [record])

    assert exc_info.value.errors == [f'Row 1: invalid amount "{amount}"']
    assert _entry_count(db_session) == 0


def test_accounts_by_code_yen_amounts_and_day_first_dates(db_session: Session) -> None:
    payload = (
        "date,debit_account,credit_account,amount,description\n"
        "15/03/2024,1110,4110,\"¥1,200\",By code\n"
        "2024-03-16,Purchases,1110,￥800.50,Mixed\n"
    ).encode("utf-8")

    entries = JournalEntryImporter().import_csv(db_session, _ctx(), payload)

    first, second = entries
    assert first.entry_date == date(2024, 3, 15)
    assert [line.account.name for line in first.lines] == ["Cash", "Sales"]
    assert str(first.lines[0].debit_amount) == "1200.00"
    assert [line.account.code for line in second.lines] == ["5110", "1110"]
    assert str(second.lines[1].credit_amount) == "800.50"


def test_missing_columns_are_rejected(db_session: Session) -> None:
    payload = "date,debit_account,amount\n2024-03-01,Cash,100\n".encode("utf-8")

    with pytest.raises(BookkeepingError) as exc_info:
        JournalEntryImporter().import_csv(db_session, _ctx(), payload)

    assert exc_info.value.code == ErrorCode.INVALID_CSV_HEADER
    assert exc_info.value.status_code == 400
    assert exc_info.value.details == {"missing": ["credit_account_name"]}


def test_japanese_headers_with_bom_and_blank_lines(db_session: Session) -> None:
    payload = (
        "\ufeff日付,借方勘定,貸方勘定,金額,摘要\n"
        "2024-04-10,Cash,Sales,300,売上\n"
        "\n"
        ",,,,\n"
        "2024-04-11,Cash,Sales,200,売上\n"
    ).encode("utf-8")

    entries = JournalEntryImporter().import_csv(db_session, _ctx(), payload)

    assert [entry.entry_number for entry in entries] == ["2024040001", "2024040002"]
    assert entries[0].description == "売上"


def test_import_continues_existing_month_sequence(db_session: Session) -> None:
    importer = JournalEntryImporter()
    importer.import_csv(db_session, _ctx(), b"date,debit_account,credit_account,amount\n2024-05-01,Cash,Sales,10\n")

    entries = importer.import_csv(
        db_session,
        _ctx(),
        b"date,debit_account,credit_account,amount\n2024-05-02,Cash,Sales,20\n2024-06-01,Cash,Sales,30\n",
    )

    assert [entry.entry_number for entry in entries] == ["2024050002", "2024060001"]
    assert entries[0].description == ""


def test_row_limit_is_enforced(db_session: Session, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("CSV_IMPORT_MAX_ROWS", "2")
    get_settings.cache_clear()
    text = "date,debit_account,credit_account,amount\n" + "2024-03-01,Cash,Sales,1\n" * 3

    with pytest.raises(BookkeepingError) as exc_info:
        parse_csv_records(text)
    assert exc_info.value.code == ErrorCode.CSV_TOO_LARGE


def test_non_utf8_payload_is_rejected(db_session: Session) -> None:
    payload = "date,debit_account,credit_account,amount\n2024-03-01,現金,Sales,1\n".encode("shift_jis")

    with pytest.raises(BookkeepingError) as exc_info:
        JournalEntryImporter().import_csv(db_session, _ctx(), payload)
    assert exc_info.value.code == ErrorCode.VALIDATION_ERROR
    assert isinstance(exc_info.value.__cause__, UnicodeDecodeError)


def test_viewer_cannot_import(db_session: Session) -> None:
    with pytest.raises(BookkeepingError) as exc_info:
        JournalEntryImporter().import_csv(
            db_session,
            _ctx(["viewer"]),
            b"date,debit_account,credit_account,amount\n2024-03-01,Cash,Sales,1\n",
        )
    assert exc_info.value.code == ErrorCode.FORBIDDEN
