"""Journal entry numbers: ``YYYYMM`` of the entry date plus a 4-digit sequence.

The format is consumed by downstream reporting and must stay exactly ten
characters, e.g. ``2024030007``.
"""

from __future__ import annotations

from datetime import date

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from app.bookkeeping.errors import BookkeepingError, ErrorCode
from app.bookkeeping.models import JournalEntry


ENTRY_NUMBER_SEQUENCE_LENGTH = 4
MAX_SEQUENCE = 10**ENTRY_NUMBER_SEQUENCE_LENGTH - 1


def year_month_of(entry_date: date) -> str:
    return f"{entry_date.year:04d}{entry_date.month:02d}"


def sequence_of(entry_number: str) -> int:
    return int(entry_number[-ENTRY_NUMBER_SEQUENCE_LENGTH:])


def format_entry_number(year_month: str, sequence: int) -> str:
    if sequence > MAX_SEQUENCE:
        raise BookkeepingError(
            ErrorCode.ENTRY_NUMBER_EXHAUSTED,
            f"no entry numbers left for {year_month}",
        )
    return f"{year_month}{sequence:0{ENTRY_NUMBER_SEQUENCE_LENGTH}d}"


def last_entry_number(session: Session, organization_id: str, year_month: str) -> str | None:
    return session.scalar(
        select(func.max(JournalEntry.entry_number)).where(
            JournalEntry.organization_id == organization_id,
            JournalEntry.entry_number.like(f"{year_month}%"),
        )
    )


def generate_entry_number(session: Session, entry_date: date, organization_id: str) -> str:
    """Next number for the entry's posting month.

    Must run inside the same transaction as the insert that consumes it.
    """
    year_month = year_month_of(entry_date)
    last = last_entry_number(session, organization_id, year_month)
    sequence = sequence_of(last) + 1 if last else 1
    return format_entry_number(year_month, sequence)


class EntryNumberSequencer:
    """Per-batch counters so a bulk import issues numbers without one query per row.

    Scoped to a single transaction; never share an instance between requests.
    """

    def __init__(self, last_sequences: dict[str, int] | None = None) -> None:
        self._last_sequences: dict[str, int] = dict(last_sequences or {})

    @classmethod
    def preload(cls, session: Session, organization_id: str) -> EntryNumberSequencer:
        year_month = func.substr(JournalEntry.entry_number, 1, 6)
        rows = session.execute(
            select(year_month, func.max(JournalEntry.entry_number))
            .where(JournalEntry.organization_id == organization_id)
            .group_by(year_month)
        ).all()
        return cls({prefix: sequence_of(last) for prefix, last in rows if last})

    def peek(self, entry_date: date) -> str:
        year_month = year_month_of(entry_date)
        return format_entry_number(year_month, self._last_sequences.get(year_month, 0) + 1)

    def next(self, entry_date: date) -> str:
        entry_number = self.peek(entry_date)
        self._last_sequences[year_month_of(entry_date)] = sequence_of(entry_number)
        return entry_number
