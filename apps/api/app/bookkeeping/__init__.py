from app.bookkeeping.api import accounts_router, periods_router, router
from app.bookkeeping.balance import validate_balance
from app.bookkeeping.errors import BookkeepingError, CsvImportError, ErrorCode
from app.bookkeeping.importer import JournalEntryImporter, journal_entry_importer
from app.bookkeeping.models import Account, AccountingPeriod, JournalEntry, JournalEntryLine, JournalStatus
from app.bookkeeping.numbering import EntryNumberSequencer, generate_entry_number
from app.bookkeeping.service import JournalEntryService, journal_entry_service

__all__ = [
    "router",
    "accounts_router",
    "periods_router",
    "Account",
    "AccountingPeriod",
    "JournalEntry",
    "JournalEntryLine",
    "JournalStatus",
    "BookkeepingError",
    "CsvImportError",
    "ErrorCode",
    "EntryNumberSequencer",
    "generate_entry_number",
    "validate_balance",
    "JournalEntryImporter",
    "journal_entry_importer",
    "JournalEntryService",
    "journal_entry_service",
]
