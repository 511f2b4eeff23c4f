"""
Storage Services Package

Provides abstract interfaces and concrete implementations for data storage.
The in-memory backend serves tests and single-process use; Google Sheets is
the persistent backend. Both follow the same interface, so they are swappable.
"""

from tabungan.services.storage.interface import (
    AccountStorageInterface,
    CategoryStorageInterface,
    ConnectionError,
    DuplicateError,
    FamilyMemberStorageInterface,
    LedgerOperation,
    LedgerStorageInterface,
    LedgerWrite,
    NotFoundError,
    PersistenceError,
    StorageError,
    TransactionStorageInterface,
    stage_balance_changes,
)
from tabungan.services.storage.memory import InMemoryLedgerStorage
from tabungan.services.storage.google_sheets import (
    GoogleSheetsClient,
    GoogleSheetsLedgerStorage,
    SheetTable,
)

__all__ = [
    # Interfaces
    "AccountStorageInterface",
    "CategoryStorageInterface",
    "FamilyMemberStorageInterface",
    "LedgerStorageInterface",
    "TransactionStorageInterface",
    "LedgerOperation",
    "LedgerWrite",
    "stage_balance_changes",
    # Exceptions
    "ConnectionError",
    "DuplicateError",
    "NotFoundError",
    "PersistenceError",
    "StorageError",
    # Implementations
    "InMemoryLedgerStorage",
    "GoogleSheetsClient",
    "GoogleSheetsLedgerStorage",
    "SheetTable",
]
