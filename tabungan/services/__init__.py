"""Services package."""

from tabungan.services.gold import (
    ExternalServiceError,
    GoldPriceCache,
    GoldPriceError,
    GoldPriceOracle,
    RequestsGoldPriceSource,
)
from tabungan.services.storage import (
    ConnectionError,
    DuplicateError,
    GoogleSheetsClient,
    GoogleSheetsLedgerStorage,
    InMemoryLedgerStorage,
    LedgerStorageInterface,
    NotFoundError,
    PersistenceError,
    StorageError,
)

__all__ = [
    # Gold price services
    "ExternalServiceError",
    "GoldPriceCache",
    "GoldPriceError",
    "GoldPriceOracle",
    "RequestsGoldPriceSource",
    # Storage services
    "ConnectionError",
    "DuplicateError",
    "GoogleSheetsClient",
    "GoogleSheetsLedgerStorage",
    "InMemoryLedgerStorage",
    "LedgerStorageInterface",
    "NotFoundError",
    "PersistenceError",
    "StorageError",
]
