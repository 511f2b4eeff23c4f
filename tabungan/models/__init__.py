"""
Data Models Package

This package contains all Pydantic models used in Tabungan Keluarga.
All data flowing through the system must conform to these schemas.
"""

from tabungan.models.registry import (
    AppliedBalanceChange,
    BalanceChange,
    Category,
    CategoryBase,
    CategoryKind,
    ExpenseCategory,
    FamilyMember,
    SavingsCategory,
    StorageAccount,
)
from tabungan.models.transaction import (
    DateRange,
    ExpenseTransaction,
    IncomeTransaction,
    SavingsTransaction,
    Transaction,
    TransactionFilters,
    TransactionInput,
    TransactionInputError,
    TransactionType,
    TransferTransaction,
    parse_transaction,
)
from tabungan.models.stats import (
    AccountValuation,
    AssetSummary,
    DashboardStatistics,
    ExpenseCategorySummary,
    MemberContribution,
    SavingsCategorySummary,
    Totals,
)
from tabungan.models.gold import (
    GoldPriceQuote,
    GoldPriceResult,
    PriceTier,
)

__all__ = [
    # Registry models
    "AppliedBalanceChange",
    "BalanceChange",
    "Category",
    "CategoryBase",
    "CategoryKind",
    "ExpenseCategory",
    "FamilyMember",
    "SavingsCategory",
    "StorageAccount",
    # Transaction models
    "DateRange",
    "ExpenseTransaction",
    "IncomeTransaction",
    "SavingsTransaction",
    "Transaction",
    "TransactionFilters",
    "TransactionInput",
    "TransactionInputError",
    "TransactionType",
    "TransferTransaction",
    "parse_transaction",
    # Statistics models
    "AccountValuation",
    "AssetSummary",
    "DashboardStatistics",
    "ExpenseCategorySummary",
    "MemberContribution",
    "SavingsCategorySummary",
    "Totals",
    # Gold price models
    "GoldPriceQuote",
    "GoldPriceResult",
    "PriceTier",
]
