"""
Dashboard Statistics

DESIGN DECISION: Statistics are recomputed from the persisted ledger on
every request. There are no incrementally maintained aggregates to drift
out of sync with the transactions.

compute() is a pure function of the (already filtered) transactions and
the registries. get_statistics() only gathers those inputs from storage.

Categories and members with no matching transactions report zero rather
than being left out; non_zero_only drops the empty category rows for views
that want them gone.
"""

from decimal import Decimal
from typing import Iterable, Optional

from tabungan.config import get_settings
from tabungan.logger import get_logger
from tabungan.models.registry import (
    CategoryKind,
    ExpenseCategory,
    FamilyMember,
    SavingsCategory,
)
from tabungan.models.stats import (
    ZERO,
    DashboardStatistics,
    ExpenseCategorySummary,
    MemberContribution,
    SavingsCategorySummary,
    Totals,
)
from tabungan.models.transaction import (
    DateRange,
    Transaction,
    TransactionFilters,
    TransactionType,
    sort_newest_first,
)
from tabungan.services.storage import LedgerStorageInterface


logger = get_logger(__name__)


def _sum(transactions: Iterable[Transaction]) -> Decimal:
    return sum((tx.amount for tx in transactions), ZERO)


class StatisticsAggregator:
    """
    Derives dashboard numbers by scanning the transaction ledger.

    GUARANTEES:
    - Read only; never mutates storage
    - Transfers move money between own accounts and count in no total
    - Transactions pointing at deleted categories or members still count in
      the totals, just not in any per-category or per-member row
    """

    def __init__(
        self,
        storage: LedgerStorageInterface,
        recent_limit: Optional[int] = None,
    ):
        self._storage = storage
        self._recent_limit = recent_limit or get_settings().ledger.recent_transactions_limit

    @staticmethod
    def compute(
        transactions: list[Transaction],
        savings_categories: list[SavingsCategory],
        expense_categories: list[ExpenseCategory],
        members: list[FamilyMember],
        recent_limit: int = 10,
        non_zero_only: bool = False,
        date_range: Optional[DateRange] = None,
    ) -> DashboardStatistics:
        """Aggregate a filtered transaction set into dashboard statistics."""
        by_type: dict[TransactionType, list[Transaction]] = {t: [] for t in TransactionType}
        for tx in transactions:
            by_type[tx.type].append(tx)

        income = by_type[TransactionType.INCOME]
        expenses = by_type[TransactionType.EXPENSE]
        savings = by_type[TransactionType.SAVINGS]

        totals = Totals(
            income=_sum(income),
            expenses=_sum(expenses),
            savings=_sum(savings),
        )

        savings_rows = [
            SavingsCategorySummary(
                category_id=category.id,
                category=category.name,
                amount=_sum(tx for tx in savings if tx.savings_category_id == category.id),
                target=category.target_amount,
                color=category.color,
                icon=category.icon,
            )
            for category in savings_categories
        ]

        expense_rows = [
            ExpenseCategorySummary(
                category_id=category.id,
                category=category.name,
                amount=_sum(tx for tx in expenses if tx.expense_category_id == category.id),
                budget=category.budget_limit,
                color=category.color,
                icon=category.icon,
            )
            for category in expense_categories
        ]

        contributions = [
            MemberContribution(
                member_id=member.id,
                name=member.name,
                role=member.role,
                avatar=member.avatar,
                income=_sum(tx for tx in income if tx.family_member_id == member.id),
                savings=_sum(tx for tx in savings if tx.family_member_id == member.id),
            )
            for member in members
        ]

        if non_zero_only:
            savings_rows = [row for row in savings_rows if row.amount > 0]
            expense_rows = [row for row in expense_rows if row.amount > 0]

        ordered = sort_newest_first(transactions)

        return DashboardStatistics(
            date_range=date_range,
            totals=totals,
            savings_by_category=savings_rows,
            expenses_by_category=expense_rows,
            member_contributions=contributions,
            recent=ordered[:recent_limit],
            count=len(transactions),
        )

    async def get_statistics(
        self,
        date_range: Optional[DateRange] = None,
        month: Optional[str] = None,
        non_zero_only: bool = False,
    ) -> DashboardStatistics:
        """
        Statistics for a date range, or for a whole month given as 'YYYY-MM'.

        An explicit date_range wins over month. With neither, the whole
        ledger is scanned.

        Raises:
            ValueError: month is not in YYYY-MM form
            StorageError: storage could not be read
        """
        if date_range is None and month:
            date_range = DateRange.for_month(month)

        transactions = await self._storage.list_transactions(
            TransactionFilters(date_range=date_range)
        )
        savings_categories = await self._storage.list_categories(CategoryKind.SAVINGS)
        expense_categories = await self._storage.list_categories(CategoryKind.EXPENSE)
        members = await self._storage.list_members()

        stats = self.compute(
            transactions,
            savings_categories,
            expense_categories,
            members,
            recent_limit=self._recent_limit,
            non_zero_only=non_zero_only,
            date_range=date_range,
        )
        logger.debug(
            "statistics_computed",
            count=stats.count,
            start=str(date_range.start) if date_range and date_range.start else None,
            end=str(date_range.end) if date_range and date_range.end else None,
        )
        return stats
