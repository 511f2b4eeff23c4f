"""Tests for the statistics aggregator."""

from datetime import date
from decimal import Decimal
from uuid import uuid4

from tabungan.models.registry import ExpenseCategory, FamilyMember, SavingsCategory
from tabungan.models.transaction import (
    DateRange,
    ExpenseTransaction,
    IncomeTransaction,
    SavingsTransaction,
    TransferTransaction,
)
from tabungan.queries import StatisticsAggregator


ACCOUNT = uuid4()
OTHER_ACCOUNT = uuid4()


def income(amount: str, day: date, member=None):
    return IncomeTransaction(
        amount=Decimal(amount), to_account_id=ACCOUNT, date=day, family_member_id=member
    )


class TestCompute:
    """Tests for the pure aggregation."""

    def setup_method(self):
        self.ayah = FamilyMember(name="Budi", role="Ayah")
        self.ibu = FamilyMember(name="Sari", role="Ibu")
        self.darurat = SavingsCategory(name="Dana Darurat", target_amount=Decimal("1000000"))
        self.liburan = SavingsCategory(name="Liburan")
        self.dapur = ExpenseCategory(name="Dapur", budget_limit=Decimal("200000"))
        self.listrik = ExpenseCategory(name="Listrik")

        self.transactions = [
            income("3000000", date(2024, 5, 1), self.ayah.id),
            income("1000000", date(2024, 5, 2), self.ibu.id),
            ExpenseTransaction(
                amount=Decimal("250000"),
                from_account_id=ACCOUNT,
                expense_category_id=self.dapur.id,
                date=date(2024, 5, 3),
            ),
            SavingsTransaction(
                amount=Decimal("500000"),
                from_account_id=ACCOUNT,
                savings_category_id=self.darurat.id,
                family_member_id=self.ayah.id,
                date=date(2024, 5, 4),
            ),
            TransferTransaction(
                amount=Decimal("999999"),
                from_account_id=ACCOUNT,
                to_account_id=OTHER_ACCOUNT,
                date=date(2024, 5, 5),
            ),
        ]

    def compute(self, **kwargs):
        return StatisticsAggregator.compute(
            self.transactions,
            [self.darurat, self.liburan],
            [self.dapur, self.listrik],
            [self.ayah, self.ibu],
            **kwargs,
        )

    def test_totals_exclude_transfers(self):
        """Test transfers count in none of the totals."""
        stats = self.compute()
        assert stats.totals.income == Decimal("4000000")
        assert stats.totals.expenses == Decimal("250000")
        assert stats.totals.savings == Decimal("500000")
        assert stats.totals.net_balance == Decimal("3250000")
        assert stats.count == 5

    def test_zero_rows_reported(self):
        """Categories with no transactions report zero rather than being omitted."""
        stats = self.compute()
        liburan = next(r for r in stats.savings_by_category if r.category == "Liburan")
        listrik = next(r for r in stats.expenses_by_category if r.category == "Listrik")
        assert liburan.amount == Decimal("0")
        assert listrik.amount == Decimal("0")

    def test_non_zero_only(self):
        """Test the non-zero view drops empty category rows."""
        stats = self.compute(non_zero_only=True)
        assert [r.category for r in stats.savings_by_category] == ["Dana Darurat"]
        assert [r.category for r in stats.expenses_by_category] == ["Dapur"]

    def test_category_rows_joined_with_target_and_budget(self):
        """Test target progress and over-budget flags."""
        stats = self.compute()
        darurat = next(r for r in stats.savings_by_category if r.category == "Dana Darurat")
        dapur = next(r for r in stats.expenses_by_category if r.category == "Dapur")
        assert darurat.target == Decimal("1000000")
        assert darurat.progress == 0.5
        assert dapur.over_budget is True

    def test_derived_values_are_serialised(self):
        """Test net balance, progress and over-budget survive model_dump."""
        dumped = self.compute().model_dump(mode="json")
        assert Decimal(dumped["totals"]["net_balance"]) == Decimal("3250000")

        darurat = next(r for r in dumped["savings_by_category"] if r["category"] == "Dana Darurat")
        liburan = next(r for r in dumped["savings_by_category"] if r["category"] == "Liburan")
        dapur = next(r for r in dumped["expenses_by_category"] if r["category"] == "Dapur")
        assert darurat["progress"] == 0.5
        assert liburan["progress"] is None
        assert dapur["over_budget"] is True

    def test_member_contributions(self):
        """Test income and savings are summed per member."""
        stats = self.compute()
        by_name = {m.name: m for m in stats.member_contributions}
        assert by_name["Budi"].income == Decimal("3000000")
        assert by_name["Budi"].savings == Decimal("500000")
        assert by_name["Sari"].income == Decimal("1000000")
        assert by_name["Sari"].savings == Decimal("0")

    def test_recent_newest_first_and_limited(self):
        """Test recent holds the first N by date descending."""
        stats = self.compute(recent_limit=2)
        assert [tx.date for tx in stats.recent] == [date(2024, 5, 5), date(2024, 5, 4)]

    def test_empty_ledger(self):
        """Test an empty ledger gives zeros everywhere."""
        stats = StatisticsAggregator.compute([], [self.darurat], [], [self.ayah])
        assert stats.totals.net_balance == Decimal("0")
        assert stats.count == 0
        assert stats.recent == []
        assert stats.member_contributions[0].income == Decimal("0")


class TestGetStatistics:
    """Tests for loading from storage."""

    async def test_month_filter(self, storage, make_account, reconciler):
        """Test the legacy 'YYYY-MM' filter only counts that month."""
        account = await make_account("Kas", "0")
        await reconciler.record(
            IncomeTransaction(amount=Decimal("100"), to_account_id=account.id, date=date(2024, 4, 30))
        )
        await reconciler.record(
            IncomeTransaction(amount=Decimal("200"), to_account_id=account.id, date=date(2024, 5, 1))
        )
        await reconciler.record(
            IncomeTransaction(amount=Decimal("400"), to_account_id=account.id, date=date(2024, 5, 31))
        )

        aggregator = StatisticsAggregator(storage, recent_limit=10)
        stats = await aggregator.get_statistics(month="2024-05")

        assert stats.totals.income == Decimal("600")
        assert stats.count == 2
        assert stats.date_range == DateRange.for_month("2024-05")

    async def test_date_range_wins_over_month(self, storage, make_account, reconciler):
        """Test an explicit range overrides the month."""
        account = await make_account("Kas", "0")
        await reconciler.record(
            IncomeTransaction(amount=Decimal("100"), to_account_id=account.id, date=date(2024, 1, 15))
        )

        aggregator = StatisticsAggregator(storage, recent_limit=10)
        stats = await aggregator.get_statistics(
            date_range=DateRange(start=date(2024, 1, 1), end=date(2024, 1, 31)),
            month="2024-05",
        )
        assert stats.count == 1

    async def test_deleted_category_still_counts_in_totals(self, storage, make_account, reconciler):
        """A transaction pointing at a deleted category counts in totals only."""
        account = await make_account("Kas", "1000")
        category = ExpenseCategory(name="Sementara")
        await storage.save_category(category)
        await reconciler.record(ExpenseTransaction(
            amount=Decimal("300"),
            from_account_id=account.id,
            expense_category_id=category.id,
        ))
        await storage.delete_category(category.kind, category.id)

        stats = await StatisticsAggregator(storage, recent_limit=10).get_statistics()

        assert stats.totals.expenses == Decimal("300")
        assert stats.expenses_by_category == []
