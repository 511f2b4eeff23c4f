"""
Integration tests for the flows.

In-memory storage and a fake gold price source; no network.
"""

import asyncio
import random
from datetime import date
from decimal import Decimal
from unittest.mock import AsyncMock
from uuid import uuid4

import pytest
from pydantic import ValidationError

from tabungan.config import GoldPriceSettings
from tabungan.models.gold import PriceTier
from tabungan.models.registry import CategoryKind
from tabungan.models.transaction import (
    ExpenseTransaction,
    IncomeTransaction,
    TransactionFilters,
    TransactionInput,
    TransactionType,
)
from tabungan.orchestrator import (
    DashboardFlow,
    RegistryFlow,
    TransactionFlow,
    create_app_components,
    create_storage,
)
from tabungan.reconciliation import BalanceReconciler, TransactionValidationError
from tabungan.services.gold import ExternalServiceError, GoldPriceCache, GoldPriceOracle
from tabungan.services.storage import InMemoryLedgerStorage, NotFoundError, StorageError


class DownSource:
    """Gold source that always fails."""

    def fetch_spot_price(self):
        raise ExternalServiceError("down")

    def fetch_exchange_rate(self):
        raise ExternalServiceError("down")


@pytest.fixture
def oracle():
    settings = GoldPriceSettings(max_attempts=1, synthetic_enabled=False)
    return GoldPriceOracle(
        source=DownSource(),
        cache=GoldPriceCache(settings.cache_ttl_seconds),
        settings=settings,
        rng=random.Random(0),
    )


@pytest.fixture
def flows(storage, oracle):
    transactions = TransactionFlow(storage, BalanceReconciler(storage, allow_negative_balance=False))
    registry = RegistryFlow(storage)
    dashboard = DashboardFlow(storage, gold_oracle=oracle)
    return transactions, registry, dashboard


class TestTransactionFlow:
    """create / update / delete / list through the flow."""

    async def test_create_from_input(self, flows, make_account, balance_of):
        """Test a flat input becomes a transaction and moves the balance."""
        transactions, _, _ = flows
        account = await make_account("BCA", "0")

        tx = await transactions.create_transaction(TransactionInput(
            type="income",
            amount="2500000",
            to_account_id=str(account.id),
            description="Gaji",
        ))

        assert isinstance(tx, IncomeTransaction)
        assert await balance_of(account) == Decimal("2500000.00")

    async def test_create_missing_field_rejected_before_mutation(self, flows, storage):
        """Test a transfer without a source is a validation error and writes nothing."""
        transactions, _, _ = flows
        with pytest.raises(TransactionValidationError) as exc:
            await transactions.create_transaction(TransactionInput(
                type=TransactionType.TRANSFER,
                amount=Decimal("10"),
                to_account_id=uuid4(),
            ))
        assert exc.value.field == "from_account_id"
        assert await storage.list_transactions() == []

    async def test_update_only_overwrites_supplied_fields(self, flows, make_account, balance_of):
        """Test update merges, keeps identity and re-reconciles."""
        transactions, _, _ = flows
        account = await make_account("Kas", "1000000")
        tx = await transactions.create_transaction(TransactionInput(
            type=TransactionType.EXPENSE,
            amount=Decimal("100000"),
            from_account_id=account.id,
            description="Belanja",
            date=date(2024, 5, 1),
        ))

        updated = await transactions.update_transaction(tx.id, TransactionInput(amount=Decimal("40000")))

        assert isinstance(updated, ExpenseTransaction)
        assert updated.id == tx.id
        assert updated.created_at == tx.created_at
        assert updated.description == "Belanja"
        assert updated.date == date(2024, 5, 1)
        assert await balance_of(account) == Decimal("960000.00")

    async def test_update_with_blank_fields_keeps_stored_values(self, flows, make_account):
        """Test blank form values in an update leave the stored fields alone."""
        transactions, _, _ = flows
        account = await make_account("Kas", "1000")
        tx = await transactions.create_transaction(TransactionInput(
            type=TransactionType.EXPENSE,
            amount=Decimal("50"),
            from_account_id=account.id,
            description="Belanja",
        ))

        updated = await transactions.update_transaction(
            tx.id, TransactionInput(amount=Decimal("40"), description="", from_account_id="")
        )

        assert updated.description == "Belanja"
        assert updated.from_account_id == account.id

    async def test_update_changes_type(self, flows, make_account, balance_of):
        """Test turning an income into an expense reverses then applies."""
        transactions, _, _ = flows
        account = await make_account("Kas", "1000")
        tx = await transactions.create_transaction(TransactionInput(
            type=TransactionType.INCOME, amount=Decimal("200"), to_account_id=account.id,
        ))
        assert await balance_of(account) == Decimal("1200.00")

        await transactions.update_transaction(tx.id, TransactionInput(
            type=TransactionType.EXPENSE, from_account_id=account.id,
        ))
        assert await balance_of(account) == Decimal("800.00")

    async def test_update_and_delete_missing(self, flows):
        """Test unknown ids raise NotFoundError."""
        transactions, _, _ = flows
        with pytest.raises(NotFoundError):
            await transactions.update_transaction(uuid4(), TransactionInput(amount=Decimal("1")))
        with pytest.raises(NotFoundError):
            await transactions.delete_transaction(uuid4())

    async def test_clamping_scenario_through_flow(self, flows, make_account, balance_of):
        """income 500,000, expense 700,000, delete expense -> 700,000."""
        transactions, _, _ = flows
        account = await make_account("A", "0")
        await transactions.create_transaction(TransactionInput(
            type=TransactionType.INCOME, amount=Decimal("500000"), to_account_id=account.id,
        ))
        expense = await transactions.create_transaction(TransactionInput(
            type=TransactionType.EXPENSE, amount=Decimal("700000"), from_account_id=account.id,
        ))
        assert await balance_of(account) == Decimal("0.00")

        await transactions.delete_transaction(expense.id)
        assert await balance_of(account) == Decimal("700000.00")

    async def test_list_filters_and_degrades(self, flows, storage, make_account):
        """Test filters apply and a storage failure yields []."""
        transactions, _, _ = flows
        account = await make_account("Kas", "1000")
        await transactions.create_transaction(TransactionInput(
            type=TransactionType.INCOME, amount=Decimal("1"), to_account_id=account.id,
        ))
        await transactions.create_transaction(TransactionInput(
            type=TransactionType.EXPENSE, amount=Decimal("1"), from_account_id=account.id,
        ))

        incomes = await transactions.list_transactions(TransactionFilters(type=TransactionType.INCOME))
        assert len(incomes) == 1

        storage.list_transactions = AsyncMock(side_effect=StorageError("offline"))
        assert await transactions.list_transactions() == []


class TestRegistryFlow:
    """Registry CRUD through the flow."""

    async def test_account_lifecycle(self, flows):
        """Test create, update and delete of a storage account."""
        _, registry, _ = flows
        account = await registry.create_account({"name": "GoPay", "balance": "50000"})
        updated = await registry.update_account(account.id, {"name": "GoPay Plus", "id": uuid4()})

        assert updated.id == account.id
        assert updated.name == "GoPay Plus"
        assert [a.name for a in await registry.list_accounts()] == ["GoPay Plus"]
        assert await registry.delete_account(account.id) is True

    async def test_rename_during_income_keeps_its_effect(self, flows, storage, make_account, balance_of):
        """Test an account edit queued behind a ledger commit does not undo it."""
        transactions, registry, _ = flows
        account = await make_account("Kas", "1000")

        async def settle():
            for _ in range(20):
                await asyncio.sleep(0)

        async with storage._lock:
            income = asyncio.create_task(transactions.create_transaction(TransactionInput(
                type=TransactionType.INCOME, amount=Decimal("500"), to_account_id=account.id,
            )))
            await settle()
            rename = asyncio.create_task(
                registry.update_account(account.id, {"name": "Kas Rumah"})
            )
            await settle()

        await asyncio.gather(income, rename)

        stored = await storage.get_account(account.id)
        assert stored.name == "Kas Rumah"
        assert await balance_of(account) == Decimal("1500.00")

    async def test_balance_can_be_set_explicitly(self, flows):
        """Test a balance in the changes is written as given."""
        _, registry, _ = flows
        account = await registry.create_account({"name": "Dana", "balance": "10"})
        updated = await registry.update_account(account.id, {"balance": "75000"})
        assert updated.balance == Decimal("75000.00")

    async def test_required_fields_validated(self, flows):
        """Test pydantic rejects a member without a role."""
        _, registry, _ = flows
        with pytest.raises(ValidationError):
            await registry.create_member({"name": "Budi"})

    async def test_category_by_kind(self, flows):
        """Test categories are created in the registry of their kind."""
        _, registry, _ = flows
        category = await registry.create_category(
            CategoryKind.EXPENSE, {"name": "Listrik", "budget_limit": "300000"}
        )
        updated = await registry.update_category(
            CategoryKind.EXPENSE, category.id, {"budget_limit": "350000"}
        )
        assert updated.budget_limit == Decimal("350000")
        assert await registry.list_categories(CategoryKind.SAVINGS) == []

    async def test_update_missing_member(self, flows):
        """Test updating an unknown member raises NotFoundError."""
        _, registry, _ = flows
        with pytest.raises(NotFoundError):
            await registry.update_member(uuid4(), {"role": "Anak"})

    async def test_deleting_account_leaves_transactions(self, flows, make_account):
        """No cascade: the transaction keeps its dangling account id."""
        transactions, registry, _ = flows
        account = await make_account("Kas", "0")
        tx = await transactions.create_transaction(TransactionInput(
            type=TransactionType.INCOME, amount=Decimal("5"), to_account_id=account.id,
        ))
        await registry.delete_account(account.id)

        listed = await transactions.list_transactions()
        assert [t.id for t in listed] == [tx.id]
        await transactions.delete_transaction(tx.id)
        assert await transactions.list_transactions() == []


class TestDashboardFlow:
    """Statistics, gold price and asset summary."""

    async def test_statistics_degrade_on_storage_error(self, flows, storage):
        """Test a storage failure gives empty statistics with an error message."""
        _, _, dashboard = flows
        storage.list_transactions = AsyncMock(side_effect=StorageError("offline"))

        stats = await dashboard.get_statistics(month="2024-05")

        assert stats.count == 0
        assert stats.error_message
        assert stats.date_range.start == date(2024, 5, 1)

    async def test_gold_price_never_fails(self, flows, oracle):
        """Test the dashboard gets the default tier when the source is down."""
        _, _, dashboard = flows
        result = await dashboard.get_gold_price_per_gram()
        assert result.tier == PriceTier.DEFAULT
        assert result.price_per_gram > 0

    async def test_asset_summary_values_gold_by_weight(self, flows, make_account):
        """Test gold is valued at weight x price and added to the total."""
        _, _, dashboard = flows
        await make_account("Kas", "250000")
        await make_account("Emas", "999", is_gold=True, gold_weight=Decimal("2"))

        summary = await dashboard.get_asset_summary()

        price = summary.gold_price_per_gram
        gold = next(v for v in summary.accounts if v.is_gold)
        assert price == Decimal("1150000")
        assert gold.value == Decimal("2300000.00")
        assert summary.total == Decimal("2550000.00")

    async def test_asset_summary_skips_oracle_without_gold(self, flows, make_account):
        """Test no price is looked up when no account holds gold."""
        _, _, dashboard = flows
        await make_account("Kas", "100")
        summary = await dashboard.get_asset_summary()
        assert summary.gold_price_per_gram is None
        assert summary.total == Decimal("100.00")


class TestFactory:
    """Tests for create_app_components."""

    def test_memory_backend(self):
        """Test the memory backend is built on request."""
        assert isinstance(create_storage("memory"), InMemoryLedgerStorage)

    def test_components_share_storage(self, oracle):
        """Test all three flows are wired to the same storage."""
        storage = InMemoryLedgerStorage()
        transactions, registry, dashboard = create_app_components(storage=storage, gold_oracle=oracle)
        assert transactions._storage is storage
        assert registry._storage is storage
        assert dashboard._storage is storage
