"""Shared fixtures: in-memory storage and a few seeded accounts."""

from decimal import Decimal

import pytest

from tabungan.models.registry import StorageAccount
from tabungan.reconciliation import BalanceReconciler
from tabungan.services.storage import InMemoryLedgerStorage


@pytest.fixture
def storage():
    return InMemoryLedgerStorage()


@pytest.fixture
def reconciler(storage):
    return BalanceReconciler(storage, allow_negative_balance=False)


@pytest.fixture
def make_account(storage):
    """Factory that saves an account and returns it."""

    async def _make(name: str = "Kas", balance: str = "0", **fields) -> StorageAccount:
        account = StorageAccount(name=name, balance=Decimal(balance), **fields)
        await storage.save_account(account)
        return account

    return _make


@pytest.fixture
def balance_of(storage):
    """Current stored balance of an account."""

    async def _balance(account: StorageAccount) -> Decimal:
        stored = await storage.get_account(account.id)
        return stored.balance

    return _balance
