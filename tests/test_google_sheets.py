"""
Tests for the Google Sheets backend.

gspread is never called: a small in-memory worksheet stands in for each
sheet, and a fake client hands them out by title.
"""

from decimal import Decimal
from unittest.mock import MagicMock
from uuid import uuid4

import pytest
from gspread.utils import a1_to_rowcol

from tabungan.models.registry import BalanceChange, FamilyMember, StorageAccount
from tabungan.models.transaction import IncomeTransaction, TransferTransaction
from tabungan.services.storage import (
    DuplicateError,
    GoogleSheetsLedgerStorage,
    LedgerOperation,
    LedgerWrite,
    StorageError,
)


class FakeWorksheet:
    """Just enough of gspread.Worksheet for SheetTable."""

    def __init__(self, columns):
        self.rows = [list(columns)]
        self.fail_appends = False

    def get_all_values(self):
        return [list(row) for row in self.rows]

    def append_row(self, values, value_input_option=None):
        if self.fail_appends:
            raise RuntimeError("quota exceeded")
        self.rows.append(list(values))

    def batch_update(self, data):
        for entry in data:
            row, _ = a1_to_rowcol(entry["range"].split(":")[0])
            self.rows[row - 1] = list(entry["values"][0])

    def delete_rows(self, index):
        del self.rows[index - 1]


class FakeSheetsClient:
    """Stands in for GoogleSheetsClient."""

    sheet_names = {
        "accounts": "StorageAccounts",
        "savings_categories": "SavingsCategories",
        "expense_categories": "ExpenseCategories",
        "family_members": "FamilyMembers",
        "transactions": "Transactions",
    }

    def __init__(self):
        self.sheets = {}

    def get_worksheet(self, title, columns):
        if title not in self.sheets:
            self.sheets[title] = FakeWorksheet(columns)
        return self.sheets[title]


@pytest.fixture
def client():
    return FakeSheetsClient()


@pytest.fixture
def sheets(client):
    return GoogleSheetsLedgerStorage(client)


class TestRegistryRows:
    """Records survive the trip through string cells."""

    async def test_account_round_trip(self, sheets):
        """Test a gold account reads back with its types intact."""
        account = StorageAccount(
            name="Emas Antam",
            is_gold=True,
            gold_weight=Decimal("12.5"),
            balance=Decimal("0"),
        )
        await sheets.save_account(account)

        stored = await sheets.get_account(account.id)
        assert stored.is_gold is True
        assert stored.gold_weight == Decimal("12.5")
        assert stored.description is None

    async def test_duplicate_rejected(self, sheets):
        """Test saving the same id twice raises DuplicateError."""
        member = FamilyMember(name="Budi", role="Ayah")
        await sheets.save_member(member)
        with pytest.raises(DuplicateError):
            await sheets.save_member(member)

    async def test_update_account_keeps_sheet_balance(self, sheets):
        """Test an edit from a stale read leaves the balance cell alone."""
        account = StorageAccount(name="Kas", balance=Decimal("1000"))
        await sheets.save_account(account)
        stale = await sheets.get_account(account.id)
        await sheets.apply_balance_changes(
            [BalanceChange(account_id=account.id, delta=Decimal("500"))]
        )

        await sheets.update_account(stale.model_copy(update={"name": "Kas Rumah"}))

        stored = await sheets.get_account(account.id)
        assert stored.name == "Kas Rumah"
        assert stored.balance == Decimal("1500.00")

    async def test_malformed_rows_skipped(self, sheets, client):
        """Test a broken row does not break listing."""
        await sheets.save_account(StorageAccount(name="Kas"))
        client.sheets["StorageAccounts"].rows.append(["not-a-uuid", ""])

        accounts = await sheets.list_accounts()
        assert [a.name for a in accounts] == ["Kas"]


class TestCommit:
    """Ledger writes against the sheet."""

    async def test_insert_writes_balances_and_record(self, sheets):
        """Test an income updates the balance cell and appends the row."""
        account = StorageAccount(name="BCA", balance=Decimal("100"))
        await sheets.save_account(account)
        tx = IncomeTransaction(amount=Decimal("50"), to_account_id=account.id)

        await sheets.commit(LedgerWrite(
            operation=LedgerOperation.INSERT,
            transaction=tx,
            balance_changes=[BalanceChange(account_id=account.id, delta=Decimal("50"))],
        ))

        assert (await sheets.get_account(account.id)).balance == Decimal("150.00")
        stored = await sheets.get_transaction(tx.id)
        assert stored.amount == Decimal("50")
        assert stored.to_account_id == account.id

    async def test_failed_record_write_restores_balances(self, sheets, client):
        """Atomicity: when the record append fails, balances are written back."""
        x = StorageAccount(name="X", balance=Decimal("500"))
        y = StorageAccount(name="Y", balance=Decimal("0"))
        await sheets.save_account(x)
        await sheets.save_account(y)
        client.get_worksheet("Transactions", []).fail_appends = True

        with pytest.raises(StorageError):
            await sheets.commit(LedgerWrite(
                operation=LedgerOperation.INSERT,
                transaction=TransferTransaction(
                    amount=Decimal("200"), from_account_id=x.id, to_account_id=y.id
                ),
                balance_changes=[
                    BalanceChange(account_id=x.id, delta=Decimal("-200")),
                    BalanceChange(account_id=y.id, delta=Decimal("200")),
                ],
            ))

        assert (await sheets.get_account(x.id)).balance == Decimal("500.00")
        assert (await sheets.get_account(y.id)).balance == Decimal("0.00")

    async def test_replace_and_delete(self, sheets):
        """Test REPLACE rewrites the row in place and DELETE removes it."""
        account = StorageAccount(name="Kas", balance=Decimal("0"))
        await sheets.save_account(account)
        tx = IncomeTransaction(amount=Decimal("10"), to_account_id=account.id)
        await sheets.commit(LedgerWrite(operation=LedgerOperation.INSERT, transaction=tx))

        changed = tx.model_copy(update={"amount": Decimal("25")})
        await sheets.commit(LedgerWrite(operation=LedgerOperation.REPLACE, transaction=changed))
        assert (await sheets.get_transaction(tx.id)).amount == Decimal("25")
        assert len(await sheets.list_transactions()) == 1

        await sheets.commit(LedgerWrite(operation=LedgerOperation.DELETE, transaction=changed))
        assert await sheets.get_transaction(tx.id) is None

    async def test_unrelated_malformed_row_does_not_block_commit(self, sheets, client):
        """Test a broken account row only fails writes that touch it."""
        account = StorageAccount(name="Kas", balance=Decimal("0"))
        await sheets.save_account(account)
        broken_id = uuid4()
        client.sheets["StorageAccounts"].rows.append([str(broken_id), ""])

        await sheets.commit(LedgerWrite(
            operation=LedgerOperation.INSERT,
            transaction=IncomeTransaction(amount=Decimal("5"), to_account_id=account.id),
            balance_changes=[BalanceChange(account_id=account.id, delta=Decimal("5"))],
        ))
        assert (await sheets.get_account(account.id)).balance == Decimal("5.00")

        with pytest.raises(StorageError):
            await sheets.commit(LedgerWrite(
                operation=LedgerOperation.INSERT,
                transaction=IncomeTransaction(amount=Decimal("5"), to_account_id=broken_id),
                balance_changes=[BalanceChange(account_id=broken_id, delta=Decimal("5"))],
            ))

    async def test_worksheet_failure_becomes_storage_error(self, sheets, monkeypatch):
        """Test a gspread failure opening the accounts sheet surfaces as StorageError."""
        account = StorageAccount(name="Kas", balance=Decimal("0"))
        await sheets.save_account(account)
        rows = sheets._accounts.read_rows()
        monkeypatch.setattr(sheets._accounts, "read_rows", lambda: rows)
        monkeypatch.setattr(
            sheets._accounts, "worksheet", MagicMock(side_effect=RuntimeError("503"))
        )

        with pytest.raises(StorageError):
            await sheets.commit(LedgerWrite(
                operation=LedgerOperation.INSERT,
                transaction=IncomeTransaction(amount=Decimal("5"), to_account_id=account.id),
                balance_changes=[BalanceChange(account_id=account.id, delta=Decimal("5"))],
            ))
        assert await sheets.list_transactions() == []
