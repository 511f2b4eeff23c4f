"""
Ledger Storage Interface

DESIGN DECISION: The reconciler, the statistics aggregator and the flows
only ever see these ABCs. The Google Sheets backend persists; the
in-memory backend runs the test suite and single-process setups.

CRUD on the four registries (accounts, savings categories, expense
categories, family members) and the ledger, plus one atomic ledger write.

THE ONE NON-TRIVIAL OPERATION is commit(): a transaction write (insert,
replace or delete) together with the balance changes it implies. A backend
must make the whole LedgerWrite succeed or fail as a unit, and must compute
new balances from the balances it holds at commit time (never from values
the caller read earlier), so two concurrent commits cannot lose an update.
"""

from abc import ABC, abstractmethod
from decimal import Decimal
from enum import Enum
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field

from tabungan.models.registry import (
    AppliedBalanceChange,
    BalanceChange,
    Category,
    CategoryKind,
    FamilyMember,
    StorageAccount,
    to_money,
)
from tabungan.models.transaction import Transaction, TransactionFilters


class LedgerOperation(str, Enum):
    """What a LedgerWrite does to the transaction record."""
    INSERT = "insert"
    REPLACE = "replace"
    DELETE = "delete"


class LedgerWrite(BaseModel):
    """
    One unit of work: balance changes plus a transaction record write.

    balance_changes are applied in order; each clamped change is floored at
    zero against the balance left by the previous change.
    """

    operation: LedgerOperation
    transaction: Transaction
    balance_changes: list[BalanceChange] = Field(default_factory=list)


def stage_balance_changes(
    balances: dict[UUID, Decimal],
    changes: list[BalanceChange],
) -> list[AppliedBalanceChange]:
    """
    Apply changes to a mapping of balances, in order, without side effects
    outside the mapping.

    Backends call this on a working copy and only persist the copy once
    every other check of the unit of work has passed.

    Raises:
        NotFoundError: if a change references an account not in balances
    """
    applied = []
    for change in changes:
        if change.account_id not in balances:
            raise NotFoundError(f"Storage account not found: {change.account_id}")
        old_balance = balances[change.account_id]
        new_balance = to_money(old_balance + change.delta)
        if change.clamp and new_balance < 0:
            new_balance = Decimal("0.00")
        balances[change.account_id] = new_balance
        applied.append(AppliedBalanceChange(
            account_id=change.account_id,
            delta=change.delta,
            old_balance=old_balance,
            new_balance=new_balance,
        ))
    return applied


class AccountStorageInterface(ABC):
    """Storage operations for storage accounts."""

    @abstractmethod
    async def save_account(self, account: StorageAccount) -> bool:
        """
        Save a new storage account.

        Raises:
            DuplicateError: If an account with the same id exists
            StorageError: If save fails
        """
        pass

    @abstractmethod
    async def get_account(self, account_id: UUID) -> Optional[StorageAccount]:
        """Retrieve an account by id, None if it does not exist."""
        pass

    @abstractmethod
    async def list_accounts(self) -> list[StorageAccount]:
        """List all accounts, ordered by name."""
        pass

    @abstractmethod
    async def update_account(
        self,
        account: StorageAccount,
        keep_balance: bool = True,
    ) -> bool:
        """
        Replace an existing account's fields.

        With keep_balance the stored balance is read at write time and kept,
        so an edit cannot overwrite a balance a ledger commit just changed.
        Pass keep_balance=False only to set the balance by hand.

        Raises:
            NotFoundError: If account doesn't exist
        """
        pass

    @abstractmethod
    async def delete_account(self, account_id: UUID) -> bool:
        """
        Delete an account. Transactions referencing it are left untouched.

        Returns:
            True if deleted, False if it did not exist
        """
        pass

    @abstractmethod
    async def apply_balance_changes(
        self,
        changes: list[BalanceChange],
    ) -> list[AppliedBalanceChange]:
        """
        Apply balance changes atomically, without a transaction record.

        Either every change is applied or none is.

        Raises:
            NotFoundError: If any referenced account doesn't exist
        """
        pass


class CategoryStorageInterface(ABC):
    """Storage operations for savings and expense categories."""

    @abstractmethod
    async def save_category(self, category: Category) -> bool:
        """
        Save a new category into the registry matching its kind.

        Raises:
            DuplicateError: If a category with the same id exists
        """
        pass

    @abstractmethod
    async def get_category(self, kind: CategoryKind, category_id: UUID) -> Optional[Category]:
        """Retrieve a category, None if it does not exist."""
        pass

    @abstractmethod
    async def list_categories(self, kind: CategoryKind) -> list[Category]:
        """List categories of one kind, newest first."""
        pass

    @abstractmethod
    async def update_category(self, category: Category) -> bool:
        """
        Replace an existing category.

        Raises:
            NotFoundError: If category doesn't exist
        """
        pass

    @abstractmethod
    async def delete_category(self, kind: CategoryKind, category_id: UUID) -> bool:
        """Delete a category. Returns False if it did not exist."""
        pass


class FamilyMemberStorageInterface(ABC):
    """Storage operations for family members."""

    @abstractmethod
    async def save_member(self, member: FamilyMember) -> bool:
        """
        Save a new family member.

        Raises:
            DuplicateError: If a member with the same id exists
        """
        pass

    @abstractmethod
    async def get_member(self, member_id: UUID) -> Optional[FamilyMember]:
        """Retrieve a member, None if they do not exist."""
        pass

    @abstractmethod
    async def list_members(self) -> list[FamilyMember]:
        """List all members, ordered by name."""
        pass

    @abstractmethod
    async def update_member(self, member: FamilyMember) -> bool:
        """
        Replace an existing member.

        Raises:
            NotFoundError: If member doesn't exist
        """
        pass

    @abstractmethod
    async def delete_member(self, member_id: UUID) -> bool:
        """Delete a member. Returns False if they did not exist."""
        pass


class TransactionStorageInterface(ABC):
    """Storage operations for the transaction ledger."""

    @abstractmethod
    async def get_transaction(self, transaction_id: UUID) -> Optional[Transaction]:
        """Retrieve a transaction, None if it does not exist."""
        pass

    @abstractmethod
    async def list_transactions(
        self,
        filters: Optional[TransactionFilters] = None,
    ) -> list[Transaction]:
        """
        List transactions matching the filters.

        Returns:
            Transactions ordered by date descending, ties broken by
            creation time descending
        """
        pass

    @abstractmethod
    async def commit(self, write: LedgerWrite) -> list[AppliedBalanceChange]:
        """
        Apply a LedgerWrite as one unit of work.

        Returns:
            The balance changes as applied (old/new balance per leg)

        Raises:
            DuplicateError: INSERT of an id that already exists
            NotFoundError: REPLACE/DELETE of a missing transaction, or a
                balance change for a missing account
            StorageError: If the write fails; nothing has been applied
        """
        pass


class LedgerStorageInterface(
    AccountStorageInterface,
    CategoryStorageInterface,
    FamilyMemberStorageInterface,
    TransactionStorageInterface,
):
    """A complete backend: every registry plus the ledger."""
    pass


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


# The error taxonomy calls storage failures "persistence errors".
PersistenceError = StorageError


class NotFoundError(StorageError):
    """Entity not found in storage."""
    pass


class DuplicateError(StorageError):
    """Attempted to insert a duplicate entity."""
    pass


class ConnectionError(StorageError):
    """Could not connect to storage backend."""
    pass
