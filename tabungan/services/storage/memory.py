"""
In-Memory Storage Implementation

Keeps every record in process memory. Used by the test suite and for
single-process use where losing data on restart is acceptable.

Atomicity comes from a single asyncio.Lock around every mutation plus
staging: commit() computes new balances on a copy, checks the transaction
write, and only then swaps the copy in. Nothing awaits between staging and
swapping, so a failed check leaves the stored state untouched.
"""

import asyncio
from typing import Optional
from uuid import UUID

from tabungan.models.registry import (
    AppliedBalanceChange,
    BalanceChange,
    Category,
    CategoryKind,
    FamilyMember,
    StorageAccount,
    utc_now,
)
from tabungan.models.transaction import (
    Transaction,
    TransactionFilters,
    sort_newest_first,
)
from tabungan.services.storage.interface import (
    DuplicateError,
    LedgerOperation,
    LedgerStorageInterface,
    LedgerWrite,
    NotFoundError,
    stage_balance_changes,
)


class InMemoryLedgerStorage(LedgerStorageInterface):
    """
    Dictionary-backed implementation of the full storage interface.

    Records are stored as pydantic model copies so callers can never
    mutate stored state through a reference they hold.
    """

    def __init__(self):
        self._accounts: dict[UUID, StorageAccount] = {}
        self._categories: dict[CategoryKind, dict[UUID, Category]] = {
            CategoryKind.SAVINGS: {},
            CategoryKind.EXPENSE: {},
        }
        self._members: dict[UUID, FamilyMember] = {}
        self._transactions: dict[UUID, Transaction] = {}
        self._lock = asyncio.Lock()

    # -------------------------------------------------------------------------
    # Accounts
    # -------------------------------------------------------------------------

    async def save_account(self, account: StorageAccount) -> bool:
        async with self._lock:
            if account.id in self._accounts:
                raise DuplicateError(f"Storage account already exists: {account.id}")
            self._accounts[account.id] = account.model_copy(deep=True)
            return True

    async def get_account(self, account_id: UUID) -> Optional[StorageAccount]:
        account = self._accounts.get(account_id)
        return account.model_copy(deep=True) if account else None

    async def list_accounts(self) -> list[StorageAccount]:
        accounts = sorted(self._accounts.values(), key=lambda a: a.name.lower())
        return [a.model_copy(deep=True) for a in accounts]

    async def update_account(
        self,
        account: StorageAccount,
        keep_balance: bool = True,
    ) -> bool:
        async with self._lock:
            stored = self._accounts.get(account.id)
            if stored is None:
                raise NotFoundError(f"Storage account not found: {account.id}")
            update = {"updated_at": utc_now()}
            if keep_balance:
                update["balance"] = stored.balance
            self._accounts[account.id] = account.model_copy(update=update, deep=True)
            return True

    async def delete_account(self, account_id: UUID) -> bool:
        async with self._lock:
            return self._accounts.pop(account_id, None) is not None

    async def apply_balance_changes(
        self,
        changes: list[BalanceChange],
    ) -> list[AppliedBalanceChange]:
        async with self._lock:
            balances = {aid: a.balance for aid, a in self._accounts.items()}
            applied = stage_balance_changes(balances, changes)
            self._swap_balances(balances, applied)
            return applied

    def _swap_balances(
        self,
        balances: dict,
        applied: list[AppliedBalanceChange],
    ) -> None:
        now = utc_now()
        for account_id in {change.account_id for change in applied}:
            self._accounts[account_id] = self._accounts[account_id].model_copy(
                update={"balance": balances[account_id], "updated_at": now}
            )

    # -------------------------------------------------------------------------
    # Categories
    # -------------------------------------------------------------------------

    async def save_category(self, category: Category) -> bool:
        async with self._lock:
            registry = self._categories[category.kind]
            if category.id in registry:
                raise DuplicateError(f"Category already exists: {category.id}")
            registry[category.id] = category.model_copy(deep=True)
            return True

    async def get_category(self, kind: CategoryKind, category_id: UUID) -> Optional[Category]:
        category = self._categories[kind].get(category_id)
        return category.model_copy(deep=True) if category else None

    async def list_categories(self, kind: CategoryKind) -> list[Category]:
        categories = sorted(
            self._categories[kind].values(),
            key=lambda c: c.created_at,
            reverse=True,
        )
        return [c.model_copy(deep=True) for c in categories]

    async def update_category(self, category: Category) -> bool:
        async with self._lock:
            registry = self._categories[category.kind]
            if category.id not in registry:
                raise NotFoundError(f"Category not found: {category.id}")
            registry[category.id] = category.model_copy(
                update={"updated_at": utc_now()}, deep=True
            )
            return True

    async def delete_category(self, kind: CategoryKind, category_id: UUID) -> bool:
        async with self._lock:
            return self._categories[kind].pop(category_id, None) is not None

    # -------------------------------------------------------------------------
    # Family members
    # -------------------------------------------------------------------------

    async def save_member(self, member: FamilyMember) -> bool:
        async with self._lock:
            if member.id in self._members:
                raise DuplicateError(f"Family member already exists: {member.id}")
            self._members[member.id] = member.model_copy(deep=True)
            return True

    async def get_member(self, member_id: UUID) -> Optional[FamilyMember]:
        member = self._members.get(member_id)
        return member.model_copy(deep=True) if member else None

    async def list_members(self) -> list[FamilyMember]:
        members = sorted(self._members.values(), key=lambda m: m.name.lower())
        return [m.model_copy(deep=True) for m in members]

    async def update_member(self, member: FamilyMember) -> bool:
        async with self._lock:
            if member.id not in self._members:
                raise NotFoundError(f"Family member not found: {member.id}")
            self._members[member.id] = member.model_copy(
                update={"updated_at": utc_now()}, deep=True
            )
            return True

    async def delete_member(self, member_id: UUID) -> bool:
        async with self._lock:
            return self._members.pop(member_id, None) is not None

    # -------------------------------------------------------------------------
    # Transactions
    # -------------------------------------------------------------------------

    async def get_transaction(self, transaction_id: UUID) -> Optional[Transaction]:
        tx = self._transactions.get(transaction_id)
        return tx.model_copy(deep=True) if tx else None

    async def list_transactions(
        self,
        filters: Optional[TransactionFilters] = None,
    ) -> list[Transaction]:
        filters = filters or TransactionFilters()
        matching = [tx for tx in self._transactions.values() if filters.matches(tx)]
        return [tx.model_copy(deep=True) for tx in sort_newest_first(matching)]

    async def commit(self, write: LedgerWrite) -> list[AppliedBalanceChange]:
        async with self._lock:
            tx = write.transaction
            exists = tx.id in self._transactions
            if write.operation == LedgerOperation.INSERT and exists:
                raise DuplicateError(f"Transaction already exists: {tx.id}")
            if write.operation != LedgerOperation.INSERT and not exists:
                raise NotFoundError(f"Transaction not found: {tx.id}")

            # Stage on a copy; raises before anything is stored
            balances = {aid: a.balance for aid, a in self._accounts.items()}
            applied = stage_balance_changes(balances, write.balance_changes)

            self._swap_balances(balances, applied)
            if write.operation == LedgerOperation.DELETE:
                del self._transactions[tx.id]
            else:
                self._transactions[tx.id] = tx.model_copy(deep=True)
            return applied
