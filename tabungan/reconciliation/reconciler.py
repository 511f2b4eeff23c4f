"""
Transaction-to-Balance Reconciliation

Every transaction has an effect on one or two storage account balances:

    income    +amount -> to_account
    expense   -amount <- from_account
    savings   -amount <- from_account
    transfer  -amount <- from_account, then +amount -> to_account

Create applies the effect. Delete applies the reverse effect (same legs,
opposite signs). Update reverses the stored transaction's effect and then
applies the new one.

THE FLOW:
1. Compute an EffectSet (ordered (account, delta) legs) up front
2. Validate it: accounts exist, none is a gold account, no leg repeats an
   account within a single effect
3. Hand the legs and the record write to storage as one LedgerWrite
4. Storage applies all of it or none of it

CLAMPING: unless negative balances are allowed, a decrement stops at zero.
A clamped decrement swallows part of the amount, so reversing that
transaction later adds back more than was taken. The swallowed part is
reported as shortfall in the ReconciliationResult and logged.

DANGLING REFERENCES: accounts can be deleted while transactions still point
at them. When reversing, a leg whose account is gone (or is a gold account)
has no effect. When applying a new effect the references are checked and
bad ones are rejected before anything is written.
"""

import asyncio
from contextlib import asynccontextmanager
from decimal import Decimal
from typing import AsyncIterator, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from tabungan.config import get_settings
from tabungan.logger import get_logger
from tabungan.models.registry import AppliedBalanceChange, BalanceChange
from tabungan.models.transaction import (
    Transaction,
    TransactionInput,
    TransactionInputError,
    TransactionType,
)
from tabungan.services.storage import (
    LedgerOperation,
    LedgerStorageInterface,
    LedgerWrite,
    NotFoundError,
)


logger = get_logger(__name__)


class ReconciliationError(Exception):
    """Base exception for reconciliation errors."""
    pass


class TransactionValidationError(ReconciliationError):
    """
    A transaction breaks the contract for its type.

    Raised before any balance or record is written.
    """

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.field = field


# =============================================================================
# EFFECT SETS
# =============================================================================

class BalanceLeg(BaseModel):
    """One side of a transaction's effect: a signed change to one account."""
    model_config = ConfigDict(frozen=True)

    account_id: UUID
    delta: Decimal


class EffectSet(BaseModel):
    """Ordered legs of one or more transaction effects."""
    model_config = ConfigDict(frozen=True)

    legs: tuple[BalanceLeg, ...] = ()

    def reversed(self) -> 'EffectSet':
        """The mirror effect: same legs in the same order, signs swapped."""
        return EffectSet(legs=tuple(
            BalanceLeg(account_id=leg.account_id, delta=-leg.delta) for leg in self.legs
        ))

    def __add__(self, other: 'EffectSet') -> 'EffectSet':
        return EffectSet(legs=self.legs + other.legs)

    @property
    def account_ids(self) -> list[UUID]:
        return [leg.account_id for leg in self.legs]

    def validate_single(self) -> 'EffectSet':
        """
        Check an effect computed from one transaction.

        Raises:
            TransactionValidationError: on a zero leg, or on two legs for the
                same account (contradictory deltas)
        """
        seen = set()
        for leg in self.legs:
            if leg.delta == 0:
                raise TransactionValidationError("Transaction amount must be non-zero", field="amount")
            if leg.account_id in seen:
                raise TransactionValidationError(
                    "A transaction cannot move money into the account it comes from",
                    field="to_account_id",
                )
            seen.add(leg.account_id)
        return self


def effect_of(tx: Transaction) -> EffectSet:
    """The balance effect of applying a transaction."""
    if tx.type == TransactionType.INCOME:
        legs = (BalanceLeg(account_id=tx.to_account_id, delta=tx.amount),)
    elif tx.type in (TransactionType.EXPENSE, TransactionType.SAVINGS):
        legs = (BalanceLeg(account_id=tx.from_account_id, delta=-tx.amount),)
    else:
        legs = (
            BalanceLeg(account_id=tx.from_account_id, delta=-tx.amount),
            BalanceLeg(account_id=tx.to_account_id, delta=tx.amount),
        )
    return EffectSet(legs=legs).validate_single()


def reverse_effect_of(tx: Transaction) -> EffectSet:
    """The balance effect of undoing a stored transaction."""
    return effect_of(tx).reversed()


def build_transaction(data: TransactionInput, **identity) -> Transaction:
    """
    TransactionInput -> Transaction, with input errors mapped to
    TransactionValidationError.
    """
    try:
        return data.to_transaction(**identity)
    except TransactionInputError as e:
        raise TransactionValidationError(str(e), field=e.field)


# =============================================================================
# RESULTS
# =============================================================================

# Per-leg outcome: old/new balance and any clamping shortfall.
AppliedLeg = AppliedBalanceChange


class ReconciliationResult(BaseModel):
    """What a create/update/delete did to the ledger and the balances."""

    transaction: Transaction
    operation: LedgerOperation
    applied: list[AppliedLeg] = Field(default_factory=list)
    skipped_account_ids: list[UUID] = Field(default_factory=list)

    @property
    def shortfall(self) -> Decimal:
        """Total amount swallowed by clamping across all legs."""
        return sum((change.shortfall for change in self.applied), Decimal("0.00"))

    @property
    def clamped(self) -> bool:
        return self.shortfall > 0


# =============================================================================
# LOCKING
# =============================================================================

class KeyedLocks:
    """
    asyncio locks keyed by id.

    hold() acquires several keys in sorted order so two tasks asking for
    overlapping keys cannot deadlock. A key's lock is dropped once no task
    holds or waits for it.
    """

    def __init__(self):
        self._locks: dict[str, asyncio.Lock] = {}
        # key -> tasks holding or waiting on it
        self._users: dict[str, int] = {}

    def __len__(self) -> int:
        return len(self._locks)

    async def _acquire(self, key: str) -> None:
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._users[key] = self._users.get(key, 0) + 1
        try:
            await lock.acquire()
        except BaseException:
            self._forget(key)
            raise

    def _release(self, key: str) -> None:
        self._locks[key].release()
        self._forget(key)

    def _forget(self, key: str) -> None:
        self._users[key] -= 1
        if not self._users[key]:
            del self._users[key]
            del self._locks[key]

    @asynccontextmanager
    async def hold(self, *keys) -> AsyncIterator[None]:
        ordered = sorted({str(key) for key in keys if key is not None})
        acquired = []
        try:
            for key in ordered:
                await self._acquire(key)
                acquired.append(key)
            yield
        finally:
            for key in reversed(acquired):
                self._release(key)


# =============================================================================
# RECONCILER
# =============================================================================

class BalanceReconciler:
    """
    Keeps storage account balances consistent with the transaction ledger.

    Two transaction locks are never held at once, and account locks are
    only ever taken after the transaction lock, so lock ordering is total.
    """

    def __init__(
        self,
        storage: LedgerStorageInterface,
        allow_negative_balance: Optional[bool] = None,
        locks: Optional[KeyedLocks] = None,
    ):
        self._storage = storage
        if allow_negative_balance is None:
            allow_negative_balance = get_settings().ledger.allow_negative_balance
        self._allow_negative = allow_negative_balance
        self._tx_locks = locks if locks is not None else KeyedLocks()
        self._account_locks = KeyedLocks()

    @property
    def allow_negative_balance(self) -> bool:
        return self._allow_negative

    async def _plan(
        self,
        effect: EffectSet,
        strict: bool,
    ) -> tuple[list[BalanceChange], list[UUID]]:
        """
        Turn an effect set into storage balance changes.

        strict=True (new effects): a missing account raises NotFoundError,
        a gold account raises TransactionValidationError.
        strict=False (reversals): such legs are skipped.
        """
        changes, skipped = [], []
        for leg in effect.legs:
            account = await self._storage.get_account(leg.account_id)
            if account is None:
                if strict:
                    raise NotFoundError(f"Storage account not found: {leg.account_id}")
                logger.warning("leg_skipped", account_id=str(leg.account_id), reason="account_missing")
                skipped.append(leg.account_id)
                continue
            if account.is_gold:
                if strict:
                    raise TransactionValidationError(
                        f"Gold account '{account.name}' cannot take part in transactions",
                        field="account",
                    )
                logger.warning("leg_skipped", account_id=str(leg.account_id), reason="gold_account")
                skipped.append(leg.account_id)
                continue
            changes.append(BalanceChange(
                account_id=leg.account_id,
                delta=leg.delta,
                clamp=not self._allow_negative,
            ))
        return changes, skipped

    def _log_applied(self, tx: Transaction, applied: list[AppliedBalanceChange]) -> None:
        for change in applied:
            logger.info(
                "balance_updated",
                transaction_id=str(tx.id),
                account_id=str(change.account_id),
                delta=str(change.delta),
                old_balance=str(change.old_balance),
                new_balance=str(change.new_balance),
            )
            if change.shortfall > 0:
                logger.warning(
                    "balance_clamped",
                    transaction_id=str(tx.id),
                    account_id=str(change.account_id),
                    shortfall=str(change.shortfall),
                )

    async def _commit(
        self,
        tx: Transaction,
        operation: LedgerOperation,
        changes: list[BalanceChange],
        skipped: list[UUID],
    ) -> ReconciliationResult:
        applied = await self._storage.commit(LedgerWrite(
            operation=operation,
            transaction=tx,
            balance_changes=changes,
        ))
        self._log_applied(tx, applied)
        return ReconciliationResult(
            transaction=tx,
            operation=operation,
            applied=applied,
            skipped_account_ids=skipped,
        )

    # -------------------------------------------------------------------------
    # Balance-only operations
    # -------------------------------------------------------------------------

    async def apply_effect(self, tx: Transaction) -> list[AppliedBalanceChange]:
        """
        Apply a transaction's effect to balances without touching the ledger.

        Legs on missing or gold accounts have no effect.
        """
        effect = effect_of(tx)
        async with self._account_locks.hold(*effect.account_ids):
            changes, _ = await self._plan(effect, strict=False)
            applied = await self._storage.apply_balance_changes(changes)
        self._log_applied(tx, applied)
        return applied

    async def reverse_effect(self, tx: Transaction) -> list[AppliedBalanceChange]:
        """
        Undo a transaction's effect on balances without touching the ledger.

        Uses the stored amount and account ids of tx.
        """
        effect = reverse_effect_of(tx)
        async with self._account_locks.hold(*effect.account_ids):
            changes, _ = await self._plan(effect, strict=False)
            applied = await self._storage.apply_balance_changes(changes)
        self._log_applied(tx, applied)
        return applied

    # -------------------------------------------------------------------------
    # Ledger operations
    # -------------------------------------------------------------------------

    async def record(self, tx: Transaction) -> ReconciliationResult:
        """
        Insert a new transaction and apply its effect, as one unit of work.

        Raises:
            TransactionValidationError: gold account referenced
            NotFoundError: referenced account does not exist
            DuplicateError: a transaction with this id exists
        """
        effect = effect_of(tx)
        async with self._tx_locks.hold(tx.id):
            async with self._account_locks.hold(*effect.account_ids):
                changes, skipped = await self._plan(effect, strict=True)
                return await self._commit(tx, LedgerOperation.INSERT, changes, skipped)

    async def revise(self, old: Transaction, new: Transaction) -> ReconciliationResult:
        """
        Reverse old's effect, apply new's effect and replace the record.

        All legs are committed together; reverse legs come first so each
        clamp sees the balance left by the previous leg. The reversal uses
        the record as currently stored, which may be newer than old.

        Raises:
            NotFoundError: old is no longer stored, or new references a
                missing account
            TransactionValidationError: new references a gold account
        """
        if new.id != old.id:
            raise TransactionValidationError("An update cannot change the transaction id", field="id")

        async with self._tx_locks.hold(old.id):
            stored = await self._storage.get_transaction(old.id)
            if stored is None:
                raise NotFoundError(f"Transaction not found: {old.id}")

            reverse = reverse_effect_of(stored)
            forward = effect_of(new)
            async with self._account_locks.hold(*(reverse + forward).account_ids):
                reverse_changes, skipped = await self._plan(reverse, strict=False)
                forward_changes, _ = await self._plan(forward, strict=True)
                return await self._commit(
                    new,
                    LedgerOperation.REPLACE,
                    reverse_changes + forward_changes,
                    skipped,
                )

    async def remove(self, tx: Transaction) -> ReconciliationResult:
        """
        Reverse the transaction's effect and delete the record.

        Raises:
            NotFoundError: the transaction is no longer stored
        """
        async with self._tx_locks.hold(tx.id):
            stored = await self._storage.get_transaction(tx.id)
            if stored is None:
                raise NotFoundError(f"Transaction not found: {tx.id}")

            reverse = reverse_effect_of(stored)
            async with self._account_locks.hold(*reverse.account_ids):
                changes, skipped = await self._plan(reverse, strict=False)
                return await self._commit(stored, LedgerOperation.DELETE, changes, skipped)
