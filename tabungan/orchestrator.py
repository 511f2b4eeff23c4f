"""
Main Orchestrator for Tabungan Keluarga

This module ties together all the components and defines the
end-to-end flows for:
1. Transactions (create / update / delete / list, with balance reconciliation)
2. Registries (storage accounts, savings and expense categories, family members)
3. Dashboard (statistics, gold price, asset summary)

DESIGN DECISION: The orchestrator enforces the failure policy:
- Create, update and delete raise to the caller with an actionable message
- Lists and statistics degrade to an empty result instead of crashing
- The gold price never fails; the oracle always answers with some price

This is the request/response boundary a presentation layer would call.
"""

from decimal import Decimal
from typing import Any, Optional
from uuid import UUID

from tabungan.config import get_settings
from tabungan.logger import get_logger
from tabungan.models.gold import GoldPriceResult
from tabungan.models.registry import (
    CATEGORY_MODELS,
    Category,
    CategoryKind,
    FamilyMember,
    StorageAccount,
    utc_now,
)
from tabungan.models.stats import (
    AccountValuation,
    AssetSummary,
    DashboardStatistics,
)
from tabungan.models.transaction import (
    DateRange,
    Transaction,
    TransactionFilters,
    TransactionInput,
)
from tabungan.queries import StatisticsAggregator
from tabungan.reconciliation import BalanceReconciler, build_transaction
from tabungan.services.gold import GoldPriceOracle
from tabungan.services.storage import (
    GoogleSheetsLedgerStorage,
    InMemoryLedgerStorage,
    LedgerStorageInterface,
    NotFoundError,
    StorageError,
)


logger = get_logger(__name__)


def _with_changes(record, changes: dict[str, Any]):
    """Re-validate a record with some fields overwritten. id is never changed."""
    data = record.model_dump()
    data.update({k: v for k, v in changes.items() if k not in ("id", "created_at")})
    data["updated_at"] = utc_now()
    return type(record).model_validate(data)


class TransactionFlow:
    """
    Orchestrates the transaction ledger.

    Flow for every write:
    1. Build / merge the transaction from a TransactionInput
    2. Hand it to the BalanceReconciler
    3. The reconciler validates references, then commits balances and the
       record as one unit of work

    Nothing is written if validation fails.
    """

    def __init__(
        self,
        storage: LedgerStorageInterface,
        reconciler: Optional[BalanceReconciler] = None,
    ):
        self._storage = storage
        self._reconciler = reconciler or BalanceReconciler(storage)

    @property
    def reconciler(self) -> BalanceReconciler:
        return self._reconciler

    async def create_transaction(self, data: TransactionInput) -> Transaction:
        """
        Record a transaction and apply its effect on balances.

        Raises:
            TransactionValidationError: missing or invalid fields for the type,
                or a gold account referenced
            NotFoundError: a referenced account does not exist
            StorageError: the write failed; nothing was applied
        """
        tx = build_transaction(data)
        result = await self._reconciler.record(tx)
        logger.info(
            "transaction_created",
            transaction_id=str(tx.id),
            type=tx.type.value,
            amount=str(tx.amount),
            shortfall=str(result.shortfall),
        )
        return result.transaction

    async def update_transaction(self, transaction_id: UUID, data: TransactionInput) -> Transaction:
        """
        Overwrite the supplied fields of a transaction and re-reconcile.

        The old effect is reversed and the new one applied. Fields not
        supplied keep their stored values.

        Raises:
            NotFoundError: no transaction with this id
            TransactionValidationError: the merged transaction is invalid
        """
        old = await self._storage.get_transaction(transaction_id)
        if old is None:
            raise NotFoundError(f"Transaction not found: {transaction_id}")

        merged = data.merged_with(old)
        identity = {"id": old.id, "created_at": old.created_at, "updated_at": utc_now()}
        if merged.date is None:
            identity["date"] = old.date
        new = build_transaction(merged, **identity)

        result = await self._reconciler.revise(old, new)
        logger.info(
            "transaction_updated",
            transaction_id=str(new.id),
            type=new.type.value,
            amount=str(new.amount),
            shortfall=str(result.shortfall),
        )
        return result.transaction

    async def delete_transaction(self, transaction_id: UUID) -> None:
        """
        Reverse a transaction's effect and remove it.

        Raises:
            NotFoundError: no transaction with this id
        """
        tx = await self._storage.get_transaction(transaction_id)
        if tx is None:
            raise NotFoundError(f"Transaction not found: {transaction_id}")

        result = await self._reconciler.remove(tx)
        logger.info(
            "transaction_deleted",
            transaction_id=str(transaction_id),
            skipped_accounts=[str(a) for a in result.skipped_account_ids],
        )

    async def list_transactions(
        self,
        filters: Optional[TransactionFilters] = None,
    ) -> list[Transaction]:
        """Newest first. Returns [] when storage cannot be read."""
        try:
            return await self._storage.list_transactions(filters)
        except StorageError as e:
            logger.error("list_transactions_failed", error=str(e))
            return []


class RegistryFlow:
    """
    Orchestrates the registries the ledger refers to.

    Deletes never cascade: transactions that point at a deleted account,
    category or member keep the dangling id.
    """

    def __init__(self, storage: LedgerStorageInterface):
        self._storage = storage

    # -------------------------------------------------------------------------
    # Storage accounts
    # -------------------------------------------------------------------------

    async def create_account(self, data: dict[str, Any]) -> StorageAccount:
        """
        Raises:
            pydantic.ValidationError: required fields missing or invalid
        """
        account = StorageAccount.model_validate(data)
        await self._storage.save_account(account)
        logger.info("account_created", account_id=str(account.id), is_gold=account.is_gold)
        return account

    async def update_account(self, account_id: UUID, changes: dict[str, Any]) -> StorageAccount:
        existing = await self._storage.get_account(account_id)
        if existing is None:
            raise NotFoundError(f"Storage account not found: {account_id}")
        account = _with_changes(existing, changes)
        await self._storage.update_account(account, keep_balance="balance" not in changes)
        logger.info("account_updated", account_id=str(account_id))
        return await self._storage.get_account(account_id) or account

    async def delete_account(self, account_id: UUID) -> bool:
        deleted = await self._storage.delete_account(account_id)
        if deleted:
            logger.info("account_deleted", account_id=str(account_id))
        return deleted

    async def list_accounts(self) -> list[StorageAccount]:
        try:
            return await self._storage.list_accounts()
        except StorageError as e:
            logger.error("list_accounts_failed", error=str(e))
            return []

    # -------------------------------------------------------------------------
    # Categories
    # -------------------------------------------------------------------------

    async def create_category(self, kind: CategoryKind, data: dict[str, Any]) -> Category:
        category = CATEGORY_MODELS[kind].model_validate(data)
        await self._storage.save_category(category)
        logger.info("category_created", kind=kind.value, category_id=str(category.id))
        return category

    async def update_category(
        self,
        kind: CategoryKind,
        category_id: UUID,
        changes: dict[str, Any],
    ) -> Category:
        existing = await self._storage.get_category(kind, category_id)
        if existing is None:
            raise NotFoundError(f"Category not found: {category_id}")
        category = _with_changes(existing, changes)
        await self._storage.update_category(category)
        logger.info("category_updated", kind=kind.value, category_id=str(category_id))
        return category

    async def delete_category(self, kind: CategoryKind, category_id: UUID) -> bool:
        deleted = await self._storage.delete_category(kind, category_id)
        if deleted:
            logger.info("category_deleted", kind=kind.value, category_id=str(category_id))
        return deleted

    async def list_categories(self, kind: CategoryKind) -> list[Category]:
        try:
            return await self._storage.list_categories(kind)
        except StorageError as e:
            logger.error("list_categories_failed", kind=kind.value, error=str(e))
            return []

    # -------------------------------------------------------------------------
    # Family members
    # -------------------------------------------------------------------------

    async def create_member(self, data: dict[str, Any]) -> FamilyMember:
        member = FamilyMember.model_validate(data)
        await self._storage.save_member(member)
        logger.info("member_created", member_id=str(member.id))
        return member

    async def update_member(self, member_id: UUID, changes: dict[str, Any]) -> FamilyMember:
        existing = await self._storage.get_member(member_id)
        if existing is None:
            raise NotFoundError(f"Family member not found: {member_id}")
        member = _with_changes(existing, changes)
        await self._storage.update_member(member)
        logger.info("member_updated", member_id=str(member_id))
        return member

    async def delete_member(self, member_id: UUID) -> bool:
        deleted = await self._storage.delete_member(member_id)
        if deleted:
            logger.info("member_deleted", member_id=str(member_id))
        return deleted

    async def list_members(self) -> list[FamilyMember]:
        try:
            return await self._storage.list_members()
        except StorageError as e:
            logger.error("list_members_failed", error=str(e))
            return []


class DashboardFlow:
    """
    Read-only views for the dashboard.

    None of these raise on storage or network failure.
    """

    def __init__(
        self,
        storage: LedgerStorageInterface,
        gold_oracle: Optional[GoldPriceOracle] = None,
        aggregator: Optional[StatisticsAggregator] = None,
    ):
        self._storage = storage
        self._gold_oracle = gold_oracle or GoldPriceOracle()
        self._aggregator = aggregator or StatisticsAggregator(storage)

    async def get_statistics(
        self,
        date_range: Optional[DateRange] = None,
        month: Optional[str] = None,
        non_zero_only: bool = False,
    ) -> DashboardStatistics:
        """
        Statistics for a period, or empty statistics with error_message set
        when storage cannot be read.

        Raises:
            ValueError: month is not in YYYY-MM form
        """
        if date_range is None and month:
            date_range = DateRange.for_month(month)
        try:
            return await self._aggregator.get_statistics(
                date_range=date_range,
                non_zero_only=non_zero_only,
            )
        except StorageError as e:
            logger.error("statistics_failed", error=str(e))
            return DashboardStatistics(
                date_range=date_range,
                error_message="Failed to fetch statistics",
            )

    async def get_gold_price_per_gram(self) -> GoldPriceResult:
        return self._gold_oracle.get_price_per_gram()

    async def get_asset_summary(self) -> AssetSummary:
        """
        Every account valued in the app currency.

        Gold accounts are valued at weight x current price per gram; the
        oracle is only consulted when at least one gold account exists.
        """
        try:
            accounts = await self._storage.list_accounts()
        except StorageError as e:
            logger.error("asset_summary_failed", error=str(e))
            return AssetSummary()

        price: Optional[Decimal] = None
        if any(account.is_gold for account in accounts):
            price = self._gold_oracle.get_price_per_gram().price_per_gram

        valuations = [
            AccountValuation(
                account_id=account.id,
                name=account.name,
                is_gold=account.is_gold,
                balance=account.balance,
                gold_weight=account.gold_weight,
                value=account.value(price),
            )
            for account in accounts
        ]
        return AssetSummary(
            accounts=valuations,
            gold_price_per_gram=price,
            total=sum((v.value for v in valuations), Decimal("0.00")),
        )


def create_storage(backend: Optional[str] = None) -> LedgerStorageInterface:
    """
    Storage for the configured backend.

    If Google Sheets is requested but not configured, falls back to the
    in-memory backend and logs an error.
    """
    backend = backend or get_settings().storage.backend
    if backend == "google_sheets":
        try:
            return GoogleSheetsLedgerStorage()
        except Exception as e:
            logger.error("storage_not_configured", backend=backend, error=str(e))
    return InMemoryLedgerStorage()


def create_app_components(
    storage: Optional[LedgerStorageInterface] = None,
    gold_oracle: Optional[GoldPriceOracle] = None,
) -> tuple[TransactionFlow, RegistryFlow, DashboardFlow]:
    """
    Factory function to create all application components.

    Args:
        storage: Backend to use. Defaults to the one named in settings.
        gold_oracle: Gold price oracle. Defaults to live prices over HTTP.

    Returns:
        (transaction_flow, registry_flow, dashboard_flow)
    """
    storage = storage or create_storage()

    transaction_flow = TransactionFlow(storage)
    registry_flow = RegistryFlow(storage)
    dashboard_flow = DashboardFlow(storage, gold_oracle=gold_oracle)

    logger.info(
        "app_components_created",
        environment=get_settings().app.app_environment,
        storage=type(storage).__name__,
    )

    return transaction_flow, registry_flow, dashboard_flow
