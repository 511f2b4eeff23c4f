"""
Google Sheets Ledger Storage

DESIGN DECISION: The persistent backend is a spreadsheet the household can
open and read themselves. A family ledger is a few thousand rows at most,
so reading a whole sheet and filtering in Python is fine.

TRADEOFFS:
- Sheets has no transactions. commit() writes every balance cell in a
  single batch_update and, if the record write then fails, writes the
  previous balances back (compensation, not isolation)
- Every lookup reads the full sheet

One worksheet per table, one record per row, header row first. Every cell
is stored as a string; empty string means None.
"""

from typing import Optional, Type
from uuid import UUID

import gspread
from google.oauth2.service_account import Credentials
from gspread.utils import rowcol_to_a1
from pydantic import BaseModel
from tenacity import retry, stop_after_attempt, wait_exponential

from tabungan.config import get_settings
from tabungan.logger import get_logger
from tabungan.models.registry import (
    CATEGORY_MODELS,
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
    parse_transaction,
    sort_newest_first,
)
from tabungan.services.storage.interface import (
    ConnectionError,
    DuplicateError,
    LedgerOperation,
    LedgerStorageInterface,
    LedgerWrite,
    NotFoundError,
    StorageError,
    stage_balance_changes,
)


ACCOUNT_COLUMNS = [
    "id",
    "name",
    "description",
    "icon",
    "color",
    "account_number",
    "balance",
    "is_gold",
    "gold_weight",
    "created_at",
    "updated_at",
]

SAVINGS_CATEGORY_COLUMNS = [
    "id",
    "name",
    "description",
    "icon",
    "color",
    "target_amount",
    "storage_account_id",
    "created_at",
    "updated_at",
]

EXPENSE_CATEGORY_COLUMNS = [
    "id",
    "name",
    "description",
    "icon",
    "color",
    "budget_limit",
    "storage_account_id",
    "created_at",
    "updated_at",
]

FAMILY_MEMBER_COLUMNS = [
    "id",
    "name",
    "role",
    "avatar",
    "created_at",
    "updated_at",
]

TRANSACTION_COLUMNS = [
    "id",
    "type",
    "amount",
    "description",
    "date",
    "family_member_id",
    "savings_category_id",
    "expense_category_id",
    "from_account_id",
    "to_account_id",
    "created_at",
    "updated_at",
]

logger = get_logger(__name__)


class GoogleSheetsClient:
    """
    Opens the configured spreadsheet with a service account.

    The gspread client and spreadsheet handle are created once and reused.
    """

    def __init__(self):
        self._client: Optional[gspread.Client] = None
        self._spreadsheet: Optional[gspread.Spreadsheet] = None
        self._settings = get_settings().google_sheets

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    def connect(self) -> gspread.Client:
        """Authorize with the service account, once per client."""
        if self._client is None:
            try:
                scopes = [
                    "https://www.googleapis.com/auth/spreadsheets",
                    "https://www.googleapis.com/auth/drive",
                ]
                credentials = Credentials.from_service_account_file(
                    self._settings.credentials_path,
                    scopes=scopes,
                )
                self._client = gspread.authorize(credentials)
            except FileNotFoundError:
                raise ConnectionError(
                    f"Google credentials file not found: {self._settings.credentials_path}"
                )
            except Exception as e:
                raise ConnectionError(f"Failed to connect to Google Sheets: {e}")

        return self._client

    def get_spreadsheet(self) -> gspread.Spreadsheet:
        """The spreadsheet named by GOOGLE_SHEETS_SPREADSHEET_ID."""
        if self._spreadsheet is None:
            client = self.connect()
            try:
                self._spreadsheet = client.open_by_key(
                    self._settings.spreadsheet_id
                )
            except gspread.SpreadsheetNotFound:
                raise ConnectionError(
                    f"Spreadsheet not found: {self._settings.spreadsheet_id}"
                )
        return self._spreadsheet

    def get_worksheet(self, title: str, columns: list[str]) -> gspread.Worksheet:
        """Get or create a worksheet, writing the header row on creation."""
        spreadsheet = self.get_spreadsheet()
        try:
            sheet = spreadsheet.worksheet(title)
        except gspread.WorksheetNotFound:
            sheet = spreadsheet.add_worksheet(
                title=title,
                rows=1000,
                cols=len(columns),
            )
            sheet.append_row(columns)
        return sheet

    @property
    def sheet_names(self) -> dict[str, str]:
        return {
            "accounts": self._settings.accounts_sheet_name,
            "savings_categories": self._settings.savings_categories_sheet_name,
            "expense_categories": self._settings.expense_categories_sheet_name,
            "family_members": self._settings.family_members_sheet_name,
            "transactions": self._settings.transactions_sheet_name,
        }


class SheetTable:
    """
    One worksheet treated as a table of records keyed by the 'id' column.

    Row indexes are 1-based sheet rows; row 1 is the header.
    """

    def __init__(self, client: GoogleSheetsClient, title: str, columns: list[str]):
        self._client = client
        self.title = title
        self.columns = columns

    def worksheet(self) -> gspread.Worksheet:
        return self._client.get_worksheet(self.title, self.columns)

    def record_to_row(self, record: BaseModel) -> list[str]:
        """Convert a model to a row of strings in column order."""
        data = record.model_dump(mode="json")
        row = []
        for column in self.columns:
            value = data.get(column)
            row.append("" if value is None else str(value))
        return row

    def row_to_dict(self, row: list[str]) -> dict:
        """Convert a row of strings to a dict, dropping empty cells."""
        data = {}
        for index, column in enumerate(self.columns):
            value = row[index] if index < len(row) else ""
            if value != "":
                data[column] = value
        return data

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    def read_rows(self) -> list[tuple[int, dict]]:
        """All non-empty data rows as (sheet_row_index, dict)."""
        all_rows = self.worksheet().get_all_values()
        return [
            (index, self.row_to_dict(row))
            for index, row in enumerate(all_rows[1:], start=2)
            if row and row[0]
        ]

    def find(self, record_id: UUID) -> Optional[tuple[int, dict]]:
        for index, data in self.read_rows():
            if data.get("id") == str(record_id):
                return index, data
        return None

    def append(self, record: BaseModel) -> None:
        self.worksheet().append_row(self.record_to_row(record), value_input_option="RAW")

    def replace(self, row_index: int, record: BaseModel) -> None:
        self.worksheet().batch_update([self.row_update(row_index, record)])

    def row_update(self, row_index: int, record: BaseModel) -> dict:
        """A batch_update entry that overwrites one whole row."""
        first = rowcol_to_a1(row_index, 1)
        last = rowcol_to_a1(row_index, len(self.columns))
        return {"range": f"{first}:{last}", "values": [self.record_to_row(record)]}

    def delete(self, row_index: int) -> None:
        self.worksheet().delete_rows(row_index)


class GoogleSheetsLedgerStorage(LedgerStorageInterface):
    """
    Google Sheets implementation of the full storage interface.
    """

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()
        names = self._client.sheet_names
        self._accounts = SheetTable(self._client, names["accounts"], ACCOUNT_COLUMNS)
        self._categories = {
            CategoryKind.SAVINGS: SheetTable(
                self._client, names["savings_categories"], SAVINGS_CATEGORY_COLUMNS
            ),
            CategoryKind.EXPENSE: SheetTable(
                self._client, names["expense_categories"], EXPENSE_CATEGORY_COLUMNS
            ),
        }
        self._members = SheetTable(self._client, names["family_members"], FAMILY_MEMBER_COLUMNS)
        self._transactions = SheetTable(self._client, names["transactions"], TRANSACTION_COLUMNS)

    # -------------------------------------------------------------------------
    # Generic helpers
    # -------------------------------------------------------------------------

    def _save(self, table: SheetTable, record: BaseModel, label: str) -> bool:
        try:
            if table.find(record.id) is not None:
                raise DuplicateError(f"{label} already exists: {record.id}")
            table.append(record)
            return True
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to save {label.lower()}: {e}")

    def _get(self, table: SheetTable, record_id: UUID, model: Type[BaseModel], label: str):
        try:
            found = table.find(record_id)
            return model.model_validate(found[1]) if found else None
        except Exception as e:
            raise StorageError(f"Failed to get {label.lower()}: {e}")

    def _list(self, table: SheetTable, model: Type[BaseModel]) -> list:
        records = []
        for _, data in table.read_rows():
            try:
                records.append(model.model_validate(data))
            except Exception:
                logger.warning("malformed_row_skipped", sheet=table.title, row_id=data.get("id"))
        return records

    def _update(self, table: SheetTable, record: BaseModel, label: str) -> bool:
        try:
            found = table.find(record.id)
            if found is None:
                raise NotFoundError(f"{label} not found: {record.id}")
            table.replace(found[0], record.model_copy(update={"updated_at": utc_now()}))
            return True
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to update {label.lower()}: {e}")

    def _delete(self, table: SheetTable, record_id: UUID, label: str) -> bool:
        try:
            found = table.find(record_id)
            if found is None:
                return False
            table.delete(found[0])
            return True
        except Exception as e:
            raise StorageError(f"Failed to delete {label.lower()}: {e}")

    # -------------------------------------------------------------------------
    # Accounts
    # -------------------------------------------------------------------------

    async def save_account(self, account: StorageAccount) -> bool:
        return self._save(self._accounts, account, "Storage account")

    async def get_account(self, account_id: UUID) -> Optional[StorageAccount]:
        return self._get(self._accounts, account_id, StorageAccount, "Storage account")

    async def list_accounts(self) -> list[StorageAccount]:
        try:
            accounts = self._list(self._accounts, StorageAccount)
        except Exception as e:
            raise StorageError(f"Failed to list storage accounts: {e}")
        return sorted(accounts, key=lambda a: a.name.lower())

    async def update_account(
        self,
        account: StorageAccount,
        keep_balance: bool = True,
    ) -> bool:
        try:
            found = self._accounts.find(account.id)
            if found is None:
                raise NotFoundError(f"Storage account not found: {account.id}")
            update = {"updated_at": utc_now()}
            if keep_balance:
                update["balance"] = StorageAccount.model_validate(found[1]).balance
            self._accounts.replace(found[0], account.model_copy(update=update))
            return True
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to update storage account: {e}")

    async def delete_account(self, account_id: UUID) -> bool:
        return self._delete(self._accounts, account_id, "Storage account")

    def _stage_account_balances(
        self,
        changes: list[BalanceChange],
    ) -> tuple[list[AppliedBalanceChange], list[dict], list[dict]]:
        """
        Compute new balances against the current sheet contents.

        Returns:
            (applied, forward_updates, rollback_updates) where the update
            lists are batch_update entries for the touched account rows
        """
        touched = {str(change.account_id) for change in changes}
        rows = {}
        for index, data in self._accounts.read_rows():
            try:
                account = StorageAccount.model_validate(data)
            except Exception:
                # A malformed row only blocks writes that touch it
                if data.get("id") in touched:
                    raise
                logger.warning(
                    "malformed_row_skipped", sheet=self._accounts.title, row_id=data.get("id")
                )
                continue
            rows[account.id] = (index, account)

        balances = {account_id: account.balance for account_id, (_, account) in rows.items()}
        applied = stage_balance_changes(balances, changes)

        now = utc_now()
        forward, rollback = [], []
        for account_id in {change.account_id for change in applied}:
            index, account = rows[account_id]
            updated = account.model_copy(update={"balance": balances[account_id], "updated_at": now})
            forward.append(self._accounts.row_update(index, updated))
            rollback.append(self._accounts.row_update(index, account))
        return applied, forward, rollback

    async def apply_balance_changes(
        self,
        changes: list[BalanceChange],
    ) -> list[AppliedBalanceChange]:
        try:
            applied, forward, _ = self._stage_account_balances(changes)
            if forward:
                self._accounts.worksheet().batch_update(forward)
            return applied
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to apply balance changes: {e}")

    # -------------------------------------------------------------------------
    # Categories
    # -------------------------------------------------------------------------

    async def save_category(self, category: Category) -> bool:
        return self._save(self._categories[category.kind], category, "Category")

    async def get_category(self, kind: CategoryKind, category_id: UUID) -> Optional[Category]:
        return self._get(self._categories[kind], category_id, CATEGORY_MODELS[kind], "Category")

    async def list_categories(self, kind: CategoryKind) -> list[Category]:
        try:
            categories = self._list(self._categories[kind], CATEGORY_MODELS[kind])
        except Exception as e:
            raise StorageError(f"Failed to list categories: {e}")
        return sorted(categories, key=lambda c: c.created_at, reverse=True)

    async def update_category(self, category: Category) -> bool:
        return self._update(self._categories[category.kind], category, "Category")

    async def delete_category(self, kind: CategoryKind, category_id: UUID) -> bool:
        return self._delete(self._categories[kind], category_id, "Category")

    # -------------------------------------------------------------------------
    # Family members
    # -------------------------------------------------------------------------

    async def save_member(self, member: FamilyMember) -> bool:
        return self._save(self._members, member, "Family member")

    async def get_member(self, member_id: UUID) -> Optional[FamilyMember]:
        return self._get(self._members, member_id, FamilyMember, "Family member")

    async def list_members(self) -> list[FamilyMember]:
        try:
            members = self._list(self._members, FamilyMember)
        except Exception as e:
            raise StorageError(f"Failed to list family members: {e}")
        return sorted(members, key=lambda m: m.name.lower())

    async def update_member(self, member: FamilyMember) -> bool:
        return self._update(self._members, member, "Family member")

    async def delete_member(self, member_id: UUID) -> bool:
        return self._delete(self._members, member_id, "Family member")

    # -------------------------------------------------------------------------
    # Transactions
    # -------------------------------------------------------------------------

    async def get_transaction(self, transaction_id: UUID) -> Optional[Transaction]:
        try:
            found = self._transactions.find(transaction_id)
            return parse_transaction(found[1]) if found else None
        except Exception as e:
            raise StorageError(f"Failed to get transaction: {e}")

    async def list_transactions(
        self,
        filters: Optional[TransactionFilters] = None,
    ) -> list[Transaction]:
        filters = filters or TransactionFilters()
        try:
            rows = self._transactions.read_rows()
        except Exception as e:
            raise StorageError(f"Failed to list transactions: {e}")

        transactions = []
        for _, data in rows:
            try:
                tx = parse_transaction(data)
            except Exception:
                logger.warning("malformed_transaction_row_skipped", row_id=data.get("id"))
                continue
            if filters.matches(tx):
                transactions.append(tx)
        return sort_newest_first(transactions)

    async def commit(self, write: LedgerWrite) -> list[AppliedBalanceChange]:
        """
        Write balances in one batch, then the transaction record.

        If the record write fails the previous balances are written back
        before the error is raised.
        """
        tx = write.transaction
        try:
            found = self._transactions.find(tx.id)
            if write.operation == LedgerOperation.INSERT and found is not None:
                raise DuplicateError(f"Transaction already exists: {tx.id}")
            if write.operation != LedgerOperation.INSERT and found is None:
                raise NotFoundError(f"Transaction not found: {tx.id}")

            applied, forward, rollback = self._stage_account_balances(write.balance_changes)
            accounts_sheet = self._accounts.worksheet()
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to prepare ledger write: {e}")

        try:
            if forward:
                accounts_sheet.batch_update(forward)
        except Exception as e:
            raise StorageError(f"Failed to write balances: {e}")

        try:
            if write.operation == LedgerOperation.INSERT:
                self._transactions.append(tx)
            elif write.operation == LedgerOperation.REPLACE:
                self._transactions.replace(found[0], tx)
            else:
                self._transactions.delete(found[0])
        except Exception as e:
            logger.error(
                "ledger_write_failed_rolling_back",
                transaction_id=str(tx.id),
                operation=write.operation.value,
                error=str(e),
            )
            if rollback:
                try:
                    accounts_sheet.batch_update(rollback)
                except Exception as rollback_error:
                    logger.critical(
                        "balance_rollback_failed",
                        transaction_id=str(tx.id),
                        error=str(rollback_error),
                    )
            raise StorageError(f"Failed to write transaction: {e}")

        return applied
