"""
Transaction Models

A transaction is modeled as a tagged union rather than one record with
five nullable foreign keys:

    income    -> IncomeTransaction(to_account_id)
    expense   -> ExpenseTransaction(from_account_id, expense_category_id?)
    savings   -> SavingsTransaction(from_account_id, savings_category_id?)
    transfer  -> TransferTransaction(from_account_id, to_account_id)

This makes illegal states unrepresentable: an income without a destination,
or a transfer into the account it came from, cannot be constructed.

Callers talk in TransactionInput, the flat shape a form or API body has.
TransactionInput.to_transaction() is the single place where the flat shape
is checked against the per-type contract.
"""

import calendar
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Annotated, Literal, Optional, Union
from uuid import UUID, uuid4

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    TypeAdapter,
    ValidationError,
    model_validator,
)

from tabungan.models.registry import Money, utc_now


TransactionDate = date


class TransactionType(str, Enum):
    """The four kinds of money movement."""
    INCOME = "income"
    EXPENSE = "expense"
    SAVINGS = "savings"
    TRANSFER = "transfer"


# =============================================================================
# TAGGED UNION
# =============================================================================

class TransactionBase(BaseModel):
    """Fields every transaction carries regardless of type."""
    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(default_factory=uuid4)
    amount: Money = Field(..., gt=0, description="Positive amount in the app currency")
    description: Optional[str] = Field(default=None, max_length=500)
    date: TransactionDate = Field(default_factory=date.today)
    family_member_id: Optional[UUID] = None
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    @property
    def source_account_id(self) -> Optional[UUID]:
        return getattr(self, "from_account_id", None)

    @property
    def destination_account_id(self) -> Optional[UUID]:
        return getattr(self, "to_account_id", None)

    @property
    def account_ids(self) -> tuple[UUID, ...]:
        """Every storage account this transaction touches."""
        return tuple(
            account_id
            for account_id in (self.source_account_id, self.destination_account_id)
            if account_id is not None
        )

    def touches_account(self, account_id: UUID) -> bool:
        return account_id in self.account_ids


class IncomeTransaction(TransactionBase):
    """Money arriving into the household."""
    type: Literal[TransactionType.INCOME] = TransactionType.INCOME
    to_account_id: UUID


class ExpenseTransaction(TransactionBase):
    """Money leaving the household."""
    type: Literal[TransactionType.EXPENSE] = TransactionType.EXPENSE
    from_account_id: UUID
    expense_category_id: Optional[UUID] = None


class SavingsTransaction(TransactionBase):
    """Money set aside towards a savings goal."""
    type: Literal[TransactionType.SAVINGS] = TransactionType.SAVINGS
    from_account_id: UUID
    savings_category_id: Optional[UUID] = None


class TransferTransaction(TransactionBase):
    """Money moving between two of the household's own accounts."""
    type: Literal[TransactionType.TRANSFER] = TransactionType.TRANSFER
    from_account_id: UUID
    to_account_id: UUID

    @model_validator(mode='after')
    def accounts_must_differ(self) -> 'TransferTransaction':
        if self.from_account_id == self.to_account_id:
            raise ValueError("Transfer source and destination must be different accounts")
        return self


Transaction = Annotated[
    Union[IncomeTransaction, ExpenseTransaction, SavingsTransaction, TransferTransaction],
    Field(discriminator="type"),
]

transaction_adapter: TypeAdapter[Transaction] = TypeAdapter(Transaction)


def parse_transaction(data: dict) -> Transaction:
    """Build the right transaction variant from a dict (e.g. a storage row)."""
    return transaction_adapter.validate_python(data)


# =============================================================================
# INPUT SHAPE
# =============================================================================

class TransactionInputError(ValueError):
    """A TransactionInput does not satisfy the contract for its type."""

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.field = field


class TransactionInput(BaseModel):
    """
    The flat request shape used by create and update.

    Every field is optional here because update only overwrites what the
    caller supplies. Empty strings count as "not supplied".
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    type: Optional[TransactionType] = None
    amount: Optional[Money] = Field(default=None, gt=0)
    description: Optional[str] = Field(default=None, max_length=500)
    date: Optional[TransactionDate] = None
    family_member_id: Optional[UUID] = None
    savings_category_id: Optional[UUID] = None
    expense_category_id: Optional[UUID] = None
    from_account_id: Optional[UUID] = None
    to_account_id: Optional[UUID] = None

    @model_validator(mode='before')
    @classmethod
    def drop_blank_fields(cls, data):
        # Dropped keys stay out of model_fields_set, so merged_with keeps
        # the stored value for them
        if isinstance(data, dict):
            return {
                key: value for key, value in data.items()
                if not (isinstance(value, str) and not value.strip())
            }
        return data

    def to_transaction(self, **identity) -> Transaction:
        """
        Build a transaction variant from this input.

        Keyword arguments (id, created_at, ...) are passed straight through,
        which is how update keeps the identity of the original record.

        Raises:
            TransactionInputError: if a field required by the type is missing
                or the combination is invalid
        """
        if self.type is None:
            raise TransactionInputError("Transaction type is required", field="type")
        if self.amount is None:
            raise TransactionInputError("Amount is required", field="amount")

        if self.type in (TransactionType.INCOME, TransactionType.TRANSFER) and not self.to_account_id:
            raise TransactionInputError(
                f"A {self.type.value} transaction needs a destination account",
                field="to_account_id",
            )
        if self.type in (
            TransactionType.EXPENSE, TransactionType.SAVINGS, TransactionType.TRANSFER
        ) and not self.from_account_id:
            raise TransactionInputError(
                f"A {self.type.value} transaction needs a source account",
                field="from_account_id",
            )

        data = {
            "type": self.type,
            "amount": self.amount,
            "description": self.description,
            "family_member_id": self.family_member_id,
            **identity,
        }
        if self.date is not None:
            data["date"] = self.date

        if self.type == TransactionType.INCOME:
            data["to_account_id"] = self.to_account_id
        elif self.type == TransactionType.EXPENSE:
            data["from_account_id"] = self.from_account_id
            data["expense_category_id"] = self.expense_category_id
        elif self.type == TransactionType.SAVINGS:
            data["from_account_id"] = self.from_account_id
            data["savings_category_id"] = self.savings_category_id
        else:
            data["from_account_id"] = self.from_account_id
            data["to_account_id"] = self.to_account_id

        try:
            return parse_transaction(data)
        except ValidationError as e:
            first = e.errors()[0]
            raise TransactionInputError(first["msg"], field=".".join(str(p) for p in first["loc"]))

    def merged_with(self, old: TransactionBase) -> 'TransactionInput':
        """
        Overlay the supplied fields of this input on an existing transaction.

        Fields left unset here keep their old values. Fields that make no
        sense for the resulting type are dropped by to_transaction().
        """
        base = TransactionInput(
            type=old.type,
            amount=old.amount,
            description=old.description,
            date=old.date,
            family_member_id=old.family_member_id,
            savings_category_id=getattr(old, "savings_category_id", None),
            expense_category_id=getattr(old, "expense_category_id", None),
            from_account_id=old.source_account_id,
            to_account_id=old.destination_account_id,
        )
        return base.model_copy(update=self.model_dump(exclude_unset=True))


# =============================================================================
# QUERY SHAPES
# =============================================================================

class DateRange(BaseModel):
    """Inclusive range of transaction dates. Either end may be open."""
    model_config = ConfigDict(frozen=True)

    start: Optional[date] = None
    end: Optional[date] = None

    @model_validator(mode='after')
    def validate_order(self) -> 'DateRange':
        if self.start and self.end and self.end < self.start:
            raise ValueError("Date range end cannot be before start")
        return self

    @classmethod
    def for_month(cls, month: str) -> 'DateRange':
        """
        Range covering a whole calendar month given as 'YYYY-MM'.

        Raises:
            ValueError: if month is not in YYYY-MM form
        """
        try:
            year_str, month_str = month.split("-")
            year, month_num = int(year_str), int(month_str)
            last_day = calendar.monthrange(year, month_num)[1]
        except (ValueError, calendar.IllegalMonthError):
            raise ValueError(f"Invalid month '{month}', expected YYYY-MM")
        return cls(start=date(year, month_num, 1), end=date(year, month_num, last_day))

    def contains(self, day: date) -> bool:
        if self.start and day < self.start:
            return False
        if self.end and day > self.end:
            return False
        return True


class TransactionFilters(BaseModel):
    """Filters for listing transactions. All are optional and combine with AND."""

    type: Optional[TransactionType] = None
    family_member_id: Optional[UUID] = None
    date_range: Optional[DateRange] = None
    storage_account_id: Optional[UUID] = Field(
        default=None,
        description="Matches transactions where the account is either leg"
    )
    savings_category_id: Optional[UUID] = None
    expense_category_id: Optional[UUID] = None

    def matches(self, tx: TransactionBase) -> bool:
        if self.type and tx.type != self.type:
            return False
        if self.family_member_id and tx.family_member_id != self.family_member_id:
            return False
        if self.date_range and not self.date_range.contains(tx.date):
            return False
        if self.storage_account_id and not tx.touches_account(self.storage_account_id):
            return False
        if self.savings_category_id and getattr(tx, "savings_category_id", None) != self.savings_category_id:
            return False
        if self.expense_category_id and getattr(tx, "expense_category_id", None) != self.expense_category_id:
            return False
        return True


def sort_newest_first(transactions: list) -> list:
    """Order by date descending, ties broken by creation time descending."""
    return sorted(transactions, key=lambda t: (t.date, t.created_at), reverse=True)
