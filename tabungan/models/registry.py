"""
Registry Models for Tabungan Keluarga

The leaf records the ledger refers to: storage accounts, savings and
expense categories, and family members.

DESIGN DECISION: Money is Decimal with two decimal places, never float.
Balances are mutated many times over the life of an account and binary
floating point drifts.

Registries do not cascade. Deleting an account or category leaves
transactions pointing at an id that no longer resolves; every consumer
must tolerate that.
"""

from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Annotated, Optional
from uuid import UUID, uuid4

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)


CENT = Decimal("0.01")

Money = Annotated[Decimal, Field(decimal_places=2)]


def utc_now() -> datetime:
    """Timezone-aware current time, used for record timestamps."""
    return datetime.now(timezone.utc)


def to_money(value: Decimal) -> Decimal:
    """Quantize a value to whole cents."""
    return Decimal(value).quantize(CENT)


# =============================================================================
# STORAGE ACCOUNTS
# =============================================================================

class StorageAccount(BaseModel):
    """
    A named holding of money or gold: cash, bank, e-wallet, gold.

    For gold accounts the valuation comes from gold_weight and the current
    price per gram. Reconciliation never writes to a gold account's balance.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(default_factory=uuid4)
    name: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = Field(default=None, max_length=500)
    icon: Optional[str] = Field(default=None, max_length=100)
    color: Optional[str] = Field(default=None, max_length=30)
    account_number: Optional[str] = Field(
        default=None,
        max_length=50,
        description="External bank / e-wallet account number"
    )
    balance: Money = Field(
        default=Decimal("0.00"),
        description="Current balance in the app currency"
    )
    is_gold: bool = False
    gold_weight: Optional[Decimal] = Field(
        default=None,
        ge=0,
        description="Gold held, in grams (gold accounts only)"
    )
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    @field_validator('description', 'icon', 'color', 'account_number', mode='before')
    @classmethod
    def blank_to_none(cls, v):
        if isinstance(v, str) and not v.strip():
            return None
        return v

    @model_validator(mode='after')
    def drop_weight_for_non_gold(self) -> 'StorageAccount':
        """Gold weight is only meaningful on gold accounts."""
        if not self.is_gold and self.gold_weight is not None:
            self.gold_weight = None
        return self

    def value(self, price_per_gram: Optional[Decimal] = None) -> Decimal:
        """
        Value of this account in the app currency.

        Gold accounts are valued as weight x price; their balance is ignored.
        Without a price (or weight) a gold account is worth zero.
        """
        if self.is_gold:
            if self.gold_weight is None or not price_per_gram:
                return Decimal("0.00")
            return to_money(self.gold_weight * price_per_gram)
        return self.balance


class BalanceChange(BaseModel):
    """
    One signed change to an account balance, as handed to storage.

    When clamp is True a decrement that would go below zero stops at zero.
    """
    model_config = ConfigDict(frozen=True)

    account_id: UUID
    delta: Money
    clamp: bool = True


class AppliedBalanceChange(BaseModel):
    """What storage actually did with a BalanceChange."""

    account_id: UUID
    delta: Money
    old_balance: Money
    new_balance: Money

    @property
    def shortfall(self) -> Decimal:
        """
        How much of a decrement was swallowed by clamping.

        Zero unless the balance was floored at zero.
        """
        expected = self.old_balance + self.delta
        return max(Decimal("0.00"), self.new_balance - expected)


# =============================================================================
# CATEGORIES
# =============================================================================

class CategoryKind(str, Enum):
    """The two category registries."""
    SAVINGS = "savings"
    EXPENSE = "expense"


class CategoryBase(BaseModel):
    """Fields shared by savings and expense categories."""
    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(default_factory=uuid4)
    name: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = Field(default=None, max_length=500)
    icon: Optional[str] = Field(default=None, max_length=100)
    color: Optional[str] = Field(default=None, max_length=30)
    storage_account_id: Optional[UUID] = Field(
        default=None,
        description="Default storage account linked to this category"
    )
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    @field_validator('description', 'icon', 'color', 'storage_account_id', mode='before')
    @classmethod
    def blank_to_none(cls, v):
        if isinstance(v, str) and not v.strip():
            return None
        return v


class SavingsCategory(CategoryBase):
    """A savings goal, e.g. 'Dana Darurat' with a target amount."""

    target_amount: Optional[Money] = Field(default=None, ge=0)

    @property
    def kind(self) -> CategoryKind:
        return CategoryKind.SAVINGS


class ExpenseCategory(CategoryBase):
    """A spending bucket, e.g. 'Belanja Dapur' with a monthly budget."""

    budget_limit: Optional[Money] = Field(default=None, ge=0)

    @property
    def kind(self) -> CategoryKind:
        return CategoryKind.EXPENSE


Category = SavingsCategory | ExpenseCategory

CATEGORY_MODELS: dict[CategoryKind, type[CategoryBase]] = {
    CategoryKind.SAVINGS: SavingsCategory,
    CategoryKind.EXPENSE: ExpenseCategory,
}


# =============================================================================
# FAMILY MEMBERS
# =============================================================================

class FamilyMember(BaseModel):
    """A household member who earns, spends or saves."""
    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(default_factory=uuid4)
    name: str = Field(..., min_length=1, max_length=100)
    role: str = Field(
        ...,
        min_length=1,
        max_length=50,
        description="Free text, e.g. 'Ayah', 'Ibu', 'Anak'"
    )
    avatar: Optional[str] = Field(default=None, max_length=500)
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    @field_validator('avatar', mode='before')
    @classmethod
    def blank_to_none(cls, v):
        if isinstance(v, str) and not v.strip():
            return None
        return v
