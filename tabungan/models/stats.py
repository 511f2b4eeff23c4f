"""
Dashboard Statistics Models

Plain result shapes handed to whatever renders the dashboard.
"""

from decimal import Decimal
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field, computed_field

from tabungan.models.transaction import DateRange, Transaction


ZERO = Decimal("0.00")


class Totals(BaseModel):
    """Headline numbers for a period. Transfers count in none of them."""

    income: Decimal = ZERO
    expenses: Decimal = ZERO
    savings: Decimal = ZERO

    @computed_field
    @property
    def net_balance(self) -> Decimal:
        return self.income - self.expenses - self.savings


class SavingsCategorySummary(BaseModel):
    """Savings collected for one category, joined with its target."""

    category_id: UUID
    category: str
    amount: Decimal = ZERO
    target: Optional[Decimal] = None
    color: Optional[str] = None
    icon: Optional[str] = None

    @computed_field
    @property
    def progress(self) -> Optional[float]:
        """Fraction of the target reached, None without a target."""
        if not self.target:
            return None
        return float(self.amount / self.target)


class ExpenseCategorySummary(BaseModel):
    """Spending for one category, joined with its budget."""

    category_id: UUID
    category: str
    amount: Decimal = ZERO
    budget: Optional[Decimal] = None
    color: Optional[str] = None
    icon: Optional[str] = None

    @computed_field
    @property
    def over_budget(self) -> bool:
        return self.budget is not None and self.amount > self.budget


class MemberContribution(BaseModel):
    """Income earned and savings made by one family member."""

    member_id: UUID
    name: str
    role: str
    avatar: Optional[str] = None
    income: Decimal = ZERO
    savings: Decimal = ZERO


class DashboardStatistics(BaseModel):
    """Everything the dashboard shows for one period."""

    date_range: Optional[DateRange] = None
    totals: Totals = Field(default_factory=Totals)
    savings_by_category: list[SavingsCategorySummary] = Field(default_factory=list)
    expenses_by_category: list[ExpenseCategorySummary] = Field(default_factory=list)
    member_contributions: list[MemberContribution] = Field(default_factory=list)
    recent: list[Transaction] = Field(default_factory=list)
    count: int = Field(default=0, ge=0)
    error_message: Optional[str] = Field(
        default=None,
        description="Set when statistics degraded to an empty result"
    )


class AccountValuation(BaseModel):
    """One storage account valued in the app currency."""

    account_id: UUID
    name: str
    is_gold: bool
    balance: Decimal
    gold_weight: Optional[Decimal] = None
    value: Decimal


class AssetSummary(BaseModel):
    """All accounts valued, with gold at the current price per gram."""

    accounts: list[AccountValuation] = Field(default_factory=list)
    gold_price_per_gram: Optional[Decimal] = None
    total: Decimal = ZERO
