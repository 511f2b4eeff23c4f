"""
Configuration Management for Tabungan Keluarga

Every setting comes from environment variables (or a .env file) through
pydantic-settings, one BaseSettings class per concern with its own prefix.

DESIGN DECISION: Policy knobs live here, not in code. The clamping rule of
the ledger (LEDGER_ALLOW_NEGATIVE_BALANCE) and every gold price fallback
constant can be changed without touching the reconciler or the oracle.
"""

from decimal import Decimal
from functools import lru_cache
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class StorageSettings(BaseSettings):
    """Which persistence backend to use."""

    model_config = SettingsConfigDict(
        env_prefix="STORAGE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    backend: str = Field(
        default="memory",
        pattern="^(memory|google_sheets)$",
        description="Storage backend: 'memory' or 'google_sheets'"
    )


class GoogleSheetsSettings(BaseSettings):
    """Where the Google Sheets backend keeps its tables."""

    model_config = SettingsConfigDict(
        env_prefix="GOOGLE_SHEETS_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    credentials_path: str = Field(
        ...,
        description="Path to Google service account credentials JSON"
    )
    spreadsheet_id: str = Field(
        ...,
        description="ID of the Google Sheets spreadsheet to use"
    )

    # One worksheet per table
    accounts_sheet_name: str = Field(default="StorageAccounts")
    savings_categories_sheet_name: str = Field(default="SavingsCategories")
    expense_categories_sheet_name: str = Field(default="ExpenseCategories")
    family_members_sheet_name: str = Field(default="FamilyMembers")
    transactions_sheet_name: str = Field(default="Transactions")

    @field_validator('credentials_path')
    @classmethod
    def validate_credentials_path(cls, v: str) -> str:
        """A missing file only warns; it may be mounted after startup."""
        if not Path(v).exists():
            import warnings
            warnings.warn(
                f"Google credentials file not found at {v}. "
                "The google_sheets backend cannot connect until it exists."
            )
        return v


class LedgerSettings(BaseSettings):
    """Balance reconciliation policy."""

    model_config = SettingsConfigDict(
        env_prefix="LEDGER_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    allow_negative_balance: bool = Field(
        default=False,
        description=(
            "When False, decrements are floored at zero (clamping). "
            "Clamped transactions are not round-trip reversible."
        )
    )
    recent_transactions_limit: int = Field(
        default=10,
        ge=1,
        le=100,
        description="How many recent transactions the dashboard shows"
    )


class GoldPriceSettings(BaseSettings):
    """Gold price oracle configuration."""

    model_config = SettingsConfigDict(
        env_prefix="GOLD_PRICE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    spot_price_url: str = Field(
        default="https://api.gold-api.com/price/XAU",
        description="Spot price endpoint (USD per troy ounce)"
    )
    exchange_rate_url: str = Field(
        default="https://api.exchangerate-api.com/v4/latest/USD",
        description="USD exchange rate endpoint"
    )
    request_timeout_seconds: float = Field(default=10.0, gt=0)
    max_attempts: int = Field(default=2, ge=1, le=5)

    cache_ttl_seconds: int = Field(
        default=300,
        ge=0,
        description="How long a quote stays fresh (5 minutes)"
    )
    troy_ounce_grams: Decimal = Field(default=Decimal("31.1035"), gt=0)
    fallback_exchange_rate: Decimal = Field(
        default=Decimal("15500"),
        gt=0,
        description="USD->IDR rate used when the rate payload has no IDR entry"
    )

    # Fallback tiers
    synthetic_enabled: bool = Field(default=True)
    synthetic_base_price: Decimal = Field(default=Decimal("1150000"), gt=0)
    synthetic_jitter: Decimal = Field(default=Decimal("10000"), ge=0)
    default_price: Decimal = Field(default=Decimal("1150000"), gt=0)
    note: str = Field(default="Harga emas Antam (estimasi)")


class AppSettings(BaseSettings):
    """Application-wide settings (no env prefix)."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    app_environment: str = Field(
        default="development",
        description="Application environment"
    )
    debug_mode: bool = Field(
        default=False,
        description="Enable debug mode"
    )
    log_level: str = Field(
        default="INFO",
        pattern="^(DEBUG|INFO|WARNING|ERROR|CRITICAL)$",
        description="Minimum level for structured logs"
    )
    currency: str = Field(
        default="IDR",
        min_length=3,
        max_length=3,
        description="The single currency all amounts are expressed in"
    )


class Settings(BaseSettings):
    """
    Entry point to every settings group.

    Each group is built on access, so a backend that is not in use (e.g.
    Google Sheets) never fails validation for missing variables.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    @property
    def storage(self) -> StorageSettings:
        return StorageSettings()

    @property
    def google_sheets(self) -> GoogleSheetsSettings:
        return GoogleSheetsSettings()

    @property
    def ledger(self) -> LedgerSettings:
        return LedgerSettings()

    @property
    def gold_price(self) -> GoldPriceSettings:
        return GoldPriceSettings()

    @property
    def app(self) -> AppSettings:
        return AppSettings()


@lru_cache()
def get_settings() -> Settings:
    """Cached Settings; tests call get_settings.cache_clear() after changing env."""
    return Settings()


def validate_all_settings() -> dict[str, bool]:
    """
    Try to build every settings group.

    Returns {group: ok} plus {group_error: message} for each failure,
    for a startup check.
    """
    results = {}

    settings = get_settings()

    for name in ("storage", "google_sheets", "ledger", "gold_price", "app"):
        try:
            getattr(settings, name)
            results[name] = True
        except Exception as e:
            results[name] = False
            results[f"{name}_error"] = str(e)

    return results
