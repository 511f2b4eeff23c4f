"""
Gold Price Models

A GoldPriceQuote lives only in process memory. A GoldPriceResult is what the
oracle hands back, annotated with which fallback tier produced it.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class PriceTier(str, Enum):
    """Which step of the fallback chain produced the price."""
    CACHE = "cache"              # fresh cached quote
    LIVE = "live"                # spot price x exchange rate
    SYNTHETIC = "synthetic"      # base price plus random jitter
    DEFAULT = "default"          # hard-coded default
    STALE_CACHE = "stale_cache"  # last quote, returned after a failure


class GoldPriceQuote(BaseModel):
    """A price per gram and when it was obtained."""
    model_config = ConfigDict(frozen=True)

    price_per_gram: Decimal = Field(..., gt=0)
    fetched_at: datetime
    tier: PriceTier = PriceTier.LIVE


class GoldPriceResult(BaseModel):
    """Answer of GoldPriceOracle.get_price_per_gram()."""

    price_per_gram: Decimal = Field(..., gt=0)
    currency: str = "IDR"
    cached: bool
    last_updated: datetime
    tier: PriceTier
    note: Optional[str] = None
    error: Optional[str] = None

    @property
    def is_estimate(self) -> bool:
        return self.tier in (PriceTier.SYNTHETIC, PriceTier.DEFAULT)
