"""Gold price services package."""

from tabungan.services.gold.gold_price_service import (
    ExternalServiceError,
    GoldPriceCache,
    GoldPriceError,
    GoldPriceOracle,
    GoldPriceSource,
    RequestsGoldPriceSource,
)

__all__ = [
    "ExternalServiceError",
    "GoldPriceCache",
    "GoldPriceError",
    "GoldPriceOracle",
    "GoldPriceSource",
    "RequestsGoldPriceSource",
]
