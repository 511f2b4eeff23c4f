"""
Gold Price Oracle

Supplies a price per gram in IDR for valuing gold storage accounts.

The oracle degrades through four tiers and never raises to its caller:

1. CACHE      - a quote younger than the TTL (5 minutes) is returned as-is
2. LIVE       - spot price (USD / troy ounce) x USD->IDR rate / 31.1035
3. SYNTHETIC  - a fixed base price plus bounded random jitter, so the
                dashboard does not show a perfectly static number
4. DEFAULT    - a hard-coded price

If the whole procedure blows up, the last cached quote (of any age) is
returned marked as cached with an error, or else the default price.

DESIGN DECISION: The cache is an explicit object handed to the oracle,
not a module-level variable, so tests can inspect and reset it.
"""

import random
from datetime import datetime, timedelta, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Callable, Optional, Protocol

import requests
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from tabungan.config import GoldPriceSettings, get_settings
from tabungan.logger import get_logger
from tabungan.models.gold import GoldPriceQuote, GoldPriceResult, PriceTier


logger = get_logger(__name__)


class GoldPriceError(Exception):
    """Base exception for gold price lookups."""
    pass


class ExternalServiceError(GoldPriceError):
    """The spot price or exchange rate service failed or returned junk."""
    pass


# =============================================================================
# CACHE
# =============================================================================

class GoldPriceCache:
    """
    Process-local holder for the most recent quote.

    get() only returns a quote younger than the TTL; last() returns
    whatever is held regardless of age, for the catastrophic-failure path.
    """

    def __init__(self, ttl_seconds: int = 300):
        self._ttl = timedelta(seconds=ttl_seconds)
        self._quote: Optional[GoldPriceQuote] = None

    def get(self, now: datetime) -> Optional[GoldPriceQuote]:
        if self._quote is None:
            return None
        if now - self._quote.fetched_at < self._ttl:
            return self._quote
        return None

    def last(self) -> Optional[GoldPriceQuote]:
        return self._quote

    def put(self, quote: GoldPriceQuote) -> None:
        self._quote = quote

    def clear(self) -> None:
        self._quote = None


# =============================================================================
# EXTERNAL SOURCE
# =============================================================================

class GoldPriceSource(Protocol):
    """Where live prices come from. Both calls raise on failure."""

    def fetch_spot_price(self) -> Decimal:
        """International spot price in USD per troy ounce."""
        ...

    def fetch_exchange_rate(self) -> Decimal:
        """How many units of the app currency one USD buys."""
        ...


class RequestsGoldPriceSource:
    """
    Live prices over HTTP.

    Spot price from gold-api.com, exchange rate from exchangerate-api.com.
    """

    def __init__(
        self,
        settings: Optional[GoldPriceSettings] = None,
        session: Optional[requests.Session] = None,
        currency: Optional[str] = None,
    ):
        self._settings = settings or get_settings().gold_price
        self._session = session or requests.Session()
        self._currency = currency or get_settings().app.currency

    def _get_json(self, url: str) -> dict:
        @retry(
            stop=stop_after_attempt(self._settings.max_attempts),
            wait=wait_exponential(multiplier=0.5, min=0.5, max=2),
            retry=retry_if_exception_type(requests.RequestException),
            reraise=True,
        )
        def fetch() -> dict:
            response = self._session.get(
                url,
                headers={"Content-Type": "application/json"},
                timeout=self._settings.request_timeout_seconds,
            )
            response.raise_for_status()
            return response.json()

        try:
            return fetch()
        except (requests.RequestException, ValueError) as e:
            raise ExternalServiceError(f"Request to {url} failed: {e}")

    def fetch_spot_price(self) -> Decimal:
        data = self._get_json(self._settings.spot_price_url)
        try:
            price = Decimal(str(data["price"]))
        except (KeyError, TypeError, ArithmeticError) as e:
            raise ExternalServiceError(f"Unexpected spot price payload: {e}")
        if price <= 0:
            raise ExternalServiceError(f"Non-positive spot price: {price}")
        return price

    def fetch_exchange_rate(self) -> Decimal:
        data = self._get_json(self._settings.exchange_rate_url)
        rates = data.get("rates") if isinstance(data, dict) else None
        if not isinstance(rates, dict):
            raise ExternalServiceError("Exchange rate payload has no 'rates'")
        rate = rates.get(self._currency)
        if not rate:
            return self._settings.fallback_exchange_rate
        try:
            return Decimal(str(rate))
        except ArithmeticError as e:
            raise ExternalServiceError(f"Unexpected {self._currency} rate: {e}")


# =============================================================================
# ORACLE
# =============================================================================

def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class GoldPriceOracle:
    """
    Produces a current gold price per gram, degrading gracefully.

    Usage:
        oracle = GoldPriceOracle()
        result = oracle.get_price_per_gram()
        value = account.value(result.price_per_gram)
    """

    def __init__(
        self,
        source: Optional[GoldPriceSource] = None,
        cache: Optional[GoldPriceCache] = None,
        settings: Optional[GoldPriceSettings] = None,
        rng: Optional[random.Random] = None,
        clock: Callable[[], datetime] = _utc_now,
        currency: Optional[str] = None,
    ):
        self._currency = currency or get_settings().app.currency
        self._settings = settings or get_settings().gold_price
        self._source = source or RequestsGoldPriceSource(self._settings, currency=self._currency)
        self._cache = cache or GoldPriceCache(self._settings.cache_ttl_seconds)
        self._rng = rng or random.Random()
        self._clock = clock

    @property
    def cache(self) -> GoldPriceCache:
        return self._cache

    def _live_price(self) -> Optional[Decimal]:
        """Tier 2. Returns None on any failure."""
        try:
            spot = self._source.fetch_spot_price()
            rate = self._source.fetch_exchange_rate()
        except Exception as e:
            logger.warning("gold_price_fetch_failed", error=str(e))
            return None
        price = (spot * rate) / self._settings.troy_ounce_grams
        if price <= 0:
            logger.warning("gold_price_non_positive", price=str(price))
            return None
        return price.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)

    def _synthetic_price(self) -> Optional[Decimal]:
        """Tier 3. None when disabled in settings."""
        if not self._settings.synthetic_enabled:
            return None
        jitter = float(self._settings.synthetic_jitter)
        variation = Decimal(str(self._rng.uniform(-jitter, jitter)))
        price = (self._settings.synthetic_base_price + variation).quantize(
            Decimal("1"), rounding=ROUND_HALF_UP
        )
        return price if price > 0 else None

    def _resolve(self, now: datetime) -> GoldPriceResult:
        cached = self._cache.get(now)
        if cached is not None:
            return GoldPriceResult(
                price_per_gram=cached.price_per_gram,
                currency=self._currency,
                cached=True,
                last_updated=cached.fetched_at,
                tier=PriceTier.CACHE,
            )

        tier = PriceTier.LIVE
        price = self._live_price()
        if price is None:
            tier = PriceTier.SYNTHETIC
            price = self._synthetic_price()
        if price is None:
            tier = PriceTier.DEFAULT
            price = self._settings.default_price

        self._cache.put(GoldPriceQuote(price_per_gram=price, fetched_at=now, tier=tier))
        logger.info("gold_price_resolved", tier=tier.value, price_per_gram=str(price))

        return GoldPriceResult(
            price_per_gram=price,
            currency=self._currency,
            cached=False,
            last_updated=now,
            tier=tier,
            note=self._settings.note,
        )

    def get_price_per_gram(self, now: Optional[datetime] = None) -> GoldPriceResult:
        """
        Current price per gram. Never raises.
        """
        now = now or self._clock()
        try:
            return self._resolve(now)
        except Exception as e:
            logger.error("gold_price_failed", error=str(e))
            last = self._cache.last()
            if last is not None:
                return GoldPriceResult(
                    price_per_gram=last.price_per_gram,
                    currency=self._currency,
                    cached=True,
                    last_updated=last.fetched_at,
                    tier=PriceTier.STALE_CACHE,
                    error="Using fallback price",
                )
            return GoldPriceResult(
                price_per_gram=self._settings.default_price,
                currency=self._currency,
                cached=True,
                last_updated=now,
                tier=PriceTier.DEFAULT,
                error="Using fallback price",
            )
