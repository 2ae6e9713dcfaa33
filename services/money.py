import json
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, Literal

import redis
import requests

from core.config import settings
from core.errors import RatesUnavailable
from core.logging import get_logger
from core.retry import http_retry, redis_retry

logger = get_logger(__name__)

EXCHANGE_RATES_KEY = "exchange_rates"

# Minor units per major unit
CURRENCY_MULTIPLIER: Dict[str, int] = {
    "RUB": 100,
    "USD": 100,
    "EUR": 100,
}


def round_half_up(value: float | Decimal) -> int:
    return int(Decimal(str(value)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def transform_price(amount: float | int, currency: str, mode: Literal["store", "read"]) -> float | int:
    """Convert between display amounts and stored integer minor units.

    ``store`` multiplies by the currency multiplier and rounds, ``read`` divides.
    """
    m = CURRENCY_MULTIPLIER[currency]
    if mode == "store":
        return round_half_up(Decimal(str(amount)) * m)
    return amount / m


@http_retry()
def fetch_exchange_rates(base_currency: str) -> Dict[str, Any]:
    url = f"{settings.EXCHANGE_RATE_BASE_URL}{settings.EXCHANGE_RATE_API_KEY}/latest/{base_currency}"
    resp = requests.get(url, timeout=20)
    resp.raise_for_status()
    return resp.json()


class PriceService:
    """Currency conversion backed by a cached rate table.

    Rates are expressed against ``base_currency``: one unit of the base
    currency is worth ``rates[code]`` units of ``code``.
    """

    def __init__(self, cache, base_currency: str = settings.BASE_CURRENCY, ttl_seconds: int = settings.EXCHANGE_RATES_TTL_SECONDS):
        self.cache = cache
        self.base_currency = base_currency
        self.ttl_seconds = ttl_seconds
        self.exchange_rates: Dict[str, float] | None = None

    @redis_retry()
    def _read_cache(self) -> str | None:
        return self.cache.get(EXCHANGE_RATES_KEY)

    @redis_retry()
    def _write_cache(self, rates: Dict[str, float]) -> None:
        self.cache.setex(EXCHANGE_RATES_KEY, self.ttl_seconds, json.dumps(rates))

    def get_exchange_rates(self, force_refresh: bool = False) -> Dict[str, float] | None:
        """Return the current rate table, fetching it when the cache is empty.

        A provider failure keeps whatever table was loaded before.
        """
        if not force_refresh:
            try:
                cached = self._read_cache()
            except redis.RedisError as e:
                logger.warning("Exchange rates cache unavailable", error=str(e))
                cached = None
            if cached:
                self.exchange_rates = json.loads(cached)
                return self.exchange_rates

        try:
            data = fetch_exchange_rates(self.base_currency)
        except requests.RequestException as e:
            logger.error("Error getting exchange rates", error=str(e))
            return self.exchange_rates

        if data.get("result") != "success":
            logger.error("Error getting exchange rates", error_type=data.get("error-type"))
            return self.exchange_rates

        self.exchange_rates = {code.upper(): float(rate) for code, rate in data["conversion_rates"].items()}
        try:
            self._write_cache(self.exchange_rates)
        except redis.RedisError as e:
            logger.warning("Failed to cache exchange rates", error=str(e))
        return self.exchange_rates

    def convert_currency(self, amount: int, currency_from: str, currency_to: str) -> int:
        """Convert an amount in minor units of ``currency_from`` to minor units of ``currency_to``."""
        if currency_from == currency_to:
            return amount
        if not self.exchange_rates:
            raise RatesUnavailable("No exchange rates available")

        rate_from = self.exchange_rates.get(currency_from)
        rate_to = self.exchange_rates.get(currency_to)
        if not rate_from or not rate_to:
            raise RatesUnavailable(f"No exchange rate for {currency_from}->{currency_to}")

        major_from = Decimal(amount) / CURRENCY_MULTIPLIER[currency_from]
        in_base = major_from / Decimal(str(rate_from))
        converted = in_base * Decimal(str(rate_to)) * CURRENCY_MULTIPLIER[currency_to]
        return round_half_up(converted)

    def ensure_rates(self, currency_from: str, currency_to: str) -> None:
        """Load rates when a conversion will be needed; raise when none can be had."""
        if currency_from == currency_to:
            return
        if not self.get_exchange_rates():
            raise RatesUnavailable()
