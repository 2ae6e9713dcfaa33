from unittest.mock import patch

import pytest
import requests

from core.errors import RatesUnavailable
from core.redis import _FakeRedis
from services.money import EXCHANGE_RATES_KEY, PriceService, round_half_up, transform_price


class TestRounding:
    def test_half_up(self):
        """Halves round away from zero."""
        assert round_half_up(0.5) == 1
        assert round_half_up(2.5) == 3
        assert round_half_up(2.49) == 2

    def test_transform_store_and_read(self):
        """Display amounts become minor units and back."""
        assert transform_price(100.5, "RUB", "store") == 10050
        assert transform_price(19.999, "USD", "store") == 2000
        assert transform_price(10050, "RUB", "read") == 100.5


class TestConvertCurrency:
    def test_same_currency_is_identity(self):
        """No rates are needed when the currencies match."""
        service = PriceService(_FakeRedis(), base_currency="RUB")
        assert service.convert_currency(12345, "RUB", "RUB") == 12345

    def test_converts_through_base_currency(self, prices):
        """100.00 RUB at 0.0125 is 1.25 USD."""
        assert prices.convert_currency(10000, "RUB", "USD") == 125
        assert prices.convert_currency(125, "USD", "RUB") == 10000

    def test_rounds_half_up(self, prices):
        """0.4 RUB at 0.0125 is 0.005 USD, which rounds to one cent."""
        assert prices.convert_currency(40, "RUB", "USD") == 1

    def test_no_rates_raises(self):
        """Converting without any rate table is rejected."""
        service = PriceService(_FakeRedis(), base_currency="RUB")
        with pytest.raises(RatesUnavailable):
            service.convert_currency(100, "RUB", "USD")

    def test_unknown_currency_raises(self, prices):
        with pytest.raises(RatesUnavailable):
            prices.convert_currency(100, "RUB", "GBP")


class TestExchangeRates:
    payload = {"result": "success", "conversion_rates": {"RUB": 1, "USD": 0.0125, "EUR": 0.011}}

    def test_fetches_and_caches(self):
        """A cache miss fetches from the provider and stores the table."""
        cache = _FakeRedis()
        service = PriceService(cache, base_currency="RUB")
        with patch("services.money.fetch_exchange_rates", return_value=self.payload) as fetch:
            rates = service.get_exchange_rates()
            service.get_exchange_rates()
        assert rates["USD"] == 0.0125
        assert fetch.call_count == 1
        assert cache.get(EXCHANGE_RATES_KEY) is not None

    def test_force_refresh_bypasses_cache(self):
        service = PriceService(_FakeRedis(), base_currency="RUB")
        with patch("services.money.fetch_exchange_rates", return_value=self.payload) as fetch:
            service.get_exchange_rates()
            service.get_exchange_rates(force_refresh=True)
        assert fetch.call_count == 2

    def test_provider_error_keeps_previous_table(self, prices):
        """A failed fetch leaves the loaded rates in place."""
        with patch("services.money.fetch_exchange_rates", side_effect=requests.ConnectionError("down")):
            rates = prices.get_exchange_rates(force_refresh=True)
        assert rates["USD"] == 0.0125

    def test_unsuccessful_result_keeps_previous_table(self, prices):
        with patch("services.money.fetch_exchange_rates", return_value={"result": "error", "error-type": "invalid-key"}):
            rates = prices.get_exchange_rates(force_refresh=True)
        assert rates["EUR"] == 0.011

    def test_ensure_rates_raises_when_nothing_loaded(self):
        service = PriceService(_FakeRedis(), base_currency="RUB")
        with patch("services.money.fetch_exchange_rates", side_effect=requests.ConnectionError("down")):
            with pytest.raises(RatesUnavailable):
                service.ensure_rates("RUB", "USD")
