import pytest

from costpulse.models import ExchangeRates
from costpulse.sources.exchange import ExchangeRateFetcher


@pytest.fixture
def fetcher(fake_azure):
    return ExchangeRateFetcher(url="https://api.exchangerate-api.com/v4/latest/USD", transport=fake_azure.transport)


@pytest.mark.asyncio
class TestExchangeRateFetcher:
    async def test_fetches_rates(self, fetcher):
        rates = await fetcher.fetch_rate()
        assert rates.usd_czk == 23.1
        assert rates.usd_eur == 0.92
        assert fetcher.rates is rates
        assert fetcher.health.status == "live"

    async def test_failure_keeps_previous_rates(self, fetcher, fake_azure):
        first = await fetcher.fetch_rate()
        fake_azure.fail.add("rates")
        second = await fetcher.fetch_rate()
        assert second is first
        assert fetcher.health.status == "fallback"

    async def test_initial_rates_before_any_success(self, fake_azure):
        fake_azure.status["rates"] = 500
        initial = ExchangeRates(usd_czk=25.0, usd_eur=0.9)
        fetcher = ExchangeRateFetcher(url="https://fx.example/latest", initial=initial, transport=fake_azure.transport)
        assert await fetcher.fetch_rate() is initial

    async def test_missing_currency_keeps_previous_value(self, fetcher, fake_azure):
        fake_azure.rates_payload = {"rates": {"CZK": 22.0}}
        rates = await fetcher.fetch_rate()
        assert rates.usd_czk == 22.0
        assert rates.usd_eur == 0.85

    async def test_payload_without_rates_falls_back(self, fetcher, fake_azure):
        fake_azure.rates_payload = {"result": "error"}
        rates = await fetcher.fetch_rate()
        assert rates is fetcher.rates
        assert rates.usd_czk == 24.5
        assert fetcher.health.status == "fallback"

    async def test_read_timeout_keeps_previous_rates(self, fetcher, fake_azure):
        first = await fetcher.fetch_rate()
        fake_azure.timeout.add("rates")
        assert await fetcher.fetch_rate() is first
        assert fetcher.health.status == "fallback"
