import httpx

from costpulse.config import settings
from costpulse.models import ExchangeRates, utcnow
from costpulse.observability.logger import get_logger
from costpulse.sources.base import DataSource

log = get_logger("sources.exchange")


def _rate(value, previous: float) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)) or value <= 0:
        return previous
    return float(value)


class ExchangeRateFetcher(DataSource):
    """USD conversion rates. A failed fetch leaves the cached rates untouched."""

    name = "exchange_rates"

    def __init__(
        self,
        url: str | None = None,
        initial: ExchangeRates | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        super().__init__(timeout=timeout, transport=transport)
        self.url = url or settings.exchange_rate_url
        self.rates = initial or ExchangeRates()

    async def fetch_rate(self) -> ExchangeRates:
        try:
            async with self._client() as client:
                response = await client.get(self.url)
            response.raise_for_status()
            rates = response.json()["rates"]
            updated = ExchangeRates(
                usd_czk=_rate(rates.get("CZK"), self.rates.usd_czk),
                usd_eur=_rate(rates.get("EUR"), self.rates.usd_eur),
                last_update=utcnow(),
            )
        except (httpx.HTTPError, ValueError, KeyError, TypeError, AttributeError) as e:
            log.warning("exchange_rate_fetch_failed", error=str(e))
            self._mark_fallback(e)
            return self.rates

        self.rates = updated
        self._mark_live()
        log.info("exchange_rates_fetched", usd_czk=updated.usd_czk, usd_eur=updated.usd_eur)
        return updated
