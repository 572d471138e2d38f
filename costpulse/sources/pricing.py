"""
Azure Retail Prices fetcher.

Queries the public retail catalog for Azure OpenAI consumption prices in a region
and reduces the entries to one PriceRecord per canonical model. Input and output
prices arrive as separate catalog entries; a model is emitted only once both
have been seen. On any network or parse failure the last good list is returned,
or a small built-in list if no fetch has ever succeeded.
"""
import httpx

from costpulse.config import settings
from costpulse.models import CanonicalModel, PriceDirection, PriceRecord, utcnow
from costpulse.observability.logger import get_logger
from costpulse.sources.base import DataSource
from costpulse.sources.matching import identify_price_entry

log = get_logger("sources.pricing")

API_VERSION = "2023-01-01-preview"

# (input, output) USD unit prices served when the catalog has never been reachable
FALLBACK_PRICES: dict[CanonicalModel, tuple[float, float]] = {
    CanonicalModel.GPT_4O: (0.0000025, 0.00001),
    CanonicalModel.GPT_4O_MINI: (0.000000150, 0.000000600),
    CanonicalModel.GPT_35_TURBO: (0.0000005, 0.0000015),
}


def default_pricing(region: str) -> list[PriceRecord]:
    now = utcnow()
    return [
        PriceRecord(model=model, input_price=inp, output_price=out, region=region, observed_at=now)
        for model, (inp, out) in FALLBACK_PRICES.items()
    ]


def build_filter(region: str) -> str:
    return " and ".join([
        "serviceName eq 'Cognitive Services'",
        f"armRegionName eq '{region}'",
        "priceType eq 'Consumption'",
        "contains(productName, 'Azure OpenAI')",
    ])


def _price(value) -> float | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    if value < 0:
        return None
    return float(value)


def parse_pricing_items(items: list, region: str) -> list[PriceRecord]:
    """Fold raw catalog entries into complete PriceRecords.

    Unidentifiable or malformed entries are skipped. Models missing either
    direction stay pending and are not returned. Output order follows the
    first appearance of each model.
    """
    pending: dict[CanonicalModel, dict] = {}

    for item in items:
        if not isinstance(item, dict):
            continue
        identified = identify_price_entry(item.get("meterName"), item.get("productName"))
        price = _price(item.get("retailPrice"))
        if identified is None or price is None:
            continue

        model, direction = identified
        entry = pending.setdefault(model, {
            PriceDirection.INPUT: None,
            PriceDirection.OUTPUT: None,
            "region": item.get("armRegionName") or region,
            "currency": item.get("currencyCode") or "USD",
        })
        entry[direction] = price

    now = utcnow()
    records = []
    for model, entry in pending.items():
        if entry[PriceDirection.INPUT] is None or entry[PriceDirection.OUTPUT] is None:
            continue
        records.append(PriceRecord(
            model=model,
            input_price=entry[PriceDirection.INPUT],
            output_price=entry[PriceDirection.OUTPUT],
            currency=entry["currency"],
            region=entry["region"],
            observed_at=now,
        ))
    return records


class PricingFetcher(DataSource):
    name = "pricing"

    def __init__(
        self,
        region: str | None = None,
        base_url: str | None = None,
        max_pages: int | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        super().__init__(timeout=timeout, transport=transport)
        self.region = region or settings.azure_region
        self.base_url = base_url or settings.retail_prices_url
        self.max_pages = max_pages or settings.pricing_max_pages
        self._last_good: list[PriceRecord] | None = None

    @property
    def last_known_good(self) -> list[PriceRecord] | None:
        return self._last_good

    async def fetch_pricing(self, region: str | None = None) -> list[PriceRecord]:
        region = region or self.region
        try:
            items = await self._fetch_items(region)
            records = parse_pricing_items(items, region)
        except (httpx.HTTPError, ValueError, KeyError, TypeError) as e:
            log.warning("pricing_fetch_failed", region=region, error=str(e))
            self._mark_fallback(e)
            if self._last_good is not None:
                return list(self._last_good)
            return default_pricing(region)

        self._last_good = records
        self._mark_live()
        log.info("pricing_fetched", region=region, entries=len(items), models=len(records))
        return list(records)

    async def _fetch_items(self, region: str) -> list:
        items: list = []
        url: str | None = self.base_url
        params: dict | None = {"api-version": API_VERSION, "$filter": build_filter(region)}

        async with self._client() as client:
            for _ in range(self.max_pages):
                response = await client.get(url, params=params)
                response.raise_for_status()
                data = response.json()
                if not isinstance(data, dict):
                    raise ValueError("Unexpected pricing response format")
                items.extend(data.get("Items") or [])

                url = data.get("NextPageLink")
                if not url:
                    break
                # NextPageLink already carries the query string
                params = None
            else:
                if url:
                    log.info("pricing_page_limit_reached", max_pages=self.max_pages)

        return items
