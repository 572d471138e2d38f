"""
Azure Cost Management usage fetcher.

Queries week-to-date Cognitive Services cost grouped by meter and service, and
folds the rows into one UsageRecord per canonical model. Tokens and requests are
estimated from cost through an EstimationPolicy; see costpulse.sources.estimation.
"""
import httpx

from costpulse.config import settings
from costpulse.models import CanonicalModel, DailyUsage, UsageRecord
from costpulse.observability.logger import get_logger
from costpulse.sources.base import DataSource
from costpulse.sources.estimation import AveragePriceEstimation, EstimationPolicy
from costpulse.sources.identity import AuthError, TokenProvider
from costpulse.sources.matching import identify_meter

log = get_logger("sources.usage")

API_VERSION = "2021-10-01"
SERVICE_NAME = "Cognitive Services"

# Row layout when the response carries no column metadata
POSITIONAL_COLUMNS = {"cost": 0, "date": 1, "currency": 2, "meter": 3, "service": 4, "quantity": 5}
COLUMN_ALIASES = {
    "cost": ("cost", "pretaxcost", "costusd"),
    "date": ("usagedate", "date"),
    "currency": ("currency", "billingcurrency"),
    "meter": ("metername",),
    "service": ("servicename",),
    "quantity": ("usagequantity", "quantity"),
}

FALLBACK_USAGE: dict[CanonicalModel, dict] = {
    CanonicalModel.GPT_4O: {"total_cost": 15.85, "input_tokens": 2_450_000, "output_tokens": 980_000, "requests": 3420},
    CanonicalModel.GPT_4O_MINI: {"total_cost": 3.26, "input_tokens": 8_950_000, "output_tokens": 3_200_000, "requests": 15680},
    CanonicalModel.GPT_35_TURBO: {"total_cost": 15.60, "input_tokens": 15_600_000, "output_tokens": 5_200_000, "requests": 28450},
}


def default_usage() -> dict[CanonicalModel, UsageRecord]:
    return {model: UsageRecord(model=model, **values) for model, values in FALLBACK_USAGE.items()}


def build_query(region: str) -> dict:
    return {
        "type": "Usage",
        "timeframe": "WeekToDate",
        "dataset": {
            "granularity": "Daily",
            "grouping": [
                {"type": "Dimension", "name": "MeterName"},
                {"type": "Dimension", "name": "ServiceName"},
            ],
            "filter": {
                "and": [
                    {"dimensions": {"name": "ServiceName", "operator": "In", "values": [SERVICE_NAME]}},
                    {
                        "dimensions": {
                            "name": "ResourceLocation",
                            "operator": "In",
                            "values": [region, region.replace("europe", " Europe")],
                        }
                    },
                ]
            },
        },
    }


def _column_index(columns: list) -> dict[str, int]:
    names = [str(c.get("name", "")).lower() if isinstance(c, dict) else "" for c in columns or []]
    index = {}
    for key, aliases in COLUMN_ALIASES.items():
        for alias in aliases:
            if alias in names:
                index[key] = names.index(alias)
                break
    if not {"cost", "date", "meter", "service"} <= index.keys():
        return dict(POSITIONAL_COLUMNS)
    return index


def _cell(row: list, index: dict[str, int], key: str):
    pos = index.get(key)
    if pos is None or pos >= len(row):
        return None
    return row[pos]


def _to_float(value) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


def normalise_date(value) -> str:
    """20240115 / "20240115" / "2024-01-15T00:00:00" -> "2024-01-15"."""
    text = str(value or "").strip()
    if len(text) == 8 and text.isdigit():
        return f"{text[:4]}-{text[4:6]}-{text[6:]}"
    return text[:10]


def parse_usage_rows(payload: dict, estimation: EstimationPolicy) -> dict[CanonicalModel, UsageRecord]:
    properties = payload.get("properties") or {}
    rows = properties.get("rows") or []
    index = _column_index(properties.get("columns") or [])

    totals: dict[CanonicalModel, dict] = {}
    daily: dict[CanonicalModel, dict[str, list]] = {}

    for row in rows:
        if not isinstance(row, (list, tuple)):
            continue
        model = identify_meter(_cell(row, index, "meter"))
        if model is None or _cell(row, index, "service") != SERVICE_NAME:
            continue

        cost = _to_float(_cell(row, index, "cost"))
        estimate = estimation.estimate(cost, model)

        acc = totals.setdefault(model, {"total_cost": 0.0, "input_tokens": 0, "output_tokens": 0, "requests": 0})
        acc["total_cost"] += cost
        acc["input_tokens"] += estimate.input_tokens
        acc["output_tokens"] += estimate.output_tokens
        acc["requests"] += estimate.requests

        day = daily.setdefault(model, {}).setdefault(normalise_date(_cell(row, index, "date")), [0.0, 0])
        day[0] += cost
        day[1] += estimate.total_tokens

    return {
        model: UsageRecord(
            model=model,
            daily=[DailyUsage(date=d, cost=c, tokens=t) for d, (c, t) in sorted(daily[model].items())],
            **acc,
        )
        for model, acc in totals.items()
    }


class UsageFetcher(DataSource):
    name = "usage"

    def __init__(
        self,
        token_provider: TokenProvider,
        subscription_id: str | None = None,
        region: str | None = None,
        base_url: str | None = None,
        estimation: EstimationPolicy | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        super().__init__(timeout=timeout, transport=transport)
        self.token_provider = token_provider
        self.subscription_id = subscription_id
        self.region = region or settings.azure_region
        self.base_url = (base_url or settings.cost_management_url).rstrip("/")
        self.estimation = estimation or AveragePriceEstimation()
        self._last_good: dict[CanonicalModel, UsageRecord] | None = None

    @property
    def last_known_good(self) -> dict[CanonicalModel, UsageRecord] | None:
        return self._last_good

    async def fetch_usage(
        self,
        subscription_id: str | None = None,
        region: str | None = None,
    ) -> dict[CanonicalModel, UsageRecord]:
        subscription_id = subscription_id or self.subscription_id
        region = region or self.region
        try:
            if not subscription_id:
                raise ValueError("subscription id is not configured")
            token = await self.token_provider.get_token()
            payload = await self._query(token, subscription_id, region)
            usage = parse_usage_rows(payload, self.estimation)
        except (AuthError, httpx.HTTPError, ValueError, KeyError, TypeError, AttributeError) as e:
            log.warning("usage_fetch_failed", region=region, error=str(e), error_type=type(e).__name__)
            self._mark_fallback(e)
            if self._last_good is not None:
                return dict(self._last_good)
            return default_usage()

        self._last_good = usage
        self._mark_live()
        log.info("usage_fetched", region=region, models=len(usage))
        return dict(usage)

    async def _query(self, token: str, subscription_id: str, region: str) -> dict:
        url = f"{self.base_url}/subscriptions/{subscription_id}/providers/Microsoft.CostManagement/query"
        async with self._client() as client:
            response = await client.post(
                url,
                params={"api-version": API_VERSION},
                headers={"Authorization": f"Bearer {token}"},
                json=build_query(region),
            )
        if not response.is_success:
            if response.status_code == 401:
                # token revoked or rotated before its expiry
                self.token_provider.invalidate()
            raise httpx.HTTPStatusError(
                f"Cost Management API error: {response.status_code} - {response.text[:300]}",
                request=response.request,
                response=response,
            )
        data = response.json()
        if not isinstance(data, dict):
            raise ValueError("Unexpected usage response format")
        return data
