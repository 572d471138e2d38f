import random
from collections import Counter
from datetime import datetime, timezone

import httpx
import pytest

from costpulse.config import Settings
from costpulse.core.service import DashboardService
from costpulse.models import (
    CanonicalModel,
    DashboardSnapshot,
    DashboardSummary,
    ExchangeRates,
    ModelSnapshot,
    UsageRecord,
)

VALID_CREDENTIALS = {
    "subscription_id": "550e8400-e29b-41d4-a716-446655440000",
    "tenant_id": "550e8400-e29b-41d4-a716-446655440001",
    "client_id": "550e8400-e29b-41d4-a716-446655440002",
    "client_secret": "valid-secret-key-with-32-characters-minimum",
    "resource_group": "rg-ai-dashboard",
    "region": "westeurope",
}


def price_item(meter: str, price, product: str = "Azure OpenAI", region: str = "westeurope") -> dict:
    return {
        "meterName": meter,
        "productName": product,
        "retailPrice": price,
        "armRegionName": region,
        "currencyCode": "USD",
    }


class FakeAzure:
    """Mock transport standing in for the login, retail price, cost management and FX endpoints."""

    def __init__(self):
        self.token_payload = {"access_token": "token-1", "expires_in": 3600}
        self.pricing_pages = [{
            "Items": [
                price_item("gpt-4o input", 0.0000025),
                price_item("gpt-4o output", 0.00001),
            ],
            "NextPageLink": None,
        }]
        self.usage_payload = {"properties": {"rows": [[0, 20240115, "USD", "gpt-4o input tokens", "Cognitive Services", 0]]}}
        self.rates_payload = {"base": "USD", "rates": {"CZK": 23.1, "EUR": 0.92}}
        self.fail: set[str] = set()
        self.timeout: set[str] = set()
        self.status: dict[str, int] = {}
        self.calls: Counter = Counter()
        self.requests: list[httpx.Request] = []

    @staticmethod
    def endpoint(request: httpx.Request) -> str:
        host = request.url.host
        if host == "login.microsoftonline.com":
            return "token"
        if host == "prices.azure.com":
            return "pricing"
        if host == "management.azure.com":
            return "usage"
        return "rates"

    async def handler(self, request: httpx.Request) -> httpx.Response:
        name = self.endpoint(request)
        self.calls[name] += 1
        self.requests.append(request)

        if name in self.fail:
            raise httpx.ConnectError("connection refused", request=request)
        if name in self.timeout:
            raise httpx.ReadTimeout("read timed out", request=request)
        if name in self.status:
            return httpx.Response(self.status[name], json={"error": "rejected", "error_description": "nope"})

        if name == "token":
            return httpx.Response(200, json=self.token_payload)
        if name == "pricing":
            page = int(request.url.params.get("page", "1"))
            return httpx.Response(200, json=self.pricing_pages[page - 1])
        if name == "usage":
            return httpx.Response(200, json=self.usage_payload)
        return httpx.Response(200, json=self.rates_payload)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


@pytest.fixture
def fake_azure():
    return FakeAzure()


@pytest.fixture
def test_settings():
    return Settings(
        azure_subscription_id=VALID_CREDENTIALS["subscription_id"],
        azure_tenant_id=VALID_CREDENTIALS["tenant_id"],
        azure_client_id=VALID_CREDENTIALS["client_id"],
        azure_client_secret=VALID_CREDENTIALS["client_secret"],
        azure_resource_group=VALID_CREDENTIALS["resource_group"],
        azure_region="westeurope",
        retail_prices_url="https://prices.azure.com/api/retail/prices",
        cost_management_url="https://management.azure.com",
        login_url="https://login.microsoftonline.com",
        exchange_rate_url="https://api.exchangerate-api.com/v4/latest/USD",
        snapshot_max_age_seconds=300,
        broadcast_send_timeout_seconds=0.5,
    )


@pytest.fixture
def service(test_settings, fake_azure):
    svc = DashboardService.from_settings(test_settings, transport=fake_azure.transport)
    svc.aggregator.rng = random.Random(7)
    return svc


@pytest.fixture
def snapshot_factory():
    """Build a minimal DashboardSnapshot with one gpt-4o row."""

    def _make(total_cost: float = 1.0, generated_at: datetime | None = None) -> DashboardSnapshot:
        generated_at = generated_at or datetime.now(timezone.utc)
        usage = UsageRecord(model=CanonicalModel.GPT_4O, total_cost=total_cost, requests=10)
        model = ModelSnapshot(
            name=CanonicalModel.GPT_4O,
            input_price=0.0000025,
            output_price=0.00001,
            region="westeurope",
            last_updated=generated_at,
            usage=usage,
        )
        return DashboardSnapshot(
            models=[model],
            summary=DashboardSummary(
                total_cost=total_cost,
                total_requests=10,
                avg_cost_per_request=total_cost / 10,
                top_model=CanonicalModel.GPT_4O,
            ),
            exchange_rates=ExchangeRates(),
            region="westeurope",
            generated_at=generated_at,
        )

    return _make


@pytest.fixture
def valid_credentials():
    return dict(VALID_CREDENTIALS)
