from datetime import datetime, timedelta, timezone
from enum import Enum

from pydantic import BaseModel, Field, field_validator


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CanonicalModel(str, Enum):
    """Model families a dashboard row can represent."""

    GPT_4O_MINI = "gpt-4o-mini"
    GPT_4O = "gpt-4o"
    GPT_4_TURBO = "gpt-4-turbo"
    GPT_4 = "gpt-4"
    GPT_35_TURBO = "gpt-3.5-turbo"


class PriceDirection(str, Enum):
    INPUT = "input"
    OUTPUT = "output"


class AzureCredentials(BaseModel):
    subscription_id: str
    tenant_id: str
    client_id: str
    client_secret: str
    resource_group: str
    region: str = "westeurope"


class CachedToken(BaseModel):
    """A bearer token with its issue and expiry instants."""

    value: str
    issued_at: datetime
    expires_at: datetime

    model_config = {"frozen": True}

    @property
    def lifetime(self) -> timedelta:
        return self.expires_at - self.issued_at

    def renew_at(self, margin_ratio: float = 0.1) -> datetime:
        return self.expires_at - self.lifetime * margin_ratio

    def is_valid(self, now: datetime | None = None, margin_ratio: float = 0.1) -> bool:
        now = now or utcnow()
        return now < self.renew_at(margin_ratio)


class PriceRecord(BaseModel):
    model: CanonicalModel
    input_price: float
    output_price: float
    currency: str = "USD"
    region: str
    status: str = "active"
    observed_at: datetime = Field(default_factory=utcnow)

    model_config = {"frozen": True}


class DailyUsage(BaseModel):
    date: str
    cost: float
    tokens: int

    model_config = {"frozen": True}


class UsageRecord(BaseModel):
    """Consumption for one model. Token and request counts are estimates derived from cost."""

    model: CanonicalModel
    total_cost: float = 0.0
    input_tokens: int = 0
    output_tokens: int = 0
    requests: int = 0
    daily: list[DailyUsage] = Field(default_factory=list)

    model_config = {"frozen": True}

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens

    @classmethod
    def empty(cls, model: CanonicalModel) -> "UsageRecord":
        return cls(model=model)


class TrendPoint(BaseModel):
    time: str
    cost: float
    tokens: float

    model_config = {"frozen": True}


class ModelSnapshot(BaseModel):
    name: CanonicalModel
    input_price: float
    output_price: float
    currency: str = "USD"
    region: str
    status: str = "active"
    last_updated: datetime
    usage: UsageRecord
    trend: str = "+0%"
    # Illustrative only: apportioned from the usage total, not measured per bucket.
    last_hour: list[TrendPoint] = Field(default_factory=list)
    last_hour_synthetic: bool = True

    model_config = {"frozen": True}


class DashboardSummary(BaseModel):
    total_cost: float = 0.0
    total_tokens: int = 0
    total_requests: int = 0
    avg_cost_per_request: float = 0.0
    top_model: CanonicalModel | None = None
    peak_hour: str | None = None

    model_config = {"frozen": True}


class ExchangeRates(BaseModel):
    usd_czk: float = 24.5
    usd_eur: float = 0.85
    last_update: datetime = Field(default_factory=utcnow)

    model_config = {"frozen": True}


class SourceHealth(BaseModel):
    source: str
    status: str = "unknown"  # live, fallback, unknown
    last_success: datetime | None = None
    last_error: str | None = None
    checked_at: datetime | None = None

    model_config = {"frozen": True}


class DashboardSnapshot(BaseModel):
    models: list[ModelSnapshot]
    summary: DashboardSummary
    exchange_rates: ExchangeRates
    region: str
    generated_at: datetime = Field(default_factory=utcnow)
    update_frequency: int = 30
    status: str = "success"
    health: dict[str, SourceHealth] = Field(default_factory=dict)

    model_config = {"frozen": True}

    @field_validator("models")
    @classmethod
    def _unique_models(cls, models: list[ModelSnapshot]) -> list[ModelSnapshot]:
        names = [m.name for m in models]
        if len(names) != len(set(names)):
            raise ValueError("duplicate canonical model in snapshot")
        return models
