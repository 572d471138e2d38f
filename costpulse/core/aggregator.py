"""
Aggregator: builds one DashboardSnapshot per cycle.

The pricing, usage and exchange-rate fetches run concurrently and are all
awaited to completion before anything is merged. Each fetcher absorbs its own
expected failures and returns fallback data. An exception that still escapes a
fetcher is a bug: for pricing it fails the whole build (the caller keeps the
previous snapshot), for usage and rates the cycle proceeds with zero usage or
the cached rates respectively.
"""
import asyncio
import math
import random
from datetime import datetime, timedelta

from costpulse.models import (
    DailyUsage,
    DashboardSnapshot,
    DashboardSummary,
    ModelSnapshot,
    TrendPoint,
    UsageRecord,
    utcnow,
)
from costpulse.observability.logger import get_logger
from costpulse.sources.exchange import ExchangeRateFetcher
from costpulse.sources.pricing import PricingFetcher
from costpulse.sources.usage import UsageFetcher

log = get_logger("aggregator")

SPARKLINE_BUCKETS = 5
SPARKLINE_STEP = timedelta(minutes=15)
SPARKLINE_MIN_SHARE = 0.15
SPARKLINE_SHARE_SPREAD = 0.1


def calculate_trend(daily: list[DailyUsage]) -> str:
    """Percentage change between the two most recent days, e.g. "+12%" or "-5%"."""
    if len(daily) < 2:
        return "+0%"
    previous, latest = daily[-2].cost, daily[-1].cost
    if previous == 0:
        return "+0%" if latest == 0 else "+100%"
    pct = (latest - previous) * 100 / abs(previous)
    # halves round away from zero
    change = int(math.copysign(math.floor(abs(pct) + 0.5), pct))
    return f"{change:+d}%"


def synthetic_series(usage: UsageRecord, now: datetime, rng: random.Random) -> list[TrendPoint]:
    """Sparkline filler: random 15-25% shares of the usage total over the last hour.

    Cost Management only reports daily granularity, so these points carry no
    per-bucket meaning. They exist so a chart has something to draw.
    """
    base = now.replace(minute=0, second=0, microsecond=0)
    points = []
    for i in range(SPARKLINE_BUCKETS - 1, -1, -1):
        bucket = base - SPARKLINE_STEP * i
        points.append(TrendPoint(
            time=bucket.strftime("%H:%M"),
            cost=usage.total_cost * (SPARKLINE_MIN_SHARE + rng.random() * SPARKLINE_SHARE_SPREAD),
            tokens=usage.total_tokens * (SPARKLINE_MIN_SHARE + rng.random() * SPARKLINE_SHARE_SPREAD),
        ))
    return points


def peak_hour(models: list[ModelSnapshot]) -> str | None:
    best: TrendPoint | None = None
    for model in models:
        for point in model.last_hour:
            if best is None or point.cost > best.cost:
                best = point
    return best.time if best else None


def summarize(models: list[ModelSnapshot]) -> DashboardSummary:
    total_cost = sum(m.usage.total_cost for m in models)
    total_tokens = sum(m.usage.total_tokens for m in models)
    total_requests = sum(m.usage.requests for m in models)

    top = None
    for model in models:
        if top is None or model.usage.total_cost > top.usage.total_cost:
            top = model

    return DashboardSummary(
        total_cost=total_cost,
        total_tokens=total_tokens,
        total_requests=total_requests,
        avg_cost_per_request=total_cost / total_requests if total_requests > 0 else 0.0,
        top_model=top.name if top else None,
        peak_hour=peak_hour(models),
    )


class Aggregator:
    def __init__(
        self,
        pricing: PricingFetcher,
        usage: UsageFetcher,
        exchange: ExchangeRateFetcher,
        region: str,
        update_frequency: int = 30,
        rng: random.Random | None = None,
    ):
        self.pricing = pricing
        self.usage = usage
        self.exchange = exchange
        self.region = region
        self.update_frequency = update_frequency
        self.rng = rng or random.Random()

    async def build_snapshot(self) -> DashboardSnapshot:
        pricing, usage, rates = await asyncio.gather(
            self.pricing.fetch_pricing(self.region),
            self.usage.fetch_usage(region=self.region),
            self.exchange.fetch_rate(),
            return_exceptions=True,
        )

        if isinstance(pricing, BaseException):
            log.error("pricing_branch_crashed", error=str(pricing))
            raise pricing
        if isinstance(usage, BaseException):
            log.error("usage_branch_crashed", error=str(usage))
            usage = {}
        if isinstance(rates, BaseException):
            log.error("exchange_branch_crashed", error=str(rates))
            rates = self.exchange.rates

        now = utcnow()
        models = self.merge(pricing, usage, now)
        snapshot = DashboardSnapshot(
            models=models,
            summary=summarize(models),
            exchange_rates=rates,
            region=self.region,
            generated_at=now,
            update_frequency=self.update_frequency,
            health={
                self.pricing.name: self.pricing.health,
                self.usage.name: self.usage.health,
                self.exchange.name: self.exchange.health,
            },
        )
        log.info(
            "snapshot_built",
            models=len(models),
            total_cost=round(snapshot.summary.total_cost, 4),
            pricing=self.pricing.health.status,
            usage=self.usage.health.status,
        )
        return snapshot

    def merge(self, pricing, usage, now: datetime) -> list[ModelSnapshot]:
        models = []
        seen = set()
        for price in pricing:
            if price.model in seen:
                continue
            seen.add(price.model)
            record = usage.get(price.model) or UsageRecord.empty(price.model)
            models.append(ModelSnapshot(
                name=price.model,
                input_price=price.input_price,
                output_price=price.output_price,
                currency=price.currency,
                region=price.region,
                status=price.status,
                last_updated=price.observed_at,
                usage=record,
                trend=calculate_trend(record.daily),
                last_hour=synthetic_series(record, now, self.rng),
            ))
        return models
