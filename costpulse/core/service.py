import asyncio

import httpx

from costpulse.api.websocket import BroadcastHub
from costpulse.config import Settings, settings
from costpulse.core.aggregator import Aggregator
from costpulse.core.cache import SnapshotCache
from costpulse.models import AzureCredentials, CanonicalModel, DashboardSnapshot, ExchangeRates, PriceRecord, UsageRecord, utcnow
from costpulse.observability.logger import get_logger
from costpulse.sources.exchange import ExchangeRateFetcher
from costpulse.sources.identity import TokenProvider
from costpulse.sources.pricing import PricingFetcher
from costpulse.sources.usage import UsageFetcher
from costpulse.validation import ConfigError, validate_credentials

log = get_logger("service")


def configured_credentials(config: Settings) -> AzureCredentials | None:
    """Validate the configured service principal. Invalid settings disable live usage data."""
    credentials = config.credentials()
    if credentials is None:
        log.warning("azure_credentials_missing")
        return None
    try:
        return validate_credentials(credentials.model_dump())
    except ConfigError as e:
        log.error("azure_credentials_invalid", errors=e.errors)
        return None


class DashboardService:
    """Owns the cache, the broadcast hub, the sources and the aggregator for one dashboard.

    Builds are serialised: at most one aggregation is in flight at a time.
    """

    def __init__(
        self,
        cache: SnapshotCache,
        hub: BroadcastHub,
        token_provider: TokenProvider,
        pricing: PricingFetcher,
        usage: UsageFetcher,
        exchange: ExchangeRateFetcher,
        aggregator: Aggregator,
        snapshot_max_age_seconds: float = 300,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.cache = cache
        self.hub = hub
        self.token_provider = token_provider
        self.pricing = pricing
        self.usage = usage
        self.exchange = exchange
        self.aggregator = aggregator
        self.snapshot_max_age_seconds = snapshot_max_age_seconds
        self._transport = transport
        self._refresh_lock = asyncio.Lock()
        self.started_at = utcnow()

    @classmethod
    def from_settings(
        cls,
        config: Settings = settings,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> "DashboardService":
        credentials = configured_credentials(config)
        region = credentials.region if credentials else config.azure_region
        timeout = config.request_timeout_seconds

        cache = SnapshotCache(token_margin_ratio=config.token_safety_margin_ratio)
        hub = BroadcastHub(cache, send_timeout=config.broadcast_send_timeout_seconds)
        token_provider = TokenProvider(
            credentials,
            cache,
            login_url=config.login_url,
            scope=f"{config.cost_management_url.rstrip('/')}/.default",
            timeout=timeout,
            transport=transport,
        )
        pricing = PricingFetcher(
            region=region,
            base_url=config.retail_prices_url,
            max_pages=config.pricing_max_pages,
            timeout=timeout,
            transport=transport,
        )
        usage = UsageFetcher(
            token_provider,
            subscription_id=credentials.subscription_id if credentials else None,
            region=region,
            base_url=config.cost_management_url,
            timeout=timeout,
            transport=transport,
        )
        exchange = ExchangeRateFetcher(url=config.exchange_rate_url, timeout=timeout, transport=transport)
        aggregator = Aggregator(pricing, usage, exchange, region=region, update_frequency=config.refresh_interval_seconds)

        return cls(
            cache=cache,
            hub=hub,
            token_provider=token_provider,
            pricing=pricing,
            usage=usage,
            exchange=exchange,
            aggregator=aggregator,
            snapshot_max_age_seconds=config.snapshot_max_age_seconds,
            transport=transport,
        )

    @property
    def region(self) -> str:
        return self.aggregator.region

    @property
    def refresh_in_progress(self) -> bool:
        return self._refresh_lock.locked()

    # ── Snapshot lifecycle ───────────────────────────────────────────────

    async def refresh(self) -> DashboardSnapshot:
        """Build, publish and broadcast a new snapshot, waiting for any build in flight first."""
        async with self._refresh_lock:
            return await self._build_and_publish()

    async def refresh_if_idle(self) -> bool:
        """Scheduler entry point. Skips (returns False) if a build is already running."""
        if self._refresh_lock.locked():
            log.info("refresh_skipped", reason="build_in_progress")
            return False
        await self.refresh()
        return True

    async def _build_and_publish(self) -> DashboardSnapshot:
        snapshot = await self.aggregator.build_snapshot()
        self.cache.publish(snapshot)
        await self.hub.publish(snapshot)
        return snapshot

    async def get_dashboard(self) -> DashboardSnapshot:
        """Pull path: the cached snapshot if fresh, otherwise a synchronous rebuild.

        A stale snapshot is still served if the rebuild fails; with no snapshot
        at all the failure propagates.
        """
        if not self.cache.is_stale(self.snapshot_max_age_seconds):
            return self.cache.current()

        async with self._refresh_lock:
            # another caller may have rebuilt while we waited
            if not self.cache.is_stale(self.snapshot_max_age_seconds):
                return self.cache.current()
            try:
                return await self._build_and_publish()
            except Exception as e:
                previous = self.cache.current()
                if previous is None:
                    raise
                log.error("pull_refresh_failed", error=str(e), serving_generated_at=previous.generated_at.isoformat())
                return previous

    # ── Individual sources ───────────────────────────────────────────────

    async def get_pricing(self) -> list[PriceRecord]:
        return await self.pricing.fetch_pricing()

    async def get_usage(self) -> dict[CanonicalModel, UsageRecord]:
        return await self.usage.fetch_usage()

    async def get_exchange_rates(self) -> ExchangeRates:
        return await self.exchange.fetch_rate()

    async def refresh_exchange_rates(self) -> ExchangeRates:
        return await self.exchange.fetch_rate()

    # ── Configuration check ──────────────────────────────────────────────

    async def test_config(self, data: dict) -> AzureCredentials:
        """Validate a candidate credential set and attempt only the token exchange.

        Raises:
            ConfigError: malformed or missing fields (no network call is made).
            AuthError: the token exchange failed.
        """
        credentials = validate_credentials(data)
        provider = TokenProvider(
            credentials,
            SnapshotCache(),
            login_url=self.token_provider.login_url,
            scope=self.token_provider.scope,
            timeout=self.token_provider.timeout,
            transport=self._transport,
        )
        await provider.get_token()
        log.info("config_test_passed", tenant_id=credentials.tenant_id, region=credentials.region)
        return credentials

    def health(self) -> dict:
        current = self.cache.current()
        sources = current.health if current else {
            s.name: s.health for s in (self.pricing, self.usage, self.exchange)
        }
        degraded = any(h.status == "fallback" for h in sources.values())
        age = self.cache.age_seconds()
        return {
            "status": "degraded" if degraded else "healthy",
            "region": self.region,
            "timestamp": utcnow().isoformat(),
            "uptime_seconds": round((utcnow() - self.started_at).total_seconds(), 1),
            "credentials_configured": self.token_provider.is_configured(),
            "snapshot": {
                "available": current is not None,
                "generated_at": current.generated_at.isoformat() if current else None,
                "age_seconds": round(age, 1) if age is not None else None,
                "stale": self.cache.is_stale(self.snapshot_max_age_seconds),
                "refresh_in_progress": self.refresh_in_progress,
            },
            "subscribers": self.hub.subscriber_count,
            "last_known_good": {
                self.pricing.name: self.pricing.last_known_good is not None,
                self.usage.name: self.usage.last_known_good is not None,
            },
            "sources": {name: h.model_dump(mode="json") for name, h in sources.items()},
        }
