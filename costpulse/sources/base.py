from abc import ABC

import httpx

from costpulse.config import settings
from costpulse.models import SourceHealth, utcnow


class DataSource(ABC):
    """Base class for external data sources.

    Tracks whether the most recent fetch was served live or from fallback data.
    """

    name: str = "base"

    def __init__(self, timeout: float | None = None, transport: httpx.AsyncBaseTransport | None = None):
        self.timeout = timeout or settings.request_timeout_seconds
        self._transport = transport
        self.health = SourceHealth(source=self.name)

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=httpx.Timeout(self.timeout), transport=self._transport)

    def _mark_live(self):
        now = utcnow()
        self.health = SourceHealth(source=self.name, status="live", last_success=now, checked_at=now)

    def _mark_fallback(self, error: Exception):
        self.health = SourceHealth(
            source=self.name,
            status="fallback",
            last_success=self.health.last_success,
            last_error=str(error) or type(error).__name__,
            checked_at=utcnow(),
        )
