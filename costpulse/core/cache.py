"""
In-memory snapshot cache.

Holds the current DashboardSnapshot and the cached bearer token. Each slot is a
single CacheEntry reference that is swapped wholesale on update, so a reader
sees either the previous entry or the new one, never a mix.
"""
from dataclasses import dataclass
from datetime import datetime
from typing import Generic, TypeVar

from costpulse.models import CachedToken, DashboardSnapshot, utcnow
from costpulse.observability.logger import get_logger

log = get_logger("cache")

T = TypeVar("T")


@dataclass(frozen=True)
class CacheEntry(Generic[T]):
    value: T
    stored_at: datetime


class SnapshotCache:
    def __init__(self, token_margin_ratio: float = 0.1):
        self.token_margin_ratio = token_margin_ratio
        self._snapshot: CacheEntry[DashboardSnapshot] | None = None
        self._token: CacheEntry[CachedToken] | None = None

    # ── Snapshot ─────────────────────────────────────────────────────────

    def publish(self, snapshot: DashboardSnapshot):
        self._snapshot = CacheEntry(snapshot, utcnow())
        log.info("snapshot_published", models=len(snapshot.models), generated_at=snapshot.generated_at.isoformat())

    def current(self) -> DashboardSnapshot | None:
        entry = self._snapshot
        return entry.value if entry else None

    def published_at(self) -> datetime | None:
        entry = self._snapshot
        return entry.stored_at if entry else None

    def age_seconds(self, now: datetime | None = None) -> float | None:
        entry = self._snapshot
        if entry is None:
            return None
        return ((now or utcnow()) - entry.stored_at).total_seconds()

    def is_stale(self, max_age_seconds: float, now: datetime | None = None) -> bool:
        age = self.age_seconds(now)
        return age is None or age >= max_age_seconds

    # ── Token ────────────────────────────────────────────────────────────

    def get_token(self, now: datetime | None = None) -> CachedToken | None:
        """Return the cached token while it is outside its renewal margin, else drop it."""
        entry = self._token
        if entry is None:
            return None
        if not entry.value.is_valid(now, self.token_margin_ratio):
            log.info("token_expired", expires_at=entry.value.expires_at.isoformat())
            self._token = None
            return None
        return entry.value

    def store_token(self, token: CachedToken):
        self._token = CacheEntry(token, utcnow())

    def clear_token(self):
        self._token = None
