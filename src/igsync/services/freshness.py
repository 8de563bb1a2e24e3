"""Cache freshness policy: serve stored data or refetch from the Graph API."""

from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Optional

from igsync.models.base import as_utc


@dataclass(frozen=True)
class CacheDecision:
    """Outcome of a freshness check."""

    serve_cached: bool
    reason: str
    age: Optional[timedelta] = None

    @property
    def age_hours(self) -> float:
        if self.age is None:
            return 0.0
        return round(self.age.total_seconds() / 3600, 2)


class FreshnessPolicy:
    """Decides whether a cached record is fresh enough to serve.

    Days that have fully elapsed cannot change upstream, so their cached rows
    are served regardless of age. Only "today" is subject to the TTL, and an
    explicit force refetches any day.
    """

    def __init__(self, ttl: timedelta):
        self.ttl = ttl

    @classmethod
    def from_minutes(cls, minutes: int) -> "FreshnessPolicy":
        return cls(timedelta(minutes=minutes))

    def decide(
        self,
        requested_date: date,
        today: date,
        cached_at: Optional[datetime],
        now: datetime,
        force: bool = False,
    ) -> CacheDecision:
        age = now - as_utc(cached_at) if cached_at is not None else None
        if force:
            return CacheDecision(False, "forced refresh", age)
        if cached_at is None:
            return CacheDecision(False, "no cached record")
        if requested_date != today:
            return CacheDecision(True, "past day is immutable", age)
        if age <= self.ttl:
            return CacheDecision(True, "within ttl", age)
        return CacheDecision(False, "stale", age)
