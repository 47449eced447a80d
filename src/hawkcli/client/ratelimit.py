"""Reactive per-endpoint-category rate limiting.

StackHawk enforces separate request ceilings for a handful of endpoint
families. Every request is classified into an :class:`EndpointCategory`,
and each category owns a token bucket (a :class:`pyrate_limiter.Limiter`)
sized to the documented ceiling.

Buckets start *inactive*: normal traffic never waits. The first HTTP 429
for a category calls :meth:`RateLimiterSet.activate`, after which every
request in that category acquires a token before it is sent.

Example::

    limiters = RateLimiterSet()
    category = EndpointCategory.from_request("/api/v1/scan/org-1", "GET")
    await limiters.wait_for(category)      # returns at once until activated
    limiters.activate(category)            # after a 429
"""

from __future__ import annotations

import asyncio
import math
import threading
from enum import Enum
from typing import Mapping, Optional

from pyrate_limiter import Duration, Limiter, Rate

from hawkcli.output import debug

_MIN_POLL_SECONDS = 0.005


class EndpointCategory(str, Enum):
    """Endpoint families with independent rate ceilings."""

    SCAN = "scan"
    USER = "user"
    APP_LIST = "app_list"
    APP_ORG = "app_org"
    ORG_INVITE = "org_invite"
    DEFAULT = "default"

    @property
    def rate_per_second(self) -> float:
        """Documented ceiling for this category in requests per second."""
        return CATEGORY_RATES[self]

    @classmethod
    def from_request(cls, path: str, method: str) -> EndpointCategory:
        """Classify a request path and HTTP method.

        The ``/api/v1`` or ``/api/v2`` prefix is ignored, so both full URL
        paths and API-relative paths classify the same way.
        """
        method = method.upper()
        for prefix in ("/api/v1", "/api/v2"):
            if path.startswith(prefix):
                path = path[len(prefix):]
                break

        if path.startswith("/scan"):
            return cls.SCAN
        if path == "/user" and method == "GET":
            return cls.USER
        if path.startswith("/app/") and path.endswith("/list") and method == "GET":
            return cls.APP_LIST
        if path.startswith("/app/") and path.endswith("/org") and method == "GET":
            return cls.APP_ORG
        if "/org/" in path and "/invite" in path and method == "POST":
            return cls.ORG_INVITE
        return cls.DEFAULT


CATEGORY_RATES: dict[EndpointCategory, float] = {
    EndpointCategory.SCAN: 80.0,
    EndpointCategory.USER: 80.0,
    EndpointCategory.APP_LIST: 80.0,
    EndpointCategory.APP_ORG: 80.0,
    EndpointCategory.ORG_INVITE: 10 / 60,
    EndpointCategory.DEFAULT: 6.0,
}


def rates_for(per_second: float) -> list[Rate]:
    """Translate a per-second ceiling into pyrate-limiter rates.

    Ceilings of one request per second or more become a steady one-token
    window of ``ceil(1000 / rate)`` milliseconds. Slower ceilings become a
    per-minute quota of ``round(rate * 60)`` tokens.
    """
    if per_second <= 0:
        raise ValueError(f"rate must be positive, got {per_second}")
    if per_second >= 1:
        return [Rate(1, max(1, math.ceil(1000 / per_second)))]
    return [Rate(max(1, round(per_second * 60)), Duration.MINUTE)]


class _Bucket:
    """One category's limiter plus its activation flag."""

    __slots__ = ("limiter", "active", "poll_interval")

    def __init__(self, per_second: float) -> None:
        rates = rates_for(per_second)
        self.limiter = Limiter(rates, raise_when_fail=False)
        self.active = False
        rate = rates[0]
        self.poll_interval = max(_MIN_POLL_SECONDS, int(rate.interval) / rate.limit / 1000 / 2)


class RateLimiterSet:
    """Lazily-activated token buckets keyed by :class:`EndpointCategory`.

    All buckets are created up front; only activated ones ever delay a
    request.

    Args:
        rates: Per-second ceilings overriding :data:`CATEGORY_RATES` for
            some categories.
    """

    def __init__(self, rates: Optional[Mapping[EndpointCategory, float]] = None) -> None:
        merged = dict(CATEGORY_RATES)
        if rates:
            merged.update(rates)
        self._buckets = {category: _Bucket(rate) for category, rate in merged.items()}
        self._lock = threading.Lock()

    def is_active(self, category: EndpointCategory) -> bool:
        """Whether requests in *category* currently wait for tokens."""
        return self._buckets[category].active

    def activate(self, category: EndpointCategory) -> None:
        """Start throttling *category*. Calling it again has no effect."""
        bucket = self._buckets[category]
        with self._lock:
            if bucket.active:
                return
            bucket.active = True
        debug(f"Rate limiting activated for {category.value} endpoints")

    async def wait_for(self, category: EndpointCategory) -> None:
        """Wait until a token for *category* is available.

        Returns immediately while the category has not been activated.
        """
        bucket = self._buckets[category]
        if not bucket.active:
            return
        while not bucket.limiter.try_acquire(category.value):
            await asyncio.sleep(bucket.poll_interval)
