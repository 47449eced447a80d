"""HTTP client for the StackHawk API.

Wraps :mod:`httpx` with reactive per-category rate limiting, automatic
access-token renewal, typed response parsing, and concurrent pagination.

Classes:
    :class:`HawkClient` -- the request pipeline and typed operations.
    :class:`RateLimiterSet` -- lazily activated token buckets.
    :class:`PagedResponse` -- one page plus ``totalCount``.

Example::

    from hawkcli.client import HawkClient

    async with HawkClient(api_key=key) as client:
        apps = await client.list_apps(org_id)
"""

from hawkcli.client.async_client import HawkClient
from hawkcli.client.pagination import (
    AuditFilterParams,
    PagedResponse,
    PaginationParams,
    ScanFilterParams,
    SortOrder,
)
from hawkcli.client.parallel import fetch_remaining_pages
from hawkcli.client.ratelimit import EndpointCategory, RateLimiterSet

__all__ = [
    "AuditFilterParams",
    "EndpointCategory",
    "HawkClient",
    "PagedResponse",
    "PaginationParams",
    "RateLimiterSet",
    "ScanFilterParams",
    "SortOrder",
    "fetch_remaining_pages",
]
