"""Concurrent fetching of the remaining pages of a listing.

Once the first page has reported ``totalCount``, the other pages are
independent requests. :func:`fetch_remaining_pages` keeps up to
``max_concurrent`` of them in flight, starting the next page as each one
finishes. Items are appended in arrival order; callers that present sorted
output sort afterwards.

The first failing page aborts the whole fetch: in-flight pages are
cancelled and results already collected are discarded. Cancelling the
caller cancels every in-flight page the same way.
"""

from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable, Iterable, Optional, TypeVar

from hawkcli.client.pagination import (
    DEFAULT_MAX_CONCURRENT,
    SORT_ALL_TARGET,
    PagedResponse,
    PaginationParams,
    ScanFilterParams,
)
from hawkcli.output import debug

T = TypeVar("T")

FetchPage = Callable[[int], Awaitable[list[T]]]


async def fetch_remaining_pages(
    remaining: Iterable[int],
    fetch_page: FetchPage[T],
    max_concurrent: int = DEFAULT_MAX_CONCURRENT,
) -> list[T]:
    """Fetch *remaining* pages with at most *max_concurrent* in flight.

    Args:
        remaining: Page numbers to fetch.
        fetch_page: Coroutine function returning the items of one page.
        max_concurrent: Upper bound on simultaneous page requests.

    Returns:
        The concatenated items of every page, in completion order.

    Raises:
        ValueError: If *max_concurrent* is less than 1.
        Exception: Whatever the first failing ``fetch_page`` raised.
    """
    if max_concurrent < 1:
        raise ValueError(f"max_concurrent must be at least 1, got {max_concurrent}")

    pages = iter(remaining)
    in_flight: set[asyncio.Task[list[T]]] = set()
    items: list[T] = []

    def start_next() -> None:
        page = next(pages, None)
        if page is not None:
            in_flight.add(asyncio.ensure_future(fetch_page(page)))

    try:
        for _ in range(max_concurrent):
            start_next()

        while in_flight:
            done, _ = await asyncio.wait(in_flight, return_when=asyncio.FIRST_COMPLETED)
            for task in done:
                in_flight.discard(task)
                items.extend(task.result())
                start_next()
    finally:
        for task in in_flight:
            task.cancel()
        if in_flight:
            await asyncio.gather(*in_flight, return_exceptions=True)

    return items


async def fetch_all_pages(
    first: PagedResponse[T],
    fetch_page: FetchPage[T],
    target: Optional[int] = None,
    max_concurrent: int = DEFAULT_MAX_CONCURRENT,
) -> list[T]:
    """Collect up to *target* items starting from an already-fetched first page.

    With ``totalCount`` known, the remaining pages are fetched concurrently.
    Without it, pages are requested one at a time until a short page comes
    back or *target* items have been collected.
    """
    items = list(first.items)

    if first.total_count is not None:
        remaining = first.remaining_pages(target)
        if remaining:
            debug(f"Fetching {len(remaining)} more pages (up to {max_concurrent} at a time)")
            items.extend(await fetch_remaining_pages(remaining, fetch_page, max_concurrent))
    else:
        page = first.page_token
        last_count = len(first.items)
        while last_count >= first.page_size and (target is None or len(items) < target):
            page += 1
            batch = await fetch_page(page)
            items.extend(batch)
            last_count = len(batch)

    if target is not None:
        del items[target:]
    return items


async def list_all_apps(
    client: Any,
    org_id: str,
    pagination: Optional[PaginationParams] = None,
    target: Optional[int] = SORT_ALL_TARGET,
    max_concurrent: int = DEFAULT_MAX_CONCURRENT,
) -> list:
    """Every application of *org_id* (up to *target*), pages fetched in parallel.

    *client* is a :class:`~hawkcli.client.async_client.HawkClient` or a
    :class:`~hawkcli.cache.client.CachedClient`; with the latter each page
    is cached on its own. *target* defaults to :data:`SORT_ALL_TARGET`;
    pass ``None`` to fetch everything.
    """
    base = (pagination or PaginationParams()).for_page(0)
    first = await client.list_apps_paged(org_id, base)

    async def fetch_page(page: int) -> list:
        return (await client.list_apps_paged(org_id, base.for_page(page))).items

    return await fetch_all_pages(first, fetch_page, target, max_concurrent)


async def list_all_scans(
    client: Any,
    org_id: str,
    pagination: Optional[PaginationParams] = None,
    filters: Optional[ScanFilterParams] = None,
    target: Optional[int] = SORT_ALL_TARGET,
    max_concurrent: int = DEFAULT_MAX_CONCURRENT,
) -> list:
    """Every scan of *org_id* matching *filters* (up to *target*), pages fetched in parallel."""
    base = (pagination or PaginationParams()).for_page(0)
    first = await client.list_scans_paged(org_id, base, filters)

    async def fetch_page(page: int) -> list:
        return (await client.list_scans_paged(org_id, base.for_page(page), filters)).items

    return await fetch_all_pages(first, fetch_page, target, max_concurrent)
