"""Pagination, filter parameters, and the paged response envelope.

StackHawk listings are token-paged: ``pageToken`` is a zero-based page
number and ``pageSize`` is capped at :data:`MAX_PAGE_SIZE`. The first page
carries ``totalCount``, from which :class:`PagedResponse` derives the page
numbers still to fetch so that :func:`~hawkcli.client.parallel.fetch_remaining_pages`
can request them concurrently.

Every parameter record renders to a list of ``(name, value)`` pairs rather
than a dict, because multi-valued filters repeat their name
(``appIds=a&appIds=b``). The same pairs feed the cache key.
"""

from __future__ import annotations

import math
from enum import Enum
from typing import Generic, Optional, TypeVar

from pydantic import BaseModel, Field

MAX_PAGE_SIZE = 1000
DEFAULT_PAGE_SIZE = 1000
DEFAULT_MAX_CONCURRENT = 32
SORT_ALL_TARGET = 10_000
"""Safety cap on items fetched when a listing must be sorted client-side."""

QueryParams = list[tuple[str, str]]

T = TypeVar("T")


class SortOrder(str, Enum):
    ASC = "asc"
    DESC = "desc"


class PaginationParams(BaseModel):
    """Paging and sorting for one listing request.

    Attributes:
        page_size: Items per page; defaults to and is capped at 1000.
        page: Zero-based page number (``pageToken``).
        sort_by: Server-side sort field (``sortField``).
        sort_order: Sort direction (``sortDir``).
    """

    page_size: Optional[int] = Field(default=None, ge=1)
    page: Optional[int] = Field(default=None, ge=0)
    sort_by: Optional[str] = None
    sort_order: Optional[SortOrder] = None

    @property
    def effective_page_size(self) -> int:
        return min(self.page_size or DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE)

    def for_page(self, page: int) -> PaginationParams:
        """Return a copy targeting *page*."""
        return self.model_copy(update={"page": page})

    def to_query_params(self) -> QueryParams:
        """Render as query pairs. ``pageSize`` is always present."""
        params: QueryParams = [("pageSize", str(self.effective_page_size))]
        if self.page is not None:
            params.append(("pageToken", str(self.page)))
        if self.sort_by:
            params.append(("sortField", self.sort_by))
        if self.sort_order is not None:
            params.append(("sortDir", self.sort_order.value))
        return params


class ScanFilterParams(BaseModel):
    """Filters for scan listings. ``start``/``end`` are epoch milliseconds."""

    app_ids: list[str] = Field(default_factory=list)
    envs: list[str] = Field(default_factory=list)
    team_ids: list[str] = Field(default_factory=list)
    start: Optional[int] = None
    end: Optional[int] = None

    def to_query_params(self) -> QueryParams:
        params: QueryParams = []
        params.extend(("appIds", v) for v in self.app_ids)
        params.extend(("envs", v) for v in self.envs)
        params.extend(("teamIds", v) for v in self.team_ids)
        if self.start is not None:
            params.append(("start", str(self.start)))
        if self.end is not None:
            params.append(("end", str(self.end)))
        return params


class AuditFilterParams(BaseModel):
    """Filters and paging for the organization audit log."""

    types: list[str] = Field(default_factory=list)
    org_types: list[str] = Field(default_factory=list)
    name: Optional[str] = None
    email: Optional[str] = None
    start: Optional[int] = None
    end: Optional[int] = None
    sort_dir: Optional[SortOrder] = None
    page_size: Optional[int] = Field(default=None, ge=1, le=MAX_PAGE_SIZE)
    page_token: Optional[str] = None

    def to_query_params(self) -> QueryParams:
        params: QueryParams = []
        params.extend(("types", v) for v in self.types)
        params.extend(("orgTypes", v) for v in self.org_types)
        if self.name:
            params.append(("name", self.name))
        if self.email:
            params.append(("email", self.email))
        if self.start is not None:
            params.append(("start", str(self.start)))
        if self.end is not None:
            params.append(("end", str(self.end)))
        if self.sort_dir is not None:
            params.append(("sortDir", self.sort_dir.value))
        if self.page_size is not None:
            params.append(("pageSize", str(self.page_size)))
        if self.page_token:
            params.append(("pageToken", self.page_token))
        return params


class PagedResponse(BaseModel, Generic[T]):
    """One page of a listing plus what is needed to plan the rest.

    Example::

        first = await client.list_apps_paged(org_id, PaginationParams(page=0))
        remaining = first.remaining_pages(target=250)   # e.g. [1, 2]
    """

    items: list[T] = Field(default_factory=list)
    total_count: Optional[int] = None
    page_size: int = DEFAULT_PAGE_SIZE
    page_token: int = 0

    def total_pages(self, target: Optional[int] = None) -> Optional[int]:
        """Number of pages needed for ``min(total_count, target)`` items.

        Returns ``None`` when the server did not report ``totalCount``.
        """
        if self.total_count is None:
            return None
        bound = self.total_count if target is None else min(self.total_count, target)
        return math.ceil(bound / self.page_size)

    def remaining_pages(self, target: Optional[int] = None) -> list[int]:
        """Page numbers after this one that are still needed.

        Empty when ``totalCount`` is unknown; callers then fetch serially.
        """
        pages = self.total_pages(target)
        if pages is None:
            return []
        return list(range(self.page_token + 1, pages))

    def has_more(self) -> bool:
        """Whether the server may hold pages past this one."""
        if self.total_count is not None:
            return (self.page_token + 1) * self.page_size < self.total_count
        return len(self.items) >= self.page_size
