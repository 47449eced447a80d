"""Response-caching facade over :class:`~hawkcli.client.async_client.HawkClient`.

:class:`CachedClient` exposes the same coroutine operations as the raw
client. For each read it derives a key from the operation label, the API
host, the organization and the call's query parameters (plus any path
identifiers), and returns the cached JSON when a live entry exists.
Otherwise it calls through, stores the serialized result with the TTL from
:mod:`hawkcli.cache.ttl`, and returns it.

The cache never breaks a command: store faults and undecodable entries are
reported with :func:`~hawkcli.output.debug` and treated as misses, and a
failed write is dropped.

Team mutations are passed through and then invalidate the cached team
listings (and team details) of the affected organization.

Example::

    store = CacheStore.open(get_cache_dir())
    client = CachedClient(HawkClient(api_key=key), store)
    apps = await client.list_apps(org_id)          # network
    apps = await client.list_apps(org_id)          # cache
"""

from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable, Optional, TypeVar

from pydantic import ValidationError

from hawkcli.cache.key import Params, cache_key
from hawkcli.cache.store import CacheStore
from hawkcli.cache.ttl import ttl_for
from hawkcli.client.async_client import HawkClient
from hawkcli.client.pagination import (
    AuditFilterParams,
    PagedResponse,
    PaginationParams,
    ScanFilterParams,
)
from hawkcli.exceptions import CacheError
from hawkcli.models import (
    AlertMsgResponse,
    AlertResponse,
    Application,
    ApplicationAlert,
    AuditRecord,
    CreateTeamRequest,
    JwtToken,
    Organization,
    ScanResult,
    Team,
    TeamDetail,
    UpdateTeamRequest,
    User,
    type_adapter,
)
from hawkcli.output import debug

T = TypeVar("T")


class CachedClient:
    """Caching wrapper with the operation set of :class:`HawkClient`.

    Args:
        inner: The client that performs the HTTP requests.
        store: Open cache store; ``None`` makes every call a pass-through.
    """

    def __init__(self, inner: HawkClient, store: Optional[CacheStore] = None) -> None:
        self._inner = inner
        self._store = store

    @classmethod
    def pass_through(cls, inner: HawkClient) -> CachedClient:
        """A facade that never reads or writes the cache."""
        return cls(inner, None)

    @property
    def inner(self) -> HawkClient:
        return self._inner

    @property
    def store(self) -> Optional[CacheStore]:
        return self._store

    @property
    def enabled(self) -> bool:
        return self._store is not None

    @property
    def api_host(self) -> str:
        return self._inner.api_host

    async def aclose(self) -> None:
        """Close the wrapped client and the cache store."""
        await self._inner.aclose()
        if self._store is not None:
            self._store.close()

    # ------------------------------------------------------------------ #
    # Cache plumbing
    # ------------------------------------------------------------------ #

    async def _cached(
        self,
        label: str,
        org_id: Optional[str],
        params: Params,
        shape: Any,
        fetch: Callable[[], Awaitable[T]],
    ) -> T:
        """Return the cached value for this call, or fetch and cache it."""
        if self._store is None:
            return await fetch()

        key = cache_key(label, self._inner.api_host, org_id, params)
        adapter = type_adapter(shape)

        payload = await self._read(key)
        if payload is not None:
            try:
                value = adapter.validate_json(payload)
            except (ValidationError, ValueError) as exc:
                debug(f"Discarding undecodable cache entry for {label}: {exc}")
            else:
                debug(f"Cache hit: {label}")
                return value

        debug(f"Cache miss: {label}")
        value = await fetch()
        await self._write(key, adapter.dump_json(value, by_alias=True), label, org_id, ttl_for(label, value))
        return value

    async def _read(self, key: str) -> Optional[bytes]:
        assert self._store is not None
        try:
            return await asyncio.to_thread(self._store.get, key)
        except CacheError as exc:
            debug(f"Cache read failed, bypassing cache: {exc}")
            return None

    async def _write(
        self, key: str, data: bytes, label: str, org_id: Optional[str], ttl: int
    ) -> None:
        assert self._store is not None
        try:
            await asyncio.to_thread(self._store.put, key, data, label, org_id, ttl)
        except CacheError as exc:
            debug(f"Cache write failed for {label}: {exc}")

    async def invalidate(self, label: str, org_id: Optional[str] = None) -> int:
        """Drop every cached entry for *label* (within *org_id* if given).

        Returns:
            Number of entries removed; ``0`` when caching is disabled or
            the store failed.
        """
        if self._store is None:
            return 0
        try:
            removed = await asyncio.to_thread(self._store.delete_by_endpoint, label, org_id)
        except CacheError as exc:
            debug(f"Cache invalidation failed for {label}: {exc}")
            return 0
        debug(f"Invalidated {removed} cached {label} entries")
        return removed

    # ------------------------------------------------------------------ #
    # Uncached operations
    # ------------------------------------------------------------------ #

    async def authenticate(self, api_key: str) -> JwtToken:
        return await self._inner.authenticate(api_key)

    async def create_team(self, org_id: str, request: CreateTeamRequest) -> TeamDetail:
        team = await self._inner.create_team(org_id, request)
        await self.invalidate("list_teams", org_id)
        return team

    async def update_team(
        self, org_id: str, team_id: str, request: UpdateTeamRequest
    ) -> TeamDetail:
        team = await self._inner.update_team(org_id, team_id, request)
        await self.invalidate("list_teams", org_id)
        await self.invalidate("get_team", org_id)
        return team

    async def delete_team(self, org_id: str, team_id: str) -> None:
        await self._inner.delete_team(org_id, team_id)
        await self.invalidate("list_teams", org_id)
        await self.invalidate("get_team", org_id)

    # ------------------------------------------------------------------ #
    # Cached reads
    # ------------------------------------------------------------------ #

    async def list_orgs(self) -> list[Organization]:
        return await self._cached(
            "list_orgs", None, [], list[Organization], self._inner.list_orgs
        )

    async def list_apps(
        self, org_id: str, pagination: Optional[PaginationParams] = None
    ) -> list[Application]:
        pagination = pagination or PaginationParams()
        return await self._cached(
            "list_apps",
            org_id,
            pagination.to_query_params(),
            list[Application],
            lambda: self._inner.list_apps(org_id, pagination),
        )

    async def list_apps_paged(
        self, org_id: str, pagination: Optional[PaginationParams] = None
    ) -> PagedResponse[Application]:
        pagination = pagination or PaginationParams()
        return await self._cached(
            "list_apps_paged",
            org_id,
            pagination.to_query_params(),
            PagedResponse[Application],
            lambda: self._inner.list_apps_paged(org_id, pagination),
        )

    async def list_scans(
        self,
        org_id: str,
        pagination: Optional[PaginationParams] = None,
        filters: Optional[ScanFilterParams] = None,
    ) -> list[ScanResult]:
        pagination = pagination or PaginationParams()
        return await self._cached(
            "list_scans",
            org_id,
            _scan_params(pagination, filters),
            list[ScanResult],
            lambda: self._inner.list_scans(org_id, pagination, filters),
        )

    async def list_scans_paged(
        self,
        org_id: str,
        pagination: Optional[PaginationParams] = None,
        filters: Optional[ScanFilterParams] = None,
    ) -> PagedResponse[ScanResult]:
        pagination = pagination or PaginationParams()
        return await self._cached(
            "list_scans_paged",
            org_id,
            _scan_params(pagination, filters),
            PagedResponse[ScanResult],
            lambda: self._inner.list_scans_paged(org_id, pagination, filters),
        )

    async def get_scan(self, org_id: str, scan_id: str) -> ScanResult:
        return await self._cached(
            "get_scan",
            org_id,
            [("scanId", scan_id)],
            ScanResult,
            lambda: self._inner.get_scan(org_id, scan_id),
        )

    async def list_scan_alerts(
        self, scan_id: str, pagination: Optional[PaginationParams] = None
    ) -> list[ApplicationAlert]:
        pagination = pagination or PaginationParams()
        return await self._cached(
            "list_scan_alerts",
            None,
            [("scanId", scan_id), *pagination.to_query_params()],
            list[ApplicationAlert],
            lambda: self._inner.list_scan_alerts(scan_id, pagination),
        )

    async def get_alert_with_paths(
        self,
        scan_id: str,
        plugin_id: str,
        pagination: Optional[PaginationParams] = None,
    ) -> AlertResponse:
        pagination = pagination or PaginationParams()
        return await self._cached(
            "get_alert_with_paths",
            None,
            [("scanId", scan_id), ("pluginId", plugin_id), *pagination.to_query_params()],
            AlertResponse,
            lambda: self._inner.get_alert_with_paths(scan_id, plugin_id, pagination),
        )

    async def get_alert_message(
        self, scan_id: str, alert_uri_id: str, message_id: str
    ) -> AlertMsgResponse:
        return await self._cached(
            "get_alert_message",
            None,
            [("scanId", scan_id), ("uriId", alert_uri_id), ("messageId", message_id)],
            AlertMsgResponse,
            lambda: self._inner.get_alert_message(scan_id, alert_uri_id, message_id),
        )

    async def list_users(
        self, org_id: str, pagination: Optional[PaginationParams] = None
    ) -> list[User]:
        pagination = pagination or PaginationParams()
        return await self._cached(
            "list_users",
            org_id,
            pagination.to_query_params(),
            list[User],
            lambda: self._inner.list_users(org_id, pagination),
        )

    async def list_teams(
        self, org_id: str, pagination: Optional[PaginationParams] = None
    ) -> list[Team]:
        pagination = pagination or PaginationParams()
        return await self._cached(
            "list_teams",
            org_id,
            pagination.to_query_params(),
            list[Team],
            lambda: self._inner.list_teams(org_id, pagination),
        )

    async def get_team(self, org_id: str, team_id: str) -> TeamDetail:
        return await self._cached(
            "get_team",
            org_id,
            [("teamId", team_id)],
            TeamDetail,
            lambda: self._inner.get_team(org_id, team_id),
        )

    async def list_audit(
        self, org_id: str, filters: Optional[AuditFilterParams] = None
    ) -> list[AuditRecord]:
        filters = filters or AuditFilterParams()
        return await self._cached(
            "list_audit",
            org_id,
            filters.to_query_params(),
            list[AuditRecord],
            lambda: self._inner.list_audit(org_id, filters),
        )


def _scan_params(
    pagination: PaginationParams, filters: Optional[ScanFilterParams]
) -> list[tuple[str, str]]:
    params = pagination.to_query_params()
    if filters is not None:
        params += filters.to_query_params()
    return params
