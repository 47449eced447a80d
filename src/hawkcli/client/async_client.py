"""Asynchronous StackHawk API client.

:class:`HawkClient` wraps :class:`httpx.AsyncClient` and runs every call
through one pipeline:

1. classify the request into an
   :class:`~hawkcli.client.ratelimit.EndpointCategory` and wait for a token
   if that category has been throttled before;
2. attach a bearer token, renewing it first when it is missing or within
   five minutes of expiry;
3. send the request (30 s timeout per attempt);
4. dispatch on the status: a 401 renews the token and retries once, a 429
   activates the category's limiter, sleeps for ``Retry-After`` and
   retries, other errors map to :mod:`hawkcli.exceptions`;
5. parse the JSON body into the caller's pydantic shape.

On top of :meth:`HawkClient.request` sit the typed operations used by the
commands (``list_orgs``, ``list_apps_paged``, ``get_scan``, ...). The
:class:`~hawkcli.cache.client.CachedClient` facade exposes the same
operations with response caching.

See Also:
    :mod:`hawkcli.client.parallel` for fetching the remaining pages of a
    listing concurrently.
"""

from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable, Optional

import httpx
from pydantic import Field, ValidationError

from hawkcli import __version__
from hawkcli.client.auth import AuthState, decode_token_expiry
from hawkcli.client.pagination import (
    AuditFilterParams,
    PagedResponse,
    PaginationParams,
    QueryParams,
    ScanFilterParams,
)
from hawkcli.client.ratelimit import EndpointCategory, RateLimiterSet
from hawkcli.exceptions import (
    BadRequestError,
    ConnectionError_,
    ForbiddenError,
    InvalidResponseError,
    NotFoundError,
    RateLimitError,
    ServerError,
    UnauthorizedError,
)
from hawkcli.models import (
    DEFAULT_API_HOST,
    AlertMsgResponse,
    AlertResponse,
    ApiModel,
    Application,
    ApplicationAlert,
    AuditRecord,
    CreateTeamRequest,
    FlexibleInt,
    JwtToken,
    Organization,
    ScanAlertsResponse,
    ScanResult,
    Team,
    TeamDetail,
    UpdateTeamRequest,
    User,
    UserResponse,
    type_adapter,
)
from hawkcli.output import debug

DEFAULT_TIMEOUT = 30.0
DEFAULT_RETRY_AFTER = 60.0
DEFAULT_MAX_RATE_LIMIT_RETRIES = 10

Sleep = Callable[[float], Awaitable[Any]]


# ------------------------------------------------------------------ #
# Listing envelopes
# ------------------------------------------------------------------ #


class _AppsEnvelope(ApiModel):
    applications: list[Application] = Field(default_factory=list)
    total_count: FlexibleInt = None


class _ScansEnvelope(ApiModel):
    application_scan_results: list[ScanResult] = Field(default_factory=list)
    total_count: FlexibleInt = None


class _UsersEnvelope(ApiModel):
    users: list[User] = Field(default_factory=list)
    total_count: FlexibleInt = None


class _TeamsEnvelope(ApiModel):
    teams: list[Team] = Field(default_factory=list)
    total_count: FlexibleInt = None


class _AuditEnvelope(ApiModel):
    audit_records: list[AuditRecord] = Field(default_factory=list)
    next_page_token: Optional[str] = None
    total_count: FlexibleInt = None


class HawkClient:
    """Rate-limited, token-renewing client for the StackHawk API.

    The underlying :class:`httpx.AsyncClient` is created on first use and
    reused for every request; close it with :meth:`aclose` or by using the
    client as an async context manager.

    Args:
        api_key: API key used to obtain and renew access tokens.
        api_host: Scheme and host of the API, without the ``/api/vN`` path.
        token: A previously issued access token to start with.
        timeout: Per-attempt request timeout in seconds.
        rate_limiters: Shared limiter set; a fresh one is created if omitted.
        max_rate_limit_retries: How many 429 responses a single call
            tolerates before raising :class:`RateLimitError`. ``None``
            retries for as long as the server keeps asking.
        transport: Optional httpx transport (tests pass
            :class:`httpx.MockTransport`).
        sleep: Coroutine used to wait out ``Retry-After``.

    Example::

        async with HawkClient(api_key="hawk.xxx") as client:
            await client.install_token(await client.authenticate("hawk.xxx"))
            orgs = await client.list_orgs()
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        api_host: str = DEFAULT_API_HOST,
        *,
        token: Optional[JwtToken] = None,
        timeout: float = DEFAULT_TIMEOUT,
        rate_limiters: Optional[RateLimiterSet] = None,
        max_rate_limit_retries: Optional[int] = DEFAULT_MAX_RATE_LIMIT_RETRIES,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self._api_host = api_host.rstrip("/")
        self.base_url_v1 = f"{self._api_host}/api/v1"
        self.base_url_v2 = f"{self._api_host}/api/v2"
        self._auth = AuthState(api_key, token)
        self._limiters = rate_limiters or RateLimiterSet()
        self._max_rate_limit_retries = max_rate_limit_retries
        self._timeout = timeout
        self._transport = transport
        self._sleep = sleep
        self._client: Optional[httpx.AsyncClient] = None

    @property
    def api_host(self) -> str:
        return self._api_host

    @property
    def rate_limiters(self) -> RateLimiterSet:
        return self._limiters

    @property
    def token(self) -> Optional[JwtToken]:
        """The currently installed access token."""
        return self._auth.token

    # ------------------------------------------------------------------ #
    # Async context manager
    # ------------------------------------------------------------------ #

    async def __aenter__(self) -> HawkClient:
        self._http()
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        """Close the underlying HTTP connection pool."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    def _http(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=self._timeout,
                follow_redirects=True,
                transport=self._transport,
                headers={
                    "Accept": "application/json",
                    "User-Agent": f"hawkcli/{__version__}",
                },
            )
        return self._client

    # ------------------------------------------------------------------ #
    # Authentication
    # ------------------------------------------------------------------ #

    async def authenticate(self, api_key: str) -> JwtToken:
        """Exchange *api_key* for an access token.

        Does not install the token; see :meth:`install_token`.

        Raises:
            UnauthorizedError: If the key is rejected.
            InvalidResponseError: If the response carries no usable token.
        """
        url = f"{self.base_url_v1}/auth/login"
        await self._limiters.wait_for(EndpointCategory.from_request("/auth/login", "GET"))
        response = await self._send("GET", url, headers={"X-ApiKey": api_key})
        if not response.is_success:
            self._raise_for_status(response)

        body = self._json(response)
        token = body.get("token") if isinstance(body, dict) else None
        if not isinstance(token, str) or not token:
            raise InvalidResponseError("Login response did not contain an access token")
        return JwtToken(token=token, expires_at=decode_token_expiry(token))

    async def install_token(self, token: JwtToken) -> None:
        """Use *token* for subsequent requests."""
        async with self._auth.refresh_lock:
            self._auth.install(token)

    async def get_valid_token(self) -> str:
        """Return a usable access token, renewing it if needed.

        Raises:
            UnauthorizedError: If renewal is needed but no API key is known.
        """
        if not self._auth.is_expired():
            return self._auth.token.token  # type: ignore[union-attr]
        async with self._auth.refresh_lock:
            if self._auth.is_expired():
                await self._renew_token()
        return self._auth.token.token  # type: ignore[union-attr]

    async def _force_renewal(self, rejected: str) -> None:
        """Renew after a 401 unless another task already replaced *rejected*."""
        async with self._auth.refresh_lock:
            current = self._auth.token
            if current is None or current.token == rejected:
                await self._renew_token()

    async def _renew_token(self) -> None:
        """Authenticate with the stored key. Caller holds the refresh lock."""
        if not self._auth.api_key:
            raise UnauthorizedError(
                "No API key available to renew the access token. Set HAWKCLI_API_KEY."
            )
        debug("Renewing access token")
        self._auth.install(await self.authenticate(self._auth.api_key))

    # ------------------------------------------------------------------ #
    # Request pipeline
    # ------------------------------------------------------------------ #

    async def request(
        self,
        method: str,
        base_url: str,
        path: str,
        params: Optional[QueryParams] = None,
        *,
        json_body: Optional[Any] = None,
        shape: Any = None,
    ) -> Any:
        """Send one authenticated API request and parse the response.

        Args:
            method: HTTP method.
            base_url: :attr:`base_url_v1` or :attr:`base_url_v2`.
            path: Path below *base_url*, e.g. ``/org/{org}/teams``.
            params: Query pairs; names may repeat.
            json_body: JSON-serialisable request body.
            shape: Type to validate the JSON body into (a pydantic model,
                ``list[Model]``, ...). ``None`` returns the raw JSON.

        Returns:
            The parsed body, or ``None`` for an empty 2xx response.

        Raises:
            UnauthorizedError: On a 401 that survives one token renewal.
            ForbiddenError: On 403.
            NotFoundError: On 404.
            BadRequestError: On 400 / 422.
            ServerError: On 5xx.
            RateLimitError: When 429 persists past the retry budget, or
                immediately for a POST.
            ConnectionError_: On network / timeout errors.
            InvalidResponseError: When the body does not match *shape*.
        """
        method = method.upper()
        url = f"{base_url}{path}"
        category = EndpointCategory.from_request(httpx.URL(url).path, method)
        renewed = False
        throttled = 0

        while True:
            # 1. Rate limiting
            await self._limiters.wait_for(category)

            # 2. Auth injection
            token = await self.get_valid_token()

            # 3. Send
            response = await self._send(
                method,
                url,
                params=params,
                json_body=json_body,
                headers={"Authorization": f"Bearer {token}"},
            )

            # 4. Status dispatch
            status = response.status_code
            if status == 401 and not renewed:
                renewed = True
                debug(f"{method} {path} returned 401; renewing token and retrying")
                await self._force_renewal(token)
                continue

            if status == 429:
                self._limiters.activate(category)
                retry_after = _retry_after(response)
                if method == "POST":
                    raise RateLimitError(
                        f"Rate limited on {method} {path}; retry after {retry_after:g}s",
                        retry_after=retry_after,
                    )
                if (
                    self._max_rate_limit_retries is not None
                    and throttled >= self._max_rate_limit_retries
                ):
                    raise RateLimitError(
                        f"Still rate limited on {method} {path} after {throttled} retries",
                        retry_after=retry_after,
                    )
                throttled += 1
                debug(f"{method} {path} returned 429; waiting {retry_after:g}s")
                await self._sleep(retry_after)
                continue

            # 5. Parse
            if not response.is_success:
                self._raise_for_status(response)
            return self._parse(response, shape)

    async def _send(
        self,
        method: str,
        url: str,
        params: Optional[QueryParams] = None,
        json_body: Optional[Any] = None,
        headers: Optional[dict[str, str]] = None,
    ) -> httpx.Response:
        """Issue one HTTP request, mapping transport failures."""
        kwargs: dict[str, Any] = {"headers": headers or {}}
        if params:
            kwargs["params"] = params
        if json_body is not None:
            kwargs["json"] = json_body
        try:
            return await self._http().request(method, url, **kwargs)
        except (httpx.ConnectError, httpx.TimeoutException, httpx.NetworkError) as exc:
            raise ConnectionError_(f"Request to {url} failed: {exc}") from exc

    @staticmethod
    def _json(response: httpx.Response) -> Any:
        try:
            return response.json()
        except ValueError as exc:
            raise InvalidResponseError(
                f"Invalid JSON in response from {response.request.url.path}: {exc}"
            ) from exc

    def _parse(self, response: httpx.Response, shape: Any) -> Any:
        """Validate a successful response body against *shape*."""
        if not response.content:
            return None
        data = self._json(response)
        if shape is None:
            return data
        try:
            return type_adapter(shape).validate_python(data)
        except ValidationError as exc:
            raise InvalidResponseError(
                f"Unexpected response shape from {response.request.url.path}: {exc}"
            ) from exc

    @staticmethod
    def _raise_for_status(response: httpx.Response) -> None:
        """Raise a typed exception for an error HTTP status."""
        status = response.status_code
        msg = _error_message(response)

        if status == 401:
            raise UnauthorizedError()
        if status == 403:
            raise ForbiddenError()
        if status == 404:
            raise NotFoundError(msg or f"Not found: {response.request.url.path}")
        if status in (400, 422):
            raise BadRequestError(f"Bad request: {msg}" if msg else "Bad request")
        if status == 429:
            raise RateLimitError("Rate limited", retry_after=_retry_after(response))
        if status >= 500:
            raise ServerError(f"HTTP {status}: {msg}" if msg else f"HTTP {status}")
        raise InvalidResponseError(f"Unexpected HTTP status {status}")

    # ------------------------------------------------------------------ #
    # Organizations and applications
    # ------------------------------------------------------------------ #

    async def list_orgs(self) -> list[Organization]:
        """Organizations the authenticated user belongs to."""
        body: UserResponse = await self.request(
            "GET", self.base_url_v1, "/user", shape=UserResponse
        )
        return [m.organization for m in body.user.external.organizations]

    async def list_apps_paged(
        self, org_id: str, pagination: Optional[PaginationParams] = None
    ) -> PagedResponse[Application]:
        """One page of an organization's applications."""
        pagination = pagination or PaginationParams()
        body: _AppsEnvelope = await self.request(
            "GET",
            self.base_url_v2,
            f"/org/{org_id}/apps",
            pagination.to_query_params(),
            shape=_AppsEnvelope,
        )
        return PagedResponse[Application](
            items=body.applications,
            total_count=body.total_count,
            page_size=pagination.effective_page_size,
            page_token=pagination.page or 0,
        )

    async def list_apps(
        self, org_id: str, pagination: Optional[PaginationParams] = None
    ) -> list[Application]:
        return (await self.list_apps_paged(org_id, pagination)).items

    # ------------------------------------------------------------------ #
    # Scans and findings
    # ------------------------------------------------------------------ #

    async def list_scans_paged(
        self,
        org_id: str,
        pagination: Optional[PaginationParams] = None,
        filters: Optional[ScanFilterParams] = None,
    ) -> PagedResponse[ScanResult]:
        """One page of an organization's scans, newest first unless sorted otherwise."""
        pagination = pagination or PaginationParams()
        params = pagination.to_query_params()
        if filters is not None:
            params += filters.to_query_params()
        body: _ScansEnvelope = await self.request(
            "GET", self.base_url_v1, f"/scan/{org_id}", params, shape=_ScansEnvelope
        )
        return PagedResponse[ScanResult](
            items=body.application_scan_results,
            total_count=body.total_count,
            page_size=pagination.effective_page_size,
            page_token=pagination.page or 0,
        )

    async def list_scans(
        self,
        org_id: str,
        pagination: Optional[PaginationParams] = None,
        filters: Optional[ScanFilterParams] = None,
    ) -> list[ScanResult]:
        return (await self.list_scans_paged(org_id, pagination, filters)).items

    async def get_scan(self, org_id: str, scan_id: str) -> ScanResult:
        """A single scan with its statistics.

        Raises:
            NotFoundError: If the scan is unknown.
        """
        body: ScanAlertsResponse = await self.request(
            "GET",
            self.base_url_v1,
            f"/scan/{scan_id}/alerts",
            [("pageSize", "1")],
            shape=ScanAlertsResponse,
        )
        if not body.application_scan_results:
            raise NotFoundError(f"Scan {scan_id} not found")
        first = body.application_scan_results[0]
        return ScanResult.model_validate(
            first.model_dump(by_alias=True, exclude={"application_alerts"})
        )

    async def list_scan_alerts(
        self, scan_id: str, pagination: Optional[PaginationParams] = None
    ) -> list[ApplicationAlert]:
        """Findings reported by a scan."""
        pagination = pagination or PaginationParams()
        body: ScanAlertsResponse = await self.request(
            "GET",
            self.base_url_v1,
            f"/scan/{scan_id}/alerts",
            pagination.to_query_params(),
            shape=ScanAlertsResponse,
        )
        return [alert for result in body.application_scan_results for alert in result.application_alerts]

    async def get_alert_with_paths(
        self,
        scan_id: str,
        plugin_id: str,
        pagination: Optional[PaginationParams] = None,
    ) -> AlertResponse:
        """One finding and the paths it was observed on."""
        pagination = pagination or PaginationParams()
        return await self.request(
            "GET",
            self.base_url_v1,
            f"/scan/{scan_id}/alert/{plugin_id}",
            pagination.to_query_params(),
            shape=AlertResponse,
        )

    async def get_alert_message(
        self, scan_id: str, alert_uri_id: str, message_id: str
    ) -> AlertMsgResponse:
        """The captured request/response evidence for one finding path."""
        return await self.request(
            "GET",
            self.base_url_v1,
            f"/scan/{scan_id}/uri/{alert_uri_id}/messages/{message_id}",
            [("includeCurl", "true")],
            shape=AlertMsgResponse,
        )

    # ------------------------------------------------------------------ #
    # Users and teams
    # ------------------------------------------------------------------ #

    async def list_users(
        self, org_id: str, pagination: Optional[PaginationParams] = None
    ) -> list[User]:
        pagination = pagination or PaginationParams()
        body: _UsersEnvelope = await self.request(
            "GET",
            self.base_url_v1,
            f"/org/{org_id}/members",
            pagination.to_query_params(),
            shape=_UsersEnvelope,
        )
        return body.users

    async def list_teams(
        self, org_id: str, pagination: Optional[PaginationParams] = None
    ) -> list[Team]:
        pagination = pagination or PaginationParams()
        body: _TeamsEnvelope = await self.request(
            "GET",
            self.base_url_v1,
            f"/org/{org_id}/teams",
            pagination.to_query_params(),
            shape=_TeamsEnvelope,
        )
        return body.teams

    async def get_team(self, org_id: str, team_id: str) -> TeamDetail:
        return await self.request(
            "GET", self.base_url_v1, f"/org/{org_id}/team/{team_id}", shape=TeamDetail
        )

    async def create_team(self, org_id: str, request: CreateTeamRequest) -> TeamDetail:
        return await self.request(
            "POST",
            self.base_url_v1,
            f"/org/{org_id}/team",
            json_body=request.model_dump(mode="json", by_alias=True),
            shape=TeamDetail,
        )

    async def update_team(
        self, org_id: str, team_id: str, request: UpdateTeamRequest
    ) -> TeamDetail:
        return await self.request(
            "PUT",
            self.base_url_v1,
            f"/org/{org_id}/team/{team_id}",
            json_body=request.model_dump(mode="json", by_alias=True),
            shape=TeamDetail,
        )

    async def delete_team(self, org_id: str, team_id: str) -> None:
        await self.request("DELETE", self.base_url_v1, f"/org/{org_id}/team/{team_id}")

    # ------------------------------------------------------------------ #
    # Audit log
    # ------------------------------------------------------------------ #

    async def list_audit(
        self, org_id: str, filters: Optional[AuditFilterParams] = None
    ) -> list[AuditRecord]:
        params = (filters or AuditFilterParams()).to_query_params()
        body: _AuditEnvelope = await self.request(
            "GET", self.base_url_v1, f"/org/{org_id}/audit", params, shape=_AuditEnvelope
        )
        return body.audit_records


def _retry_after(response: httpx.Response) -> float:
    """Seconds to wait from ``Retry-After``.

    Only a plain count of whole seconds is honoured; HTTP-dates, fractions
    and anything else use :data:`DEFAULT_RETRY_AFTER`.
    """
    value = response.headers.get("retry-after", "").strip()
    if not (value.isascii() and value.isdigit()):
        return DEFAULT_RETRY_AFTER
    return float(int(value))


def _error_message(response: httpx.Response) -> str:
    """Extract a human-readable message from an error response body."""
    try:
        detail = response.json()
        if isinstance(detail, dict):
            return str(detail.get("message") or detail.get("error") or detail.get("detail") or "")
        return str(detail)
    except ValueError:
        return response.text[:200] if response.text else ""
