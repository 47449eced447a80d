"""Tests for the asynchronous StackHawk API client."""

from __future__ import annotations

import asyncio
import json
import time
from typing import Any, Callable, Optional

import httpx
import pytest

from hawkcli.client.async_client import HawkClient
from hawkcli.client.pagination import (
    AuditFilterParams,
    PaginationParams,
    ScanFilterParams,
    SortOrder,
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
from hawkcli.exit_codes import (
    EXIT_AUTH_FAILURE,
    EXIT_INVALID_RESPONSE,
    EXIT_INVALID_USAGE,
    EXIT_NOT_FOUND,
    EXIT_RATE_LIMITED,
    EXIT_SERVER_ERROR,
)
from hawkcli.models import CreateTeamRequest, JwtToken, UpdateTeamRequest


API_KEY = "hawk.test-key"
LOGIN_PATH = "/api/v1/auth/login"

Reply = tuple[int, Any, dict[str, str]]


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


class ApiStub:
    """MockTransport handler emulating the login endpoint plus queued replies.

    Each path holds a queue of ``(status, body, headers)`` replies; the last
    reply repeats once the queue is down to one. A *body* of ``bytes`` is
    sent verbatim, anything else as JSON.
    """

    def __init__(self, token_factory: Callable[..., str]) -> None:
        self._token_factory = token_factory
        self.replies: dict[tuple[str, str], list[Reply]] = {}
        self.requests: list[httpx.Request] = []
        self.stamps: dict[str, list[float]] = {}
        self.login_calls = 0
        self.login_body: Optional[Any] = None

    def reply(self, method: str, path: str, *replies: Reply) -> None:
        self.replies[(method, path)] = list(replies)

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        self.stamps.setdefault(request.url.path, []).append(time.monotonic())

        if request.url.path == LOGIN_PATH:
            self.login_calls += 1
            if request.headers.get("X-ApiKey") != API_KEY:
                return httpx.Response(401, json={"message": "bad key"})
            if self.login_body is not None:
                return httpx.Response(200, json=self.login_body)
            return httpx.Response(
                200, json={"token": self._token_factory(login=self.login_calls)}
            )

        queue = self.replies.get((request.method, request.url.path))
        if not queue:
            return httpx.Response(404, json={"message": f"{request.url.path} not found"})
        status, body, headers = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(body, bytes):
            return httpx.Response(status, content=body, headers=headers)
        if body is None:
            return httpx.Response(status, headers=headers)
        return httpx.Response(status, json=body, headers=headers)

    def calls(self, path: str) -> list[httpx.Request]:
        return [r for r in self.requests if r.url.path == path]


def ok(body: Any) -> Reply:
    return (200, body, {})


def _valid_token(value: str = "cached-token") -> JwtToken:
    return JwtToken(token=value, expires_at=int(time.time()) + 3600)


def _expired_token() -> JwtToken:
    return JwtToken(token="expired-token", expires_at=int(time.time()) - 10)


@pytest.fixture()
def stub(token_factory) -> ApiStub:
    return ApiStub(token_factory)


@pytest.fixture()
def sleeps() -> list[float]:
    return []


@pytest.fixture()
def make_client(stub: ApiStub, api_host: str, sleeps: list[float]):
    """Factory for clients wired to the stub."""

    async def fake_sleep(seconds: float) -> None:
        sleeps.append(seconds)

    def factory(**kwargs: Any) -> HawkClient:
        kwargs.setdefault("token", _valid_token())
        kwargs.setdefault("api_key", API_KEY)
        return HawkClient(
            api_host=api_host,
            transport=httpx.MockTransport(stub),
            sleep=fake_sleep,
            **kwargs,
        )

    return factory


TEAMS = {"teams": [{"id": "t1", "name": "Platform"}], "totalCount": 1}


# ---------------------------------------------------------------------------
# Authentication
# ---------------------------------------------------------------------------


class TestAuthenticate:
    @pytest.mark.asyncio
    async def test_returns_token_with_expiry(self, make_client, stub, token_factory) -> None:
        stub.login_body = {"token": token_factory(exp=1767225600)}
        client = make_client()
        token = await client.authenticate(API_KEY)
        assert token.expires_at == 1767225600
        assert stub.calls(LOGIN_PATH)[0].headers["X-ApiKey"] == API_KEY
        await client.aclose()

    @pytest.mark.asyncio
    async def test_rejected_key(self, make_client) -> None:
        client = make_client()
        with pytest.raises(UnauthorizedError) as exc_info:
            await client.authenticate("wrong")
        assert exc_info.value.exit_code == EXIT_AUTH_FAILURE
        await client.aclose()

    @pytest.mark.asyncio
    @pytest.mark.parametrize("body", [{}, {"token": ""}, {"token": "not-a-jwt"}, ["x"]])
    async def test_unusable_login_response(self, make_client, stub, body) -> None:
        stub.login_body = body
        client = make_client()
        with pytest.raises(InvalidResponseError):
            await client.authenticate(API_KEY)
        await client.aclose()


class TestTokenRenewal:
    @pytest.mark.asyncio
    async def test_401_renews_once_and_retries(self, make_client, stub) -> None:
        """A rejected token triggers exactly one login, then the retry succeeds."""
        stub.reply("GET", "/api/v1/org/o1/teams", (401, {}, {}), ok(TEAMS))
        client = make_client(token=_valid_token("stale-token"))

        teams = await client.list_teams("o1")

        assert [t.id for t in teams] == ["t1"]
        assert stub.login_calls == 1
        attempts = stub.calls("/api/v1/org/o1/teams")
        assert len(attempts) == 2
        assert attempts[0].headers["Authorization"] == "Bearer stale-token"
        assert attempts[1].headers["Authorization"] != "Bearer stale-token"
        assert client.token is not None and client.token.token != "stale-token"
        await client.aclose()

    @pytest.mark.asyncio
    async def test_second_401_is_fatal(self, make_client, stub) -> None:
        stub.reply("GET", "/api/v1/org/o1/teams", (401, {}, {}))
        client = make_client()
        with pytest.raises(UnauthorizedError):
            await client.list_teams("o1")
        assert stub.login_calls == 1
        assert len(stub.calls("/api/v1/org/o1/teams")) == 2
        await client.aclose()

    @pytest.mark.asyncio
    async def test_expired_token_renewed_before_sending(self, make_client, stub) -> None:
        stub.reply("GET", "/api/v1/org/o1/teams", ok(TEAMS))
        client = make_client(token=_expired_token())
        await client.list_teams("o1")
        assert stub.login_calls == 1
        request = stub.calls("/api/v1/org/o1/teams")[0]
        assert request.headers["Authorization"] != "Bearer expired-token"
        await client.aclose()

    @pytest.mark.asyncio
    async def test_missing_token_renewed(self, make_client, stub) -> None:
        stub.reply("GET", "/api/v1/org/o1/teams", ok(TEAMS))
        client = make_client(token=None)
        await client.list_teams("o1")
        assert stub.login_calls == 1
        await client.aclose()

    @pytest.mark.asyncio
    async def test_concurrent_requests_share_one_renewal(self, make_client, stub) -> None:
        """A burst of requests at expiry logs in only once."""
        stub.reply("GET", "/api/v1/org/o1/teams", ok(TEAMS))
        client = make_client(token=_expired_token())
        await asyncio.gather(*(client.list_teams("o1") for _ in range(10)))
        assert stub.login_calls == 1
        assert len(stub.calls("/api/v1/org/o1/teams")) == 10
        await client.aclose()

    @pytest.mark.asyncio
    async def test_no_api_key_cannot_renew(self, make_client, stub) -> None:
        client = make_client(token=_expired_token(), api_key=None)
        with pytest.raises(UnauthorizedError):
            await client.list_teams("o1")
        assert stub.requests == []
        await client.aclose()

    @pytest.mark.asyncio
    async def test_install_token(self, make_client, stub) -> None:
        stub.reply("GET", "/api/v1/org/o1/teams", ok(TEAMS))
        client = make_client(token=None)
        await client.install_token(_valid_token("installed"))
        await client.list_teams("o1")
        assert stub.login_calls == 0
        assert stub.requests[0].headers["Authorization"] == "Bearer installed"
        await client.aclose()


# ---------------------------------------------------------------------------
# Rate limiting
# ---------------------------------------------------------------------------


class TestRateLimiting:
    @pytest.mark.asyncio
    async def test_429_activates_bucket_and_spaces_later_requests(
        self, make_client, stub, sleeps
    ) -> None:
        """After a 429 the category waits on its bucket; spacing is at least 1/r."""
        rate = 20.0
        limiters = RateLimiterSet({EndpointCategory.SCAN: rate})
        stub.reply(
            "GET",
            "/api/v1/scan/o1",
            (429, {}, {"Retry-After": "1"}),
            ok({"applicationScanResults": [], "totalCount": 0}),
        )
        client = make_client(rate_limiters=limiters)

        assert not limiters.is_active(EndpointCategory.SCAN)
        await client.list_scans("o1")
        assert sleeps == [1.0]
        assert limiters.is_active(EndpointCategory.SCAN)
        assert not limiters.is_active(EndpointCategory.DEFAULT)

        for _ in range(3):
            await client.list_scans("o1")

        stamps = stub.stamps["/api/v1/scan/o1"][1:]
        gaps = [b - a for a, b in zip(stamps, stamps[1:])]
        assert len(gaps) == 3
        assert all(gap >= 1 / rate - 0.005 for gap in gaps)
        await client.aclose()

    @pytest.mark.asyncio
    async def test_missing_retry_after_uses_default(self, make_client, stub, sleeps) -> None:
        stub.reply("GET", "/api/v1/org/o1/teams", (429, {}, {}), ok(TEAMS))
        client = make_client()
        await client.list_teams("o1")
        assert sleeps == [60.0]
        await client.aclose()

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        ("header", "expected"),
        [
            ("7", 7.0),
            (" 3 ", 3.0),
            ("1.5", 60.0),
            ("inf", 60.0),
            ("1e3", 60.0),
            ("-5", 60.0),
            ("abc", 60.0),
            ("Wed, 21 Oct 2026 07:28:00 GMT", 60.0),
        ],
    )
    async def test_retry_after_whole_seconds_only(
        self, make_client, stub, sleeps, header: str, expected: float
    ) -> None:
        stub.reply("GET", "/api/v1/org/o1/teams", (429, {}, {"Retry-After": header}), ok(TEAMS))
        client = make_client()
        await client.list_teams("o1")
        assert sleeps == [expected]
        await client.aclose()

    @pytest.mark.asyncio
    async def test_retry_budget_exhausted(self, make_client, stub, sleeps) -> None:
        stub.reply("GET", "/api/v1/scan/o1", (429, {}, {"Retry-After": "2"}))
        client = make_client(max_rate_limit_retries=2)
        with pytest.raises(RateLimitError) as exc_info:
            await client.list_scans("o1")
        assert exc_info.value.exit_code == EXIT_RATE_LIMITED
        assert exc_info.value.retry_after == 2.0
        assert sleeps == [2.0, 2.0]
        assert len(stub.calls("/api/v1/scan/o1")) == 3
        await client.aclose()

    @pytest.mark.asyncio
    async def test_post_is_not_replayed(self, make_client, stub, sleeps) -> None:
        """A throttled write raises immediately instead of being sent again."""
        stub.reply("POST", "/api/v1/org/o1/team", (429, {}, {"Retry-After": "5"}))
        client = make_client()
        with pytest.raises(RateLimitError) as exc_info:
            await client.create_team("o1", CreateTeamRequest(name="x", organization_id="o1"))
        assert exc_info.value.retry_after == 5.0
        assert sleeps == []
        assert len(stub.calls("/api/v1/org/o1/team")) == 1
        assert client.rate_limiters.is_active(EndpointCategory.DEFAULT)
        await client.aclose()


# ---------------------------------------------------------------------------
# Error mapping
# ---------------------------------------------------------------------------


class TestErrorMapping:
    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        ("status", "body", "exc_type", "exit_code"),
        [
            (403, {}, ForbiddenError, EXIT_AUTH_FAILURE),
            (404, {"message": "Team not found"}, NotFoundError, EXIT_NOT_FOUND),
            (400, {"error": "bad page"}, BadRequestError, EXIT_INVALID_USAGE),
            (422, {"detail": "invalid"}, BadRequestError, EXIT_INVALID_USAGE),
            (500, {"message": "boom"}, ServerError, EXIT_SERVER_ERROR),
            (503, b"unavailable", ServerError, EXIT_SERVER_ERROR),
            (418, {}, InvalidResponseError, EXIT_INVALID_RESPONSE),
        ],
    )
    async def test_status_maps_to_exception(
        self, make_client, stub, status, body, exc_type, exit_code
    ) -> None:
        stub.reply("GET", "/api/v1/org/o1/team/t1", (status, body, {}))
        client = make_client()
        with pytest.raises(exc_type) as exc_info:
            await client.get_team("o1", "t1")
        assert exc_info.value.exit_code == exit_code
        await client.aclose()

    @pytest.mark.asyncio
    async def test_server_message_included(self, make_client, stub) -> None:
        stub.reply("GET", "/api/v1/org/o1/team/t1", (500, {"message": "boom"}, {}))
        client = make_client()
        with pytest.raises(ServerError, match="HTTP 500: boom"):
            await client.get_team("o1", "t1")
        await client.aclose()

    @pytest.mark.asyncio
    async def test_not_found_message(self, make_client, stub) -> None:
        stub.reply("GET", "/api/v1/org/o1/team/t1", (404, {"message": "Team not found"}, {}))
        client = make_client()
        with pytest.raises(NotFoundError, match="Team not found"):
            await client.get_team("o1", "t1")
        await client.aclose()

    @pytest.mark.asyncio
    async def test_network_failure(self, api_host) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        client = HawkClient(
            API_KEY, api_host, token=_valid_token(), transport=httpx.MockTransport(handler)
        )
        with pytest.raises(ConnectionError_):
            await client.list_teams("o1")
        await client.aclose()

    @pytest.mark.asyncio
    async def test_timeout(self, api_host) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("timed out", request=request)

        client = HawkClient(
            API_KEY, api_host, token=_valid_token(), transport=httpx.MockTransport(handler)
        )
        with pytest.raises(ConnectionError_):
            await client.list_teams("o1")
        await client.aclose()


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------


class TestParsing:
    @pytest.mark.asyncio
    async def test_invalid_json(self, make_client, stub) -> None:
        stub.reply("GET", "/api/v1/org/o1/teams", (200, b"<html>", {}))
        client = make_client()
        with pytest.raises(InvalidResponseError):
            await client.list_teams("o1")
        await client.aclose()

    @pytest.mark.asyncio
    async def test_unexpected_shape(self, make_client, stub) -> None:
        stub.reply("GET", "/api/v1/org/o1/teams", ok({"teams": "nope"}))
        client = make_client()
        with pytest.raises(InvalidResponseError):
            await client.list_teams("o1")
        await client.aclose()

    @pytest.mark.asyncio
    async def test_empty_body_returns_none(self, make_client, stub) -> None:
        stub.reply("DELETE", "/api/v1/org/o1/team/t1", (204, None, {}))
        client = make_client()
        assert await client.delete_team("o1", "t1") is None
        await client.aclose()

    @pytest.mark.asyncio
    async def test_numeric_strings_normalised(self, make_client, stub) -> None:
        """``totalCount`` and timestamps may arrive as strings."""
        stub.reply(
            "GET",
            "/api/v1/scan/o1",
            ok(
                {
                    "applicationScanResults": [
                        {"scan": {"id": "s1", "status": "COMPLETED", "timestamp": "1700000000000"}}
                    ],
                    "totalCount": "250",
                }
            ),
        )
        client = make_client()
        page = await client.list_scans_paged("o1", PaginationParams(page_size=100, page=0))
        assert page.total_count == 250
        assert page.page_size == 100
        assert page.items[0].scan.timestamp == 1700000000000
        assert page.remaining_pages() == [1, 2]
        await client.aclose()


# ---------------------------------------------------------------------------
# Operations
# ---------------------------------------------------------------------------


class TestOperations:
    @pytest.mark.asyncio
    async def test_request_headers(self, make_client, stub) -> None:
        stub.reply("GET", "/api/v1/org/o1/teams", ok(TEAMS))
        client = make_client(token=_valid_token("abc"))
        await client.list_teams("o1")
        request = stub.requests[0]
        assert request.headers["Authorization"] == "Bearer abc"
        assert request.headers["Accept"] == "application/json"
        assert request.headers["User-Agent"].startswith("hawkcli/")
        await client.aclose()

    @pytest.mark.asyncio
    async def test_list_orgs_flattens_memberships(self, make_client, stub) -> None:
        stub.reply(
            "GET",
            "/api/v1/user",
            ok(
                {
                    "user": {
                        "external": {
                            "id": "u1",
                            "email": "dev@example.com",
                            "organizations": [
                                {"organization": {"id": "o1", "name": "Acme"}},
                                {"organization": {"id": "o2", "name": "Initech"}},
                            ],
                        }
                    }
                }
            ),
        )
        client = make_client()
        orgs = await client.list_orgs()
        assert [(o.id, o.name) for o in orgs] == [("o1", "Acme"), ("o2", "Initech")]
        await client.aclose()

    @pytest.mark.asyncio
    async def test_list_apps_paged(self, make_client, stub) -> None:
        stub.reply(
            "GET",
            "/api/v2/org/o1/apps",
            ok(
                {
                    "applications": [
                        {"applicationId": "a1", "name": "web", "applicationStatus": "ACTIVE"}
                    ],
                    "totalCount": 1,
                }
            ),
        )
        client = make_client()
        page = await client.list_apps_paged("o1", PaginationParams(page=3, page_size=50))
        assert page.items[0].id == "a1"
        assert page.items[0].status == "ACTIVE"
        assert page.page_token == 3
        params = stub.requests[0].url.params
        assert params["pageSize"] == "50"
        assert params["pageToken"] == "3"
        await client.aclose()

    @pytest.mark.asyncio
    async def test_scan_filters_sent_as_repeated_params(self, make_client, stub) -> None:
        stub.reply("GET", "/api/v1/scan/o1", ok({"applicationScanResults": []}))
        client = make_client()
        await client.list_scans(
            "o1",
            PaginationParams(sort_by="id", sort_order=SortOrder.DESC),
            ScanFilterParams(app_ids=["a1", "a2"], envs=["prod"], start=1, end=2),
        )
        params = stub.requests[0].url.params
        assert params.get_list("appIds") == ["a1", "a2"]
        assert params["envs"] == "prod"
        assert params["sortField"] == "id"
        assert params["sortDir"] == "desc"
        assert params["pageSize"] == "1000"
        assert params["start"] == "1"
        assert params["end"] == "2"
        await client.aclose()

    @pytest.mark.asyncio
    async def test_get_scan(self, make_client, stub) -> None:
        stub.reply(
            "GET",
            "/api/v1/scan/s1/alerts",
            ok(
                {
                    "applicationScanResults": [
                        {
                            "scan": {"id": "s1", "status": "COMPLETED"},
                            "applicationAlerts": [{"pluginId": "10010"}],
                        }
                    ]
                }
            ),
        )
        client = make_client()
        scan = await client.get_scan("o1", "s1")
        assert scan.scan.id == "s1"
        assert scan.status == "COMPLETED"
        assert stub.requests[0].url.params["pageSize"] == "1"
        await client.aclose()

    @pytest.mark.asyncio
    async def test_get_scan_not_found(self, make_client, stub) -> None:
        stub.reply("GET", "/api/v1/scan/s1/alerts", ok({"applicationScanResults": []}))
        client = make_client()
        with pytest.raises(NotFoundError):
            await client.get_scan("o1", "s1")
        await client.aclose()

    @pytest.mark.asyncio
    async def test_list_scan_alerts(self, make_client, stub) -> None:
        stub.reply(
            "GET",
            "/api/v1/scan/s1/alerts",
            ok(
                {
                    "applicationScanResults": [
                        {
                            "scan": {"id": "s1"},
                            "applicationAlerts": [
                                {"pluginId": "10010", "severity": "Low", "uriCount": "3"},
                                {"pluginId": "40012", "severity": "High"},
                            ],
                        }
                    ]
                }
            ),
        )
        client = make_client()
        alerts = await client.list_scan_alerts("s1")
        assert [a.plugin_id for a in alerts] == ["10010", "40012"]
        assert alerts[0].uri_count == 3
        await client.aclose()

    @pytest.mark.asyncio
    async def test_get_alert_with_paths(self, make_client, stub) -> None:
        stub.reply(
            "GET",
            "/api/v1/scan/s1/alert/10010",
            ok(
                {
                    "alert": {"pluginId": "10010", "name": "Cookie"},
                    "applicationScanAlertUris": [
                        {"alertUriId": "u1", "uri": "/login", "requestMethod": "POST", "msgId": "m1"}
                    ],
                }
            ),
        )
        client = make_client()
        alert = await client.get_alert_with_paths("s1", "10010")
        assert alert.alert.name == "Cookie"
        assert alert.application_scan_alert_uris[0].msg_id == "m1"
        await client.aclose()

    @pytest.mark.asyncio
    async def test_get_alert_message(self, make_client, stub) -> None:
        stub.reply(
            "GET",
            "/api/v1/scan/s1/uri/u1/messages/m1",
            ok({"scanMessage": {"id": "m1", "requestHeader": "GET /"}, "evidence": "Set-Cookie"}),
        )
        client = make_client()
        message = await client.get_alert_message("s1", "u1", "m1")
        assert message.scan_message.request_header == "GET /"
        assert message.evidence == "Set-Cookie"
        assert stub.requests[0].url.params["includeCurl"] == "true"
        await client.aclose()

    @pytest.mark.asyncio
    async def test_list_users(self, make_client, stub) -> None:
        stub.reply(
            "GET",
            "/api/v1/org/o1/members",
            ok({"users": [{"external": {"id": "u1", "email": "a@example.com"}}]}),
        )
        client = make_client()
        users = await client.list_users("o1")
        assert users[0].external.email == "a@example.com"
        await client.aclose()

    @pytest.mark.asyncio
    async def test_update_team_body(self, make_client, stub) -> None:
        stub.reply("PUT", "/api/v1/org/o1/team/t1", ok({"id": "t1", "name": "Renamed"}))
        client = make_client()
        team = await client.update_team(
            "o1", "t1", UpdateTeamRequest(team_id="t1", name="Renamed", application_ids=["a1"])
        )
        assert team.name == "Renamed"
        body = json.loads(stub.requests[0].content)
        assert body == {"teamId": "t1", "name": "Renamed", "userIds": [], "applicationIds": ["a1"]}
        await client.aclose()

    @pytest.mark.asyncio
    async def test_list_audit(self, make_client, stub) -> None:
        stub.reply(
            "GET",
            "/api/v1/org/o1/audit",
            ok(
                {
                    "auditRecords": [
                        {"id": "r1", "userActivityType": "USER_LOGIN", "timestamp": "1700000000000"}
                    ]
                }
            ),
        )
        client = make_client()
        records = await client.list_audit(
            "o1", AuditFilterParams(types=["USER_LOGIN"], sort_dir=SortOrder.ASC, page_size=10)
        )
        assert records[0].timestamp == 1700000000000
        params = stub.requests[0].url.params
        assert params["types"] == "USER_LOGIN"
        assert params["sortDir"] == "asc"
        assert params["pageSize"] == "10"
        await client.aclose()
