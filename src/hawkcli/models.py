"""Canonical Pydantic models shared across all hawkcli modules.

This is the single source of truth for data shapes in the project. Every other
module imports from here rather than defining its own models. The models fall
into two groups:

**Configuration models** -- serialised as JSON in the user's config directory:
    :class:`JwtToken`, :class:`Preferences`, :class:`CacheSettings`, and
    :class:`Config`.

**API resource models** -- parsed from StackHawk API responses and written
back to the response cache as JSON:
    :class:`Organization`, :class:`Application`, :class:`Scan`,
    :class:`ScanResult`, :class:`User`, :class:`Team`, :class:`TeamDetail`,
    :class:`ApplicationAlert`, :class:`AlertResponse`,
    :class:`AlertMsgResponse`, :class:`AuditRecord` and the small records
    they embed.

API models accept the camelCase wire names and the snake_case attribute names
alike (``populate_by_name``), ignore unknown keys, and serialise back to the
wire names with ``model_dump(by_alias=True)`` so that a cached body validates
exactly like the original response.
"""

from __future__ import annotations

import functools
import time
from typing import Annotated, Any, Optional

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, TypeAdapter
from pydantic.alias_generators import to_camel

from hawkcli.exceptions import ConfigError

DEFAULT_API_HOST = "https://api.stackhawk.com"
"""Host used when neither the config file nor the environment names one."""

TOKEN_RENEWAL_BUFFER_SECONDS = 5 * 60
"""Tokens this close to ``exp`` are treated as already expired."""


def _coerce_int(value: Any) -> Any:
    """Normalise an integer that the wire may deliver as a decimal string."""
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        try:
            return int(text)
        except ValueError:
            return int(float(text))
    if isinstance(value, float):
        return int(value)
    return value


FlexibleInt = Annotated[Optional[int], BeforeValidator(_coerce_int)]
"""An optional ``int`` that also accepts numeric strings such as ``"1700000000000"``."""


@functools.lru_cache(maxsize=None)
def type_adapter(shape: Any) -> TypeAdapter:
    """Return a cached :class:`~pydantic.TypeAdapter` for *shape* (e.g. ``list[Team]``)."""
    return TypeAdapter(shape)


# --- Configuration models ---


class JwtToken(BaseModel):
    """A cached access token and its expiry.

    Attributes:
        token: The compact signed token returned by ``/auth/login``.
        expires_at: Expiry as seconds since the epoch (the token's ``exp``).
    """

    token: str
    expires_at: int

    def is_expired(self, now: Optional[float] = None) -> bool:
        """Return ``True`` when the token is within the renewal buffer of its expiry."""
        current = time.time() if now is None else now
        return self.expires_at - TOKEN_RENEWAL_BUFFER_SECONDS < current


class Preferences(BaseModel):
    """User preferences stored alongside credentials."""

    format: Optional[str] = Field(default=None, description="Default output format")
    page_size: int = Field(default=1000, ge=1, le=1000, description="Default page size")


class CacheSettings(BaseModel):
    """Response cache settings."""

    enabled: bool = True


class Config(BaseModel):
    """The ``config.json`` document.

    Example::

        {
          "api_key": "hawk.xxxxxxxx",
          "org_id": "8f1c...",
          "jwt": {"token": "eyJ...", "expires_at": 1767225600},
          "preferences": {"page_size": 1000},
          "cache": {"enabled": true}
        }
    """

    api_key: Optional[str] = None
    org_id: Optional[str] = None
    api_host: str = DEFAULT_API_HOST
    jwt: Optional[JwtToken] = None
    preferences: Preferences = Field(default_factory=Preferences)
    cache: CacheSettings = Field(default_factory=CacheSettings)

    def validate_auth(self) -> str:
        """Return the configured API key.

        Raises:
            ConfigError: If no API key is configured.
        """
        if not self.api_key:
            raise ConfigError(
                "No API key configured. Set HAWKCLI_API_KEY or add api_key to the config file."
            )
        return self.api_key

    def require_org_id(self) -> str:
        """Return the selected organization ID.

        Raises:
            ConfigError: If no organization is selected.
        """
        if not self.org_id:
            raise ConfigError(
                "No organization selected. Pass --org or set HAWKCLI_ORG_ID."
            )
        return self.org_id

    def has_valid_token(self, now: Optional[float] = None) -> bool:
        """Whether a cached token exists and is outside the renewal buffer."""
        return self.jwt is not None and not self.jwt.is_expired(now)


# --- API resource models ---


class ApiModel(BaseModel):
    """Base for models parsed from camelCase API payloads."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )


class Organization(ApiModel):
    """An organization the authenticated user belongs to."""

    id: str
    name: str = ""
    user_count: FlexibleInt = None
    app_count: FlexibleInt = None


class OrganizationMembership(ApiModel):
    organization: Organization


class UserExternal(ApiModel):
    """Profile fields of a user as exposed by the platform."""

    id: str = ""
    email: str = ""
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    full_name: Optional[str] = None
    organizations: list[OrganizationMembership] = Field(default_factory=list)


class User(ApiModel):
    """A user record (``/user`` and org member listings)."""

    external: UserExternal = Field(default_factory=UserExternal)


class UserResponse(ApiModel):
    """Body of ``GET /user``."""

    user: User


class CloudScanTarget(ApiModel):
    target_url: Optional[str] = None
    is_domain_verified: bool = False


class Application(ApiModel):
    """An application (a scannable target) within an organization."""

    id: str = Field(alias="applicationId")
    name: str = ""
    env: Optional[str] = None
    risk_level: Optional[str] = None
    status: Optional[str] = Field(default=None, alias="applicationStatus")
    organization_id: Optional[str] = None
    application_type: Optional[str] = None
    cloud_scan_target: Optional[CloudScanTarget] = None


class Scan(ApiModel):
    """Core scan identity and lifecycle state."""

    id: str
    application_id: Optional[str] = None
    application_name: Optional[str] = None
    env: Optional[str] = None
    status: str = ""
    timestamp: FlexibleInt = None
    version: Optional[str] = None
    external_user_id: Optional[str] = None


class ScanTag(ApiModel):
    name: str
    value: Optional[str] = None


class ScanResult(ApiModel):
    """A scan together with its aggregate statistics."""

    scan: Scan
    scan_duration: FlexibleInt = None
    url_count: FlexibleInt = None
    alert_stats: Optional[dict[str, Any]] = None
    severity_stats: Optional[dict[str, Any]] = None
    app_host: Optional[str] = None
    policy_name: Optional[str] = None
    tags: list[ScanTag] = Field(default_factory=list)
    metadata: Optional[dict[str, Any]] = None

    @property
    def status(self) -> str:
        """Shortcut for ``scan.status``; drives the scan-detail cache TTL."""
        return self.scan.status


class ApplicationAlert(ApiModel):
    """One finding (plugin) reported by a scan."""

    plugin_id: str = ""
    name: str = ""
    description: str = ""
    severity: str = ""
    cwe_id: Optional[str] = None
    references: list[str] = Field(default_factory=list)
    uri_count: FlexibleInt = 0
    alert_status_stats: list[dict[str, Any]] = Field(default_factory=list)


class ScanResultWithAlerts(ScanResult):
    application_alerts: list[ApplicationAlert] = Field(default_factory=list)


class ScanAlertsResponse(ApiModel):
    """Body of ``GET /scan/{scanId}/alerts``."""

    application_scan_results: list[ScanResultWithAlerts] = Field(default_factory=list)
    next_page_token: Optional[str] = None
    total_count: FlexibleInt = None


class ApplicationAlertUri(ApiModel):
    """A path on which a finding was observed."""

    alert_uri_id: str
    uri: str
    request_method: str = ""
    msg_id: str = ""
    status: str = ""
    plugin_id: str = ""
    matched_rule_note: Optional[str] = None
    matched_rule_last_updated: FlexibleInt = None


class AlertResponse(ApiModel):
    """A finding with the paths it was observed on."""

    alert: ApplicationAlert
    application_scan_alert_uris: list[ApplicationAlertUri] = Field(default_factory=list)
    app_host: Optional[str] = None
    category: Optional[str] = None
    cheatsheet: Optional[str] = None
    next_page_token: Optional[str] = None
    total_count: FlexibleInt = None


class ScanMessage(ApiModel):
    """Raw HTTP exchange captured for a finding."""

    id: str
    request_header: Optional[str] = None
    request_body: Optional[str] = None
    response_header: Optional[str] = None
    response_body: Optional[str] = None
    cookie_params: Optional[str] = None


class AlertMsgResponse(ApiModel):
    """Evidence for one finding on one path."""

    scan_message: Optional[ScanMessage] = None
    uri: Optional[str] = None
    evidence: Optional[str] = None
    other_info: Optional[str] = None
    description: Optional[str] = None
    param: Optional[str] = None
    validation_command: Optional[str] = None


class Team(ApiModel):
    """A team summary as returned by team listings."""

    id: str
    name: str = ""
    organization_id: Optional[str] = None


class TeamUser(ApiModel):
    user_id: str
    user_name: Optional[str] = None
    email: Optional[str] = None
    role: Optional[str] = None


class TeamApplication(ApiModel):
    application_id: str
    application_name: Optional[str] = None
    environments: list[str] = Field(default_factory=list)


class TeamDetail(Team):
    """A team with its members and assigned applications."""

    users: list[TeamUser] = Field(default_factory=list)
    applications: list[TeamApplication] = Field(default_factory=list)


class CreateTeamRequest(ApiModel):
    """Body of ``POST /org/{orgId}/team``."""

    name: str
    organization_id: str
    user_ids: list[str] = Field(default_factory=list)
    application_ids: list[str] = Field(default_factory=list)


class UpdateTeamRequest(ApiModel):
    """Body of ``PUT /org/{orgId}/team/{teamId}``."""

    team_id: str
    name: str
    user_ids: list[str] = Field(default_factory=list)
    application_ids: list[str] = Field(default_factory=list)


class AuditRecord(ApiModel):
    """One organization or user activity entry."""

    id: str = ""
    user_activity_type: Optional[str] = None
    organization_activity_type: Optional[str] = None
    organization_id: str = ""
    user_id: str = ""
    user_name: str = ""
    user_email: str = ""
    payload: str = ""
    timestamp: FlexibleInt = None
    user_ip_addr: Optional[str] = None
