"""Time-to-live policy for cached API responses.

Durations are chosen per operation label. Volatile data (running scans,
team membership that the user may be editing) gets seconds to minutes;
reference data (organizations, applications, users) gets an hour. The
scan-detail label is the one case whose TTL depends on the response: a
completed scan never changes, a running one changes constantly.
"""

from __future__ import annotations

from typing import Any, Optional


class CacheTtl:
    """TTL constants in seconds."""

    SCAN_LIST = 2 * 60
    SCAN_DETAIL_COMPLETED = 24 * 60 * 60
    SCAN_DETAIL_RUNNING = 30
    ALERTS = 10 * 60
    ALERT_PATHS = 10 * 60
    COMPLETION_ALERTS = 4 * 60 * 60
    APPS = 60 * 60
    ORGS = 60 * 60
    USERS = 60 * 60
    TEAMS = 60
    AUDIT = 5 * 60


ENDPOINT_TTLS: dict[str, int] = {
    "list_orgs": CacheTtl.ORGS,
    "list_apps": CacheTtl.APPS,
    "list_apps_paged": CacheTtl.APPS,
    "list_scans": CacheTtl.SCAN_LIST,
    "list_scans_paged": CacheTtl.SCAN_LIST,
    "list_users": CacheTtl.USERS,
    "list_teams": CacheTtl.TEAMS,
    "get_team": CacheTtl.TEAMS,
    "list_scan_alerts": CacheTtl.ALERTS,
    "get_alert_with_paths": CacheTtl.ALERT_PATHS,
    "get_alert_message": CacheTtl.ALERT_PATHS,
    "completion_scan_alerts": CacheTtl.COMPLETION_ALERTS,
    "list_audit": CacheTtl.AUDIT,
}

_RUNNING_STATUSES = frozenset({"STARTED", "RUNNING", "PENDING"})


def scan_detail_ttl(status: Optional[str]) -> int:
    """Return the TTL for a scan detail response with the given status."""
    normalized = (status or "").upper()
    if normalized == "COMPLETED":
        return CacheTtl.SCAN_DETAIL_COMPLETED
    if normalized in _RUNNING_STATUSES:
        return CacheTtl.SCAN_DETAIL_RUNNING
    return CacheTtl.SCAN_LIST


def ttl_for(label: str, result: Any = None) -> int:
    """Return the TTL for an operation label.

    Args:
        label: Operation label.
        result: The operation's result; consulted only for ``get_scan``,
            whose TTL follows ``result.status``.

    Raises:
        KeyError: If *label* has no TTL policy.
    """
    if label == "get_scan":
        return scan_detail_ttl(getattr(result, "status", None))
    return ENDPOINT_TTLS[label]
