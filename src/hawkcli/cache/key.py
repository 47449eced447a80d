"""Deterministic cache keys.

A key is the SHA-256 hex digest of::

    <label>|<host>|<org>|k1=v1&k2=v2&...

where the parameter pairs are sorted by name (ties broken by value), so the
order in which a caller builds its parameters never changes the key. An
absent host or org contributes an empty string.
"""

from __future__ import annotations

import hashlib
from typing import Iterable, Optional

Params = Iterable[tuple[str, str]]


def cache_key(
    label: str,
    host: Optional[str],
    org_id: Optional[str],
    params: Params = (),
) -> str:
    """Compute the 64-character cache key for one operation call.

    Args:
        label: Operation label, e.g. ``"list_apps"``.
        host: API host the response came from.
        org_id: Organization scope of the response, if any.
        params: ``(name, value)`` pairs; repeated names are allowed.

    Returns:
        Lowercase hex SHA-256 digest.

    Example::

        >>> cache_key("list_orgs", None, None) == cache_key("list_orgs", None, None)
        True
    """
    if not label:
        raise ValueError("cache key label must not be empty")

    hasher = hashlib.sha256()
    hasher.update(label.encode("utf-8"))
    hasher.update(b"|")
    hasher.update((host or "").encode("utf-8"))
    hasher.update(b"|")
    hasher.update((org_id or "").encode("utf-8"))
    hasher.update(b"|")
    for name, value in sorted((str(k), str(v)) for k, v in params):
        hasher.update(name.encode("utf-8"))
        hasher.update(b"=")
        hasher.update(value.encode("utf-8"))
        hasher.update(b"&")
    return hasher.hexdigest()
