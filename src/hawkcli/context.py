"""Resolved command context: config, authenticated client, response cache.

Every command that talks to the API starts with :func:`build_context`:

1. resolve the configuration (file, ``HAWKCLI_*`` environment, CLI
   overrides) and require an API key;
2. create the :class:`~hawkcli.client.async_client.HawkClient` for the
   configured host;
3. reuse the cached access token if it is outside the renewal buffer,
   otherwise log in once and write the new token back to the config file;
4. wrap the client in a :class:`~hawkcli.cache.client.CachedClient`,
   unless caching is disabled or the cache cannot be opened.

The returned :class:`CommandContext` owns the HTTP connection pool and the
cache connection; close it with ``async with`` or :meth:`CommandContext.aclose`.
Concurrent paginator workers may share one context.
"""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Optional

import httpx

from hawkcli.cache.client import CachedClient
from hawkcli.cache.store import CacheStore
from hawkcli.client.async_client import HawkClient
from hawkcli.config import get_cache_dir, load_config, resolve_config, save_config
from hawkcli.exceptions import CacheError, ConfigError
from hawkcli.models import Config, JwtToken
from hawkcli.output import debug, warning


class CommandContext:
    """Per-invocation bundle of configuration and API access.

    Args:
        config: The effective configuration.
        client: Caching facade over the authenticated client.
    """

    def __init__(self, config: Config, client: CachedClient) -> None:
        self.config = config
        self.client = client

    @property
    def org_id(self) -> Optional[str]:
        return self.config.org_id

    def require_org_id(self) -> str:
        """Return the selected organization or raise :class:`ConfigError`."""
        return self.config.require_org_id()

    async def aclose(self) -> None:
        await self.client.aclose()

    async def __aenter__(self) -> CommandContext:
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.aclose()


async def build_context(
    org_override: Optional[str] = None,
    api_host: Optional[str] = None,
    no_cache: bool = False,
    config_path: Optional[Path] = None,
    cache_dir: Optional[Path] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> CommandContext:
    """Load config, authenticate, and open the response cache.

    Args:
        org_override: Organization ID taking precedence over config and env.
        api_host: API host taking precedence over config and env.
        no_cache: Bypass the response cache for this invocation.
        config_path: Config file to use instead of the default location.
        cache_dir: Cache directory to use instead of the default location.
        transport: httpx transport for the API client (used by tests).

    Raises:
        ConfigError: If no API key is configured or the config is unreadable.
        UnauthorizedError: If the API key is rejected.
    """
    config = resolve_config(config_path, cli_org=org_override, cli_api_host=api_host)
    api_key = config.validate_auth()

    raw = HawkClient(api_key, config.api_host, transport=transport)
    try:
        if config.has_valid_token():
            debug("Using cached access token")
            await raw.install_token(config.jwt)  # type: ignore[arg-type]
        else:
            debug("Authenticating with API key")
            token = await raw.authenticate(api_key)
            await raw.install_token(token)
            config.jwt = token
            _persist_token(token, config_path)
    except BaseException:
        await raw.aclose()
        raise

    store: Optional[CacheStore] = None
    if not no_cache and config.cache.enabled:
        store = await _open_store(cache_dir or get_cache_dir())

    return CommandContext(config, CachedClient(raw, store))


def _persist_token(token: JwtToken, config_path: Optional[Path]) -> None:
    """Write *token* to the config file without baking in env or CLI overrides."""
    try:
        on_disk = load_config(config_path)
        on_disk.jwt = token
        save_config(on_disk, config_path)
    except ConfigError as exc:
        warning(f"Could not save access token: {exc}")


async def _open_store(directory: Path) -> Optional[CacheStore]:
    """Open the cache store, or return ``None`` to run without a cache."""
    try:
        return await asyncio.to_thread(CacheStore.open, directory)
    except CacheError as exc:
        warning(f"Response cache unavailable, continuing without it: {exc}")
        return None
