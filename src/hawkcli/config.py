"""Configuration file, directories and precedence.

* **Directories**: XDG on Linux/BSD (``$XDG_CONFIG_HOME/hawkcli`` and
  friends), a single ``~/.hawkcli/`` tree elsewhere.
* **Config file**: one :class:`~hawkcli.models.Config` JSON document with
  the API key, the selected organization, the last access token and
  preferences. It holds credentials, so it is always written ``0600``.
* **Precedence**: :func:`resolve_config` layers ``HAWKCLI_*`` variables and
  then CLI overrides on top of the file.

Writes go through :func:`_atomic_write`, so a crash never leaves a
truncated config behind.
"""

from __future__ import annotations

import json
import os
import platform
import stat
import tempfile
from pathlib import Path
from typing import Optional

from hawkcli.exceptions import ConfigError
from hawkcli.models import Config

_APP_NAME = "hawkcli"
_CONFIG_FILENAME = "config.json"

ENV_API_KEY = "HAWKCLI_API_KEY"
ENV_ORG_ID = "HAWKCLI_ORG_ID"
ENV_API_HOST = "HAWKCLI_API_HOST"
ENV_CONFIG = "HAWKCLI_CONFIG"

# kind -> (XDG variable, default under $HOME, subdirectory of ~/.hawkcli)
_DIRS: dict[str, tuple[str, tuple[str, ...], Optional[str]]] = {
    "config": ("XDG_CONFIG_HOME", (".config",), None),
    "cache": ("XDG_CACHE_HOME", (".cache",), "cache"),
    "data": ("XDG_DATA_HOME", (".local", "share"), None),
}


# --- Directories ---


def _is_xdg_platform() -> bool:
    system = platform.system()
    return system == "Linux" or system.endswith("BSD")


def _app_dir(kind: str) -> Path:
    env_var, home_default, fallback_sub = _DIRS[kind]
    if not _is_xdg_platform():
        base = Path.home() / f".{_APP_NAME}"
        return base / fallback_sub if fallback_sub else base
    env_value = os.environ.get(env_var)
    root = Path(env_value) if env_value else Path.home().joinpath(*home_default)
    return root / _APP_NAME


def get_config_dir() -> Path:
    """Return (and create) the directory holding ``config.json``."""
    path = _app_dir("config")
    path.mkdir(parents=True, exist_ok=True)
    return path


def get_cache_dir() -> Path:
    """Return the response cache directory.

    Not created here; :meth:`~hawkcli.cache.store.CacheStore.open` does
    that, and only when the cache is actually used.
    """
    return _app_dir("cache")


def get_data_dir() -> Path:
    """Return (and create) the directory for crash logs."""
    path = _app_dir("data")
    path.mkdir(parents=True, exist_ok=True)
    return path


def get_config_path() -> Path:
    """Return the config file path; ``HAWKCLI_CONFIG`` wins when set."""
    override = os.environ.get(ENV_CONFIG)
    if override:
        return Path(override)
    return get_config_dir() / _CONFIG_FILENAME


# --- Atomic file writes ---


def _atomic_write(path: Path, data: str, mode: Optional[int] = None) -> None:
    """Replace *path* with *data* via a synced temp file in the same directory.

    *mode* is applied to the temp file before the rename, so the target
    never exists with looser permissions.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            fh.write(data)
            fh.flush()
            os.fsync(fh.fileno())
        if mode is not None:
            os.chmod(tmp_name, mode)
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise


# --- Config file ---


def load_config(path: Optional[Path] = None) -> Config:
    """Load the configuration file.

    Args:
        path: Explicit file location. Defaults to :func:`get_config_path`.

    Returns:
        The deserialised :class:`~hawkcli.models.Config`. If the file does
        not exist, a default instance is returned.

    Raises:
        ConfigError: If the file exists but cannot be read, contains
            invalid JSON, or fails Pydantic validation.
    """
    path = path or get_config_path()
    if not path.is_file():
        return Config()
    try:
        text = path.read_text(encoding="utf-8")
        data = json.loads(text)
        return Config.model_validate(data)
    except OSError as exc:
        raise ConfigError(f"Cannot read config at {path}: {exc}") from exc
    except (json.JSONDecodeError, ValueError) as exc:
        raise ConfigError(f"Invalid config at {path}: {exc}") from exc


def save_config(config: Config, path: Optional[Path] = None) -> None:
    """Persist the configuration atomically with owner-only permissions.

    Args:
        config: The configuration to save.
        path: Explicit file location. Defaults to :func:`get_config_path`.

    Raises:
        ConfigError: If the file cannot be written.
    """
    path = path or get_config_path()
    data = config.model_dump(mode="json", exclude_none=True)
    try:
        _atomic_write(path, json.dumps(data, indent=2) + "\n", mode=stat.S_IRUSR | stat.S_IWUSR)
    except OSError as exc:
        raise ConfigError(f"Cannot save config to {path}: {exc}") from exc


# --- Precedence resolution ---


def resolve_config(
    path: Optional[Path] = None,
    cli_org: Optional[str] = None,
    cli_api_host: Optional[str] = None,
) -> Config:
    """Resolve config with the full precedence chain.

    Precedence (high to low):
        1. CLI flags (``cli_org``, ``cli_api_host``)
        2. Environment variables (``HAWKCLI_API_KEY``, ``HAWKCLI_ORG_ID``,
           ``HAWKCLI_API_HOST``)
        3. Config file
        4. Defaults

    Returns:
        The effective :class:`~hawkcli.models.Config`. Only values found in
        the file are written back by :func:`save_config`; callers that
        persist a refreshed token should reload the file first.
    """
    config = load_config(path)

    env_key = os.environ.get(ENV_API_KEY)
    if env_key:
        config.api_key = env_key
    env_org = os.environ.get(ENV_ORG_ID)
    if env_org:
        config.org_id = env_org
    env_host = os.environ.get(ENV_API_HOST)
    if env_host:
        config.api_host = env_host

    if cli_org is not None:
        config.org_id = cli_org
    if cli_api_host is not None:
        config.api_host = cli_api_host

    return config
