"""Tests for hawkcli.config: XDG paths, atomic writes, config file, precedence."""

from __future__ import annotations

import json
import os
import stat
from pathlib import Path
from typing import Any

import pytest

from hawkcli.config import (
    _atomic_write,
    get_cache_dir,
    get_config_dir,
    get_config_path,
    get_data_dir,
    load_config,
    resolve_config,
    save_config,
)
from hawkcli.exceptions import ConfigError
from hawkcli.models import DEFAULT_API_HOST, Config, JwtToken


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _write_json(path: Path, data: Any) -> None:
    """Write a dict as JSON to *path*, creating parent dirs."""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(data, indent=2), encoding="utf-8")


# ---------------------------------------------------------------------------
# XDG path resolution
# ---------------------------------------------------------------------------


class TestXDGPaths:
    def test_config_dir_from_env(self, isolated_config: Path) -> None:
        path = get_config_dir()
        assert path == isolated_config / "config" / "hawkcli"
        assert path.is_dir()

    def test_cache_dir_not_created(self, isolated_config: Path) -> None:
        """The cache directory is created by the store, not by path lookup."""
        path = get_cache_dir()
        assert path == isolated_config / "cache" / "hawkcli"
        assert not path.exists()

    def test_data_dir_from_env(self, isolated_config: Path) -> None:
        assert get_data_dir() == isolated_config / "data" / "hawkcli"

    def test_xdg_defaults_under_home(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setattr("hawkcli.config._is_xdg_platform", lambda: True)
        monkeypatch.delenv("XDG_CACHE_HOME", raising=False)
        monkeypatch.setattr(Path, "home", lambda: tmp_path)
        assert get_cache_dir() == tmp_path / ".cache" / "hawkcli"

    def test_non_xdg_platform(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr("hawkcli.config._is_xdg_platform", lambda: False)
        monkeypatch.setattr(Path, "home", lambda: tmp_path)
        assert get_config_dir() == tmp_path / ".hawkcli"
        assert get_cache_dir() == tmp_path / ".hawkcli" / "cache"

    def test_config_path_override(
        self, isolated_config: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setenv("HAWKCLI_CONFIG", str(isolated_config / "custom.json"))
        assert get_config_path() == isolated_config / "custom.json"

    def test_default_config_path(self, isolated_config: Path) -> None:
        assert get_config_path() == isolated_config / "config" / "hawkcli" / "config.json"


# ---------------------------------------------------------------------------
# Atomic writes
# ---------------------------------------------------------------------------


class TestAtomicWrite:
    def test_writes_content(self, tmp_path: Path) -> None:
        target = tmp_path / "nested" / "file.json"
        _atomic_write(target, '{"a": 1}')
        assert target.read_text() == '{"a": 1}'

    def test_no_temp_files_left(self, tmp_path: Path) -> None:
        target = tmp_path / "file.json"
        _atomic_write(target, "one")
        _atomic_write(target, "two")
        assert target.read_text() == "two"
        assert [p.name for p in tmp_path.iterdir()] == ["file.json"]

    @pytest.mark.skipif(os.name != "posix", reason="POSIX permissions")
    def test_mode_applied(self, tmp_path: Path) -> None:
        target = tmp_path / "secret.json"
        _atomic_write(target, "{}", mode=0o600)
        assert stat.S_IMODE(target.stat().st_mode) == 0o600


# ---------------------------------------------------------------------------
# Config file
# ---------------------------------------------------------------------------


class TestLoadSave:
    def test_missing_file_gives_defaults(self, isolated_config: Path) -> None:
        config = load_config()
        assert config.api_key is None
        assert config.api_host == DEFAULT_API_HOST
        assert config.cache.enabled is True
        assert config.preferences.page_size == 1000

    def test_round_trip(self, isolated_config: Path) -> None:
        config = Config(
            api_key="hawk.abc",
            org_id="o1",
            jwt=JwtToken(token="t", expires_at=1767225600),
        )
        save_config(config)
        loaded = load_config()
        assert loaded.api_key == "hawk.abc"
        assert loaded.org_id == "o1"
        assert loaded.jwt == JwtToken(token="t", expires_at=1767225600)

    def test_none_values_omitted(self, isolated_config: Path) -> None:
        save_config(Config(api_key="hawk.abc"))
        data = json.loads(get_config_path().read_text())
        assert "org_id" not in data
        assert "jwt" not in data

    @pytest.mark.skipif(os.name != "posix", reason="POSIX permissions")
    def test_saved_owner_only(self, isolated_config: Path) -> None:
        """The file carries credentials and is written with mode 0600."""
        save_config(Config(api_key="hawk.abc"))
        assert stat.S_IMODE(get_config_path().stat().st_mode) == 0o600

    def test_invalid_json(self, isolated_config: Path) -> None:
        path = get_config_path()
        path.write_text("{not json")
        with pytest.raises(ConfigError, match="Invalid config"):
            load_config()

    def test_invalid_values(self, isolated_config: Path) -> None:
        _write_json(get_config_path(), {"preferences": {"page_size": 0}})
        with pytest.raises(ConfigError):
            load_config()

    def test_explicit_path(self, tmp_path: Path) -> None:
        path = tmp_path / "elsewhere.json"
        save_config(Config(org_id="o9"), path)
        assert load_config(path).org_id == "o9"


# ---------------------------------------------------------------------------
# Precedence
# ---------------------------------------------------------------------------


class TestResolveConfig:
    def test_file_values(self, isolated_config: Path) -> None:
        _write_json(get_config_path(), {"api_key": "file-key", "org_id": "file-org"})
        config = resolve_config()
        assert config.api_key == "file-key"
        assert config.org_id == "file-org"

    def test_env_overrides_file(
        self, isolated_config: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        _write_json(get_config_path(), {"api_key": "file-key", "org_id": "file-org"})
        monkeypatch.setenv("HAWKCLI_API_KEY", "env-key")
        monkeypatch.setenv("HAWKCLI_ORG_ID", "env-org")
        monkeypatch.setenv("HAWKCLI_API_HOST", "https://api.example.test")
        config = resolve_config()
        assert config.api_key == "env-key"
        assert config.org_id == "env-org"
        assert config.api_host == "https://api.example.test"

    def test_cli_overrides_env(
        self, isolated_config: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setenv("HAWKCLI_ORG_ID", "env-org")
        config = resolve_config(cli_org="cli-org", cli_api_host="https://cli.test")
        assert config.org_id == "cli-org"
        assert config.api_host == "https://cli.test"


class TestConfigModel:
    def test_validate_auth_requires_key(self) -> None:
        with pytest.raises(ConfigError, match="No API key"):
            Config().validate_auth()
        assert Config(api_key="k").validate_auth() == "k"

    def test_require_org_id(self) -> None:
        with pytest.raises(ConfigError, match="No organization"):
            Config().require_org_id()
        assert Config(org_id="o1").require_org_id() == "o1"

    def test_has_valid_token(self) -> None:
        now = 1_000_000
        assert not Config().has_valid_token(now)
        assert not Config(jwt=JwtToken(token="t", expires_at=now + 60)).has_valid_token(now)
        assert Config(jwt=JwtToken(token="t", expires_at=now + 3600)).has_valid_token(now)
