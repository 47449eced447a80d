"""Fixtures shared by the whole hawkcli suite."""

from __future__ import annotations

import base64
import json
import time
from pathlib import Path
from typing import Callable

import pytest

from hawkcli.output import reset_output


API_HOST = "https://api.test.stackhawk.com"

_HAWKCLI_ENV = ("HAWKCLI_API_KEY", "HAWKCLI_ORG_ID", "HAWKCLI_API_HOST", "HAWKCLI_CONFIG")


def _b64_segment(data: dict) -> str:
    raw = json.dumps(data).encode("utf-8")
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


def make_token(exp: float | None = None, **claims: object) -> str:
    """Unsigned compact token expiring at *exp* (default: in one hour)."""
    payload = {**claims, "exp": int(time.time() + 3600 if exp is None else exp)}
    return ".".join(
        [_b64_segment({"alg": "HS256", "typ": "JWT"}), _b64_segment(payload), "signature"]
    )


@pytest.fixture(autouse=True)
def _reset_output_between_tests() -> None:
    """Drop the global OutputManager after each test.

    A manager created under CliRunner keeps the runner's (now closed)
    streams.
    """
    yield
    reset_output()


@pytest.fixture
def isolated_config(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Point the XDG config, cache and data homes into *tmp_path*.

    Also clears every ``HAWKCLI_*`` variable and chdirs into *tmp_path*.
    """
    for name in ("config", "cache", "data"):
        monkeypatch.setenv(f"XDG_{name.upper()}_HOME", str(tmp_path / name))
    monkeypatch.setattr("hawkcli.config._is_xdg_platform", lambda: True)
    for var in _HAWKCLI_ENV:
        monkeypatch.delenv(var, raising=False)
    monkeypatch.chdir(tmp_path)
    return tmp_path


@pytest.fixture
def token_factory() -> Callable[..., str]:
    return make_token


@pytest.fixture
def api_host() -> str:
    return API_HOST


@pytest.fixture
def cli_runner():
    from typer.testing import CliRunner

    return CliRunner()
