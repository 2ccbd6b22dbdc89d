"""Shared test fixtures for loopauth.

Provides isolated config environments, ready-made auth configs and
credentials, output state management, and a CLI runner. These fixtures are
automatically discovered by pytest and available to all test modules
without explicit imports.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from loopauth.auth.credential_store import CredentialStore
from loopauth.models import AuthConfig, Credential
from loopauth.output import reset_output


# ---------------------------------------------------------------------------
# Auto-reset global output state between tests
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def _reset_output_between_tests() -> None:
    """Reset the global OutputManager after every test.

    The OutputManager caches references to sys.stdout/sys.stderr at
    creation time.  When Typer's CliRunner redirects those streams during
    a test and the test finishes, the cached references become stale
    ("I/O operation on closed file").  Resetting forces a fresh manager
    to be created on next use.
    """
    yield
    reset_output()


# ---------------------------------------------------------------------------
# Isolated filesystem
# ---------------------------------------------------------------------------


@pytest.fixture
def isolated_config(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Isolate configuration to a temporary directory.

    Sets XDG_CONFIG_HOME and XDG_DATA_HOME to subdirectories of tmp_path
    so that tests never touch real user config, forces the XDG layout on
    every platform, and clears all LOOPAUTH_* environment variables.

    Returns:
        The tmp_path root directory for additional file creation.
    """
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "config"))
    monkeypatch.setenv("XDG_DATA_HOME", str(tmp_path / "data"))
    monkeypatch.setattr("loopauth.config._is_xdg_platform", lambda: True)

    from loopauth.config import ENV_VARS

    for var in ENV_VARS:
        monkeypatch.delenv(var, raising=False)
    return tmp_path


# ---------------------------------------------------------------------------
# Auth fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def auth_config(tmp_path: Path) -> AuthConfig:
    """A complete AuthConfig pointing at a fake provider.

    Uses port 0 so the listener never collides with anything on the test
    host, a short timeout, and no retry delay.
    """
    return AuthConfig(
        client_id="test-cli",
        authorize_url="https://id.example.com/oauth/authorize",
        token_url="https://id.example.com/oauth/token",
        redirect_port_preference=0,
        timeout=10.0,
        storage_path=tmp_path / "store" / "credentials.json",
        scope="read write",
        backoff_base=0.0,
    )


@pytest.fixture
def store(auth_config: AuthConfig) -> CredentialStore:
    """A CredentialStore at the auth_config storage path."""
    return CredentialStore(auth_config.storage_path)


@pytest.fixture
def credential() -> Credential:
    """A valid credential expiring in one hour."""
    issued = datetime(2030, 1, 1, 12, 0, tzinfo=timezone.utc)
    return Credential(
        access_token="at-123",
        refresh_token="rt-456",
        scope="read write",
        issued_at=issued,
        expires_at=issued + timedelta(hours=1),
    )


@pytest.fixture
def expired_credential() -> Credential:
    """A credential that expired an hour ago and can be refreshed."""
    issued = datetime.now(timezone.utc) - timedelta(hours=2)
    return Credential(
        access_token="at-old",
        refresh_token="rt-old",
        scope="read",
        issued_at=issued,
        expires_at=issued + timedelta(hours=1),
    )


@pytest.fixture
def cli_runner():
    """Typer CLI test runner.

    Returns a CliRunner instance that captures stdout/stderr and
    provides a consistent interface for invoking Typer apps in tests.
    """
    from typer.testing import CliRunner

    return CliRunner()
