"""CLI tests for the ``loopauth auth`` command group and the entry point."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from loopauth import __version__
from loopauth.app import app, main
from loopauth.auth.credential_store import CredentialStore
from loopauth.auth.manager import AuthManager
from loopauth.config import default_storage_path, get_config_dir, get_data_dir
from loopauth.exceptions import CallbackTimeout, ConfigError
from loopauth.models import Credential


@pytest.fixture
def provider_env(isolated_config: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    monkeypatch.setenv("LOOPAUTH_CLIENT_ID", "cli")
    monkeypatch.setenv("LOOPAUTH_AUTHORIZE_URL", "https://id.example.com/authorize")
    monkeypatch.setenv("LOOPAUTH_TOKEN_URL", "https://id.example.com/token")
    return isolated_config


@pytest.fixture
def logged_in(isolated_config: Path, credential: Credential) -> CredentialStore:
    store = CredentialStore(default_storage_path())
    store.save(credential)
    return store


class TestRoot:
    def test_version(self, cli_runner) -> None:
        result = cli_runner.invoke(app, ["--version"])
        assert result.exit_code == 0
        assert __version__ in result.stdout

    def test_no_args_shows_help(self, cli_runner) -> None:
        result = cli_runner.invoke(app, [])
        assert "auth" in result.output


class TestStatus:
    def test_not_logged_in(self, cli_runner, isolated_config: Path) -> None:
        result = cli_runner.invoke(app, ["auth", "status"])
        assert result.exit_code == 0
        assert "Not logged in" in result.output

    def test_logged_in_plain(self, cli_runner, logged_in: CredentialStore) -> None:
        result = cli_runner.invoke(app, ["--plain", "auth", "status"])
        assert result.exit_code == 0
        assert "logged_in\tTrue" in result.stdout
        assert "scope\tread write" in result.stdout
        assert "at-123" not in result.output

    def test_logged_in_json(self, cli_runner, logged_in: CredentialStore) -> None:
        result = cli_runner.invoke(app, ["--json", "auth", "status"])
        assert result.exit_code == 0
        assert json.loads(result.stdout)["refreshable"] is True

    def test_needs_no_provider_config(
        self, cli_runner, logged_in: CredentialStore
    ) -> None:
        (get_config_dir() / "config.json").write_text("{}")
        assert cli_runner.invoke(app, ["auth", "status"]).exit_code == 0

    def test_corrupt_store(self, cli_runner, isolated_config: Path) -> None:
        path = default_storage_path()
        path.write_text("garbage")
        result = cli_runner.invoke(app, ["auth", "status"])
        assert result.exit_code == 5
        assert "corrupt" in result.output

    def test_uses_configured_leeway(self, cli_runner, logged_in: CredentialStore) -> None:
        twenty_years = 20 * 365 * 24 * 3600
        (get_config_dir() / "config.json").write_text(json.dumps({"expiry_leeway": twenty_years}))
        result = cli_runner.invoke(app, ["--plain", "auth", "status"])
        assert result.exit_code == 0
        assert "valid\tFalse" in result.stdout

    def test_default_leeway_reports_valid(self, cli_runner, logged_in: CredentialStore) -> None:
        result = cli_runner.invoke(app, ["--plain", "auth", "status"])
        assert "valid\tTrue" in result.stdout


class TestToken:
    def test_prints_token(self, cli_runner, provider_env: Path, logged_in: CredentialStore) -> None:
        result = cli_runner.invoke(app, ["auth", "token"])
        assert result.exit_code == 0
        assert result.stdout.strip() == "at-123"

    def test_no_credential(self, cli_runner, provider_env: Path) -> None:
        result = cli_runner.invoke(app, ["auth", "token"])
        assert result.exit_code == 3
        assert "login" in result.output

    def test_missing_config(self, cli_runner, isolated_config: Path) -> None:
        result = cli_runner.invoke(app, ["auth", "token"])
        assert result.exit_code == 2
        assert "client_id" in result.output


class TestLogin:
    def test_success(
        self,
        cli_runner,
        provider_env: Path,
        credential: Credential,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        seen: dict[str, object] = {}

        async def _fake_login(self, cancel_event=None, open_browser=True) -> Credential:
            seen["open_browser"] = open_browser
            seen["port"] = self._config.redirect_port_preference
            return credential

        monkeypatch.setattr(AuthManager, "login", _fake_login)
        result = cli_runner.invoke(app, ["auth", "login", "--no-browser", "--port", "9100"])

        assert result.exit_code == 0
        assert "Logged in" in result.output
        assert seen == {"open_browser": False, "port": 9100}

    def test_timeout_exit_code(
        self, cli_runner, provider_env: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        async def _fake_login(self, cancel_event=None, open_browser=True) -> Credential:
            raise CallbackTimeout("No login redirect received within 120 seconds")

        monkeypatch.setattr(AuthManager, "login", _fake_login)
        result = cli_runner.invoke(app, ["auth", "login"])
        assert result.exit_code == 4
        assert "No login redirect" in result.output

    def test_missing_config(self, cli_runner, isolated_config: Path) -> None:
        result = cli_runner.invoke(app, ["auth", "login"])
        assert result.exit_code == 2


class TestLogout:
    def test_removes_credential(self, cli_runner, logged_in: CredentialStore) -> None:
        result = cli_runner.invoke(app, ["auth", "logout"])
        assert result.exit_code == 0
        assert "Logged out" in result.output
        assert logged_in.load() is None

    def test_nothing_stored(self, cli_runner, isolated_config: Path) -> None:
        result = cli_runner.invoke(app, ["auth", "logout"])
        assert result.exit_code == 0
        assert "No stored credential" in result.output

    def test_explicit_storage_path(self, cli_runner, isolated_config: Path, credential) -> None:
        path = isolated_config / "elsewhere.json"
        CredentialStore(path).save(credential)
        result = cli_runner.invoke(app, ["auth", "logout", "--storage-path", str(path)])
        assert result.exit_code == 0
        assert not path.exists()


class TestConfigure:
    def test_nothing_given(self, cli_runner, isolated_config: Path) -> None:
        assert cli_runner.invoke(app, ["auth", "configure"]).exit_code == 2

    def test_partial_then_complete(self, cli_runner, isolated_config: Path) -> None:
        first = cli_runner.invoke(app, ["auth", "configure", "--client-id", "cli"])
        assert first.exit_code == 0
        assert "Warning" in first.output

        second = cli_runner.invoke(
            app,
            [
                "auth",
                "configure",
                "--authorize-url",
                "https://id.example.com/authorize",
                "--token-url",
                "https://id.example.com/token",
            ],
        )
        assert second.exit_code == 0
        assert "Warning" not in second.output

        saved = json.loads((get_config_dir() / "config.json").read_text())
        assert saved == {
            "client_id": "cli",
            "authorize_url": "https://id.example.com/authorize",
            "token_url": "https://id.example.com/token",
        }


class TestMain:
    def test_loopauth_error_exit_code(
        self, isolated_config: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        def _raise() -> None:
            raise ConfigError("bad config")

        monkeypatch.setattr("loopauth.app.app", _raise)
        with pytest.raises(SystemExit) as exc_info:
            main()
        assert exc_info.value.code == 2

    def test_unexpected_error_writes_crash_log(
        self, isolated_config: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        def _raise() -> None:
            raise ValueError("boom")

        monkeypatch.setattr("loopauth.app.app", _raise)
        with pytest.raises(SystemExit) as exc_info:
            main()
        assert exc_info.value.code == 1
        logs = list((get_data_dir() / "logs").glob("crash-*.log"))
        assert len(logs) == 1
        assert "ValueError: boom" in logs[0].read_text()

    def test_keyboard_interrupt(self, monkeypatch: pytest.MonkeyPatch) -> None:
        def _raise() -> None:
            raise KeyboardInterrupt

        monkeypatch.setattr("loopauth.app.app", _raise)
        with pytest.raises(SystemExit) as exc_info:
            main()
        assert exc_info.value.code == 130
