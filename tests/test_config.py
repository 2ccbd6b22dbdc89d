"""Tests for loopauth.config -- XDG paths, atomic writes, precedence."""

from __future__ import annotations

import json
import os
import stat
from pathlib import Path
from typing import Any

import pytest

from loopauth.config import (
    atomic_write,
    default_storage_path,
    get_config_dir,
    get_data_dir,
    load_config_file,
    resolve_config,
    resolve_expiry_leeway,
    resolve_storage_path,
    save_config,
)
from loopauth.exceptions import ConfigError


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _write_json(path: Path, data: Any) -> None:
    """Write a dict as JSON to *path*, creating parent dirs."""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(data, indent=2), encoding="utf-8")


PROVIDER = {
    "client_id": "file-client",
    "authorize_url": "https://file.example.com/authorize",
    "token_url": "https://file.example.com/token",
}


# ---------------------------------------------------------------------------
# Directories
# ---------------------------------------------------------------------------


class TestDirectories:
    def test_config_dir_under_xdg(self, isolated_config: Path) -> None:
        path = get_config_dir()
        assert path == isolated_config / "config" / "loopauth"
        assert path.is_dir()

    def test_data_dir_under_xdg(self, isolated_config: Path) -> None:
        path = get_data_dir()
        assert path == isolated_config / "data" / "loopauth"
        assert path.is_dir()

    @pytest.mark.skipif(os.name == "nt", reason="POSIX permissions only")
    def test_data_dir_owner_only(self, isolated_config: Path) -> None:
        assert stat.S_IMODE(get_data_dir().stat().st_mode) == 0o700

    @pytest.mark.skipif(os.name == "nt", reason="POSIX permissions only")
    def test_loose_data_dir_tightened(self, isolated_config: Path) -> None:
        loose = isolated_config / "data" / "loopauth"
        loose.mkdir(parents=True)
        os.chmod(loose, 0o755)
        assert stat.S_IMODE(get_data_dir().stat().st_mode) == 0o700

    def test_default_storage_path(self, isolated_config: Path) -> None:
        assert default_storage_path() == isolated_config / "data" / "loopauth" / "credentials.json"

    def test_non_xdg_fallback(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr("loopauth.config._is_xdg_platform", lambda: False)
        monkeypatch.setattr(Path, "home", lambda: tmp_path)
        assert get_config_dir() == tmp_path / ".loopauth"
        assert get_data_dir() == tmp_path / ".loopauth" / "data"


# ---------------------------------------------------------------------------
# Atomic writes
# ---------------------------------------------------------------------------


class TestAtomicWrite:
    def test_writes_content(self, tmp_path: Path) -> None:
        target = tmp_path / "nested" / "file.txt"
        atomic_write(target, "hello")
        assert target.read_text() == "hello"

    @pytest.mark.skipif(os.name == "nt", reason="POSIX permissions only")
    def test_mode_applied(self, tmp_path: Path) -> None:
        target = tmp_path / "secret.json"
        atomic_write(target, "{}", mode=0o600)
        assert stat.S_IMODE(target.stat().st_mode) == 0o600

    def test_failure_leaves_no_temp_file(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        target = tmp_path / "file.txt"
        target.write_text("original")

        def _fail_replace(src: str, dst: Any) -> None:
            raise OSError("disk full")

        monkeypatch.setattr(os, "replace", _fail_replace)
        with pytest.raises(OSError):
            atomic_write(target, "new")
        assert target.read_text() == "original"
        assert [p.name for p in tmp_path.iterdir()] == ["file.txt"]


# ---------------------------------------------------------------------------
# Config file
# ---------------------------------------------------------------------------


class TestConfigFile:
    def test_missing_file_is_empty(self, isolated_config: Path) -> None:
        assert load_config_file() == {}

    def test_invalid_json(self, isolated_config: Path) -> None:
        path = get_config_dir() / "config.json"
        path.write_text("{broken")
        with pytest.raises(ConfigError, match="Invalid config"):
            load_config_file()

    def test_non_object(self, isolated_config: Path) -> None:
        _write_json(get_config_dir() / "config.json", ["a"])
        with pytest.raises(ConfigError, match="JSON object"):
            load_config_file()

    def test_save_merges(self, isolated_config: Path) -> None:
        save_config({"client_id": "one", "scope": "read"})
        save_config({"client_id": "two", "timeout": None})
        assert load_config_file() == {"client_id": "two", "scope": "read"}


# ---------------------------------------------------------------------------
# Precedence
# ---------------------------------------------------------------------------


class TestResolveConfig:
    def test_from_file(self, isolated_config: Path) -> None:
        _write_json(get_config_dir() / "config.json", PROVIDER)
        config = resolve_config()
        assert config.client_id == "file-client"
        assert config.redirect_port_preference == 8976
        assert config.timeout == 120.0
        assert config.storage_path == default_storage_path()

    def test_env_over_file(
        self, isolated_config: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        _write_json(get_config_dir() / "config.json", PROVIDER)
        monkeypatch.setenv("LOOPAUTH_CLIENT_ID", "env-client")
        monkeypatch.setenv("LOOPAUTH_REDIRECT_PORT", "9000")
        monkeypatch.setenv("LOOPAUTH_TIMEOUT", "45")
        config = resolve_config()
        assert config.client_id == "env-client"
        assert config.redirect_port_preference == 9000
        assert config.timeout == 45.0

    def test_overrides_over_env(
        self, isolated_config: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        _write_json(get_config_dir() / "config.json", PROVIDER)
        monkeypatch.setenv("LOOPAUTH_CLIENT_ID", "env-client")
        config = resolve_config({"client_id": "flag-client", "scope": None})
        assert config.client_id == "flag-client"
        assert config.scope is None

    def test_storage_path_expanded(
        self, isolated_config: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setenv("HOME", str(isolated_config))
        config = resolve_config({**PROVIDER, "storage_path": "~/creds.json"})
        assert config.storage_path == isolated_config / "creds.json"

    def test_missing_required_field(self, isolated_config: Path) -> None:
        with pytest.raises(ConfigError, match="client_id"):
            resolve_config({"authorize_url": PROVIDER["authorize_url"]})

    def test_rejects_non_http_url(self, isolated_config: Path) -> None:
        with pytest.raises(ConfigError, match="token_url"):
            resolve_config({**PROVIDER, "token_url": "ftp://example.com/token"})

    def test_rejects_out_of_range_port(self, isolated_config: Path) -> None:
        with pytest.raises(ConfigError, match="redirect_port_preference"):
            resolve_config({**PROVIDER, "redirect_port_preference": 70000})

    def test_rejects_unknown_field(self, isolated_config: Path) -> None:
        _write_json(get_config_dir() / "config.json", {**PROVIDER, "colour": "blue"})
        with pytest.raises(ConfigError, match="colour"):
            resolve_config()

    def test_error_is_usage_exit_code(self, isolated_config: Path) -> None:
        with pytest.raises(ConfigError) as exc_info:
            resolve_config()
        assert exc_info.value.exit_code == 2


class TestResolveStoragePath:
    def test_default(self, isolated_config: Path) -> None:
        assert resolve_storage_path() == default_storage_path()

    def test_precedence(
        self, isolated_config: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        _write_json(get_config_dir() / "config.json", {"storage_path": str(isolated_config / "f")})
        assert resolve_storage_path() == isolated_config / "f"

        monkeypatch.setenv("LOOPAUTH_STORAGE_PATH", str(isolated_config / "e"))
        assert resolve_storage_path() == isolated_config / "e"

        assert resolve_storage_path(isolated_config / "o") == isolated_config / "o"

    def test_works_without_provider_config(self, isolated_config: Path) -> None:
        _write_json(get_config_dir() / "config.json", {"scope": "read"})
        assert resolve_storage_path() == default_storage_path()


class TestResolveExpiryLeeway:
    def test_default(self, isolated_config: Path) -> None:
        assert resolve_expiry_leeway() == 30.0

    def test_from_file(self, isolated_config: Path) -> None:
        _write_json(get_config_dir() / "config.json", {"expiry_leeway": 120})
        assert resolve_expiry_leeway() == 120.0

    @pytest.mark.parametrize("value", ["soon", -5, [1]])
    def test_invalid(self, isolated_config: Path, value: Any) -> None:
        _write_json(get_config_dir() / "config.json", {"expiry_leeway": value})
        with pytest.raises(ConfigError, match="expiry_leeway"):
            resolve_expiry_leeway()
