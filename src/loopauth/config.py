"""Configuration management with XDG paths, atomic writes, and precedence resolution.

This module is the only place that reads the process environment. It turns
CLI flags, environment variables, and the on-disk config file into one
explicit :class:`~loopauth.models.AuthConfig` that the login core receives
as an argument.

* **Directory layout** -- XDG Base Directory compliant on Linux/BSD,
  ``~/.loopauth/`` on macOS and Windows. See :func:`get_config_dir` and
  :func:`get_data_dir`.
* **Config file** -- ``<config_dir>/config.json`` holding any subset of the
  :class:`~loopauth.models.AuthConfig` fields. Managed via
  :func:`load_config_file` and :func:`save_config`.
* **Precedence resolution** -- :func:`resolve_config` merges CLI flags,
  environment variables, the config file, and defaults.

All file writes use an atomic temp-file-then-rename strategy
(:func:`atomic_write`) to prevent data loss on crash or power failure.
"""

from __future__ import annotations

import json
import os
import platform
import tempfile
from pathlib import Path
from typing import Any, Optional

from pydantic import ValidationError

from loopauth.exceptions import ConfigError
from loopauth.models import AuthConfig

_APP_NAME = "loopauth"
_CONFIG_FILENAME = "config.json"
_CREDENTIALS_FILENAME = "credentials.json"
_PRIVATE_DIR_MODE = 0o700

# Environment variable -> AuthConfig field.
ENV_VARS: dict[str, str] = {
    "LOOPAUTH_CLIENT_ID": "client_id",
    "LOOPAUTH_AUTHORIZE_URL": "authorize_url",
    "LOOPAUTH_TOKEN_URL": "token_url",
    "LOOPAUTH_REDIRECT_PORT": "redirect_port_preference",
    "LOOPAUTH_TIMEOUT": "timeout",
    "LOOPAUTH_STORAGE_PATH": "storage_path",
    "LOOPAUTH_SCOPE": "scope",
}


# --- XDG path resolution ---


def _is_xdg_platform() -> bool:
    """Return True if the platform supports XDG Base Directory spec (Linux/FreeBSD)."""
    return platform.system() == "Linux" or platform.system().endswith("BSD")


def _fallback_base_dir() -> Path:
    """Fallback base directory for non-XDG platforms (macOS, Windows)."""
    return Path.home() / f".{_APP_NAME}"


def _xdg_base(env_var: str, default_segments: tuple[str, ...]) -> Path:
    """Resolve an XDG base directory from an env var with fallback segments under $HOME."""
    env_value = os.environ.get(env_var, "")
    if env_value:
        return Path(env_value)
    base = Path.home()
    for seg in default_segments:
        base = base / seg
    return base


def get_config_dir() -> Path:
    """Return the configuration directory, creating it if necessary.

    On Linux/BSD: ``$XDG_CONFIG_HOME/loopauth/`` (default ``~/.config/loopauth/``).
    On macOS/Windows: ``~/.loopauth/``.

    Returns:
        Absolute path to the configuration directory (guaranteed to exist).
    """
    if _is_xdg_platform():
        base = _xdg_base("XDG_CONFIG_HOME", (".config",))
        path = base / _APP_NAME
    else:
        path = _fallback_base_dir()
    path.mkdir(parents=True, exist_ok=True)
    return path


def get_data_dir() -> Path:
    """Return the data directory (credentials, crash logs), creating it if necessary.

    The directory is owner-only (``0o700``); looser permissions on an
    existing one are tightened.

    On Linux/BSD: ``$XDG_DATA_HOME/loopauth/`` (default ``~/.local/share/loopauth/``).
    On macOS/Windows: ``~/.loopauth/data/``.

    Returns:
        Absolute path to the data directory (guaranteed to exist).
    """
    if _is_xdg_platform():
        base = _xdg_base("XDG_DATA_HOME", (".local", "share"))
        path = base / _APP_NAME
    else:
        path = _fallback_base_dir() / "data"
    path.mkdir(mode=_PRIVATE_DIR_MODE, parents=True, exist_ok=True)
    # Holds secrets: tighten a directory left group- or world-accessible.
    if os.name != "nt" and path.stat().st_mode & 0o077:
        os.chmod(path, _PRIVATE_DIR_MODE)
    return path


def default_storage_path() -> Path:
    """Default credential file location: ``<data_dir>/credentials.json``."""
    return get_data_dir() / _CREDENTIALS_FILENAME


# --- Atomic file writes ---


def atomic_write(path: Path, data: str, mode: int | None = None) -> None:
    """Write data to file atomically using temp file + rename.

    The temporary file is created in the same directory as *path* so that
    ``os.replace`` is guaranteed to be an atomic rename on POSIX systems.
    When *mode* is given it is applied to the temp file before any content
    is written, so the data is never readable with looser permissions.
    On any failure the temp file is removed and the error re-raised.
    """
    path.parent.mkdir(parents=True, exist_ok=True)

    fd = None
    tmp_path: Optional[str] = None
    try:
        fd = tempfile.NamedTemporaryFile(
            mode="w",
            dir=path.parent,
            prefix=f".{path.name}.",
            suffix=".tmp",
            delete=False,
            encoding="utf-8",
        )
        tmp_path = fd.name
        if mode is not None:
            os.chmod(tmp_path, mode)
        fd.write(data)
        fd.flush()
        os.fsync(fd.fileno())
        fd.close()
        fd = None  # prevent double-close below
        os.replace(tmp_path, path)
    except BaseException:
        # Clean up the temp file on any error (including KeyboardInterrupt).
        if fd is not None:
            fd.close()
        if tmp_path is not None:
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
        raise


# --- Config file ---


def _config_path() -> Path:
    """Path to the config file."""
    return get_config_dir() / _CONFIG_FILENAME


def load_config_file(path: Optional[Path] = None) -> dict[str, Any]:
    """Load the raw config file as a dict.

    Args:
        path: Explicit config file; defaults to ``<config_dir>/config.json``.

    Returns:
        The parsed JSON object, or an empty dict if the file does not exist.

    Raises:
        ConfigError: If the file exists but is not a JSON object.
    """
    path = path or _config_path()
    if not path.is_file():
        return {}
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (json.JSONDecodeError, OSError) as exc:
        raise ConfigError(f"Invalid config at {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigError(f"Invalid config at {path}: expected a JSON object")
    return data


def save_config(values: dict[str, Any], path: Optional[Path] = None) -> Path:
    """Persist config values atomically, merged over the existing file.

    Args:
        values: Field values to write. ``None`` values are dropped.
        path: Explicit config file; defaults to ``<config_dir>/config.json``.

    Returns:
        The path that was written.
    """
    path = path or _config_path()
    merged = load_config_file(path)
    merged.update({k: v for k, v in values.items() if v is not None})
    atomic_write(path, json.dumps(merged, indent=2, default=str) + "\n")
    return path


def _env_values() -> dict[str, str]:
    """Collect AuthConfig fields set through ``LOOPAUTH_*`` environment variables."""
    values: dict[str, str] = {}
    for var, field in ENV_VARS.items():
        value = os.environ.get(var)
        if value:
            values[field] = value
    return values


# --- Precedence resolution ---


def resolve_storage_path(
    override: Optional[Path] = None,
    config_path: Optional[Path] = None,
) -> Path:
    """Resolve only the credential file location, with the same precedence as :func:`resolve_config`.

    Used by commands that touch the stored credential but never talk to the
    provider (``auth status``, ``auth logout``), so they work without a
    complete provider configuration.
    """
    if override is not None:
        return override.expanduser()
    env_value = os.environ.get("LOOPAUTH_STORAGE_PATH")
    if env_value:
        return Path(env_value).expanduser()
    file_value = load_config_file(config_path).get("storage_path")
    if file_value:
        return Path(str(file_value)).expanduser()
    return default_storage_path()


def resolve_expiry_leeway(config_path: Optional[Path] = None) -> float:
    """Resolve ``expiry_leeway`` from the config file, falling back to the default.

    Like :func:`resolve_storage_path`, this needs no provider configuration.

    Raises:
        ConfigError: If the configured value is not a non-negative number.
    """
    raw = load_config_file(config_path).get("expiry_leeway")
    if raw is None:
        return AuthConfig.model_fields["expiry_leeway"].default
    try:
        leeway = float(raw)
    except (TypeError, ValueError):
        raise ConfigError(f"Invalid expiry_leeway {raw!r}: expected a number of seconds") from None
    if leeway < 0:
        raise ConfigError(f"Invalid expiry_leeway {raw!r}: must not be negative")
    return leeway


def resolve_config(
    overrides: Optional[dict[str, Any]] = None,
    config_path: Optional[Path] = None,
) -> AuthConfig:
    """Resolve the effective :class:`~loopauth.models.AuthConfig`.

    Precedence (high to low):
        1. ``overrides`` (CLI flags; ``None`` values are ignored)
        2. Environment variables (``LOOPAUTH_*``, see :data:`ENV_VARS`)
        3. Config file (``~/.config/loopauth/config.json``)
        4. Defaults (``storage_path`` falls back to :func:`default_storage_path`)

    Raises:
        ConfigError: If a required field is missing or a value fails
            validation.
    """
    values: dict[str, Any] = load_config_file(config_path)
    values.update(_env_values())
    if overrides:
        values.update({k: v for k, v in overrides.items() if v is not None})
    values.setdefault("storage_path", default_storage_path())

    try:
        return AuthConfig.model_validate(values)
    except ValidationError as exc:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or 'config'}: {err['msg']}"
            for err in exc.errors()
        )
        raise ConfigError(f"Invalid auth configuration: {problems}") from exc
