"""Canonical Pydantic models shared across all loopauth modules.

This is the single source of truth for data shapes in the project. Every other
module imports from here rather than defining its own models:

**Configuration** -- :class:`AuthConfig`, the explicit value the CLI builds
once per invocation and hands to the session orchestrator.

**Login attempt** -- :class:`AuthSession` (the per-attempt secrets and
deadline, never persisted) and :class:`CallbackResult` (one inbound redirect).

**Result** -- :class:`Credential`, produced by the token exchanger and owned
afterwards by :class:`~loopauth.auth.credential_store.CredentialStore`.

Secret-bearing fields are declared with ``repr=False`` so that logging a model
never leaks tokens, verifiers, or the expected ``state``.
"""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path
from typing import Mapping, Optional
from urllib.parse import urlparse

from pydantic import BaseModel, ConfigDict, Field, field_validator

CALLBACK_HOST = "127.0.0.1"
CALLBACK_PATH = "/callback"
DEFAULT_REDIRECT_PORT = 8976
DEFAULT_TIMEOUT = 120.0


# --- Auth Config ---


class AuthConfig(BaseModel):
    """Everything the login core needs to talk to one identity provider.

    Constructed by :func:`loopauth.config.resolve_config` from CLI flags,
    environment variables, and the config file, then passed explicitly to
    :class:`~loopauth.auth.session.SessionOrchestrator`. The core never reads
    the process environment itself.

    Example::

        AuthConfig(
            client_id="cli",
            authorize_url="https://id.example.com/oauth/authorize",
            token_url="https://id.example.com/oauth/token",
            storage_path=Path("~/.local/share/loopauth/credentials.json"),
        )
    """

    model_config = ConfigDict(extra="forbid")

    client_id: str = Field(min_length=1, description="Public OAuth client identifier")
    authorize_url: str = Field(description="Provider authorization endpoint")
    token_url: str = Field(description="Provider token endpoint")
    redirect_port_preference: int = Field(
        default=DEFAULT_REDIRECT_PORT,
        ge=0,
        le=65535,
        description="Loopback port tried first; 0 asks the OS for any free port",
    )
    timeout: float = Field(
        default=DEFAULT_TIMEOUT,
        gt=0,
        description="Seconds to wait for the browser redirect",
    )
    storage_path: Path = Field(description="Credential file location")
    scope: Optional[str] = Field(
        default=None, description="Space-separated scopes to request"
    )
    extra_authorize_params: dict[str, str] = Field(
        default_factory=dict,
        description="Provider-specific query parameters for the authorization URL",
    )
    strict_state: bool = Field(
        default=True,
        description="Abort the attempt on a redirect with a foreign state value",
    )
    request_timeout: float = Field(
        default=30.0, gt=0, description="Per-request timeout for the token endpoint"
    )
    max_exchange_attempts: int = Field(
        default=3, ge=1, description="Attempts for transient token endpoint failures"
    )
    backoff_base: float = Field(
        default=0.5, ge=0, description="First retry delay in seconds, doubled each attempt"
    )
    expiry_leeway: float = Field(
        default=30.0,
        ge=0,
        description="Seconds before expires_at at which a credential counts as expired",
    )

    @field_validator("authorize_url", "token_url")
    @classmethod
    def _require_http_url(cls, value: str) -> str:
        parsed = urlparse(value)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise ValueError(f"must be an absolute http(s) URL, got {value!r}")
        return value

    @field_validator("storage_path")
    @classmethod
    def _expand_storage_path(cls, value: Path) -> Path:
        return value.expanduser()


# --- Login attempt ---


class AuthSession(BaseModel):
    """Per-attempt anti-forgery and proof-of-possession material.

    Created by :func:`~loopauth.auth.challenge.new_session` at the start of a
    login attempt and owned by the orchestrator for its lifetime.
    ``bound_port`` stays ``None`` until the callback listener has bound its
    socket; the orchestrator then replaces the session with a copy carrying
    the real port.
    """

    state: str = Field(repr=False)
    code_verifier: str = Field(repr=False)
    code_challenge: str
    created_at: datetime
    deadline: datetime
    bound_port: Optional[int] = None

    @property
    def redirect_uri(self) -> str:
        """The loopback redirect URI registered in the authorization request."""
        if self.bound_port is None:
            raise RuntimeError("Session has no bound port yet")
        return f"http://{CALLBACK_HOST}:{self.bound_port}{CALLBACK_PATH}"

    def seconds_remaining(self, now: Optional[datetime] = None) -> float:
        """Seconds until :attr:`deadline`, never negative."""
        now = now or datetime.now(timezone.utc)
        return max(0.0, (self.deadline - now).total_seconds())


class CallbackResult(BaseModel):
    """Parameters extracted from one inbound request to the callback listener."""

    model_config = ConfigDict(frozen=True)

    code: Optional[str] = Field(default=None, repr=False)
    state: Optional[str] = Field(default=None, repr=False)
    error: Optional[str] = None
    error_description: Optional[str] = None

    @classmethod
    def from_query(cls, query: Mapping[str, str]) -> CallbackResult:
        """Build a result from a parsed query string, treating empty values as absent."""
        return cls(
            code=query.get("code") or None,
            state=query.get("state") or None,
            error=query.get("error") or None,
            error_description=query.get("error_description") or None,
        )


# --- Result ---


class Credential(BaseModel):
    """An access token (and optional refresh token) issued by the provider.

    Immutable: a re-login or refresh produces a new instance that replaces
    the stored one wholesale.
    """

    model_config = ConfigDict(frozen=True)

    access_token: str = Field(repr=False)
    refresh_token: Optional[str] = Field(default=None, repr=False)
    scope: str = ""
    token_type: str = "Bearer"
    issued_at: datetime
    expires_at: Optional[datetime] = Field(
        default=None, description="None when the provider did not send expires_in"
    )

    def is_expired(self, leeway: float = 0.0, now: Optional[datetime] = None) -> bool:
        """Return True when the token expires within *leeway* seconds of *now*.

        Naive ``expires_at`` values are treated as UTC.
        """
        if self.expires_at is None:
            return False
        now = now or datetime.now(timezone.utc)
        expires = self.expires_at
        if expires.tzinfo is None:
            expires = expires.replace(tzinfo=timezone.utc)
        return (expires - now).total_seconds() <= leeway
