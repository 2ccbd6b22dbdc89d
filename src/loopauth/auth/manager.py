"""Auth manager -- the entry point callers use to obtain a credential.

The :class:`AuthManager` sits between the CLI (or any other caller that
needs a token) and the login core. It reuses a stored credential while it
is valid, silently refreshes it when it has expired and a refresh token is
available, and only then falls back to an interactive browser login via
:class:`~loopauth.auth.session.SessionOrchestrator`.

See Also:
    :class:`~loopauth.auth.credential_store.CredentialStore` -- where
    credentials live between invocations.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Optional

from loopauth.auth.browser import launch_browser
from loopauth.auth.credential_store import CredentialStore
from loopauth.auth.session import SessionOrchestrator
from loopauth.auth.token_exchange import TokenExchanger
from loopauth.exceptions import (
    AuthError,
    InvalidGrant,
    LoginCancelled,
    NetworkError,
    TokenResponseError,
)
from loopauth.models import AuthConfig, Credential

logger = logging.getLogger(__name__)


class AuthManager:
    """Credential lifecycle for one :class:`~loopauth.models.AuthConfig`.

    Args:
        config: The resolved auth configuration.
        store: Optional credential store override.
        exchanger: Optional token exchanger override.
        browser: Browser launcher passed to the orchestrator.

    Example::

        manager = AuthManager(config)
        credential = await manager.get_credential()
        headers = {"Authorization": f"{credential.token_type} {credential.access_token}"}
    """

    def __init__(
        self,
        config: AuthConfig,
        store: Optional[CredentialStore] = None,
        exchanger: Optional[TokenExchanger] = None,
        browser: Callable[[str], None] = launch_browser,
    ) -> None:
        self._config = config
        self._store = store or CredentialStore(config.storage_path)
        self._exchanger = exchanger or TokenExchanger(config)
        self._browser = browser

    async def login(
        self,
        cancel_event: Optional[asyncio.Event] = None,
        open_browser: bool = True,
    ) -> Credential:
        """Run an interactive browser login and persist the result."""
        orchestrator = SessionOrchestrator(
            self._config,
            store=self._store,
            exchanger=self._exchanger,
            browser=self._browser,
            open_browser=open_browser,
        )
        return await orchestrator.login(cancel_event)

    async def get_credential(
        self,
        allow_login: bool = True,
        cancel_event: Optional[asyncio.Event] = None,
        open_browser: bool = True,
    ) -> Credential:
        """Return a usable credential, logging in only as a last resort.

        1. A stored credential that has not expired (minus
           ``expiry_leeway``) is returned as is.
        2. An expired one with a refresh token is refreshed and the result
           persisted. A failed refresh is logged and falls through.
        3. Otherwise an interactive login runs when *allow_login* is set.

        Raises:
            AuthError: No valid credential is available and *allow_login*
                is ``False``.
            LoginCancelled: *cancel_event* fired during a refresh or login.
            StorageError: The credential file is unreadable or unwritable.
        """
        current = self._store.load()
        if current is not None and not current.is_expired(self._config.expiry_leeway):
            return current

        if current is not None and current.refresh_token:
            try:
                refreshed = await self._refresh(current, cancel_event)
            except (InvalidGrant, TokenResponseError, NetworkError) as exc:
                logger.info("Token refresh failed, falling back to login: %s", exc)
            else:
                self._store.save(refreshed)
                return refreshed

        if not allow_login:
            raise AuthError("No valid credential stored; run 'loopauth auth login'")
        return await self.login(cancel_event=cancel_event, open_browser=open_browser)

    async def _refresh(
        self, current: Credential, cancel_event: Optional[asyncio.Event]
    ) -> Credential:
        """Refresh *current*, abandoning the token call if *cancel_event* fires first."""
        if cancel_event is None:
            return await self._exchanger.refresh(current)

        refresh = asyncio.ensure_future(self._exchanger.refresh(current))
        cancel_waiter = asyncio.ensure_future(cancel_event.wait())
        try:
            done, _ = await asyncio.wait(
                {refresh, cancel_waiter}, return_when=asyncio.FIRST_COMPLETED
            )
        finally:
            cancel_waiter.cancel()
        if refresh in done:
            return refresh.result()

        refresh.cancel()
        try:
            return await refresh
        except asyncio.CancelledError:
            raise LoginCancelled("Cancelled before the token refresh completed") from None


def describe_credential(store: CredentialStore, leeway: float = 0.0) -> dict[str, Any]:
    """Describe the credential in *store* without revealing token values.

    Needs no provider configuration, so ``auth status`` works before
    ``auth configure`` has been run.

    Raises:
        StorageError: The credential file exists but cannot be read.
    """
    credential = store.load()
    if credential is None:
        return {"logged_in": False, "storage_path": str(store.path)}
    return {
        "logged_in": True,
        "valid": not credential.is_expired(leeway),
        "scope": credential.scope or None,
        "token_type": credential.token_type,
        "issued_at": credential.issued_at.isoformat(),
        "expires_at": credential.expires_at.isoformat() if credential.expires_at else None,
        "refreshable": credential.refresh_token is not None,
        "storage_path": str(store.path),
    }
