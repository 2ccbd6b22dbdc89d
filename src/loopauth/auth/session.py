"""Session orchestrator -- one interactive browser login, start to finish.

:class:`SessionOrchestrator` composes the leaf components into a single
login attempt:

1. :func:`~loopauth.auth.challenge.new_session` draws fresh ``state`` and
   PKCE material.
2. :class:`~loopauth.auth.callback_server.CallbackListener` binds the
   loopback port (falling back to an ephemeral one) and the bound port is
   written into the session.
3. The authorization URL is printed and the system browser is launched on
   a daemon thread (best effort).
4. The listener's outcome future is raced against the session deadline and
   the caller's cancellation event.
5. The code is exchanged by :class:`~loopauth.auth.token_exchange.TokenExchanger`,
   racing only cancellation.
6. The credential is persisted by
   :class:`~loopauth.auth.credential_store.CredentialStore` and returned.

A successful exchange is the point of no return: a cancellation observed
after it does not prevent or roll back the save. On timeout, cancellation
or any failure the listener is stopped and storage is left untouched.

Only one login runs per process at a time; a second concurrent call raises
:class:`~loopauth.exceptions.LoginInProgressError` instead of competing for
the port.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from typing import Callable, Optional

from loopauth.auth.browser import build_authorization_url, launch_browser
from loopauth.auth.callback_server import CallbackListener
from loopauth.auth.challenge import new_session
from loopauth.auth.credential_store import CredentialStore
from loopauth.auth.token_exchange import TokenExchanger
from loopauth.exceptions import (
    BrowserLaunchError,
    CallbackTimeout,
    LoginCancelled,
    LoginInProgressError,
)
from loopauth.models import AuthConfig, AuthSession, Credential
from loopauth.output import show_url, warning

logger = logging.getLogger(__name__)

# Held for the duration of one login; it guards the port, not session data.
_LOGIN_GUARD = threading.Lock()


class SessionOrchestrator:
    """Run interactive logins for one :class:`~loopauth.models.AuthConfig`.

    Args:
        config: Provider endpoints, port preference, timeout and storage path.
        store: Credential store; defaults to one at ``config.storage_path``.
        exchanger: Token endpoint client; defaults to a :class:`TokenExchanger`
            for *config*.
        browser: Callable that opens a URL, raising
            :class:`~loopauth.exceptions.BrowserLaunchError` on failure.
        open_browser: When ``False`` only the URL is printed.
    """

    def __init__(
        self,
        config: AuthConfig,
        store: Optional[CredentialStore] = None,
        exchanger: Optional[TokenExchanger] = None,
        browser: Callable[[str], None] = launch_browser,
        open_browser: bool = True,
    ) -> None:
        self._config = config
        self._store = store or CredentialStore(config.storage_path)
        self._exchanger = exchanger or TokenExchanger(config)
        self._browser = browser
        self._open_browser = open_browser

    async def login(self, cancel_event: Optional[asyncio.Event] = None) -> Credential:
        """Run one login attempt.

        Args:
            cancel_event: Set by the caller (e.g. on SIGINT) to abandon the
                attempt before the token exchange completes.

        Returns:
            The persisted :class:`~loopauth.models.Credential`.

        Raises:
            LoginInProgressError: Another login is running in this process.
            CallbackTimeout: No valid redirect before the deadline.
            LoginCancelled: *cancel_event* was set before the exchange finished.
            StateMismatch: A redirect carried a foreign ``state``.
            AuthorizationDenied: The provider redirected back with ``error``.
            InvalidGrant: The token endpoint rejected the code.
            NetworkError: The token endpoint stayed unreachable.
            PortBindError: No loopback port could be bound.
            StorageError: The credential could not be saved.
        """
        if not _LOGIN_GUARD.acquire(blocking=False):
            raise LoginInProgressError("A login is already in progress in this process")
        try:
            return await self._run(cancel_event or asyncio.Event())
        finally:
            _LOGIN_GUARD.release()

    async def _run(self, cancel_event: asyncio.Event) -> Credential:
        session = new_session(self._config)
        listener = CallbackListener(
            session,
            preferred_port=self._config.redirect_port_preference,
            strict_state=self._config.strict_state,
        )
        port = await listener.start()
        session = session.model_copy(update={"bound_port": port})

        cancel_waiter = asyncio.ensure_future(cancel_event.wait())
        try:
            url = build_authorization_url(self._config, session)
            self._present(url)
            code = await self._wait_for_code(listener, session, cancel_waiter)
            credential = await self._exchange(code, session, cancel_waiter)
        finally:
            cancel_waiter.cancel()
            await listener.stop()

        self._store.save(credential)
        logger.info("Login complete; credential saved to %s", self._store.path)
        return credential

    def _present(self, url: str) -> None:
        """Print the authorization URL and launch the browser on a daemon thread."""
        if not self._open_browser:
            show_url("Open this URL in a browser to log in:", url)
            return

        show_url("Opening your browser to log in. If it does not open, visit:", url)
        loop = asyncio.get_running_loop()

        def _launch() -> None:
            try:
                self._browser(url)
            except BrowserLaunchError as exc:
                try:
                    loop.call_soon_threadsafe(_report_launch_failure, exc)
                except RuntimeError:
                    # Event loop already closed: the login has finished.
                    logger.debug("Browser launch failed after login ended: %s", exc)

        threading.Thread(target=_launch, name="loopauth-browser", daemon=True).start()

    async def _wait_for_code(
        self,
        listener: CallbackListener,
        session: AuthSession,
        cancel_waiter: asyncio.Future[bool],
    ) -> str:
        outcome = listener.outcome
        done, _ = await asyncio.wait(
            {outcome, cancel_waiter},
            timeout=session.seconds_remaining(),
            return_when=asyncio.FIRST_COMPLETED,
        )
        if cancel_waiter in done:
            raise LoginCancelled("Login cancelled")
        if outcome in done:
            return outcome.result()
        logger.info("No login redirect received before the deadline")
        raise CallbackTimeout(
            f"No login redirect received within {self._config.timeout:g} seconds"
        )

    async def _exchange(
        self,
        code: str,
        session: AuthSession,
        cancel_waiter: asyncio.Future[bool],
    ) -> Credential:
        exchange = asyncio.ensure_future(self._exchanger.exchange(code, session))
        done, _ = await asyncio.wait(
            {exchange, cancel_waiter}, return_when=asyncio.FIRST_COMPLETED
        )
        if exchange in done:
            return exchange.result()

        exchange.cancel()
        try:
            credential = await exchange
        except asyncio.CancelledError:
            raise LoginCancelled("Login cancelled before the token exchange completed") from None
        # The exchange finished before the cancellation reached it.
        return credential


def _report_launch_failure(exc: BrowserLaunchError) -> None:
    warning(f"{exc}. Open the URL above manually.")


async def login(
    config: AuthConfig,
    cancel_event: Optional[asyncio.Event] = None,
    **kwargs: object,
) -> Credential:
    """Convenience wrapper: ``SessionOrchestrator(config, **kwargs).login(cancel_event)``."""
    return await SessionOrchestrator(config, **kwargs).login(cancel_event)  # type: ignore[arg-type]
