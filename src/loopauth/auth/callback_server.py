"""Loopback HTTP listener that receives the provider's browser redirect.

The listener serves exactly one route, ``GET /callback``, on ``127.0.0.1``.
It walks the state machine::

    LISTENING -> VALIDATING -> {COMPLETED, REJECTED} -> DRAINING -> STOPPED

and reports its outcome through a single future (:attr:`CallbackListener.outcome`)
that the orchestrator races against the deadline and cancellation:

* resolved with the authorization code on the first request whose ``state``
  matches the session and which carries a ``code``;
* failed with :class:`~loopauth.exceptions.StateMismatch` when a request
  carries a foreign ``state`` (unless ``strict_state`` is off);
* failed with :class:`~loopauth.exceptions.AuthorizationDenied` when the
  provider redirects back with ``error``.

Requests without any ``state`` (favicon fetches, prefetchers, an operator
poking at the URL) are answered 400 and ignored so they cannot abort a
legitimate pending login. Requests arriving after the outcome is settled get
an idempotent response and have no side effects.

Response pages are static: they never echo query parameters and never
reveal the expected ``state``. Access logging is disabled because request
lines carry the authorization code.
"""

from __future__ import annotations

import asyncio
import enum
import logging
import secrets
import socket
from typing import Optional

from aiohttp import web

from loopauth.exceptions import AuthorizationDenied, PortBindError, StateMismatch
from loopauth.models import CALLBACK_HOST, CALLBACK_PATH, AuthSession, CallbackResult

logger = logging.getLogger(__name__)

# Seconds aiohttp waits for in-flight handlers when the listener stops.
_SHUTDOWN_TIMEOUT = 1.0


class ListenerState(str, enum.Enum):
    """Lifecycle of a :class:`CallbackListener`."""

    LISTENING = "listening"
    VALIDATING = "validating"
    COMPLETED = "completed"
    REJECTED = "rejected"
    DRAINING = "draining"
    STOPPED = "stopped"


def _page(title: str, message: str) -> str:
    return (
        "<!DOCTYPE html><html><head><meta charset=\"utf-8\">"
        f"<title>{title}</title></head>"
        f"<body><h1>{title}</h1><p>{message}</p></body></html>"
    )


SUCCESS_PAGE = _page(
    "Login complete",
    "You can close this window and return to the terminal.",
)
ALREADY_COMPLETED_PAGE = _page(
    "Login already completed",
    "This login has already been processed. Return to the terminal.",
)
ATTEMPT_ENDED_PAGE = _page(
    "Login ended",
    "This login attempt is no longer active. Return to the terminal and start a new login.",
)
INVALID_REQUEST_PAGE = _page(
    "Invalid request",
    "The request did not come from a login started by this terminal.",
)
DENIED_PAGE = _page(
    "Login failed",
    "The identity provider reported an error. Return to the terminal for details.",
)

_RESPONSE_HEADERS = {
    "Cache-Control": "no-store",
    "Referrer-Policy": "no-referrer",
}


def bind_loopback_socket(preferred_port: int, host: str = CALLBACK_HOST) -> socket.socket:
    """Bind a TCP socket on *host*, preferring *preferred_port*.

    When the preferred port cannot be bound (already in use, privileged),
    falls back to an OS-assigned ephemeral port.

    Raises:
        PortBindError: If the fallback bind fails too.
    """
    try:
        return _bind(host, preferred_port)
    except OSError as exc:
        if preferred_port == 0:
            raise PortBindError(f"Could not bind a loopback port on {host}: {exc}") from exc
        logger.info(
            "Port %d on %s unavailable (%s); falling back to an ephemeral port",
            preferred_port,
            host,
            exc.strerror or exc,
        )
    try:
        return _bind(host, 0)
    except OSError as exc:
        raise PortBindError(f"Could not bind a loopback port on {host}: {exc}") from exc


def _bind(host: str, port: int) -> socket.socket:
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    try:
        sock.bind((host, port))
        sock.setblocking(False)
    except OSError:
        sock.close()
        raise
    return sock


class CallbackListener:
    """One-shot loopback listener for a single :class:`~loopauth.models.AuthSession`.

    Args:
        session: The active session; only its ``state`` is consulted.
        preferred_port: Port tried first (see :func:`bind_loopback_socket`).
        strict_state: When ``True`` a foreign ``state`` aborts the attempt
            with :class:`~loopauth.exceptions.StateMismatch`; when ``False``
            it is rejected and the listener keeps waiting.
        host: Loopback address to bind.

    Example::

        listener = CallbackListener(session, preferred_port=8976)
        port = await listener.start()
        try:
            code = await listener.outcome
        finally:
            await listener.stop()
    """

    def __init__(
        self,
        session: AuthSession,
        preferred_port: int,
        strict_state: bool = True,
        host: str = CALLBACK_HOST,
    ) -> None:
        self._session = session
        self._preferred_port = preferred_port
        self._strict_state = strict_state
        self._host = host
        self._state = ListenerState.STOPPED
        self._lock = asyncio.Lock()
        self._runner: Optional[web.AppRunner] = None
        self._socket: Optional[socket.socket] = None
        self._outcome: Optional[asyncio.Future[str]] = None
        self._port: Optional[int] = None
        self.rejected_count = 0

    @property
    def state(self) -> ListenerState:
        """Current lifecycle state."""
        return self._state

    @property
    def port(self) -> int:
        """The port actually bound. Only valid after :meth:`start`."""
        if self._port is None:
            raise RuntimeError("Listener has not been started")
        return self._port

    @property
    def outcome(self) -> asyncio.Future[str]:
        """Future resolved with the authorization code or failed with an :class:`AuthError`."""
        if self._outcome is None:
            raise RuntimeError("Listener has not been started")
        return self._outcome

    async def start(self) -> int:
        """Bind the socket and start serving.

        Returns:
            The bound port, to be embedded in the redirect URI.

        Raises:
            PortBindError: If no loopback port could be bound.
        """
        if self._runner is not None:
            raise RuntimeError("Listener already started")

        self._outcome = asyncio.get_running_loop().create_future()
        sock = bind_loopback_socket(self._preferred_port, self._host)

        app = web.Application()
        app.router.add_get(CALLBACK_PATH, self._handle_callback)
        runner = web.AppRunner(app, access_log=None, shutdown_timeout=_SHUTDOWN_TIMEOUT)
        try:
            await runner.setup()
            await web.SockSite(runner, sock).start()
        except BaseException:
            await runner.cleanup()
            sock.close()
            raise

        self._runner = runner
        self._socket = sock
        self._port = sock.getsockname()[1]
        self._state = ListenerState.LISTENING
        logger.debug("Callback listener bound to %s:%d", self._host, self._port)
        return self._port

    async def stop(self) -> None:
        """Close the socket and stop accepting requests. Safe to call repeatedly."""
        runner, self._runner = self._runner, None
        if runner is not None:
            await runner.cleanup()
        if self._socket is not None:
            self._socket.close()
            self._socket = None
        if self._outcome is not None:
            if not self._outcome.done():
                self._outcome.cancel()
            elif not self._outcome.cancelled():
                # Mark a failure as retrieved when the caller stopped waiting first.
                self._outcome.exception()
        if self._state is not ListenerState.STOPPED:
            logger.debug("Callback listener stopped")
        self._state = ListenerState.STOPPED

    async def _handle_callback(self, request: web.Request) -> web.Response:
        # Serialise processing so requests are validated in arrival order.
        async with self._lock:
            if self._outcome is None or self._state is ListenerState.STOPPED:
                return self._respond(503, ATTEMPT_ENDED_PAGE)
            if self._outcome.done():
                if not self._outcome.cancelled() and self._outcome.exception() is None:
                    return self._respond(200, ALREADY_COMPLETED_PAGE)
                return self._respond(400, ATTEMPT_ENDED_PAGE)

            self._state = ListenerState.VALIDATING
            return self._validate(CallbackResult.from_query(request.query))

    def _validate(self, result: CallbackResult) -> web.Response:
        assert self._outcome is not None

        if result.state is None:
            logger.debug("Ignoring callback request without a state parameter")
            return self._reject(INVALID_REQUEST_PAGE, fatal=None)

        if not secrets.compare_digest(
            result.state.encode("utf-8"), self._session.state.encode("utf-8")
        ):
            logger.warning("Rejected callback request with an unexpected state parameter")
            fatal = None
            if self._strict_state:
                fatal = StateMismatch(
                    "Login redirect did not match this session (possible forgery); "
                    "start a new login"
                )
            return self._reject(INVALID_REQUEST_PAGE, fatal=fatal)

        if result.error is not None:
            logger.info("Provider redirected back with error %r", result.error)
            return self._reject(
                DENIED_PAGE,
                fatal=AuthorizationDenied(result.error, result.error_description),
            )

        if result.code is None:
            logger.debug("Ignoring callback request without an authorization code")
            return self._reject(INVALID_REQUEST_PAGE, fatal=None)

        self._state = ListenerState.COMPLETED
        self._outcome.set_result(result.code)
        self._state = ListenerState.DRAINING
        logger.debug("Authorization code received; listener draining")
        return self._respond(200, SUCCESS_PAGE)

    def _reject(self, body: str, fatal: Optional[Exception]) -> web.Response:
        assert self._outcome is not None
        self.rejected_count += 1
        self._state = ListenerState.REJECTED
        if fatal is not None:
            self._outcome.set_exception(fatal)
            self._state = ListenerState.DRAINING
        else:
            self._state = ListenerState.LISTENING
        return self._respond(400, body)

    @staticmethod
    def _respond(status: int, body: str) -> web.Response:
        return web.Response(
            status=status,
            text=body,
            content_type="text/html",
            headers=_RESPONSE_HEADERS,
        )
