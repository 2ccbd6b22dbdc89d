"""Auth commands -- log in, inspect, use, and forget the stored credential.

Provides the ``loopauth auth`` sub-command group. Every command resolves an
:class:`~loopauth.models.AuthConfig` from flags, ``LOOPAUTH_*`` environment
variables, and the config file, then delegates to
:class:`~loopauth.auth.manager.AuthManager`.

Typical workflow::

    loopauth auth configure --client-id cli --authorize-url ... --token-url ...
    loopauth auth login
    loopauth auth status
    curl -H "Authorization: Bearer $(loopauth auth token)" ...
"""

from __future__ import annotations

import asyncio
import contextlib
import signal
from pathlib import Path
from typing import Any, Awaitable, Callable, Optional, TypeVar

import typer

from loopauth.exceptions import LoopauthError
from loopauth.output import error, get_output, info, success, suggest, warning

T = TypeVar("T")

auth_app = typer.Typer(no_args_is_help=True)


def _overrides(
    client_id: Optional[str] = None,
    authorize_url: Optional[str] = None,
    token_url: Optional[str] = None,
    port: Optional[int] = None,
    timeout: Optional[float] = None,
    scope: Optional[str] = None,
    storage_path: Optional[Path] = None,
) -> dict[str, Any]:
    return {
        "client_id": client_id,
        "authorize_url": authorize_url,
        "token_url": token_url,
        "redirect_port_preference": port,
        "timeout": timeout,
        "scope": scope,
        "storage_path": storage_path,
    }


def _manager(overrides: Optional[dict[str, Any]] = None):  # noqa: ANN202
    from loopauth.auth import AuthManager
    from loopauth.config import resolve_config

    return AuthManager(resolve_config(overrides))


def _run_cancellable(factory: Callable[[asyncio.Event], Awaitable[T]]) -> T:
    """Run a coroutine with SIGINT wired to a cancellation event.

    Where the event loop cannot install signal handlers (Windows, non-main
    threads) Ctrl-C falls back to ``KeyboardInterrupt``.
    """

    async def _main() -> T:
        cancel_event = asyncio.Event()
        loop = asyncio.get_running_loop()
        installed = False
        try:
            loop.add_signal_handler(signal.SIGINT, cancel_event.set)
            installed = True
        except (NotImplementedError, RuntimeError, ValueError):
            pass
        try:
            return await factory(cancel_event)
        finally:
            if installed:
                with contextlib.suppress(NotImplementedError, RuntimeError, ValueError):
                    loop.remove_signal_handler(signal.SIGINT)

    return asyncio.run(_main())


def _fail(exc: LoopauthError) -> typer.Exit:
    error(str(exc))
    return typer.Exit(code=exc.exit_code)


@auth_app.command("login")
def auth_login(
    client_id: Optional[str] = typer.Option(None, "--client-id", help="OAuth client ID."),
    authorize_url: Optional[str] = typer.Option(
        None, "--authorize-url", help="Provider authorization endpoint."
    ),
    token_url: Optional[str] = typer.Option(None, "--token-url", help="Provider token endpoint."),
    port: Optional[int] = typer.Option(
        None, "--port", help="Preferred loopback port for the redirect."
    ),
    timeout: Optional[float] = typer.Option(
        None, "--timeout", help="Seconds to wait for the browser redirect."
    ),
    scope: Optional[str] = typer.Option(None, "--scope", help="Space-separated scopes."),
    storage_path: Optional[Path] = typer.Option(
        None, "--storage-path", help="Where to store the credential."
    ),
    no_browser: bool = typer.Option(
        False, "--no-browser", help="Print the URL instead of opening a browser."
    ),
) -> None:
    """Log in through the browser and store the resulting credential.

    Starts a one-shot listener on ``127.0.0.1``, opens the provider's
    authorization page, and waits for the redirect. Ctrl-C abandons the
    attempt without touching the stored credential.

    Raises:
        typer.Exit: With the error's exit code (3 auth failure, 4 timeout,
            5 storage, 6 network, 130 cancelled).

    Example::

        loopauth auth login --scope "read write"
    """
    try:
        manager = _manager(
            _overrides(client_id, authorize_url, token_url, port, timeout, scope, storage_path)
        )
        credential = _run_cancellable(
            lambda cancel: manager.login(cancel_event=cancel, open_browser=not no_browser)
        )
    except LoopauthError as exc:
        raise _fail(exc) from None

    message = "Logged in."
    if credential.expires_at is not None:
        message = f"Logged in. Token expires at {credential.expires_at.isoformat()}."
    success(message)
    suggest("Use it: loopauth auth token")


@auth_app.command("status")
def auth_status(
    storage_path: Optional[Path] = typer.Option(
        None, "--storage-path", help="Credential file to inspect."
    ),
) -> None:
    """Show the stored credential's scope, expiry and validity.

    Token values are never printed.

    Example::

        loopauth auth status --json
    """
    from loopauth.auth import CredentialStore, describe_credential
    from loopauth.config import resolve_expiry_leeway, resolve_storage_path

    try:
        store = CredentialStore(resolve_storage_path(storage_path))
        status = describe_credential(store, resolve_expiry_leeway())
    except LoopauthError as exc:
        raise _fail(exc) from None

    if not status["logged_in"]:
        info("Not logged in.")
        suggest("Log in: loopauth auth login")
        return
    get_output().print_record(status, title="Stored Credential")


@auth_app.command("token")
def auth_token(
    login: bool = typer.Option(
        False, "--login", help="Run an interactive login if no valid credential exists."
    ),
    storage_path: Optional[Path] = typer.Option(
        None, "--storage-path", help="Credential file to use."
    ),
) -> None:
    """Print a valid access token to stdout.

    Refreshes an expired token first when a refresh token is stored.

    Raises:
        typer.Exit: With code 3 if no valid credential is available.

    Example::

        curl -H "Authorization: Bearer $(loopauth auth token)" https://api.example.com/
    """
    try:
        manager = _manager(_overrides(storage_path=storage_path))
        credential = _run_cancellable(
            lambda cancel: manager.get_credential(allow_login=login, cancel_event=cancel)
        )
    except LoopauthError as exc:
        raise _fail(exc) from None

    get_output().print_data(credential.access_token)


@auth_app.command("logout")
def auth_logout(
    storage_path: Optional[Path] = typer.Option(
        None, "--storage-path", help="Credential file to remove."
    ),
) -> None:
    """Forget the stored credential.

    Example::

        loopauth auth logout
    """
    from loopauth.auth import CredentialStore
    from loopauth.config import resolve_storage_path

    try:
        removed = CredentialStore(resolve_storage_path(storage_path)).clear()
    except LoopauthError as exc:
        raise _fail(exc) from None

    if removed:
        success("Logged out.")
    else:
        info("No stored credential.")


@auth_app.command("configure")
def auth_configure(
    client_id: Optional[str] = typer.Option(None, "--client-id", help="OAuth client ID."),
    authorize_url: Optional[str] = typer.Option(
        None, "--authorize-url", help="Provider authorization endpoint."
    ),
    token_url: Optional[str] = typer.Option(None, "--token-url", help="Provider token endpoint."),
    port: Optional[int] = typer.Option(
        None, "--port", help="Preferred loopback port for the redirect."
    ),
    timeout: Optional[float] = typer.Option(
        None, "--timeout", help="Seconds to wait for the browser redirect."
    ),
    scope: Optional[str] = typer.Option(None, "--scope", help="Space-separated scopes."),
) -> None:
    """Save provider settings to the config file.

    Values are merged over the existing file, so settings can be supplied
    over several calls. After saving, the effective configuration is
    checked and any remaining problem is reported as a warning.

    Example::

        loopauth auth configure --client-id cli \\
            --authorize-url https://id.example.com/oauth/authorize \\
            --token-url https://id.example.com/oauth/token
    """
    from loopauth.config import resolve_config, save_config

    values = _overrides(client_id, authorize_url, token_url, port, timeout, scope)
    if all(v is None for v in values.values()):
        error("Nothing to configure.")
        raise typer.Exit(code=2)

    path = save_config(values)
    success(f"Configuration saved to {path}.")

    try:
        resolve_config()
    except LoopauthError as exc:
        warning(str(exc))
        return
    suggest("Log in: loopauth auth login")
