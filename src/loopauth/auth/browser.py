"""Authorization URL construction and system browser launch."""

from __future__ import annotations

import logging
import webbrowser
from urllib.parse import urlencode, urlsplit, urlunsplit

from loopauth.auth.challenge import CODE_CHALLENGE_METHOD
from loopauth.exceptions import BrowserLaunchError
from loopauth.models import AuthConfig, AuthSession

logger = logging.getLogger(__name__)


def build_authorization_url(config: AuthConfig, session: AuthSession) -> str:
    """Build the provider authorization URL for *session*.

    The session must already carry its ``bound_port`` so that the
    ``redirect_uri`` names the port the listener actually owns. Query
    parameters already present on ``authorize_url`` are preserved.
    """
    params: dict[str, str] = dict(config.extra_authorize_params)
    params.update(
        {
            "response_type": "code",
            "client_id": config.client_id,
            "redirect_uri": session.redirect_uri,
            "state": session.state,
            "code_challenge": session.code_challenge,
            "code_challenge_method": CODE_CHALLENGE_METHOD,
        }
    )
    if config.scope:
        params["scope"] = config.scope

    parts = urlsplit(config.authorize_url)
    query = urlencode(params)
    if parts.query:
        query = f"{parts.query}&{query}"
    return urlunsplit((parts.scheme, parts.netloc, parts.path, query, parts.fragment))


def launch_browser(url: str) -> None:
    """Open *url* in the system browser.

    Raises:
        BrowserLaunchError: If no runnable browser is available.
    """
    try:
        opened = webbrowser.open(url)
    except webbrowser.Error as exc:
        raise BrowserLaunchError(f"Could not open a browser: {exc}") from exc
    if not opened:
        raise BrowserLaunchError("No browser could be opened")
    logger.debug("Opened system browser for authorization")
