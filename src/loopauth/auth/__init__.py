"""Browser-based login core for loopauth.

This package implements the OAuth2 authorization code flow with PKCE for a
command-line tool: an ephemeral loopback listener receives the browser
redirect, the code is exchanged for a token, and the result is persisted
for later invocations.

The main entry points are:

- :class:`AuthManager` -- reuse, refresh, or (as a last resort) log in.
- :class:`SessionOrchestrator` -- one interactive login attempt.
- :class:`CredentialStore` -- atomic, owner-only credential file.

Typical usage::

    from loopauth.auth import AuthManager

    credential = await AuthManager(config).get_credential()
"""

from loopauth.auth.callback_server import CallbackListener, ListenerState
from loopauth.auth.challenge import derive_code_challenge, new_session
from loopauth.auth.credential_store import CredentialStore
from loopauth.auth.manager import AuthManager, describe_credential
from loopauth.auth.session import SessionOrchestrator, login
from loopauth.auth.token_exchange import TokenExchanger

__all__ = [
    "AuthManager",
    "CallbackListener",
    "CredentialStore",
    "ListenerState",
    "SessionOrchestrator",
    "TokenExchanger",
    "derive_code_challenge",
    "describe_credential",
    "login",
    "new_session",
]
