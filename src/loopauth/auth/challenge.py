"""Anti-forgery and PKCE material for a single login attempt (:rfc:`7636`).

:func:`new_session` draws a fresh ``state`` and ``code_verifier`` from
:mod:`secrets` and derives the S256 ``code_challenge``. Nothing here is
cached: every call yields values that have never been handed out before.
"""

from __future__ import annotations

import base64
import hashlib
import secrets
from datetime import datetime, timedelta, timezone

from loopauth.models import AuthConfig, AuthSession

# 32 random bytes -> 256 bits of entropy, 43 URL-safe characters.
STATE_BYTES = 32
# 64 random bytes -> 86 characters, inside the 43..128 range RFC 7636 allows.
VERIFIER_BYTES = 64

CODE_CHALLENGE_METHOD = "S256"


def derive_code_challenge(code_verifier: str) -> str:
    """Return ``BASE64URL(SHA256(code_verifier))`` without padding."""
    digest = hashlib.sha256(code_verifier.encode("ascii")).digest()
    return base64.urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")


def generate_pkce_pair() -> tuple[str, str]:
    """Generate a PKCE code_verifier and code_challenge (S256).

    Returns:
        A tuple of ``(code_verifier, code_challenge)``.
    """
    code_verifier = secrets.token_urlsafe(VERIFIER_BYTES)
    return code_verifier, derive_code_challenge(code_verifier)


def new_session(config: AuthConfig) -> AuthSession:
    """Start a new login attempt.

    Args:
        config: Supplies the ``timeout`` that sets the session deadline.

    Returns:
        An :class:`~loopauth.models.AuthSession` with a fresh ``state``,
        verifier and challenge, and no bound port yet.
    """
    code_verifier, code_challenge = generate_pkce_pair()
    now = datetime.now(timezone.utc)
    return AuthSession(
        state=secrets.token_urlsafe(STATE_BYTES),
        code_verifier=code_verifier,
        code_challenge=code_challenge,
        created_at=now,
        deadline=now + timedelta(seconds=config.timeout),
    )
