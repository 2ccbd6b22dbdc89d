"""Back-channel calls to the provider's token endpoint.

:class:`TokenExchanger` turns an authorization code (plus the PKCE verifier)
into a :class:`~loopauth.models.Credential`, and refreshes a credential that
carries a refresh token.

Retry policy:

* any :class:`httpx.TransportError` (refused or dropped connections,
  timeouts, a server closing without a response), HTTP 5xx and HTTP 429 are
  transient and retried with exponential backoff
  (``backoff_base * 2**attempt``) up to ``max_exchange_attempts`` attempts,
  then surface as :class:`~loopauth.exceptions.NetworkError`;
* any other 4xx is the provider rejecting the grant and raises
  :class:`~loopauth.exceptions.InvalidGrant` immediately -- the code is
  single-use, so retrying would only burn it;
* a 2xx body that is not JSON, lacks ``access_token`` or carries a field of
  the wrong type raises :class:`~loopauth.exceptions.TokenResponseError`.

Request bodies and response bodies are never logged.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

import httpx
from pydantic import ValidationError

from loopauth.exceptions import (
    AuthError,
    InvalidGrant,
    NetworkError,
    TokenResponseError,
)
from loopauth.models import AuthConfig, AuthSession, Credential

logger = logging.getLogger(__name__)

_TRANSIENT_STATUS = 429


class TokenExchanger:
    """Token endpoint client bound to one :class:`~loopauth.models.AuthConfig`.

    Args:
        config: Supplies ``token_url``, ``client_id``, timeouts and the
            retry parameters.
        transport: Optional :class:`httpx.AsyncBaseTransport`, used by tests
            to fake the provider.

    Example::

        exchanger = TokenExchanger(config)
        credential = await exchanger.exchange(code, session)
    """

    def __init__(
        self,
        config: AuthConfig,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._config = config
        self._transport = transport

    async def exchange(self, code: str, session: AuthSession) -> Credential:
        """Exchange an authorization code for a credential.

        Args:
            code: The authorization code received on the callback.
            session: The session whose verifier and redirect URI were used
                in the authorization request.

        Returns:
            The issued :class:`~loopauth.models.Credential`.

        Raises:
            InvalidGrant: The provider rejected the code (4xx).
            NetworkError: The endpoint stayed unreachable or kept failing
                with 5xx/429 after all attempts.
            TokenResponseError: The success response was unusable.
        """
        data = {
            "grant_type": "authorization_code",
            "code": code,
            "code_verifier": session.code_verifier,
            "redirect_uri": session.redirect_uri,
            "client_id": self._config.client_id,
        }
        token_data = await self._post_with_retry(data, purpose="token exchange")
        return self._to_credential(token_data)

    async def refresh(self, credential: Credential) -> Credential:
        """Obtain a new access token with *credential*'s refresh token.

        When the provider does not rotate the refresh token, the existing
        one is carried over to the new credential.

        Raises:
            AuthError: If *credential* has no refresh token.
            InvalidGrant: The provider rejected the refresh token.
            NetworkError: The endpoint stayed unreachable.
            TokenResponseError: The success response was unusable.
        """
        if not credential.refresh_token:
            raise AuthError("Stored credential has no refresh token")
        data = {
            "grant_type": "refresh_token",
            "refresh_token": credential.refresh_token,
            "client_id": self._config.client_id,
        }
        token_data = await self._post_with_retry(data, purpose="token refresh")
        return self._to_credential(
            token_data,
            fallback_refresh_token=credential.refresh_token,
            fallback_scope=credential.scope,
        )

    # ------------------------------------------------------------------ #
    # Private helpers
    # ------------------------------------------------------------------ #

    async def _post_with_retry(self, data: dict[str, str], purpose: str) -> dict[str, Any]:
        """POST *data* to the token endpoint with exponential-backoff retry."""
        attempts = self._config.max_exchange_attempts
        last_error: str = "no attempt made"

        async with httpx.AsyncClient(
            timeout=self._config.request_timeout,
            transport=self._transport,
        ) as client:
            for attempt in range(attempts):
                try:
                    response = await client.post(
                        self._config.token_url,
                        data=data,
                        headers={"Accept": "application/json"},
                    )
                except httpx.TransportError as exc:
                    last_error = f"{type(exc).__name__}: {exc}"
                else:
                    status = response.status_code
                    if status < 400:
                        return self._parse_body(response)
                    if status >= 500 or status == _TRANSIENT_STATUS:
                        last_error = f"HTTP {status}"
                    else:
                        raise InvalidGrant(status, self._oauth_error(response))

                if attempt + 1 < attempts:
                    delay = self._config.backoff_base * (2 ** attempt)
                    logger.debug(
                        "%s failed (%s), retrying in %.2fs (attempt %d/%d)",
                        purpose,
                        last_error,
                        delay,
                        attempt + 1,
                        attempts,
                    )
                    await asyncio.sleep(delay)

        raise NetworkError(f"{purpose.capitalize()} failed after {attempts} attempts: {last_error}")

    @staticmethod
    def _parse_body(response: httpx.Response) -> dict[str, Any]:
        try:
            body = response.json()
        except ValueError as exc:
            raise TokenResponseError("Token endpoint returned a non-JSON response") from exc
        if not isinstance(body, dict):
            raise TokenResponseError("Token endpoint returned an unexpected JSON document")
        if not isinstance(body.get("access_token"), str) or not body["access_token"]:
            raise TokenResponseError("Token response missing 'access_token' field")
        return body

    @staticmethod
    def _oauth_error(response: httpx.Response) -> Optional[str]:
        """Extract the RFC 6749 ``error`` code from an error response, if present."""
        try:
            body = response.json()
        except ValueError:
            return None
        if isinstance(body, dict) and isinstance(body.get("error"), str):
            return body["error"]
        return None

    def _to_credential(
        self,
        token_data: dict[str, Any],
        fallback_refresh_token: Optional[str] = None,
        fallback_scope: Optional[str] = None,
    ) -> Credential:
        issued_at = datetime.now(timezone.utc)

        expires_at: Optional[datetime] = None
        expires_in = token_data.get("expires_in")
        if expires_in is not None:
            try:
                expires_at = issued_at + timedelta(seconds=float(expires_in))
            except (TypeError, ValueError, OverflowError) as exc:
                raise TokenResponseError("Token response has an invalid 'expires_in' field") from exc

        refresh_token = token_data.get("refresh_token")
        if refresh_token is not None and not isinstance(refresh_token, str):
            raise TokenResponseError("Token response has an invalid 'refresh_token' field")
        token_type = token_data.get("token_type")
        if token_type is not None and not isinstance(token_type, str):
            raise TokenResponseError("Token response has an invalid 'token_type' field")

        scope = token_data.get("scope")
        if not isinstance(scope, str):
            scope = fallback_scope if fallback_scope is not None else (self._config.scope or "")

        try:
            return Credential(
                access_token=token_data["access_token"],
                refresh_token=refresh_token or fallback_refresh_token,
                scope=scope,
                token_type=token_type or "Bearer",
                issued_at=issued_at,
                expires_at=expires_at,
            )
        except ValidationError as exc:
            # Only field locations are reported; values may be secrets.
            fields = ", ".join(".".join(str(p) for p in err["loc"]) for err in exc.errors())
            raise TokenResponseError(f"Token response is invalid (fields: {fields})") from exc
