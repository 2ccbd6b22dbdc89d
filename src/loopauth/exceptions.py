"""Exception hierarchy for loopauth.

All exceptions inherit from :class:`LoopauthError`, which carries an
``exit_code`` attribute mapped to a constant from :mod:`loopauth.exit_codes`.
The top-level error handler in :func:`loopauth.app.main` catches
``LoopauthError`` and exits with the appropriate code, while unexpected
exceptions produce a crash log and exit with :data:`EXIT_GENERIC_FAILURE`.

Messages never include credential material: no tokens, authorization codes,
PKCE verifiers, or expected ``state`` values.

Subclass hierarchy::

    LoopauthError (exit 1)
    +-- ConfigError            (exit 2)
    +-- AuthError              (exit 3)
    |   +-- StateMismatch
    |   +-- AuthorizationDenied
    |   +-- InvalidGrant
    |   +-- TokenResponseError
    |   +-- LoginInProgressError
    +-- CallbackTimeout        (exit 4)
    +-- StorageError           (exit 5)
    +-- NetworkError           (exit 6)
    +-- LoginCancelled         (exit 130)
    +-- PortBindError          (exit 1)
    +-- BrowserLaunchError     (exit 1)
"""

from loopauth.exit_codes import (
    EXIT_AUTH_FAILURE,
    EXIT_CANCELLED,
    EXIT_GENERIC_FAILURE,
    EXIT_INVALID_USAGE,
    EXIT_NETWORK_ERROR,
    EXIT_STORAGE_ERROR,
    EXIT_TIMEOUT,
)


class LoopauthError(Exception):
    """Base exception for all loopauth errors.

    Every subclass sets a class-level ``exit_code`` corresponding to one of
    the constants in :mod:`loopauth.exit_codes`. The entry point catches
    this exception type and calls ``sys.exit(exc.exit_code)``.

    Args:
        message: Human-readable error description printed to stderr.
        exit_code: Optional override for the class-level exit code.
    """

    exit_code: int = EXIT_GENERIC_FAILURE

    def __init__(self, message: str, exit_code: int | None = None):
        super().__init__(message)
        if exit_code is not None:
            self.exit_code = exit_code


class ConfigError(LoopauthError):
    """Raised for configuration problems (missing fields, invalid JSON, bad URLs)."""

    exit_code = EXIT_INVALID_USAGE


class AuthError(LoopauthError):
    """Raised when a login attempt fails for an authentication reason."""

    exit_code = EXIT_AUTH_FAILURE


class StateMismatch(AuthError):
    """Raised when a redirect carries a ``state`` other than the active session's.

    Treated as a possible forgery attempt: the session is abandoned and the
    operator has to start a new login.
    """


class AuthorizationDenied(AuthError):
    """Raised when the provider redirects back with an ``error`` parameter.

    Args:
        error: The provider's error code (e.g. ``access_denied``).
        description: Optional ``error_description`` from the redirect.
    """

    def __init__(self, error: str, description: str | None = None):
        message = f"Authorization was denied by the provider: {error}"
        if description:
            message += f" ({description})"
        super().__init__(message)
        self.error = error
        self.description = description


class InvalidGrant(AuthError):
    """Raised when the token endpoint rejects the grant with a 4xx response.

    Never retried: the authorization code is single-use.

    Args:
        status_code: HTTP status returned by the token endpoint.
        error: The OAuth ``error`` field from the response body, if any.
    """

    def __init__(self, status_code: int, error: str | None = None):
        message = f"Token endpoint rejected the grant (HTTP {status_code})"
        if error:
            message += f": {error}"
        super().__init__(message)
        self.status_code = status_code
        self.error = error


class TokenResponseError(AuthError):
    """Raised when the token endpoint answers 2xx with an unusable body."""


class LoginInProgressError(AuthError):
    """Raised when a second login is started while one is already running in this process."""


class CallbackTimeout(LoopauthError):
    """Raised when no valid redirect arrives before the session deadline."""

    exit_code = EXIT_TIMEOUT


class StorageError(LoopauthError):
    """Raised when the credential file cannot be read, parsed, or written."""

    exit_code = EXIT_STORAGE_ERROR


class NetworkError(LoopauthError):
    """Raised when the token endpoint stays unreachable after all retries."""

    exit_code = EXIT_NETWORK_ERROR


class LoginCancelled(LoopauthError):
    """Raised when the operator cancels a login before the token exchange completes."""

    exit_code = EXIT_CANCELLED


class PortBindError(LoopauthError):
    """Raised when neither the preferred nor an OS-assigned loopback port can be bound."""


class BrowserLaunchError(LoopauthError):
    """Raised by the browser launcher when no browser could be opened.

    The orchestrator treats this as a warning and prints the URL instead.
    """
