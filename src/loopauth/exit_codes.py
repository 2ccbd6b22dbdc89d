"""Numeric process exit codes following `clig.dev <https://clig.dev/>`_ conventions.

Each constant maps to a specific error category and is referenced by the
corresponding :class:`~loopauth.exceptions.LoopauthError` subclass.
Wrapper scripts can inspect the exit code to tell an abandoned browser
session apart from a rejected login without parsing stderr.

Example::

    $ loopauth auth login
    $ echo $?
    4   # EXIT_TIMEOUT -- no browser redirect arrived before the deadline
"""

EXIT_SUCCESS = 0
"""The command completed successfully."""

EXIT_GENERIC_FAILURE = 1
"""An unclassified error occurred."""

EXIT_INVALID_USAGE = 2
"""The command was invoked with invalid arguments or incomplete configuration."""

EXIT_AUTH_FAILURE = 3
"""Authentication failed (forged redirect, rejected grant, provider error)."""

EXIT_TIMEOUT = 4
"""No valid browser redirect was received before the login deadline."""

EXIT_STORAGE_ERROR = 5
"""The credential file could not be read or written."""

EXIT_NETWORK_ERROR = 6
"""The token endpoint stayed unreachable after all retries."""

EXIT_CANCELLED = 130
"""The operator interrupted the command (SIGINT)."""
