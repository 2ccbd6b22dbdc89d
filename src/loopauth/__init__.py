"""loopauth -- browser login for command-line tools without stored passwords.

The operator runs ``loopauth auth login``; a short-lived listener on
``127.0.0.1`` receives the identity provider's redirect, validates the
anti-forgery ``state`` and PKCE parameters, exchanges the one-time code for
a token, and stores the resulting credential for later invocations.

Typical workflow::

    loopauth auth login       # open the browser, store a credential
    loopauth auth token       # print a valid access token for scripts
    loopauth auth logout      # forget it

Modules:
    app: Typer application and CLI entry point.
    auth: Login core (challenge, listener, token exchange, store, orchestrator).
    models: Pydantic models shared across the package.
    config: XDG-aware configuration and precedence resolution.
    exceptions: Exception hierarchy with exit-code mapping.
    exit_codes: Numeric exit codes following clig.dev conventions.
    output: stdout/stderr formatting with Rich support.
"""

__version__ = "0.1.0"
