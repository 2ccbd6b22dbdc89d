"""Built-in CLI sub-commands for loopauth.

Modules:
    auth: ``loopauth auth`` -- login, status, token, logout, configure.
"""
