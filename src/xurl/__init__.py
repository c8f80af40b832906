"""xurl -- authentication core for a curl-like X API client.

Resolves the ``Authorization`` header for an outgoing request from
whatever the user has configured: OAuth2 user tokens (with transparent
refresh), an OAuth 1.0a credential set, or an app-only bearer token.
Credentials persist in a single JSON file, ``~/.xurl`` by default.

Typical workflow::

    xurl auth oauth2                                  # browser login
    xurl auth header https://api.x.com/2/users/me     # header value

Modules:
    app: Typer application and CLI entry point.
    auth: Credential store, OAuth1 signer, OAuth2 flow, orchestrator.
    models: Pydantic models shared across the package.
    config: Environment configuration and XDG paths.
    exceptions: Exception hierarchy with exit-code mapping.
    exit_codes: Numeric exit codes following clig.dev conventions.
    output: stdout/stderr formatting with Rich support.
"""

__version__ = "0.1.0"
