"""Auth commands -- register, inspect and clear stored credentials.

Provides the ``xurl auth`` sub-command group. Credentials are kept in the
token file managed by :class:`~xurl.auth.credential_store.CredentialStore`.

Typical workflow::

    xurl auth app --bearer-token AAAA...   # app-only access
    xurl auth oauth2                       # browser login for a user
    xurl auth status                       # what is stored
    xurl auth header https://api.x.com/2/users/me
"""

from __future__ import annotations

from typing import Optional

import typer

from xurl.exceptions import XurlError
from xurl.output import debug, error, info, print_data, print_record, success, suggest, warning


auth_app = typer.Typer(no_args_is_help=True)


def _orchestrator():  # noqa: ANN202
    """Build an orchestrator from the environment."""
    from xurl.auth.orchestrator import AuthOrchestrator
    from xurl.config import load_config

    orchestrator = AuthOrchestrator(load_config())
    debug(f"Token file: {orchestrator.store.path}")
    return orchestrator


def _fail(exc: XurlError) -> typer.Exit:
    error(str(exc))
    return typer.Exit(code=exc.exit_code)


@auth_app.command("app")
def auth_app_command(
    bearer_token: str = typer.Option(
        ..., "--bearer-token", help="Bearer token for app-only authentication."
    ),
) -> None:
    """Store an app-only bearer token.

    Example::

        xurl auth app --bearer-token AAAA...
    """
    try:
        _orchestrator().register_bearer(bearer_token)
    except XurlError as exc:
        raise _fail(exc) from None
    success("App authentication saved.")


@auth_app.command("oauth1")
def auth_oauth1(
    consumer_key: str = typer.Option(..., "--consumer-key", help="OAuth1 consumer key."),
    consumer_secret: str = typer.Option(..., "--consumer-secret", help="OAuth1 consumer secret."),
    access_token: str = typer.Option(..., "--access-token", help="OAuth1 access token."),
    token_secret: str = typer.Option(..., "--token-secret", help="OAuth1 token secret."),
) -> None:
    """Store the OAuth1 credential set used for request signing."""
    try:
        _orchestrator().register_oauth1(consumer_key, consumer_secret, access_token, token_secret)
    except XurlError as exc:
        raise _fail(exc) from None
    success("OAuth1 credentials saved.")


@auth_app.command("oauth2")
def auth_oauth2() -> None:
    """Log in through the browser with OAuth2 (PKCE).

    Requires ``CLIENT_ID`` and ``CLIENT_SECRET`` in the environment. The
    provider must redirect to ``REDIRECT_URI`` (default
    ``http://localhost:8080/callback``).
    """
    info("Opening the browser for authorization...")
    try:
        username = _orchestrator().login_oauth2()
    except XurlError as exc:
        raise _fail(exc) from None
    if username:
        success(f"OAuth2 authentication successful for {username}.")
    else:
        warning("Authorization finished, but no stored account matches the new token.")
        suggest("Check with: xurl auth status")


@auth_app.command("status")
def auth_status() -> None:
    """Show which credentials are stored."""
    try:
        status = _orchestrator().status()
    except XurlError as exc:
        raise _fail(exc) from None

    print_record(
        {
            "oauth2_accounts": status.oauth2_accounts,
            "oauth1": status.oauth1_configured,
            "app": status.bearer_configured,
        }
    )
    if not (status.oauth2_accounts or status.oauth1_configured or status.bearer_configured):
        suggest("Configure one with: xurl auth oauth2 | xurl auth oauth1 | xurl auth app")


@auth_app.command("clear")
def auth_clear(
    all_: bool = typer.Option(False, "--all", help="Clear every stored credential."),
    oauth1: bool = typer.Option(False, "--oauth1", help="Clear the OAuth1 credentials."),
    oauth2_username: Optional[str] = typer.Option(
        None, "--oauth2-username", help="Clear the OAuth2 token for this username."
    ),
    bearer: bool = typer.Option(False, "--bearer", help="Clear the bearer token."),
) -> None:
    """Remove stored credentials.

    Exactly one selector is applied, checked in the order ``--all``,
    ``--oauth1``, ``--oauth2-username``, ``--bearer``.
    """
    from xurl.models import ClearScope

    if all_:
        scope, message = ClearScope.ALL, "All authentication cleared."
    elif oauth1:
        scope, message = ClearScope.OAUTH1, "OAuth1 credentials cleared."
    elif oauth2_username:
        scope, message = ClearScope.OAUTH2, f"OAuth2 token cleared for {oauth2_username}."
    elif bearer:
        scope, message = ClearScope.BEARER, "Bearer token cleared."
    else:
        error("Nothing to clear.")
        suggest("Use --all, --oauth1, --oauth2-username USER or --bearer.")
        raise typer.Exit(code=2)

    try:
        orchestrator = _orchestrator()
        stored = orchestrator.store.list_oauth2_identities()
        if scope is ClearScope.OAUTH2 and oauth2_username not in stored:
            warning(f"No OAuth2 token stored for {oauth2_username}; nothing cleared.")
            return
        orchestrator.clear(scope, oauth2_username)
    except XurlError as exc:
        raise _fail(exc) from None
    success(message)


@auth_app.command("header")
def auth_header(
    url: str = typer.Argument(help="Full request URL, including any query string."),
    method: str = typer.Option("GET", "--method", "-X", help="HTTP method of the request."),
    auth_type: Optional[str] = typer.Option(
        None, "--auth", help="Force an auth type: app, oauth1 or oauth2."
    ),
    username: Optional[str] = typer.Option(
        None, "--username", "-u", help="OAuth2 account to use."
    ),
) -> None:
    """Print the Authorization header value for a request.

    The value goes to stdout; an anonymous request (nothing configured)
    prints nothing.

    Example::

        curl -H "Authorization: $(xurl auth header https://api.x.com/2/users/me)" ...
    """
    debug(f"Resolving header for {method.upper()} {url} (auth: {auth_type or 'auto'})")
    try:
        header = _orchestrator().resolve_header(method, url, auth_type, username)
    except XurlError as exc:
        raise _fail(exc) from None

    if header:
        print_data(header)
    else:
        info("No credentials configured; the request would be anonymous.")
