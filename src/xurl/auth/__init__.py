"""Authentication core for xurl.

This package turns stored credentials into ``Authorization`` header values
for X API requests. Three credential kinds are supported: app-only bearer
tokens, OAuth 1.0a user credentials, and OAuth2 user tokens obtained with
the Authorization Code + PKCE flow.

The main entry points are:

- :class:`AuthOrchestrator` -- picks a credential and renders the header.
- :class:`CredentialStore` -- the JSON token file on disk.
- :class:`OAuth2Flow` -- browser login, code exchange and token refresh.
- :class:`RedirectListener` -- loopback server that captures the redirect.
- :func:`oauth1_header` -- HMAC-SHA1 request signing.

Typical usage::

    from xurl.auth import AuthOrchestrator
    from xurl.config import load_config

    orchestrator = AuthOrchestrator(load_config())
    header = orchestrator.resolve_header("GET", "https://api.x.com/2/users/me")
"""

from xurl.auth.credential_store import CredentialStore
from xurl.auth.listener import CallbackSignal, RedirectListener
from xurl.auth.oauth1 import oauth1_header
from xurl.auth.oauth2 import FlowState, OAuth2Flow, PKCESession, generate_pkce_pair
from xurl.auth.orchestrator import AuthOrchestrator

__all__ = [
    "AuthOrchestrator",
    "CallbackSignal",
    "CredentialStore",
    "FlowState",
    "OAuth2Flow",
    "PKCESession",
    "RedirectListener",
    "generate_pkce_pair",
    "oauth1_header",
]
