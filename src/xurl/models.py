"""Canonical Pydantic models shared across all xurl modules.

This is the single source of truth for data shapes in the project. The
models fall into three groups:

**Credentials** -- the three mutually-exclusive credential kinds:
    :class:`BearerToken`, :class:`OAuth1Credentials`, and
    :class:`OAuth2Token`, together forming the :data:`Credential` union.

**Persistence** -- :class:`TokenFile`, the JSON document written by
:class:`~xurl.auth.credential_store.CredentialStore`.

**Configuration and status** -- :class:`Config` (loaded from the
environment by :func:`~xurl.config.load_config`) and :class:`AuthStatus`.

All models use Pydantic v2.
"""

from __future__ import annotations

import enum
from pathlib import Path
from typing import Optional, Union

from pydantic import BaseModel, Field


class AuthScheme(str, enum.Enum):
    """Credential schemes accepted by ``--auth`` and the store."""

    APP = "app"
    OAUTH1 = "oauth1"
    OAUTH2 = "oauth2"


class ClearScope(str, enum.Enum):
    """Which store slots :meth:`~xurl.auth.credential_store.CredentialStore.clear` removes."""

    ALL = "all"
    OAUTH1 = "oauth1"
    OAUTH2 = "oauth2"
    BEARER = "bearer"


# --- Credentials ---


class BearerToken(BaseModel):
    """Static app-only bearer token. Never expires and is never refreshed."""

    token: str


class OAuth1Credentials(BaseModel):
    """The single OAuth 1.0a credential set used for request signing."""

    access_token: str
    token_secret: str
    consumer_key: str
    consumer_secret: str


class OAuth2Token(BaseModel):
    """An OAuth2 access/refresh token pair for one user account.

    Attributes:
        access_token: Token sent as ``Authorization: Bearer``.
        refresh_token: Token exchanged for a new access token once the
            current one expires.  ``None`` when the provider did not issue
            one.
        expiration_time: Unix timestamp (seconds) at which
            ``access_token`` stops being usable.
    """

    access_token: str
    refresh_token: Optional[str] = None
    expiration_time: int = Field(description="Unix seconds; expired when now >= this")


Credential = Union[BearerToken, OAuth1Credentials, OAuth2Token]


# --- Persistence ---


class TokenFile(BaseModel):
    """On-disk layout of the credential file.

    Example::

        {
          "oauth2_tokens": {
            "alice": {"access_token": "...", "refresh_token": "...",
                      "expiration_time": 1700000000}
          },
          "oauth1_tokens": {"access_token": "...", "token_secret": "...",
                            "consumer_key": "...", "consumer_secret": "..."},
          "bearer_token": "AAAA..."
        }
    """

    oauth2_tokens: dict[str, OAuth2Token] = Field(default_factory=dict)
    oauth1_tokens: Optional[OAuth1Credentials] = None
    bearer_token: Optional[str] = None


# --- Configuration ---


class Config(BaseModel):
    """OAuth client settings and endpoint URLs.

    Built from environment variables by :func:`~xurl.config.load_config`.
    ``client_id`` and ``client_secret`` may be empty; they are only
    required once the interactive OAuth2 flow or a refresh has to run.
    """

    client_id: str = ""
    client_secret: str = ""
    redirect_uri: str = "http://localhost:8080/callback"
    auth_url: str = "https://x.com/i/oauth2/authorize"
    token_url: str = "https://api.x.com/2/oauth2/token"
    api_base_url: str = "https://api.x.com"
    info_url: str = "https://api.x.com/2/users/me"
    callback_timeout: float = Field(
        default=300.0, description="Seconds to wait for the OAuth2 redirect"
    )
    request_timeout: float = Field(
        default=30.0, description="Timeout for token and identity requests"
    )
    token_file: Path = Field(default_factory=lambda: Path.home() / ".xurl")

    @property
    def has_client_credentials(self) -> bool:
        """Whether both the client id and the client secret are set."""
        return bool(self.client_id and self.client_secret)


class AuthStatus(BaseModel):
    """Summary of stored credentials, rendered by ``xurl auth status``."""

    oauth2_accounts: list[str] = Field(default_factory=list)
    oauth1_configured: bool = False
    bearer_configured: bool = False
