"""Pick a credential for a request and render its ``Authorization`` header.

:class:`AuthOrchestrator` is the single entry point request builders use.
It owns one :class:`~xurl.auth.credential_store.CredentialStore` and one
:class:`~xurl.auth.oauth2.OAuth2Flow` and resolves a header value from an
explicit auth type, or, when none is given, from whatever is configured:

1. a stored OAuth2 identity (refreshed when expired),
2. the stored OAuth1 credential set,
3. the interactive OAuth2 flow when client credentials are configured,
4. the stored app-only bearer token,
5. otherwise an empty header, meaning an anonymous request.
"""

from __future__ import annotations

import logging
from typing import Optional, Union
from urllib.parse import parse_qsl, urlsplit, urlunsplit

from xurl.auth.credential_store import CredentialStore
from xurl.auth.oauth1 import oauth1_header
from xurl.auth.oauth2 import OAuth2Flow
from xurl.exceptions import InvalidAuthTypeError, TokenNotFoundError, WrongTokenKindError
from xurl.models import (
    AuthScheme,
    AuthStatus,
    BearerToken,
    ClearScope,
    Config,
    OAuth1Credentials,
)

logger = logging.getLogger(__name__)


class AuthOrchestrator:
    """Resolve ``Authorization`` header values and manage stored credentials.

    Args:
        config: Client credentials and endpoints.
        store: Credential store to use; one at ``config.token_file`` is
            created when omitted.
        flow: OAuth2 flow to use; one over *config* and the store is
            created when omitted.
    """

    def __init__(
        self,
        config: Config,
        store: Optional[CredentialStore] = None,
        flow: Optional[OAuth2Flow] = None,
    ) -> None:
        self._config = config
        self._store = store if store is not None else CredentialStore(config.token_file)
        self._flow = flow if flow is not None else OAuth2Flow(config, self._store)

    @property
    def store(self) -> CredentialStore:
        return self._store

    @property
    def flow(self) -> OAuth2Flow:
        return self._flow

    def resolve_header(
        self,
        method: str,
        url: str,
        auth_type: Optional[str] = None,
        username: Optional[str] = None,
    ) -> str:
        """Return the ``Authorization`` header value for one request.

        Args:
            method: HTTP method of the request.
            url: Full request URL. Query parameters are covered by OAuth1
                signatures.
            auth_type: ``"app"``, ``"oauth1"`` or ``"oauth2"``, in any case.
                ``None`` selects automatically.
            username: OAuth2 identity to use.

        Returns:
            ``Bearer <token>``, ``OAuth ...``, or ``""`` when nothing at all
            is configured.

        Raises:
            InvalidAuthTypeError: If *auth_type* is not a known scheme.
            TokenNotFoundError: If the requested credential is not stored.
        """
        if auth_type is None:
            return self._resolve_auto(method, url, username)

        try:
            scheme = AuthScheme(auth_type.lower())
        except ValueError:
            raise InvalidAuthTypeError(
                f"Invalid auth type: {auth_type!r} (expected app, oauth1 or oauth2)"
            ) from None

        if scheme is AuthScheme.APP:
            credential = self._store.get(AuthScheme.APP)
            if not isinstance(credential, BearerToken):
                raise TokenNotFoundError("Bearer token not found")
            return f"Bearer {credential.token}"
        if scheme is AuthScheme.OAUTH1:
            return self._oauth1_header(method, url)

        if username is None and self._store.first_oauth2_identity() is None:
            logger.debug("No stored OAuth2 identity; starting the interactive flow")
            return f"Bearer {self._flow.authorize()}"
        return f"Bearer {self._flow.token_for(username)}"

    def _resolve_auto(self, method: str, url: str, username: Optional[str]) -> str:
        if username is not None:
            if username in self._store.list_oauth2_identities():
                return f"Bearer {self._flow.token_for(username)}"
        elif self._store.first_oauth2_identity() is not None:
            return f"Bearer {self._flow.token_for()}"

        if self._store.has_oauth1():
            return self._oauth1_header(method, url)
        if self._config.has_client_credentials:
            logger.debug("No stored user credentials; starting the interactive flow")
            return f"Bearer {self._flow.authorize()}"
        if self._store.has_bearer():
            return self.resolve_header(method, url, AuthScheme.APP.value)
        return ""

    def _oauth1_header(self, method: str, url: str) -> str:
        credentials = self._store.get(AuthScheme.OAUTH1)
        if credentials is None:
            raise TokenNotFoundError("OAuth1 token not found")
        if not isinstance(credentials, OAuth1Credentials):
            raise WrongTokenKindError("Non-OAuth1 token found when looking for OAuth1 credentials")
        base_url, query = _split_query(url)
        return oauth1_header(method, base_url, credentials, query)

    # ------------------------------------------------------------------ #
    # Registration
    # ------------------------------------------------------------------ #

    def register_bearer(self, token: str) -> None:
        """Store the app-only bearer token."""
        self._store.save_bearer_token(token)

    def register_oauth1(
        self,
        consumer_key: str,
        consumer_secret: str,
        access_token: str,
        token_secret: str,
    ) -> None:
        """Store the OAuth1 credential set."""
        self._store.save_oauth1_credentials(
            access_token, token_secret, consumer_key, consumer_secret
        )

    def login_oauth2(self) -> str:
        """Run the interactive OAuth2 flow and return the stored username."""
        access_token = self._flow.authorize()
        for name in self._store.list_oauth2_identities():
            token = self._store.get(AuthScheme.OAUTH2, name)
            if token is not None and getattr(token, "access_token", None) == access_token:
                return name
        return ""

    def clear(self, scope: Union[ClearScope, str], username: Optional[str] = None) -> None:
        """Remove stored credentials; see :meth:`CredentialStore.clear`."""
        self._store.clear(scope, username)

    def status(self) -> AuthStatus:
        """Summarise which credentials are stored."""
        return AuthStatus(
            oauth2_accounts=self._store.list_oauth2_identities(),
            oauth1_configured=self._store.has_oauth1(),
            bearer_configured=self._store.has_bearer(),
        )


def _split_query(url: str) -> tuple[str, list[tuple[str, str]]]:
    """Separate *url* into its query-less form and its decoded query pairs."""
    parts = urlsplit(url)
    base = urlunsplit((parts.scheme, parts.netloc, parts.path, "", ""))
    return base, parse_qsl(parts.query, keep_blank_values=True)
