"""OAuth2 Authorization Code flow with PKCE, plus token refresh.

This module provides :class:`OAuth2Flow`, which performs the full OAuth2
Authorization Code grant with PKCE (:rfc:`7636`) against the configured
provider and keeps the resulting tokens in the
:class:`~xurl.auth.credential_store.CredentialStore`:

1. Opens the authorization URL in the user's browser.
2. Captures the redirect on a :class:`~xurl.auth.listener.RedirectListener`.
3. Exchanges the authorization code for access and refresh tokens.
4. Resolves the account's username from the identity endpoint.
5. Stores the tokens under that username.

Stored tokens are refreshed transparently by :meth:`OAuth2Flow.token_for`
once they expire.

Also exports :func:`generate_pkce_pair` and :class:`PKCESession`.
"""

from __future__ import annotations

import base64
import enum
import hashlib
import logging
import secrets
import threading
import time
import webbrowser
from dataclasses import dataclass
from typing import Any, Callable, Optional
from urllib.parse import urlencode, urlparse

import httpx

from xurl.auth.credential_store import CredentialStore
from xurl.auth.listener import LOOPBACK_HOSTS, RedirectListener
from xurl.config import require_client_credentials
from xurl.exceptions import (
    AuthorizationError,
    NetworkError,
    RefreshTokenNotFoundError,
    TokenNotFoundError,
    WrongTokenKindError,
)
from xurl.models import AuthScheme, Config, OAuth2Token

logger = logging.getLogger(__name__)

DEFAULT_EXPIRES_IN = 7200

READ_SCOPES = (
    "block.read",
    "bookmark.read",
    "dm.read",
    "follows.read",
    "like.read",
    "list.read",
    "mute.read",
    "space.read",
    "tweet.read",
    "timeline.read",
    "users.read",
)
WRITE_SCOPES = (
    "block.write",
    "bookmark.write",
    "dm.write",
    "follows.write",
    "like.write",
    "list.write",
    "mute.write",
    "tweet.write",
    "tweet.moderate.write",
    "timeline.write",
    "media.write",
)
OTHER_SCOPES = ("offline.access",)

SCOPES = READ_SCOPES + WRITE_SCOPES + OTHER_SCOPES
"""Every scope xurl asks for. Narrower grants are not supported."""


def generate_pkce_pair() -> tuple[str, str]:
    """Generate a PKCE code_verifier and code_challenge (S256).

    Returns:
        A tuple of ``(code_verifier, code_challenge)``.
    """
    # RFC 7636: 43-128 characters from unreserved character set
    code_verifier = secrets.token_urlsafe(64)[:128]
    digest = hashlib.sha256(code_verifier.encode("ascii")).digest()
    code_challenge = base64.urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")
    return code_verifier, code_challenge


@dataclass(frozen=True)
class PKCESession:
    """Per-attempt secrets. Never persisted and never reused."""

    code_verifier: str
    code_challenge: str
    csrf_token: str

    @classmethod
    def generate(cls) -> PKCESession:
        verifier, challenge = generate_pkce_pair()
        return cls(verifier, challenge, secrets.token_urlsafe(32))


class FlowState(str, enum.Enum):
    """Progress of one authorization attempt."""

    IDLE = "idle"
    AWAITING_USER_CONSENT = "awaiting_user_consent"
    AWAITING_REDIRECT = "awaiting_redirect"
    EXCHANGING_CODE = "exchanging_code"
    FETCHING_IDENTITY = "fetching_identity"
    PERSISTING = "persisting"
    DONE = "done"
    FAILED = "failed"


class OAuth2Flow:
    """Obtain, refresh, and persist OAuth2 user tokens.

    Args:
        config: Client credentials and endpoint URLs.
        store: Where tokens are read from and written to.
        open_browser: Callable that opens a URL; defaults to
            :func:`webbrowser.open`.
        listener_factory: Builds the redirect listener; receives ``port``,
            ``path``, ``hosts`` and ``expected_state`` keyword arguments.
        clock: Returns the current Unix time in seconds.
    """

    def __init__(
        self,
        config: Config,
        store: CredentialStore,
        open_browser: Optional[Callable[[str], Any]] = None,
        listener_factory: Callable[..., RedirectListener] = RedirectListener,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._config = config
        self._store = store
        self._open_browser = open_browser or webbrowser.open
        self._listener_factory = listener_factory
        self._clock = clock
        self._state = FlowState.IDLE

    @property
    def state(self) -> FlowState:
        """The state reached by the most recent authorization or refresh."""
        return self._state

    # ------------------------------------------------------------------ #
    # Interactive authorization
    # ------------------------------------------------------------------ #

    def authorization_url(self, session: PKCESession) -> str:
        """Build the provider authorization URL for *session*."""
        params = {
            "response_type": "code",
            "client_id": self._config.client_id,
            "redirect_uri": self._config.redirect_uri,
            "scope": " ".join(SCOPES),
            "state": session.csrf_token,
            "code_challenge": session.code_challenge,
            "code_challenge_method": "S256",
        }
        separator = "&" if "?" in self._config.auth_url else "?"
        return f"{self._config.auth_url}{separator}{urlencode(params)}"

    def authorize(self) -> str:
        """Run the full interactive flow and return the new access token.

        Raises:
            MissingConfigError: If the client id or secret is not configured.
            ListenerBindError: If the redirect listener cannot bind.
            CodeNotReceivedError: If no redirect arrives before
                ``config.callback_timeout``.
            AuthorizationError: If the provider denies access or rejects the
                code exchange.
            NetworkError: On transport failures or a bad identity response.
            StoreIOError: If the tokens cannot be persisted.
        """
        require_client_credentials(self._config)
        self._state = FlowState.IDLE
        try:
            session = PKCESession.generate()
            url = self.authorization_url(session)
            self._transition(FlowState.AWAITING_USER_CONSENT)

            port, path, hosts = _listener_target(self._config.redirect_uri)
            with self._listener_factory(
                port=port, path=path, hosts=hosts, expected_state=session.csrf_token
            ) as listener:
                # Open browser in a separate thread to avoid blocking
                threading.Thread(target=self._launch_browser, args=(url,), daemon=True).start()
                self._transition(FlowState.AWAITING_REDIRECT)
                code = listener.wait(self._config.callback_timeout)

            self._transition(FlowState.EXCHANGING_CODE)
            token_data = self._request_token(
                {
                    "grant_type": "authorization_code",
                    "code": code,
                    "redirect_uri": self._config.redirect_uri,
                    "code_verifier": session.code_verifier,
                }
            )
            return self._complete(token_data)
        except Exception:
            self._state = FlowState.FAILED
            raise

    def _launch_browser(self, url: str) -> None:
        try:
            opened = self._open_browser(url)
        except Exception as exc:  # webbrowser backends raise assorted errors
            logger.warning("Could not open a browser (%s). Visit this URL to authorize:\n%s", exc, url)
            return
        if opened is False:
            logger.warning("Could not open a browser. Visit this URL to authorize:\n%s", url)

    # ------------------------------------------------------------------ #
    # Stored tokens and refresh
    # ------------------------------------------------------------------ #

    def is_expired(self, token: OAuth2Token, now: Optional[float] = None) -> bool:
        """Whether *token* must be refreshed. A token expiring this second counts."""
        if now is None:
            now = self._clock()
        return int(now) >= token.expiration_time

    def token_for(self, username: Optional[str] = None) -> str:
        """Return a usable access token for a stored identity.

        Refreshes transparently when the stored token has expired.

        Args:
            username: Identity to use; the first stored one when omitted.

        Raises:
            TokenNotFoundError: If the identity (or any identity) is unknown.
        """
        name, token = self._lookup(username)
        if self.is_expired(token):
            logger.debug("OAuth2 token for %s expired; refreshing", name)
            return self.refresh(name)
        return token.access_token

    def refresh(self, username: Optional[str] = None) -> str:
        """Exchange the stored refresh token for a new access token.

        Args:
            username: Identity to refresh; the first stored one when omitted.

        Returns:
            The new access token, also written to the store.

        Raises:
            TokenNotFoundError: If the identity is unknown.
            RefreshTokenNotFoundError: If it has no refresh token.
            MissingConfigError: If the client id or secret is not configured.
            AuthorizationError: If the provider rejects the refresh token.
            NetworkError: On transport failures.
        """
        name, token = self._lookup(username)
        if not token.refresh_token:
            raise RefreshTokenNotFoundError(f"No refresh token stored for {name}")
        require_client_credentials(self._config)
        try:
            self._transition(FlowState.EXCHANGING_CODE)
            token_data = self._request_token(
                {"grant_type": "refresh_token", "refresh_token": token.refresh_token}
            )
            return self._complete(token_data, previous_refresh_token=token.refresh_token)
        except Exception:
            self._state = FlowState.FAILED
            raise

    def _lookup(self, username: Optional[str]) -> tuple[str, OAuth2Token]:
        name = username if username is not None else self._store.first_oauth2_identity()
        if name is None:
            raise TokenNotFoundError("No OAuth2 tokens found")
        token = self._store.get(AuthScheme.OAUTH2, name)
        if token is None:
            raise TokenNotFoundError(f"No cached OAuth2 token found for {name}")
        if not isinstance(token, OAuth2Token):
            raise WrongTokenKindError("Non-OAuth2 token found when looking for an OAuth2 token")
        return name, token

    # ------------------------------------------------------------------ #
    # Provider calls
    # ------------------------------------------------------------------ #

    def _request_token(self, data: dict[str, str]) -> dict[str, Any]:
        """POST *data* plus client credentials to the token endpoint.

        Raises:
            AuthorizationError: On an HTTP error status, a non-JSON body, a
                response without ``access_token``, or a non-integer
                ``expires_in``. A missing ``expires_in`` becomes
                :data:`DEFAULT_EXPIRES_IN`.
            NetworkError: On transport failures.
        """
        data = {
            **data,
            "client_id": self._config.client_id,
            "client_secret": self._config.client_secret,
        }
        try:
            response = httpx.post(
                self._config.token_url,
                data=data,
                headers={"Accept": "application/json"},
                timeout=self._config.request_timeout,
            )
            response.raise_for_status()
            token_data: dict[str, Any] = response.json()
        except httpx.HTTPStatusError as exc:
            raise AuthorizationError(
                f"Token request failed with status {exc.response.status_code}: "
                f"{exc.response.text}"
            ) from exc
        except httpx.HTTPError as exc:
            raise NetworkError(f"Token request failed: {exc}") from exc
        except ValueError as exc:
            raise AuthorizationError(f"Token endpoint returned invalid JSON: {exc}") from exc

        if not isinstance(token_data, dict) or "access_token" not in token_data:
            raise AuthorizationError("Token response missing 'access_token' field")

        expires_in = token_data.get("expires_in")
        if expires_in is None:
            token_data["expires_in"] = DEFAULT_EXPIRES_IN
        else:
            try:
                token_data["expires_in"] = int(expires_in)
            except (TypeError, ValueError):
                raise AuthorizationError(
                    f"Token response has invalid 'expires_in': {expires_in!r}"
                ) from None
        return token_data

    def fetch_username(self, access_token: str) -> str:
        """Resolve the account name behind *access_token*.

        Raises:
            NetworkError: If the request fails or the body has no
                ``data.username`` string.
        """
        try:
            response = httpx.get(
                self._config.info_url,
                headers={"Authorization": f"Bearer {access_token}"},
                timeout=self._config.request_timeout,
            )
            response.raise_for_status()
            body = response.json()
        except httpx.HTTPError as exc:
            raise NetworkError(f"Identity request failed: {exc}") from exc
        except ValueError as exc:
            raise NetworkError(f"Identity endpoint returned invalid JSON: {exc}") from exc

        data = body.get("data") if isinstance(body, dict) else None
        username = data.get("username") if isinstance(data, dict) else None
        if not isinstance(username, str) or not username:
            raise NetworkError("Missing username field in identity response")
        return username

    def _complete(
        self, token_data: dict[str, Any], previous_refresh_token: Optional[str] = None
    ) -> str:
        """Fetch the identity for a fresh token response and persist it."""
        access_token = str(token_data["access_token"])

        self._transition(FlowState.FETCHING_IDENTITY)
        username = self.fetch_username(access_token)

        self._transition(FlowState.PERSISTING)
        refresh_token = token_data.get("refresh_token") or previous_refresh_token
        self._store.save_oauth2_token(
            username,
            access_token,
            refresh_token,
            int(self._clock()) + token_data["expires_in"],
        )
        self._transition(FlowState.DONE)
        return access_token

    def _transition(self, state: FlowState) -> None:
        logger.debug("OAuth2 flow: %s -> %s", self._state.value, state.value)
        self._state = state


def _listener_target(redirect_uri: str) -> tuple[int, str, tuple[str, ...]]:
    """Derive the listener port, path and hosts from the redirect URI."""
    parsed = urlparse(redirect_uri)
    port = parsed.port or (443 if parsed.scheme == "https" else 80)
    host = parsed.hostname or "localhost"
    hosts = (host,) if host in LOOPBACK_HOSTS else LOOPBACK_HOSTS
    return port, parsed.path or "/", hosts
