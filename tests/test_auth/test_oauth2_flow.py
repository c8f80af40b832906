"""Tests for the OAuth2 Authorization Code + PKCE flow."""

from __future__ import annotations

import base64
import hashlib
import socket
import threading
import urllib.request
from typing import Any, Optional
from unittest.mock import MagicMock, patch
from urllib.parse import parse_qs, urlparse

import httpx
import pytest

from xurl.auth.credential_store import CredentialStore
from xurl.auth.oauth2 import (
    SCOPES,
    FlowState,
    OAuth2Flow,
    PKCESession,
    generate_pkce_pair,
)
from xurl.exceptions import (
    AuthorizationError,
    CodeNotReceivedError,
    MissingConfigError,
    NetworkError,
    RefreshTokenNotFoundError,
    TokenNotFoundError,
)
from xurl.models import AuthScheme, Config, OAuth2Token

NOW = 1_700_000_000


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _make_token_response(
    access_token: str = "new-access",
    expires_in: Optional[int] = 3600,
    refresh_token: Optional[str] = "new-refresh",
) -> dict[str, object]:
    data: dict[str, object] = {"access_token": access_token, "token_type": "bearer"}
    if expires_in is not None:
        data["expires_in"] = expires_in
    if refresh_token is not None:
        data["refresh_token"] = refresh_token
    return data


def _mock_response(json_body: Any = None, status_code: int = 200) -> MagicMock:
    """Create a mock httpx.Response with the given JSON body and status."""
    mock_response = MagicMock(spec=httpx.Response)
    mock_response.status_code = status_code
    mock_response.json.return_value = json_body
    mock_response.text = str(json_body)

    if status_code >= 400:
        mock_response.raise_for_status.side_effect = httpx.HTTPStatusError(
            message=f"HTTP {status_code}",
            request=MagicMock(),
            response=mock_response,
        )
    else:
        mock_response.raise_for_status.return_value = None
    return mock_response


def _identity(username: str = "alice") -> MagicMock:
    return _mock_response({"data": {"id": "1", "name": "Alice", "username": username}})


class FakeListener:
    """Stands in for RedirectListener; returns *code* once the browser opened."""

    instances: list[FakeListener] = []

    def __init__(self, code: str = "auth-code", error: Optional[Exception] = None, **kwargs: Any):
        self.kwargs = kwargs
        self.code = code
        self.error = error
        self.started = False
        self.closed = False
        self.browser_opened = threading.Event()
        FakeListener.instances.append(self)

    def __enter__(self) -> FakeListener:
        self.started = True
        return self

    def __exit__(self, *args: object) -> None:
        self.closed = True

    def wait(self, timeout: Optional[float] = None) -> str:
        if not self.browser_opened.wait(2):
            raise CodeNotReceivedError("browser was never opened")
        if self.error is not None:
            raise self.error
        return self.code


def _flow(
    config: Config,
    store: CredentialStore,
    code: str = "auth-code",
    error: Optional[Exception] = None,
) -> tuple[OAuth2Flow, MagicMock]:
    FakeListener.instances = []

    def factory(**kwargs: Any) -> FakeListener:
        return FakeListener(code=code, error=error, **kwargs)

    def browser(url: str) -> bool:
        listener = FakeListener.instances[-1]
        assert listener.started, "browser opened before the listener started"
        listener.browser_opened.set()
        return True

    open_browser = MagicMock(side_effect=browser)
    flow = OAuth2Flow(
        config, store, open_browser=open_browser, listener_factory=factory, clock=lambda: NOW
    )
    return flow, open_browser


# ---------------------------------------------------------------------------
# PKCE
# ---------------------------------------------------------------------------


class TestPKCE:
    def test_pair_is_s256(self) -> None:
        verifier, challenge = generate_pkce_pair()
        assert 43 <= len(verifier) <= 128
        digest = hashlib.sha256(verifier.encode("ascii")).digest()
        assert challenge == base64.urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")

    def test_sessions_are_unique(self) -> None:
        first, second = PKCESession.generate(), PKCESession.generate()
        assert first.code_verifier != second.code_verifier
        assert first.csrf_token != second.csrf_token


class TestAuthorizationUrl:
    def test_query_parameters(self, config: Config, store: CredentialStore) -> None:
        flow = OAuth2Flow(config, store)
        session = PKCESession("verifier", "challenge", "state-1")
        parsed = urlparse(flow.authorization_url(session))
        query = {k: v[0] for k, v in parse_qs(parsed.query).items()}

        assert f"{parsed.scheme}://{parsed.netloc}{parsed.path}" == config.auth_url
        assert query == {
            "response_type": "code",
            "client_id": "client-123",
            "redirect_uri": "http://localhost:8080/callback",
            "scope": " ".join(SCOPES),
            "state": "state-1",
            "code_challenge": "challenge",
            "code_challenge_method": "S256",
        }

    def test_scope_superset(self) -> None:
        assert "tweet.read" in SCOPES
        assert "users.read" in SCOPES
        assert "tweet.write" in SCOPES
        assert "offline.access" in SCOPES


# ---------------------------------------------------------------------------
# authorize()
# ---------------------------------------------------------------------------


class TestAuthorize:
    def test_full_flow(self, config: Config, store: CredentialStore) -> None:
        flow, open_browser = _flow(config, store)
        with patch(
            "xurl.auth.oauth2.httpx.post", return_value=_mock_response(_make_token_response())
        ) as mock_post, patch(
            "xurl.auth.oauth2.httpx.get", return_value=_identity("alice")
        ) as mock_get:
            token = flow.authorize()

        assert token == "new-access"
        assert flow.state is FlowState.DONE

        listener = FakeListener.instances[-1]
        assert listener.closed is True
        assert listener.kwargs["port"] == 8080
        assert listener.kwargs["path"] == "/callback"
        open_browser.assert_called_once()
        auth_url = open_browser.call_args[0][0]
        state = parse_qs(urlparse(auth_url).query)["state"][0]
        assert listener.kwargs["expected_state"] == state

        data = mock_post.call_args.kwargs["data"]
        assert mock_post.call_args.args[0] == "https://auth.example.com/token"
        assert data["grant_type"] == "authorization_code"
        assert data["code"] == "auth-code"
        assert data["redirect_uri"] == config.redirect_uri
        assert data["client_id"] == "client-123"
        assert data["client_secret"] == "secret-456"
        challenge = parse_qs(urlparse(auth_url).query)["code_challenge"][0]
        digest = hashlib.sha256(data["code_verifier"].encode("ascii")).digest()
        assert challenge == base64.urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")

        assert mock_get.call_args.args[0] == config.info_url
        assert mock_get.call_args.kwargs["headers"]["Authorization"] == "Bearer new-access"

        stored = store.get(AuthScheme.OAUTH2, "alice")
        assert stored == OAuth2Token(
            access_token="new-access", refresh_token="new-refresh", expiration_time=NOW + 3600
        )

    def test_default_expiry(self, config: Config, store: CredentialStore) -> None:
        flow, _ = _flow(config, store)
        with patch(
            "xurl.auth.oauth2.httpx.post",
            return_value=_mock_response(_make_token_response(expires_in=None)),
        ), patch("xurl.auth.oauth2.httpx.get", return_value=_identity()):
            flow.authorize()

        stored = store.get(AuthScheme.OAUTH2, "alice")
        assert isinstance(stored, OAuth2Token)
        assert stored.expiration_time == NOW + 7200

    def test_missing_client_credentials(self, store: CredentialStore) -> None:
        flow, open_browser = _flow(Config(client_id="", client_secret=""), store)
        with patch("xurl.auth.oauth2.httpx.post") as mock_post:
            with pytest.raises(MissingConfigError, match="CLIENT_ID"):
                flow.authorize()
        assert FakeListener.instances == []
        open_browser.assert_not_called()
        mock_post.assert_not_called()

    def test_no_code_received(self, config: Config, store: CredentialStore) -> None:
        flow, _ = _flow(config, store, error=CodeNotReceivedError("timed out"))
        with pytest.raises(CodeNotReceivedError):
            flow.authorize()
        assert flow.state is FlowState.FAILED
        assert FakeListener.instances[-1].closed is True
        assert store.is_empty()

    def test_token_endpoint_rejects_code(self, config: Config, store: CredentialStore) -> None:
        flow, _ = _flow(config, store)
        with patch(
            "xurl.auth.oauth2.httpx.post",
            return_value=_mock_response({"error": "invalid_grant"}, status_code=400),
        ):
            with pytest.raises(AuthorizationError, match="400"):
                flow.authorize()
        assert flow.state is FlowState.FAILED

    def test_token_response_without_access_token(
        self, config: Config, store: CredentialStore
    ) -> None:
        flow, _ = _flow(config, store)
        with patch("xurl.auth.oauth2.httpx.post", return_value=_mock_response({"foo": "bar"})):
            with pytest.raises(AuthorizationError, match="access_token"):
                flow.authorize()

    def test_transport_error(self, config: Config, store: CredentialStore) -> None:
        flow, _ = _flow(config, store)
        with patch(
            "xurl.auth.oauth2.httpx.post", side_effect=httpx.ConnectError("connection refused")
        ):
            with pytest.raises(NetworkError, match="connection refused"):
                flow.authorize()

    def test_identity_without_username(self, config: Config, store: CredentialStore) -> None:
        flow, _ = _flow(config, store)
        with patch(
            "xurl.auth.oauth2.httpx.post", return_value=_mock_response(_make_token_response())
        ), patch("xurl.auth.oauth2.httpx.get", return_value=_mock_response({"data": {}})):
            with pytest.raises(NetworkError, match="username"):
                flow.authorize()
        assert flow.state is FlowState.FAILED
        assert store.is_empty()

    def test_identity_http_error(self, config: Config, store: CredentialStore) -> None:
        flow, _ = _flow(config, store)
        with patch(
            "xurl.auth.oauth2.httpx.post", return_value=_mock_response(_make_token_response())
        ), patch(
            "xurl.auth.oauth2.httpx.get", return_value=_mock_response({}, status_code=401)
        ):
            with pytest.raises(NetworkError):
                flow.authorize()

    def test_browser_failure_does_not_abort(self, config: Config, store: CredentialStore) -> None:
        flow, open_browser = _flow(config, store)
        original = open_browser.side_effect

        def refuse(url: str) -> bool:
            original(url)
            return False

        open_browser.side_effect = refuse
        with patch(
            "xurl.auth.oauth2.httpx.post", return_value=_mock_response(_make_token_response())
        ), patch("xurl.auth.oauth2.httpx.get", return_value=_identity()):
            assert flow.authorize() == "new-access"


def _free_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


class TestAuthorizeWithRealListener:
    def test_redirect_round_trip(self, config: Config, store: CredentialStore) -> None:
        port = _free_port()
        config = config.model_copy(
            update={"redirect_uri": f"http://127.0.0.1:{port}/callback"}
        )
        opener = urllib.request.build_opener(urllib.request.ProxyHandler({}))

        def browser(url: str) -> bool:
            state = parse_qs(urlparse(url).query)["state"][0]
            opener.open(
                f"http://127.0.0.1:{port}/callback?code=abc123&state={state}", timeout=5
            ).read()
            return True

        flow = OAuth2Flow(config, store, open_browser=browser, clock=lambda: NOW)
        with patch(
            "xurl.auth.oauth2.httpx.post", return_value=_mock_response(_make_token_response())
        ) as mock_post, patch("xurl.auth.oauth2.httpx.get", return_value=_identity("bob")):
            assert flow.authorize() == "new-access"

        assert mock_post.call_args.kwargs["data"]["code"] == "abc123"
        assert store.list_oauth2_identities() == ["bob"]


# ---------------------------------------------------------------------------
# Expiry, token_for() and refresh()
# ---------------------------------------------------------------------------


class TestExpiry:
    def test_boundary(self, config: Config, store: CredentialStore) -> None:
        flow = OAuth2Flow(config, store, clock=lambda: NOW)
        token = OAuth2Token(access_token="a", refresh_token="r", expiration_time=NOW)
        assert flow.is_expired(token) is True
        assert flow.is_expired(token, now=NOW - 1) is False
        later = OAuth2Token(access_token="a", refresh_token="r", expiration_time=NOW + 1)
        assert flow.is_expired(later) is False


class TestTokenFor:
    def test_valid_token_is_returned_without_network(
        self, config: Config, store: CredentialStore
    ) -> None:
        store.save_oauth2_token("alice", "cached", "refresh", NOW + 60)
        flow = OAuth2Flow(config, store, clock=lambda: NOW)
        with patch("xurl.auth.oauth2.httpx.post") as mock_post:
            assert flow.token_for("alice") == "cached"
            assert flow.token_for() == "cached"
        mock_post.assert_not_called()

    def test_expired_token_is_refreshed(self, config: Config, store: CredentialStore) -> None:
        store.save_oauth2_token("alice", "stale", "old-refresh", NOW)
        flow = OAuth2Flow(config, store, clock=lambda: NOW)
        with patch(
            "xurl.auth.oauth2.httpx.post", return_value=_mock_response(_make_token_response())
        ) as mock_post, patch("xurl.auth.oauth2.httpx.get", return_value=_identity("alice")):
            assert flow.token_for("alice") == "new-access"

        data = mock_post.call_args.kwargs["data"]
        assert data["grant_type"] == "refresh_token"
        assert data["refresh_token"] == "old-refresh"
        stored = store.get(AuthScheme.OAUTH2, "alice")
        assert stored == OAuth2Token(
            access_token="new-access", refresh_token="new-refresh", expiration_time=NOW + 3600
        )

    def test_unknown_username(self, config: Config, store: CredentialStore) -> None:
        store.save_oauth2_token("alice", "cached", "refresh", NOW + 60)
        flow = OAuth2Flow(config, store, clock=lambda: NOW)
        with pytest.raises(TokenNotFoundError, match="bob"):
            flow.token_for("bob")

    def test_no_identities(self, config: Config, store: CredentialStore) -> None:
        with pytest.raises(TokenNotFoundError):
            OAuth2Flow(config, store).token_for()


class TestRefresh:
    def test_keeps_previous_refresh_token(self, config: Config, store: CredentialStore) -> None:
        store.save_oauth2_token("alice", "stale", "old-refresh", NOW - 10)
        flow = OAuth2Flow(config, store, clock=lambda: NOW)
        with patch(
            "xurl.auth.oauth2.httpx.post",
            return_value=_mock_response(_make_token_response(refresh_token=None)),
        ), patch("xurl.auth.oauth2.httpx.get", return_value=_identity("alice")):
            flow.refresh("alice")

        stored = store.get(AuthScheme.OAUTH2, "alice")
        assert isinstance(stored, OAuth2Token)
        assert stored.refresh_token == "old-refresh"

    def test_defaults_to_first_identity(self, config: Config, store: CredentialStore) -> None:
        store.save_oauth2_token("alice", "a", "a-refresh", NOW - 10)
        store.save_oauth2_token("bob", "b", "b-refresh", NOW - 10)
        flow = OAuth2Flow(config, store, clock=lambda: NOW)
        with patch(
            "xurl.auth.oauth2.httpx.post", return_value=_mock_response(_make_token_response())
        ) as mock_post, patch("xurl.auth.oauth2.httpx.get", return_value=_identity("alice")):
            flow.refresh()
        assert mock_post.call_args.kwargs["data"]["refresh_token"] == "a-refresh"

    def test_without_refresh_token(self, config: Config, store: CredentialStore) -> None:
        store.save_oauth2_token("alice", "stale", None, NOW - 10)
        flow = OAuth2Flow(config, store, clock=lambda: NOW)
        with patch("xurl.auth.oauth2.httpx.post") as mock_post:
            with pytest.raises(RefreshTokenNotFoundError):
                flow.token_for("alice")
        mock_post.assert_not_called()

    def test_without_any_identity(self, config: Config, store: CredentialStore) -> None:
        with pytest.raises(TokenNotFoundError):
            OAuth2Flow(config, store).refresh()

    def test_rejected_refresh_token(self, config: Config, store: CredentialStore) -> None:
        store.save_oauth2_token("alice", "stale", "revoked", NOW - 10)
        flow = OAuth2Flow(config, store, clock=lambda: NOW)
        with patch(
            "xurl.auth.oauth2.httpx.post",
            return_value=_mock_response({"error": "invalid_request"}, status_code=400),
        ):
            with pytest.raises(AuthorizationError):
                flow.refresh("alice")
        assert flow.state is FlowState.FAILED
        stored = store.get(AuthScheme.OAUTH2, "alice")
        assert isinstance(stored, OAuth2Token)
        assert stored.access_token == "stale"

    def test_requires_client_credentials(self, store: CredentialStore) -> None:
        store.save_oauth2_token("alice", "stale", "refresh", NOW - 10)
        flow = OAuth2Flow(Config(), store, clock=lambda: NOW)
        with pytest.raises(MissingConfigError):
            flow.refresh("alice")


class TestExpiresIn:
    def _refresh_with(
        self, config: Config, store: CredentialStore, token_response: dict[str, object]
    ) -> OAuth2Flow:
        store.save_oauth2_token("alice", "stale", "old-refresh", NOW - 10)
        flow = OAuth2Flow(config, store, clock=lambda: NOW)
        with patch(
            "xurl.auth.oauth2.httpx.post", return_value=_mock_response(token_response)
        ), patch("xurl.auth.oauth2.httpx.get", return_value=_identity("alice")):
            flow.refresh("alice")
        return flow

    def test_zero_is_not_replaced_by_default(self, config: Config, store: CredentialStore) -> None:
        self._refresh_with(config, store, _make_token_response(expires_in=0))
        stored = store.get(AuthScheme.OAUTH2, "alice")
        assert isinstance(stored, OAuth2Token)
        assert stored.expiration_time == NOW

    def test_numeric_string_is_accepted(self, config: Config, store: CredentialStore) -> None:
        response = _make_token_response(expires_in=None)
        response["expires_in"] = "600"
        self._refresh_with(config, store, response)
        stored = store.get(AuthScheme.OAUTH2, "alice")
        assert isinstance(stored, OAuth2Token)
        assert stored.expiration_time == NOW + 600

    def test_non_numeric_is_an_authorization_error(
        self, config: Config, store: CredentialStore
    ) -> None:
        response = _make_token_response(expires_in=None)
        response["expires_in"] = "abc"
        with pytest.raises(AuthorizationError, match="expires_in"):
            self._refresh_with(config, store, response)
        stored = store.get(AuthScheme.OAUTH2, "alice")
        assert isinstance(stored, OAuth2Token)
        assert stored.access_token == "stale"

    def test_non_numeric_fails_authorize(self, config: Config, store: CredentialStore) -> None:
        flow, _ = _flow(config, store)
        response = _make_token_response(expires_in=None)
        response["expires_in"] = {"seconds": 60}
        with patch(
            "xurl.auth.oauth2.httpx.post", return_value=_mock_response(response)
        ), patch("xurl.auth.oauth2.httpx.get", return_value=_identity()) as mock_get:
            with pytest.raises(AuthorizationError):
                flow.authorize()
        mock_get.assert_not_called()
        assert flow.state is FlowState.FAILED
        assert store.list_oauth2_identities() == []


class TestEmptyUsername:
    def test_token_for_does_not_fall_back_to_first(
        self, config: Config, store: CredentialStore
    ) -> None:
        store.save_oauth2_token("alice", "cached", "refresh", NOW + 60)
        flow = OAuth2Flow(config, store, clock=lambda: NOW)
        with pytest.raises(TokenNotFoundError):
            flow.token_for("")

    def test_refresh_does_not_fall_back_to_first(
        self, config: Config, store: CredentialStore
    ) -> None:
        store.save_oauth2_token("alice", "stale", "refresh", NOW - 10)
        flow = OAuth2Flow(config, store, clock=lambda: NOW)
        with patch("xurl.auth.oauth2.httpx.post") as mock_post:
            with pytest.raises(TokenNotFoundError):
                flow.refresh("")
        mock_post.assert_not_called()
