"""Persistent credential store backed by a single JSON file.

Stores every credential xurl knows about in one file, ``~/.xurl`` by
default (see :func:`~xurl.config.default_token_file`):

* ``oauth2_tokens`` -- one :class:`~xurl.models.OAuth2Token` per username,
* ``oauth1_tokens`` -- at most one :class:`~xurl.models.OAuth1Credentials`,
* ``bearer_token`` -- at most one app-only bearer token string.

The file is loaded lazily on first access. Every mutation rewrites the
whole file atomically via :func:`~xurl.config._atomic_write` with
``0o600`` permissions. A corrupt or unreadable file degrades to an empty
store instead of failing the process.

Mutations are serialised with an in-process lock and, on POSIX, an
advisory ``flock`` on ``<file>.lock``; the file is re-read under the lock
before each mutation so that two concurrent ``xurl`` invocations do not
overwrite each other's tokens.

When the store has no OAuth1 set or no bearer token and a legacy
``~/.twurlrc`` exists, its first profile and bearer token are imported.

See Also:
    :class:`~xurl.auth.orchestrator.AuthOrchestrator` -- the owner of the store.
"""

from __future__ import annotations

import contextlib
import json
import logging
import threading
from pathlib import Path
from typing import Any, Iterator, Optional, Union

import yaml
from pydantic import ValidationError

from xurl.config import _atomic_write, default_token_file
from xurl.exceptions import InvalidUsageError, StoreIOError, WrongTokenKindError
from xurl.models import (
    AuthScheme,
    BearerToken,
    ClearScope,
    Credential,
    OAuth1Credentials,
    OAuth2Token,
    TokenFile,
)

try:
    import fcntl
except ImportError:  # pragma: no cover - Windows
    fcntl = None  # type: ignore[assignment]

logger = logging.getLogger(__name__)


class CredentialStore:
    """Read/write all credentials held in the token file.

    Args:
        path: Location of the token file. Defaults to
            :func:`~xurl.config.default_token_file`.
        twurlrc_path: Location of a legacy twurl config to import from.
            Defaults to ``~/.twurlrc``. Pass ``import_twurlrc=False`` to
            skip the import entirely.
        import_twurlrc: Whether to import missing OAuth1/bearer credentials
            from *twurlrc_path* on first load.

    Example::

        store = CredentialStore(Path("/tmp/tokens.json"))
        store.put("oauth2", OAuth2Token(access_token="a", refresh_token="r",
                                        expiration_time=1700000000), "alice")
        assert store.get("oauth2", "alice").access_token == "a"
    """

    def __init__(
        self,
        path: Optional[Path] = None,
        twurlrc_path: Optional[Path] = None,
        import_twurlrc: bool = True,
    ) -> None:
        self._path = Path(path) if path is not None else default_token_file()
        self._twurlrc_path = twurlrc_path
        self._import_twurlrc = import_twurlrc
        self._data: Optional[TokenFile] = None
        self._lock = threading.RLock()

    @property
    def path(self) -> Path:
        """The filesystem path to the token file."""
        return self._path

    # ------------------------------------------------------------------ #
    # Queries
    # ------------------------------------------------------------------ #

    def get(
        self, scheme: Union[AuthScheme, str], selector: Optional[str] = None
    ) -> Optional[Credential]:
        """Return the credential stored for *scheme*, or ``None``.

        Args:
            scheme: ``"app"``, ``"oauth1"`` or ``"oauth2"``.
            selector: Username for OAuth2; ignored for the other schemes.
                When omitted for OAuth2, the first stored identity is used.

        Returns:
            A :class:`~xurl.models.BearerToken`,
            :class:`~xurl.models.OAuth1Credentials` or
            :class:`~xurl.models.OAuth2Token`, or ``None`` if the slot is
            empty.
        """
        scheme = _coerce_scheme(scheme)
        data = self._loaded()
        if scheme is AuthScheme.APP:
            if data.bearer_token is None:
                return None
            return BearerToken(token=data.bearer_token)
        if scheme is AuthScheme.OAUTH1:
            return data.oauth1_tokens
        if selector is None:
            selector = self.first_oauth2_identity()
            if selector is None:
                return None
        return data.oauth2_tokens.get(selector)

    def list_oauth2_identities(self) -> list[str]:
        """Return the usernames that have a stored OAuth2 token."""
        return list(self._loaded().oauth2_tokens)

    def first_oauth2_identity(self) -> Optional[str]:
        """Return the first stored OAuth2 username, in file order.

        With several identities stored the choice is arbitrary from the
        user's point of view; callers should prefer an explicit username.
        """
        return next(iter(self._loaded().oauth2_tokens), None)

    def has_oauth1(self) -> bool:
        """Whether an OAuth1 credential set is stored."""
        return self._loaded().oauth1_tokens is not None

    def has_bearer(self) -> bool:
        """Whether an app-only bearer token is stored."""
        return self._loaded().bearer_token is not None

    def is_empty(self) -> bool:
        """Whether no credential of any kind is stored."""
        data = self._loaded()
        return not data.oauth2_tokens and data.oauth1_tokens is None and data.bearer_token is None

    # ------------------------------------------------------------------ #
    # Mutations
    # ------------------------------------------------------------------ #

    def put(
        self,
        scheme: Union[AuthScheme, str],
        credential: Credential,
        selector: Optional[str] = None,
    ) -> None:
        """Replace the slot for *scheme* with *credential* and rewrite the file.

        Args:
            scheme: ``"app"``, ``"oauth1"`` or ``"oauth2"``.
            credential: A credential of the kind matching *scheme*.
            selector: Username; required for OAuth2.

        Raises:
            WrongTokenKindError: If *credential* does not match *scheme*.
            InvalidUsageError: If *scheme* is OAuth2 and no username is given.
            StoreIOError: If the file cannot be rewritten. The in-memory
                store keeps the new value.
        """
        scheme = _coerce_scheme(scheme)
        expected = {
            AuthScheme.APP: BearerToken,
            AuthScheme.OAUTH1: OAuth1Credentials,
            AuthScheme.OAUTH2: OAuth2Token,
        }[scheme]
        if not isinstance(credential, expected):
            raise WrongTokenKindError(
                f"Cannot store {type(credential).__name__} in the {scheme.value} slot"
            )
        if scheme is AuthScheme.OAUTH2 and not selector:
            raise InvalidUsageError("A username is required to store an OAuth2 token")

        with self._mutating() as data:
            if scheme is AuthScheme.APP:
                data.bearer_token = credential.token  # type: ignore[union-attr]
            elif scheme is AuthScheme.OAUTH1:
                data.oauth1_tokens = credential  # type: ignore[assignment]
            else:
                data.oauth2_tokens[selector] = credential  # type: ignore[index,assignment]

    def save_bearer_token(self, token: str) -> None:
        """Store the app-only bearer token."""
        self.put(AuthScheme.APP, BearerToken(token=token))

    def save_oauth1_credentials(
        self,
        access_token: str,
        token_secret: str,
        consumer_key: str,
        consumer_secret: str,
    ) -> None:
        """Store the OAuth1 credential set, replacing any previous one."""
        self.put(
            AuthScheme.OAUTH1,
            OAuth1Credentials(
                access_token=access_token,
                token_secret=token_secret,
                consumer_key=consumer_key,
                consumer_secret=consumer_secret,
            ),
        )

    def save_oauth2_token(
        self,
        username: str,
        access_token: str,
        refresh_token: Optional[str],
        expiration_time: int,
    ) -> None:
        """Store an OAuth2 token pair for *username*."""
        self.put(
            AuthScheme.OAUTH2,
            OAuth2Token(
                access_token=access_token,
                refresh_token=refresh_token,
                expiration_time=expiration_time,
            ),
            username,
        )

    def clear(
        self, scope: Union[ClearScope, str], username: Optional[str] = None
    ) -> None:
        """Remove the slot(s) selected by *scope* and rewrite the file.

        Args:
            scope: ``"all"``, ``"oauth1"``, ``"oauth2"`` or ``"bearer"``.
            username: The OAuth2 identity to remove; required when *scope*
                is ``"oauth2"``. Unknown usernames are a no-op.

        Raises:
            InvalidUsageError: If *scope* is ``"oauth2"`` without a username.
            StoreIOError: If the file cannot be rewritten.
        """
        try:
            scope = ClearScope(scope)
        except ValueError:
            raise InvalidUsageError(f"Unknown clear scope: {scope!r}") from None
        if scope is ClearScope.OAUTH2 and not username:
            raise InvalidUsageError("A username is required to clear an OAuth2 token")

        with self._mutating() as data:
            if scope is ClearScope.ALL:
                data.oauth2_tokens.clear()
                data.oauth1_tokens = None
                data.bearer_token = None
            elif scope is ClearScope.OAUTH1:
                data.oauth1_tokens = None
            elif scope is ClearScope.BEARER:
                data.bearer_token = None
            else:
                data.oauth2_tokens.pop(username, None)  # type: ignore[arg-type]

    def reload(self) -> None:
        """Discard the in-memory state and re-read the file on next access."""
        with self._lock:
            self._data = None

    # ------------------------------------------------------------------ #
    # Internals
    # ------------------------------------------------------------------ #

    def _loaded(self) -> TokenFile:
        """Return the in-memory store, loading it from disk on first use."""
        with self._lock:
            if self._data is None:
                self._data = self._read()
                if self._import_twurlrc:
                    self._import_from_twurlrc()
            return self._data

    def _read(self) -> TokenFile:
        """Parse the token file, degrading to an empty store on any failure."""
        if not self._path.is_file():
            return TokenFile()
        try:
            text = self._path.read_text(encoding="utf-8")
            return TokenFile.model_validate(json.loads(text))
        except (OSError, json.JSONDecodeError, ValidationError, ValueError) as exc:
            logger.warning("Ignoring unreadable token file %s: %s", self._path, exc)
            return TokenFile()

    @contextlib.contextmanager
    def _mutating(self) -> Iterator[TokenFile]:
        """Lock, re-read, yield the store for mutation, then flush it."""
        with self._lock, self._file_lock():
            # Disk wins: another invocation may have written since we loaded.
            self._data = self._read()
            yield self._data
            self._flush()

    @contextlib.contextmanager
    def _file_lock(self) -> Iterator[None]:
        """Hold an advisory exclusive lock on ``<file>.lock`` where supported."""
        if fcntl is None:
            yield
            return
        lock_path = self._path.with_name(self._path.name + ".lock")
        try:
            lock_path.parent.mkdir(parents=True, exist_ok=True)
            lock_file = open(lock_path, "a+", encoding="utf-8")
        except OSError as exc:
            raise StoreIOError(f"Cannot open lock file {lock_path}: {exc}") from exc
        with lock_file:
            fcntl.flock(lock_file.fileno(), fcntl.LOCK_EX)
            try:
                yield
            finally:
                fcntl.flock(lock_file.fileno(), fcntl.LOCK_UN)

    def _flush(self) -> None:
        """Rewrite the whole token file from the in-memory store."""
        assert self._data is not None
        try:
            text = json.dumps(self._data.model_dump(mode="json"), indent=2) + "\n"
            _atomic_write(self._path, text)
        except (OSError, TypeError, ValueError) as exc:
            raise StoreIOError(f"Failed to write token file {self._path}: {exc}") from exc
        logger.debug("Wrote token file %s", self._path)

    def _import_from_twurlrc(self) -> None:
        """Fill empty OAuth1/bearer slots from a legacy ``~/.twurlrc``."""
        assert self._data is not None
        if self._data.oauth1_tokens is not None and self._data.bearer_token is not None:
            return
        path = self._twurlrc_path or Path.home() / ".twurlrc"
        if not path.is_file():
            return
        try:
            oauth1, bearer = _parse_twurlrc(path.read_text(encoding="utf-8"))
        except (OSError, yaml.YAMLError, AttributeError, KeyError, TypeError, ValueError) as exc:
            logger.warning("Could not import credentials from %s: %s", path, exc)
            return

        changed = False
        if self._data.oauth1_tokens is None and oauth1 is not None:
            self._data.oauth1_tokens = oauth1
            changed = True
        if self._data.bearer_token is None and bearer is not None:
            self._data.bearer_token = bearer
            changed = True
        if not changed:
            return
        logger.info("Imported credentials from %s", path)
        try:
            with self._file_lock():
                self._flush()
        except StoreIOError as exc:
            logger.warning("Imported twurlrc credentials were not persisted: %s", exc)


def _coerce_scheme(scheme: Union[AuthScheme, str]) -> AuthScheme:
    try:
        return AuthScheme(scheme)
    except ValueError:
        raise InvalidUsageError(f"Unknown credential scheme: {scheme!r}") from None


def _parse_twurlrc(text: str) -> tuple[Optional[OAuth1Credentials], Optional[str]]:
    """Extract the default (or first) OAuth1 profile and first bearer token.

    The twurl layout is::

        profiles:
          <username>:
            <consumer_key>:
              username: ...
              consumer_key: ...
              consumer_secret: ...
              token: ...
              secret: ...
        configuration:
          default_profile: [<username>, <consumer_key>]
        bearer_tokens:
          <consumer_key>: <token>
    """
    doc: dict[str, Any] = yaml.safe_load(text) or {}
    profiles: dict[str, Any] = doc.get("profiles") or {}

    entry: Optional[tuple[str, dict[str, Any]]] = None
    default = (doc.get("configuration") or {}).get("default_profile")
    if isinstance(default, list) and len(default) == 2:
        name, key = default
        candidate = (profiles.get(name) or {}).get(key)
        if candidate:
            entry = (key, candidate)
    if entry is None:
        for consumer_keys in profiles.values():
            for key, candidate in (consumer_keys or {}).items():
                entry = (key, candidate)
                break
            break

    oauth1 = None
    if entry is not None:
        consumer_key, profile = entry
        oauth1 = OAuth1Credentials(
            access_token=str(profile["token"]),
            token_secret=str(profile["secret"]),
            consumer_key=str(consumer_key),
            consumer_secret=str(profile["consumer_secret"]),
        )

    bearer = None
    bearer_tokens: dict[str, Any] = doc.get("bearer_tokens") or {}
    for token in bearer_tokens.values():
        bearer = str(token)
        break
    return oauth1, bearer
