"""Configuration management: environment settings, XDG paths, and atomic writes.

This module handles all persistent and environment-derived configuration
for xurl:

* **Environment** -- :func:`load_config` reads the OAuth client id and
  secret plus the provider endpoint URLs into a
  :class:`~xurl.models.Config`, falling back to the X API defaults.
* **Directory layout** -- :func:`get_data_dir` is XDG Base Directory
  compliant on Linux/BSD and uses ``~/.xurl.d/`` elsewhere. Crash logs
  are written there.
* **Atomic writes** -- :func:`_atomic_write` writes through a temp file
  and ``os.replace`` so that the credential file is never half-written.

Environment variables:
    ``CLIENT_ID``, ``CLIENT_SECRET``, ``REDIRECT_URI``, ``AUTH_URL``,
    ``TOKEN_URL``, ``API_BASE_URL``, ``INFO_URL``, ``XURL_TOKEN_FILE``,
    ``XURL_CALLBACK_TIMEOUT``.
"""

from __future__ import annotations

import os
import platform
import tempfile
from pathlib import Path
from typing import Optional
from urllib.parse import urlparse

from xurl.exceptions import ConfigError, InvalidUrlError, MissingConfigError
from xurl.models import Config

_APP_NAME = "xurl"


# --- XDG path resolution ---


def _is_xdg_platform() -> bool:
    """Return True if the platform supports XDG Base Directory spec (Linux/FreeBSD)."""
    return platform.system() == "Linux" or platform.system().endswith("BSD")


def _xdg_base(env_var: str, default_segments: tuple[str, ...]) -> Path:
    """Resolve an XDG base directory from an env var with fallback segments under $HOME."""
    env_value = os.environ.get(env_var, "")
    if env_value:
        return Path(env_value)
    base = Path.home()
    for seg in default_segments:
        base = base / seg
    return base


def get_data_dir() -> Path:
    """Return the data directory (crash logs), creating it if necessary.

    On Linux/BSD: ``$XDG_DATA_HOME/xurl/`` (default ``~/.local/share/xurl/``).
    On macOS/Windows: ``~/.xurl.d/``. The credential file itself lives at
    ``~/.xurl`` so that it stays compatible with existing installs.

    Returns:
        Absolute path to the data directory (guaranteed to exist).
    """
    if _is_xdg_platform():
        path = _xdg_base("XDG_DATA_HOME", (".local", "share")) / _APP_NAME
    else:
        path = Path.home() / f".{_APP_NAME}.d"
    path.mkdir(parents=True, exist_ok=True)
    return path


def default_token_file() -> Path:
    """Return the credential file path (``$XURL_TOKEN_FILE`` or ``~/.xurl``)."""
    override = os.environ.get("XURL_TOKEN_FILE", "")
    if override:
        return Path(override).expanduser()
    return Path.home() / f".{_APP_NAME}"


# --- Atomic file writes ---


def _atomic_write(path: Path, data: str, mode: int = 0o600) -> None:
    """Write data to file atomically using temp file + rename.

    The temporary file is created in the same directory as *path* so that
    ``os.replace`` is guaranteed to be an atomic rename on POSIX systems.
    Permissions are set to *mode* before any content is written. On any
    failure the temp file is cleaned up and the exception propagates.
    """
    path.parent.mkdir(parents=True, exist_ok=True)

    fd = None
    tmp_path: Optional[str] = None
    try:
        fd = tempfile.NamedTemporaryFile(
            mode="w",
            dir=path.parent,
            prefix=f".{path.name}.",
            suffix=".tmp",
            delete=False,
            encoding="utf-8",
        )
        tmp_path = fd.name
        os.chmod(tmp_path, mode)
        fd.write(data)
        fd.flush()
        os.fsync(fd.fileno())
        fd.close()
        fd = None  # prevent double-close below
        os.replace(tmp_path, path)
    except BaseException:
        # Clean up the temp file on any error (including KeyboardInterrupt).
        if fd is not None:
            fd.close()
        if tmp_path is not None:
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
        raise


# --- Environment config ---


def _validate_url(name: str, value: str) -> str:
    """Return *value* if it is an absolute http(s) URL, else raise InvalidUrlError."""
    parsed = urlparse(value)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise InvalidUrlError(f"{name} is not a valid http(s) URL: {value!r}")
    return value


def load_config() -> Config:
    """Build a :class:`~xurl.models.Config` from environment variables.

    Unset variables fall back to the X API defaults. ``INFO_URL`` defaults
    to ``{API_BASE_URL}/2/users/me`` so that pointing ``API_BASE_URL`` at a
    staging host also moves the identity endpoint.

    Returns:
        The resolved configuration.

    Raises:
        InvalidUrlError: If any endpoint URL is malformed.
        ConfigError: If ``XURL_CALLBACK_TIMEOUT`` is not a positive number.
    """
    defaults = Config()
    api_base_url = os.environ.get("API_BASE_URL") or defaults.api_base_url
    api_base_url = api_base_url.rstrip("/")

    urls = {
        "REDIRECT_URI": os.environ.get("REDIRECT_URI") or defaults.redirect_uri,
        "AUTH_URL": os.environ.get("AUTH_URL") or defaults.auth_url,
        "TOKEN_URL": os.environ.get("TOKEN_URL") or defaults.token_url,
        "API_BASE_URL": api_base_url,
        "INFO_URL": os.environ.get("INFO_URL") or f"{api_base_url}/2/users/me",
    }
    for name, value in urls.items():
        _validate_url(name, value)

    timeout = defaults.callback_timeout
    raw_timeout = os.environ.get("XURL_CALLBACK_TIMEOUT")
    if raw_timeout:
        try:
            timeout = float(raw_timeout)
        except ValueError:
            raise ConfigError(
                f"XURL_CALLBACK_TIMEOUT must be a number of seconds, got {raw_timeout!r}"
            ) from None
        if timeout <= 0:
            raise ConfigError("XURL_CALLBACK_TIMEOUT must be positive")

    return Config(
        client_id=os.environ.get("CLIENT_ID", ""),
        client_secret=os.environ.get("CLIENT_SECRET", ""),
        redirect_uri=urls["REDIRECT_URI"],
        auth_url=urls["AUTH_URL"],
        token_url=urls["TOKEN_URL"],
        api_base_url=urls["API_BASE_URL"],
        info_url=urls["INFO_URL"],
        callback_timeout=timeout,
        token_file=default_token_file(),
    )


def require_client_credentials(config: Config) -> None:
    """Raise :class:`~xurl.exceptions.MissingConfigError` unless id and secret are set.

    Args:
        config: The active configuration.
    """
    missing = [
        name
        for name, value in (("CLIENT_ID", config.client_id), ("CLIENT_SECRET", config.client_secret))
        if not value
    ]
    if missing:
        raise MissingConfigError(
            f"Missing environment variable(s): {', '.join(missing)}. "
            "Both are required for OAuth2."
        )
