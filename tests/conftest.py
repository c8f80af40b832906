"""Shared test fixtures for xurl.

Provides an isolated home directory and environment for every test, a
throwaway credential store, output managers, and a CLI runner. These
fixtures are discovered by pytest automatically.
"""

from __future__ import annotations

import logging
from pathlib import Path

import pytest

from xurl.auth.credential_store import CredentialStore
from xurl.models import Config
from xurl.output import OutputFormat, OutputManager, reset_output, set_output


_ENV_VARS = (
    "CLIENT_ID",
    "CLIENT_SECRET",
    "REDIRECT_URI",
    "AUTH_URL",
    "TOKEN_URL",
    "API_BASE_URL",
    "INFO_URL",
    "XURL_TOKEN_FILE",
    "XURL_CALLBACK_TIMEOUT",
    "NO_COLOR",
)


# ---------------------------------------------------------------------------
# Auto-reset global output state between tests
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def _reset_output_between_tests() -> None:
    """Reset the global OutputManager and the ``xurl`` logger after every test.

    The OutputManager caches references to sys.stdout/sys.stderr at
    creation time. CliRunner swaps those streams per invocation, so a
    manager left over from one test would write to a closed file in the
    next.
    """
    yield
    reset_output()
    logger = logging.getLogger("xurl")
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
    logger.setLevel(logging.NOTSET)


# ---------------------------------------------------------------------------
# Environment isolation
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def isolated_home(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Point HOME and the XDG directories at tmp_path and clear xurl env vars.

    Keeps tests away from the real ``~/.xurl`` and ``~/.twurlrc``.

    Returns:
        The fake home directory.
    """
    home = tmp_path / "home"
    home.mkdir()
    monkeypatch.setenv("HOME", str(home))
    monkeypatch.setattr(Path, "home", classmethod(lambda cls: home))
    monkeypatch.setenv("XDG_DATA_HOME", str(tmp_path / "data"))
    for var in _ENV_VARS:
        monkeypatch.delenv(var, raising=False)
    return home


# ---------------------------------------------------------------------------
# Store and config fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def token_path(tmp_path: Path) -> Path:
    return tmp_path / "tokens.json"


@pytest.fixture
def store(token_path: Path) -> CredentialStore:
    """A store over a temp file with the twurlrc import disabled."""
    return CredentialStore(token_path, import_twurlrc=False)


@pytest.fixture
def config(token_path: Path) -> Config:
    """A config with client credentials and fake endpoints."""
    return Config(
        client_id="client-123",
        client_secret="secret-456",
        redirect_uri="http://localhost:8080/callback",
        auth_url="https://auth.example.com/authorize",
        token_url="https://auth.example.com/token",
        api_base_url="https://api.example.com",
        info_url="https://api.example.com/2/users/me",
        callback_timeout=5.0,
        token_file=token_path,
    )


# ---------------------------------------------------------------------------
# Output fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def quiet_output() -> OutputManager:
    """Install a quiet PLAIN OutputManager for tests that ignore output."""
    output = OutputManager(format=OutputFormat.PLAIN, quiet=True)
    set_output(output)
    yield output
    reset_output()


# ---------------------------------------------------------------------------
# CLI runner fixture
# ---------------------------------------------------------------------------


@pytest.fixture
def cli_runner():
    """Typer CLI test runner."""
    from typer.testing import CliRunner

    return CliRunner()
