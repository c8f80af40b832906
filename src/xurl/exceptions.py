"""Exception hierarchy for xurl.

All exceptions inherit from :class:`XurlError`, which carries an
``exit_code`` attribute mapped to a constant from :mod:`xurl.exit_codes`.
The top-level error handler in :func:`xurl.app.main` catches
``XurlError`` and exits with the appropriate code, while unexpected
exceptions produce a crash log and exit with :data:`EXIT_GENERIC_FAILURE`.

Subclass hierarchy::

    XurlError (exit 1)
    +-- InvalidUsageError            (exit 2)
    |   +-- InvalidAuthTypeError
    +-- ConfigError                  (exit 1)
    |   +-- MissingConfigError
    |   +-- InvalidUrlError
    +-- StoreIOError                 (exit 1)
    +-- AuthError                    (exit 3)
    |   +-- TokenNotFoundError
    |   |   +-- RefreshTokenNotFoundError
    |   +-- WrongTokenKindError
    |   +-- CodeNotReceivedError
    |   +-- ListenerBindError
    |   +-- AuthorizationError
    +-- ConnectionError_             (exit 6)
        +-- NetworkError
"""

from xurl.exit_codes import (
    EXIT_AUTH_FAILURE,
    EXIT_CONNECTION_ERROR,
    EXIT_GENERIC_FAILURE,
    EXIT_INVALID_USAGE,
)


class XurlError(Exception):
    """Base exception for all xurl errors.

    Every subclass sets a class-level ``exit_code`` corresponding to one of
    the constants in :mod:`xurl.exit_codes`. The entry point catches
    this exception type and calls ``sys.exit(exc.exit_code)``.

    Args:
        message: Human-readable error description printed to stderr.
        exit_code: Optional override for the class-level exit code.
    """

    exit_code: int = EXIT_GENERIC_FAILURE

    def __init__(self, message: str, exit_code: int | None = None):
        super().__init__(message)
        if exit_code is not None:
            self.exit_code = exit_code


class InvalidUsageError(XurlError):
    """Raised for invalid CLI arguments or inconsistent call parameters."""

    exit_code = EXIT_INVALID_USAGE


class InvalidAuthTypeError(InvalidUsageError):
    """Raised when an explicit auth type is not one of ``app``, ``oauth1``, ``oauth2``."""


class ConfigError(XurlError):
    """Raised for configuration problems read from the environment."""

    exit_code = EXIT_GENERIC_FAILURE


class MissingConfigError(ConfigError):
    """Raised when the OAuth2 client id or secret is absent.

    Always raised before any network I/O takes place.
    """


class InvalidUrlError(ConfigError):
    """Raised when a configured endpoint URL is not an absolute http(s) URL."""


class StoreIOError(XurlError):
    """Raised when the credential file cannot be read, serialised, or written.

    On a failed write the in-memory store already holds the new value, so
    memory and disk disagree until the next successful flush.
    """

    exit_code = EXIT_GENERIC_FAILURE


class AuthError(XurlError):
    """Raised when authentication fails or no usable credential is available."""

    exit_code = EXIT_AUTH_FAILURE


class TokenNotFoundError(AuthError):
    """Raised when the requested credential is not in the store."""


class RefreshTokenNotFoundError(TokenNotFoundError):
    """Raised when an OAuth2 identity has no refresh token to exchange."""


class WrongTokenKindError(AuthError):
    """Raised when a credential does not match the slot it is stored in or read from."""


class CodeNotReceivedError(AuthError):
    """Raised when no authorization code arrives before the callback deadline."""


class ListenerBindError(AuthError):
    """Raised when the redirect listener cannot bind any loopback address."""


class AuthorizationError(AuthError):
    """Raised when the OAuth provider rejects an authorization or token request."""


class ConnectionError_(XurlError):
    """Raised on network-level failures (timeout, DNS resolution, connection refused).

    Named with a trailing underscore to avoid shadowing the built-in
    ``ConnectionError``.
    """

    exit_code = EXIT_CONNECTION_ERROR


class NetworkError(ConnectionError_):
    """Raised when a call to the token or identity endpoint fails in transit,
    or when the identity endpoint returns an unusable body."""
