"""Numeric process exit codes following `clig.dev <https://clig.dev/>`_ conventions.

Each constant maps to a specific error category and is referenced by the
corresponding :class:`~xurl.exceptions.XurlError` subclass.
Shell wrappers can inspect the exit code to tell an expired login from a
network outage without parsing stderr.

Example::

    $ xurl auth header https://api.x.com/2/users/me --auth app
    $ echo $?
    3   # EXIT_AUTH_FAILURE -- no bearer token stored
"""

EXIT_SUCCESS = 0
"""The command completed successfully."""

EXIT_GENERIC_FAILURE = 1
"""An unclassified error occurred (including configuration and store I/O)."""

EXIT_INVALID_USAGE = 2
"""The command was invoked with invalid arguments or an unknown auth type."""

EXIT_AUTH_FAILURE = 3
"""Authentication failed or no usable credential is stored."""

EXIT_CONNECTION_ERROR = 6
"""A network-level error occurred while talking to the OAuth provider."""
