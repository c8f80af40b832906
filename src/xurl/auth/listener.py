"""One-shot loopback HTTP listener for the OAuth2 redirect.

:class:`RedirectListener` binds a small HTTP server on the IPv4 and IPv6
loopback addresses (either may fail on its own; only losing both is an
error) and serves each from a background daemon thread. The first
``GET /callback?code=...`` fires a single-use :class:`CallbackSignal`;
everything after that is answered but has no effect.

The OAuth2 flow waits on the signal with a deadline and then shuts every
server down::

    with RedirectListener(port=8080) as listener:
        webbrowser.open(authorization_url)
        code = listener.wait(timeout=300)

See Also:
    :class:`~xurl.auth.oauth2.OAuth2Flow` -- the only consumer.
"""

from __future__ import annotations

import logging
import socket
import threading
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Any, Optional, Sequence
from urllib.parse import parse_qs, urlparse

from xurl.exceptions import AuthorizationError, CodeNotReceivedError, ListenerBindError

logger = logging.getLogger(__name__)

DEFAULT_PORT = 8080
DEFAULT_PATH = "/callback"
LOOPBACK_HOSTS = ("127.0.0.1", "::1")

CONFIRMATION_BODY = "Authorization successful! You can close this window."


class CallbackSignal:
    """Single-fire completion handle shared by every listening thread.

    Only the first call to :meth:`deliver` or :meth:`fail` is recorded.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._event = threading.Event()
        self._code: Optional[str] = None
        self._error: Optional[str] = None

    @property
    def fired(self) -> bool:
        return self._event.is_set()

    def deliver(self, code: str) -> bool:
        """Record *code*. Returns ``False`` if the signal already fired."""
        with self._lock:
            if self._event.is_set():
                return False
            self._code = code
            self._event.set()
            return True

    def fail(self, error: str) -> bool:
        """Record a provider error. Returns ``False`` if the signal already fired."""
        with self._lock:
            if self._event.is_set():
                return False
            self._error = error
            self._event.set()
            return True

    def wait(self, timeout: Optional[float] = None) -> str:
        """Block until the signal fires and return the code.

        Raises:
            CodeNotReceivedError: If *timeout* elapses first.
            AuthorizationError: If the provider redirected with an error.
        """
        if not self._event.wait(timeout):
            raise CodeNotReceivedError(
                f"No authorization code received within {timeout:g} seconds"
                if timeout is not None
                else "No authorization code received"
            )
        if self._error is not None:
            raise AuthorizationError(f"Authorization was denied: {self._error}")
        assert self._code is not None
        return self._code


class _CallbackServer(ThreadingHTTPServer):
    daemon_threads = True

    def __init__(
        self,
        address: tuple[str, int],
        family: socket.AddressFamily,
        path: str,
        signal: CallbackSignal,
        expected_state: Optional[str],
    ) -> None:
        self.address_family = family
        self.callback_path = path
        self.signal = signal
        self.expected_state = expected_state
        super().__init__(address, _CallbackHandler)

    def server_bind(self) -> None:
        if self.address_family == socket.AF_INET6:
            # Keep the v6 socket off v4 so both can share the port.
            self.socket.setsockopt(socket.IPPROTO_IPV6, socket.IPV6_V6ONLY, 1)
        super().server_bind()


class _CallbackHandler(BaseHTTPRequestHandler):
    server: _CallbackServer

    def do_GET(self) -> None:
        parsed = urlparse(self.path)
        if parsed.path != self.server.callback_path:
            self._respond(404, "Not found")
            return

        params = parse_qs(parsed.query)
        state = params.get("state", [None])[0]
        expected = self.server.expected_state
        if expected is not None and state != expected:
            logger.debug("Ignoring callback with mismatched state")
        elif "error" in params:
            error = params["error"][0]
            description = params.get("error_description", [""])[0]
            self.server.signal.fail(f"{error} - {description}" if description else error)
        elif "code" in params:
            if not self.server.signal.deliver(params["code"][0]):
                logger.debug("Ignoring duplicate authorization callback")
        else:
            logger.debug("Ignoring callback without a code")

        self._respond(200, CONFIRMATION_BODY)

    def _respond(self, status: int, body: str) -> None:
        payload = body.encode("utf-8")
        self.send_response(status)
        self.send_header("Content-Type", "text/plain; charset=utf-8")
        self.send_header("Content-Length", str(len(payload)))
        self.end_headers()
        self.wfile.write(payload)

    def log_message(self, format: str, *args: Any) -> None:
        # Request lines carry the authorization code; keep them out of stderr.
        pass


class RedirectListener:
    """Capture the ``code`` query parameter of an OAuth2 redirect.

    Args:
        port: TCP port to bind on every host. ``0`` picks an ephemeral
            port per host (see :attr:`ports`).
        path: Callback path the provider redirects to.
        hosts: Loopback addresses to bind; IPv6 literals use ``AF_INET6``.
        expected_state: When set, callbacks whose ``state`` differs are
            ignored.
    """

    def __init__(
        self,
        port: int = DEFAULT_PORT,
        path: str = DEFAULT_PATH,
        hosts: Sequence[str] = LOOPBACK_HOSTS,
        expected_state: Optional[str] = None,
    ) -> None:
        self._port = port
        self._path = path or "/"
        self._hosts = tuple(hosts)
        self._expected_state = expected_state
        self._signal = CallbackSignal()
        self._servers: list[_CallbackServer] = []
        self._threads: list[threading.Thread] = []

    @property
    def signal(self) -> CallbackSignal:
        return self._signal

    @property
    def ports(self) -> list[int]:
        """Ports actually bound, one per running server."""
        return [server.server_address[1] for server in self._servers]

    def start(self) -> RedirectListener:
        """Bind every host and start serving in background threads.

        Raises:
            ListenerBindError: If no host could be bound.
        """
        failures: list[str] = []
        for host in self._hosts:
            family = socket.AF_INET6 if ":" in host else socket.AF_INET
            try:
                server = _CallbackServer(
                    (host, self._port), family, self._path, self._signal, self._expected_state
                )
            except OSError as exc:
                logger.debug("Could not bind %s port %d: %s", host, self._port, exc)
                failures.append(f"{host}: {exc}")
                continue
            thread = threading.Thread(
                target=server.serve_forever,
                kwargs={"poll_interval": 0.1},
                name=f"xurl-redirect-{host}",
                daemon=True,
            )
            thread.start()
            self._servers.append(server)
            self._threads.append(thread)
            logger.debug("Listening for OAuth2 redirect on %s port %d", host, server.server_address[1])

        if not self._servers:
            raise ListenerBindError(
                f"Could not start the redirect listener on port {self._port} "
                f"({'; '.join(failures)})"
            )
        return self

    def wait(self, timeout: Optional[float] = None) -> str:
        """Block until the first authorization code arrives.

        Raises:
            CodeNotReceivedError: If *timeout* elapses first.
            AuthorizationError: If the provider redirected with an error.
        """
        return self._signal.wait(timeout)

    def close(self) -> None:
        """Stop every server. In-flight requests are not awaited."""
        for server in self._servers:
            server.shutdown()
            server.server_close()
        self._servers.clear()
        self._threads.clear()

    def __enter__(self) -> RedirectListener:
        return self.start()

    def __exit__(self, *args: object) -> None:
        self.close()
