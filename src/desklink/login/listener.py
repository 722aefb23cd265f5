"""Ephemeral local HTTP listener for the browser authorization redirect.

The remote authority redirects the browser to
``http://localhost:<port>/callback?token=...&username=...&shortId=...``.
:class:`CallbackListener` serves that one path from a background thread,
answers with a fixed confirmation page, and publishes the query parameters
to a queue. :meth:`CallbackListener.wait` races that queue against a timer
and returns a tagged :class:`CallbackResult`, so callers never have to
inspect which of two waits finished first.

Only one listener may be active per process; :meth:`CallbackListener.start`
enforces it.
"""

from __future__ import annotations

import enum
import html
import logging
import queue
import socket
import threading
from dataclasses import dataclass
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from string import Template
from typing import Any, Optional
from urllib.parse import parse_qs, urlparse

from desklink.exceptions import LoginInProgressError, NoAvailablePortError

logger = logging.getLogger(__name__)

# Held while any listener is running in this process.
_ACTIVE_LISTENER = threading.Lock()

# Seconds a connection may sit idle before its request line is read.
_REQUEST_TIMEOUT = 5.0


class CallbackOutcome(str, enum.Enum):
    """How a wait for the browser callback ended."""

    RECEIVED = "received"
    TIMED_OUT = "timed_out"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class CallbackParams:
    """Query parameters carried by the authorization redirect.

    Attributes:
        token: The issued device token; absent or empty when denied.
        username: Account user name.
        short_id: Account short id (``shortId`` on the wire).
    """

    token: Optional[str] = None
    username: Optional[str] = None
    short_id: Optional[str] = None

    @classmethod
    def from_query(cls, query: str) -> CallbackParams:
        """Parse a raw query string, keeping the first value of each key."""
        params = parse_qs(query, keep_blank_values=True)

        def first(name: str) -> Optional[str]:
            values = params.get(name)
            return values[0] if values else None

        return cls(token=first("token"), username=first("username"), short_id=first("shortId"))

    @property
    def granted(self) -> bool:
        """Whether the callback carries a non-empty device token."""
        return bool(self.token)


@dataclass(frozen=True)
class CallbackResult:
    """Tagged result of :meth:`CallbackListener.wait`."""

    outcome: CallbackOutcome
    params: Optional[CallbackParams] = None


# ---------------------------------------------------------------------------
# Port selection
# ---------------------------------------------------------------------------


def _can_bind(host: str, port: int) -> bool:
    """Return True if a TCP socket can be bound to *host*:*port* right now."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        try:
            s.bind((host, port))
        except OSError:
            return False
    return True


def find_available_port(
    base_port: int = 8787,
    max_attempts: int = 10,
    host: str = "127.0.0.1",
) -> int:
    """Probe ports ``base_port .. base_port + max_attempts - 1`` in order.

    A port is available if a socket can be bound and immediately released
    on it.

    Args:
        base_port: First port to try.
        max_attempts: Number of consecutive ports to try.
        host: Interface to probe.

    Returns:
        The first available port.

    Raises:
        NoAvailablePortError: If none of the probed ports is free.
    """
    for port in range(base_port, base_port + max_attempts):
        if _can_bind(host, port):
            return port
        logger.debug("Port %d is in use", port)
    raise NoAvailablePortError(
        f"No available ports found between {base_port} and {base_port + max_attempts - 1}"
    )


# ---------------------------------------------------------------------------
# Confirmation pages
# ---------------------------------------------------------------------------

_PAGE_STYLE = (
    "*{margin:0;padding:0;box-sizing:border-box}"
    "body{font-family:-apple-system,BlinkMacSystemFont,'Segoe UI',Roboto,sans-serif;"
    "min-height:100vh;display:flex;justify-content:center;align-items:center;"
    "background:linear-gradient(to bottom right,#f0f9ff,#ffffff,#e0f2fe);padding:16px}"
    ".container{background:white;padding:40px;border-radius:16px;text-align:center;"
    "box-shadow:0 25px 50px -12px rgba(0,0,0,0.25);max-width:448px;width:100%}"
    ".icon{width:80px;height:80px;margin:0 auto 24px;border-radius:50%;display:flex;"
    "align-items:center;justify-content:center;font-size:48px;color:white}"
    ".ok{background:linear-gradient(135deg,#3b82f6 0%,#2563eb 100%)}"
    ".fail{background:linear-gradient(135deg,#f87171 0%,#dc2626 100%)}"
    "h1{color:#111827;font-size:28px;font-weight:700;margin-bottom:8px}"
    ".subtitle{color:#6b7280;font-size:16px;line-height:1.5;margin-bottom:32px}"
    ".info-box{background:#f9fafb;border:1px solid #e5e7eb;border-radius:12px;"
    "padding:20px;margin-bottom:24px}"
    ".info-item{display:flex;justify-content:space-between;padding:8px 0}"
    ".info-label{color:#6b7280;font-size:14px;font-weight:500}"
    ".info-value{color:#111827;font-size:14px;font-weight:600}"
    ".closing{color:#6b7280;font-size:14px;margin-top:24px;padding-top:24px;"
    "border-top:1px solid #e5e7eb}"
)

_CLOSE_SCRIPT = (
    "<script>let s=3;const el=document.getElementById('countdown');"
    "const t=setInterval(()=>{s--;el.textContent=s;"
    "if(s<=0){clearInterval(t);window.close()}},1000);</script>"
)

_SUCCESS_PAGE = Template(
    "<!DOCTYPE html><html lang='en'><head><meta charset='UTF-8'>"
    "<meta name='viewport' content='width=device-width, initial-scale=1.0'>"
    "<title>Authorization Successful</title><style>$style</style></head><body>"
    "<div class='container'><div class='icon ok'>&#10003;</div>"
    "<h1>Authorization Successful!</h1>"
    "<p class='subtitle'>Your device has been successfully linked to your $app_name account.</p>"
    "<div class='info-box'>"
    "<div class='info-item'><span class='info-label'>Username</span>"
    "<span class='info-value'>$username ($short_id)</span></div>"
    "<div class='info-item'><span class='info-label'>Device</span>"
    "<span class='info-value'>Desktop Application</span></div>"
    "<div class='info-item'><span class='info-label'>Status</span>"
    "<span class='info-value'>Connected</span></div></div>"
    "<p class='closing'>You can close this window<br>"
    "Closing automatically in <span id='countdown'>3</span></p></div>"
    "$script</body></html>"
)

_DENIED_PAGE = Template(
    "<!DOCTYPE html><html lang='en'><head><meta charset='UTF-8'>"
    "<meta name='viewport' content='width=device-width, initial-scale=1.0'>"
    "<title>Authorization Failed</title><style>$style</style></head><body>"
    "<div class='container'><div class='icon fail'>&#10007;</div>"
    "<h1>Authorization Failed</h1>"
    "<p class='subtitle'>This device was not linked to your $app_name account. "
    "Return to the application and try again.</p>"
    "<p class='closing'>You can close this window</p></div></body></html>"
)


def render_confirmation_page(params: CallbackParams, app_name: str = "McWhitelist") -> str:
    """Render the fixed page returned to the browser for a callback.

    All values taken from the query string are HTML-escaped.
    """
    if not params.granted:
        return _DENIED_PAGE.substitute(style=_PAGE_STYLE, app_name=html.escape(app_name))
    return _SUCCESS_PAGE.substitute(
        style=_PAGE_STYLE,
        app_name=html.escape(app_name),
        username=html.escape(params.username or ""),
        short_id=html.escape(params.short_id or ""),
        script=_CLOSE_SCRIPT,
    )


# ---------------------------------------------------------------------------
# HTTP server
# ---------------------------------------------------------------------------


class _CallbackServer(ThreadingHTTPServer):
    """Threaded HTTP server that publishes the first callback to a queue.

    Each connection gets its own daemon thread, so a client that connects and
    never sends a request cannot block other requests or :meth:`shutdown`.
    """

    daemon_threads = True

    def __init__(
        self,
        address: tuple[str, int],
        callback_path: str,
        app_name: str,
        events: queue.Queue[CallbackResult],
    ) -> None:
        self.callback_path = callback_path
        self.app_name = app_name
        self._events = events
        self._published = False
        self._publish_lock = threading.Lock()
        super().__init__(address, _CallbackHandler)

    def publish(self, params: CallbackParams) -> None:
        with self._publish_lock:
            if self._published:
                logger.debug("Ignoring repeated callback")
                return
            self._published = True
        self._events.put(CallbackResult(CallbackOutcome.RECEIVED, params))


class _CallbackHandler(BaseHTTPRequestHandler):
    server: _CallbackServer
    timeout = _REQUEST_TIMEOUT

    def do_GET(self) -> None:
        parsed = urlparse(self.path)
        if parsed.path != self.server.callback_path:
            self.send_error(404)
            return

        params = CallbackParams.from_query(parsed.query)
        body = render_confirmation_page(params, self.server.app_name).encode("utf-8")

        self.send_response(200)
        self.send_header("Content-Type", "text/html; charset=utf-8")
        self.send_header("Content-Length", str(len(body)))
        self.send_header("Connection", "close")
        self.end_headers()
        self.wfile.write(body)
        self.wfile.flush()
        self.close_connection = True

        # Published only after the page is fully written, so stopping the
        # listener on receipt cannot truncate the browser's response.
        self.server.publish(params)

    def log_message(self, format: str, *args: Any) -> None:
        logger.debug("Callback listener: " + format, *args)


class CallbackListener:
    """Local HTTP endpoint that receives one authorization redirect.

    Args:
        port: Port to bind, usually from :func:`find_available_port`. ``0``
            binds an OS-assigned port; :attr:`port` reports it after
            :meth:`start`.
        bind_host: Interface to bind.
        redirect_host: Host name used in :attr:`redirect_uri`.
        path: The single path that accepts the callback.
        app_name: Product name shown on the confirmation page.

    Example::

        with CallbackListener(port) as listener:
            open_browser(build_url(listener.redirect_uri))
            result = listener.wait(timeout=300)
    """

    def __init__(
        self,
        port: int,
        bind_host: str = "127.0.0.1",
        redirect_host: str = "localhost",
        path: str = "/callback",
        app_name: str = "McWhitelist",
    ) -> None:
        self._port = port
        self._bind_host = bind_host
        self._redirect_host = redirect_host
        self._path = path
        self._app_name = app_name
        self._events: queue.Queue[CallbackResult] = queue.Queue()
        self._server: Optional[_CallbackServer] = None
        self._thread: Optional[threading.Thread] = None
        self._lock = threading.Lock()

    @property
    def port(self) -> int:
        return self._port

    @property
    def redirect_uri(self) -> str:
        """The URL the remote authority must redirect the browser to."""
        return f"http://{self._redirect_host}:{self._port}{self._path}"

    @property
    def is_running(self) -> bool:
        return self._server is not None

    def __enter__(self) -> CallbackListener:
        self.start()
        return self

    def __exit__(self, *args: object) -> None:
        self.stop()

    def start(self) -> None:
        """Bind the port and start serving on a background thread.

        Raises:
            LoginInProgressError: If another listener is active in this process.
            NoAvailablePortError: If the port was taken since it was probed.
        """
        with self._lock:
            if self._server is not None:
                return
            if not _ACTIVE_LISTENER.acquire(blocking=False):
                raise LoginInProgressError("Another authorization listener is already running")
            try:
                server = _CallbackServer(
                    (self._bind_host, self._port), self._path, self._app_name, self._events
                )
            except OSError as exc:
                _ACTIVE_LISTENER.release()
                raise NoAvailablePortError(f"Cannot listen on port {self._port}: {exc}") from exc

            self._server = server
            self._port = server.server_address[1]
            self._thread = threading.Thread(
                target=server.serve_forever,
                kwargs={"poll_interval": 0.1},
                name="desklink-callback",
                daemon=True,
            )
            self._thread.start()
            logger.debug("Callback listener started on %s", self.redirect_uri)

    def wait(self, timeout: Optional[float]) -> CallbackResult:
        """Block until the callback arrives, the timeout expires, or :meth:`cancel`.

        Args:
            timeout: Seconds to wait; ``None`` waits forever.

        Returns:
            A :class:`CallbackResult` tagged ``RECEIVED`` (with params),
            ``TIMED_OUT``, or ``CANCELLED``.
        """
        try:
            return self._events.get(timeout=timeout)
        except queue.Empty:
            return CallbackResult(CallbackOutcome.TIMED_OUT)

    def cancel(self) -> None:
        """Wake up a pending :meth:`wait` with a ``CANCELLED`` result."""
        self._events.put(CallbackResult(CallbackOutcome.CANCELLED))

    def stop(self) -> None:
        """Stop serving and release the port. Idempotent.

        Does not wait for connections that are still open; the callback page
        is fully written before its result is published.
        """
        with self._lock:
            server, thread = self._server, self._thread
            self._server = None
            self._thread = None
        if server is None:
            return
        try:
            server.shutdown()
            server.server_close()
            if thread is not None:
                thread.join()
        finally:
            _ACTIVE_LISTENER.release()
        logger.debug("Callback listener on port %d stopped", self._port)
