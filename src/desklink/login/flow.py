"""Browser authorization flow: port selection, redirect capture, timeout.

One run of :class:`AuthorizationFlow` walks the state machine::

    idle -> port_selection -> listening -> awaiting_callback
         -> {completed | timed_out | failed} -> idle

and either returns the :class:`~desklink.login.listener.CallbackParams`
carrying a device token or raises a
:class:`~desklink.exceptions.LoginError` subclass. The flow never touches
the token store; persisting the result is the caller's job.
"""

from __future__ import annotations

import enum
import logging
import threading
import webbrowser
from typing import Any, Callable, Optional
from urllib.parse import urlencode

from desklink.exceptions import (
    AuthorizationDeniedError,
    LoginCancelledError,
    LoginInProgressError,
    LoginTimeoutError,
    NoAvailablePortError,
)
from desklink.login.listener import (
    CallbackListener,
    CallbackOutcome,
    CallbackParams,
    find_available_port,
)
from desklink.models import GlobalConfig

logger = logging.getLogger(__name__)


class FlowState(str, enum.Enum):
    """Observable state of an :class:`AuthorizationFlow`."""

    IDLE = "idle"
    PORT_SELECTION = "port_selection"
    LISTENING = "listening"
    AWAITING_CALLBACK = "awaiting_callback"
    COMPLETED = "completed"
    TIMED_OUT = "timed_out"
    FAILED = "failed"


class AuthorizationFlow:
    """Drive one browser-based device authorization at a time.

    Args:
        config: Endpoint, device, and callback settings.
        open_browser: Called with the authorization URL. Defaults to
            :func:`webbrowser.open`; tests pass a stub that simulates the
            redirect.
    """

    def __init__(
        self,
        config: GlobalConfig,
        open_browser: Callable[[str], Any] = webbrowser.open,
    ) -> None:
        self._config = config
        self._open_browser = open_browser
        self._run_lock = threading.Lock()
        self._state_lock = threading.Lock()
        self._state = FlowState.IDLE
        self._last_outcome: Optional[FlowState] = None
        self._listener: Optional[CallbackListener] = None
        self._active = False
        self._cancel_requested = False

    @property
    def state(self) -> FlowState:
        """The current state; ``IDLE`` between runs."""
        with self._state_lock:
            return self._state

    @property
    def last_outcome(self) -> Optional[FlowState]:
        """Terminal state of the most recent run, or ``None`` before the first."""
        with self._state_lock:
            return self._last_outcome

    @property
    def active(self) -> bool:
        """Whether a run is in flight."""
        with self._state_lock:
            return self._active

    def build_authorize_url(self, redirect_uri: str) -> str:
        """Return the authorization URL for *redirect_uri* with encoded parameters."""
        query = urlencode(
            {
                "redirect_uri": redirect_uri,
                "device_name": self._config.resolved_device_name(),
                "device_info": self._config.resolved_device_info(),
            }
        )
        return f"{self._config.authorize_url}?{query}"

    def run(self, timeout: Optional[float] = None) -> CallbackParams:
        """Run the authorization flow to completion.

        Args:
            timeout: Seconds to wait for the browser redirect. Defaults to
                ``config.callback.timeout_seconds``.

        Returns:
            The callback parameters; ``token`` is guaranteed non-empty.

        Raises:
            LoginInProgressError: If another run is in flight.
            NoAvailablePortError: If no callback port could be bound.
            LoginTimeoutError: If no redirect arrived in time.
            AuthorizationDeniedError: If the redirect carried no token.
            LoginCancelledError: If :meth:`cancel` was called.
        """
        if not self._run_lock.acquire(blocking=False):
            raise LoginInProgressError("A login is already in progress")
        try:
            with self._state_lock:
                self._active = True
                self._cancel_requested = False
            return self._run(timeout)
        finally:
            with self._state_lock:
                self._active = False
                self._listener = None
                self._state = FlowState.IDLE
            self._run_lock.release()

    def cancel(self) -> bool:
        """Abort an in-flight run; it raises :class:`LoginCancelledError`.

        Returns:
            ``True`` if a run was in flight.
        """
        with self._state_lock:
            if not self._active:
                return False
            self._cancel_requested = True
            if self._listener is not None:
                self._listener.cancel()
        logger.debug("Login cancellation requested")
        return True

    def wait_idle(self, timeout: Optional[float] = None) -> bool:
        """Block until no run is in flight. Returns ``False`` on timeout."""
        acquired = self._run_lock.acquire(timeout=-1 if timeout is None else timeout)
        if acquired:
            self._run_lock.release()
        return acquired

    # ------------------------------------------------------------------ #
    # Internals
    # ------------------------------------------------------------------ #

    def _set_state(self, state: FlowState) -> None:
        with self._state_lock:
            self._state = state
            if state in (FlowState.COMPLETED, FlowState.TIMED_OUT, FlowState.FAILED):
                self._last_outcome = state
        logger.debug("Authorization flow: %s", state.value)

    def _run(self, timeout: Optional[float]) -> CallbackParams:
        cb = self._config.callback
        wait_seconds = cb.timeout_seconds if timeout is None else timeout

        self._set_state(FlowState.PORT_SELECTION)
        try:
            port = find_available_port(cb.base_port, cb.max_port_attempts, cb.bind_host)
        except NoAvailablePortError:
            self._set_state(FlowState.FAILED)
            raise

        listener = CallbackListener(
            port,
            bind_host=cb.bind_host,
            redirect_host=cb.redirect_host,
            path=cb.path,
            app_name=self._config.app_name,
        )
        with self._state_lock:
            self._listener = listener
            if self._cancel_requested:
                listener.cancel()

        try:
            listener.start()
        except (NoAvailablePortError, LoginInProgressError):
            self._set_state(FlowState.FAILED)
            raise

        try:
            self._set_state(FlowState.LISTENING)
            self._launch_browser(self.build_authorize_url(listener.redirect_uri))
            self._set_state(FlowState.AWAITING_CALLBACK)
            result = listener.wait(wait_seconds)
        finally:
            listener.stop()

        if result.outcome is CallbackOutcome.TIMED_OUT:
            self._set_state(FlowState.TIMED_OUT)
            raise LoginTimeoutError(
                f"No authorization received within {wait_seconds:g} seconds"
            )
        if result.outcome is CallbackOutcome.CANCELLED:
            self._set_state(FlowState.FAILED)
            raise LoginCancelledError("Login was cancelled")

        params = result.params
        if params is None or not params.granted:
            self._set_state(FlowState.FAILED)
            raise AuthorizationDeniedError("Authorization was denied or no token was returned")

        self._set_state(FlowState.COMPLETED)
        return params

    def _launch_browser(self, url: str) -> None:
        def open_browser() -> None:
            try:
                opened = self._open_browser(url)
            except webbrowser.Error as exc:
                logger.warning("Could not open a browser: %s", exc)
                return
            if opened is False:
                logger.warning("No browser available to open %s", url)

        browser_thread = threading.Thread(target=open_browser, name="desklink-browser", daemon=True)
        browser_thread.start()
