"""Link controller: ties the token store, login flow, verification, and heartbeat together.

:class:`LinkController` is the one object a host (the CLI, or a tray shell)
talks to. It owns the startup check, interactive login and logout, the
heartbeat that detects revocation, and orderly shutdown.

Threading model:

- Interactive operations (:meth:`~LinkController.startup`,
  :meth:`~LinkController.login`, :meth:`~LinkController.logout`,
  :meth:`~LinkController.shutdown`) serialize on the controller lock, except
  the browser wait itself, so that ``logout`` can cancel a pending login.
- The heartbeat tick never takes the controller lock. It only uses the
  :class:`~desklink.auth.TokenStore` operations, which are atomic, and
  :meth:`~desklink.auth.TokenStore.clear` with ``expected_token`` so that a
  stale result cannot log out a newer session.
"""

from __future__ import annotations

import logging
import threading
from typing import Callable, Optional

from desklink import output
from desklink.auth.token_store import LinkSnapshot, TokenStore
from desklink.client.verify_client import VerificationClient
from desklink.exceptions import (
    AuthorizationDeniedError,
    DesklinkError,
    LoginCancelledError,
    LoginError,
    PersistenceError,
    UnauthorizedError,
    VerifyError,
)
from desklink.heartbeat import HeartbeatScheduler
from desklink.login.flow import AuthorizationFlow
from desklink.models import GlobalConfig, LinkState, UserIdentity

logger = logging.getLogger(__name__)

Notifier = Callable[[str, str], None]

_FLOW_STOP_GRACE_SECONDS = 5.0


class LinkController:
    """Manage the link between this installation and a user account.

    Args:
        config: Effective configuration.
        store: Token store; defaults to the file under the data directory.
        client: Verification client; defaults to one built from *config*.
        flow: Authorization flow; defaults to one that opens the system browser.
        notifier: ``(title, message)`` callable for user-visible
            notifications. Defaults to :func:`desklink.output.notify`.

    Example::

        with LinkController(resolve_config()) as controller:
            if controller.startup() is LinkState.LOGGED_OUT:
                controller.login()
            controller.wait_for_logout()
    """

    def __init__(
        self,
        config: GlobalConfig,
        store: Optional[TokenStore] = None,
        client: Optional[VerificationClient] = None,
        flow: Optional[AuthorizationFlow] = None,
        notifier: Optional[Notifier] = None,
    ) -> None:
        self._config = config
        self._store = store if store is not None else TokenStore()
        self._client = (
            client
            if client is not None
            else VerificationClient(config.verify_url, config.logout_url, config.verify)
        )
        self._flow = flow if flow is not None else AuthorizationFlow(config)
        self._notify = notifier if notifier is not None else output.notify
        self._heartbeat = HeartbeatScheduler(
            self._heartbeat_tick, config.heartbeat.interval_seconds
        )
        self._lock = threading.RLock()
        self._logged_out = threading.Event()
        self._revoked = False
        self._closed = False
        # Bumped by every logout; a login that straddles one is discarded.
        self._logout_generation = 0

    def __enter__(self) -> LinkController:
        return self

    def __exit__(self, *args: object) -> None:
        self.shutdown()

    # ------------------------------------------------------------------ #
    # Read access
    # ------------------------------------------------------------------ #

    @property
    def config(self) -> GlobalConfig:
        return self._config

    @property
    def store(self) -> TokenStore:
        return self._store

    @property
    def flow(self) -> AuthorizationFlow:
        return self._flow

    @property
    def heartbeat(self) -> HeartbeatScheduler:
        return self._heartbeat

    @property
    def state(self) -> LinkState:
        return self._store.state

    @property
    def user(self) -> Optional[UserIdentity]:
        return self._store.user

    @property
    def revoked(self) -> bool:
        """Whether the last session ended because the server revoked the token."""
        return self._revoked

    @property
    def profile_url(self) -> str:
        """URL of the account's profile page on the remote authority."""
        return self._config.profile_url

    def snapshot(self) -> LinkSnapshot:
        return self._store.snapshot()

    def wait_for_logout(self, timeout: Optional[float] = None) -> bool:
        """Block until the session ends by logout or revocation.

        Returns:
            ``True`` if the session ended, ``False`` on timeout.
        """
        return self._logged_out.wait(timeout)

    # ------------------------------------------------------------------ #
    # Startup
    # ------------------------------------------------------------------ #

    def startup(self, start_heartbeat: bool = True) -> LinkState:
        """Restore and verify a persisted device token.

        Any verification failure, including the server being unreachable,
        clears the stored token.

        Args:
            start_heartbeat: Start the heartbeat after a successful
                verification. ``status`` only needs the check.

        Returns:
            ``VERIFIED`` on success, ``LOGGED_OUT`` otherwise.
        """
        with self._lock:
            self._ensure_open()
            try:
                token = self._store.load()
            except PersistenceError as exc:
                logger.error("%s", exc)
                self._notify("Error", str(exc))
                return LinkState.LOGGED_OUT
            if token is None:
                logger.debug("No stored device token")
                return LinkState.LOGGED_OUT

            try:
                user = self._client.verify(token, self._store.session_token)
            except VerifyError as exc:
                logger.info("Stored device token failed verification: %s", exc)
                self._clear_local(expected_token=token)
                return LinkState.LOGGED_OUT

            self._store.set_user(user, for_token=token)
            self._revoked = False
            self._logged_out.clear()
            if start_heartbeat:
                self._heartbeat.start()
                self._notify(self._config.app_name, f"Logged in as {user.display_name()}")
            return self._store.state

    # ------------------------------------------------------------------ #
    # Login / logout
    # ------------------------------------------------------------------ #

    def login(self, timeout: Optional[float] = None) -> UserIdentity:
        """Link this installation through the browser authorization flow.

        Args:
            timeout: Seconds to wait for the browser redirect; defaults to
                the configured callback timeout.

        Returns:
            The provisional identity (``username`` and ``short_id`` only).

        Raises:
            LoginError: If already logged in, or any flow failure
                (timeout, denied, cancelled, no port, login in progress).
        """
        with self._lock:
            self._ensure_open()
            current = self._store.snapshot()
            if current.device_token:
                who = current.user.display_name() if current.user else "this device"
                raise LoginError(f"Already logged in as {who}; log out first")
            generation = self._logout_generation

        params = self._flow.run(timeout)
        if not params.token:
            raise AuthorizationDeniedError("Authorization was denied or no token was returned")
        user = UserIdentity(username=params.username, short_id=params.short_id)

        with self._lock:
            if self._closed or self._logout_generation != generation:
                raise LoginCancelledError("Login was cancelled")
            try:
                self._store.link(params.token, user)
            except PersistenceError as exc:
                logger.error("%s", exc)
                self._notify("Error", f"{exc}. You will need to log in again next time.")
            self._revoked = False
            self._logged_out.clear()
            # link() regenerated the session token on this thread; the first
            # tick picks it up from the store.
            self._heartbeat.start()

        self._notify("Login Successful", f"Logged in as {user.display_name()}")
        return user

    def logout(self) -> bool:
        """End the session locally and, best effort, on the remote authority.

        Also cancels a login that is waiting for the browser and waits for its
        callback listener to close.

        Returns:
            ``True`` if the remote authority acknowledged the logout or there
            was nothing to log out remotely.
        """
        if self._flow.cancel() and not self._flow.wait_idle(_FLOW_STOP_GRACE_SECONDS):
            logger.warning("Login flow did not stop within %gs", _FLOW_STOP_GRACE_SECONDS)
        with self._lock:
            self._logout_generation += 1
            self._heartbeat.stop()
            token = self._store.device_token or self._load_quietly()
            remote_ok = True
            if token and not self._closed:
                remote_ok = self._client.logout(token)
            self._clear_local()
            self._logged_out.set()

        self._notify("Logged Out", "Logged out successfully!")
        return remote_ok

    # ------------------------------------------------------------------ #
    # Shutdown
    # ------------------------------------------------------------------ #

    def shutdown(self) -> None:
        """Stop the heartbeat and any pending login, then close the HTTP client.

        The device token is kept. Idempotent.
        """
        with self._lock:
            if self._closed:
                return
            self._closed = True
        self._heartbeat.stop()
        if self._flow.cancel() and not self._flow.wait_idle(_FLOW_STOP_GRACE_SECONDS):
            logger.warning("Login flow did not stop within %gs", _FLOW_STOP_GRACE_SECONDS)
        self._client.close()
        self._logged_out.set()
        logger.debug("Link controller shut down")

    # ------------------------------------------------------------------ #
    # Internals
    # ------------------------------------------------------------------ #

    def _ensure_open(self) -> None:
        if self._closed:
            raise DesklinkError("Link controller has been shut down")

    def _load_quietly(self) -> Optional[str]:
        try:
            return self._store.load()
        except PersistenceError as exc:
            logger.warning("%s", exc)
            return None

    def _clear_local(self, expected_token: Optional[str] = None) -> bool:
        try:
            return self._store.clear(expected_token=expected_token)
        except PersistenceError as exc:
            logger.error("%s", exc)
            self._notify("Error", str(exc))
            return True

    def _heartbeat_tick(self) -> None:
        snapshot = self._store.snapshot()
        token = snapshot.device_token
        if not token:
            return

        try:
            user = self._client.ping(token, snapshot.session_token)
        except UnauthorizedError:
            logger.info("Device token was revoked by the server")
            if self._clear_local(expected_token=token):
                self._heartbeat.stop()
                self._revoked = True
                self._logged_out.set()
                self._notify("Session Expired", "You have been logged out. Please log in again.")
            return
        except VerifyError as exc:
            logger.warning("Heartbeat failed: %s", exc)
            return

        if self._store.set_user(user, for_token=token):
            logger.debug("Heartbeat ok for %s", user.display_name())
