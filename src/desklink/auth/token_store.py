"""Persistent device token store and in-memory link state.

The device token lives in a single plain-text file (by default
``~/.local/share/desklink/device_token.txt``) holding nothing but the raw
token. Writes are atomic via :func:`desklink.config.atomic_write` with
``0o600`` permissions.

:class:`TokenStore` is also the single writer of the in-memory link state:
the device token, the :class:`~desklink.models.UserIdentity` it belongs to,
and the current session token. Both the interactive login/logout path and
the heartbeat thread mutate that state, so every operation runs under one
re-entrant lock and readers take an immutable :class:`LinkSnapshot`.

See Also:
    :class:`~desklink.session.LinkController` -- the only caller that
    mutates the store.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from desklink.auth.session_token import generate_session_token
from desklink.config import atomic_write, get_token_path
from desklink.exceptions import PersistenceError
from desklink.models import LinkState, UserIdentity

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LinkSnapshot:
    """A consistent, read-only copy of the link state.

    Attributes:
        device_token: The current device token, or ``None`` when logged out.
        session_token: The session token of the current liveness session.
        user: The identity bound to the device token, if known.
    """

    device_token: Optional[str]
    session_token: str
    user: Optional[UserIdentity]

    @property
    def state(self) -> LinkState:
        """The :class:`~desklink.models.LinkState` derived from this snapshot."""
        if not self.device_token:
            return LinkState.LOGGED_OUT
        if self.user is not None and self.user.is_verified:
            return LinkState.VERIFIED
        return LinkState.LINKED


class TokenStore:
    """Read/write the device token and guard the in-memory link state.

    Args:
        path: Token file location. Defaults to
            :func:`~desklink.config.get_token_path`.

    Example::

        store = TokenStore()
        if store.load() is None:
            print("logged out")
    """

    def __init__(self, path: Optional[Path] = None) -> None:
        self._path = path if path is not None else get_token_path()
        self._lock = threading.RLock()
        self._device_token: Optional[str] = None
        self._user: Optional[UserIdentity] = None
        self._session_token = generate_session_token()

    @property
    def path(self) -> Path:
        """The filesystem path of the device token file."""
        return self._path

    # ------------------------------------------------------------------ #
    # Read access
    # ------------------------------------------------------------------ #

    @property
    def device_token(self) -> Optional[str]:
        with self._lock:
            return self._device_token

    @property
    def session_token(self) -> str:
        with self._lock:
            return self._session_token

    @property
    def user(self) -> Optional[UserIdentity]:
        with self._lock:
            return self._user

    @property
    def state(self) -> LinkState:
        return self.snapshot().state

    def snapshot(self) -> LinkSnapshot:
        """Return a consistent copy of token, session token, and identity."""
        with self._lock:
            return LinkSnapshot(
                device_token=self._device_token,
                session_token=self._session_token,
                user=self._user,
            )

    # ------------------------------------------------------------------ #
    # Persistence
    # ------------------------------------------------------------------ #

    def load(self) -> Optional[str]:
        """Load the persisted device token into memory.

        A missing or blank file means the device is logged out; that is not
        an error.

        Returns:
            The stripped token, or ``None``.

        Raises:
            PersistenceError: If the file exists but cannot be read.
        """
        with self._lock:
            if not self._path.is_file():
                self._device_token = None
                self._user = None
                return None
            try:
                text = self._path.read_text(encoding="utf-8")
            except OSError as exc:
                raise PersistenceError(f"Failed to load token: {exc}") from exc
            token = text.strip() or None
            if token != self._device_token:
                self._user = None
            self._device_token = token
            return token

    def save(self, token: str) -> None:
        """Set the device token and write it to disk, replacing any prior value.

        The in-memory token is updated first, so it stays authoritative even
        when the write fails.

        Args:
            token: The device token issued by the remote authority.

        Raises:
            PersistenceError: If the file cannot be written.
        """
        with self._lock:
            if token != self._device_token:
                self._user = None
            self._device_token = token
            self._write(token)

    def clear(self, expected_token: Optional[str] = None) -> bool:
        """Forget the device token and identity, and delete the token file.

        Idempotent: clearing an already logged-out store is not an error.

        Args:
            expected_token: When given, only clear if the current token is
                still this one. A heartbeat that verified an old token must
                not wipe a token issued by a newer login.

        Returns:
            ``True`` if the state was cleared, ``False`` if skipped because
            *expected_token* no longer matched.

        Raises:
            PersistenceError: If the file exists but cannot be deleted. The
                in-memory state is cleared regardless.
        """
        with self._lock:
            if expected_token is not None and expected_token != self._device_token:
                logger.debug("Skipping clear: token changed since it was read")
                return False
            self._device_token = None
            self._user = None
            try:
                self._path.unlink(missing_ok=True)
            except OSError as exc:
                raise PersistenceError(f"Failed to delete token: {exc}") from exc
            return True

    # ------------------------------------------------------------------ #
    # Link state mutations
    # ------------------------------------------------------------------ #

    def link(self, token: str, user: UserIdentity) -> LinkSnapshot:
        """Record a freshly issued device token and start a new session.

        Sets the token and the provisional identity, regenerates the session
        token, and only then writes the file. The returned snapshot carries
        the new session token for the heartbeat to use.

        Args:
            token: The device token from the authorization callback.
            user: Identity built from the callback parameters.

        Returns:
            The snapshot after linking.

        Raises:
            PersistenceError: If the token file cannot be written. The
                in-memory link is kept.
        """
        with self._lock:
            self._device_token = token
            self._user = user
            self._session_token = generate_session_token()
            snapshot = self.snapshot()
            self._write(token)
            return snapshot

    def set_user(self, user: UserIdentity, for_token: str) -> bool:
        """Record a verified identity if *for_token* is still current.

        Args:
            user: Identity returned by the verification endpoint.
            for_token: The device token that was verified.

        Returns:
            ``True`` if stored, ``False`` if the token changed or was cleared
            in the meantime.
        """
        with self._lock:
            if not self._device_token or self._device_token != for_token:
                return False
            self._user = user
            return True

    def rotate_session_token(self) -> str:
        """Replace the session token with a fresh one and return it."""
        with self._lock:
            self._session_token = generate_session_token()
            return self._session_token

    def _write(self, token: str) -> None:
        try:
            atomic_write(self._path, token, mode=0o600)
        except OSError as exc:
            raise PersistenceError(f"Failed to save token: {exc}") from exc
