"""Canonical Pydantic models shared across all desklink modules.

The models fall into two groups:

**Configuration models** -- serialised as JSON in the user's config directory:
    :class:`CallbackConfig`, :class:`VerifyConfig`, :class:`HeartbeatConfig`,
    and the top-level :class:`GlobalConfig`.

**Link state models** -- produced at runtime by the linking subsystem:
    :class:`UserIdentity` and :class:`LinkState`.

All models use Pydantic v2. :class:`GlobalConfig` ignores unknown keys so
that a config file written by a newer release still loads.
"""

from __future__ import annotations

import enum
import platform
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


# --- Link state ---


class LinkState(str, enum.Enum):
    """Derived link state of this installation. Never stored.

    * ``LOGGED_OUT`` -- no device token is present.
    * ``LINKED`` -- a device token is present but the remote authority has
      not yet confirmed the full identity.
    * ``VERIFIED`` -- a successful verification populated the identity.
    """

    LOGGED_OUT = "logged_out"
    LINKED = "linked"
    VERIFIED = "verified"


class UserIdentity(BaseModel):
    """The account a device token belongs to.

    After a browser login only ``username`` and ``short_id`` are known (they
    arrive as callback query parameters). ``id`` and ``email`` are filled in
    by the next successful verification.

    Example::

        UserIdentity(username="alice", short_id="A1")
    """

    model_config = ConfigDict(frozen=True)

    id: Optional[str] = Field(default=None, description="Server-side account id")
    username: Optional[str] = None
    email: Optional[str] = None
    short_id: Optional[str] = Field(
        default=None, description="Public short id (``uniqueId`` / ``shortId`` on the wire)"
    )

    @property
    def is_verified(self) -> bool:
        """Whether this identity came from the verification endpoint."""
        return self.id is not None

    def display_name(self) -> str:
        """Return ``username (short_id)`` or whichever part is known."""
        name = self.username or "unknown user"
        if self.short_id:
            return f"{name} ({self.short_id})"
        return name


# --- Configuration ---


class CallbackConfig(BaseModel):
    """Settings for the local authorization callback listener."""

    bind_host: str = Field(default="127.0.0.1", description="Interface the listener binds")
    redirect_host: str = Field(
        default="localhost", description="Host name used in the redirect_uri"
    )
    path: str = Field(default="/callback", description="Path that accepts the redirect")
    base_port: int = Field(default=8787, description="First port probed")
    max_port_attempts: int = Field(default=10, description="How many ports to probe")
    timeout_seconds: float = Field(
        default=300, description="How long to wait for the browser redirect"
    )


class VerifyConfig(BaseModel):
    """Retry and timeout policy for the verification endpoint."""

    timeout_seconds: float = Field(default=30, description="Timeout per attempt")
    max_attempts: int = Field(default=3, description="Attempts before giving up")
    backoff_ms: int = Field(
        default=2000, description="Linear backoff unit: wait backoff_ms * attempt"
    )


class HeartbeatConfig(BaseModel):
    """Heartbeat scheduling settings."""

    interval_seconds: float = Field(default=5, description="Seconds between ticks")


class GlobalConfig(BaseModel):
    """User-wide configuration persisted at ``~/.config/desklink/config.json``.

    Loaded and saved by :func:`~desklink.config.load_global_config` and
    :func:`~desklink.config.save_global_config`. ``app_url`` can be
    overridden by the ``DESKLINK_APP_URL`` environment variable or the
    ``--app-url`` CLI flag; see :func:`~desklink.config.resolve_config`.
    """

    model_config = ConfigDict(extra="ignore")

    app_name: str = Field(default="McWhitelist", description="Product name shown to the user")
    app_url: str = Field(
        default="https://mcwhitelist.alokyn.com", description="Remote authority base URL"
    )
    authorize_path: str = "/api/auth/desktop/authorize"
    verify_path: str = "/api/auth/desktop/verify"
    logout_path: str = "/api/auth/desktop/logout"
    profile_path: str = "/settings"
    device_name: Optional[str] = Field(
        default=None, description="Display name sent on authorization (default: host name)"
    )
    device_info: Optional[str] = Field(
        default=None, description="Device descriptor sent on authorization"
    )
    callback: CallbackConfig = Field(default_factory=CallbackConfig)
    verify: VerifyConfig = Field(default_factory=VerifyConfig)
    heartbeat: HeartbeatConfig = Field(default_factory=HeartbeatConfig)

    def _url(self, path: str) -> str:
        return self.app_url.rstrip("/") + path

    @property
    def authorize_url(self) -> str:
        return self._url(self.authorize_path)

    @property
    def verify_url(self) -> str:
        return self._url(self.verify_path)

    @property
    def logout_url(self) -> str:
        return self._url(self.logout_path)

    @property
    def profile_url(self) -> str:
        return self._url(self.profile_path)

    def resolved_device_name(self) -> str:
        """Return the configured device name, or the machine's host name."""
        return self.device_name or platform.node() or "desktop"

    def resolved_device_info(self) -> str:
        """Return the configured device descriptor, or one built from the OS."""
        if self.device_info:
            return self.device_info
        return f"{platform.system()} {platform.release()} - {self.app_name} Desktop"
