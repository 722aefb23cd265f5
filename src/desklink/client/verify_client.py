"""HTTP client for the remote authority's verification and logout endpoints.

:class:`VerificationClient` wraps :class:`httpx.Client` and implements the
verification protocol:

- **Success (2xx)** -- the body's ``user`` object becomes a
  :class:`~desklink.models.UserIdentity`; a malformed body raises
  :class:`~desklink.exceptions.ProtocolError`.
- **401** -- :class:`~desklink.exceptions.UnauthorizedError` immediately.
  This is the authoritative "token revoked" signal and is never retried.
- **Anything else** (other status, transport error, timeout) -- retried
  with linear backoff (2 s, 4 s, ...) up to ``max_attempts``, then
  :class:`~desklink.exceptions.VerificationUnavailableError`.

The timeout applies per attempt, not cumulatively.
"""

from __future__ import annotations

import logging
import time
from typing import Optional

import httpx

from desklink.client.response import describe_failure, parse_user_identity
from desklink.exceptions import (
    NetworkError,
    UnauthorizedError,
    VerificationUnavailableError,
)
from desklink.models import UserIdentity, VerifyConfig

logger = logging.getLogger(__name__)


class VerificationClient:
    """Blocking client for ``POST verify`` and ``POST logout``.

    Thread-safe for concurrent calls from the heartbeat thread and the
    interactive thread (:class:`httpx.Client` pools connections safely).
    Use as a context manager, or call :meth:`close` explicitly.

    Args:
        verify_url: Absolute URL of the verification endpoint.
        logout_url: Absolute URL of the logout endpoint.
        config: Retry and timeout policy.
        transport: Optional :class:`httpx.BaseTransport`, used by tests to
            plug in :class:`httpx.MockTransport`.

    Example::

        with VerificationClient(cfg.verify_url, cfg.logout_url) as client:
            user = client.verify(device_token, session_token)
    """

    def __init__(
        self,
        verify_url: str,
        logout_url: str,
        config: Optional[VerifyConfig] = None,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self._verify_url = verify_url
        self._logout_url = logout_url
        self._config = config or VerifyConfig()
        self._client = httpx.Client(
            timeout=self._config.timeout_seconds,
            transport=transport,
            headers={"Accept": "application/json"},
        )

    # ------------------------------------------------------------------ #
    # Context manager
    # ------------------------------------------------------------------ #

    def __enter__(self) -> VerificationClient:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()

    def close(self) -> None:
        """Close the underlying connection pool. Safe to call twice."""
        self._client.close()

    # ------------------------------------------------------------------ #
    # Verification
    # ------------------------------------------------------------------ #

    def verify(
        self,
        device_token: str,
        session_token: str,
        max_attempts: Optional[int] = None,
    ) -> UserIdentity:
        """Validate a device/session token pair and fetch the user identity.

        Args:
            device_token: The persisted device token.
            session_token: The current session token.
            max_attempts: Override of the configured attempt bound.

        Returns:
            The :class:`~desklink.models.UserIdentity` reported by the server.

        Raises:
            UnauthorizedError: On HTTP 401, without retrying.
            ProtocolError: On a malformed 2xx body, without retrying.
            VerificationUnavailableError: When every attempt failed with a
                retryable error. Chained to the last :class:`NetworkError`.
        """
        attempts = max_attempts if max_attempts is not None else self._config.max_attempts
        last_error: Optional[NetworkError] = None

        for attempt in range(1, attempts + 1):
            try:
                return self._attempt(device_token, session_token)
            except NetworkError as exc:
                last_error = exc
                if attempt < attempts:
                    delay = self._config.backoff_ms * attempt / 1000
                    logger.warning(
                        "Verify attempt %d/%d failed: %s; retrying in %.0fs",
                        attempt,
                        attempts,
                        exc,
                        delay,
                    )
                    time.sleep(delay)
                else:
                    logger.warning("Verify attempt %d/%d failed: %s", attempt, attempts, exc)

        raise VerificationUnavailableError(
            f"Verification unavailable after {attempts} attempts: {last_error}",
            attempts=attempts,
        ) from last_error

    def ping(self, device_token: str, session_token: str) -> UserIdentity:
        """Run a single verification attempt, as used by the heartbeat.

        Raises:
            UnauthorizedError: On HTTP 401.
            ProtocolError: On a malformed 2xx body.
            NetworkError: On any other failure.
        """
        return self._attempt(device_token, session_token)

    def _attempt(self, device_token: str, session_token: str) -> UserIdentity:
        try:
            response = self._client.post(
                self._verify_url,
                json={"deviceToken": device_token, "sessionToken": session_token},
            )
        except httpx.HTTPError as exc:
            raise NetworkError(f"{type(exc).__name__}: {exc}") from exc

        if response.is_success:
            return parse_user_identity(response)
        if response.status_code == 401:
            raise UnauthorizedError("Device token was rejected (HTTP 401)")
        raise NetworkError(describe_failure(response))

    # ------------------------------------------------------------------ #
    # Logout
    # ------------------------------------------------------------------ #

    def logout(self, device_token: str) -> bool:
        """Tell the remote authority to forget *device_token*. Best effort.

        Failures are logged and never raised, so that a local logout always
        completes.

        Returns:
            ``True`` if the server answered with a 2xx status.
        """
        try:
            response = self._client.post(self._logout_url, json={"deviceToken": device_token})
        except httpx.HTTPError as exc:
            logger.warning("Remote logout failed: %s", exc)
            return False
        if not response.is_success:
            logger.warning("Remote logout failed: %s", describe_failure(response))
            return False
        return True
