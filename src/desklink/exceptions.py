"""Exception hierarchy for desklink.

All exceptions inherit from :class:`DesklinkError`, which carries an
``exit_code`` attribute mapped to a constant from :mod:`desklink.exit_codes`.
The top-level error handler in :func:`desklink.app.main` catches
``DesklinkError`` and exits with the appropriate code, while unexpected
exceptions produce a crash log and exit with :data:`EXIT_GENERIC_FAILURE`.

Subclass hierarchy::

    DesklinkError                      (exit 1)
    +-- ConfigError                    (exit 1)
    +-- PersistenceError               (exit 8)
    +-- LoginError                     (exit 3)
    |   +-- NoAvailablePortError       (exit 9)
    |   +-- LoginTimeoutError
    |   +-- AuthorizationDeniedError
    |   +-- LoginInProgressError
    |   +-- LoginCancelledError
    +-- VerifyError                    (exit 6)
        +-- UnauthorizedError          (exit 3)
        +-- ProtocolError              (exit 5)
        +-- NetworkError
        +-- VerificationUnavailableError
"""

from __future__ import annotations

from desklink.exit_codes import (
    EXIT_AUTH_FAILURE,
    EXIT_CONNECTION_ERROR,
    EXIT_GENERIC_FAILURE,
    EXIT_NO_PORT,
    EXIT_PERSISTENCE_ERROR,
    EXIT_SERVER_ERROR,
)


class DesklinkError(Exception):
    """Base exception for all desklink errors.

    Every subclass sets a class-level ``exit_code`` corresponding to one of
    the constants in :mod:`desklink.exit_codes`. The entry point catches
    this exception type and calls ``sys.exit(exc.exit_code)``.

    Args:
        message: Short, human-readable description shown to the user.
        exit_code: Optional override for the class-level exit code.
    """

    exit_code: int = EXIT_GENERIC_FAILURE

    def __init__(self, message: str, exit_code: int | None = None):
        super().__init__(message)
        if exit_code is not None:
            self.exit_code = exit_code


class ConfigError(DesklinkError):
    """Raised for configuration problems (invalid JSON, failed validation)."""

    exit_code = EXIT_GENERIC_FAILURE


class PersistenceError(DesklinkError):
    """Raised when the device token file cannot be read, written, or deleted.

    Never fatal: the in-memory link state stays authoritative for the rest
    of the process even when the on-disk copy could not be updated.
    """

    exit_code = EXIT_PERSISTENCE_ERROR


# --- Authorization flow ---


class LoginError(DesklinkError):
    """Base class for failures of the browser authorization flow."""

    exit_code = EXIT_AUTH_FAILURE


class NoAvailablePortError(LoginError):
    """Raised when none of the probed callback ports could be bound."""

    exit_code = EXIT_NO_PORT


class LoginTimeoutError(LoginError):
    """Raised when the browser never redirected back within the timeout."""


class AuthorizationDeniedError(LoginError):
    """Raised when the callback arrived without a device token."""


class LoginInProgressError(LoginError):
    """Raised when a login is requested while another one is still running."""


class LoginCancelledError(LoginError):
    """Raised when an in-flight login is cancelled by logout or shutdown."""


# --- Verification ---


class VerifyError(DesklinkError):
    """Base class for failures talking to the verification endpoint."""

    exit_code = EXIT_CONNECTION_ERROR


class UnauthorizedError(VerifyError):
    """Raised on HTTP 401: the device token is invalid or was revoked.

    This is the authoritative revocation signal. It is never retried and
    always clears the locally stored token.
    """

    exit_code = EXIT_AUTH_FAILURE


class ProtocolError(VerifyError):
    """Raised when a 2xx verification response body is malformed."""

    exit_code = EXIT_SERVER_ERROR


class NetworkError(VerifyError):
    """A single failed verification attempt (transport error, timeout, non-2xx).

    Counted by the retry loop; surfaced directly only by single-attempt
    callers such as the heartbeat.
    """


class VerificationUnavailableError(VerifyError):
    """Raised when every verification attempt failed with a retryable error.

    Args:
        message: Human-readable description.
        attempts: How many attempts were made before giving up.
    """

    def __init__(self, message: str, attempts: int = 0):
        super().__init__(message)
        self.attempts = attempts
