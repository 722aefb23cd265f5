"""Numeric process exit codes following `clig.dev <https://clig.dev/>`_ conventions.

Each constant maps to a specific error category and is referenced by the
corresponding :class:`~desklink.exceptions.DesklinkError` subclass.
Wrapper scripts can inspect the exit code to tell a revoked device apart
from an unreachable server without parsing stderr.

Example::

    $ desklink status
    $ echo $?
    6   # EXIT_CONNECTION_ERROR -- the remote authority could not be reached
"""

EXIT_SUCCESS = 0
"""The command completed successfully."""

EXIT_GENERIC_FAILURE = 1
"""An unclassified error occurred."""

EXIT_INVALID_USAGE = 2
"""The command was invoked with invalid arguments."""

EXIT_AUTH_FAILURE = 3
"""Authorization failed, was denied, or the device token was revoked."""

EXIT_SERVER_ERROR = 5
"""The remote authority answered with a response that could not be understood."""

EXIT_CONNECTION_ERROR = 6
"""The remote authority could not be reached (timeout, DNS failure, 5xx after retries)."""

EXIT_PERSISTENCE_ERROR = 8
"""The device token file could not be read, written, or removed."""

EXIT_NO_PORT = 9
"""No local port was free for the authorization callback listener."""
