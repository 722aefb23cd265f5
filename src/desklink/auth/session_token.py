"""Session token generation.

A session token identifies one liveness session of this process. It is
sent with the device token on every verification and heartbeat call so
the remote authority can tell concurrent sessions of the same device
apart. It is never persisted.
"""

from __future__ import annotations

import base64
import secrets

SESSION_TOKEN_BYTES = 32
SESSION_TOKEN_LENGTH = 43


def generate_session_token() -> str:
    """Return a fresh URL-safe session token.

    Draws :data:`SESSION_TOKEN_BYTES` bytes from :mod:`secrets`, encodes
    them as URL-safe base64 without padding and truncates the result to
    :data:`SESSION_TOKEN_LENGTH` characters. A shorter encoding is returned
    as-is.

    Returns:
        A string made only of ``A-Z a-z 0-9 - _``.
    """
    raw = secrets.token_bytes(SESSION_TOKEN_BYTES)
    token = base64.urlsafe_b64encode(raw).decode("ascii").rstrip("=")
    return token[:SESSION_TOKEN_LENGTH]
