"""Response parsing for the remote authority's verification endpoint.

Maps a successful :class:`httpx.Response` to a
:class:`~desklink.models.UserIdentity`, and extracts short error messages
from failed responses for logs and notifications.
"""

from __future__ import annotations

from typing import Any

import httpx

from desklink.exceptions import ProtocolError
from desklink.models import UserIdentity


def parse_user_identity(response: httpx.Response) -> UserIdentity:
    """Extract ``user.{id, username, email, uniqueId}`` from a 2xx response.

    ``id`` is accepted as a string or a number and normalised to a string.

    Args:
        response: A successful verification response.

    Returns:
        The verified :class:`~desklink.models.UserIdentity`.

    Raises:
        ProtocolError: If the body is not JSON, ``user`` is missing or not an
            object, or ``id`` is absent.
    """
    try:
        body = response.json()
    except ValueError as exc:
        raise ProtocolError(f"Verification response is not valid JSON: {exc}") from exc

    user = body.get("user") if isinstance(body, dict) else None
    if not isinstance(user, dict):
        raise ProtocolError("Verification response is missing the 'user' object")

    user_id = user.get("id")
    if user_id is None or isinstance(user_id, (dict, list, bool)):
        raise ProtocolError("Verification response has no usable 'user.id'")

    return UserIdentity(
        id=str(user_id),
        username=_optional_str(user, "username"),
        email=_optional_str(user, "email"),
        short_id=_optional_str(user, "uniqueId"),
    )


def _optional_str(data: dict[str, Any], key: str) -> str | None:
    value = data.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        raise ProtocolError(f"Verification response field 'user.{key}' is not a string")
    return value


def describe_failure(response: httpx.Response) -> str:
    """Return ``HTTP <status>: <message>`` for an error response.

    Tries the common ``message`` / ``error`` / ``detail`` JSON keys, then
    falls back to the first 200 characters of the body.
    """
    try:
        detail = response.json()
        if isinstance(detail, dict):
            msg = detail.get("message") or detail.get("error") or detail.get("detail") or ""
        else:
            msg = str(detail)
    except ValueError:
        msg = response.text[:200] if response.text else ""

    prefix = f"HTTP {response.status_code}"
    return f"{prefix}: {msg}" if msg else prefix
