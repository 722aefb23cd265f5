"""Device credential state for desklink.

The main entry points are:

- :class:`TokenStore` -- persists the single device token and serializes
  every mutation of the in-memory link state.
- :class:`LinkSnapshot` -- an immutable, consistent view of that state.
- :func:`generate_session_token` -- fresh session identifiers.

Typical usage::

    from desklink.auth import TokenStore

    store = TokenStore()
    token = store.load()
"""

from desklink.auth.session_token import generate_session_token
from desklink.auth.token_store import LinkSnapshot, TokenStore

__all__ = [
    "LinkSnapshot",
    "TokenStore",
    "generate_session_token",
]
