"""HTTP client module for desklink.

Provides :class:`VerificationClient`, a blocking :mod:`httpx` client for the
remote authority's ``verify`` and ``logout`` endpoints, with bounded linear
retry for verification.

Example::

    from desklink.client import VerificationClient

    with VerificationClient(config.verify_url, config.logout_url) as client:
        user = client.verify(device_token, session_token)
"""

from desklink.client.verify_client import VerificationClient

__all__ = ["VerificationClient"]
