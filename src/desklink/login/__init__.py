"""Browser-based device authorization.

- :mod:`desklink.login.listener` -- local callback HTTP listener and port selection.
- :mod:`desklink.login.flow` -- the authorization state machine.
"""

from desklink.login.flow import AuthorizationFlow, FlowState
from desklink.login.listener import (
    CallbackListener,
    CallbackOutcome,
    CallbackParams,
    CallbackResult,
    find_available_port,
)

__all__ = [
    "AuthorizationFlow",
    "CallbackListener",
    "CallbackOutcome",
    "CallbackParams",
    "CallbackResult",
    "FlowState",
    "find_available_port",
]
