"""desklink -- link a desktop device to a remote account and keep it alive.

The device is authorized through the user's browser: a short-lived local
callback listener receives the device token issued by the remote authority,
the token is persisted locally, and a heartbeat re-verifies it every few
seconds so that server-side revocation is noticed promptly.

Typical workflow::

    desklink login        # authorize this device in the browser
    desklink run          # keep the session alive in the foreground
    desklink logout       # revoke and forget the device token

Modules:
    app: Typer application factory and CLI entry point.
    session: The link controller wiring login, heartbeat, and logout.
    heartbeat: Periodic liveness task with an owned cancellation handle.
    models: Pydantic models shared across the package.
    config: XDG-aware configuration and precedence resolution.
    exceptions: Exception hierarchy with exit-code mapping.
    exit_codes: Numeric exit codes following clig.dev conventions.
    output: stdout/stderr formatting and notifications with Rich support.
"""

__version__ = "0.1.0"
