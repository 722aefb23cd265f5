"""Link commands -- log in, log out, check status, keep the session alive.

These are plain callbacks registered directly on the root app::

    desklink login            # authorize this device in the browser
    desklink login --run      # ...and keep the heartbeat running
    desklink status           # verify the stored token and show the account
    desklink run              # keep the session alive until Ctrl-C
    desklink logout
    desklink profile          # open the account page
"""

from __future__ import annotations

import webbrowser
from typing import NoReturn, Optional

import typer

from desklink.exceptions import DesklinkError
from desklink.exit_codes import EXIT_AUTH_FAILURE
from desklink.models import GlobalConfig, LinkState
from desklink.output import debug, error, info, print_record, success, suggest, warning
from desklink.session import LinkController


def _fail(exc: DesklinkError) -> NoReturn:
    error(str(exc))
    raise typer.Exit(code=exc.exit_code)


def _resolve(ctx: typer.Context) -> GlobalConfig:
    from desklink.config import resolve_config

    app_url = ctx.obj.get("app_url") if ctx.obj else None
    try:
        config = resolve_config(app_url)
    except DesklinkError as exc:
        _fail(exc)
    debug(f"Server: {config.app_url}")
    return config


def _open_browser(url: str) -> bool:
    info(f"Opening {url}")
    info("If the browser does not open, visit the URL above.")
    return webbrowser.open(url)


def create_controller(config: GlobalConfig) -> LinkController:
    """Build the :class:`~desklink.session.LinkController` used by every command."""
    from desklink.login.flow import AuthorizationFlow

    return LinkController(config, flow=AuthorizationFlow(config, open_browser=_open_browser))


def _keep_alive(controller: LinkController) -> None:
    """Block while the heartbeat runs; exit 3 if the server revokes the token."""
    interval = controller.config.heartbeat.interval_seconds
    info(f"Session active, checking every {interval:g}s. Press Ctrl-C to stop.")
    while not controller.wait_for_logout(timeout=1.0):
        pass
    if controller.revoked:
        suggest("Log in again: desklink login")
        raise typer.Exit(code=EXIT_AUTH_FAILURE)


def login_command(
    ctx: typer.Context,
    run: bool = typer.Option(
        False, "--run", help="Keep the session alive after logging in."
    ),
    timeout: Optional[float] = typer.Option(
        None, "--timeout", help="Seconds to wait for the browser (default: from config)."
    ),
) -> None:
    """Link this device to your account through the browser.

    Starts a local callback listener, opens the authorization page, and
    waits for the redirect. An existing, still-valid login is kept.

    Example::

        desklink login
        desklink login --run
    """
    config = _resolve(ctx)
    with create_controller(config) as controller:
        try:
            state = controller.startup(start_heartbeat=run)
            if state is LinkState.LOGGED_OUT:
                info(f"Authorizing this device with {config.app_name}...")
                controller.login(timeout)
            else:
                who = controller.user.display_name() if controller.user else "unknown user"
                info(f"Already logged in as {who}.")
        except DesklinkError as exc:
            _fail(exc)

        if run:
            _keep_alive(controller)
        else:
            suggest("Keep the session alive: desklink run")


def logout_command(ctx: typer.Context) -> None:
    """Log this device out and delete the stored token.

    The server is told about the logout on a best-effort basis; the local
    token is removed even when the server cannot be reached.
    """
    config = _resolve(ctx)
    with create_controller(config) as controller:
        debug(f"Token file: {controller.store.path}")
        try:
            remote_ok = controller.logout()
        except DesklinkError as exc:
            _fail(exc)
    if not remote_ok:
        warning("Could not notify the server; the local token was removed anyway.")


def status_command(ctx: typer.Context) -> None:
    """Verify the stored token and show the linked account.

    A token that fails verification is removed, exactly as on startup.

    Example::

        desklink status
        desklink --json status
    """
    config = _resolve(ctx)
    with create_controller(config) as controller:
        try:
            state = controller.startup(start_heartbeat=False)
        except DesklinkError as exc:
            _fail(exc)
        user = controller.user
        token_file = controller.store.path

    print_record(
        {
            "state": state.value,
            "username": user.username if user else None,
            "short_id": user.short_id if user else None,
            "email": user.email if user else None,
            "user_id": user.id if user else None,
            "server": config.app_url,
            "token_file": str(token_file),
        },
        title="Link status",
    )
    if state is LinkState.LOGGED_OUT:
        suggest("Log in: desklink login")


def run_command(ctx: typer.Context) -> None:
    """Verify the stored token and keep the session alive.

    Runs the heartbeat in the foreground until Ctrl-C. Exits with code 3
    when the server revokes the token, or when there is no valid login.
    """
    config = _resolve(ctx)
    with create_controller(config) as controller:
        try:
            state = controller.startup()
        except DesklinkError as exc:
            _fail(exc)
        if state is LinkState.LOGGED_OUT:
            error("Not logged in.")
            suggest("Log in: desklink login --run")
            raise typer.Exit(code=EXIT_AUTH_FAILURE)
        _keep_alive(controller)


def profile_command(ctx: typer.Context) -> None:
    """Open your account profile page in the browser."""
    config = _resolve(ctx)
    url = config.profile_url
    if webbrowser.open(url):
        success(f"Opened {url}")
    else:
        info(f"Open this URL in your browser: {url}")
