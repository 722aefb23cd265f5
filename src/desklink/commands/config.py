"""Config commands -- view and modify the desklink configuration file.

``desklink config show|set|reset`` operate on the user's
:class:`~desklink.models.GlobalConfig` (server URL, endpoint paths, device
name, callback, verification, and heartbeat settings). The ``--app-url``
flag and ``DESKLINK_APP_URL`` are not written back; ``show`` reports the
file contents only.
"""

from __future__ import annotations

from typing import Any

import typer
from pydantic import ValidationError

from desklink.exceptions import ConfigError
from desklink.exit_codes import EXIT_INVALID_USAGE
from desklink.output import error, info, print_json, success


config_app = typer.Typer(no_args_is_help=True)


def _coerce(key: str, current: Any, value: str) -> Any:
    """Convert *value* to the type of the existing setting."""
    if isinstance(current, bool):
        return value.lower() in ("true", "1", "yes")
    if isinstance(current, int):
        try:
            return int(value)
        except ValueError:
            error(f"Expected integer for {key}, got: {value}")
            raise typer.Exit(code=EXIT_INVALID_USAGE) from None
    if isinstance(current, float):
        try:
            return float(value)
        except ValueError:
            error(f"Expected number for {key}, got: {value}")
            raise typer.Exit(code=EXIT_INVALID_USAGE) from None
    if current is None and value.lower() in ("none", "null", ""):
        return None
    return value


@config_app.command("show")
def config_show() -> None:
    """Show the current configuration file.

    Example::

        desklink config show
        desklink --json config show
    """
    from desklink.config import get_config_dir, load_global_config

    try:
        config = load_global_config()
    except ConfigError as exc:
        error(str(exc))
        raise typer.Exit(code=exc.exit_code) from None
    info(f"Config directory: {get_config_dir()}")
    print_json(config.model_dump(mode="json"))


@config_app.command("set")
def config_set(
    key: str = typer.Argument(
        help="Config key (dot notation, e.g., 'heartbeat.interval_seconds')."
    ),
    value: str = typer.Argument(help="Value to set."),
) -> None:
    """Set a configuration value.

    Nested keys use dot notation. The value is coerced to the type of the
    current setting and the result is validated before it is saved.

    Example::

        desklink config set app_url https://staging.example.com
        desklink config set callback.base_port 9000
        desklink config set device_name "Office PC"
    """
    from desklink.config import load_global_config, save_global_config
    from desklink.models import GlobalConfig

    try:
        config = load_global_config()
    except ConfigError as exc:
        error(str(exc))
        raise typer.Exit(code=exc.exit_code) from None
    data = config.model_dump(mode="json")

    keys = key.split(".")
    target = data
    for k in keys[:-1]:
        if k not in target or not isinstance(target[k], dict):
            error(f"Invalid config key: {key}")
            raise typer.Exit(code=EXIT_INVALID_USAGE)
        target = target[k]

    final_key = keys[-1]
    if final_key not in target or isinstance(target[final_key], dict):
        error(f"Unknown config key: {key}")
        raise typer.Exit(code=EXIT_INVALID_USAGE)

    coerced = _coerce(key, target[final_key], value)
    target[final_key] = coerced

    try:
        new_config = GlobalConfig.model_validate(data)
    except ValidationError as exc:
        error(f"Validation error: {exc}")
        raise typer.Exit(code=EXIT_INVALID_USAGE) from None

    save_global_config(new_config)
    success(f"Set {key} = {coerced}")


@config_app.command("reset")
def config_reset(
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip the confirmation prompt."),
) -> None:
    """Reset the configuration to defaults.

    Example::

        desklink config reset --yes
    """
    from desklink.config import save_global_config
    from desklink.models import GlobalConfig

    if not yes:
        confirmed = typer.confirm("Reset all config to defaults?")
        if not confirmed:
            info("Cancelled.")
            raise typer.Exit()

    save_global_config(GlobalConfig())
    success("Configuration reset to defaults.")
