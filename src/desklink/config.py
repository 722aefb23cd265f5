"""Configuration management with XDG paths, atomic writes, and precedence resolution.

This module handles all persistent state outside the token itself:

* **Directory layout** -- XDG Base Directory compliant on Linux/BSD,
  ``~/.desklink/`` on macOS and Windows. See :func:`get_config_dir` and
  :func:`get_data_dir`.
* **Global config** -- A single :class:`~desklink.models.GlobalConfig`
  JSON file holding endpoint URLs, callback, verification, and heartbeat
  settings.
* **Precedence resolution** -- :func:`resolve_config` merges the CLI flag,
  the ``DESKLINK_APP_URL`` environment variable, and the config file.
* **Token location** -- :func:`get_token_path` names the single file that
  holds the raw device token.

All file writes use an atomic temp-file-then-rename strategy
(:func:`atomic_write`) to prevent a torn file on crash or power failure.
"""

from __future__ import annotations

import json
import os
import platform
import tempfile
from pathlib import Path
from typing import Optional

from desklink.exceptions import ConfigError
from desklink.models import GlobalConfig

_APP_NAME = "desklink"
_CONFIG_FILENAME = "config.json"
_TOKEN_FILENAME = "device_token.txt"

APP_URL_ENV_VAR = "DESKLINK_APP_URL"


# --- XDG path resolution ---


def _is_xdg_platform() -> bool:
    """Return True if the platform follows the XDG Base Directory layout (Linux/FreeBSD)."""
    return platform.system() == "Linux" or platform.system().endswith("BSD")


def _fallback_base_dir() -> Path:
    """Fallback base directory for non-XDG platforms (macOS, Windows)."""
    return Path.home() / f".{_APP_NAME}"


def _xdg_base(env_var: str, default_segments: tuple[str, ...]) -> Path:
    """Resolve an XDG base directory from an env var with fallback segments under $HOME."""
    env_value = os.environ.get(env_var, "")
    if env_value:
        return Path(env_value)
    base = Path.home()
    for seg in default_segments:
        base = base / seg
    return base


def get_config_dir() -> Path:
    """Return the configuration directory, creating it if necessary.

    On Linux/BSD: ``$XDG_CONFIG_HOME/desklink/`` (default ``~/.config/desklink/``).
    On macOS/Windows: ``~/.desklink/``.

    Returns:
        Absolute path to the configuration directory (guaranteed to exist).
    """
    if _is_xdg_platform():
        path = _xdg_base("XDG_CONFIG_HOME", (".config",)) / _APP_NAME
    else:
        path = _fallback_base_dir()
    path.mkdir(parents=True, exist_ok=True)
    return path


def get_data_dir() -> Path:
    """Return the per-user application data directory, creating it if necessary.

    Holds the device token file and crash logs.

    On Linux/BSD: ``$XDG_DATA_HOME/desklink/`` (default ``~/.local/share/desklink/``).
    On macOS/Windows: ``~/.desklink/data/``.

    Returns:
        Absolute path to the data directory (guaranteed to exist).
    """
    if _is_xdg_platform():
        path = _xdg_base("XDG_DATA_HOME", (".local", "share")) / _APP_NAME
    else:
        path = _fallback_base_dir() / "data"
    path.mkdir(parents=True, exist_ok=True)
    return path


def get_token_path() -> Path:
    """Return the well-known path of the device token file.

    The file is not created here; an absent file means the device is
    logged out.
    """
    return get_data_dir() / _TOKEN_FILENAME


# --- Atomic file writes ---


def atomic_write(path: Path, data: str, mode: Optional[int] = None) -> None:
    """Write data to file atomically using temp file + rename.

    The temporary file is created in the same directory as *path* so that
    ``os.replace`` is an atomic rename on POSIX systems. When *mode* is
    given, permissions are applied to the temp file before any content is
    written, so a secret is never readable by others, even momentarily.

    Args:
        path: Destination file. Parent directories are created.
        data: Text to write (UTF-8).
        mode: Optional permission bits, e.g. ``0o600``.

    Raises:
        OSError: If the file cannot be written. The temp file is removed.
    """
    path.parent.mkdir(parents=True, exist_ok=True)

    fd = None
    tmp_path: Optional[str] = None
    try:
        fd = tempfile.NamedTemporaryFile(
            mode="w",
            dir=path.parent,
            prefix=f".{path.name}.",
            suffix=".tmp",
            delete=False,
            encoding="utf-8",
        )
        tmp_path = fd.name
        if mode is not None:
            os.chmod(tmp_path, mode)
        fd.write(data)
        fd.flush()
        os.fsync(fd.fileno())
        fd.close()
        fd = None  # prevent double-close below
        os.replace(tmp_path, path)
    except BaseException:
        # Clean up the temp file on any error (including KeyboardInterrupt).
        if fd is not None:
            fd.close()
        if tmp_path is not None:
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
        raise


# --- Global config ---


def _global_config_path() -> Path:
    """Path to the global config file."""
    return get_config_dir() / _CONFIG_FILENAME


def load_global_config() -> GlobalConfig:
    """Load the global configuration from the config directory.

    Returns:
        The deserialised :class:`~desklink.models.GlobalConfig`. If the
        file does not exist, a default instance is returned.

    Raises:
        ConfigError: If the file exists but contains invalid JSON or fails
            Pydantic validation.
    """
    path = _global_config_path()
    if not path.is_file():
        return GlobalConfig()
    try:
        text = path.read_text(encoding="utf-8")
        data = json.loads(text)
        return GlobalConfig.model_validate(data)
    except (json.JSONDecodeError, ValueError) as exc:
        raise ConfigError(f"Invalid config at {path}: {exc}") from exc


def save_global_config(config: GlobalConfig) -> None:
    """Persist the global configuration atomically to disk.

    Args:
        config: The configuration to save.
    """
    data = config.model_dump(mode="json")
    atomic_write(_global_config_path(), json.dumps(data, indent=2) + "\n")


# --- Precedence resolution ---


def resolve_config(cli_app_url: Optional[str] = None) -> GlobalConfig:
    """Resolve config with the full precedence chain.

    Precedence (high to low):
        1. CLI flag (``--app-url``)
        2. Environment variable (``DESKLINK_APP_URL``)
        3. User config (``~/.config/desklink/config.json``)
        4. Defaults

    Returns:
        The effective :class:`~desklink.models.GlobalConfig`.
    """
    config = load_global_config()

    env_app_url = os.environ.get(APP_URL_ENV_VAR)
    if cli_app_url is not None:
        config.app_url = cli_app_url
    elif env_app_url:
        config.app_url = env_app_url

    return config
