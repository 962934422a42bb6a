"""Configuration management with XDG paths, atomic writes, and precedence resolution.

This module handles persistent configuration for komikcast:

* **Directory layout** -- XDG Base Directory compliant on Linux/BSD,
  ``~/.komikcast/`` on macOS and Windows. See :func:`get_config_dir`,
  :func:`get_cache_dir`, :func:`get_data_dir`.
* **Settings file** -- A single :class:`~komikcast.models.Settings` JSON
  file holding transport, cache, rate-limit and TTL settings.
* **Precedence resolution** -- :func:`resolve_settings` merges CLI flags,
  environment variables and the settings file into the effective
  configuration.

File writes use a temp-file-then-rename strategy (:func:`_atomic_write`).
"""

from __future__ import annotations

import json
import os
import platform
import tempfile
from pathlib import Path
from typing import Optional

from komikcast.exceptions import ConfigError
from komikcast.models import Settings

_APP_NAME = "komikcast"
_CONFIG_FILENAME = "config.json"

ENV_BASE_URL = "KOMIKCAST_BASE_URL"
ENV_TIMEOUT = "KOMIKCAST_TIMEOUT"
ENV_NO_CACHE = "KOMIKCAST_NO_CACHE"

_TRUTHY = ("1", "true", "yes", "on")


# --- XDG path resolution ---


def _is_xdg_platform() -> bool:
    """Return True on platforms following the XDG Base Directory spec (Linux/BSD)."""
    return platform.system() == "Linux" or platform.system().endswith("BSD")


def _fallback_base_dir() -> Path:
    return Path.home() / f".{_APP_NAME}"


def _xdg_base(env_var: str, default_segments: tuple[str, ...]) -> Path:
    """Resolve an XDG base directory from *env_var*, else ``$HOME/<segments>``."""
    env_value = os.environ.get(env_var, "")
    if env_value:
        return Path(env_value)
    base = Path.home()
    for seg in default_segments:
        base = base / seg
    return base


def get_config_dir() -> Path:
    """Return the configuration directory, creating it if necessary.

    On Linux/BSD: ``$XDG_CONFIG_HOME/komikcast/`` (default ``~/.config/komikcast/``).
    On macOS/Windows: ``~/.komikcast/``.
    """
    if _is_xdg_platform():
        path = _xdg_base("XDG_CONFIG_HOME", (".config",)) / _APP_NAME
    else:
        path = _fallback_base_dir()
    path.mkdir(parents=True, exist_ok=True)
    return path


def get_cache_dir() -> Path:
    """Return the persistent response cache directory, creating it if necessary.

    Cached data can be deleted at any time.

    On Linux/BSD: ``$XDG_CACHE_HOME/komikcast/`` (default ``~/.cache/komikcast/``).
    On macOS/Windows: ``~/.komikcast/cache/``.
    """
    if _is_xdg_platform():
        path = _xdg_base("XDG_CACHE_HOME", (".cache",)) / _APP_NAME
    else:
        path = _fallback_base_dir() / "cache"
    path.mkdir(parents=True, exist_ok=True)
    return path


def get_data_dir() -> Path:
    """Return the data directory (crash logs), creating it if necessary.

    On Linux/BSD: ``$XDG_DATA_HOME/komikcast/`` (default ``~/.local/share/komikcast/``).
    On macOS/Windows: ``~/.komikcast/logs/``.
    """
    if _is_xdg_platform():
        path = _xdg_base("XDG_DATA_HOME", (".local", "share")) / _APP_NAME
    else:
        path = _fallback_base_dir() / "logs"
    path.mkdir(parents=True, exist_ok=True)
    return path


# --- Atomic file writes ---


def _atomic_write(path: Path, data: str) -> None:
    """Write *data* to *path* via a temp file in the same directory and ``os.replace``.

    The temp file is removed on any failure.
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
        fd.write(data)
        fd.flush()
        os.fsync(fd.fileno())
        fd.close()
        fd = None
        os.replace(tmp_path, path)
    except BaseException:
        if fd is not None:
            fd.close()
        if tmp_path is not None:
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
        raise


# --- Settings file ---


def settings_path() -> Path:
    """Path to the user settings file."""
    return get_config_dir() / _CONFIG_FILENAME


def load_settings() -> Settings:
    """Load the user settings.

    Returns:
        The deserialised :class:`~komikcast.models.Settings`, or a default
        instance when the file does not exist.

    Raises:
        ConfigError: If the file contains invalid JSON or fails validation.
    """
    path = settings_path()
    if not path.is_file():
        return Settings()
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
        return Settings.model_validate(data)
    except (json.JSONDecodeError, ValueError) as exc:
        raise ConfigError(f"Invalid config at {path}: {exc}") from exc


def save_settings(settings: Settings) -> None:
    """Persist *settings* atomically."""
    data = settings.model_dump(mode="json")
    _atomic_write(settings_path(), json.dumps(data, indent=2) + "\n")


# --- Precedence resolution ---


def resolve_settings(
    cli_base_url: Optional[str] = None,
    cli_no_cache: bool = False,
) -> Settings:
    """Resolve settings with the full precedence chain.

    Precedence (high to low):
        1. CLI flags (``cli_base_url``, ``cli_no_cache``)
        2. Environment variables (``KOMIKCAST_BASE_URL``,
           ``KOMIKCAST_TIMEOUT``, ``KOMIKCAST_NO_CACHE``)
        3. User config (``~/.config/komikcast/config.json``)
        4. Defaults

    Raises:
        ConfigError: On an unreadable config file or a malformed
            ``KOMIKCAST_TIMEOUT``.
    """
    settings = load_settings()

    env_base_url = os.environ.get(ENV_BASE_URL)
    if cli_base_url is not None:
        settings.request.base_url = cli_base_url
    elif env_base_url:
        settings.request.base_url = env_base_url

    env_timeout = os.environ.get(ENV_TIMEOUT)
    if env_timeout:
        try:
            timeout = float(env_timeout)
        except ValueError:
            raise ConfigError(
                f"{ENV_TIMEOUT} must be a number of seconds, got: {env_timeout}"
            ) from None
        if timeout <= 0:
            raise ConfigError(f"{ENV_TIMEOUT} must be positive, got: {env_timeout}")
        settings.request.timeout = timeout

    if cli_no_cache or os.environ.get(ENV_NO_CACHE, "").strip().lower() in _TRUTHY:
        settings.cache.enabled = False

    return settings
