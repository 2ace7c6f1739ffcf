"""Runtime configuration for pyuad."""

from __future__ import annotations

import dataclasses
import os
from pathlib import Path
from typing import Any

from pyuad._constants import CATALOG_URL, NAME, RELEASE_URL
from pyuad.exceptions import UadConfigError


def _env_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "y", "on"}:
        return True
    if normalized in {"0", "false", "no", "n", "off"}:
        return False
    return default


def _default_config_dir() -> Path:
    base = os.environ.get("XDG_CONFIG_HOME")
    root = Path(base) if base else Path.home() / ".config"
    return root / NAME


@dataclasses.dataclass(frozen=True)
class UadConfig:
    """Runtime configuration.

    Parameters
    ----------
    adb_path : str
        Executable used for the device bridge. Resolved through ``PATH``
        when not absolute.
    config_path : Path
        JSON file holding persisted general and per-device settings.
    backup_folder : Path
        Default backup root, used until the user picks another folder.
        Backups live in ``<backup_folder>/<device id>/``.
    export_folder : Path
        Directory receiving exported package lists.
    release_url : str
        GitHub "latest release" API endpoint.
    catalog_url : str
        URL of the package removal-recommendation catalog.
    current_version : str
        Version compared against the latest release tag.
    adb_timeout : float
        Seconds before a single bridge invocation is abandoned.
    http_timeout : float
        Total timeout in seconds for release/catalog HTTP requests.
    self_update_enabled : bool
        Whether a newer release may be downloaded and relaunched.
    """

    adb_path: str = "adb"
    config_path: Path = dataclasses.field(default_factory=lambda: _default_config_dir() / "config.json")
    backup_folder: Path = dataclasses.field(default_factory=lambda: _default_config_dir() / "backups")
    export_folder: Path = dataclasses.field(default_factory=Path.cwd)
    release_url: str = RELEASE_URL
    catalog_url: str = CATALOG_URL
    current_version: str = "0.0.0"
    adb_timeout: float = 30.0
    http_timeout: float = 15.0
    self_update_enabled: bool = False

    def __post_init__(self) -> None:
        if self.adb_timeout <= 0:
            raise UadConfigError(f"adb_timeout must be positive, got {self.adb_timeout}")
        if self.http_timeout <= 0:
            raise UadConfigError(f"http_timeout must be positive, got {self.http_timeout}")

    @classmethod
    def from_env(cls, **overrides: Any) -> UadConfig:
        """Create configuration from ``UAD_*`` environment variables.

        Explicit keyword arguments override environment values.
        """
        env = os.environ
        kwargs: dict[str, Any] = {}

        _ENV_STR_MAP = {
            "UAD_ADB_PATH": "adb_path",
            "UAD_RELEASE_URL": "release_url",
            "UAD_CATALOG_URL": "catalog_url",
            "UAD_CURRENT_VERSION": "current_version",
        }
        for env_key, field_name in _ENV_STR_MAP.items():
            val = env.get(env_key)
            if val is not None:
                kwargs[field_name] = val

        _ENV_PATH_MAP = {
            "UAD_CONFIG_PATH": "config_path",
            "UAD_BACKUP_FOLDER": "backup_folder",
            "UAD_EXPORT_FOLDER": "export_folder",
        }
        for env_key, field_name in _ENV_PATH_MAP.items():
            val = env.get(env_key)
            if val:
                kwargs[field_name] = Path(val).expanduser()

        for env_key, field_name in (("UAD_ADB_TIMEOUT", "adb_timeout"), ("UAD_HTTP_TIMEOUT", "http_timeout")):
            val = env.get(env_key)
            if val is None or field_name in overrides:
                continue
            try:
                kwargs[field_name] = float(val)
            except ValueError as exc:
                raise UadConfigError(f"{env_key} must be a number, got {val!r}") from exc

        if "self_update_enabled" not in overrides:
            kwargs["self_update_enabled"] = _env_bool(env.get("UAD_SELF_UPDATE"), False)

        kwargs.update(overrides)
        return cls(**kwargs)
