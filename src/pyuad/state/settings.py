"""Persisted settings: file store and per-device reconciliation."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from pyuad._fs import write_atomic
from pyuad.backup import device_backup_dir, list_available_backup_users, list_available_backups
from pyuad.exceptions import UadPersistenceError
from pyuad.models.device import Device
from pyuad.models.settings import BackupSettings, Config, DeviceSettings, GeneralSettings

_logger = logging.getLogger(__name__)


class SettingsStore:
    """JSON file holding general settings and one entry per device."""

    def __init__(self, path: Path) -> None:
        self._path = path

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> Config:
        """Read the configuration; a missing or unreadable file yields defaults."""
        if not self._path.exists():
            return Config()
        try:
            return Config.model_validate_json(self._path.read_text(encoding="utf-8"))
        except (OSError, ValidationError):
            _logger.warning("Could not read %s, using default settings", self._path, exc_info=True)
            return Config()

    def save(self, config: Config) -> None:
        try:
            write_atomic(self._path, config.model_dump_json(indent=2))
        except OSError as exc:
            raise UadPersistenceError(f"Could not save settings to {self._path}: {exc}") from exc


class SettingsReconciler:
    """Owner of general and current-device settings.

    Every mutation swaps in a new frozen settings object and writes the
    whole configuration synchronously. A failed write is logged and the
    in-memory value kept; the next mutation rewrites everything, which
    retries the lost change.
    """

    def __init__(self, store: SettingsStore, *, default_backup_folder: Path) -> None:
        self._store = store
        self._default_backup_folder = default_backup_folder
        self._config = store.load()
        self._device = DeviceSettings()
        self._unsaved = False

    @property
    def general(self) -> GeneralSettings:
        return self._config.general

    @property
    def device(self) -> DeviceSettings:
        return self._device

    @property
    def config(self) -> Config:
        return self._config

    @property
    def unsaved(self) -> bool:
        """Whether the last write failed."""
        return self._unsaved

    @property
    def backup_folder(self) -> Path:
        return self.general.backup_folder or self._default_backup_folder

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    def _scan_backups(self, device: Device) -> BackupSettings:
        backups = list_available_backups(device_backup_dir(self.backup_folder, device.adb_id))
        return BackupSettings(
            backups=backups,
            selected=backups[0] if backups else None,
            users=device.user_list,
            selected_user=device.user_list[0] if device.user_list else None,
        )

    def load(self, device: Device | None) -> DeviceSettings:
        """Resolve settings for *device* (defaults when it was never seen)."""
        if device is None:
            self._device = DeviceSettings()
            return self._device

        backup = self._scan_backups(device)
        persisted = self._config.device(device.adb_id)
        if persisted is not None:
            self._device = persisted.model_copy(update={"backup": backup})
        else:
            self._device = DeviceSettings(
                device_id=device.adb_id,
                multi_user_mode=device.supports_multi_user,
                disable_mode=False,
                backup=backup,
            )
        _logger.debug("Device settings loaded: %s", self._device)
        return self._device

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def _persist(self) -> None:
        config = self._config
        if self._device.device_id:
            config = config.with_device(self._device)
        self._config = config
        try:
            self._store.save(config)
        except UadPersistenceError:
            self._unsaved = True
            _logger.error("Settings kept in memory only; retrying on next change", exc_info=True)
        else:
            self._unsaved = False

    def _update_general(self, **changes: Any) -> None:
        general = self._config.general.model_copy(update=changes)
        self._config = self._config.model_copy(update={"general": general})
        _logger.debug("Config change: %s", changes)
        self._persist()

    def _update_device(self, **changes: Any) -> None:
        self._device = self._device.model_copy(update=changes)
        _logger.debug("Config change: %s", changes)
        self._persist()

    def set_expert_mode(self, enabled: bool) -> None:
        self._update_general(expert_mode=enabled)

    def set_theme(self, theme: str) -> None:
        self._update_general(theme=theme)

    def set_disable_mode(self, enabled: bool, device: Device | None) -> bool:
        """Change disable mode; refused (``False``) when the device cannot disable packages."""
        if device is None or not device.supports_disable_mode:
            _logger.info("Disable mode is unavailable on this device")
            return False
        self._update_device(disable_mode=enabled)
        return True

    def set_multi_user_mode(self, enabled: bool) -> bool:
        """Change multi-user mode. Returns ``True`` on the off→on edge."""
        was_enabled = self._device.multi_user_mode
        self._update_device(multi_user_mode=enabled)
        return enabled and not was_enabled

    def set_backup_folder(self, folder: Path) -> None:
        self._update_general(backup_folder=folder)

    # Backup selection is session state; it is never written to disk.

    def select_backup(self, path: Path) -> None:
        users = list_available_backup_users(path)
        backup = self._device.backup.model_copy(
            update={"selected": path, "users": users, "selected_user": users[0] if users else None}
        )
        self._device = self._device.model_copy(update={"backup": backup})

    def set_backup_state(self, message: str) -> None:
        backup = self._device.backup.model_copy(update={"backup_state": message})
        self._device = self._device.model_copy(update={"backup": backup})

    def refresh_backups(self, device: Device) -> None:
        """Rescan backups after one was created, selecting the newest."""
        backup = self._scan_backups(device)
        self._device = self._device.model_copy(update={"backup": backup})
