"""Persisted settings models.

``Config`` is what lands in ``config.json``. ``BackupSettings`` is rebuilt
from disk on every device settings load and is never persisted.
"""

from __future__ import annotations

from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field

from pyuad.models.device import User


class GeneralSettings(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")

    theme: str = "dark"
    expert_mode: bool = False
    backup_folder: Path | None = None
    """``None`` means the configured default folder."""


class BackupSettings(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    backups: tuple[Path, ...] = ()
    selected: Path | None = None
    users: tuple[User, ...] = ()
    selected_user: User | None = None
    backup_state: str = ""


class DeviceSettings(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")

    device_id: str = ""
    multi_user_mode: bool = False
    disable_mode: bool = False
    backup: BackupSettings = Field(default_factory=BackupSettings, exclude=True)


class Config(BaseModel):
    """On-disk configuration document."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    general: GeneralSettings = Field(default_factory=GeneralSettings)
    devices: tuple[DeviceSettings, ...] = ()

    def device(self, device_id: str) -> DeviceSettings | None:
        for entry in self.devices:
            if entry.device_id == device_id:
                return entry
        return None

    def with_device(self, settings: DeviceSettings) -> Config:
        """Return a copy with *settings* replacing any entry for the same device."""
        others = tuple(d for d in self.devices if d.device_id != settings.device_id)
        return self.model_copy(update={"devices": (*others, settings)})
