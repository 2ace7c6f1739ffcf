"""Events accepted by the reconciliation loop.

The set is closed: the loop has exactly one handler per event class.
Events are frozen; partitions travel as tuples so an event can be queued
and replayed without aliasing the live state.
"""

from __future__ import annotations

import enum
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field

from pyuad.models.device import Device
from pyuad.models.package import CatalogEntry, CommandOutcome, PackageEntry
from pyuad.models.release import Release


class View(enum.StrEnum):
    LIST = "list"
    ABOUT = "about"
    SETTINGS = "settings"


class EmptyBatchReason(enum.StrEnum):
    """Why a user action produced no command at all (or was refused)."""

    NO_BACKUP_SELECTED = "no_backup_selected"
    DEVICE_NOT_CONNECTED = "device_not_connected"
    ALREADY_RESTORED = "already_restored"
    NOTHING_SELECTED = "nothing_selected"
    BATCH_IN_PROGRESS = "batch_in_progress"
    PACKAGES_NOT_LOADED = "packages_not_loaded"

    @property
    def message(self) -> str:
        return _EMPTY_BATCH_MESSAGES[self]


_EMPTY_BATCH_MESSAGES: dict[EmptyBatchReason, str] = {
    EmptyBatchReason.NO_BACKUP_SELECTED: "No backup selected",
    EmptyBatchReason.DEVICE_NOT_CONNECTED: "Device is not connected",
    EmptyBatchReason.ALREADY_RESTORED: "Device state is already restored",
    EmptyBatchReason.NOTHING_SELECTED: "No package selected",
    EmptyBatchReason.BATCH_IN_PROGRESS: "Another batch is still running",
    EmptyBatchReason.PACKAGES_NOT_LOADED: "Package list is not loaded yet",
}


class LoopEvent(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")


# ------------------------------------------------------------------
# Lifecycle and devices
# ------------------------------------------------------------------


class Startup(LoopEvent):
    pass


class AdbChecked(LoopEvent):
    available: bool


class DevicesLoaded(LoopEvent):
    devices: tuple[Device, ...] = ()
    error: str | None = None


class DeviceSelected(LoopEvent):
    device: Device


class RefreshRequested(LoopEvent):
    pass


class RebootRequested(LoopEvent):
    pass


class ViewChanged(LoopEvent):
    view: View


# ------------------------------------------------------------------
# Package list and selection
# ------------------------------------------------------------------


class LoadDeviceSettings(LoopEvent):
    pass


class LoadPackages(LoopEvent):
    pass


class PackagesLoaded(LoopEvent):
    device_id: str
    partitions: tuple[tuple[PackageEntry, ...], ...] = ()
    error: str | None = None


class UserSelected(LoopEvent):
    user_index: int


class PackageToggled(LoopEvent):
    user_index: int
    package_index: int
    selected: bool


class ToggleAll(LoopEvent):
    selected: bool


class ClearSelection(LoopEvent):
    pass


# ------------------------------------------------------------------
# Batches
# ------------------------------------------------------------------


class ApplySelection(LoopEvent):
    pass


class RestoreRequested(LoopEvent):
    pass


class CommandCompleted(LoopEvent):
    batch_id: int
    outcome: CommandOutcome


class BatchDrained(LoopEvent):
    batch_id: int


class BatchEmpty(LoopEvent):
    reason: EmptyBatchReason


# ------------------------------------------------------------------
# Settings
# ------------------------------------------------------------------


class ExpertModeToggled(LoopEvent):
    enabled: bool


class DisableModeToggled(LoopEvent):
    enabled: bool


class MultiUserModeToggled(LoopEvent):
    enabled: bool


class ThemeChanged(LoopEvent):
    theme: str


class BackupSelected(LoopEvent):
    path: Path


class BackupRequested(LoopEvent):
    pass


class BackupCreated(LoopEvent):
    device_id: str
    path: Path | None = None
    error: str | None = None


class ChooseBackupFolder(LoopEvent):
    pass


class FolderChosen(LoopEvent):
    path: Path | None = None
    error: str | None = None


class ExportRequested(LoopEvent):
    pass


class PackagesExported(LoopEvent):
    path: Path | None = None
    error: str | None = None


# ------------------------------------------------------------------
# Release, self-update and catalog
# ------------------------------------------------------------------


class LatestReleaseChecked(LoopEvent):
    release: Release | None = None
    error: str | None = None


class SelfUpdateRequested(LoopEvent):
    pass


class UpdateDownloaded(LoopEvent):
    relaunch_path: Path | None = None
    cleanup_path: Path | None = None
    error: str | None = None


class CatalogRequested(LoopEvent):
    pass


class CatalogLoaded(LoopEvent):
    catalog: dict[str, CatalogEntry] = Field(default_factory=dict)
    error: str | None = None
