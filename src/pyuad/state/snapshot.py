"""Read-only view of the application state handed to the rendering layer."""

from __future__ import annotations

import enum
from pathlib import Path

from pydantic import BaseModel, ConfigDict

from pyuad.models.device import Device, User
from pyuad.models.package import PackageEntry
from pyuad.models.release import CatalogState, SelfUpdateState
from pyuad.models.settings import DeviceSettings, GeneralSettings
from pyuad.state.batch import BatchProgress
from pyuad.state.events import View


class ListState(enum.StrEnum):
    """Loading state of the package list."""

    FINDING_DEVICES = "finding_devices"
    NO_DEVICE = "no_device"
    DOWNLOADING_CATALOG = "downloading_catalog"
    LOADING_PACKAGES = "loading_packages"
    READY = "ready"
    LOAD_FAILED = "load_failed"
    ADB_MISSING = "adb_missing"
    UPDATING = "updating"
    UPDATE_FAILED = "update_failed"


class AppSnapshot(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    view: View
    adb_satisfied: bool
    list_state: ListState
    devices: tuple[Device, ...]
    selected_device: Device | None
    selected_user: User | None
    packages: tuple[tuple[PackageEntry, ...], ...]
    general: GeneralSettings
    device_settings: DeviceSettings
    batch: BatchProgress
    self_update: SelfUpdateState
    catalog_state: CatalogState
    last_export: Path | None = None
    status: str = ""
