"""Typed models shared by the bridge, the settings store and the state loop."""

from pyuad.models.device import Device, User
from pyuad.models.package import (
    CatalogEntry,
    Command,
    CommandKind,
    CommandOutcome,
    PackageEntry,
    PackageState,
    Removal,
    transition_commands,
)
from pyuad.models.release import (
    CatalogState,
    Release,
    ReleaseAsset,
    SelfUpdateState,
    SelfUpdateStatus,
    parse_version,
)
from pyuad.models.settings import BackupSettings, Config, DeviceSettings, GeneralSettings

__all__ = [
    "BackupSettings",
    "CatalogEntry",
    "CatalogState",
    "Command",
    "CommandKind",
    "CommandOutcome",
    "Config",
    "Device",
    "DeviceSettings",
    "GeneralSettings",
    "PackageEntry",
    "PackageState",
    "Release",
    "ReleaseAsset",
    "Removal",
    "SelfUpdateState",
    "SelfUpdateStatus",
    "User",
    "parse_version",
    "transition_commands",
]
