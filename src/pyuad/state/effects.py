"""External-effect requests returned by the reconciliation loop.

Effects describe work for the concurrency layer; the loop never performs
I/O itself. Each effect's result re-enters the loop as an ordinary event.
"""

from __future__ import annotations

from pathlib import Path

from pydantic import BaseModel, ConfigDict

from pyuad.models.device import Device, User
from pyuad.models.package import Command, PackageEntry
from pyuad.models.release import Release


class Effect(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")


class CheckAdb(Effect):
    pass


class FetchDevices(Effect):
    pass


class FetchPackages(Effect):
    device: Device


class SubmitCommand(Effect):
    batch_id: int
    command: Command


class RebootDevice(Effect):
    device_id: str


class CheckLatestRelease(Effect):
    pass


class FetchCatalog(Effect):
    pass


class DownloadUpdate(Effect):
    release: Release


class Relaunch(Effect):
    relaunch_path: Path
    cleanup_path: Path


class CreateBackup(Effect):
    backup_folder: Path
    device: Device
    partitions: tuple[tuple[PackageEntry, ...], ...]


class PickFolder(Effect):
    pass


class ExportPackages(Effect):
    user: User
    partitions: tuple[tuple[PackageEntry, ...], ...]
