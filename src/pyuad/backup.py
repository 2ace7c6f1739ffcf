"""Device backups: creation, discovery, restore planning and export.

A backup is a JSON document in ``<backup folder>/<device id>/`` recording
the state of every package for every readable user at the time it was
taken. Restoring compares it with the current package list and produces
the commands needed to get back there.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from datetime import datetime
from pathlib import Path

from pydantic import BaseModel, ConfigDict, ValidationError

from pyuad._constants import BACKUP_SUFFIX
from pyuad._fs import write_atomic
from pyuad.exceptions import UadRestoreError
from pyuad.models.device import Device, User
from pyuad.models.package import Command, PackageEntry, PackageState, transition_commands
from pyuad.models.settings import DeviceSettings

_logger = logging.getLogger(__name__)


class BackupPackage(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")

    name: str
    state: PackageState


class BackupUser(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")

    id: int
    index: int = 0
    packages: tuple[BackupPackage, ...] = ()


class BackupFile(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")

    device_id: str
    created_at: datetime | None = None
    users: tuple[BackupUser, ...] = ()


def backup_name(now: datetime) -> str:
    return now.strftime("%Y-%m-%d_%H-%M-%S")


def device_backup_dir(backup_folder: Path, device_id: str) -> Path:
    return backup_folder / device_id


def list_available_backups(folder: Path) -> tuple[Path, ...]:
    """Backups in *folder*, newest first. A missing folder has none."""
    if not folder.is_dir():
        return ()
    backups = [p for p in folder.iterdir() if p.is_file() and p.suffix == BACKUP_SUFFIX]
    return tuple(sorted(backups, key=lambda p: p.name, reverse=True))


def read_backup(path: Path) -> BackupFile:
    try:
        return BackupFile.model_validate_json(path.read_text(encoding="utf-8"))
    except OSError as exc:
        raise UadRestoreError(f"Could not read backup {path}: {exc}") from exc
    except ValidationError as exc:
        raise UadRestoreError(f"Backup {path.name} is corrupted") from exc


def list_available_backup_users(path: Path) -> tuple[User, ...]:
    """Users recorded in the backup at *path*; empty if it cannot be read."""
    try:
        backup = read_backup(path)
    except UadRestoreError:
        _logger.warning("Could not list users of backup %s", path, exc_info=True)
        return ()
    return tuple(User(id=u.id, index=u.index) for u in backup.users)


def create_backup(
    backup_folder: Path,
    device: Device,
    partitions: Sequence[Sequence[PackageEntry]],
    *,
    now: datetime,
) -> Path:
    """Write a backup of *partitions* and return its path.

    Protected users are skipped: their package states are unknown.
    """
    users: list[BackupUser] = []
    for user in device.user_list:
        if user.protected or user.index >= len(partitions):
            continue
        packages = tuple(BackupPackage(name=p.name, state=p.state) for p in partitions[user.index])
        users.append(BackupUser(id=user.id, index=user.index, packages=packages))
    if not users:
        raise UadRestoreError("Nothing to back up: no readable package list")

    document = BackupFile(device_id=device.adb_id, created_at=now, users=tuple(users))
    path = device_backup_dir(backup_folder, device.adb_id) / f"{backup_name(now)}{BACKUP_SUFFIX}"
    try:
        write_atomic(path, document.model_dump_json(indent=2))
    except OSError as exc:
        raise UadRestoreError(f"Could not write backup {path}: {exc}") from exc
    _logger.info("[BACKUP] Backup successfully created: %s", path)
    return path


def plan_restore(
    device: Device,
    partitions: Sequence[Sequence[PackageEntry]],
    settings: DeviceSettings,
) -> list[Command]:
    """Commands that bring *device* back to the selected backup.

    Raises :class:`UadRestoreError` when no backup is selected or it cannot
    be read. An empty list means the device already matches the backup.
    """
    selected = settings.backup.selected
    if selected is None:
        raise UadRestoreError("No backup selected")
    backup = read_backup(selected)

    wanted_user = settings.backup.selected_user
    device_users = {u.id: u for u in device.user_list}
    commands: list[Command] = []
    for backup_user in backup.users:
        if wanted_user is not None and backup_user.id != wanted_user.id:
            continue
        user = device_users.get(backup_user.id)
        if user is None or user.protected or user.index >= len(partitions):
            _logger.debug("Skipping backup user %s: not restorable on %s", backup_user.id, device.adb_id)
            continue
        current = {entry.name: (i, entry) for i, entry in enumerate(partitions[user.index])}
        for package in backup_user.packages:
            found = current.get(package.name)
            if found is None:
                continue
            index, entry = found
            commands += transition_commands(
                entry.state,
                package.state,
                device_id=device.adb_id,
                package=package.name,
                user_id=user.id,
                user_index=user.index,
                package_index=index,
                android_sdk=device.android_sdk,
            )
    return commands


def export_packages(
    folder: Path,
    user: User,
    partitions: Sequence[Sequence[PackageEntry]],
    *,
    now: datetime,
) -> Path:
    """Write the uninstalled packages of *user* (one per line) and return the path."""
    if user.index >= len(partitions):
        raise UadRestoreError(f"No package list loaded for user {user.id}")
    lines = [
        f"{entry.name}\t{entry.description}".rstrip()
        for entry in partitions[user.index]
        if entry.state is PackageState.UNINSTALLED
    ]
    path = folder / f"uninstalled-packages_{backup_name(now)}.txt"
    try:
        write_atomic(path, "\n".join(lines) + ("\n" if lines else ""))
    except OSError as exc:
        raise UadRestoreError(f"Could not export packages to {path}: {exc}") from exc
    return path
