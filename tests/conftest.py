from __future__ import annotations

from pathlib import Path

import pytest

from pyuad.models.device import Device, User
from pyuad.models.package import PackageEntry, PackageState
from pyuad.state.loop import ReconciliationLoop
from pyuad.state.settings import SettingsReconciler, SettingsStore


def make_device(adb_id: str = "dev-a", *, sdk: int = 30, users: tuple[User, ...] | None = None) -> Device:
    return Device(
        adb_id=adb_id,
        model=f"Model {adb_id}",
        android_sdk=sdk,
        user_list=users if users is not None else (User(id=0, index=0),),
    )


def make_partition(*states: PackageState, prefix: str = "com.example.app") -> tuple[PackageEntry, ...]:
    return tuple(PackageEntry(name=f"{prefix}{i}", state=state) for i, state in enumerate(states))


@pytest.fixture
def settings(tmp_path: Path) -> SettingsReconciler:
    store = SettingsStore(tmp_path / "config" / "config.json")
    return SettingsReconciler(store, default_backup_folder=tmp_path / "backups")


@pytest.fixture
def loop(settings: SettingsReconciler) -> ReconciliationLoop:
    return ReconciliationLoop(settings)
