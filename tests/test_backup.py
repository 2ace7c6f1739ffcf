from __future__ import annotations

from datetime import UTC, datetime
from pathlib import Path

import pytest
from conftest import make_device, make_partition

from pyuad.backup import (
    backup_name,
    create_backup,
    export_packages,
    list_available_backup_users,
    list_available_backups,
    plan_restore,
    read_backup,
)
from pyuad.exceptions import UadRestoreError
from pyuad.models.device import User
from pyuad.models.package import CommandKind, PackageEntry, PackageState
from pyuad.models.settings import BackupSettings, DeviceSettings

_NOW = datetime(2025, 3, 4, 5, 6, 7, tzinfo=UTC)

E = PackageState.ENABLED
D = PackageState.DISABLED
U = PackageState.UNINSTALLED


def _settings(selected: Path | None, user: User | None = None) -> DeviceSettings:
    return DeviceSettings(device_id="A", backup=BackupSettings(selected=selected, selected_user=user))


def test_backup_name_format() -> None:
    assert backup_name(_NOW) == "2025-03-04_05-06-07"


def test_create_backup_skips_protected_users(tmp_path: Path) -> None:
    device = make_device("A", users=(User(id=0, index=0), User(id=10, index=1, protected=True)))

    path = create_backup(tmp_path, device, [make_partition(E, U), make_partition(E, E)], now=_NOW)

    assert path == tmp_path / "A" / "2025-03-04_05-06-07.json"
    backup = read_backup(path)
    assert [u.id for u in backup.users] == [0]
    assert [(p.name, p.state) for p in backup.users[0].packages] == [
        ("com.example.app0", E),
        ("com.example.app1", U),
    ]
    assert list_available_backup_users(path) == (User(id=0, index=0),)


def test_create_backup_without_packages_fails(tmp_path: Path) -> None:
    with pytest.raises(UadRestoreError):
        create_backup(tmp_path, make_device("A"), [], now=_NOW)


def test_list_available_backups(tmp_path: Path) -> None:
    assert list_available_backups(tmp_path / "missing") == ()

    for name in ("2023-01-01_00-00-00.json", "2024-01-01_00-00-00.json", "readme.md"):
        (tmp_path / name).write_text("{}", encoding="utf-8")

    assert [p.name for p in list_available_backups(tmp_path)] == [
        "2024-01-01_00-00-00.json",
        "2023-01-01_00-00-00.json",
    ]


def test_plan_restore_produces_transitions(tmp_path: Path) -> None:
    device = make_device("A", sdk=30)
    path = create_backup(tmp_path, device, [make_partition(E, D, U)], now=_NOW)
    current = [make_partition(U, E, E)]

    commands = plan_restore(device, current, _settings(path, User(id=0, index=0)))

    assert [(c.package, c.kind) for c in commands] == [
        ("com.example.app0", CommandKind.RESTORE),
        ("com.example.app1", CommandKind.FORCE_STOP),
        ("com.example.app1", CommandKind.CLEAR),
        ("com.example.app1", CommandKind.DISABLE),
        ("com.example.app2", CommandKind.UNINSTALL),
    ]
    assert [c.package_index for c in commands] == [0, 1, 1, 1, 2]


def test_plan_restore_ignores_packages_missing_on_device(tmp_path: Path) -> None:
    device = make_device("A")
    path = create_backup(tmp_path, device, [make_partition(U, U)], now=_NOW)

    commands = plan_restore(device, [[PackageEntry(name="com.example.app1", state=E)]], _settings(path))

    assert [(c.package, c.package_index) for c in commands] == [("com.example.app1", 0)]


def test_plan_restore_filters_selected_user(tmp_path: Path) -> None:
    users = (User(id=0, index=0), User(id=10, index=1))
    device = make_device("A", users=users)
    path = create_backup(tmp_path, device, [make_partition(U), make_partition(U)], now=_NOW)

    commands = plan_restore(device, [make_partition(E), make_partition(E)], _settings(path, users[1]))

    assert [c.user_id for c in commands] == [10]


def test_plan_restore_requires_selection() -> None:
    with pytest.raises(UadRestoreError, match="No backup selected"):
        plan_restore(make_device("A"), [], _settings(None))


def test_plan_restore_unreadable_backup(tmp_path: Path) -> None:
    with pytest.raises(UadRestoreError):
        plan_restore(make_device("A"), [], _settings(tmp_path / "gone.json"))


def test_export_lists_uninstalled_packages(tmp_path: Path) -> None:
    partition = [
        PackageEntry(name="a.pkg", state=U, description="Ads"),
        PackageEntry(name="b.pkg", state=E),
        PackageEntry(name="c.pkg", state=U),
    ]

    path = export_packages(tmp_path, User(id=0, index=0), [partition], now=_NOW)

    assert path.name == "uninstalled-packages_2025-03-04_05-06-07.txt"
    assert path.read_text(encoding="utf-8") == "a.pkg\tAds\nc.pkg\n"


def test_export_without_partition_fails(tmp_path: Path) -> None:
    with pytest.raises(UadRestoreError):
        export_packages(tmp_path, User(id=10, index=1), [[]], now=_NOW)
