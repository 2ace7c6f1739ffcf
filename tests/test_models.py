from __future__ import annotations

import pytest
from conftest import make_device

from pyuad.models.device import User
from pyuad.models.package import CommandKind, PackageState, Removal, transition_commands
from pyuad.models.settings import Config, DeviceSettings


def _kinds(current: PackageState, target: PackageState) -> list[CommandKind]:
    commands = transition_commands(
        current,
        target,
        device_id="d",
        package="p",
        user_id=0,
        user_index=0,
        package_index=0,
        android_sdk=30,
    )
    return [c.kind for c in commands]


@pytest.mark.parametrize(
    ("current", "target", "expected"),
    [
        (PackageState.ENABLED, PackageState.ENABLED, []),
        (PackageState.ENABLED, PackageState.UNINSTALLED, [CommandKind.UNINSTALL]),
        (PackageState.DISABLED, PackageState.UNINSTALLED, [CommandKind.UNINSTALL]),
        (PackageState.UNINSTALLED, PackageState.ENABLED, [CommandKind.RESTORE]),
        (PackageState.DISABLED, PackageState.ENABLED, [CommandKind.ENABLE]),
        (
            PackageState.ENABLED,
            PackageState.DISABLED,
            [CommandKind.FORCE_STOP, CommandKind.CLEAR, CommandKind.DISABLE],
        ),
        (PackageState.UNINSTALLED, PackageState.DISABLED, [CommandKind.RESTORE, CommandKind.DISABLE]),
    ],
)
def test_transition_commands(current: PackageState, target: PackageState, expected: list[CommandKind]) -> None:
    assert _kinds(current, target) == expected


def test_removal_is_case_insensitive_with_fallback() -> None:
    assert Removal("Expert") is Removal.EXPERT
    assert Removal("whatever") is Removal.UNLISTED


def test_device_capabilities() -> None:
    users = (User(id=0, index=0), User(id=10, index=1, protected=True))
    old = make_device("A", sdk=19)
    new = make_device("B", sdk=30, users=users)
    gone = make_device("C", sdk=0)

    assert not old.supports_multi_user and not old.supports_disable_mode
    assert new.supports_multi_user and new.supports_disable_mode
    assert new.unprotected_users == (users[0],)
    assert not gone.is_connected
    assert str(new) == "Model B (B)"


def test_config_upserts_device_settings() -> None:
    config = Config().with_device(DeviceSettings(device_id="A", disable_mode=True))
    config = config.with_device(DeviceSettings(device_id="A", multi_user_mode=True))

    assert len(config.devices) == 1
    entry = config.device("A")
    assert entry is not None and entry.multi_user_mode and not entry.disable_mode
    assert config.device("B") is None


def test_only_last_transition_step_is_final() -> None:
    commands = transition_commands(
        PackageState.UNINSTALLED,
        PackageState.DISABLED,
        device_id="d",
        package="p",
        user_id=0,
        user_index=0,
        package_index=0,
        android_sdk=30,
    )

    assert [(c.kind, c.final_step) for c in commands] == [
        (CommandKind.RESTORE, False),
        (CommandKind.DISABLE, True),
    ]
