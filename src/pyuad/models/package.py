"""Package entries, device commands and their outcomes."""

from __future__ import annotations

import enum

from pydantic import BaseModel, ConfigDict

from pyuad._constants import CMD_PACKAGE_MIN_SDK


class PackageState(enum.StrEnum):
    """Install state of a package for one user."""

    ENABLED = "enabled"
    DISABLED = "disabled"
    UNINSTALLED = "uninstalled"


class Removal(enum.StrEnum):
    """Removal recommendation tag from the package catalog."""

    RECOMMENDED = "recommended"
    ADVANCED = "advanced"
    EXPERT = "expert"
    UNSAFE = "unsafe"
    UNLISTED = "unlisted"

    @classmethod
    def _missing_(cls, value: object) -> Removal:
        if isinstance(value, str):
            lowered = value.strip().lower()
            for member in cls:
                if member.value == lowered:
                    return member
        return cls.UNLISTED


class PackageEntry(BaseModel):
    """A package as seen in one (device, user) partition."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    name: str
    state: PackageState = PackageState.ENABLED
    selected: bool = False
    removal: Removal = Removal.UNLISTED
    description: str = ""


class CommandKind(enum.StrEnum):
    UNINSTALL = "uninstall"
    RESTORE = "restore"
    DISABLE = "disable"
    ENABLE = "enable"
    CLEAR = "clear"
    FORCE_STOP = "force_stop"

    @property
    def resulting_state(self) -> PackageState | None:
        """Package state after a successful command, ``None`` if unchanged."""
        return _RESULTING_STATE.get(self)


_RESULTING_STATE: dict[CommandKind, PackageState] = {
    CommandKind.UNINSTALL: PackageState.UNINSTALLED,
    CommandKind.RESTORE: PackageState.ENABLED,
    CommandKind.DISABLE: PackageState.DISABLED,
    CommandKind.ENABLE: PackageState.ENABLED,
}


class Command(BaseModel):
    """A single instruction for one package of one user on one device."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    kind: CommandKind
    device_id: str
    package: str
    user_id: int = 0
    user_index: int = 0
    package_index: int = 0
    android_sdk: int = 0
    final_step: bool = True
    """Whether this command leaves the package in its target state.

    Transitions such as enabled -> disabled take several commands; only the
    last one may update the package entry when it completes.
    """

    def shell_args(self) -> list[str]:
        """Arguments passed after ``adb -s <id> shell``."""
        user = ["--user", str(self.user_id)]
        if self.kind is CommandKind.UNINSTALL:
            return ["pm", "uninstall", "-k", *user, self.package]
        if self.kind is CommandKind.RESTORE:
            if self.android_sdk >= CMD_PACKAGE_MIN_SDK:
                return ["cmd", "package", "install-existing", *user, self.package]
            return ["pm", "install-existing", *user, self.package]
        if self.kind is CommandKind.DISABLE:
            return ["pm", "disable-user", *user, self.package]
        if self.kind is CommandKind.ENABLE:
            return ["pm", "enable", *user, self.package]
        if self.kind is CommandKind.CLEAR:
            return ["pm", "clear", *user, self.package]
        return ["am", "force-stop", *user, self.package]

    def describe(self) -> str:
        return f"{self.kind.value} {self.package} (user {self.user_id})"


class CommandOutcome(BaseModel):
    """Tagged result of one command submission."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    command: Command
    success: bool
    output: str = ""
    error: str | None = None


def transition_commands(
    current: PackageState,
    target: PackageState,
    *,
    device_id: str,
    package: str,
    user_id: int,
    user_index: int,
    package_index: int,
    android_sdk: int,
) -> list[Command]:
    """Commands moving *package* from *current* to *target* state."""
    if current == target:
        return []

    kinds: list[CommandKind]
    if target is PackageState.ENABLED:
        kinds = [CommandKind.RESTORE] if current is PackageState.UNINSTALLED else [CommandKind.ENABLE]
    elif target is PackageState.DISABLED:
        if current is PackageState.UNINSTALLED:
            kinds = [CommandKind.RESTORE, CommandKind.DISABLE]
        else:
            kinds = [CommandKind.FORCE_STOP, CommandKind.CLEAR, CommandKind.DISABLE]
    else:
        kinds = [CommandKind.UNINSTALL]

    return [
        Command(
            kind=kind,
            device_id=device_id,
            package=package,
            user_id=user_id,
            user_index=user_index,
            package_index=package_index,
            android_sdk=android_sdk,
            final_step=position == len(kinds) - 1,
        )
        for position, kind in enumerate(kinds)
    ]


class CatalogEntry(BaseModel):
    """Catalog knowledge about one package."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    removal: Removal = Removal.UNLISTED
    description: str = ""
