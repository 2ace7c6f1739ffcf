"""Device bridge built on the ``adb`` command-line tool."""

from __future__ import annotations

import asyncio
import logging
import re
from collections.abc import Sequence
from typing import Protocol

from pyuad.config import UadConfig
from pyuad.exceptions import UadBridgeError, UadCommandError, UadDeviceNotFoundError
from pyuad.models.device import Device, User
from pyuad.models.package import Command, CommandOutcome, PackageEntry, PackageState

_logger = logging.getLogger(__name__)

_USER_RE = re.compile(r"UserInfo\{(\d+):")
_PACKAGE_PREFIX = "package:"
_FAILURE_MARKERS = ("Failure", "Error:", "Exception", "not installed for")


class DeviceBridge(Protocol):
    """Structural interface of the device bridge.

    The state loop never talks to it directly; the runtime calls it while
    executing effects, which keeps fakes trivial in tests.
    """

    async def is_available(self) -> bool: ...

    async def list_devices(self) -> list[Device]: ...

    async def list_packages(self, device: Device) -> list[list[PackageEntry]]: ...

    async def submit(self, device_id: str, command: Command) -> CommandOutcome: ...

    async def reboot(self, device_id: str) -> None: ...


def parse_device_serials(output: str) -> list[str]:
    """Serials of devices in ``device`` state from ``adb devices`` output."""
    serials: list[str] = []
    for line in output.splitlines():
        line = line.strip()
        if not line or line.startswith("List of devices") or line.startswith("*"):
            continue
        parts = line.split()
        if len(parts) >= 2 and parts[1] == "device" and parts[0] not in serials:
            serials.append(parts[0])
    return serials


def parse_user_ids(output: str) -> list[int]:
    """User ids from ``pm list users`` output, in listing order."""
    ids: list[int] = []
    for match in _USER_RE.finditer(output):
        user_id = int(match.group(1))
        if user_id not in ids:
            ids.append(user_id)
    return ids


def parse_package_names(output: str) -> list[str]:
    names: list[str] = []
    for line in output.splitlines():
        line = line.strip()
        if line.startswith(_PACKAGE_PREFIX):
            names.append(line[len(_PACKAGE_PREFIX) :])
    return names


def build_partitions(
    users: Sequence[User],
    listings: dict[int, tuple[set[str], set[str], set[str]]],
) -> list[list[PackageEntry]]:
    """Build index-aligned per-user partitions.

    *listings* maps user id to ``(all, enabled, disabled)`` name sets.
    Every partition lists the union of all names in the same order; a name
    missing from a user's listing is uninstalled for that user. Users
    without a listing (protected profiles) get every package as enabled.
    """
    names: set[str] = set()
    for all_names, _enabled, _disabled in listings.values():
        names |= all_names
    ordered = sorted(names)

    partitions: list[list[PackageEntry]] = []
    for user in sorted(users, key=lambda u: u.index):
        listing = listings.get(user.id)
        entries: list[PackageEntry] = []
        for name in ordered:
            if listing is None:
                state = PackageState.ENABLED
            elif name in listing[2]:
                state = PackageState.DISABLED
            elif name in listing[1]:
                state = PackageState.ENABLED
            else:
                state = PackageState.UNINSTALLED
            entries.append(PackageEntry(name=name, state=state))
        partitions.append(entries)
    return partitions


def looks_failed(output: str) -> bool:
    stripped = output.strip()
    return any(marker in stripped for marker in _FAILURE_MARKERS)


class AdbBridge:
    """``adb`` subprocess bridge."""

    def __init__(self, config: UadConfig) -> None:
        self._config = config

    async def _run(self, args: Sequence[str], *, device_id: str = "") -> tuple[int, str, str]:
        """Run ``adb`` with *args* and return ``(returncode, stdout, stderr)``."""
        argv = [self._config.adb_path]
        if device_id:
            argv += ["-s", device_id]
        argv += list(args)
        _logger.debug("RUN %s", " ".join(argv))
        try:
            proc = await asyncio.create_subprocess_exec(
                *argv,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError as exc:
            raise UadBridgeError(f"{self._config.adb_path} not found", device_id=device_id) from exc
        except OSError as exc:
            raise UadBridgeError(f"Could not start {self._config.adb_path}: {exc}", device_id=device_id) from exc

        try:
            stdout, stderr = await asyncio.wait_for(proc.communicate(), self._config.adb_timeout)
        except TimeoutError as exc:
            proc.kill()
            await proc.wait()
            raise UadBridgeError(
                f"{' '.join(args)} timed out after {self._config.adb_timeout}s",
                device_id=device_id,
            ) from exc

        returncode = proc.returncode if proc.returncode is not None else -1
        return (
            returncode,
            stdout.decode("utf-8", errors="replace"),
            stderr.decode("utf-8", errors="replace"),
        )

    async def _shell(self, device_id: str, *args: str) -> str:
        returncode, stdout, stderr = await self._run(["shell", *args], device_id=device_id)
        if returncode != 0:
            message = (stderr or stdout).strip()
            if "not found" in message and device_id in message:
                raise UadDeviceNotFoundError(message, device_id=device_id, returncode=returncode)
            raise UadCommandError(
                f"{' '.join(args)} failed: {message}",
                device_id=device_id,
                returncode=returncode,
            )
        return stdout

    async def is_available(self) -> bool:
        try:
            returncode, _stdout, _stderr = await self._run(["version"])
        except UadBridgeError:
            _logger.warning("adb is not available", exc_info=True)
            return False
        return returncode == 0

    async def _getprop(self, device_id: str, prop: str) -> str:
        return (await self._shell(device_id, "getprop", prop)).strip()

    async def _android_sdk(self, device_id: str) -> int:
        try:
            return int(await self._getprop(device_id, "ro.build.version.sdk"))
        except (UadBridgeError, ValueError):
            _logger.debug("Could not read SDK level of %s", device_id, exc_info=True)
            return 0

    async def _is_protected(self, device_id: str, user_id: int) -> bool:
        try:
            output = await self._shell(device_id, "pm", "list", "packages", "-s", "--user", str(user_id))
        except UadCommandError:
            return True
        return not parse_package_names(output)

    async def _users(self, device_id: str, android_sdk: int) -> tuple[User, ...]:
        if android_sdk < 17:
            return (User(id=0, index=0),)
        output = await self._shell(device_id, "pm", "list", "users")
        ids = parse_user_ids(output) or [0]
        users: list[User] = []
        for index, user_id in enumerate(ids):
            protected = user_id != 0 and await self._is_protected(device_id, user_id)
            users.append(User(id=user_id, index=index, protected=protected))
        return tuple(users)

    async def _describe(self, device_id: str) -> Device:
        android_sdk = await self._android_sdk(device_id)
        try:
            model = await self._getprop(device_id, "ro.product.model")
        except UadBridgeError:
            model = ""
        users: tuple[User, ...] = (User(id=0, index=0),)
        if android_sdk:
            users = await self._users(device_id, android_sdk)
        return Device(adb_id=device_id, model=model, android_sdk=android_sdk, user_list=users)

    async def list_devices(self) -> list[Device]:
        returncode, stdout, stderr = await self._run(["devices"])
        if returncode != 0:
            raise UadBridgeError(f"adb devices failed: {stderr.strip()}", returncode=returncode)
        serials = parse_device_serials(stdout)
        devices = await asyncio.gather(*(self._describe(serial) for serial in serials))
        return list(devices)

    async def _listing(self, device_id: str, user_id: int) -> tuple[set[str], set[str], set[str]]:
        user = ("--user", str(user_id))
        all_out, enabled_out, disabled_out = await asyncio.gather(
            self._shell(device_id, "pm", "list", "packages", "-u", *user),
            self._shell(device_id, "pm", "list", "packages", "-e", *user),
            self._shell(device_id, "pm", "list", "packages", "-d", *user),
        )
        return (
            set(parse_package_names(all_out)),
            set(parse_package_names(enabled_out)),
            set(parse_package_names(disabled_out)),
        )

    async def list_packages(self, device: Device) -> list[list[PackageEntry]]:
        listings: dict[int, tuple[set[str], set[str], set[str]]] = {}
        for user in device.user_list:
            if user.protected:
                continue
            listings[user.id] = await self._listing(device.adb_id, user.id)
        return build_partitions(device.user_list, listings)

    async def submit(self, device_id: str, command: Command) -> CommandOutcome:
        try:
            output = await self._shell(device_id, *command.shell_args())
        except UadBridgeError as exc:
            _logger.warning("%s failed on %s: %s", command.describe(), device_id, exc)
            return CommandOutcome(command=command, success=False, error=str(exc))

        if looks_failed(output):
            _logger.warning("%s rejected on %s: %s", command.describe(), device_id, output.strip())
            return CommandOutcome(command=command, success=False, output=output, error=output.strip())
        _logger.info("%s on %s", command.describe(), device_id)
        return CommandOutcome(command=command, success=True, output=output)

    async def reboot(self, device_id: str) -> None:
        returncode, _stdout, stderr = await self._run(["reboot"], device_id=device_id)
        if returncode != 0:
            raise UadBridgeError(f"reboot failed: {stderr.strip()}", device_id=device_id, returncode=returncode)
