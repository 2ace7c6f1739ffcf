"""Custom exception hierarchy for pyuad."""

from __future__ import annotations


class UadError(Exception):
    """Base exception for all pyuad errors."""


class UadConfigError(UadError):
    """Invalid or missing configuration."""


class UadBridgeError(UadError):
    """The device bridge (``adb``) could not be run or returned garbage."""

    def __init__(
        self,
        message: str,
        *,
        device_id: str = "",
        returncode: int | None = None,
    ) -> None:
        self.device_id = device_id
        self.returncode = returncode
        super().__init__(message)


class UadCommandError(UadBridgeError):
    """A single shell command was rejected by the device.

    ``pm`` reports most failures on stdout with exit code ``0``
    (e.g. ``Failure [not installed for 0]``), so this is raised from
    output inspection as well as from non-zero exit codes.
    """


class UadDeviceNotFoundError(UadBridgeError):
    """The targeted device is no longer reachable."""


class UadPersistenceError(UadError):
    """Settings could not be read from or written to disk."""


class UadReleaseError(UadError):
    """Latest release lookup or download failed."""


class UadUpdateError(UadReleaseError):
    """Self-update could not replace and relaunch the binary."""


class UadRestoreError(UadError):
    """A backup could not be listed, read, or turned into commands."""


class UadCatalogError(UadError):
    """Package catalog download or parsing failed."""
