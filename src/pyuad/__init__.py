"""pyuad - Reconciliation core for debloating Android devices over adb."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("pyuad")
except PackageNotFoundError:
    __version__ = "0+local"
from pyuad._bridge import AdbBridge, DeviceBridge
from pyuad.config import UadConfig
from pyuad.exceptions import (
    UadBridgeError,
    UadCatalogError,
    UadCommandError,
    UadConfigError,
    UadDeviceNotFoundError,
    UadError,
    UadPersistenceError,
    UadReleaseError,
    UadRestoreError,
    UadUpdateError,
)
from pyuad.models import (
    Command,
    CommandKind,
    CommandOutcome,
    Device,
    PackageEntry,
    PackageState,
    Release,
    Removal,
    User,
)
from pyuad.runtime import Runtime
from pyuad.state.loop import ReconciliationLoop
from pyuad.state.snapshot import AppSnapshot, ListState

__all__ = [
    "__version__",
    "AdbBridge",
    "AppSnapshot",
    "Command",
    "CommandKind",
    "CommandOutcome",
    "Device",
    "DeviceBridge",
    "ListState",
    "PackageEntry",
    "PackageState",
    "ReconciliationLoop",
    "Release",
    "Removal",
    "Runtime",
    "UadBridgeError",
    "UadCatalogError",
    "UadCommandError",
    "UadConfig",
    "UadConfigError",
    "UadDeviceNotFoundError",
    "UadError",
    "UadPersistenceError",
    "UadReleaseError",
    "UadRestoreError",
    "UadUpdateError",
    "User",
]
