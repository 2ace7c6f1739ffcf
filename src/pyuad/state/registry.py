"""Device selection across refresh cycles."""

from __future__ import annotations

from collections.abc import Sequence

from pyuad.models.device import Device


def find_device(devices: Sequence[Device], adb_id: str) -> Device | None:
    for device in devices:
        if device.adb_id == adb_id:
            return device
    return None


def reconcile(previous: Device | None, devices: Sequence[Device]) -> Device | None:
    """Resolve the selected device after *devices* was refreshed.

    The previous selection survives when its identity is still listed. The
    entry from *devices* is returned, not *previous*, so capability fields
    (SDK level, users) reflect the latest probe. Otherwise the first device
    is selected, or ``None`` when nothing is connected.
    """
    if previous is not None:
        match = find_device(devices, previous.adb_id)
        if match is not None:
            return match
    return devices[0] if devices else None
