#!/usr/bin/env python3
"""Probe connected devices and print what pyuad sees.

Runs the full startup sequence (adb check, device discovery, package
listing, release check and catalog download) and prints the resulting
snapshot, either as a short report or as JSON.

Usage
-----
::

    python scripts/probe_devices.py
    python scripts/probe_devices.py --json --output snapshot.json

Options::

    --device SERIAL      Select this device after discovery
    --json               Output as machine-readable JSON
    --output FILE        Write output to FILE instead of stdout
    --verbose, -v        Enable debug logging
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path

# Allow running from the repo root without installing the package.
_repo = Path(__file__).resolve().parent.parent
_src = _repo / "src"
if _src.is_dir():
    sys.path.insert(0, str(_src))

from pyuad import AppSnapshot, Runtime, UadConfig  # noqa: E402
from pyuad.state import events as ev  # noqa: E402


def _section(title: str) -> str:
    line = "=" * 60
    return f"\n{line}\n  {title}\n{line}"


def _report(snapshot: AppSnapshot) -> str:
    out: list[str] = [_section("pyuad probe")]
    out.append(f"  adb       : {'found' if snapshot.adb_satisfied else 'missing'}")
    out.append(f"  list      : {snapshot.list_state.value}")
    out.append(f"  catalog   : {snapshot.catalog_state.value}")
    out.append(f"  update    : {snapshot.self_update.status.value}")
    if snapshot.self_update.latest_release is not None:
        out.append(f"  latest    : {snapshot.self_update.latest_release.tag_name}")

    out.append(_section("DEVICES"))
    for device in snapshot.devices:
        marker = "*" if snapshot.selected_device and device.adb_id == snapshot.selected_device.adb_id else " "
        out.append(f" {marker} {device} sdk={device.android_sdk}")
        for user in device.user_list:
            flag = " (protected)" if user.protected else ""
            out.append(f"      user {user.id} index={user.index}{flag}")

    for user_index, partition in enumerate(snapshot.packages):
        out.append(_section(f"PACKAGES user index {user_index}"))
        counts: dict[str, int] = {}
        for entry in partition:
            counts[entry.state.value] = counts.get(entry.state.value, 0) + 1
        for state, count in sorted(counts.items()):
            out.append(f"  {state:<12}: {count}")
    if snapshot.status:
        out.append(f"\n  status: {snapshot.status}")
    return "\n".join(out)


async def main() -> None:
    parser = argparse.ArgumentParser(description="Print what pyuad sees on the connected devices.")
    parser.add_argument("--device", help="Select this device serial after discovery")
    parser.add_argument("--json", action="store_true", dest="json_mode", help="Output machine-readable JSON")
    parser.add_argument("--output", "-o", help="Write output to FILE instead of stdout")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")
    args = parser.parse_args()

    if args.verbose:
        logging.basicConfig(level=logging.DEBUG, format="%(levelname)s %(name)s: %(message)s")
    else:
        logging.basicConfig(level=logging.WARNING)

    config = UadConfig.from_env()
    async with Runtime(config) as runtime:
        runtime.start()
        await runtime.wait_idle()
        if args.device:
            snapshot = runtime.snapshot()
            match = next((d for d in snapshot.devices if d.adb_id == args.device), None)
            if match is None:
                print(f"Device {args.device} not found", file=sys.stderr)
                sys.exit(1)
            runtime.post(ev.DeviceSelected(device=match))
            await runtime.wait_idle()
        snapshot = runtime.snapshot()

    payload = snapshot.model_dump_json(indent=2) if args.json_mode else _report(snapshot)
    if args.output:
        Path(args.output).write_text(payload + "\n", encoding="utf-8")
    else:
        print(payload)


if __name__ == "__main__":
    asyncio.run(main())
