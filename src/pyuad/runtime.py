"""Async runtime: feeds events to the reconciliation loop and executes effects."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import aiohttp

from pyuad._bridge import AdbBridge, DeviceBridge
from pyuad._catalog import CatalogClient
from pyuad._release import ReleaseChecker, SelfUpdater
from pyuad.backup import create_backup, export_packages
from pyuad.config import UadConfig
from pyuad.exceptions import UadError
from pyuad.models.package import CommandOutcome
from pyuad.state import effects as fx
from pyuad.state import events as ev
from pyuad.state.loop import ReconciliationLoop
from pyuad.state.settings import SettingsReconciler, SettingsStore
from pyuad.state.snapshot import AppSnapshot

_logger = logging.getLogger(__name__)

FolderPicker = Callable[[], Awaitable[Path | None]]


def _utcnow() -> datetime:
    return datetime.now(UTC)


class Runtime:
    """Owns the event queue, the loop and all I/O collaborators.

    Events are processed one at a time by a single pump task. Every effect
    returned by the loop runs in its own task and posts its result back as
    an event, so slow effects never block the loop.

    Usage::

        async with Runtime(UadConfig.from_env()) as runtime:
            runtime.start()
            await runtime.wait_idle()
            print(runtime.snapshot().devices)
    """

    def __init__(
        self,
        config: UadConfig,
        *,
        bridge: DeviceBridge | None = None,
        store: SettingsStore | None = None,
        release_checker: ReleaseChecker | None = None,
        updater: SelfUpdater | None = None,
        catalog_client: CatalogClient | None = None,
        folder_picker: FolderPicker | None = None,
        http_session: aiohttp.ClientSession | None = None,
        on_snapshot: Callable[[AppSnapshot], None] | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._config = config
        self._bridge: DeviceBridge = bridge if bridge is not None else AdbBridge(config)
        self._external_session = http_session is not None
        self._http_session = http_session
        self._release_checker = release_checker
        self._updater = updater
        self._catalog_client = catalog_client
        self._folder_picker = folder_picker
        self._on_snapshot = on_snapshot
        self._clock = clock

        settings = SettingsReconciler(
            store if store is not None else SettingsStore(config.config_path),
            default_backup_folder=config.backup_folder,
        )
        self._loop = ReconciliationLoop(settings)
        self._queue: asyncio.Queue[ev.LoopEvent] = asyncio.Queue()
        self._pump: asyncio.Task[None] | None = None
        self._tasks: set[asyncio.Task[None]] = set()
        self._pending = 0
        self._idle = asyncio.Event()
        self._idle.set()

    # ------------------------------------------------------------------
    # Context manager lifecycle
    # ------------------------------------------------------------------

    async def __aenter__(self) -> Runtime:
        if self._http_session is None:
            self._http_session = aiohttp.ClientSession()
        if self._release_checker is None:
            self._release_checker = ReleaseChecker(self._config, self._http_session)
        if self._updater is None:
            self._updater = SelfUpdater(self._config, self._http_session)
        if self._catalog_client is None:
            self._catalog_client = CatalogClient(self._config, self._http_session)
        self._pump = asyncio.create_task(self._run_pump(), name="pyuad-pump")
        return self

    async def __aexit__(self, *exc: Any) -> None:
        tasks = [*self._tasks, *([self._pump] if self._pump is not None else [])]
        for task in tasks:
            task.cancel()
        for task in tasks:
            with contextlib.suppress(asyncio.CancelledError):
                await task
        self._tasks.clear()
        self._pump = None
        if not self._external_session and self._http_session is not None:
            await self._http_session.close()
            self._http_session = None

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    @property
    def loop(self) -> ReconciliationLoop:
        return self._loop

    def post(self, event: ev.LoopEvent) -> None:
        """Queue *event* for the loop."""
        self._pending += 1
        self._idle.clear()
        self._queue.put_nowait(event)

    def start(self) -> None:
        self.post(ev.Startup())

    def snapshot(self) -> AppSnapshot:
        return self._loop.snapshot()

    async def wait_idle(self) -> None:
        """Wait until no event is queued and no effect is running."""
        while True:
            await self._idle.wait()
            # Let freshly finished tasks post their events.
            await asyncio.sleep(0)
            if self._is_idle():
                return

    # ------------------------------------------------------------------
    # Pump
    # ------------------------------------------------------------------

    def _is_idle(self) -> bool:
        return self._pending == 0 and not self._tasks

    def _check_idle(self) -> None:
        if self._is_idle():
            self._idle.set()

    async def _run_pump(self) -> None:
        while True:
            event = await self._queue.get()
            try:
                effects = self._loop.dispatch(event)
                for effect in effects:
                    self._spawn(effect)
                if self._on_snapshot is not None:
                    self._on_snapshot(self._loop.snapshot())
            except Exception:
                _logger.exception("Failed to process %s", type(event).__name__)
            finally:
                self._pending -= 1
                self._check_idle()

    def _spawn(self, effect: fx.Effect) -> None:
        task = asyncio.create_task(self._perform(effect), name=f"pyuad-{type(effect).__name__}")
        self._tasks.add(task)
        task.add_done_callback(self._on_task_done)

    def _on_task_done(self, task: asyncio.Task[None]) -> None:
        self._tasks.discard(task)
        self._check_idle()

    async def _perform(self, effect: fx.Effect) -> None:
        try:
            event = await self._execute(effect)
        except Exception as exc:
            _logger.exception("Effect %s crashed", type(effect).__name__)
            event = _failure_event(effect, exc)
        if event is not None:
            self.post(event)

    # ------------------------------------------------------------------
    # Effects
    # ------------------------------------------------------------------

    async def _execute(self, effect: fx.Effect) -> ev.LoopEvent | None:
        """Run *effect* and translate its result into an event."""
        if isinstance(effect, fx.CheckAdb):
            return ev.AdbChecked(available=await self._bridge.is_available())

        if isinstance(effect, fx.FetchDevices):
            try:
                devices = await self._bridge.list_devices()
            except UadError as exc:
                return ev.DevicesLoaded(error=str(exc))
            return ev.DevicesLoaded(devices=tuple(devices))

        if isinstance(effect, fx.FetchPackages):
            device_id = effect.device.adb_id
            try:
                partitions = await self._bridge.list_packages(effect.device)
            except UadError as exc:
                return ev.PackagesLoaded(device_id=device_id, error=str(exc))
            return ev.PackagesLoaded(
                device_id=device_id,
                partitions=tuple(tuple(partition) for partition in partitions),
            )

        if isinstance(effect, fx.SubmitCommand):
            command = effect.command
            try:
                outcome = await self._bridge.submit(command.device_id, command)
            except UadError as exc:
                outcome = CommandOutcome(command=command, success=False, error=str(exc))
            return ev.CommandCompleted(batch_id=effect.batch_id, outcome=outcome)

        if isinstance(effect, fx.RebootDevice):
            try:
                await self._bridge.reboot(effect.device_id)
            except UadError as exc:
                _logger.error("Reboot of %s failed: %s", effect.device_id, exc)
            return None

        if isinstance(effect, fx.CheckLatestRelease):
            assert self._release_checker is not None  # noqa: S101
            try:
                release = await self._release_checker.latest_release()
            except UadError as exc:
                return ev.LatestReleaseChecked(error=str(exc))
            return ev.LatestReleaseChecked(release=release)

        if isinstance(effect, fx.FetchCatalog):
            assert self._catalog_client is not None  # noqa: S101
            try:
                catalog = await self._catalog_client.fetch()
            except UadError as exc:
                return ev.CatalogLoaded(error=str(exc))
            return ev.CatalogLoaded(catalog=catalog)

        if isinstance(effect, fx.DownloadUpdate):
            assert self._updater is not None  # noqa: S101
            try:
                relaunch_path, cleanup_path = await self._updater.download(effect.release)
            except UadError as exc:
                return ev.UpdateDownloaded(error=str(exc))
            return ev.UpdateDownloaded(relaunch_path=relaunch_path, cleanup_path=cleanup_path)

        if isinstance(effect, fx.Relaunch):
            assert self._updater is not None  # noqa: S101
            try:
                self._updater.relaunch(effect.relaunch_path, effect.cleanup_path)
            except UadError as exc:
                return ev.UpdateDownloaded(error=str(exc))
            return None

        if isinstance(effect, fx.CreateBackup):
            device_id = effect.device.adb_id
            try:
                path = await asyncio.to_thread(
                    create_backup,
                    effect.backup_folder,
                    effect.device,
                    effect.partitions,
                    now=self._clock(),
                )
            except UadError as exc:
                return ev.BackupCreated(device_id=device_id, error=str(exc))
            return ev.BackupCreated(device_id=device_id, path=path)

        if isinstance(effect, fx.PickFolder):
            if self._folder_picker is None:
                return ev.FolderChosen(error="No folder picker available")
            try:
                folder = await self._folder_picker()
            except OSError as exc:
                return ev.FolderChosen(error=str(exc))
            return ev.FolderChosen(path=folder)

        if isinstance(effect, fx.ExportPackages):
            try:
                path = await asyncio.to_thread(
                    export_packages,
                    self._config.export_folder,
                    effect.user,
                    effect.partitions,
                    now=self._clock(),
                )
            except UadError as exc:
                return ev.PackagesExported(error=str(exc))
            return ev.PackagesExported(path=path)

        raise TypeError(f"Unsupported effect {type(effect).__name__}")


def _failure_event(effect: fx.Effect, exc: Exception) -> ev.LoopEvent | None:
    """Failure event for an effect that crashed outside the expected error types.

    Every effect whose result the loop waits for gets one, so an unexpected
    exception cannot leave a batch gate or a sub-state hanging.
    """
    error = f"{type(exc).__name__}: {exc}"
    if isinstance(effect, fx.SubmitCommand):
        outcome = CommandOutcome(command=effect.command, success=False, error=error)
        return ev.CommandCompleted(batch_id=effect.batch_id, outcome=outcome)
    if isinstance(effect, fx.CheckAdb):
        return ev.AdbChecked(available=False)
    if isinstance(effect, fx.FetchDevices):
        return ev.DevicesLoaded(error=error)
    if isinstance(effect, fx.FetchPackages):
        return ev.PackagesLoaded(device_id=effect.device.adb_id, error=error)
    if isinstance(effect, fx.CheckLatestRelease):
        return ev.LatestReleaseChecked(error=error)
    if isinstance(effect, fx.FetchCatalog):
        return ev.CatalogLoaded(error=error)
    if isinstance(effect, fx.DownloadUpdate | fx.Relaunch):
        return ev.UpdateDownloaded(error=error)
    if isinstance(effect, fx.CreateBackup):
        return ev.BackupCreated(device_id=effect.device.adb_id, error=error)
    if isinstance(effect, fx.PickFolder):
        return ev.FolderChosen(error=error)
    if isinstance(effect, fx.ExportPackages):
        return ev.PackagesExported(error=error)
    return None
