"""The reconciliation loop: the single writer of application state.

``dispatch`` takes one event, runs its handler, then runs every follow-up
event the handler produced before returning. Follow-ups are queued at the
front so they resolve in the order nested calls would, but through a work
queue rather than recursion. Effects are only collected and returned; the
caller (see :mod:`pyuad.runtime`) executes them and feeds the results back
as new events.
"""

from __future__ import annotations

import logging
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from pyuad._catalog import annotate
from pyuad.backup import plan_restore
from pyuad.exceptions import UadError, UadRestoreError
from pyuad.models.device import Device, User
from pyuad.models.package import CatalogEntry, Command, PackageEntry, PackageState, Removal, transition_commands
from pyuad.models.release import CatalogState, SelfUpdateState, SelfUpdateStatus
from pyuad.state import effects as fx
from pyuad.state import events as ev
from pyuad.state.batch import BatchCoordinator, BatchKind
from pyuad.state.multi_user import propagate
from pyuad.state.registry import reconcile
from pyuad.state.settings import SettingsReconciler
from pyuad.state.snapshot import AppSnapshot, ListState

_logger = logging.getLogger(__name__)


@dataclass
class AppState:
    """Mutable application state. Owned by exactly one loop."""

    view: ev.View = ev.View.LIST
    adb_satisfied: bool = True
    list_state: ListState = ListState.FINDING_DEVICES
    devices: tuple[Device, ...] = ()
    selected_device: Device | None = None
    selected_user: User | None = None
    packages: list[list[PackageEntry]] = field(default_factory=list)
    self_update: SelfUpdateState = field(default_factory=SelfUpdateState)
    catalog_state: CatalogState = CatalogState.IDLE
    catalog: dict[str, CatalogEntry] = field(default_factory=dict)
    picking_folder: bool = False
    last_export: Path | None = None
    status: str = ""


@dataclass
class Transition:
    """What a handler asks for besides its in-place state changes."""

    follow_ups: list[ev.LoopEvent] = field(default_factory=list)
    effects: list[fx.Effect] = field(default_factory=list)


def _frozen(partitions: list[list[PackageEntry]]) -> tuple[tuple[PackageEntry, ...], ...]:
    return tuple(tuple(partition) for partition in partitions)


class ReconciliationLoop:
    """Apply events to :class:`AppState`, one at a time."""

    def __init__(self, settings: SettingsReconciler) -> None:
        self.state = AppState()
        self.settings = settings
        self.batches = BatchCoordinator()
        self._dispatching = False
        self._emitted: list[ev.LoopEvent] = []
        self._handlers: dict[type[ev.LoopEvent], Callable[[Any], Transition]] = {
            ev.Startup: self._on_startup,
            ev.AdbChecked: self._on_adb_checked,
            ev.DevicesLoaded: self._on_devices_loaded,
            ev.DeviceSelected: self._on_device_selected,
            ev.RefreshRequested: self._on_refresh,
            ev.RebootRequested: self._on_reboot,
            ev.ViewChanged: self._on_view_changed,
            ev.LoadDeviceSettings: self._on_load_device_settings,
            ev.LoadPackages: self._on_load_packages,
            ev.PackagesLoaded: self._on_packages_loaded,
            ev.UserSelected: self._on_user_selected,
            ev.PackageToggled: self._on_package_toggled,
            ev.ToggleAll: self._on_toggle_all,
            ev.ClearSelection: self._on_clear_selection,
            ev.ApplySelection: self._on_apply_selection,
            ev.RestoreRequested: self._on_restore_requested,
            ev.CommandCompleted: self._on_command_completed,
            ev.BatchDrained: self._on_batch_drained,
            ev.BatchEmpty: self._on_batch_empty,
            ev.ExpertModeToggled: self._on_expert_mode,
            ev.DisableModeToggled: self._on_disable_mode,
            ev.MultiUserModeToggled: self._on_multi_user_mode,
            ev.ThemeChanged: self._on_theme_changed,
            ev.BackupSelected: self._on_backup_selected,
            ev.BackupRequested: self._on_backup_requested,
            ev.BackupCreated: self._on_backup_created,
            ev.ChooseBackupFolder: self._on_choose_backup_folder,
            ev.FolderChosen: self._on_folder_chosen,
            ev.ExportRequested: self._on_export_requested,
            ev.PackagesExported: self._on_packages_exported,
            ev.LatestReleaseChecked: self._on_latest_release,
            ev.SelfUpdateRequested: self._on_self_update_requested,
            ev.UpdateDownloaded: self._on_update_downloaded,
            ev.CatalogRequested: self._on_catalog_requested,
            ev.CatalogLoaded: self._on_catalog_loaded,
        }

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    def dispatch(self, event: ev.LoopEvent) -> list[fx.Effect]:
        """Process *event* and all follow-ups; return the requested effects."""
        if self._dispatching:
            raise RuntimeError("dispatch() is not reentrant; return follow-up events instead")
        self._dispatching = True
        effects: list[fx.Effect] = []
        pending: deque[ev.LoopEvent] = deque([event])
        try:
            while pending:
                current = pending.popleft()
                transition = self._handle(current)
                follow_ups = [*self._emitted, *transition.follow_ups]
                self._emitted = []
                pending.extendleft(reversed(follow_ups))
                effects.extend(transition.effects)
        finally:
            self._dispatching = False
            self._emitted = []
        return effects

    def _handle(self, event: ev.LoopEvent) -> Transition:
        handler = self._handlers.get(type(event))
        if handler is None:
            raise TypeError(f"No handler for {type(event).__name__}")
        _logger.debug("Handling %s", type(event).__name__)
        try:
            return handler(event)
        except UadError as exc:
            _logger.error("%s failed: %s", type(event).__name__, exc)
            self.state.status = str(exc)
        except Exception:
            _logger.exception("Unexpected failure while handling %s", type(event).__name__)
        self._emitted = []
        return Transition()

    def _emit(self, event: ev.LoopEvent) -> None:
        """Queue a follow-up from outside a handler's return value (gate callbacks)."""
        self._emitted.append(event)

    def snapshot(self) -> AppSnapshot:
        state = self.state
        return AppSnapshot(
            view=state.view,
            adb_satisfied=state.adb_satisfied,
            list_state=state.list_state,
            devices=state.devices,
            selected_device=state.selected_device,
            selected_user=state.selected_user,
            packages=_frozen(state.packages),
            general=self.settings.general,
            device_settings=self.settings.device,
            batch=self.batches.progress(),
            self_update=state.self_update,
            catalog_state=state.catalog_state,
            last_export=state.last_export,
            status=state.status,
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _select(self, device: Device | None) -> None:
        previous = self.state.selected_device
        if previous is not None and (device is None or device.adb_id != previous.adb_id):
            self.batches.abandon()
        self.state.selected_device = device

    def _entry(self, user_index: int, package_index: int) -> PackageEntry | None:
        packages = self.state.packages
        if 0 <= user_index < len(packages) and 0 <= package_index < len(packages[user_index]):
            return packages[user_index][package_index]
        return None

    def _replace_entry(self, user_index: int, package_index: int, **changes: Any) -> None:
        entry = self._entry(user_index, package_index)
        if entry is not None:
            self.state.packages[user_index][package_index] = entry.model_copy(update=changes)

    def _selectable(self, entry: PackageEntry) -> bool:
        return entry.removal is not Removal.UNSAFE or self.settings.general.expert_mode

    # ------------------------------------------------------------------
    # Lifecycle and devices
    # ------------------------------------------------------------------

    def _on_startup(self, _event: ev.Startup) -> Transition:
        self.state.self_update = SelfUpdateState(status=SelfUpdateStatus.CHECKING)
        self.state.catalog_state = CatalogState.DOWNLOADING
        self.state.list_state = ListState.FINDING_DEVICES
        return Transition(
            effects=[fx.CheckAdb(), fx.FetchDevices(), fx.CheckLatestRelease(), fx.FetchCatalog()],
        )

    def _on_adb_checked(self, event: ev.AdbChecked) -> Transition:
        self.state.adb_satisfied = event.available
        if not event.available:
            _logger.error("adb was not found; no device can be managed")
            self.state.list_state = ListState.ADB_MISSING
        return Transition()

    def _on_devices_loaded(self, event: ev.DevicesLoaded) -> Transition:
        if event.error:
            _logger.warning("Device enumeration failed: %s", event.error)
            self.state.status = event.error
        self.state.devices = event.devices
        self._select(reconcile(self.state.selected_device, event.devices))
        return Transition(follow_ups=[ev.LoadDeviceSettings(), ev.LoadPackages()])

    def _on_device_selected(self, event: ev.DeviceSelected) -> Transition:
        device = event.device
        self._select(device)
        self.state.view = ev.View.LIST
        _logger.info("%s", "-" * 65)
        _logger.info("ANDROID_SDK: %s | DEVICE: %s", device.android_sdk, device.model)
        _logger.info("%s", "-" * 65)
        self.state.list_state = ListState.FINDING_DEVICES
        return Transition(follow_ups=[ev.LoadDeviceSettings(), ev.ClearSelection(), ev.LoadPackages()])

    def _on_refresh(self, _event: ev.RefreshRequested) -> Transition:
        self.state.packages = []
        self.state.list_state = ListState.FINDING_DEVICES if self.state.adb_satisfied else ListState.ADB_MISSING
        return Transition(effects=[fx.FetchDevices()])

    def _on_reboot(self, _event: ev.RebootRequested) -> Transition:
        device = self.state.selected_device
        self.state.packages = []
        self._select(None)
        self.state.devices = ()
        self.state.list_state = ListState.NO_DEVICE
        if device is None:
            return Transition()
        _logger.info("Rebooting %s", device)
        return Transition(effects=[fx.RebootDevice(device_id=device.adb_id)])

    def _on_view_changed(self, event: ev.ViewChanged) -> Transition:
        self.state.view = event.view
        if event.view is ev.View.ABOUT:
            self.state.self_update = SelfUpdateState(status=SelfUpdateStatus.CHECKING)
            return Transition(effects=[fx.CheckLatestRelease()])
        return Transition()

    # ------------------------------------------------------------------
    # Package list and selection
    # ------------------------------------------------------------------

    def _on_load_device_settings(self, _event: ev.LoadDeviceSettings) -> Transition:
        self.settings.load(self.state.selected_device)
        return Transition()

    def _on_load_packages(self, _event: ev.LoadPackages) -> Transition:
        device = self.state.selected_device
        self.state.packages = []
        self.state.selected_user = None
        if device is None:
            if self.state.adb_satisfied:
                self.state.list_state = ListState.NO_DEVICE
            return Transition()
        self.state.list_state = ListState.LOADING_PACKAGES
        return Transition(effects=[fx.FetchPackages(device=device)])

    def _on_packages_loaded(self, event: ev.PackagesLoaded) -> Transition:
        device = self.state.selected_device
        if device is None or device.adb_id != event.device_id:
            _logger.debug("Ignoring package list of stale device %s", event.device_id)
            return Transition()
        if event.error:
            _logger.error("Could not load packages of %s: %s", device, event.error)
            self.state.packages = []
            self.state.list_state = ListState.LOAD_FAILED
            self.state.status = event.error
            return Transition()

        self.state.packages = annotate(event.partitions, self.state.catalog)
        readable = device.unprotected_users or device.user_list
        self.state.selected_user = readable[0] if readable else None
        self.state.list_state = ListState.READY
        return Transition()

    def _on_user_selected(self, event: ev.UserSelected) -> Transition:
        device = self.state.selected_device
        if device is None:
            return Transition()
        for user in device.user_list:
            if user.index == event.user_index:
                self.state.selected_user = user
                break
        else:
            _logger.warning("No user at index %d on %s", event.user_index, device)
        return Transition()

    def _on_package_toggled(self, event: ev.PackageToggled) -> Transition:
        entry = self._entry(event.user_index, event.package_index)
        if entry is None:
            _logger.warning("No package at %d/%d", event.user_index, event.package_index)
            return Transition()
        if event.selected and not self._selectable(entry):
            _logger.warning("%s is unsafe to remove; enable expert mode to select it", entry.name)
            return Transition()
        self._replace_entry(event.user_index, event.package_index, selected=event.selected)
        return Transition()

    def _on_toggle_all(self, event: ev.ToggleAll) -> Transition:
        user = self.state.selected_user
        if user is None or user.index >= len(self.state.packages):
            return Transition()
        partition = self.state.packages[user.index]
        for i, entry in enumerate(partition):
            if event.selected and not self._selectable(entry):
                continue
            if entry.selected != event.selected:
                partition[i] = entry.model_copy(update={"selected": event.selected})
        return Transition()

    def _on_clear_selection(self, _event: ev.ClearSelection) -> Transition:
        for partition in self.state.packages:
            for i, entry in enumerate(partition):
                if entry.selected:
                    partition[i] = entry.model_copy(update={"selected": False})
        return Transition()

    # ------------------------------------------------------------------
    # Batches
    # ------------------------------------------------------------------

    def _start_batch(self, commands: list[Command], kind: BatchKind, device: Device) -> Transition:
        transition = Transition()
        self.batches.submit_batch(
            commands,
            kind=kind,
            device_id=device.adb_id,
            dispatch=transition.effects.append,
            on_drain=lambda batch_id: self._emit(ev.BatchDrained(batch_id=batch_id)),
        )
        return transition

    def _on_apply_selection(self, _event: ev.ApplySelection) -> Transition:
        device = self.state.selected_device
        user = self.state.selected_user
        if device is None or not device.is_connected:
            return Transition(follow_ups=[ev.BatchEmpty(reason=ev.EmptyBatchReason.DEVICE_NOT_CONNECTED)])
        if self.batches.active:
            return Transition(follow_ups=[ev.BatchEmpty(reason=ev.EmptyBatchReason.BATCH_IN_PROGRESS)])
        if user is None or user.index >= len(self.state.packages):
            return Transition(follow_ups=[ev.BatchEmpty(reason=ev.EmptyBatchReason.NOTHING_SELECTED)])

        removal_state = PackageState.DISABLED if self.settings.device.disable_mode else PackageState.UNINSTALLED
        targets = device.unprotected_users if self.settings.device.multi_user_mode else (user,)
        source = self.state.packages[user.index]

        commands: list[Command] = []
        for index, chosen in enumerate(source):
            if not chosen.selected:
                continue
            wanted = removal_state if chosen.state is PackageState.ENABLED else PackageState.ENABLED
            for target in targets:
                entry = self._entry(target.index, index)
                if entry is None:
                    continue
                commands += transition_commands(
                    entry.state,
                    wanted,
                    device_id=device.adb_id,
                    package=entry.name,
                    user_id=target.id,
                    user_index=target.index,
                    package_index=index,
                    android_sdk=device.android_sdk,
                )

        if not commands:
            return Transition(follow_ups=[ev.BatchEmpty(reason=ev.EmptyBatchReason.NOTHING_SELECTED)])
        return self._start_batch(commands, BatchKind.APPLY, device)

    def _on_restore_requested(self, _event: ev.RestoreRequested) -> Transition:
        device = self.state.selected_device
        if device is None or not device.is_connected:
            return Transition(follow_ups=[ev.BatchEmpty(reason=ev.EmptyBatchReason.DEVICE_NOT_CONNECTED)])
        if self.batches.active:
            return Transition(follow_ups=[ev.BatchEmpty(reason=ev.EmptyBatchReason.BATCH_IN_PROGRESS)])
        backup = self.settings.device.backup
        if backup.selected is None:
            return Transition(follow_ups=[ev.BatchEmpty(reason=ev.EmptyBatchReason.NO_BACKUP_SELECTED)])
        # Restore is only planned against a loaded package list.
        if self.state.list_state is not ListState.READY or not self.state.packages:
            return Transition(follow_ups=[ev.BatchEmpty(reason=ev.EmptyBatchReason.PACKAGES_NOT_LOADED)])

        try:
            commands = plan_restore(device, self.state.packages, self.settings.device)
        except UadRestoreError as exc:
            _logger.error("%s - %s", backup.selected, exc)
            self.settings.set_backup_state(str(exc))
            return Transition()

        if not commands:
            return Transition(follow_ups=[ev.BatchEmpty(reason=ev.EmptyBatchReason.ALREADY_RESTORED)])
        _logger.info("[RESTORE] Restoring backup %s", backup.selected)
        self.settings.set_backup_state("")
        return self._start_batch(commands, BatchKind.RESTORE, device)

    def _on_command_completed(self, event: ev.CommandCompleted) -> Transition:
        outcome = event.outcome
        command = outcome.command
        device = self.state.selected_device
        if device is None or device.adb_id != command.device_id:
            _logger.debug("Ignoring completion for stale device %s", command.device_id)
            return Transition()
        if not self.batches.is_current(event.batch_id, command.device_id):
            _logger.debug("Ignoring completion from batch %d", event.batch_id)
            return Transition()

        if outcome.success and command.final_step:
            changes: dict[str, Any] = {"selected": False}
            if command.kind.resulting_state is not None:
                changes["state"] = command.kind.resulting_state
            self._replace_entry(command.user_index, command.package_index, **changes)
        elif not outcome.success:
            self.state.status = f"{command.describe()} failed: {outcome.error}"
        if self.batches.kind is BatchKind.RESTORE:
            self.state.view = ev.View.LIST
        # May emit BatchDrained through the gate.
        self.batches.complete(event.batch_id, outcome)
        return Transition()

    def _on_batch_drained(self, event: ev.BatchDrained) -> Transition:
        progress = self.batches.progress()
        if progress.errors:
            _logger.warning("Batch %d finished with %d failed command(s)", event.batch_id, len(progress.errors))
        else:
            _logger.info("Batch %d finished", event.batch_id)
        if progress.kind is BatchKind.RESTORE and progress.failed_packages:
            self.settings.set_backup_state(f"{progress.failed_packages} package(s) could not be restored")
        return Transition(follow_ups=[ev.RefreshRequested()])

    def _on_batch_empty(self, event: ev.BatchEmpty) -> Transition:
        self.batches.record_empty(event.reason)
        if event.reason is not ev.EmptyBatchReason.NOTHING_SELECTED:
            self.settings.set_backup_state(event.reason.message)
        self.state.status = event.reason.message
        return Transition()

    # ------------------------------------------------------------------
    # Settings
    # ------------------------------------------------------------------

    def _on_expert_mode(self, event: ev.ExpertModeToggled) -> Transition:
        self.settings.set_expert_mode(event.enabled)
        return Transition()

    def _on_disable_mode(self, event: ev.DisableModeToggled) -> Transition:
        self.settings.set_disable_mode(event.enabled, self.state.selected_device)
        return Transition()

    def _on_multi_user_mode(self, event: ev.MultiUserModeToggled) -> Transition:
        device = self.state.selected_device
        if device is None:
            return Transition()
        switched_on = self.settings.set_multi_user_mode(event.enabled)
        if switched_on:
            self.state.packages = propagate(self.state.packages, device.user_list)
        return Transition()

    def _on_theme_changed(self, event: ev.ThemeChanged) -> Transition:
        self.settings.set_theme(event.theme)
        return Transition()

    def _on_backup_selected(self, event: ev.BackupSelected) -> Transition:
        self.settings.select_backup(event.path)
        return Transition()

    def _on_backup_requested(self, _event: ev.BackupRequested) -> Transition:
        device = self.state.selected_device
        if device is None or not self.state.packages:
            _logger.warning("Nothing to back up: no device or package list")
            return Transition()
        return Transition(
            effects=[
                fx.CreateBackup(
                    backup_folder=self.settings.backup_folder,
                    device=device,
                    partitions=_frozen(self.state.packages),
                )
            ]
        )

    def _on_backup_created(self, event: ev.BackupCreated) -> Transition:
        if event.error or event.path is None:
            _logger.error("[BACKUP FAILED] Backup creation failed: %s", event.error)
            self.settings.set_backup_state(event.error or "Backup failed")
            return Transition()
        device = self.state.selected_device
        if device is not None and device.adb_id == event.device_id:
            self.settings.refresh_backups(device)
        return Transition()

    def _on_choose_backup_folder(self, _event: ev.ChooseBackupFolder) -> Transition:
        if self.state.picking_folder:
            return Transition()
        self.state.picking_folder = True
        return Transition(effects=[fx.PickFolder()])

    def _on_folder_chosen(self, event: ev.FolderChosen) -> Transition:
        self.state.picking_folder = False
        if event.path is None:
            if event.error:
                _logger.warning("Folder selection failed: %s", event.error)
            return Transition()
        self.settings.set_backup_folder(event.path)
        return Transition(follow_ups=[ev.LoadDeviceSettings()])

    def _on_export_requested(self, _event: ev.ExportRequested) -> Transition:
        user = self.state.selected_user
        if user is None or not self.state.packages:
            return Transition()
        return Transition(effects=[fx.ExportPackages(user=user, partitions=_frozen(self.state.packages))])

    def _on_packages_exported(self, event: ev.PackagesExported) -> Transition:
        if event.error or event.path is None:
            _logger.error("Failed to export list of uninstalled packages: %s", event.error)
            self.state.status = event.error or "Export failed"
            return Transition()
        self.state.last_export = event.path
        self.state.status = f"Exported uninstalled packages into {event.path}"
        return Transition()

    # ------------------------------------------------------------------
    # Release, self-update and catalog
    # ------------------------------------------------------------------

    def _on_latest_release(self, event: ev.LatestReleaseChecked) -> Transition:
        if event.error:
            _logger.warning("Release check failed: %s", event.error)
            self.state.self_update = SelfUpdateState(status=SelfUpdateStatus.FAILED)
        else:
            self.state.self_update = SelfUpdateState(status=SelfUpdateStatus.DONE, latest_release=event.release)
        return Transition()

    def _on_self_update_requested(self, _event: ev.SelfUpdateRequested) -> Transition:
        current = self.state.self_update
        if current.status is not SelfUpdateStatus.DONE or current.latest_release is None:
            return Transition()
        self.state.self_update = SelfUpdateState(
            status=SelfUpdateStatus.UPDATING,
            latest_release=current.latest_release,
        )
        self.state.list_state = ListState.UPDATING
        return Transition(effects=[fx.DownloadUpdate(release=current.latest_release)])

    def _on_update_downloaded(self, event: ev.UpdateDownloaded) -> Transition:
        if event.error or event.relaunch_path is None or event.cleanup_path is None:
            _logger.error("Failed to update: %s", event.error)
            self.state.self_update = SelfUpdateState(
                status=SelfUpdateStatus.FAILED,
                latest_release=self.state.self_update.latest_release,
            )
            self.state.list_state = ListState.UPDATE_FAILED
            return Transition()
        return Transition(effects=[fx.Relaunch(relaunch_path=event.relaunch_path, cleanup_path=event.cleanup_path)])

    def _on_catalog_requested(self, _event: ev.CatalogRequested) -> Transition:
        self.state.catalog_state = CatalogState.DOWNLOADING
        if not self.state.packages:
            self.state.list_state = ListState.DOWNLOADING_CATALOG
        return Transition(effects=[fx.FetchCatalog()])

    def _on_catalog_loaded(self, event: ev.CatalogLoaded) -> Transition:
        if event.error:
            _logger.warning("Catalog download failed: %s", event.error)
            self.state.catalog_state = CatalogState.FAILED
        else:
            self.state.catalog = dict(event.catalog)
            self.state.catalog_state = CatalogState.DONE
            self.state.packages = annotate(self.state.packages, self.state.catalog)
        if self.state.list_state is ListState.DOWNLOADING_CATALOG:
            self.state.list_state = ListState.READY if self.state.packages else ListState.FINDING_DEVICES
        return Transition()
