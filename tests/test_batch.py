from __future__ import annotations

import pytest

from pyuad.models.package import Command, CommandKind, CommandOutcome
from pyuad.state.batch import BatchCoordinator, BatchKind, CountedGate
from pyuad.state.effects import SubmitCommand
from pyuad.state.events import EmptyBatchReason


def _command(package: str, device_id: str = "dev-a") -> Command:
    return Command(kind=CommandKind.UNINSTALL, device_id=device_id, package=package)


def test_gate_drains_exactly_once() -> None:
    drained: list[int] = []
    gate = CountedGate(2, lambda: drained.append(1))

    assert gate.signal()
    assert drained == []
    assert gate.signal()
    assert drained == [1]
    assert gate.drained

    # Extra signals are ignored and never go below zero.
    assert not gate.signal()
    assert gate.remaining == 0
    assert drained == [1]


def test_gate_rejects_negative_count() -> None:
    with pytest.raises(ValueError):
        CountedGate(-1, lambda: None)


def test_gate_armed_with_zero_never_fires() -> None:
    drained: list[int] = []
    gate = CountedGate(0, lambda: drained.append(1))

    assert not gate.signal()
    assert drained == []


def test_submit_batch_arms_before_dispatch() -> None:
    coordinator = BatchCoordinator()
    seen_outstanding: list[int] = []

    def dispatch(effect: SubmitCommand) -> None:
        seen_outstanding.append(coordinator.outstanding)

    outstanding = coordinator.submit_batch(
        [_command("a"), _command("b"), _command("c")],
        kind=BatchKind.RESTORE,
        device_id="dev-a",
        dispatch=dispatch,
        on_drain=lambda batch_id: None,
    )

    assert outstanding == 3
    assert seen_outstanding == [3, 3, 3]


def test_batch_counts_failures_and_drains_once() -> None:
    coordinator = BatchCoordinator()
    effects: list[SubmitCommand] = []
    drained: list[int] = []
    commands = [_command("a"), _command("b"), _command("c")]

    coordinator.submit_batch(
        commands, kind=BatchKind.RESTORE, device_id="dev-a", dispatch=effects.append, on_drain=drained.append
    )
    batch_id = effects[0].batch_id

    coordinator.complete(batch_id, CommandOutcome(command=commands[0], success=True))
    coordinator.complete(batch_id, CommandOutcome(command=commands[1], success=False, error="boom"))
    assert drained == []
    coordinator.complete(batch_id, CommandOutcome(command=commands[2], success=True))

    assert drained == [batch_id]
    progress = coordinator.progress()
    assert progress.outstanding == 0
    assert progress.total == 3
    assert progress.errors == {"uninstall b (user 0)": "boom"}
    assert progress.failed_packages == 1
    assert progress.last_error is not None and "boom" in progress.last_error


def test_stale_completions_are_rejected() -> None:
    coordinator = BatchCoordinator()
    effects: list[SubmitCommand] = []
    drained: list[int] = []
    first = [_command("a"), _command("b")]

    coordinator.submit_batch(
        first, kind=BatchKind.APPLY, device_id="dev-a", dispatch=effects.append, on_drain=drained.append
    )
    old_batch = effects[0].batch_id
    second = [_command("c")]
    coordinator.submit_batch(
        second, kind=BatchKind.APPLY, device_id="dev-a", dispatch=effects.append, on_drain=drained.append
    )
    new_batch = effects[-1].batch_id

    assert new_batch != old_batch
    assert not coordinator.complete(old_batch, CommandOutcome(command=first[0], success=True))
    assert coordinator.outstanding == 1

    # Same batch id but another device.
    other = _command("c", device_id="dev-b")
    assert not coordinator.complete(new_batch, CommandOutcome(command=other, success=True))

    assert coordinator.complete(new_batch, CommandOutcome(command=second[0], success=True))
    assert drained == [new_batch]


def test_abandon_makes_late_completions_stale() -> None:
    coordinator = BatchCoordinator()
    effects: list[SubmitCommand] = []
    drained: list[int] = []
    commands = [_command("a")]
    coordinator.submit_batch(
        commands, kind=BatchKind.APPLY, device_id="dev-a", dispatch=effects.append, on_drain=drained.append
    )

    coordinator.abandon()

    assert not coordinator.active
    assert not coordinator.complete(effects[0].batch_id, CommandOutcome(command=commands[0], success=True))
    assert drained == []


def test_record_empty_is_visible_in_progress() -> None:
    coordinator = BatchCoordinator()

    coordinator.record_empty(EmptyBatchReason.ALREADY_RESTORED)

    assert coordinator.progress().empty_reason is EmptyBatchReason.ALREADY_RESTORED
    assert coordinator.outstanding == 0


def test_failures_are_kept_per_command_and_counted_per_package() -> None:
    coordinator = BatchCoordinator()
    effects: list[SubmitCommand] = []
    commands = [
        Command(kind=CommandKind.FORCE_STOP, device_id="dev-a", package="a", user_id=0),
        Command(kind=CommandKind.DISABLE, device_id="dev-a", package="a", user_id=0),
        Command(kind=CommandKind.DISABLE, device_id="dev-a", package="a", user_id=10, user_index=1),
    ]
    coordinator.submit_batch(
        commands, kind=BatchKind.RESTORE, device_id="dev-a", dispatch=effects.append, on_drain=lambda _id: None
    )

    for command in commands:
        coordinator.complete(effects[0].batch_id, CommandOutcome(command=command, success=False, error="denied"))

    progress = coordinator.progress()
    assert len(progress.errors) == 3
    assert progress.failed_packages == 2
