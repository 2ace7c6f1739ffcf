"""Batch coordination: fan-out bookkeeping and drain detection."""

from __future__ import annotations

import enum
import logging
from collections.abc import Callable, Sequence

from pydantic import BaseModel, ConfigDict, Field

from pyuad.models.package import Command, CommandOutcome
from pyuad.state.effects import SubmitCommand
from pyuad.state.events import EmptyBatchReason

_logger = logging.getLogger(__name__)


class CountedGate:
    """A one-shot countdown barrier.

    Armed with the number of expected signals before any work starts. Each
    :meth:`signal` consumes one; the signal that reaches zero runs
    *on_drain*. Signals past zero are ignored, so the continuation runs
    at most once.
    """

    def __init__(self, count: int, on_drain: Callable[[], None]) -> None:
        if count < 0:
            raise ValueError(f"count must be >= 0, got {count}")
        self._remaining = count
        self._on_drain = on_drain
        self._fired = False

    @property
    def remaining(self) -> int:
        return self._remaining

    @property
    def drained(self) -> bool:
        return self._fired

    def signal(self) -> bool:
        """Consume one expected signal. Returns ``False`` if none was outstanding."""
        if self._remaining == 0:
            _logger.warning("Gate signalled with nothing outstanding; ignored")
            return False
        self._remaining -= 1
        if self._remaining == 0 and not self._fired:
            self._fired = True
            self._on_drain()
        return True


class BatchKind(enum.StrEnum):
    RESTORE = "restore"
    APPLY = "apply"


class BatchProgress(BaseModel):
    """Read-only view of the current batch."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    batch_id: int = 0
    kind: BatchKind | None = None
    device_id: str | None = None
    total: int = 0
    outstanding: int = 0
    last_error: str | None = None
    errors: dict[str, str] = Field(default_factory=dict)
    """Error per failed command, keyed by :meth:`Command.describe`."""
    failed_packages: int = 0
    """Distinct (user, package) pairs with at least one failed command."""
    empty_reason: EmptyBatchReason | None = None


class BatchCoordinator:
    """Track one batch of concurrently dispatched commands.

    Only the number of outstanding commands is tracked, never which ones.
    Batches are numbered; completions from an earlier (abandoned) batch or
    for another device are rejected by :meth:`complete`.
    """

    def __init__(self) -> None:
        self._batch_id = 0
        self._gate: CountedGate | None = None
        self._kind: BatchKind | None = None
        self._device_id: str | None = None
        self._total = 0
        self._errors: dict[str, str] = {}
        self._failed: set[tuple[int, str]] = set()
        self._last_error: str | None = None
        self._empty_reason: EmptyBatchReason | None = None

    @property
    def batch_id(self) -> int:
        return self._batch_id

    @property
    def kind(self) -> BatchKind | None:
        return self._kind

    @property
    def outstanding(self) -> int:
        return self._gate.remaining if self._gate is not None else 0

    @property
    def active(self) -> bool:
        return self.outstanding > 0

    def submit_batch(
        self,
        commands: Sequence[Command],
        *,
        kind: BatchKind,
        device_id: str,
        dispatch: Callable[[SubmitCommand], None],
        on_drain: Callable[[int], None],
    ) -> int:
        """Start a new batch and dispatch one effect per command.

        The gate is armed with ``len(commands)`` before the first dispatch.
        Returns the outstanding count.
        """
        if self.active:
            _logger.warning(
                "Batch %d abandoned with %d command(s) outstanding", self._batch_id, self.outstanding
            )
        self._batch_id += 1
        batch_id = self._batch_id
        self._kind = kind
        self._device_id = device_id
        self._total = len(commands)
        self._errors = {}
        self._failed = set()
        self._last_error = None
        self._empty_reason = None
        self._gate = CountedGate(len(commands), lambda: on_drain(batch_id))

        for command in commands:
            dispatch(SubmitCommand(batch_id=batch_id, command=command))
        _logger.debug("Batch %d (%s) dispatched %d command(s)", batch_id, kind, len(commands))
        return self.outstanding

    def record_empty(self, reason: EmptyBatchReason) -> None:
        """Record the terminal state of an action that produced no command."""
        self._empty_reason = reason
        _logger.info("Nothing to do: %s", reason.message)

    def is_current(self, batch_id: int, device_id: str) -> bool:
        return self._gate is not None and batch_id == self._batch_id and device_id == self._device_id

    def complete(self, batch_id: int, outcome: CommandOutcome) -> bool:
        """Account for one completion. Returns ``False`` for stale completions."""
        command = outcome.command
        if not self.is_current(batch_id, command.device_id):
            _logger.debug("Ignoring stale completion of %s (batch %d)", command.describe(), batch_id)
            return False
        if not outcome.success:
            error = outcome.error or "unknown error"
            self._errors[command.describe()] = error
            self._failed.add((command.user_id, command.package))
            self._last_error = f"{command.describe()}: {error}"
        assert self._gate is not None  # noqa: S101
        return self._gate.signal()

    def abandon(self) -> None:
        """Forget the current batch; its late completions become stale."""
        if self.active:
            _logger.info("Abandoning batch %d with %d command(s) outstanding", self._batch_id, self.outstanding)
        self._gate = None
        self._device_id = None

    def progress(self) -> BatchProgress:
        return BatchProgress(
            batch_id=self._batch_id,
            kind=self._kind,
            device_id=self._device_id,
            total=self._total,
            outstanding=self.outstanding,
            last_error=self._last_error,
            errors=dict(self._errors),
            failed_packages=len(self._failed),
            empty_reason=self._empty_reason,
        )
