"""Replicate package selection across the users of a device."""

from __future__ import annotations

from collections.abc import Sequence

from pyuad.models.device import User
from pyuad.models.package import PackageEntry


def propagate(
    partitions: Sequence[Sequence[PackageEntry]],
    users: Sequence[User],
) -> list[list[PackageEntry]]:
    """Return *partitions* with every selected index selected for all unprotected users.

    Only unprotected users' partitions are read, and only theirs are
    written. Partitions are index-aligned (same package at the same index
    for every user), so an index selected for one user designates the same
    package everywhere. Nothing is ever deselected.
    """
    result = [list(partition) for partition in partitions]
    targets = [u.index for u in users if not u.protected and u.index < len(result)]

    selected: set[int] = set()
    for index in targets:
        selected.update(i for i, entry in enumerate(result[index]) if entry.selected)

    for index in targets:
        partition = result[index]
        for i in selected:
            if i < len(partition) and not partition[i].selected:
                partition[i] = partition[i].model_copy(update={"selected": True})
    return result
