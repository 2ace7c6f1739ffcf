from __future__ import annotations

from pyuad.models.device import User
from pyuad.models.package import PackageEntry, PackageState
from pyuad.state.multi_user import propagate


def _partition(selected: set[int], size: int = 4) -> list[PackageEntry]:
    return [
        PackageEntry(name=f"com.example.p{i}", state=PackageState.ENABLED, selected=i in selected)
        for i in range(size)
    ]


def _selected(partition: list[PackageEntry]) -> set[int]:
    return {i for i, entry in enumerate(partition) if entry.selected}


def test_union_is_selected_for_every_unprotected_user() -> None:
    users = [User(id=0, index=0), User(id=10, index=1)]
    partitions = [_partition({0, 2}), _partition({3})]

    result = propagate(partitions, users)

    assert _selected(result[0]) == {0, 2, 3}
    assert _selected(result[1]) == {0, 2, 3}


def test_protected_users_are_neither_read_nor_written() -> None:
    users = [User(id=0, index=0), User(id=10, index=1, protected=True), User(id=11, index=2)]
    partitions = [_partition({1}), _partition({3}), _partition(set())]

    result = propagate(partitions, users)

    assert _selected(result[0]) == {1}
    assert _selected(result[1]) == {3}
    assert _selected(result[2]) == {1}


def test_nothing_is_deselected_and_input_is_untouched() -> None:
    users = [User(id=0, index=0), User(id=10, index=1)]
    partitions = [_partition({0}), _partition({1})]

    result = propagate(partitions, users)

    assert _selected(result[0]) == {0, 1}
    assert _selected(partitions[0]) == {0}


def test_out_of_range_indices_are_skipped() -> None:
    users = [User(id=0, index=0), User(id=10, index=1), User(id=11, index=5)]
    partitions = [_partition({3}, size=4), _partition(set(), size=2)]

    result = propagate(partitions, users)

    assert _selected(result[0]) == {3}
    assert _selected(result[1]) == set()
    assert len(result) == 2
