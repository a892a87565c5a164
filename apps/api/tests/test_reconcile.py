from __future__ import annotations

import asyncio

import pytest

from kennel.reconcile import CageReconciler, merge_notes, merge_states
from kennel.schemas import CellState
from kennel.supabase import SupabaseError

from .supabase_helpers import FakeSupabase, cell_row, config_row, sides_for


def _cage_rows(fake: FakeSupabase, cage_num: int):
    return {row["cell_side"]: row for row in fake.rows("cells") if row["cage_num"] == cage_num}


@pytest.mark.parametrize(
    ("inner", "outer", "expected"),
    [
        (CellState.WALKED, CellState.DO_NOT_WALK, CellState.WALKED),
        (CellState.DO_NOT_WALK, CellState.WALKED, CellState.WALKED),
        (CellState.NOT_YET, CellState.DO_NOT_WALK, CellState.DO_NOT_WALK),
        (CellState.NOT_YET, CellState.NOT_YET, CellState.NOT_YET),
        (None, CellState.DO_NOT_WALK, CellState.DO_NOT_WALK),
        (CellState.WALKED, None, CellState.WALKED),
    ],
)
def test_merge_states_priority(inner, outer, expected) -> None:
    assert merge_states(inner, outer) == expected


def test_merge_notes() -> None:
    assert merge_notes("a", "b") == "a; b"
    assert merge_notes(None, "b") == "b"
    assert merge_notes("a", "") == "a"
    assert merge_notes(None, None) is None


def test_combine_merges_state_and_notes() -> None:
    fake = FakeSupabase(
        {
            "cells": [
                cell_row(1, 3, "Inner", state=1, notes="a"),
                cell_row(2, 3, "Outer", state=2, notes="b"),
            ],
            "cage_configurations": [config_row(3)],
        }
    )
    reconciler = CageReconciler(fake)

    stored = asyncio.run(reconciler.update_configuration(3, False))

    rows = _cage_rows(fake, 3)
    assert list(rows) == ["Both"]
    assert rows["Both"]["state"] == CellState.WALKED
    assert rows["Both"]["notes"] == "a; b"
    assert stored.is_split is False
    assert fake.rows("cage_configurations")[0]["is_split"] is False


def test_combine_with_single_side_keeps_that_side() -> None:
    fake = FakeSupabase({"cells": [cell_row(5, 2, "Outer", state=2, notes="b")]})

    asyncio.run(CageReconciler(fake).ensure_combined(2))

    rows = _cage_rows(fake, 2)
    assert rows["Both"]["state"] == CellState.DO_NOT_WALK
    assert rows["Both"]["notes"] == "b"


def test_combine_when_already_combined_leaves_rows() -> None:
    fake = FakeSupabase({"cells": [cell_row(7, 4, "Both", state=1, notes="x")]})

    asyncio.run(CageReconciler(fake).update_configuration(4, False))

    assert fake.rows("cells") == [cell_row(7, 4, "Both", state=1, notes="x")]
    assert not [call for call in fake.calls if call[0] in {"insert", "delete"}]
    assert fake.rows("cage_configurations")[0]["is_split"] is False


def test_combine_empty_cage_creates_nothing() -> None:
    fake = FakeSupabase({"cells": []})

    asyncio.run(CageReconciler(fake).update_configuration(9, False))

    assert sides_for(fake, 9) == []
    assert fake.rows("cage_configurations")[0]["cage_num"] == 9


def test_split_copies_combined_state_and_notes() -> None:
    fake = FakeSupabase({"cells": [cell_row(1, 6, "Both", state=2, notes="shy")]})

    asyncio.run(CageReconciler(fake).update_configuration(6, True))

    rows = _cage_rows(fake, 6)
    assert sorted(rows) == ["Inner", "Outer"]
    for side in ("Inner", "Outer"):
        assert rows[side]["state"] == CellState.DO_NOT_WALK
        assert rows[side]["notes"] == "shy"
    assert 1 not in {row["id"] for row in fake.rows("cells")}


def test_split_replaces_stray_side_rows_next_to_combined_row() -> None:
    fake = FakeSupabase(
        {"cells": [cell_row(1, 6, "Both", state=1, notes="calm"), cell_row(2, 6, "Inner", state=2, notes="old")]}
    )

    asyncio.run(CageReconciler(fake).update_configuration(6, True))

    assert sides_for(fake, 6) == ["Inner", "Outer"]
    rows = _cage_rows(fake, 6)
    for side in ("Inner", "Outer"):
        assert rows[side]["state"] == CellState.WALKED
        assert rows[side]["notes"] == "calm"
    assert not {1, 2} & {row["id"] for row in fake.rows("cells")}


def test_split_empty_cage_creates_fresh_pair() -> None:
    fake = FakeSupabase({"cells": []})

    asyncio.run(CageReconciler(fake).ensure_split(11))

    rows = _cage_rows(fake, 11)
    assert sorted(rows) == ["Inner", "Outer"]
    assert all(row["state"] == 0 and row["notes"] is None for row in rows.values())


def test_split_fills_only_missing_side() -> None:
    fake = FakeSupabase({"cells": [cell_row(1, 8, "Inner", state=1, notes="keep")]})

    asyncio.run(CageReconciler(fake).ensure_split(8))

    rows = _cage_rows(fake, 8)
    assert rows["Inner"] == cell_row(1, 8, "Inner", state=1, notes="keep")
    assert rows["Outer"]["state"] == 0


def test_split_when_already_split_is_noop() -> None:
    fake = FakeSupabase({"cells": [cell_row(1, 8, "Inner"), cell_row(2, 8, "Outer")]})

    asyncio.run(CageReconciler(fake).update_configuration(8, True))

    assert not [call for call in fake.calls if call[0] in {"insert", "delete"}]


def test_round_trip_restores_merged_state_on_both_sides() -> None:
    fake = FakeSupabase(
        {"cells": [cell_row(1, 1, "Inner", state=0, notes="a"), cell_row(2, 1, "Outer", state=1, notes="b")]}
    )
    reconciler = CageReconciler(fake)

    asyncio.run(reconciler.update_configuration(1, False))
    asyncio.run(reconciler.update_configuration(1, True))

    rows = _cage_rows(fake, 1)
    assert rows["Inner"]["state"] == rows["Outer"]["state"] == CellState.WALKED
    assert rows["Inner"]["notes"] == rows["Outer"]["notes"] == "a; b"


def test_any_toggle_sequence_keeps_valid_shape() -> None:
    fake = FakeSupabase({"cells": [cell_row(1, 2, "Inner"), cell_row(2, 2, "Outer")]})
    reconciler = CageReconciler(fake)

    for is_split in (False, False, True, True, False, True, False):
        asyncio.run(reconciler.update_configuration(2, is_split))
        assert sides_for(fake, 2) in (["Both"], ["Inner", "Outer"])
        assert sides_for(fake, 2) == (["Inner", "Outer"] if is_split else ["Both"])


def test_failure_after_delete_propagates_without_rollback() -> None:
    fake = FakeSupabase(
        {"cells": [cell_row(1, 5, "Both", state=1)]},
        fail={("insert", "cells"): "insert rejected"},
    )

    with pytest.raises(SupabaseError) as exc:
        asyncio.run(CageReconciler(fake).update_configuration(5, True))

    assert exc.value.message == "insert rejected"
    assert sides_for(fake, 5) == []
    assert not [call for call in fake.calls if call[0] == "upsert"]


def test_concurrent_toggles_of_same_cage_are_serialized() -> None:
    fake = FakeSupabase({"cells": [cell_row(1, 3, "Inner", state=1), cell_row(2, 3, "Outer")]})
    reconciler = CageReconciler(fake)

    async def scenario() -> None:
        await asyncio.gather(
            reconciler.update_configuration(3, False),
            reconciler.update_configuration(3, False),
        )

    asyncio.run(scenario())

    assert sides_for(fake, 3) == ["Both"]
