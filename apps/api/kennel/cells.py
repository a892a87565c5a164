"""Cell record reads and writes against the ``cells`` table."""
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from .schemas import CellRecord, CellSide, CellState
from .supabase import SupabaseClient, SupabaseError, now_iso

logger = logging.getLogger(__name__)

CELLS_TABLE = "cells"
CELL_COLUMNS = "id,cage_num,cell_side,state,notes,created_at,updated_at"


def normalize_notes(notes: Optional[str]) -> Optional[str]:
    """Trim note text; empty text is stored as no notes at all."""
    if notes is None:
        return None
    trimmed = notes.strip()
    return trimmed or None


def new_cell_row(
    cage_num: int,
    cell_side: CellSide,
    *,
    state: CellState = CellState.NOT_YET,
    notes: Optional[str] = None,
) -> Dict[str, Any]:
    now = now_iso()
    return {
        "cage_num": cage_num,
        "cell_side": cell_side.value,
        "state": int(state),
        "notes": notes,
        "created_at": now,
        "updated_at": now,
    }


def _single(rows: List[Dict[str, Any]], cell_id: int, action: str) -> CellRecord:
    if not rows:
        raise SupabaseError(
            f"Cell {cell_id} not found",
            action=action,
            table=CELLS_TABLE,
            status_code=404,
        )
    return CellRecord.model_validate(rows[0])


async def fetch_cells(supabase: SupabaseClient) -> List[CellRecord]:
    rows = await supabase.select(
        CELLS_TABLE,
        params={"select": CELL_COLUMNS, "order": "cage_num.asc,cell_side.asc"},
    )
    return [CellRecord.model_validate(row) for row in rows]


async def fetch_cage_cells(supabase: SupabaseClient, cage_num: int) -> List[CellRecord]:
    rows = await supabase.select(
        CELLS_TABLE,
        params={"select": CELL_COLUMNS, "cage_num": f"eq.{cage_num}"},
    )
    return [CellRecord.model_validate(row) for row in rows]


async def update_cell_state(
    supabase: SupabaseClient, cell_id: int, state: CellState
) -> CellRecord:
    rows = await supabase.update(
        CELLS_TABLE,
        {"state": int(state), "updated_at": now_iso()},
        params={"id": f"eq.{cell_id}"},
    )
    return _single(rows, cell_id, "update")


async def update_cell_notes(
    supabase: SupabaseClient, cell_id: int, notes: Optional[str]
) -> CellRecord:
    rows = await supabase.update(
        CELLS_TABLE,
        {"notes": normalize_notes(notes), "updated_at": now_iso()},
        params={"id": f"eq.{cell_id}"},
    )
    return _single(rows, cell_id, "update")


async def insert_cells(
    supabase: SupabaseClient, rows: List[Dict[str, Any]]
) -> List[CellRecord]:
    if not rows:
        return []
    created = await supabase.insert(CELLS_TABLE, rows)
    logger.info(
        "inserted cells",
        extra={"count": len(rows), "cage_nums": sorted({row["cage_num"] for row in rows})},
    )
    return [CellRecord.model_validate(row) for row in created]


async def delete_cell(supabase: SupabaseClient, cell_id: int) -> None:
    await supabase.delete(CELLS_TABLE, params={"id": f"eq.{cell_id}"})


async def initialize_cage(supabase: SupabaseClient, cage_num: int) -> List[CellRecord]:
    """Create the split pair of rows for a cage that has never been tracked."""

    created: List[CellRecord] = []
    for side in (CellSide.INNER, CellSide.OUTER):
        created.extend(await insert_cells(supabase, [new_cell_row(cage_num, side)]))
    return created
