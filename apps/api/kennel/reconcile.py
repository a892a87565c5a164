"""Rewrite a cage's cell rows to match its split/combined configuration.

A cage is either combined (one ``Both`` row) or split (one ``Inner`` and one
``Outer`` row). Toggling between the two shapes deletes the superseded rows
and inserts the new ones, carrying state and notes across:

* split -> combined keeps the most significant state (Walked, then
  DoNotWalk, then NotYet) and joins both sides' notes with ``"; "``;
* combined -> split copies the combined state and notes onto both sides.

Note merging is lossy on purpose: a combine then split round trip leaves the
joined notes on both sides.

The row rewrite is not atomic. A failure after a delete can leave a cage with
no rows; the caller sees the error and nothing is rolled back.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Dict, List, Optional

from . import cage_config, cells
from .schemas import CageConfiguration, CellRecord, CellSide, CellState
from .supabase import SupabaseClient

logger = logging.getLogger(__name__)

NOTES_SEPARATOR = "; "


def merge_states(inner: Optional[CellState], outer: Optional[CellState]) -> CellState:
    states = {state for state in (inner, outer) if state is not None}
    if CellState.WALKED in states:
        return CellState.WALKED
    if CellState.DO_NOT_WALK in states:
        return CellState.DO_NOT_WALK
    return CellState.NOT_YET


def merge_notes(inner: Optional[str], outer: Optional[str]) -> Optional[str]:
    parts = [note for note in (inner, outer) if note]
    if not parts:
        return None
    return NOTES_SEPARATOR.join(parts)


def _by_side(rows: List[CellRecord]) -> Dict[CellSide, CellRecord]:
    found: Dict[CellSide, CellRecord] = {}
    for row in rows:
        found.setdefault(row.cell_side, row)
    return found


class CageReconciler:
    """Drives cell rows toward the configured shape, one cage at a time.

    Toggles of the same cage are serialized within this process. Toggles
    from other processes are not coordinated.
    """

    def __init__(self, supabase: SupabaseClient) -> None:
        self.supabase = supabase
        self._locks: Dict[int, asyncio.Lock] = {}

    def _lock_for(self, cage_num: int) -> asyncio.Lock:
        lock = self._locks.get(cage_num)
        if lock is None:
            lock = self._locks[cage_num] = asyncio.Lock()
        return lock

    async def ensure_split(self, cage_num: int) -> List[CellRecord]:
        """Make the cage split. Returns the rows that were inserted."""

        existing = await cells.fetch_cage_cells(self.supabase, cage_num)
        sides = _by_side(existing)

        both = sides.get(CellSide.BOTH)
        if both is not None:
            for row in existing:
                await cells.delete_cell(self.supabase, row.id)
            rows = [
                cells.new_cell_row(cage_num, side, state=both.state, notes=both.notes)
                for side in (CellSide.INNER, CellSide.OUTER)
            ]
            logger.info("splitting combined cage", extra={"cage_num": cage_num})
            return await cells.insert_cells(self.supabase, rows)

        missing = [
            cells.new_cell_row(cage_num, side)
            for side in (CellSide.INNER, CellSide.OUTER)
            if side not in sides
        ]
        if missing:
            logger.info(
                "creating missing split cells",
                extra={"cage_num": cage_num, "count": len(missing)},
            )
        return await cells.insert_cells(self.supabase, missing)

    async def ensure_combined(self, cage_num: int) -> List[CellRecord]:
        """Make the cage combined. Returns the rows that were inserted."""

        existing = await cells.fetch_cage_cells(self.supabase, cage_num)
        sides = _by_side(existing)
        inner = sides.get(CellSide.INNER)
        outer = sides.get(CellSide.OUTER)

        if CellSide.BOTH in sides or (inner is None and outer is None):
            return []

        state = merge_states(
            inner.state if inner else None,
            outer.state if outer else None,
        )
        notes = merge_notes(
            inner.notes if inner else None,
            outer.notes if outer else None,
        )
        for row in existing:
            await cells.delete_cell(self.supabase, row.id)
        logger.info(
            "combining split cage",
            extra={"cage_num": cage_num, "state": int(state)},
        )
        return await cells.insert_cells(
            self.supabase,
            [cells.new_cell_row(cage_num, CellSide.BOTH, state=state, notes=notes)],
        )

    async def update_configuration(self, cage_num: int, is_split: bool) -> CageConfiguration:
        """Reshape the cage rows, then persist the configuration flag."""

        async with self._lock_for(cage_num):
            if is_split:
                await self.ensure_split(cage_num)
            else:
                await self.ensure_combined(cage_num)
            return await cage_config.upsert_configuration(self.supabase, cage_num, is_split)
