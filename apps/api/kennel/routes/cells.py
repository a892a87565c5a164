from typing import List

import logging

from fastapi import APIRouter, Depends, HTTPException

from ..dashboard import DashboardController, get_controller
from ..schemas import CellRecord, CommitNotesPayload, NotesPayload
from ..supabase import SupabaseError, http_error
from ..views import CellCard, cell_card

router = APIRouter(prefix="/api/v1", tags=["cells"])
logger = logging.getLogger(__name__)


def _card(controller: DashboardController, cell_id: int) -> CellCard:
    cell = controller.state.find_cell(cell_id)
    if cell is None:
        raise HTTPException(status_code=404, detail="Cell not found")
    return cell_card(cell, controller.draft_for(cell_id))


@router.get("/cells", response_model=List[CellRecord])
async def list_cells(controller: DashboardController = Depends(get_controller)) -> List[CellRecord]:
    return [cell for _, members in controller.grouped() for cell in members]


@router.post("/cells/{cell_id}/advance", response_model=CellCard)
async def advance_cell(
    cell_id: int,
    controller: DashboardController = Depends(get_controller),
) -> CellCard:
    """Cycle the cell to its next walking state."""

    try:
        await controller.advance_state(cell_id)
    except KeyError as exc:
        raise HTTPException(status_code=404, detail="Cell not found") from exc
    return _card(controller, cell_id)


@router.put("/cells/{cell_id}/notes/draft", response_model=CellCard)
async def draft_notes(
    cell_id: int,
    payload: NotesPayload,
    controller: DashboardController = Depends(get_controller),
) -> CellCard:
    try:
        controller.edit_notes(cell_id, payload.notes)
    except KeyError as exc:
        raise HTTPException(status_code=404, detail="Cell not found") from exc
    return _card(controller, cell_id)


@router.post("/cells/{cell_id}/notes/commit", response_model=CellCard)
async def commit_notes(
    cell_id: int,
    payload: CommitNotesPayload,
    controller: DashboardController = Depends(get_controller),
) -> CellCard:
    try:
        await controller.commit_notes(cell_id, payload.notes)
    except KeyError as exc:
        raise HTTPException(status_code=404, detail="Cell not found") from exc
    return _card(controller, cell_id)


@router.post("/cages/{cage_num}/initialize", response_model=List[CellRecord])
async def initialize_cage(
    cage_num: int,
    controller: DashboardController = Depends(get_controller),
) -> List[CellRecord]:
    if cage_num < 1:
        raise HTTPException(status_code=400, detail="cage_num must be positive")
    if any(cell.cage_num == cage_num for cell in controller.state.cells):
        raise HTTPException(status_code=409, detail=f"Cage {cage_num} already has cells")
    try:
        return await controller.initialize_cage(cage_num)
    except SupabaseError as exc:
        logger.error("Error initializing cage", extra={"cage_num": cage_num})
        raise http_error(exc) from exc
