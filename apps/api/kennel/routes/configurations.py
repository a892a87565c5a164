from typing import Optional

import logging

from fastapi import APIRouter, Depends, HTTPException

from ..dashboard import DashboardController, get_controller
from ..schemas import ConfigurationPayload, SeedPayload
from ..supabase import SupabaseError, http_error
from ..views import ConfigPanel, ConfigPanelEntry, build_config_panel, config_entry

router = APIRouter(prefix="/api/v1", tags=["configurations"])
logger = logging.getLogger(__name__)


async def _apply(controller: DashboardController, cage_num: int, is_split: bool) -> ConfigPanelEntry:
    if cage_num < 1:
        raise HTTPException(status_code=400, detail="cage_num must be positive")
    if cage_num in controller.state.saving:
        raise HTTPException(status_code=409, detail=f"Cage {cage_num} is already updating")
    logger.info(
        "cage configuration change",
        extra={"cage_num": cage_num, "is_split": is_split},
    )
    try:
        stored = await controller.toggle_configuration(cage_num, is_split)
    except SupabaseError as exc:
        logger.error("Error updating configuration", extra={"cage_num": cage_num})
        raise http_error(exc) from exc
    return config_entry(stored)


@router.get("/configurations", response_model=ConfigPanel)
async def list_configurations(
    controller: DashboardController = Depends(get_controller),
) -> ConfigPanel:
    return build_config_panel(controller)


@router.put("/configurations/{cage_num}", response_model=ConfigPanelEntry)
async def set_configuration(
    cage_num: int,
    payload: ConfigurationPayload,
    controller: DashboardController = Depends(get_controller),
) -> ConfigPanelEntry:
    return await _apply(controller, cage_num, payload.is_split)


@router.post("/configurations/{cage_num}/toggle", response_model=ConfigPanelEntry)
async def toggle_configuration(
    cage_num: int,
    controller: DashboardController = Depends(get_controller),
) -> ConfigPanelEntry:
    current = controller.configuration_for(cage_num)
    if current is None:
        raise HTTPException(status_code=404, detail="Cage configuration not found")
    return await _apply(controller, cage_num, not current.is_split)


@router.post("/configurations/seed", response_model=ConfigPanel)
async def seed_configurations(
    payload: Optional[SeedPayload] = None,
    controller: DashboardController = Depends(get_controller),
) -> ConfigPanel:
    count = payload.count if payload else None
    try:
        await controller.seed_configurations(count)
    except SupabaseError as exc:
        raise http_error(exc) from exc
    return build_config_panel(controller)
