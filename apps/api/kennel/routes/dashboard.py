import logging

from fastapi import APIRouter, Depends

from ..dashboard import DashboardController, DashboardLoadError, get_controller
from ..views import DashboardView, build_dashboard_view

router = APIRouter(prefix="/api/v1", tags=["dashboard"])
logger = logging.getLogger(__name__)


@router.get("/dashboard", response_model=DashboardView)
async def get_dashboard(controller: DashboardController = Depends(get_controller)) -> DashboardView:
    """Return the grouped cage cards, footer counts and connectivity, or the error screen."""

    return build_dashboard_view(controller)


@router.post("/dashboard/reload", response_model=DashboardView)
async def reload_dashboard(controller: DashboardController = Depends(get_controller)) -> DashboardView:
    try:
        await controller.load()
    except DashboardLoadError as exc:
        logger.warning("dashboard reload failed", extra={"kind": exc.kind})
    return build_dashboard_view(controller)
