from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .config import get_config
from .dashboard import DashboardController
from .routes import cells as cell_routes
from .routes import configurations as configuration_routes
from .routes import dashboard as dashboard_routes
from .supabase import get_public_client

logger = logging.getLogger(__name__)


def build_controller() -> DashboardController:
    return DashboardController(get_public_client(), get_config())


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    controller = build_controller()
    app.state.controller = controller
    await controller.start()
    logger.info(
        "dashboard started",
        extra={
            "cells": len(controller.state.cells),
            "configured": controller.config.is_configured,
        },
    )
    try:
        yield
    finally:
        await controller.stop()
        logger.info("dashboard stopped")


app = FastAPI(
    title="Kennel Care Tracker API",
    version="0.1.0",
    description="Tracks dog-walking status across kennel cages",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ],
    allow_methods=["*"],
    allow_headers=["*"],
    allow_credentials=False,
)

app.include_router(dashboard_routes.router)
app.include_router(cell_routes.router)
app.include_router(configuration_routes.router)


@app.get("/health")
async def health() -> dict:
    return {"status": "ok"}
