"""View models for the dashboard screens."""
from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, Field

from .dashboard import DashboardController, DashboardLoadError
from .schemas import NOTES_MAX_LENGTH, STATE_LABELS, CageConfiguration, CellRecord, CellState

SETUP_STEPS = [
    "Go to your Supabase dashboard",
    "Navigate to SQL Editor",
    "Copy and paste the SQL from database/setup.sql",
    "Run the SQL script to create the cells and cage_configurations tables",
    "Refresh this page",
]


class CellCard(BaseModel):
    id: int
    cage_num: int
    cell_side: str
    state: CellState
    state_label: str
    notes: Optional[str] = None
    draft: Optional[str] = None
    notes_length: int = 0
    notes_limit: int = NOTES_MAX_LENGTH


class CageGroup(BaseModel):
    cage_num: int
    title: str
    cells: List[CellCard] = Field(default_factory=list)


class DashboardStats(BaseModel):
    total: int = 0
    walked: int = 0
    pending: int = 0
    skip: int = 0


class ErrorScreen(BaseModel):
    kind: str
    title: str
    message: str
    detail: Optional[str] = None
    setup_steps: List[str] = Field(default_factory=list)
    can_retry: bool = True


class DashboardView(BaseModel):
    groups: List[CageGroup] = Field(default_factory=list)
    stats: DashboardStats = Field(default_factory=DashboardStats)
    is_live: bool = False
    live_label: str = "Offline"
    loading: bool = False
    error: Optional[ErrorScreen] = None


class ConfigPanelEntry(BaseModel):
    cage_num: int
    is_split: bool
    badge: str
    description: str
    action_label: str
    saving: bool = False


class ConfigPanel(BaseModel):
    entries: List[ConfigPanelEntry] = Field(default_factory=list)
    split_count: int = 0
    combined_count: int = 0


def cell_card(cell: CellRecord, draft: Optional[str] = None) -> CellCard:
    text = draft if draft is not None else (cell.notes or "")
    return CellCard(
        id=cell.id,
        cage_num=cell.cage_num,
        cell_side=cell.cell_side.value,
        state=cell.state,
        state_label=STATE_LABELS[cell.state],
        notes=cell.notes,
        draft=draft,
        notes_length=len(text),
    )


def compute_stats(cells: List[CellRecord]) -> DashboardStats:
    return DashboardStats(
        total=len(cells),
        walked=sum(1 for cell in cells if cell.state == CellState.WALKED),
        pending=sum(1 for cell in cells if cell.state == CellState.NOT_YET),
        skip=sum(1 for cell in cells if cell.state == CellState.DO_NOT_WALK),
    )


def error_screen(error: DashboardLoadError, *, show_details: bool = True) -> ErrorScreen:
    is_setup = error.kind == DashboardLoadError.SETUP
    return ErrorScreen(
        kind=error.kind,
        title="Database Setup Required" if is_setup else "Connection Error",
        message=error.message,
        detail=error.detail if show_details else None,
        setup_steps=list(SETUP_STEPS) if is_setup else [],
        can_retry=not is_setup,
    )


def build_dashboard_view(controller: DashboardController) -> DashboardView:
    state = controller.state
    if state.error is not None:
        return DashboardView(
            error=error_screen(state.error, show_details=controller.config.show_error_details),
            loading=state.loading,
        )
    groups = [
        CageGroup(
            cage_num=cage_num,
            title=f"Cage {cage_num}",
            cells=[cell_card(cell, state.drafts.get(cell.id)) for cell in members],
        )
        for cage_num, members in controller.grouped()
    ]
    return DashboardView(
        groups=groups,
        stats=compute_stats(state.cells),
        is_live=state.is_live,
        live_label="Live" if state.is_live else "Offline",
        loading=state.loading,
    )


def config_entry(config: CageConfiguration, *, saving: bool = False) -> ConfigPanelEntry:
    return ConfigPanelEntry(
        cage_num=config.cage_num,
        is_split=config.is_split,
        badge="Split" if config.is_split else "Combined",
        description="Has Inner and Outer cells" if config.is_split else "Single combined cell",
        action_label="Convert to Combined" if config.is_split else "Convert to Split",
        saving=saving,
    )


def build_config_panel(controller: DashboardController) -> ConfigPanel:
    state = controller.state
    entries = [
        config_entry(config, saving=config.cage_num in state.saving)
        for config in state.configurations
    ]
    split_count = sum(1 for entry in entries if entry.is_split)
    return ConfigPanel(
        entries=entries,
        split_count=split_count,
        combined_count=len(entries) - split_count,
    )
