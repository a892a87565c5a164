"""In-memory dashboard state kept in sync with the store."""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from itertools import groupby
from typing import Awaitable, Callable, Dict, List, Optional, Set, Tuple

from fastapi import Request
from pydantic import ValidationError

from . import cage_config, cells
from .config import AppConfig
from .realtime import CHANNEL_ERROR, CLOSED, RealtimeSubscription, subscribe_to_cells
from .reconcile import CageReconciler
from .schemas import NOTES_MAX_LENGTH, CageConfiguration, CellRecord, ChangeEvent, ChangeType
from .supabase import SupabaseClient, SupabaseConfigError, SupabaseError, is_setup_error

logger = logging.getLogger(__name__)

SubscribeFn = Callable[..., RealtimeSubscription]


class DashboardLoadError(Exception):
    """Load failure with a kind the UI uses to pick its error screen."""

    SETUP = "setup"
    CONNECTION = "connection"
    CONFIGURATION = "configuration"

    def __init__(self, kind: str, message: str, detail: Optional[str] = None) -> None:
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.detail = detail


def classify_load_error(exc: SupabaseError) -> DashboardLoadError:
    if isinstance(exc, SupabaseConfigError):
        return DashboardLoadError(
            DashboardLoadError.CONFIGURATION,
            "Database connection is not configured.",
            exc.message,
        )
    if is_setup_error(exc.message):
        return DashboardLoadError(
            DashboardLoadError.SETUP,
            "Database table not found. Please run the setup SQL script in your Supabase dashboard.",
            exc.message,
        )
    return DashboardLoadError(
        DashboardLoadError.CONNECTION,
        "Failed to load cages. Please check your database connection.",
        exc.message,
    )


def group_cells(records: List[CellRecord]) -> List[Tuple[int, List[CellRecord]]]:
    """Group by cage number ascending, cells within a cage by side name."""
    ordered = sorted(records, key=lambda cell: (cell.cage_num, cell.cell_side.value))
    return [(cage_num, list(group)) for cage_num, group in groupby(ordered, key=lambda c: c.cage_num)]


@dataclass
class DashboardState:
    cells: List[CellRecord] = field(default_factory=list)
    configurations: List[CageConfiguration] = field(default_factory=list)
    is_live: bool = False
    loading: bool = True
    error: Optional[DashboardLoadError] = None
    drafts: Dict[int, str] = field(default_factory=dict)
    saving: Set[int] = field(default_factory=set)

    def find_cell(self, cell_id: int) -> Optional[CellRecord]:
        return next((cell for cell in self.cells if cell.id == cell_id), None)

    def replace_cell(self, record: CellRecord) -> None:
        self.cells = [record if cell.id == record.id else cell for cell in self.cells]

    def upsert_cell(self, record: CellRecord) -> None:
        if self.find_cell(record.id) is None:
            self.cells = [*self.cells, record]
        else:
            self.replace_cell(record)

    def remove_cell(self, cell_id: int) -> None:
        self.cells = [cell for cell in self.cells if cell.id != cell_id]


class NotesDebouncer:
    """One pending deferred write per cell; a new edit replaces the old one."""

    def __init__(self, delay: float, write: Callable[[int, str], Awaitable[None]]) -> None:
        self.delay = delay
        self._write = write
        self._pending: Dict[int, asyncio.Task] = {}
        self._writing: Set[asyncio.Task] = set()

    def is_pending(self, cell_id: int) -> bool:
        task = self._pending.get(cell_id)
        return task is not None and not task.done()

    def schedule(self, cell_id: int, text: str) -> None:
        self.cancel(cell_id)
        self._pending[cell_id] = asyncio.create_task(self._fire(cell_id, text))

    def cancel(self, cell_id: int) -> None:
        task = self._pending.pop(cell_id, None)
        if task is not None and not task.done():
            task.cancel()

    async def flush(self, cell_id: int, text: str) -> None:
        self.cancel(cell_id)
        await self._write(cell_id, text)

    async def cancel_all(self) -> None:
        """Cancel waiting writes and wait for the ones already talking to the store."""

        waiting = [task for task in self._pending.values() if not task.done()]
        self._pending.clear()
        for task in waiting:
            task.cancel()
        tasks = [*waiting, *(task for task in self._writing if task not in waiting)]
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    async def _fire(self, cell_id: int, text: str) -> None:
        await asyncio.sleep(self.delay)
        task = asyncio.current_task()
        if self._pending.get(cell_id) is task:
            del self._pending[cell_id]
        self._writing.add(task)
        try:
            await self._write(cell_id, text)
        except Exception:
            logger.exception("Error in deferred notes write", extra={"cell_id": cell_id})
        finally:
            self._writing.discard(task)


class DashboardController:
    """Owns the dashboard state from ``start()`` until ``stop()``."""

    def __init__(
        self,
        supabase: SupabaseClient,
        config: AppConfig,
        *,
        reconciler: Optional[CageReconciler] = None,
        subscribe: Optional[SubscribeFn] = None,
    ) -> None:
        self.supabase = supabase
        self.config = config
        self.state = DashboardState()
        self.reconciler = reconciler or CageReconciler(supabase)
        self.notes = NotesDebouncer(config.notes_debounce_seconds, self._persist_notes)
        self._subscribe = subscribe or subscribe_to_cells
        self._subscription: Optional[RealtimeSubscription] = None

    async def start(self) -> None:
        try:
            await self.load()
        except DashboardLoadError:
            logger.warning("dashboard started without data", extra={"kind": self.state.error.kind})
        if self.config.realtime_enabled and self.config.is_configured:
            self._subscription = self._subscribe(
                self.config.realtime_url,
                self.config.supabase_anon_key or "",
                self.apply_change,
                on_status=self._on_status,
            )

    async def stop(self) -> None:
        subscription, self._subscription = self._subscription, None
        try:
            await self.notes.cancel_all()
        finally:
            if subscription is not None:
                await subscription.close()
            self.state.is_live = False

    def _on_status(self, status: str) -> None:
        if status in {CHANNEL_ERROR, CLOSED}:
            self.state.is_live = False

    async def load(self) -> DashboardState:
        """Fetch cells and configurations together and replace both lists."""

        self.state.error = None
        try:
            cell_rows, configurations = await asyncio.gather(
                cells.fetch_cells(self.supabase),
                cage_config.fetch_configurations(self.supabase),
            )
        except SupabaseError as exc:
            error = classify_load_error(exc)
            self.state.error = error
            logger.error(
                "Error loading cages",
                extra={"kind": error.kind, "detail": exc.message},
            )
            raise error from exc
        finally:
            self.state.loading = False
        self.state.cells = cell_rows
        self.state.configurations = configurations
        return self.state

    async def reload_quietly(self) -> None:
        try:
            await self.load()
        except DashboardLoadError:
            pass

    async def apply_change(self, event: ChangeEvent) -> None:
        self.state.is_live = True
        kind = event.event_type.upper()
        try:
            record = CellRecord.model_validate(event.new) if event.new else None
        except ValidationError as exc:
            logger.warning(
                "Malformed change notification, reloading all cages",
                extra={"event_type": event.event_type, "error": str(exc)},
            )
            await self.reload_quietly()
            return
        if kind == ChangeType.INSERT.value and record is not None:
            self.state.upsert_cell(record)
        elif kind == ChangeType.UPDATE.value and record is not None:
            self.state.replace_cell(record)
        elif kind == ChangeType.DELETE.value and event.old and "id" in event.old:
            self.state.remove_cell(int(event.old["id"]))
        else:
            logger.info("Unknown event type, reloading all cages", extra={"event_type": event.event_type})
            await self.reload_quietly()

    async def advance_state(self, cell_id: int) -> CellRecord:
        """Cycle the cell's state, showing it locally before the write lands."""

        cell = self.state.find_cell(cell_id)
        if cell is None:
            raise KeyError(cell_id)
        new_state = cell.state.next()
        self.state.replace_cell(cell.model_copy(update={"state": new_state}))
        try:
            confirmed = await cells.update_cell_state(self.supabase, cell_id, new_state)
        except SupabaseError as exc:
            logger.error(
                "Error updating cage state",
                extra={"cell_id": cell_id, "error": exc.message},
            )
            await self.reload_quietly()
        else:
            self.state.replace_cell(confirmed)
        return self.state.find_cell(cell_id) or cell

    def draft_for(self, cell_id: int) -> Optional[str]:
        return self.state.drafts.get(cell_id)

    def edit_notes(self, cell_id: int, text: str) -> None:
        """Buffer a keystroke; the write fires once input goes quiet."""

        if self.state.find_cell(cell_id) is None:
            raise KeyError(cell_id)
        if len(text) > NOTES_MAX_LENGTH:
            raise ValueError(f"notes cannot exceed {NOTES_MAX_LENGTH} characters")
        self.state.drafts[cell_id] = text
        self.notes.schedule(cell_id, text)

    async def commit_notes(self, cell_id: int, text: Optional[str] = None) -> Optional[CellRecord]:
        """Focus left the editor: drop the pending write and persist now."""

        cell = self.state.find_cell(cell_id)
        if cell is None:
            raise KeyError(cell_id)
        if text is None:
            text = self.state.drafts.get(cell_id, cell.notes or "")
        if len(text) > NOTES_MAX_LENGTH:
            raise ValueError(f"notes cannot exceed {NOTES_MAX_LENGTH} characters")
        self.state.drafts[cell_id] = text
        await self.notes.flush(cell_id, text)
        return self.state.find_cell(cell_id)

    async def _persist_notes(self, cell_id: int, text: str) -> None:
        try:
            confirmed = await cells.update_cell_notes(self.supabase, cell_id, text)
        except SupabaseError as exc:
            # The draft is kept so the user's text is not lost locally.
            logger.error(
                "Error updating cage notes",
                extra={"cell_id": cell_id, "error": exc.message},
            )
            return
        self.state.replace_cell(confirmed)
        if self.state.drafts.get(cell_id) == text:
            del self.state.drafts[cell_id]

    async def toggle_configuration(self, cage_num: int, is_split: bool) -> CageConfiguration:
        self.state.saving = self.state.saving | {cage_num}
        try:
            stored = await self.reconciler.update_configuration(cage_num, is_split)
            self._store_configuration(stored)
            await self.reload_quietly()
            return stored
        finally:
            self.state.saving = self.state.saving - {cage_num}

    def _store_configuration(self, stored: CageConfiguration) -> None:
        others = [c for c in self.state.configurations if c.cage_num != stored.cage_num]
        self.state.configurations = sorted([*others, stored], key=lambda c: c.cage_num)

    def configuration_for(self, cage_num: int) -> Optional[CageConfiguration]:
        return next((c for c in self.state.configurations if c.cage_num == cage_num), None)

    async def initialize_cage(self, cage_num: int) -> List[CellRecord]:
        created = await cells.initialize_cage(self.supabase, cage_num)
        for record in created:
            self.state.upsert_cell(record)
        return created

    async def seed_configurations(self, count: Optional[int] = None) -> List[CageConfiguration]:
        seeded = await cage_config.seed_default_configurations(
            self.supabase, count or self.config.default_cage_count
        )
        for stored in seeded:
            self._store_configuration(stored)
        return self.state.configurations

    def grouped(self) -> List[Tuple[int, List[CellRecord]]]:
        return group_cells(self.state.cells)


def get_controller(request: Request) -> DashboardController:
    return request.app.state.controller
