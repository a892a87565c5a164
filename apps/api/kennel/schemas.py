"""Pydantic schemas shared across the API."""
from __future__ import annotations

from datetime import datetime
from enum import Enum, IntEnum
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field

NOTES_MAX_LENGTH = 500


class CellSide(str, Enum):
    INNER = "Inner"
    OUTER = "Outer"
    BOTH = "Both"


class CellState(IntEnum):
    NOT_YET = 0
    WALKED = 1
    DO_NOT_WALK = 2

    def next(self) -> "CellState":
        """Advance through NotYet -> Walked -> DoNotWalk -> NotYet."""
        return CellState((self.value + 1) % len(CellState))


STATE_LABELS = {
    CellState.NOT_YET: "Not yet",
    CellState.WALKED: "Walked",
    CellState.DO_NOT_WALK: "Do not walk",
}


class CellRecord(BaseModel):
    id: int
    cage_num: int = Field(..., gt=0)
    cell_side: CellSide
    state: CellState = CellState.NOT_YET
    notes: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class CageConfiguration(BaseModel):
    cage_num: int = Field(..., gt=0)
    is_split: bool = True
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class ChangeType(str, Enum):
    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


class ChangeEvent(BaseModel):
    """A change notification on the cells table.

    ``event_type`` stays a plain string so unrecognised kinds reach the
    dashboard, which falls back to a full reload for them.
    """

    event_type: str
    new: Optional[Dict[str, Any]] = None
    old: Optional[Dict[str, Any]] = None
    table: Optional[str] = None
    commit_timestamp: Optional[str] = None


class NotesPayload(BaseModel):
    notes: str = Field(default="", max_length=NOTES_MAX_LENGTH)


class CommitNotesPayload(BaseModel):
    """Blur commit; leaving out ``notes`` persists the buffered draft."""

    notes: Optional[str] = Field(default=None, max_length=NOTES_MAX_LENGTH)


class ConfigurationPayload(BaseModel):
    is_split: bool


class SeedPayload(BaseModel):
    count: Optional[int] = Field(default=None, ge=1)
