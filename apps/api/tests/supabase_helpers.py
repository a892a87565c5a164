from __future__ import annotations

import asyncio
import copy
from typing import Any, Dict, List, Optional, Tuple

from kennel.config import AppConfig
from kennel.dashboard import DashboardController
from kennel.supabase import SupabaseError

_RESERVED_PARAMS = {"select", "order", "limit", "on_conflict"}

TEST_CONFIG = AppConfig(
    supabase_url="http://localhost:54321",
    supabase_anon_key="test-anon-key",
    notes_debounce_ms=20,
    realtime_enabled=False,
)


class FakeSupabase:
    """In-memory stand-in for the PostgREST client.

    ``fail`` maps ``(action, table)`` to an error message; the matching call
    raises ``SupabaseError`` instead of touching the tables.
    """

    def __init__(
        self,
        tables: Optional[Dict[str, List[Dict[str, Any]]]] = None,
        *,
        fail: Optional[Dict[Tuple[str, str], str]] = None,
    ):
        self.tables = {
            name: [dict(row) for row in rows] for name, rows in (tables or {}).items()
        }
        self.fail = dict(fail or {})
        self.calls: List[tuple] = []
        existing_ids = [
            row["id"] for rows in self.tables.values() for row in rows if "id" in row
        ]
        self._next_id = max(existing_ids, default=0) + 1

    def _check(self, action: str, table: str) -> None:
        message = self.fail.get((action, table))
        if message:
            raise SupabaseError(message, action=action, table=table, status_code=500)

    @staticmethod
    def _matches(row: Dict[str, Any], params: Dict[str, Any]) -> bool:
        for key, value in params.items():
            if key in _RESERVED_PARAMS:
                continue
            op, _, expected = str(value).partition(".")
            if op == "eq" and str(row.get(key)) != expected:
                return False
        return True

    def rows(self, table: str) -> List[Dict[str, Any]]:
        return self.tables.setdefault(table, [])

    async def select(self, table, params):
        self.calls.append(("select", table, params))
        self._check("select", table)
        await asyncio.sleep(0)
        found = [copy.deepcopy(row) for row in self.rows(table) if self._matches(row, params)]
        order = params.get("order")
        if order:
            for clause in reversed(order.split(",")):
                column, _, direction = clause.partition(".")
                found.sort(key=lambda row: row.get(column), reverse=direction == "desc")
        return found

    async def insert(self, table, payload, *, params=None):
        self.calls.append(("insert", table, payload, params))
        self._check("insert", table)
        created = []
        for row in payload if isinstance(payload, list) else [payload]:
            stored = dict(row)
            stored.setdefault("id", self._next_id)
            self._next_id = max(self._next_id, stored["id"]) + 1
            self.rows(table).append(stored)
            created.append(copy.deepcopy(stored))
        return created

    async def update(self, table, payload, params):
        self.calls.append(("update", table, payload, params))
        self._check("update", table)
        updated = []
        for row in self.rows(table):
            if self._matches(row, params):
                row.update(payload)
                updated.append(copy.deepcopy(row))
        return updated

    async def upsert(self, table, payload, *, on_conflict):
        self.calls.append(("upsert", table, payload, on_conflict))
        self._check("upsert", table)
        stored_rows = []
        for row in payload if isinstance(payload, list) else [payload]:
            existing = next(
                (r for r in self.rows(table) if r.get(on_conflict) == row[on_conflict]),
                None,
            )
            if existing is None:
                existing = dict(row)
                self.rows(table).append(existing)
            else:
                existing.update(row)
            stored_rows.append(copy.deepcopy(existing))
        return stored_rows

    async def delete(self, table, params):
        self.calls.append(("delete", table, params))
        self._check("delete", table)
        self.tables[table] = [row for row in self.rows(table) if not self._matches(row, params)]


def cell_row(cell_id: int, cage_num: int, side: str, state: int = 0, notes: Optional[str] = None):
    return {
        "id": cell_id,
        "cage_num": cage_num,
        "cell_side": side,
        "state": state,
        "notes": notes,
        "created_at": "2025-01-01T00:00:00+00:00",
        "updated_at": "2025-01-01T00:00:00+00:00",
    }


def config_row(cage_num: int, is_split: bool = True):
    return {
        "cage_num": cage_num,
        "is_split": is_split,
        "created_at": "2025-01-01T00:00:00+00:00",
        "updated_at": "2025-01-01T00:00:00+00:00",
    }


def sides_for(fake: FakeSupabase, cage_num: int) -> List[str]:
    return sorted(row["cell_side"] for row in fake.rows("cells") if row["cage_num"] == cage_num)


def make_controller(fake: FakeSupabase, config: AppConfig = TEST_CONFIG, **kwargs) -> DashboardController:
    return DashboardController(fake, config, **kwargs)
