"""Per-cage split/combined configuration records."""
from __future__ import annotations

import logging
from typing import List

from .schemas import CageConfiguration
from .supabase import SupabaseClient, now_iso

logger = logging.getLogger(__name__)

CONFIG_TABLE = "cage_configurations"


async def fetch_configurations(supabase: SupabaseClient) -> List[CageConfiguration]:
    rows = await supabase.select(
        CONFIG_TABLE,
        params={"select": "cage_num,is_split,created_at,updated_at", "order": "cage_num.asc"},
    )
    return [CageConfiguration.model_validate(row) for row in rows]


async def upsert_configuration(
    supabase: SupabaseClient, cage_num: int, is_split: bool
) -> CageConfiguration:
    payload = {"cage_num": cage_num, "is_split": is_split, "updated_at": now_iso()}
    rows = await supabase.upsert(CONFIG_TABLE, payload, on_conflict="cage_num")
    return CageConfiguration.model_validate(rows[0] if rows else payload)


async def seed_default_configurations(
    supabase: SupabaseClient, count: int
) -> List[CageConfiguration]:
    """Add split configurations for any of cages 1..count that have none.

    Existing records keep their flag.
    """

    existing = {config.cage_num for config in await fetch_configurations(supabase)}
    now = now_iso()
    payload = [
        {"cage_num": cage_num, "is_split": True, "created_at": now, "updated_at": now}
        for cage_num in range(1, count + 1)
        if cage_num not in existing
    ]
    if not payload:
        return []
    rows = await supabase.upsert(CONFIG_TABLE, payload, on_conflict="cage_num")
    logger.info("seeded cage configurations", extra={"count": len(payload)})
    return [CageConfiguration.model_validate(row) for row in rows]
