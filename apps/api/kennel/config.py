"""Application configuration utilities."""
from __future__ import annotations

import logging
import os
from functools import lru_cache
from typing import Any, Dict, Mapping, Optional
from urllib.parse import urlencode, urlparse

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

_ENV_ALIASES = {
    "supabase_url": ("SUPABASE_URL", "NEXT_PUBLIC_SUPABASE_URL"),
    "supabase_anon_key": ("SUPABASE_ANON_KEY", "NEXT_PUBLIC_SUPABASE_ANON_KEY"),
    "notes_debounce_ms": ("KENNEL_NOTES_DEBOUNCE_MS",),
    "default_cage_count": ("KENNEL_DEFAULT_CAGE_COUNT",),
    "realtime_enabled": ("KENNEL_REALTIME_ENABLED",),
    "show_error_details": ("KENNEL_SHOW_ERROR_DETAILS",),
}


class AppConfig(BaseModel):
    """Strongly typed configuration loaded from the environment."""

    supabase_url: Optional[str] = None
    supabase_anon_key: Optional[str] = None
    notes_debounce_ms: int = Field(default=500, ge=0)
    default_cage_count: int = Field(default=21, ge=1)
    realtime_enabled: bool = True
    show_error_details: bool = True

    @property
    def is_configured(self) -> bool:
        """True when both the store URL and the access key look usable."""

        if not self.supabase_url or not isinstance(self.supabase_anon_key, str):
            return False
        if not self.supabase_anon_key.strip():
            return False
        parsed = urlparse(self.supabase_url)
        return parsed.scheme in {"http", "https"} and bool(parsed.netloc)

    @property
    def base_url(self) -> str:
        return (self.supabase_url or "").rstrip("/")

    @property
    def notes_debounce_seconds(self) -> float:
        return self.notes_debounce_ms / 1000.0

    @property
    def realtime_url(self) -> str:
        """Return the websocket endpoint for realtime change notifications."""
        parsed = urlparse(self.base_url)
        scheme = "wss" if parsed.scheme == "https" else "ws"
        query = urlencode({"apikey": self.supabase_anon_key or "", "vsn": "1.0.0"})
        return f"{scheme}://{parsed.netloc}/realtime/v1/websocket?{query}"


def load_config(environ: Optional[Mapping[str, str]] = None) -> AppConfig:
    """Build configuration from environment variables, keeping defaults for unset keys."""

    env = os.environ if environ is None else environ
    values: Dict[str, Any] = {}
    for field_name, names in _ENV_ALIASES.items():
        for name in names:
            raw = env.get(name)
            if raw is not None and raw.strip() != "":
                values[field_name] = raw.strip()
                break

    config = AppConfig(**values)
    if not config.is_configured:
        logger.error(
            "Supabase is not configured; running in unconfigured mode",
            extra={
                "has_url": bool(config.supabase_url),
                "has_key": bool(config.supabase_anon_key),
            },
        )
    return config


@lru_cache
def get_config() -> AppConfig:
    return load_config()
