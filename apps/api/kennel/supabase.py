from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from functools import lru_cache
from typing import Any, Dict, List, Optional, Union

import httpx
from fastapi import HTTPException

from .config import AppConfig, get_config

logger = logging.getLogger(__name__)

Payload = Union[Dict[str, Any], List[Dict[str, Any]]]

_SETUP_ERROR_MARKERS = ("schema cache", "table not found")


class SupabaseError(Exception):
    """A failed remote call, carrying the message reported by the store."""

    def __init__(
        self,
        message: str,
        *,
        action: Optional[str] = None,
        table: Optional[str] = None,
        status_code: Optional[int] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.action = action
        self.table = table
        self.status_code = status_code

    def __str__(self) -> str:
        if not self.action:
            return self.message
        label = f" (table={self.table})" if self.table else ""
        status = f" status={self.status_code}," if self.status_code is not None else ""
        return f"Supabase {self.action} failed{label}:{status} {self.message}"


class SupabaseConfigError(SupabaseError):
    """Raised before any I/O when the store URL or key is missing or malformed."""


def is_setup_error(message: Optional[str]) -> bool:
    """Return True when a failure message says the expected table is missing."""

    text = (message or "").lower()
    if any(marker in text for marker in _SETUP_ERROR_MARKERS):
        return True
    if "does not exist" in text and ("table" in text or "relation" in text):
        return True
    return False


def http_error(exc: SupabaseError) -> HTTPException:
    """Map a store failure onto the HTTP status the API reports."""

    if isinstance(exc, SupabaseConfigError):
        return HTTPException(
            status_code=503,
            detail={"error": "configuration", "message": exc.message},
        )
    if is_setup_error(exc.message):
        return HTTPException(
            status_code=503,
            detail={"error": "setup", "message": exc.message},
        )
    if exc.status_code == 404:
        return HTTPException(status_code=404, detail=exc.message)
    return HTTPException(status_code=502, detail=str(exc))


def now_iso() -> str:
    return datetime.now(tz=timezone.utc).isoformat()


def _describe_response(resp: httpx.Response) -> str:
    try:
        body = resp.json()
    except ValueError:
        return resp.text or "<empty response>"
    if isinstance(body, dict):
        message = body.get("message") or body.get("error") or body.get("msg")
        if message:
            return str(message)
    return json.dumps(body)


def _raise_supabase_error(resp: httpx.Response, action: str, *, table: str) -> None:
    detail = _describe_response(resp)
    logger.error(
        "supabase request failed",
        extra={"action": action, "table": table, "status": resp.status_code},
    )
    raise SupabaseError(detail, action=action, table=table, status_code=resp.status_code)


@dataclass
class SupabaseClient:
    base_url: str
    api_key: str
    configured: bool = True
    timeout: float = 15.0
    transport: Optional[httpx.AsyncBaseTransport] = None

    def _headers(self, extra: Optional[Dict[str, str]] = None) -> Dict[str, str]:
        headers = {
            "apikey": self.api_key,
            "Authorization": f"Bearer {self.api_key}",
            "Accept": "application/json",
            "Content-Type": "application/json",
        }
        if extra:
            headers.update(extra)
        return headers

    async def request(
        self,
        method: str,
        table: str,
        *,
        action: str,
        params: Optional[Dict[str, Any]] = None,
        json: Optional[Payload] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> httpx.Response:
        if not self.configured:
            raise SupabaseConfigError(
                "Supabase client is not initialized. Set SUPABASE_URL and SUPABASE_ANON_KEY.",
                action=action,
                table=table,
            )
        url = f"{self.base_url}/rest/v1/{table}"
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                resp = await client.request(
                    method,
                    url,
                    params=params,
                    json=json,
                    headers=self._headers(headers),
                )
        except httpx.HTTPError as exc:
            logger.error(
                "supabase transport error",
                extra={"action": action, "table": table, "error": str(exc)},
            )
            raise SupabaseError(str(exc) or type(exc).__name__, action=action, table=table) from exc
        if resp.status_code >= 400:
            _raise_supabase_error(resp, action, table=table)
        return resp

    async def select(self, table: str, params: Dict[str, Any]) -> List[Dict[str, Any]]:
        resp = await self.request("GET", table, action="select", params=params)
        return resp.json() if resp.content else []

    async def insert(
        self,
        table: str,
        payload: Payload,
        *,
        params: Optional[Dict[str, Any]] = None,
    ) -> List[Dict[str, Any]]:
        resp = await self.request(
            "POST",
            table,
            action="insert",
            params=params,
            json=payload,
            headers={"Prefer": "return=representation"},
        )
        return resp.json() if resp.content else []

    async def upsert(
        self,
        table: str,
        payload: Payload,
        *,
        on_conflict: str,
    ) -> List[Dict[str, Any]]:
        resp = await self.request(
            "POST",
            table,
            action="upsert",
            params={"on_conflict": on_conflict},
            json=payload,
            headers={
                "Prefer": "resolution=merge-duplicates,return=representation",
            },
        )
        return resp.json() if resp.content else []

    async def update(
        self,
        table: str,
        payload: Dict[str, Any],
        params: Dict[str, Any],
    ) -> List[Dict[str, Any]]:
        resp = await self.request(
            "PATCH",
            table,
            action="update",
            params=params,
            json=payload,
            headers={"Prefer": "return=representation"},
        )
        return resp.json() if resp.content else []

    async def delete(self, table: str, params: Dict[str, Any]) -> None:
        await self.request("DELETE", table, action="delete", params=params)


def build_client(config: AppConfig) -> SupabaseClient:
    return SupabaseClient(
        base_url=config.base_url,
        api_key=config.supabase_anon_key or "",
        configured=config.is_configured,
    )


@lru_cache
def get_public_client() -> SupabaseClient:
    return build_client(get_config())
