from __future__ import annotations

import time
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterator, Optional

import httpx
from postgrest import APIError

from supabase import Client, ClientOptions, create_client
from storage.errors import StoreError
from telemetry.logging_utils import get_logger

logger = get_logger(__name__)

VISITOR_DEVICE_COLUMNS = "id, device_type, screen_width, screen_height, user_agent"
_TRANSIENT_ERRORS = (httpx.RemoteProtocolError, httpx.WriteError, httpx.ConnectError)
_STORE_ERRORS = (APIError, httpx.HTTPError)


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class SupabaseStore:
    """PostgREST-backed access to the ``visitors`` and ``properties`` tables.

    Every request carries the client-level timeout. Reads retry transient
    transport errors with a short backoff; writes are single attempts and
    surface failures as ``StoreError``.
    """

    def __init__(self, url: str, key: str, *, timeout: float = 10.0) -> None:
        options = ClientOptions(postgrest_client_timeout=timeout)
        self.client: Client = create_client(url, key, options=options)
        self._max_retries = 3
        self._retry_backoff_seconds = 0.25

    def _table(self, name: str):
        return self.client.table(name)

    def _with_retry(self, operation: str, fn: Callable[[], Any]) -> Any:
        delay = self._retry_backoff_seconds
        for attempt in range(self._max_retries):
            try:
                return fn()
            except _TRANSIENT_ERRORS as exc:
                if attempt >= self._max_retries - 1:
                    raise StoreError(operation, str(exc), cause=exc) from exc
                time.sleep(delay)
                delay *= 2
            except _STORE_ERRORS as exc:
                raise StoreError(operation, str(exc), cause=exc) from exc

    def _once(self, operation: str, fn: Callable[[], Any]) -> Any:
        try:
            return fn()
        except _STORE_ERRORS as exc:
            raise StoreError(operation, str(exc), cause=exc) from exc

    # Visitors ---------------------------------------------------------------------

    def iter_device_correction_candidates(self, page_size: int = 1000) -> Iterator[Dict[str, Any]]:
        """Visitors tagged desktop or untagged that reported a screen size."""
        start = 0
        while True:
            end = start + page_size - 1
            resp = self._with_retry(
                "list_device_candidates",
                lambda: self._table("visitors")
                .select(VISITOR_DEVICE_COLUMNS)
                .or_("device_type.eq.desktop,device_type.is.null")
                .not_.is_("screen_width", "null")
                .not_.is_("screen_height", "null")
                .order("id")
                .range(start, end)
                .execute(),
            )
            rows = resp.data or []
            yield from rows
            if len(rows) < page_size:
                return
            start += page_size

    def update_visitor_device(self, visitor_id: str, device_type: str) -> None:
        self._once(
            "update_visitor_device",
            lambda: self._table("visitors").update({"device_type": device_type}).eq("id", visitor_id).execute(),
        )

    def get_visitor(self, visitor_id: str) -> Optional[Dict[str, Any]]:
        resp = self._with_retry(
            "get_visitor",
            lambda: self._table("visitors").select("*").eq("id", visitor_id).limit(1).execute(),
        )
        rows = resp.data or []
        return rows[0] if rows else None

    def find_visitor_by_session(self, session_id: str) -> Optional[Dict[str, Any]]:
        resp = self._with_retry(
            "find_visitor_by_session",
            lambda: self._table("visitors")
            .select("*")
            .eq("session_id", session_id)
            .order("created_at", desc=True)
            .limit(1)
            .execute(),
        )
        rows = resp.data or []
        return rows[0] if rows else None

    def insert_visitor(self, record: Dict[str, Any]) -> Dict[str, Any]:
        resp = self._once("insert_visitor", lambda: self._table("visitors").insert(record).execute())
        if not resp.data:
            raise StoreError("insert_visitor", "no row returned")
        return resp.data[0]

    def update_visitor(self, visitor_id: str, fields: Dict[str, Any]) -> None:
        self._once(
            "update_visitor",
            lambda: self._table("visitors").update(fields).eq("id", visitor_id).execute(),
        )

    # Properties -------------------------------------------------------------------

    def get_property(self, property_id: str) -> Optional[Dict[str, Any]]:
        resp = self._with_retry(
            "get_property",
            lambda: self._table("properties").select("*").eq("id", property_id).limit(1).execute(),
        )
        rows = resp.data or []
        return rows[0] if rows else None

    # Health -----------------------------------------------------------------------

    def ping(self) -> bool:
        try:
            self._table("site_settings").select("id").limit(1).execute()
        except _STORE_ERRORS as exc:
            logger.warning("store_ping_failed", extra={"error": str(exc)[:200]})
            return False
        return True
