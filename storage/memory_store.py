from __future__ import annotations

import threading
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, Iterator, List, Optional

from storage.errors import StoreError


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class InMemoryStore:
    """Demo-mode store used when Supabase is unavailable (and in tests)."""

    def __init__(
        self,
        visitors: Optional[Iterable[Dict[str, Any]]] = None,
        properties: Optional[Iterable[Dict[str, Any]]] = None,
    ) -> None:
        self._lock = threading.Lock()
        self.visitors: Dict[str, Dict[str, Any]] = {}
        self.properties: Dict[str, Dict[str, Any]] = {}
        # Visitor ids whose writes fail, to exercise partial-failure paths.
        self.failing_visitor_ids: set = set()
        for row in visitors or []:
            self.insert_visitor(dict(row))
        for row in properties or []:
            record = dict(row)
            record.setdefault("id", str(uuid.uuid4()))
            self.properties[str(record["id"])] = record

    # Visitors -------------------------------------------------------------
    def iter_device_correction_candidates(self, page_size: int = 1000) -> Iterator[Dict[str, Any]]:
        with self._lock:
            rows: List[Dict[str, Any]] = [
                {
                    "id": v["id"],
                    "device_type": v.get("device_type"),
                    "screen_width": v.get("screen_width"),
                    "screen_height": v.get("screen_height"),
                    "user_agent": v.get("user_agent"),
                }
                for v in self.visitors.values()
                if v.get("device_type") in (None, "desktop")
                and v.get("screen_width") is not None
                and v.get("screen_height") is not None
            ]
        yield from rows

    def update_visitor_device(self, visitor_id: str, device_type: str) -> None:
        self.update_visitor(visitor_id, {"device_type": device_type})

    def get_visitor(self, visitor_id: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            visitor = self.visitors.get(str(visitor_id))
            return dict(visitor) if visitor else None

    def find_visitor_by_session(self, session_id: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            matches = [v for v in self.visitors.values() if v.get("session_id") == session_id]
        if not matches:
            return None
        matches.sort(key=lambda v: v.get("created_at") or "", reverse=True)
        return dict(matches[0])

    def insert_visitor(self, record: Dict[str, Any]) -> Dict[str, Any]:
        row = dict(record)
        row["id"] = str(row.get("id") or uuid.uuid4())
        row.setdefault("created_at", _now_iso())
        with self._lock:
            self.visitors[row["id"]] = row
        return dict(row)

    def update_visitor(self, visitor_id: str, fields: Dict[str, Any]) -> None:
        key = str(visitor_id)
        if key in self.failing_visitor_ids:
            raise StoreError("update_visitor", f"simulated failure for {key}")
        with self._lock:
            if key in self.visitors:
                self.visitors[key].update(fields)

    # Properties -----------------------------------------------------------
    def get_property(self, property_id: str) -> Optional[Dict[str, Any]]:
        prop = self.properties.get(str(property_id))
        return dict(prop) if prop else None

    # Health ---------------------------------------------------------------
    def ping(self) -> bool:
        return True
