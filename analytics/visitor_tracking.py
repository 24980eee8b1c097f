"""
Visit tracking: one ``visitors`` row per browser session, refreshed on every
page view.

Location is looked up per IP at city/region level only, and the stored IP
keeps no host part.
"""

from __future__ import annotations

import threading
from datetime import datetime, timezone
from typing import Any, Dict, Optional
from urllib.parse import urlsplit, urlunsplit

import httpx
from pydantic import BaseModel, Field

from analytics.device_classifier import (
    DEFAULT_THRESHOLDS,
    ResolutionThresholds,
    describe_visitor_device,
    detect_browser,
    detect_os,
    has_geometry,
)
from analytics.schemas import VisitorRecord
from telemetry.logging_utils import get_logger
from telemetry.pii import anonymize_ip

logger = get_logger(__name__)

DEFAULT_GEO_LOOKUP_URL = "http://ip-api.com/json/{ip}"
GEO_LOOKUP_FIELDS = "status,message,country,countryCode,city,regionName"
LOCAL_HOSTS = ("localhost", "127.0.0.1", "0.0.0.0")
EMPTY_LOCATION: Dict[str, Optional[str]] = {"country": None, "country_code": None, "city": None, "region": None}


class TrackVisitPayload(BaseModel):
    session_id: Optional[str] = Field(default=None, alias="sessionId")
    page_url: Optional[str] = Field(default=None, alias="pageUrl")
    page_title: Optional[str] = Field(default=None, alias="pageTitle")
    referrer: Optional[str] = None
    language: Optional[str] = None
    screen_width: Optional[int] = Field(default=None, alias="screenWidth")
    screen_height: Optional[int] = Field(default=None, alias="screenHeight")

    model_config = {"populate_by_name": True}


def normalize_page_url(url: Optional[str], site_origin: str) -> Optional[str]:
    """Rewrite local-development origins to the public site so analytics group by page."""
    if not url or not site_origin:
        return url
    parts = urlsplit(url)
    host = parts.hostname or ""
    if not parts.scheme or not (host in LOCAL_HOSTS or "localhost" in host):
        return url
    origin = urlsplit(site_origin)
    return urlunsplit((origin.scheme, origin.netloc, parts.path, parts.query, parts.fragment))


class LocationCache:
    """IP → location results for the lifetime of one app instance."""

    def __init__(self, max_entries: int = 10_000) -> None:
        self._entries: Dict[str, Dict[str, Optional[str]]] = {}
        self._lock = threading.Lock()
        self.max_entries = max_entries

    def get(self, ip: str) -> Optional[Dict[str, Optional[str]]]:
        with self._lock:
            entry = self._entries.get(ip)
            return dict(entry) if entry is not None else None

    def put(self, ip: str, location: Dict[str, Optional[str]]) -> None:
        with self._lock:
            # No eviction policy: a full cache simply stops accepting entries.
            if len(self._entries) >= self.max_entries and ip not in self._entries:
                return
            self._entries[ip] = dict(location)

    def __len__(self) -> int:
        return len(self._entries)


class LocationLookup:
    """City-level geolocation through ip-api.com. Failures yield an empty location."""

    def __init__(
        self,
        http_client: Optional[httpx.Client] = None,
        cache: Optional[LocationCache] = None,
        *,
        url_template: str = DEFAULT_GEO_LOOKUP_URL,
        timeout: float = 3.0,
    ) -> None:
        self.http_client = http_client or httpx.Client(timeout=timeout)
        self.cache = cache if cache is not None else LocationCache()
        self.url_template = url_template
        self.timeout = timeout

    def lookup(self, ip: Optional[str]) -> Dict[str, Optional[str]]:
        if not ip or ip == "unknown":
            return dict(EMPTY_LOCATION)
        cached = self.cache.get(ip)
        if cached is not None:
            return cached
        try:
            resp = self.http_client.get(
                self.url_template.format(ip=ip),
                params={"fields": GEO_LOOKUP_FIELDS},
                headers={"Accept": "application/json"},
                timeout=self.timeout,
            )
            resp.raise_for_status()
            data = resp.json()
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("geo_lookup_failed", extra={"error": str(exc)[:200]})
            return dict(EMPTY_LOCATION)
        if data.get("status") != "success":
            location = dict(EMPTY_LOCATION)
        else:
            location = {
                "country": data.get("country") or None,
                "country_code": data.get("countryCode") or None,
                "city": data.get("city") or None,
                "region": data.get("regionName") or None,
            }
        self.cache.put(ip, location)
        return location

    def close(self) -> None:
        self.http_client.close()


def client_ip_from_headers(headers: Any, fallback: Optional[str] = None) -> str:
    forwarded = headers.get("x-forwarded-for") or ""
    if forwarded:
        return forwarded.split(",")[0].strip()
    return headers.get("x-real-ip") or headers.get("cf-connecting-ip") or fallback or "unknown"


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def track_visit(
    store: Any,
    payload: TrackVisitPayload,
    *,
    client_ip: str,
    user_agent: Optional[str],
    locator: Optional[LocationLookup] = None,
    site_origin: str = "",
    thresholds: ResolutionThresholds = DEFAULT_THRESHOLDS,
) -> Dict[str, Any]:
    """Insert or refresh the session's visitor row. Returns ``{"is_new", "device_type", "visitor_id"}``."""
    if not payload.session_id:
        raise ValueError("Session ID required")
    user_agent = user_agent or "unknown"
    now = _now_iso()
    existing = store.find_visitor_by_session(payload.session_id)

    if existing:
        width, height = payload.screen_width, payload.screen_height
        if not has_geometry(width, height):
            width, height = existing.get("screen_width"), existing.get("screen_height")
        device_type = describe_visitor_device(user_agent, width, height, thresholds)
        page_url = normalize_page_url(payload.page_url, site_origin) if payload.page_url else existing.get("page_url")
        referrer = normalize_page_url(payload.referrer, site_origin) if payload.referrer else existing.get("referrer")
        fields = {
            "last_visit_at": now,
            "session_end_at": now,
            "visit_count": int(existing.get("visit_count") or 1) + 1,
            "page_url": page_url,
            "page_title": payload.page_title or existing.get("page_title"),
            "referrer": referrer,
            "device_type": device_type,
            "screen_width": payload.screen_width or existing.get("screen_width"),
            "screen_height": payload.screen_height or existing.get("screen_height"),
        }
        store.update_visitor(existing["id"], fields)
        logger.info("visit_tracked", extra={"is_new": False, "device_type": device_type})
        return {"is_new": False, "device_type": device_type, "visitor_id": existing["id"]}

    location = locator.lookup(client_ip) if locator is not None else dict(EMPTY_LOCATION)
    device_type = describe_visitor_device(user_agent, payload.screen_width, payload.screen_height, thresholds)
    record = VisitorRecord(
        session_id=payload.session_id,
        ip_address=anonymize_ip(client_ip),
        user_agent=user_agent,
        device_type=device_type,
        browser=detect_browser(user_agent),
        os=detect_os(user_agent),
        page_url=normalize_page_url(payload.page_url, site_origin),
        page_title=payload.page_title,
        referrer=normalize_page_url(payload.referrer, site_origin) if payload.referrer else None,
        language=payload.language or "en",
        screen_width=payload.screen_width or None,
        screen_height=payload.screen_height or None,
        session_start_at=now,
        session_end_at=now,
        last_visit_at=now,
        **location,
    )
    saved = store.insert_visitor(record.model_dump())
    logger.info("visit_tracked", extra={"is_new": True, "device_type": device_type})
    return {"is_new": True, "device_type": device_type, "visitor_id": saved.get("id")}
