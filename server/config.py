from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping, Optional

from dotenv import load_dotenv

from analytics.device_classifier import ResolutionThresholds
from analytics.visitor_tracking import DEFAULT_GEO_LOOKUP_URL

BASE_DIR = Path(__file__).resolve().parent.parent
DEFAULT_SITE_ORIGIN = "https://www.capratecompany.com"


def _float(environ: Mapping[str, str], name: str, default: float) -> float:
    try:
        return float(environ.get(name) or default)
    except ValueError:
        return default


def _int(environ: Mapping[str, str], name: str, default: int) -> int:
    try:
        return int(environ.get(name) or default)
    except ValueError:
        return default


@dataclass(frozen=True)
class Settings:
    supabase_url: Optional[str] = None
    supabase_service_role_key: Optional[str] = None
    admin_api_token: Optional[str] = None
    site_origin: str = DEFAULT_SITE_ORIGIN
    store_timeout_seconds: float = 10.0
    device_update_workers: int = 8
    geo_lookup_url: str = DEFAULT_GEO_LOOKUP_URL
    geo_lookup_timeout_seconds: float = 3.0
    metrics_dir: Path = BASE_DIR / "metrics"
    thresholds: ResolutionThresholds = field(default_factory=ResolutionThresholds)

    @property
    def has_supabase(self) -> bool:
        return bool(self.supabase_url and self.supabase_service_role_key)

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Settings":
        if environ is None:
            load_dotenv()
            environ = os.environ
        return cls(
            supabase_url=environ.get("SUPABASE_URL") or None,
            supabase_service_role_key=environ.get("SUPABASE_SERVICE_ROLE_KEY") or None,
            admin_api_token=environ.get("ADMIN_API_TOKEN") or None,
            site_origin=environ.get("SITE_ORIGIN") or DEFAULT_SITE_ORIGIN,
            store_timeout_seconds=_float(environ, "STORE_TIMEOUT_SECONDS", 10.0),
            device_update_workers=_int(environ, "DEVICE_UPDATE_WORKERS", 8),
            geo_lookup_url=environ.get("GEO_LOOKUP_URL") or DEFAULT_GEO_LOOKUP_URL,
            geo_lookup_timeout_seconds=_float(environ, "GEO_LOOKUP_TIMEOUT_SECONDS", 3.0),
            metrics_dir=Path(environ.get("METRICS_DIR") or BASE_DIR / "metrics"),
            thresholds=ResolutionThresholds.from_env(environ),
        )


def build_store(settings: Settings):
    """Supabase when configured, otherwise the in-memory demo store."""
    if settings.has_supabase:
        from storage.supabase_store import SupabaseStore

        return SupabaseStore(
            settings.supabase_url or "",
            settings.supabase_service_role_key or "",
            timeout=settings.store_timeout_seconds,
        )
    from storage.memory_store import InMemoryStore

    return InMemoryStore()
