import json
from pathlib import Path

import httpx
import pytest
from fastapi.testclient import TestClient

from analytics.visitor_tracking import LocationCache, LocationLookup
from server.app import create_app
from server.config import Settings
from storage.memory_store import InMemoryStore
from telemetry.metrics import MetricsSink

FIXTURES = Path(__file__).parent / "fixtures"

IPHONE_UA = (
    "Mozilla/5.0 (iPhone; CPU iPhone OS 17_0 like Mac OS X) AppleWebKit/605.1.15 "
    "(KHTML, like Gecko) Version/17.0 Mobile/15E148 Safari/604.1"
)
IPAD_UA = (
    "Mozilla/5.0 (iPad; CPU OS 17_0 like Mac OS X) AppleWebKit/605.1.15 "
    "(KHTML, like Gecko) Version/17.0 Mobile/15E148 Safari/604.1"
)
SAMSUNG_UA = (
    "Mozilla/5.0 (Linux; Android 13; SM-S911B) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Mobile Safari/537.36"
)
PIXEL_UA = (
    "Mozilla/5.0 (Linux; Android 14; Pixel 8) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Mobile Safari/537.36"
)
WINDOWS_CHROME_UA = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)
MAC_SAFARI_UA = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/605.1.15 "
    "(KHTML, like Gecko) Version/17.1 Safari/605.1.15"
)

ADMIN_TOKEN = "test-admin-token"


def load_visitors():
    return json.loads((FIXTURES / "visitors.json").read_text(encoding="utf-8"))


def geo_transport(calls=None):
    """ip-api.com stand-in that answers every lookup with Austin, TX."""

    def handler(request: httpx.Request) -> httpx.Response:
        if calls is not None:
            calls.append(str(request.url))
        return httpx.Response(
            200,
            json={
                "status": "success",
                "country": "United States",
                "countryCode": "US",
                "city": "Austin",
                "regionName": "Texas",
            },
        )

    return httpx.MockTransport(handler)


@pytest.fixture(autouse=True)
def _isolate_env(monkeypatch, tmp_path):
    for name in ("SUPABASE_URL", "SUPABASE_SERVICE_ROLE_KEY", "ADMIN_API_TOKEN"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("METRICS_DIR", str(tmp_path / "metrics"))
    monkeypatch.chdir(tmp_path)


@pytest.fixture()
def store():
    return InMemoryStore(
        visitors=load_visitors(),
        properties=[
            {
                "id": "prop-1",
                "title": "Maple Street Bungalow",
                "description": (FIXTURES / "mls_description.txt").read_text(encoding="utf-8"),
            },
            {"id": "prop-empty", "title": "Vacant lot", "description": None},
        ],
    )


@pytest.fixture()
def settings(tmp_path):
    return Settings(admin_api_token=ADMIN_TOKEN, site_origin="https://www.example.com", metrics_dir=tmp_path / "metrics")


@pytest.fixture()
def locator():
    return LocationLookup(http_client=httpx.Client(transport=geo_transport()), cache=LocationCache())


@pytest.fixture()
def metrics_sink(settings):
    return MetricsSink(settings.metrics_dir)


@pytest.fixture()
def client(store, settings, locator, metrics_sink):
    app = create_app(store=store, settings=settings, locator=locator, metrics=metrics_sink)
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture()
def admin_headers():
    return {"Authorization": f"Bearer {ADMIN_TOKEN}"}
