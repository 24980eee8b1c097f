import httpx
import pytest

from analytics.visitor_tracking import (
    EMPTY_LOCATION,
    LocationCache,
    LocationLookup,
    TrackVisitPayload,
    client_ip_from_headers,
    normalize_page_url,
    track_visit,
)
from storage.memory_store import InMemoryStore
from telemetry.pii import anonymize_ip
from conftest import IPHONE_UA, WINDOWS_CHROME_UA, geo_transport


@pytest.mark.parametrize(
    "ip,expected",
    [
        ("203.0.113.42", "203.0.113.xxx"),
        ("2001:db8::1", "2001:0db8:0000:xxxx"),
        ("not-an-ip", "unknown"),
        ("", "unknown"),
        (None, "unknown"),
    ],
)
def test_anonymize_ip(ip, expected):
    assert anonymize_ip(ip) == expected


@pytest.mark.parametrize(
    "url,expected",
    [
        ("http://localhost:3000/listings?city=austin#map", "https://www.example.com/listings?city=austin#map"),
        ("http://127.0.0.1:8000/about", "https://www.example.com/about"),
        ("https://www.example.com/contact", "https://www.example.com/contact"),
        ("https://www.google.com/search?q=homes", "https://www.google.com/search?q=homes"),
        ("", ""),
        (None, None),
    ],
)
def test_normalize_page_url(url, expected):
    assert normalize_page_url(url, "https://www.example.com") == expected


def test_normalize_page_url_without_origin_is_noop():
    assert normalize_page_url("http://localhost:3000/x", "") == "http://localhost:3000/x"


def test_client_ip_prefers_forwarded_header():
    assert client_ip_from_headers({"x-forwarded-for": "198.51.100.7, 10.0.0.1"}, "127.0.0.1") == "198.51.100.7"
    assert client_ip_from_headers({"x-real-ip": "198.51.100.8"}, "127.0.0.1") == "198.51.100.8"
    assert client_ip_from_headers({}, "127.0.0.1") == "127.0.0.1"
    assert client_ip_from_headers({}) == "unknown"


def test_location_lookup_caches_per_ip():
    calls = []
    locator = LocationLookup(http_client=httpx.Client(transport=geo_transport(calls)), cache=LocationCache())

    first = locator.lookup("198.51.100.7")
    second = locator.lookup("198.51.100.7")

    assert first == {"country": "United States", "country_code": "US", "city": "Austin", "region": "Texas"}
    assert second == first
    assert len(calls) == 1
    assert calls[0].startswith("http://ip-api.com/json/198.51.100.7")


def test_location_lookup_failure_is_empty():
    def handler(request):
        raise httpx.ConnectError("unreachable", request=request)

    locator = LocationLookup(http_client=httpx.Client(transport=httpx.MockTransport(handler)))
    assert locator.lookup("198.51.100.7") == EMPTY_LOCATION
    assert len(locator.cache) == 0


def test_location_lookup_unsuccessful_status():
    transport = httpx.MockTransport(lambda request: httpx.Response(200, json={"status": "fail", "message": "private range"}))
    locator = LocationLookup(http_client=httpx.Client(transport=transport))
    assert locator.lookup("10.0.0.1") == EMPTY_LOCATION


def test_location_lookup_skips_unknown_ip():
    calls = []
    locator = LocationLookup(http_client=httpx.Client(transport=geo_transport(calls)))
    assert locator.lookup("unknown") == EMPTY_LOCATION
    assert calls == []


def test_location_cache_stops_accepting_when_full():
    cache = LocationCache(max_entries=1)
    cache.put("a", {"city": "Austin"})
    cache.put("b", {"city": "Dallas"})
    assert cache.get("a") == {"city": "Austin"}
    assert cache.get("b") is None
    assert len(cache) == 1


def _payload(**overrides):
    data = {
        "sessionId": "session-abc",
        "pageUrl": "http://localhost:3000/listings",
        "pageTitle": "Listings",
        "screenWidth": 390,
        "screenHeight": 844,
    }
    data.update(overrides)
    return TrackVisitPayload.model_validate(data)


def test_first_visit_inserts_visitor(locator):
    store = InMemoryStore()

    result = track_visit(
        store,
        _payload(),
        client_ip="203.0.113.42",
        user_agent=IPHONE_UA,
        locator=locator,
        site_origin="https://www.example.com",
    )

    assert result["is_new"] is True
    assert result["device_type"] == "iPhone"
    visitor = store.get_visitor(result["visitor_id"])
    assert visitor["ip_address"] == "203.0.113.xxx"
    assert visitor["browser"] == "Safari"
    assert visitor["os"] == "iOS"
    assert visitor["city"] == "Austin"
    assert visitor["page_url"] == "https://www.example.com/listings"
    assert visitor["visit_count"] == 1
    assert visitor["language"] == "en"
    assert visitor["last_visit_at"] == visitor["session_start_at"]


def test_repeat_visit_updates_same_row(locator):
    store = InMemoryStore()
    first = track_visit(store, _payload(), client_ip="203.0.113.42", user_agent=IPHONE_UA, locator=locator)

    second = track_visit(
        store,
        _payload(pageUrl="https://www.example.com/contact", screenWidth=None, screenHeight=None),
        client_ip="203.0.113.42",
        user_agent=IPHONE_UA,
        locator=locator,
    )

    assert second == {"is_new": False, "device_type": "iPhone", "visitor_id": first["visitor_id"]}
    visitor = store.get_visitor(first["visitor_id"])
    assert visitor["visit_count"] == 2
    assert visitor["page_url"] == "https://www.example.com/contact"
    assert visitor["screen_width"] == 390
    assert len(store.visitors) == 1


def test_desktop_visit_without_locator():
    store = InMemoryStore()
    result = track_visit(
        store,
        _payload(screenWidth=1920, screenHeight=1080),
        client_ip="garbage",
        user_agent=WINDOWS_CHROME_UA,
    )
    visitor = store.get_visitor(result["visitor_id"])
    assert result["device_type"] == "desktop"
    assert visitor["ip_address"] == "unknown"
    assert visitor["country"] is None
    assert visitor["os"] == "Windows 10/11"


def test_session_id_is_required():
    with pytest.raises(ValueError, match="Session ID required"):
        track_visit(InMemoryStore(), _payload(sessionId=None), client_ip="203.0.113.42", user_agent=IPHONE_UA)
