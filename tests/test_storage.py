import httpx
import pytest
from postgrest import APIError

from storage.errors import StoreError
from storage.memory_store import InMemoryStore
from storage.supabase_store import SupabaseStore


@pytest.fixture()
def offline_store(monkeypatch):
    # Skip create_client so retry handling can be exercised without a project.
    store = SupabaseStore.__new__(SupabaseStore)
    store._max_retries = 3
    store._retry_backoff_seconds = 0.0
    monkeypatch.setattr("storage.supabase_store.time.sleep", lambda seconds: None)
    return store


def test_reads_retry_transient_errors(offline_store):
    attempts = []

    def flaky():
        attempts.append(1)
        if len(attempts) < 3:
            raise httpx.RemoteProtocolError("Server disconnected")
        return "ok"

    assert offline_store._with_retry("get_visitor", flaky) == "ok"
    assert len(attempts) == 3


def test_reads_give_up_after_max_retries(offline_store):
    def down():
        raise httpx.ConnectError("refused")

    with pytest.raises(StoreError) as excinfo:
        offline_store._with_retry("get_property", down)
    assert excinfo.value.operation == "get_property"
    assert isinstance(excinfo.value.cause, httpx.ConnectError)


def test_api_errors_are_not_retried(offline_store):
    attempts = []

    def rejected():
        attempts.append(1)
        raise APIError({"message": "permission denied", "code": "42501"})

    with pytest.raises(StoreError):
        offline_store._with_retry("get_visitor", rejected)
    assert len(attempts) == 1


def test_writes_are_single_attempts(offline_store):
    attempts = []

    def write():
        attempts.append(1)
        raise httpx.RemoteProtocolError("Server disconnected")

    with pytest.raises(StoreError):
        offline_store._once("update_visitor_device", write)
    assert len(attempts) == 1


def test_memory_store_candidates_filter():
    store = InMemoryStore(
        visitors=[
            {"id": "a", "device_type": "desktop", "screen_width": 390, "screen_height": 844},
            {"id": "b", "device_type": None, "screen_width": 390, "screen_height": 844},
            {"id": "c", "device_type": "iPhone", "screen_width": 390, "screen_height": 844},
            {"id": "d", "device_type": "desktop", "screen_width": None, "screen_height": 844},
        ]
    )
    assert sorted(row["id"] for row in store.iter_device_correction_candidates()) == ["a", "b"]


def test_memory_store_failing_writes():
    store = InMemoryStore(visitors=[{"id": "a", "device_type": "desktop"}])
    store.failing_visitor_ids.add("a")
    with pytest.raises(StoreError):
        store.update_visitor_device("a", "iPhone")
    assert store.get_visitor("a")["device_type"] == "desktop"
