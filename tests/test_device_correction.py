import pytest

from analytics.device_correction import (
    CorrectionPlan,
    CorrectionReport,
    SkipReason,
    apply_corrections,
    plan_correction,
    run_device_correction,
)
from analytics.schemas import VisitorDeviceSignal
from storage.errors import StoreError
from storage.memory_store import InMemoryStore
from telemetry.metrics import MetricsSink
from conftest import IPHONE_UA, SAMSUNG_UA, load_visitors


class ListStore:
    """Hands back fixed candidate rows and records every write."""

    def __init__(self, rows, fail_read=False):
        self.rows = rows
        self.fail_read = fail_read
        self.writes = []

    def iter_device_correction_candidates(self, page_size=1000):
        if self.fail_read:
            raise StoreError("iter_device_correction_candidates", "connection reset")
        return iter(self.rows)

    def update_visitor_device(self, visitor_id, device_type):
        self.writes.append((visitor_id, device_type))


def _signal(**overrides):
    data = {"id": "v1", "user_agent": IPHONE_UA, "screen_width": 390, "screen_height": 844, "device_type": "desktop"}
    data.update(overrides)
    return VisitorDeviceSignal.model_validate(data)


def test_plan_update_for_phone_recorded_as_desktop():
    plan = plan_correction(_signal())
    assert plan == CorrectionPlan("v1", new_device_type="iPhone")
    assert plan.is_update


def test_plan_update_when_device_type_missing():
    assert plan_correction(_signal(device_type=None)).new_device_type == "iPhone"


@pytest.mark.parametrize(
    "overrides,reason",
    [
        ({"device_type": "Samsung"}, SkipReason.ALREADY_CLASSIFIED),
        ({"device_type": "mobile"}, SkipReason.ALREADY_CLASSIFIED),
        ({"screen_width": None, "screen_height": None}, SkipReason.MISSING_GEOMETRY),
        ({"screen_width": 0, "screen_height": 844}, SkipReason.MISSING_GEOMETRY),
        ({"screen_width": 1920, "screen_height": 1080}, SkipReason.RESOLUTION_DESKTOP),
    ],
)
def test_plan_skip_reasons(overrides, reason):
    plan = plan_correction(_signal(**overrides))
    assert not plan.is_update
    assert plan.skip_reason is reason


def test_signal_coerces_store_values():
    signal = VisitorDeviceSignal.model_validate(
        {"id": 42, "user_agent": None, "screen_width": "", "screen_height": "800", "browser": "Chrome"}
    )
    assert signal.id == "42"
    assert signal.user_agent == ""
    assert signal.screen_width is None
    assert signal.screen_height == 800.0


def test_run_against_fixture_visitors(tmp_path):
    store = InMemoryStore(visitors=load_visitors())
    sink = MetricsSink(tmp_path)

    report = run_device_correction(store, max_workers=4, metrics=sink)

    assert report.counts() == {"total": 5, "updated": 4, "skipped": 1, "failed": 0}
    assert report.skip_reasons == {"resolution_desktop": 1}
    assert report.message == "Updated 4 visitor(s) device types"
    assert store.get_visitor("v-iphone")["device_type"] == "iPhone"
    assert store.get_visitor("v-tablet")["device_type"] == "tablet"
    assert store.get_visitor("v-samsung")["device_type"] == "Samsung"
    assert store.get_visitor("v-bot")["device_type"] == "mobile"
    assert store.get_visitor("v-desktop")["device_type"] == "desktop"
    assert store.get_visitor("v-tagged")["device_type"] == "Samsung"
    assert store.get_visitor("v-no-geometry")["device_type"] == "desktop"

    rows = sink.read()
    assert len(rows) == 1
    assert rows[0]["component"] == "analytics"
    assert rows[0]["operation"] == "device_correction"
    assert rows[0]["updated"] == "4"
    assert float(rows[0]["latency_ms"]) >= 0


def test_second_run_has_nothing_left_to_fix():
    store = InMemoryStore(visitors=load_visitors())
    run_device_correction(store)
    report = run_device_correction(store)
    assert report.counts() == {"total": 1, "updated": 0, "skipped": 1, "failed": 0}


def test_failed_update_is_counted_not_raised():
    store = InMemoryStore(visitors=load_visitors())
    store.failing_visitor_ids.add("v-iphone")

    report = run_device_correction(store)

    assert report.updated == 3
    assert report.failed == 1
    assert report.failed_ids == ["v-iphone"]
    assert report.message == "Updated 3 visitor(s) device types, 1 update(s) failed"
    assert store.get_visitor("v-iphone")["device_type"] == "desktop"
    assert store.get_visitor("v-samsung")["device_type"] == "Samsung"


def test_unexpected_write_error_is_counted_not_raised():
    class FlakyStore(ListStore):
        def update_visitor_device(self, visitor_id, device_type):
            if visitor_id == "v1":
                raise RuntimeError("socket closed")
            super().update_visitor_device(visitor_id, device_type)

    store = FlakyStore(
        [
            {"id": "v1", "user_agent": IPHONE_UA, "screen_width": 390, "screen_height": 844, "device_type": "desktop"},
            {"id": "v2", "user_agent": SAMSUNG_UA, "screen_width": 412, "screen_height": 915, "device_type": None},
        ]
    )

    report = run_device_correction(store)

    assert report.counts() == {"total": 2, "updated": 1, "skipped": 0, "failed": 1}
    assert report.failed_ids == ["v1"]
    assert store.writes == [("v2", "Samsung")]


def test_invalid_rows_are_skipped():
    store = ListStore(
        [
            {"id": None, "screen_width": 390, "screen_height": 844, "device_type": "desktop"},
            {"id": "v2", "user_agent": SAMSUNG_UA, "screen_width": 412, "screen_height": 915, "device_type": None},
        ]
    )

    report = run_device_correction(store)

    assert report.counts() == {"total": 2, "updated": 1, "skipped": 1, "failed": 0}
    assert report.skip_reasons == {"invalid_record": 1}
    assert store.writes == [("v2", "Samsung")]


def test_read_failure_propagates():
    with pytest.raises(StoreError):
        run_device_correction(ListStore([], fail_read=True))


def test_empty_batch_message():
    report = run_device_correction(ListStore([]))
    assert report.counts() == {"total": 0, "updated": 0, "skipped": 0, "failed": 0}
    assert report.message == "No visitors to update"


def test_apply_only_writes_updates():
    store = ListStore([])
    plans = [
        CorrectionPlan("a", new_device_type="Redmi"),
        CorrectionPlan("b", skip_reason=SkipReason.MISSING_GEOMETRY),
        CorrectionPlan("c", new_device_type="tablet"),
    ]

    report = apply_corrections(store, plans, max_workers=2)

    assert sorted(store.writes) == [("a", "Redmi"), ("c", "tablet")]
    assert report.as_dict() == {
        "total": 3,
        "updated": 2,
        "skipped": 1,
        "failed": 0,
        "skip_reasons": {"missing_geometry": 1},
        "message": "Updated 2 visitor(s) device types",
    }


def test_report_defaults():
    assert CorrectionReport().as_dict()["message"] == "No visitors to update"
