"""
Batch re-tagging of visitors that were recorded as desktop (or not at all)
although their screen geometry says phone or tablet.

The job is best effort: each record is planned independently, updates are
issued concurrently with no ordering between them, and a failed update is
logged and counted rather than aborting the batch.
"""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Protocol

from analytics.device_classifier import (
    DEFAULT_THRESHOLDS,
    DESKTOP,
    MOBILE,
    TABLET,
    ResolutionThresholds,
    classify_by_resolution,
    has_geometry,
    resolve_device_label,
)
from analytics.schemas import VisitorDeviceSignal, validate_visitor_rows
from storage.errors import StoreError
from telemetry.logging_utils import get_logger
from telemetry.metrics import MetricsSink, timed_operation

logger = get_logger(__name__)

DEFAULT_MAX_WORKERS = 8


class SkipReason(str, Enum):
    ALREADY_CLASSIFIED = "already_classified"
    MISSING_GEOMETRY = "missing_geometry"
    RESOLUTION_DESKTOP = "resolution_desktop"
    INVALID_RECORD = "invalid_record"


@dataclass(frozen=True)
class CorrectionPlan:
    """Either an update (``new_device_type`` set) or a skip (``skip_reason`` set)."""

    visitor_id: str
    new_device_type: Optional[str] = None
    skip_reason: Optional[SkipReason] = None

    @property
    def is_update(self) -> bool:
        return self.new_device_type is not None


@dataclass
class CorrectionReport:
    total: int = 0
    updated: int = 0
    skipped: int = 0
    failed: int = 0
    skip_reasons: Dict[str, int] = field(default_factory=dict)
    failed_ids: List[str] = field(default_factory=list)

    def record_skip(self, reason: SkipReason) -> None:
        self.skipped += 1
        self.skip_reasons[reason.value] = self.skip_reasons.get(reason.value, 0) + 1

    @property
    def message(self) -> str:
        if not self.total:
            return "No visitors to update"
        text = f"Updated {self.updated} visitor(s) device types"
        if self.failed:
            text += f", {self.failed} update(s) failed"
        return text

    def counts(self) -> Dict[str, int]:
        return {"total": self.total, "updated": self.updated, "skipped": self.skipped, "failed": self.failed}

    def as_dict(self) -> Dict[str, Any]:
        return {**self.counts(), "skip_reasons": dict(self.skip_reasons), "message": self.message}


class DeviceCorrectionStore(Protocol):
    def iter_device_correction_candidates(self, page_size: int = ...) -> Iterable[Dict[str, Any]]: ...

    def update_visitor_device(self, visitor_id: str, device_type: str) -> None: ...


def _is_unclassified(device_type: Optional[str]) -> bool:
    return not device_type or device_type.strip().lower() == DESKTOP


def plan_correction(
    signal: VisitorDeviceSignal,
    thresholds: ResolutionThresholds = DEFAULT_THRESHOLDS,
) -> CorrectionPlan:
    if not _is_unclassified(signal.device_type):
        return CorrectionPlan(signal.id, skip_reason=SkipReason.ALREADY_CLASSIFIED)
    if not has_geometry(signal.screen_width, signal.screen_height):
        return CorrectionPlan(signal.id, skip_reason=SkipReason.MISSING_GEOMETRY)
    category = classify_by_resolution(signal.screen_width, signal.screen_height, thresholds)
    if category not in (MOBILE, TABLET):
        return CorrectionPlan(signal.id, skip_reason=SkipReason.RESOLUTION_DESKTOP)
    return CorrectionPlan(signal.id, new_device_type=resolve_device_label(signal.user_agent, category))


def plan_corrections(
    signals: Iterable[VisitorDeviceSignal],
    thresholds: ResolutionThresholds = DEFAULT_THRESHOLDS,
) -> List[CorrectionPlan]:
    return [plan_correction(signal, thresholds) for signal in signals]


def _apply(store: DeviceCorrectionStore, plan: CorrectionPlan) -> None:
    store.update_visitor_device(plan.visitor_id, plan.new_device_type or "")


def apply_corrections(
    store: DeviceCorrectionStore,
    plans: List[CorrectionPlan],
    *,
    max_workers: int = DEFAULT_MAX_WORKERS,
) -> CorrectionReport:
    report = CorrectionReport(total=len(plans))
    updates = []
    for plan in plans:
        if plan.is_update:
            updates.append(plan)
        else:
            report.record_skip(plan.skip_reason or SkipReason.RESOLUTION_DESKTOP)
    if not updates:
        return report

    with ThreadPoolExecutor(max_workers=max(1, min(max_workers, len(updates)))) as pool:
        futures = {pool.submit(_apply, store, plan): plan for plan in updates}
        for future in as_completed(futures):
            plan = futures[future]
            try:
                future.result()
            except Exception as exc:
                report.failed += 1
                report.failed_ids.append(plan.visitor_id)
                # StoreError is the expected failure; anything else also gets a traceback.
                logger.warning(
                    "device_update_failed",
                    extra={"visitor_id": plan.visitor_id, "device_type": plan.new_device_type, "error": str(exc)[:200]},
                    exc_info=not isinstance(exc, StoreError),
                )
                continue
            report.updated += 1
    return report


def run_device_correction(
    store: DeviceCorrectionStore,
    *,
    thresholds: ResolutionThresholds = DEFAULT_THRESHOLDS,
    max_workers: int = DEFAULT_MAX_WORKERS,
    page_size: int = 1000,
    metrics: Optional[MetricsSink] = None,
) -> CorrectionReport:
    """Read candidates, plan, and apply. Raises ``StoreError`` only when the read fails."""
    with timed_operation(metrics, "analytics", "device_correction") as timer:
        rows = list(store.iter_device_correction_candidates(page_size=page_size))
        signals = validate_visitor_rows(rows)
        plans = plan_corrections(signals, thresholds)
        report = apply_corrections(store, plans, max_workers=max_workers)
        report.total = len(rows)
        for _ in range(len(rows) - len(signals)):
            report.record_skip(SkipReason.INVALID_RECORD)
        timer.counts = report.counts()
    logger.info("device_correction_complete", extra=report.counts())
    return report
