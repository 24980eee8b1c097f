from __future__ import annotations

import csv
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional

from telemetry.logging_utils import get_logger

logger = get_logger(__name__)

DEFAULT_METRICS_DIR = Path(__file__).resolve().parent.parent / "metrics"
CSV_COLUMNS = [
    "timestamp",
    "component",
    "operation",
    "latency_ms",
    "total",
    "updated",
    "skipped",
    "failed",
]

_csv_lock = threading.Lock()


def _coerce_number(value: Any) -> Optional[float]:
    try:
        if value is None or value == "":
            return None
        return float(value)
    except (TypeError, ValueError):
        return None


class MetricsSink:
    """Where job metrics go: a local CSV file and, optionally, a Supabase ``metrics`` table.

    Created once by the caller (app factory or CLI) and passed down; nothing
    here is process-global apart from the file lock.
    """

    def __init__(self, metrics_dir: Optional[Path] = None, client: Any = None) -> None:
        self.metrics_dir = Path(metrics_dir) if metrics_dir else DEFAULT_METRICS_DIR
        self.csv_path = self.metrics_dir / "job_metrics.csv"
        self.client = client

    def _ensure_csv_header(self) -> None:
        self.metrics_dir.mkdir(parents=True, exist_ok=True)
        if self.csv_path.exists():
            return
        with self.csv_path.open("w", newline="", encoding="utf-8") as f:
            csv.DictWriter(f, fieldnames=CSV_COLUMNS).writeheader()

    def write(self, row: Dict[str, Any]) -> None:
        csv_row = {k: ("" if row.get(k) is None else row.get(k)) for k in CSV_COLUMNS}
        try:
            with _csv_lock:
                self._ensure_csv_header()
                with self.csv_path.open("a", newline="", encoding="utf-8") as f:
                    csv.DictWriter(f, fieldnames=CSV_COLUMNS).writerow(csv_row)
        except OSError as exc:
            logger.warning("metric_csv_write_failed", extra={"error": str(exc)[:200]})

        if self.client is not None:
            try:
                self.client.table("metrics").insert(row).execute()
            except Exception as exc:
                logger.warning("metric_store_write_failed", extra={"error": str(exc)[:200]})

    def read(self, limit: int = 500) -> List[Dict[str, Any]]:
        if not self.csv_path.exists():
            return []
        rows: List[Dict[str, Any]] = []
        with self.csv_path.open("r", newline="", encoding="utf-8") as f:
            for idx, row in enumerate(csv.DictReader(f)):
                if idx >= limit:
                    break
                rows.append(row)
        return rows


def log_metric(
    sink: Optional[MetricsSink],
    component: str,
    operation: str,
    *,
    latency_ms: Optional[float] = None,
    counts: Optional[Dict[str, int]] = None,
) -> Dict[str, Any]:
    """Record one job-run row. Metrics are best effort and never raise."""
    counts = counts or {}
    row = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "component": component,
        "operation": operation,
        "latency_ms": round(latency_ms, 3) if latency_ms is not None else None,
        "total": counts.get("total"),
        "updated": counts.get("updated"),
        "skipped": counts.get("skipped"),
        "failed": counts.get("failed"),
    }
    if sink is not None:
        sink.write(row)
    return row


@dataclass
class MetricTimer:
    sink: Optional[MetricsSink]
    component: str
    operation: str
    counts: Dict[str, int] = field(default_factory=dict)
    _start: float = field(default_factory=time.perf_counter)

    def done(self) -> Dict[str, Any]:
        latency_ms = (time.perf_counter() - self._start) * 1000
        return log_metric(self.sink, self.component, self.operation, latency_ms=latency_ms, counts=self.counts)


@contextmanager
def timed_operation(sink: Optional[MetricsSink], component: str, operation: str) -> Iterator[MetricTimer]:
    """Measure a block and submit a metric row; callers fill ``timer.counts``."""
    timer = MetricTimer(sink=sink, component=component, operation=operation)
    try:
        yield timer
    finally:
        timer.done()


def summarize_metrics(records: List[Dict[str, Any]]) -> Dict[str, Any]:
    """Totals and average latency per component."""
    totals = {"updated": 0, "skipped": 0, "failed": 0}
    latency_by_component: Dict[str, List[float]] = {}
    for row in records:
        for key in totals:
            totals[key] += int(_coerce_number(row.get(key)) or 0)
        latency = _coerce_number(row.get("latency_ms"))
        if latency is not None:
            latency_by_component.setdefault(row.get("component") or "unknown", []).append(latency)
    return {
        **totals,
        "average_latency_ms": {
            comp: round(sum(vals) / len(vals), 3) for comp, vals in latency_by_component.items() if vals
        },
        "sample_size": len(records),
    }
