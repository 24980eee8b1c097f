"""Visitor analytics: device classification, batch correction, and visit tracking."""

from analytics.device_classifier import (
    classify,
    classify_by_resolution,
    detect_brand,
    resolve_device_label,
)
from analytics.device_correction import CorrectionReport, SkipReason, run_device_correction

__all__ = [
    "classify",
    "classify_by_resolution",
    "detect_brand",
    "resolve_device_label",
    "CorrectionReport",
    "SkipReason",
    "run_device_correction",
]
