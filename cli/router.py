"""
Command table for the maintenance CLI.

Handlers take the parsed argparse namespace and return a JSON-serialisable
result; printing is left to the caller.
"""

from __future__ import annotations

import argparse
import sys
from typing import Any, Callable, Dict

from analytics.device_classifier import classify, resolve_device_label
from analytics.device_correction import run_device_correction
from listings.description_parser import parse_description
from server.config import Settings, build_store
from telemetry.metrics import MetricsSink

CommandHandler = Callable[[argparse.Namespace], Dict[str, Any]]


def _correct_devices(args: argparse.Namespace) -> Dict[str, Any]:
    settings = Settings.from_env()
    store = build_store(settings)
    report = run_device_correction(
        store,
        thresholds=settings.thresholds,
        max_workers=args.workers or settings.device_update_workers,
        page_size=args.page_size,
        metrics=MetricsSink(settings.metrics_dir, client=getattr(store, "client", None)),
    )
    return {"success": True, **report.as_dict()}


def _classify(args: argparse.Namespace) -> Dict[str, Any]:
    thresholds = Settings.from_env().thresholds
    detected = classify(args.user_agent, args.width, args.height, thresholds)
    return {**detected, "label": resolve_device_label(args.user_agent, detected["category"])}


def _parse_description(args: argparse.Namespace) -> Dict[str, Any]:
    if args.path in (None, "-"):
        text = sys.stdin.read()
    else:
        with open(args.path, "r", encoding="utf-8") as f:
            text = f.read()
    return parse_description(text)


COMMANDS: Dict[str, CommandHandler] = {
    "correct-devices": _correct_devices,
    "classify": _classify,
    "parse-description": _parse_description,
}


def select_command(name: str) -> CommandHandler:
    normalized = (name or "").strip().lower()
    handler = COMMANDS.get(normalized)
    if not handler:
        raise ValueError(f"Unsupported command: {name}")
    return handler
