"""
Maintenance CLI.

    python main.py correct-devices
    python main.py classify --user-agent "Mozilla/5.0 (iPhone ...)" --width 390 --height 844
    python main.py parse-description listing.txt
"""

from __future__ import annotations

import argparse
import json
import sys
from typing import List, Optional

from cli.router import select_command
from storage.errors import StoreError
from telemetry.logging_utils import configure_logging


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="PropertyHub maintenance commands")
    parser.add_argument("--log-level", default=None, help="Override LOG_LEVEL (DEBUG, INFO, ...).")
    sub = parser.add_subparsers(dest="command", required=True)

    correct = sub.add_parser("correct-devices", help="Re-tag desktop visitors whose screen size says otherwise.")
    correct.add_argument("--workers", type=int, default=None, help="Concurrent update calls.")
    correct.add_argument("--page-size", type=int, default=1000)

    cls = sub.add_parser("classify", help="Classify one user agent / screen size.")
    cls.add_argument("--user-agent", "-u", default="")
    cls.add_argument("--width", type=float, default=None)
    cls.add_argument("--height", type=float, default=None)

    parse = sub.add_parser("parse-description", help="Split a description file (or stdin) into sections.")
    parse.add_argument("path", nargs="?", default="-")
    return parser


def run(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging(args.log_level, "plain", force=True)
    handler = select_command(args.command)
    try:
        result = handler(args)
    except StoreError as exc:
        print(json.dumps({"success": False, "error": str(exc)}), file=sys.stderr)
        return 1
    print(json.dumps(result, indent=2, ensure_ascii=False))
    return 0
