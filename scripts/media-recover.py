#!/usr/bin/env python3
"""CLI tool for re-queuing pending and stuck service media.

Runs one recovery pass against the configured database (DB_URL and the
vision settings are read from the environment / .env), then processes the
recovered images in this process.

Usage:
    python3 scripts/media-recover.py
    python3 scripts/media-recover.py --no-wait
"""

from __future__ import annotations

import argparse
import logging
import os
import sys

# Allow running from repo root: add backend/ to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "backend"))

import app.models  # noqa: E402,F401  (registers SQLModel tables)
from app.config import get_settings  # noqa: E402
from app.db import create_db_and_tables, engine  # noqa: E402
from app.main import build_media_processor  # noqa: E402


def main() -> int:
    parser = argparse.ArgumentParser(
        description="Re-queue service media left pending or stuck in processing."
    )
    parser.add_argument(
        "--no-wait",
        action="store_true",
        help="Reset stuck rows to pending and exit without processing anything",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        default=3600.0,
        help="Seconds to wait for the queue to drain (default: 3600)",
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")

    args = parser.parse_args()
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    settings = get_settings()
    create_db_and_tables()
    processor = build_media_processor(settings, engine)

    if args.no_wait:
        # Stopped before recovery, so no job is claimed and then abandoned on exit.
        processor.stop(timeout=0)

    result = processor.recover_stuck_media()
    for message in result.messages:
        print(message)

    if result.recovered and not args.no_wait:
        if not processor.wait_until_idle(args.timeout):
            print("Error: timed out waiting for the media queue to drain.", file=sys.stderr)
            processor.stop()
            return 1

    counts = processor.get_processing_stats()
    print(
        f"pending={counts['pending']} processing={counts['processing']} "
        f"completed={counts['completed']} failed={counts['failed']}"
    )
    return 0


if __name__ == "__main__":
    sys.exit(main())
