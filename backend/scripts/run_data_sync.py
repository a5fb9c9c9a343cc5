#!/usr/bin/env python3
"""
Run one daily market data sync pass and print the result.

Usage:
    python backend/scripts/run_data_sync.py --mock --batch-size 2

Without --mock the Tushare token and optional postgres settings are read from
backend/config/settings.local.json (or NEOSTOCK_CONFIG_PATH).
"""

from __future__ import annotations

import argparse
import asyncio
import dataclasses
import json
import logging
import sys
from pathlib import Path

ROOT_DIR = Path(__file__).resolve().parents[2]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from backend.src.config.runtime_config import load_scheduler_config
from backend.src.data_sources import SyncInProgressError
from backend.src.services import build_scheduler


async def _run(args: argparse.Namespace) -> int:
    config = load_scheduler_config()
    overrides = {}
    if args.batch_size is not None:
        overrides["batch_size"] = max(args.batch_size, 1)
    if args.pause is not None:
        overrides["batch_pause_seconds"] = max(args.pause, 0.0)
    if overrides:
        config = dataclasses.replace(config, **overrides)

    scheduler = build_scheduler(config=config, use_mock=args.mock, settings_path=args.settings)
    try:
        result = await scheduler.trigger_manual_sync()
    except SyncInProgressError as exc:
        print(f"Skipped: {exc}", file=sys.stderr)
        return 2

    print(json.dumps(result.to_dict(), ensure_ascii=False, indent=2))
    return 0 if result.success else 1


def main() -> None:
    parser = argparse.ArgumentParser(description="Neostock daily data sync runner")
    parser.add_argument("--mock", action="store_true", help="Use the in-process mock Tushare sources.")
    parser.add_argument("--settings", help="Path to settings file (defaults to backend/config/settings.local.json).")
    parser.add_argument("--batch-size", type=int, help="Override the configured batch size.")
    parser.add_argument("--pause", type=float, help="Override the pause between batches in seconds.")
    parser.add_argument("--log-level", default="INFO", help="Logging level (default: INFO).")
    args = parser.parse_args()

    logging.basicConfig(
        level=getattr(logging, str(args.log_level).upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    raise SystemExit(asyncio.run(_run(args)))


if __name__ == "__main__":
    main()
