#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""main.py
Command-line entry point for strap-sync.

Commands
--------
scan              list straps advertising the strap service
download-history  connect, handshake, download the buffered history
reprocess         replay stored raw packets through the decoder
detect-events     label stored readings with activity / sleep
parse             decode a raw capture file and print JSON
plot              draw the stored heart-rate history
"""

import argparse
import asyncio
import json
import sqlite3
import sys
from datetime import datetime
from pathlib import Path
from typing import List, Optional

from app_logger import logger, set_console_level
from batch_ingest import parse_history_file
from config import DB_FILE, DEVICE_NAME, SCAN_DURATION_S, SYNC_IDLE_TIMEOUT_S, PlatformConfig
from controller import HistoryController
from device_scanner import SetupError, make_scanner, resolve_device
from device_session import DeviceSession, TransportError, exit_high_freq_sync_with_retry
from sleep_detection import detect_events
from strap_db import StrapDB
from strap_repository import StrapRepository


def build_repository(db_path: Path) -> StrapRepository:
    """Low-level DB object wrapped in the repository façade."""
    return StrapRepository(StrapDB(db_path=db_path))


# ----------------------------------------------------------------------
# Commands
# ----------------------------------------------------------------------
async def scan_command(platform: PlatformConfig, duration: float) -> int:
    devices = await make_scanner(platform).scan(duration=duration)
    if not devices:
        raise SetupError("No devices found during scan. Ensure the strap is powered on and advertising")
    for device in devices:
        print(f"{device.label}  rssi={device.rssi}")
    return 0


async def download_history_command(args: argparse.Namespace, platform: PlatformConfig) -> int:
    discovered = await resolve_device(
        platform, address=args.address, name=args.name, interactive=args.interactive
    )
    logger.info("using %s", discovered.label)

    repo = build_repository(args.db)
    controller = HistoryController(repo)
    session = DeviceSession.from_device(discovered.device, controller, platform=platform)
    failure: Optional[Exception] = None
    try:
        await session.connect()
        await session.initialize()

        try:
            await session.sync_history(idle_timeout=args.idle_timeout)
        except TransportError as exc:
            logger.error("history sync stopped early: %s", exc)
        except Exception as exc:
            logger.error("history sync failed: %s", exc)
            failure = exc

        # Never leave the strap streaming in high-frequency mode.
        await exit_high_freq_sync_with_retry(session)
        await session.disconnect()
    finally:
        repo.close()

    if failure is not None:
        raise failure

    logger.info(
        "session %s: %d records, %d malformed frames skipped",
        controller.session_uuid, controller.records_decoded, controller.frames_skipped,
    )
    return 0


def reprocess_command(args: argparse.Namespace) -> int:
    repo = build_repository(args.db)
    try:
        controller = HistoryController(repo)
        last_id = controller.replay(after_id=args.after)
        print(last_id)
    finally:
        repo.close()
    return 0


def detect_events_command(args: argparse.Namespace) -> int:
    repo = build_repository(args.db)
    try:
        for segment in detect_events(repo, since=args.since):
            print(f"{segment.start} {segment.end} {segment.activity.name} ({segment.readings} readings)")
    finally:
        repo.close()
    return 0


def parse_command(args: argparse.Namespace) -> int:
    records = parse_history_file(args.file)
    json.dump(records, sys.stdout, indent=2 if args.pretty else None)
    sys.stdout.write("\n")
    return 0


def plot_command(args: argparse.Namespace) -> int:
    from history_plot import HistoryPlot   # matplotlib only when plotting

    HistoryPlot(args.db, since=args.since, until=args.until).draw(
        save_path=args.output, show=args.output is None
    )
    return 0


# ----------------------------------------------------------------------
# Command-line interface
# ----------------------------------------------------------------------
def _parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="strap-sync",
        description="Download, decode and analyse fitness-strap history over BLE.",
    )
    parser.add_argument("--db", type=Path, default=DB_FILE, help="SQLite database (default: %(default)s)")
    parser.add_argument("-v", "--verbose", action="store_true", help="DEBUG output on the console")
    sub = parser.add_subparsers(dest="command", required=True)

    scan = sub.add_parser("scan", help="list nearby straps")
    scan.add_argument("--duration", type=float, default=SCAN_DURATION_S)

    download = sub.add_parser("download-history", help="download the strap's buffered history")
    download.add_argument("--address", default=None, help="strap address (hosts with real addresses)")
    download.add_argument("--name", default=DEVICE_NAME, help="advertised strap name")
    download.add_argument("-i", "--interactive", action="store_true", help="choose from a scan")
    download.add_argument(
        "--idle-timeout", type=float, default=SYNC_IDLE_TIMEOUT_S,
        help="give up after this many seconds without data (default: %(default)s)",
    )

    reprocess = sub.add_parser("reprocess", help="replay stored packets through the decoder")
    reprocess.add_argument("--after", type=int, default=0, help="start after this packet id")

    detect = sub.add_parser("detect-events", help="label readings with activity / sleep")
    detect.add_argument("--since", type=datetime.fromisoformat, default=None, help="ISO lower bound (UTC)")

    parse = sub.add_parser("parse", help="decode a raw capture file to JSON")
    parse.add_argument("file", type=Path)
    parse.add_argument("--pretty", action="store_true")

    plot = sub.add_parser("plot", help="draw the stored heart-rate history")
    plot.add_argument("--since", type=datetime.fromisoformat, default=None)
    plot.add_argument("--until", type=datetime.fromisoformat, default=None)
    plot.add_argument("-o", "--output", default=None, help="save to PNG instead of showing")

    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    args = _parse_args(argv)
    if args.verbose:
        set_console_level("DEBUG")
    platform = PlatformConfig.detect()

    try:
        if args.command == "scan":
            return asyncio.run(scan_command(platform, args.duration))
        if args.command == "download-history":
            return asyncio.run(download_history_command(args, platform))
        if args.command == "reprocess":
            return reprocess_command(args)
        if args.command == "detect-events":
            return detect_events_command(args)
        if args.command == "parse":
            return parse_command(args)
        if args.command == "plot":
            return plot_command(args)
    except (SetupError, TransportError, FileNotFoundError, sqlite3.Error) as exc:
        logger.error("%s", exc)
        return 1
    except KeyboardInterrupt:
        print("\nProgram terminated by user.")
        return 130
    return 2


def run() -> None:
    sys.exit(main())


# ----------------------------------------------------------------------
# Main entry point
# ----------------------------------------------------------------------
if __name__ == "__main__":
    run()
