"""
Class reminder service entry point.

Architecture:
- One Python process, one asyncio event loop
- One AsyncIOScheduler shared by every reminder class:
  1. A polling job per class (near_term every minute, advance every 5 minutes)
  2. One-shot timers for reminders whose send instant is still ahead

Run with:
    python main.py                         # poll until SIGINT/SIGTERM
    python main.py --run-once near_term    # one tick, print the summary
    python main.py --show-log [--event ID] # recent delivery attempts
"""

import argparse
import asyncio
import json
import logging
import os
import signal
import sys
from pathlib import Path

from dotenv import load_dotenv

project_root = Path(__file__).parent

# .env.local is gitignored and used for local dev overrides
load_dotenv(project_root / ".env.local")
load_dotenv()

import sentry_sdk

from class_reminders import build_service
from class_reminders.config import (
    check_required_env_vars,
    get_reminder_classes,
    get_transport_timeout,
    is_production,
)
from class_reminders.database import close_engine
from class_reminders.errors import StoreUnavailable
from class_reminders.queries import SqlEventStore, SqlIdentityDirectory, SqlLedgerStore
from class_reminders.service import build_transports

logger = logging.getLogger("class_reminders")


def setup_logging(verbose: bool = False) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    # APScheduler logs every job execution at INFO
    logging.getLogger("apscheduler").setLevel(logging.WARNING)


def setup_sentry() -> None:
    dsn = os.environ.get("SENTRY_DSN")
    if not dsn:
        return
    sentry_sdk.init(
        dsn=dsn,
        environment="production" if is_production() else "development",
        traces_sample_rate=0.0,
    )


def _build():
    return build_service(
        event_store=SqlEventStore(),
        directory=SqlIdentityDirectory(),
        ledger_store=SqlLedgerStore(),
        transports=build_transports(timeout=get_transport_timeout()),
    )


async def run_forever() -> None:
    """Poll until SIGINT/SIGTERM, then shut down gracefully."""
    service = _build()
    stop = asyncio.Event()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop.set)

    service.start()
    try:
        await stop.wait()
    finally:
        print("Shutting down reminder service...")
        await service.shutdown()
        await close_engine()


async def run_once(class_name: str) -> dict:
    """Run a single tick for one reminder class without the polling loop."""
    service = _build()
    coordinator = service.coordinators[class_name]
    try:
        # Reminders already due are sent inline; armed timers are abandoned on exit
        summary = await coordinator.run_once()
        return summary.as_dict()
    finally:
        await service.shutdown()
        await close_engine()


async def show_log(event_id: str | None, limit: int) -> list[dict]:
    try:
        return await SqlLedgerStore().list_records(event_id=event_id, limit=limit)
    finally:
        await close_engine()


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Class reminder service")
    parser.add_argument(
        "--run-once",
        metavar="CLASS",
        choices=sorted(get_reminder_classes()),
        help="Run one tick for a reminder class and exit",
    )
    parser.add_argument(
        "--show-log",
        action="store_true",
        help="Print recent delivery attempts and exit",
    )
    parser.add_argument("--event", help="Only show attempts for this event id")
    parser.add_argument(
        "--limit",
        type=int,
        default=50,
        help="Maximum rows for --show-log (default: 50)",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    args = parser.parse_args(argv)

    setup_logging(args.verbose)
    setup_sentry()

    ok, problems = check_required_env_vars()
    for problem in problems:
        logger.warning(problem)
    if not ok:
        print("Missing required configuration, exiting", file=sys.stderr)
        return 1

    if args.show_log:
        rows = asyncio.run(show_log(args.event, args.limit))
        print(json.dumps(rows, indent=2, default=str))
        return 0

    if args.run_once:
        try:
            summary = asyncio.run(run_once(args.run_once))
        except StoreUnavailable as e:
            logger.error(f"Tick for {args.run_once} did not complete: {e}")
            return 1
        print(json.dumps(summary, indent=2))
        return 0

    asyncio.run(run_forever())
    return 0


if __name__ == "__main__":
    sys.exit(main())
