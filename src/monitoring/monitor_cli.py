"""CLI entry point for the flow alert worker.

Usage::

    python -m src.monitoring.monitor_cli [--once] [--log-level LEVEL]

With ``--once`` a single batch run is executed and its counters printed;
otherwise the worker runs on ``CHECK_INTERVAL_MINUTES`` until interrupted.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import sys

import httpx

from src.core.config import get_settings
from src.core.database import create_engine
from src.core.redis import create_redis_client
from src.monitoring.errors import BatchAbortedError, ConfigurationError
from src.monitoring.metrics import BatchResult
from src.monitoring.worker import create_scheduler, run_worker

logger = logging.getLogger(__name__)


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="monitor_cli",
        description="Evaluate favorite river reaches against return-period thresholds.",
    )
    parser.add_argument(
        "--once",
        action="store_true",
        default=False,
        help="Run a single batch and exit.",
    )
    parser.add_argument(
        "--log-level",
        default=None,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: LOG_LEVEL setting).",
    )
    return parser.parse_args(argv)


def _print_summary(result: BatchResult) -> None:
    """Print a human-readable run summary to stdout."""
    print("\nFlow alert run summary")
    print("-" * 40)
    print(f"  Users:               {result.users}")
    print(f"  Pairs evaluated:     {result.pairs}")
    print(f"  Sent:                {result.sent}")
    print(f"  Suppressed:          {result.suppressed}")
    print(f"  Skipped (no data):   {result.skipped}")
    print(f"  Failed:              {result.failed}")
    print(f"  Delivery failed:     {result.delivery_failed}")
    print(f"  Timed out:           {result.timed_out}")
    print(f"  Stale tables used:   {result.stale_tables_used}")
    print(f"  Duration:            {result.duration_seconds:.2f}s")
    for reason, count in sorted(result.suppressed_by_reason.items()):
        print(f"    suppressed[{reason}]: {count}")


async def _run(args: argparse.Namespace) -> int:
    """Create dependencies and execute the run or the loop."""
    settings = get_settings()
    engine, session_factory = create_engine(settings)
    redis_client = create_redis_client(settings)
    try:
        async with httpx.AsyncClient(timeout=settings.http_timeout_seconds) as http_client:
            try:
                scheduler = create_scheduler(settings, session_factory, redis_client, http_client)
            except ConfigurationError as exc:
                logger.error("Cannot start flow alert worker: %s", exc)
                return 2

            if args.once:
                try:
                    result = await scheduler.run_once()
                except BatchAbortedError as exc:
                    logger.error("Run aborted: %s", exc)
                    return 1
                _print_summary(result)
                return 0 if result.failed == 0 else 1

            shutdown_event = asyncio.Event()
            loop = asyncio.get_running_loop()
            for sig in (signal.SIGINT, signal.SIGTERM):
                try:
                    loop.add_signal_handler(sig, shutdown_event.set)
                except NotImplementedError:
                    pass
            await run_worker(scheduler, settings.check_interval_minutes, settings.timezone, shutdown_event)
            return 0
    finally:
        await redis_client.aclose()
        await engine.dispose()


def main(argv: list[str] | None = None) -> None:
    """CLI entry point."""
    args = _parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, args.log_level or get_settings().log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    exit_code = asyncio.run(_run(args))
    sys.exit(exit_code)


if __name__ == "__main__":
    main()
