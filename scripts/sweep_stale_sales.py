"""
Cancel stale pending sales and release orphaned reservations.

Runs one maintenance pass by default, or keeps running passes on an interval
with --watch until interrupted.
"""

import argparse
import asyncio
import signal
import sys
from datetime import timedelta
from pathlib import Path

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from config import load_settings
from logging_config import configure_logging
from services.context import MaintenanceContext, build_context
from services.maintenance_service import run_periodic_sweep
from services.stale_sale_service import release_orphaned_reservations, sweep_stale_pending_sales


async def sweep_once(ctx: MaintenanceContext, max_age_hours: float | None) -> None:
    max_age = timedelta(hours=max_age_hours) if max_age_hours is not None else None
    sweep = await sweep_stale_pending_sales(ctx, max_age=max_age)
    cleanup = await release_orphaned_reservations(ctx)

    print("=" * 60)
    print("STALE SALE SWEEP")
    print("=" * 60)
    print(f"Cutoff:                      {sweep.cutoff.isoformat()}")
    print(f"Cancelled sales:             {sweep.cancelled}")
    print(f"Affected pieces:             {sweep.affected}")
    print(f"Fixed pieces:                {sweep.fixed}")
    print(f"Audit entries written:       {sweep.audit_entries}")
    print(f"Failed cancellations:        {len(sweep.failed_sale_ids)}")
    print("-" * 60)
    print(f"Reserved pieces checked:     {cleanup.checked}")
    print(f"Orphaned pieces released:    {cleanup.released}")
    print(f"Skipped (grace period):      {len(cleanup.skipped_grace_piece_ids)}")
    print(f"Failed:                      {len(cleanup.failed_piece_ids)}")
    print("=" * 60)


async def watch(ctx: MaintenanceContext, interval: float | None) -> None:
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except NotImplementedError:
            pass
    passes = await run_periodic_sweep(ctx, stop, interval=interval)
    print(f"Stopped after {passes} pass(es).")


def main() -> int:
    """Main entry point for the CLI."""
    parser = argparse.ArgumentParser(
        description="Cancel stale pending sales and release orphaned reservations"
    )
    parser.add_argument(
        "--max-age-hours",
        type=float,
        default=None,
        help="Cancel pending sales older than this in a single pass (default: STALE_SALE_MAX_AGE_HOURS or 1)"
    )
    parser.add_argument(
        "--watch",
        action="store_true",
        help="Keep sweeping every SWEEP_INTERVAL_SECONDS until interrupted"
    )
    parser.add_argument(
        "--interval",
        type=float,
        default=None,
        help="Seconds between passes in --watch mode"
    )
    args = parser.parse_args()

    settings = load_settings()
    configure_logging(settings.log_level)

    async def run() -> None:
        ctx = await build_context(settings)
        if args.watch:
            await watch(ctx, args.interval)
        else:
            await sweep_once(ctx, args.max_age_hours)

    try:
        asyncio.run(run())
    except Exception as e:
        print(f"\n[ERROR] {e}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
