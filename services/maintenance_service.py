"""
Periodic maintenance runner.

Each pass runs the global stale-sale sweep followed by the orphaned reservation
cleanup. Passes repeat every `interval` seconds until the stop event is set.
A pass that fails (unavailable store, a row that does not decode, anything
else) is logged and the loop carries on; the next pass re-reads everything.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Optional

from domain.errors import StoreUnavailableError
from services.context import MaintenanceContext
from services.stale_sale_service import (
    CleanupResult,
    ReapResult,
    release_orphaned_reservations,
    sweep_stale_pending_sales,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class MaintenancePass:
    sweep: Optional[ReapResult] = None
    cleanup: Optional[CleanupResult] = None
    error: Optional[str] = None


async def run_maintenance_once(ctx: MaintenanceContext) -> MaintenancePass:
    """
    Run one sweep + cleanup pass, reporting any failure instead of raising.

    A completed sweep stays in the result when the cleanup after it fails.
    """

    sweep: Optional[ReapResult] = None
    try:
        sweep = await sweep_stale_pending_sales(ctx)
        cleanup = await release_orphaned_reservations(ctx)
    except StoreUnavailableError as exc:
        logger.error("Maintenance pass aborted: %s", exc)
        return MaintenancePass(sweep=sweep, error=str(exc))
    except Exception as exc:
        logger.exception("Maintenance pass failed unexpectedly")
        return MaintenancePass(sweep=sweep, error=f"{type(exc).__name__}: {exc}")

    return MaintenancePass(sweep=sweep, cleanup=cleanup)


async def run_periodic_sweep(
    ctx: MaintenanceContext,
    stop_event: asyncio.Event,
    interval: Optional[float] = None,
) -> int:
    """
    Run maintenance passes until `stop_event` is set.

    Returns:
        Number of passes executed
    """

    interval = interval if interval is not None else ctx.settings.sweep_interval_seconds
    passes = 0

    while not stop_event.is_set():
        outcome = await run_maintenance_once(ctx)
        passes += 1
        if outcome.sweep is not None and outcome.cleanup is not None:
            if outcome.sweep.cancelled or outcome.cleanup.released:
                logger.info(
                    "Maintenance pass %d: cancelled %d sale(s), released %d piece(s)",
                    passes,
                    outcome.sweep.cancelled,
                    outcome.cleanup.released,
                )

        try:
            await asyncio.wait_for(stop_event.wait(), timeout=interval)
        except asyncio.TimeoutError:
            pass

    return passes


__all__ = ["MaintenancePass", "run_maintenance_once", "run_periodic_sweep"]
