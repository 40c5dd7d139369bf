"""
Stale pending sale reaper and orphaned reservation cleanup.

A pending sale is stale once it is older than the configured maximum age
(default 1 hour): the buyer is presumed to have abandoned it. Reaping a sale
means:
1. conditionally moving it pending -> cancelled (skipped if its piece is locked),
2. appending an audit entry with the sale as it was before cancellation,
3. running the auto-fixer on every piece that lost a pending sale.

Failure handling:
- The initial read of pending sales (or reserved pieces) is all-or-nothing;
  if it fails, StoreUnavailableError propagates and nothing is changed.
- Each later step is isolated: a store failure or a row that does not decode
  is logged, recorded in the result and the batch moves on.

Every step is safe to repeat. Two processes reaping the same sale produce one
cancellation; the loser's conditional update simply matches no row.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Dict, Iterable, List, Optional

from domain.errors import MalformedRowError, StoreUnavailableError
from domain.piece import PieceStatus
from domain.sale import SaleRecord, SaleStatus
from services.auto_fix_service import FixResult, fix_piece_status
from services.context import MaintenanceContext
from services.events import EventType, MaintenanceEvent

logger = logging.getLogger(__name__)

STALE_SALE_REASON: str = "stale_pending_sale"

# per-item failures that are recorded and skipped instead of aborting a batch
_ITEM_ERRORS = (StoreUnavailableError, MalformedRowError)


@dataclass(slots=True)
class ReapResult:
    """
    Outcome of reaping stale sales, for one piece or for the whole system.

    cancelled_sale_ids: sales this call moved to cancelled
    affected_piece_ids: pieces that lost at least one pending sale
    fixed_piece_ids: affected pieces whose status this call corrected
    audit_entries: audit log entries written
    skipped_locked_sale_ids: stale sales left alone because their piece is locked
    skipped_grace_piece_ids: affected pieces not auto-fixed (grace period)
    failed_sale_ids: sales whose cancellation write failed
    audit_failed_sale_ids: cancelled sales whose audit entry could not be written
    failed_fix_piece_ids: affected pieces whose auto-fix failed
    """

    cutoff: datetime
    cancelled_sale_ids: List[str] = field(default_factory=list)
    affected_piece_ids: List[str] = field(default_factory=list)
    fixed_piece_ids: List[str] = field(default_factory=list)
    audit_entries: int = 0
    skipped_locked_sale_ids: List[str] = field(default_factory=list)
    skipped_grace_piece_ids: List[str] = field(default_factory=list)
    failed_sale_ids: List[str] = field(default_factory=list)
    audit_failed_sale_ids: List[str] = field(default_factory=list)
    failed_fix_piece_ids: List[str] = field(default_factory=list)
    fix_results: Dict[str, FixResult] = field(default_factory=dict)

    @property
    def cancelled(self) -> int:
        return len(self.cancelled_sale_ids)

    @property
    def affected(self) -> int:
        return len(self.affected_piece_ids)

    @property
    def fixed(self) -> int:
        return len(self.fixed_piece_ids)


@dataclass(slots=True)
class CleanupResult:
    """Outcome of scanning Reserved pieces for orphaned reservations."""

    checked: int = 0
    released_piece_ids: List[str] = field(default_factory=list)
    skipped_locked_piece_ids: List[str] = field(default_factory=list)
    skipped_grace_piece_ids: List[str] = field(default_factory=list)
    failed_piece_ids: List[str] = field(default_factory=list)

    @property
    def released(self) -> int:
        return len(self.released_piece_ids)


def _cutoff(ctx: MaintenanceContext, max_age: Optional[timedelta]) -> datetime:
    age = max_age if max_age is not None else ctx.settings.stale_sale_max_age
    if age <= timedelta(0):
        raise ValueError("max_age must be positive")
    return ctx.now() - age


async def _cancel_sales(
    ctx: MaintenanceContext,
    sales: Iterable[SaleRecord],
    result: ReapResult,
) -> None:
    for sale in sales:
        if not sale.is_stale(result.cutoff):
            continue

        if ctx.locks.is_locked(sale.piece_id):
            logger.debug(
                "Skipping stale sale %s: piece %s is locked for active operation",
                sale.sale_id,
                sale.piece_id,
            )
            result.skipped_locked_sale_ids.append(sale.sale_id)
            continue

        try:
            cancelled = await ctx.sales.compare_and_set_status(
                sale.sale_id, SaleStatus.PENDING, SaleStatus.CANCELLED
            )
        except StoreUnavailableError as exc:
            logger.error(
                "Failed to cancel stale sale %s: %s",
                sale.sale_id,
                exc,
                extra={"sale_id": sale.sale_id, "piece_id": sale.piece_id},
            )
            result.failed_sale_ids.append(sale.sale_id)
            continue

        if not cancelled:
            logger.debug("Sale %s is no longer pending; nothing to cancel", sale.sale_id)
            continue

        now = ctx.now()
        age_minutes = int((now - sale.created_at).total_seconds() // 60)
        logger.info(
            "Cancelled stale pending sale %s for piece %s (age: %d minutes)",
            sale.sale_id,
            sale.piece_id,
            age_minutes,
        )
        result.cancelled_sale_ids.append(sale.sale_id)
        if sale.piece_id not in result.affected_piece_ids:
            result.affected_piece_ids.append(sale.piece_id)

        try:
            await ctx.audit_log.log_sale_cancellation(sale, reason=STALE_SALE_REASON, logged_at=now)
            result.audit_entries += 1
        except StoreUnavailableError as exc:
            logger.error(
                "Cancelled sale %s but failed to write its audit entry: %s",
                sale.sale_id,
                exc,
                extra={"sale_id": sale.sale_id, "snapshot": sale.snapshot()},
            )
            result.audit_failed_sale_ids.append(sale.sale_id)

        ctx.events.publish(
            MaintenanceEvent(
                event_type=EventType.SALE_CANCELLED,
                entity_id=sale.sale_id,
                occurred_at=now,
                details={"piece_id": sale.piece_id, "reason": STALE_SALE_REASON},
            )
        )


async def _fix_affected_pieces(
    ctx: MaintenanceContext,
    result: ReapResult,
    *,
    respect_grace_period: bool,
) -> None:
    for piece_id in result.affected_piece_ids:
        try:
            if respect_grace_period:
                piece = await ctx.pieces.get_piece(piece_id)
                if piece is not None and piece.within_grace_period(ctx.now(), ctx.settings.grace_period):
                    logger.debug("Skipping auto-fix for piece %s: within grace period", piece_id)
                    result.skipped_grace_piece_ids.append(piece_id)
                    continue
            fix = await fix_piece_status(ctx, piece_id)
        except _ITEM_ERRORS as exc:
            logger.error("Failed to auto-fix piece %s after reaping: %s", piece_id, exc)
            result.failed_fix_piece_ids.append(piece_id)
            continue

        result.fix_results[piece_id] = fix
        if fix.changed:
            result.fixed_piece_ids.append(piece_id)


async def cancel_stale_pending_sales(
    ctx: MaintenanceContext,
    piece_id: str,
    max_age: Optional[timedelta] = None,
) -> ReapResult:
    """
    Cancel the stale pending sales of one piece, then auto-fix the piece.

    A sale created exactly at `now - max_age` is kept; anything older goes.

    Raises:
        StoreUnavailableError: if the pending sales cannot be read
        MalformedRowError: if a pending sale row does not decode
    """

    result = ReapResult(cutoff=_cutoff(ctx, max_age))
    pending = await ctx.sales.list_pending_sales(piece_id=piece_id, created_before=result.cutoff)

    await _cancel_sales(ctx, pending, result)
    await _fix_affected_pieces(ctx, result, respect_grace_period=False)

    if result.cancelled:
        logger.info(
            "Cancelled %d stale pending sale(s) for piece %s",
            result.cancelled,
            piece_id,
        )
    return result


async def sweep_stale_pending_sales(
    ctx: MaintenanceContext,
    max_age: Optional[timedelta] = None,
) -> ReapResult:
    """
    Cancel stale pending sales across every piece in one pass.

    Meant to be run periodically. Affected pieces still inside the grace period
    are not auto-fixed by the sweep; the orphan cleanup picks them up later.

    Raises:
        StoreUnavailableError: if the pending sales cannot be read
        MalformedRowError: if a pending sale row does not decode
    """

    result = ReapResult(cutoff=_cutoff(ctx, max_age))
    stale = await ctx.sales.list_pending_sales(created_before=result.cutoff)
    if not stale:
        return result

    await _cancel_sales(ctx, stale, result)
    await _fix_affected_pieces(ctx, result, respect_grace_period=True)

    if result.cancelled:
        logger.info(
            "Global cleanup: cancelled %d stale pending sale(s) affecting %d piece(s), fixed %d",
            result.cancelled,
            result.affected,
            result.fixed,
        )
    return result


async def release_orphaned_reservations(ctx: MaintenanceContext) -> CleanupResult:
    """
    Release Reserved pieces that have no pending sale.

    Locked pieces and pieces whose status changed within the grace period are
    skipped so an in-flight reservation is never undone.

    Raises:
        StoreUnavailableError: if the Reserved pieces cannot be listed
        MalformedRowError: if a Reserved piece row does not decode
    """

    result = CleanupResult()
    reserved = await ctx.pieces.list_pieces_by_status(PieceStatus.RESERVED)
    now = ctx.now()

    for piece in reserved:
        result.checked += 1

        if ctx.locks.is_locked(piece.piece_id):
            logger.debug("Skipping cleanup for piece %s - locked for active operation", piece.label)
            result.skipped_locked_piece_ids.append(piece.piece_id)
            continue

        if piece.within_grace_period(now, ctx.settings.grace_period):
            result.skipped_grace_piece_ids.append(piece.piece_id)
            continue

        try:
            pending = await ctx.sales.get_pending_sale_for_piece(piece.piece_id)
            if pending is not None:
                continue
            if ctx.locks.is_locked(piece.piece_id):
                result.skipped_locked_piece_ids.append(piece.piece_id)
                continue
            released = await ctx.pieces.compare_and_set_status(
                piece.piece_id,
                PieceStatus.RESERVED,
                PieceStatus.AVAILABLE,
                updated_at=ctx.now(),
            )
        except _ITEM_ERRORS as exc:
            logger.error("Error cleaning up piece %s: %s", piece.label, exc)
            result.failed_piece_ids.append(piece.piece_id)
            continue

        if released:
            logger.info("Cleaned up orphaned reservation for piece %s", piece.label)
            result.released_piece_ids.append(piece.piece_id)
            ctx.events.publish(
                MaintenanceEvent(
                    event_type=EventType.PIECE_STATUS_FIXED,
                    entity_id=piece.piece_id,
                    occurred_at=ctx.now(),
                    details={
                        "from": PieceStatus.RESERVED.value,
                        "to": PieceStatus.AVAILABLE.value,
                        "action": "release_piece",
                    },
                )
            )

    return result


__all__ = [
    "CleanupResult",
    "ReapResult",
    "STALE_SALE_REASON",
    "cancel_stale_pending_sales",
    "release_orphaned_reservations",
    "sweep_stale_pending_sales",
]
