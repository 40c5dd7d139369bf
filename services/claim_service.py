"""
Claim orchestrator.

Entry point to call before creating a new sale for a piece. It clears away
abandoned state and then tells the caller whether the piece is free:

1. Cancel stale pending sales of the piece (optional, on by default).
2. Auto-fix the piece status.
3. Re-read the piece and its pending sale.

Each of steps 1-3 is retried on transient store failures (RETRY_MAX_ATTEMPTS,
RETRY_BASE_DELAY_SECONDS). Every step is idempotent, so re-running one after a
failure is safe.
4. Fail if a pending sale remains, if the piece is missing, or if the piece is
   not Available; otherwise succeed.

A successful claim does not reserve anything. The caller creates the sale and
flips the piece to Reserved itself, typically while holding the piece in the
operation lock registry. Claim before taking the lock: the reaper and the
auto-fixer skip locked pieces.

The grace period used by background scans does not apply here.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Awaitable, Callable, Optional, Tuple, TypeVar

from domain.piece import Piece, PieceStatus
from domain.sale import SaleRecord
from services.auto_fix_service import fix_piece_status
from services.context import MaintenanceContext
from services.retry import retry_operation
from services.stale_sale_service import cancel_stale_pending_sales

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True, slots=True)
class ClaimOptions:
    cancel_stale_sales: bool = True
    max_stale_age_hours: float = 1.0

    def __post_init__(self) -> None:
        if self.max_stale_age_hours <= 0:
            raise ValueError("max_stale_age_hours must be positive")


@dataclass(frozen=True, slots=True)
class ClaimResult:
    """
    Result of a claim attempt.

    success: True if the caller may create a sale for the piece
    status: current piece status (None if the piece does not exist)
    pending_sale_id: the competing pending sale, when that is why it failed
    was_fixed: True if the auto-fixer changed the piece during this claim
    cancelled_sale_ids: stale sales cancelled during this claim
    reason: human-readable explanation when success is False
    """

    piece_id: str
    success: bool
    status: Optional[PieceStatus] = None
    pending_sale_id: Optional[str] = None
    was_fixed: bool = False
    cancelled_sale_ids: Tuple[str, ...] = ()
    reason: Optional[str] = None


async def claim_piece_or_fail(
    ctx: MaintenanceContext,
    piece_id: str,
    options: Optional[ClaimOptions] = None,
) -> ClaimResult:
    """
    Check that `piece_id` is safe to reserve, repairing stale state first.

    Raises:
        StoreUnavailableError: if the store stays unavailable after retries
        MalformedRowError: if the piece or one of its sales does not decode
    """

    options = options or ClaimOptions()
    cancelled: Tuple[str, ...] = ()
    was_fixed = False

    def retrying(operation: Callable[[], Awaitable[T]]) -> Awaitable[T]:
        return retry_operation(
            operation,
            max_attempts=ctx.settings.retry_max_attempts,
            base_delay=ctx.settings.retry_base_delay_seconds,
        )

    if options.cancel_stale_sales:
        max_age = timedelta(hours=options.max_stale_age_hours)
        reap = await retrying(lambda: cancel_stale_pending_sales(ctx, piece_id, max_age=max_age))
        cancelled = tuple(reap.cancelled_sale_ids)
        was_fixed = piece_id in reap.fixed_piece_ids

    fix = await retrying(lambda: fix_piece_status(ctx, piece_id))
    was_fixed = was_fixed or fix.changed

    async def read_state() -> Tuple[Optional[Piece], Optional[SaleRecord]]:
        piece = await ctx.pieces.get_piece(piece_id)
        if piece is None:
            return None, None
        return piece, await ctx.sales.get_pending_sale_for_piece(piece_id)

    piece, pending = await retrying(read_state)

    if piece is None:
        return ClaimResult(
            piece_id=piece_id,
            success=False,
            was_fixed=was_fixed,
            cancelled_sale_ids=cancelled,
            reason=f"Piece not found: {piece_id}",
        )

    if pending is not None:
        logger.info("Claim refused for piece %s: pending sale %s", piece.label, pending.sale_id)
        return ClaimResult(
            piece_id=piece_id,
            success=False,
            status=piece.status,
            pending_sale_id=pending.sale_id,
            was_fixed=was_fixed,
            cancelled_sale_ids=cancelled,
            reason=f"Piece is reserved by pending sale {pending.sale_id[:8]}",
        )

    if piece.status is not PieceStatus.AVAILABLE:
        logger.info("Claim refused for piece %s: status %s", piece.label, piece.status.value)
        return ClaimResult(
            piece_id=piece_id,
            success=False,
            status=piece.status,
            was_fixed=was_fixed,
            cancelled_sale_ids=cancelled,
            reason=f"Piece is not available. Current status: {piece.status.value}",
        )

    return ClaimResult(
        piece_id=piece_id,
        success=True,
        status=piece.status,
        was_fixed=was_fixed,
        cancelled_sale_ids=cancelled,
    )


__all__ = ["ClaimOptions", "ClaimResult", "claim_piece_or_fail"]
