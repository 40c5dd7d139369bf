"""
Auto-fixer for piece status.

Runs the consistency checker and applies the recommended action when it is
safe to do so automatically:
- release_piece: Reserved -> Available
- reserve_piece: Available -> Reserved

Each fix is one conditional update on the piece row (update where status is
still the value the checker saw). If that matches zero rows another writer got
there first, and the fix is reported as ALREADY_CHANGED rather than an error.
Two racing callers therefore produce at most one write.

check_sales and review_sales are never applied: they require a human.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from domain.consistency import ConsistencyReport, RecommendedAction
from domain.piece import PieceStatus
from services.consistency_service import check_piece_consistency
from services.context import MaintenanceContext
from services.events import EventType, MaintenanceEvent

logger = logging.getLogger(__name__)


class FixAction(str, Enum):
    NO_ACTION_NEEDED = "no_action_needed"
    RELEASED_PIECE = "released_piece"
    RESERVED_PIECE = "reserved_piece"
    ALREADY_CHANGED = "already_changed"
    MANUAL_REVIEW = "manual_review"
    SKIPPED_LOCKED = "skipped_locked"
    NOT_FOUND = "not_found"


@dataclass(frozen=True, slots=True)
class FixResult:
    """
    Result of one auto-fix attempt.

    success: False for locked, missing or manual-review pieces
    action: what happened
    report: the consistency report the decision was based on (None if skipped)
    error: human-readable explanation when success is False
    """

    piece_id: str
    success: bool
    action: FixAction
    report: Optional[ConsistencyReport] = None
    error: Optional[str] = None

    @property
    def changed(self) -> bool:
        """True if this call wrote to the piece."""
        return self.action in (FixAction.RELEASED_PIECE, FixAction.RESERVED_PIECE)


# recommended action -> (expected current status, new status, result action)
_TRANSITIONS = {
    RecommendedAction.RELEASE_PIECE: (
        PieceStatus.RESERVED,
        PieceStatus.AVAILABLE,
        FixAction.RELEASED_PIECE,
    ),
    RecommendedAction.RESERVE_PIECE: (
        PieceStatus.AVAILABLE,
        PieceStatus.RESERVED,
        FixAction.RESERVED_PIECE,
    ),
}


def _skipped_locked(piece_id: str, report: Optional[ConsistencyReport] = None) -> FixResult:
    logger.debug("Skipping auto-fix for piece %s: locked for active operation", piece_id)
    return FixResult(
        piece_id=piece_id,
        success=False,
        action=FixAction.SKIPPED_LOCKED,
        report=report,
        error="Piece is locked by an active operation",
    )


async def fix_piece_status(ctx: MaintenanceContext, piece_id: str) -> FixResult:
    """
    Bring a piece's status in line with its sales, if that can be done safely.

    Raises:
        StoreUnavailableError: if a read or the conditional write fails
    """

    if ctx.locks.is_locked(piece_id):
        return _skipped_locked(piece_id)

    report = await check_piece_consistency(ctx, piece_id)

    if not report.piece_found:
        return FixResult(
            piece_id=piece_id,
            success=False,
            action=FixAction.NOT_FOUND,
            report=report,
            error=report.issues[0],
        )

    if report.is_consistent:
        return FixResult(piece_id=piece_id, success=True, action=FixAction.NO_ACTION_NEEDED, report=report)

    action = report.recommended_action
    if action is None or not action.is_automatic:
        logger.warning(
            "Piece %s needs manual review: %s",
            piece_id,
            "; ".join(report.issues),
            extra={"piece_id": piece_id, "recommended_action": action.value if action else None},
        )
        return FixResult(
            piece_id=piece_id,
            success=False,
            action=FixAction.MANUAL_REVIEW,
            report=report,
            error="Status cannot be fixed automatically. Manual review required.",
        )

    # The lock may have been taken while the checker was awaiting the store.
    if ctx.locks.is_locked(piece_id):
        return _skipped_locked(piece_id, report)

    expected, new, done = _TRANSITIONS[action]
    now = ctx.now()
    changed = await ctx.pieces.compare_and_set_status(piece_id, expected, new, updated_at=now)

    if not changed:
        logger.info(
            "Piece %s was no longer %s; leaving it to the concurrent writer",
            piece_id,
            expected.value,
        )
        return FixResult(piece_id=piece_id, success=True, action=FixAction.ALREADY_CHANGED, report=report)

    logger.info(
        "Fixed piece %s: %s -> %s (%s)",
        piece_id,
        expected.value,
        new.value,
        "; ".join(report.issues),
    )
    ctx.events.publish(
        MaintenanceEvent(
            event_type=EventType.PIECE_STATUS_FIXED,
            entity_id=piece_id,
            occurred_at=now,
            details={"from": expected.value, "to": new.value, "action": action.value},
        )
    )
    return FixResult(piece_id=piece_id, success=True, action=done, report=report)


__all__ = ["FixAction", "FixResult", "fix_piece_status"]
