"""
Domain: piece/sale consistency rules (pure).

Rules, evaluated in order against a piece and all of its sales:
- Available with >= 1 pending sale     -> reserve_piece
- Reserved with 0 pending sales        -> release_piece
- Sold with 0 completed sales          -> check_sales   (manual review)
- More than 1 completed sale           -> review_sales  (manual review)
- Anything else is consistent.

The first matching rule decides the recommended action. Only reserve_piece and
release_piece are safe to apply automatically.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Optional, Tuple

from .piece import Piece, PieceStatus
from .sale import SaleRecord


class RecommendedAction(str, Enum):
    RESERVE_PIECE = "reserve_piece"
    RELEASE_PIECE = "release_piece"
    CHECK_SALES = "check_sales"
    REVIEW_SALES = "review_sales"

    @property
    def is_automatic(self) -> bool:
        return self in (RecommendedAction.RESERVE_PIECE, RecommendedAction.RELEASE_PIECE)


@dataclass(frozen=True, slots=True)
class ConsistencyReport:
    """
    Outcome of checking one piece.

    piece_found is False when the piece does not exist; such a report is
    inconsistent and carries no recommended action.
    """

    piece_id: str
    is_consistent: bool
    issues: Tuple[str, ...] = ()
    recommended_action: Optional[RecommendedAction] = None
    piece_found: bool = True
    status: Optional[PieceStatus] = None
    pending_sale_ids: Tuple[str, ...] = ()
    completed_sale_ids: Tuple[str, ...] = ()

    @staticmethod
    def not_found(piece_id: str) -> "ConsistencyReport":
        return ConsistencyReport(
            piece_id=piece_id,
            is_consistent=False,
            issues=(f"Piece not found: {piece_id}",),
            piece_found=False,
        )


def evaluate_consistency(piece: Piece, sales: Iterable[SaleRecord]) -> ConsistencyReport:
    """Apply the consistency rules to a piece and its sales."""

    sales = list(sales)
    pending = tuple(s.sale_id for s in sales if s.is_pending)
    completed = tuple(s.sale_id for s in sales if s.is_completed)

    def inconsistent(issue: str, action: RecommendedAction) -> ConsistencyReport:
        return ConsistencyReport(
            piece_id=piece.piece_id,
            is_consistent=False,
            issues=(issue,),
            recommended_action=action,
            status=piece.status,
            pending_sale_ids=pending,
            completed_sale_ids=completed,
        )

    if piece.status is PieceStatus.AVAILABLE and pending:
        return inconsistent(
            f"Piece is Available but has {len(pending)} pending sale(s)",
            RecommendedAction.RESERVE_PIECE,
        )

    if piece.status is PieceStatus.RESERVED and not pending:
        return inconsistent(
            "Piece is Reserved but has no pending sale",
            RecommendedAction.RELEASE_PIECE,
        )

    if piece.status is PieceStatus.SOLD and not completed:
        return inconsistent(
            "Piece is Sold but has no completed sale",
            RecommendedAction.CHECK_SALES,
        )

    if len(completed) > 1:
        return inconsistent(
            f"Piece has {len(completed)} completed sales (expected at most one)",
            RecommendedAction.REVIEW_SALES,
        )

    return ConsistencyReport(
        piece_id=piece.piece_id,
        is_consistent=True,
        status=piece.status,
        pending_sale_ids=pending,
        completed_sale_ids=completed,
    )


@dataclass(frozen=True, slots=True)
class RealtimeStatus:
    """Status a piece should display given its sales, next to what is stored."""

    piece_id: str
    status: PieceStatus
    stored_status: PieceStatus
    has_pending_sale: bool = False
    has_completed_sale: bool = False
    sale_ids: Tuple[str, ...] = ()


def effective_status(piece_status: PieceStatus, sales: Iterable[SaleRecord]) -> PieceStatus:
    """
    Status implied by the sales: a completed sale wins, then a pending one.

    Without either, the stored status stands (an orphaned Reserved stays
    Reserved here; repairing it is the auto-fixer's job).
    """

    sales = list(sales)
    if any(s.is_completed for s in sales):
        return PieceStatus.SOLD
    if any(s.is_pending for s in sales):
        return PieceStatus.RESERVED
    return piece_status


def realtime_status(piece: Piece, sales: Iterable[SaleRecord]) -> RealtimeStatus:
    sales = [s for s in sales if s.is_pending or s.is_completed]
    return RealtimeStatus(
        piece_id=piece.piece_id,
        status=effective_status(piece.status, sales),
        stored_status=piece.status,
        has_pending_sale=any(s.is_pending for s in sales),
        has_completed_sale=any(s.is_completed for s in sales),
        sale_ids=tuple(s.sale_id for s in sales),
    )
