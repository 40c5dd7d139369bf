"""
Consistency checker.

Reads a piece and its sales and reports whether the piece status matches them.
Read-only: nothing in this module writes to the store. Read failures propagate
as StoreUnavailableError; a missing piece is reported, not raised.
"""

from __future__ import annotations

from collections import defaultdict
from typing import Dict, Iterable, List

from domain.consistency import (
    ConsistencyReport,
    RealtimeStatus,
    evaluate_consistency,
    realtime_status,
)
from domain.sale import SaleRecord
from services.context import MaintenanceContext


async def check_piece_consistency(ctx: MaintenanceContext, piece_id: str) -> ConsistencyReport:
    """
    Check one piece against the consistency rules.

    Returns:
        ConsistencyReport; piece_found is False when the piece does not exist

    Raises:
        StoreUnavailableError: if the piece or its sales cannot be read
    """

    piece = await ctx.pieces.get_piece(piece_id)
    if piece is None:
        return ConsistencyReport.not_found(piece_id)

    sales = await ctx.sales.list_sales_for_piece(piece_id)
    return evaluate_consistency(piece, sales)


async def get_realtime_statuses(
    ctx: MaintenanceContext,
    piece_ids: Iterable[str],
) -> Dict[str, RealtimeStatus]:
    """
    Status each piece should display given its pending/completed sales.

    Uses one piece read and one sale read regardless of how many ids are
    given. Ids with no matching piece are absent from the result.
    """

    ids = list(dict.fromkeys(piece_ids))
    if not ids:
        return {}

    pieces = await ctx.pieces.list_pieces(ids)
    sales = await ctx.sales.list_sales_for_pieces(ids)

    by_piece: Dict[str, List[SaleRecord]] = defaultdict(list)
    for sale in sales:
        by_piece[sale.piece_id].append(sale)

    return {piece.piece_id: realtime_status(piece, by_piece[piece.piece_id]) for piece in pieces}


__all__ = ["check_piece_consistency", "get_realtime_statuses"]
