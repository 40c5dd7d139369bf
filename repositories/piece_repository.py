"""
Piece repository (persistence).

Persistence operations for the Piece domain entity. It contains no consistency
rules; the only constraint it enforces is the conditional status update, which
is expressed as a single update-where-status-equals-expected statement.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Iterable, List, Mapping, Optional

from domain.errors import MalformedRowError
from domain.piece import Piece, PieceStatus
from domain.time import parse_utc_datetime, to_iso_utc
from repositories.client import execute_query

# Supabase table name for land pieces.
# Keep this aligned with your database schema.
_PIECES_TABLE: str = "land_pieces"

_PIECE_COLUMNS: str = "id, piece_number, status, updated_at"


def _row_to_piece(row: Mapping[str, Any]) -> Piece:
    """
    Convert a Supabase row into a Piece.

    Raises:
        MalformedRowError: if the row has an unknown status or a bad timestamp
    """

    try:
        updated_at = row.get("updated_at")
        piece_number = row.get("piece_number")
        return Piece(
            piece_id=str(row["id"]),
            status=PieceStatus(str(row["status"])),
            piece_number=str(piece_number) if piece_number is not None else None,
            updated_at=parse_utc_datetime(updated_at) if updated_at else None,
        )
    except (KeyError, ValueError, TypeError) as exc:
        raise MalformedRowError(_PIECES_TABLE, row.get("id"), exc) from exc


class PieceRepository:
    """Reads and conditional writes against the land_pieces table."""

    def __init__(self, client: Any):
        self._client = client

    def _table(self) -> Any:
        return self._client.table(_PIECES_TABLE)

    async def get_piece(self, piece_id: str) -> Optional[Piece]:
        """
        Fetch a single piece.

        Returns:
            Piece or None if no row has this id
        """

        rows = await execute_query(
            self._table().select(_PIECE_COLUMNS).eq("id", piece_id).limit(1),
            action="fetch piece",
        )
        if not rows:
            return None
        return _row_to_piece(rows[0])

    async def list_pieces(self, piece_ids: Iterable[str]) -> List[Piece]:
        """Fetch several pieces in one round trip. Unknown ids are ignored."""

        ids = list(dict.fromkeys(piece_ids))
        if not ids:
            return []
        rows = await execute_query(
            self._table().select(_PIECE_COLUMNS).in_("id", ids),
            action="fetch pieces",
        )
        return [_row_to_piece(row) for row in rows]

    async def list_pieces_by_status(self, status: PieceStatus) -> List[Piece]:
        rows = await execute_query(
            self._table().select(_PIECE_COLUMNS).eq("status", status.value),
            action=f"list {status.value} pieces",
        )
        return [_row_to_piece(row) for row in rows]

    async def compare_and_set_status(
        self,
        piece_id: str,
        expected: PieceStatus,
        new: PieceStatus,
        *,
        updated_at: datetime,
    ) -> bool:
        """
        Set status to `new` only if the stored status is still `expected`.

        Returns:
            True if exactly this call changed the row, False if the
            precondition no longer held (someone else changed it first)
        """

        payload: dict[str, Any] = {
            "status": new.value,
            "updated_at": to_iso_utc(updated_at, name="updated_at"),
        }
        rows = await execute_query(
            self._table()
            .update(payload)
            .eq("id", piece_id)
            .eq("status", expected.value),
            action=f"update piece status {expected.value} -> {new.value}",
        )
        return bool(rows)


__all__ = ["PieceRepository"]
