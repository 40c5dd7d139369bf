"""
Sale repository (persistence).

Persistence operations for the SaleRecord domain entity. It does not enforce
business rules (e.g., one pending sale per piece); it only fetches sale rows
and performs the conditional status transition.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Iterable, List, Mapping, Optional, Sequence

from domain.errors import MalformedRowError
from domain.sale import SaleRecord, SaleStatus
from domain.time import parse_utc_datetime, to_iso_utc
from repositories.client import execute_query

# Supabase table name for sale records.
# Keep this aligned with your database schema.
_SALES_TABLE: str = "sales"

_SALE_COLUMNS: str = (
    "id, land_piece_id, client_id, status, created_at, "
    "sale_price, deposit_amount, company_fee_amount"
)


def _to_decimal(value: Any) -> Optional[Decimal]:
    if value is None:
        return None
    return Decimal(str(value))


def _row_to_sale(row: Mapping[str, Any]) -> SaleRecord:
    """
    Convert a Supabase row into a SaleRecord.

    Raises:
        MalformedRowError: if the status, timestamp or an amount does not decode
    """

    try:
        client_id = row.get("client_id")
        return SaleRecord(
            sale_id=str(row["id"]),
            piece_id=str(row["land_piece_id"]),
            status=SaleStatus(str(row["status"])),
            created_at=parse_utc_datetime(row["created_at"]),
            client_id=str(client_id) if client_id is not None else None,
            sale_price=_to_decimal(row.get("sale_price")),
            deposit_amount=_to_decimal(row.get("deposit_amount")) or Decimal("0"),
            company_fee_amount=_to_decimal(row.get("company_fee_amount")),
        )
    except (KeyError, ValueError, TypeError, InvalidOperation) as exc:
        raise MalformedRowError(_SALES_TABLE, row.get("id"), exc) from exc


class SaleRepository:
    """Reads and conditional writes against the sales table."""

    def __init__(self, client: Any):
        self._client = client

    def _select(self) -> Any:
        return self._client.table(_SALES_TABLE).select(_SALE_COLUMNS)

    async def list_sales_for_piece(self, piece_id: str) -> List[SaleRecord]:
        """
        Retrieve every sale for a piece, newest first.

        Returns:
            List[SaleRecord] (possibly empty)
        """

        rows = await execute_query(
            self._select().eq("land_piece_id", piece_id).order("created_at", desc=True),
            action="list sales for piece",
        )
        return [_row_to_sale(row) for row in rows]

    async def list_sales_for_pieces(
        self,
        piece_ids: Iterable[str],
        statuses: Sequence[SaleStatus] = (SaleStatus.PENDING, SaleStatus.COMPLETED),
    ) -> List[SaleRecord]:
        """Retrieve sales in `statuses` for several pieces in one round trip."""

        ids = list(dict.fromkeys(piece_ids))
        if not ids:
            return []
        rows = await execute_query(
            self._select()
            .in_("land_piece_id", ids)
            .in_("status", [s.value for s in statuses]),
            action="list sales for pieces",
        )
        return [_row_to_sale(row) for row in rows]

    async def list_pending_sales(
        self,
        piece_id: Optional[str] = None,
        created_before: Optional[datetime] = None,
    ) -> List[SaleRecord]:
        """
        Retrieve pending sales, optionally for one piece and/or strictly older
        than `created_before`.
        """

        query = self._select().eq("status", SaleStatus.PENDING.value)
        if piece_id is not None:
            query = query.eq("land_piece_id", piece_id)
        if created_before is not None:
            query = query.lt("created_at", to_iso_utc(created_before, name="created_before"))

        rows = await execute_query(
            query.order("created_at"),
            action="list pending sales",
        )
        return [_row_to_sale(row) for row in rows]

    async def get_pending_sale_for_piece(self, piece_id: str) -> Optional[SaleRecord]:
        """
        Retrieve the oldest pending sale of a piece.

        Returns:
            SaleRecord or None if the piece has no pending sale
        """

        rows = await execute_query(
            self._select()
            .eq("land_piece_id", piece_id)
            .eq("status", SaleStatus.PENDING.value)
            .order("created_at")
            .limit(1),
            action="fetch pending sale",
        )
        if not rows:
            return None
        return _row_to_sale(rows[0])

    async def compare_and_set_status(
        self,
        sale_id: str,
        expected: SaleStatus,
        new: SaleStatus,
    ) -> bool:
        """
        Set status to `new` only if the stored status is still `expected`.

        Returns:
            True if this call changed the row, False if it had already moved on
        """

        rows = await execute_query(
            self._client.table(_SALES_TABLE)
            .update({"status": new.value})
            .eq("id", sale_id)
            .eq("status", expected.value),
            action=f"update sale status {expected.value} -> {new.value}",
        )
        return bool(rows)


__all__ = ["SaleRepository"]
