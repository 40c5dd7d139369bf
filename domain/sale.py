"""
Domain: Sale records.

A sale links a client to exactly one land piece and moves through
pending -> completed or pending -> cancelled. Several cancelled sales may exist
for a piece; more than one pending or completed sale at a time is a detectable
inconsistency, not something storage prevents.

The consistency layer only ever performs the pending -> cancelled transition.
Monetary fields are opaque here and only travel into the cancellation audit
snapshot.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Optional

from .time import require_utc_timestamp


class SaleStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


@dataclass(frozen=True, slots=True)
class SaleRecord:
    """
    Immutable snapshot of a sale row.

    created_at must be a UTC timestamp; staleness is measured from it.
    """

    sale_id: str
    piece_id: str
    status: SaleStatus
    created_at: datetime
    client_id: Optional[str] = None
    sale_price: Optional[Decimal] = None
    deposit_amount: Decimal = Decimal("0")
    company_fee_amount: Optional[Decimal] = None

    def __post_init__(self) -> None:
        require_utc_timestamp("created_at", self.created_at)

    @property
    def is_pending(self) -> bool:
        return self.status is SaleStatus.PENDING

    @property
    def is_completed(self) -> bool:
        return self.status is SaleStatus.COMPLETED

    def is_stale(self, cutoff: datetime) -> bool:
        """
        A pending sale is stale iff it was created strictly before `cutoff`.

        A sale created exactly at the cutoff is not stale.
        """

        require_utc_timestamp("cutoff", cutoff)
        return self.is_pending and self.created_at < cutoff

    def snapshot(self) -> dict[str, Any]:
        """Pre-transition view of the sale, as recorded in the audit log."""

        return {
            "client_id": self.client_id,
            "land_piece_id": self.piece_id,
            "sale_price": str(self.sale_price) if self.sale_price is not None else None,
            "deposit_amount": str(self.deposit_amount),
            "company_fee_amount": (
                str(self.company_fee_amount) if self.company_fee_amount is not None else None
            ),
            "status": self.status.value,
        }
