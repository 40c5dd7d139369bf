"""
Domain: Land piece entity.

A piece is a sellable unit of land. Its status is expected to mirror its sales:
- Reserved iff at least one associated sale is pending.
- Sold iff at least one associated sale is completed.
- At most one completed sale per piece.

Storage does not enforce these rules; the consistency layer detects and repairs
violations. This module contains only the pure entity: no I/O.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Optional

from .time import require_utc_timestamp


class PieceStatus(str, Enum):
    AVAILABLE = "Available"
    RESERVED = "Reserved"
    SOLD = "Sold"


@dataclass(frozen=True, slots=True)
class Piece:
    """
    Immutable snapshot of a land piece as read from the store.

    updated_at is the timestamp of the last status-affecting write. Older rows
    may not carry one, in which case it is None.
    """

    piece_id: str
    status: PieceStatus
    piece_number: Optional[str] = None
    updated_at: Optional[datetime] = None

    def __post_init__(self) -> None:
        if self.updated_at is not None:
            require_utc_timestamp("updated_at", self.updated_at)

    @property
    def label(self) -> str:
        """Human-friendly identifier for log lines."""
        return self.piece_number or self.piece_id[:8]

    def within_grace_period(self, now: datetime, grace_period: timedelta) -> bool:
        """
        True if the piece changed status less than `grace_period` ago.

        Background scans leave such pieces alone so they do not race an
        in-flight reservation. Pieces without updated_at are never in grace.
        """

        require_utc_timestamp("now", now)
        if self.updated_at is None:
            return False
        return now - self.updated_at < grace_period
