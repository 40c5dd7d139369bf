"""
Pytest configuration and shared fixtures.

Adds the project root to the Python path so tests can import domain,
repositories and services, and provides in-memory stand-ins for the three
repositories. Every fake store call yields to the event loop once before
touching state, so concurrent callers interleave the way they would against
the real store; each conditional update is applied without yielding, which
mirrors the single-row atomicity of the database.
"""

import asyncio
import sys
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Sequence, Set

import pytest

# Add the project root to the Python path
# so tests can import domain, repositories, etc.
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from config import Settings  # noqa: E402
from domain.errors import MalformedRowError, StoreUnavailableError  # noqa: E402
from domain.piece import Piece, PieceStatus  # noqa: E402
from domain.sale import SaleRecord, SaleStatus  # noqa: E402
from services.context import MaintenanceContext  # noqa: E402

NOW = datetime(2025, 6, 1, 12, 0, 0, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, now: datetime):
        self.current = now

    def __call__(self) -> datetime:
        return self.current

    def advance(self, delta: timedelta) -> None:
        self.current += delta


@dataclass
class PieceWrite:
    piece_id: str
    expected: PieceStatus
    new: PieceStatus
    changed: bool


@dataclass
class InMemoryDatabase:
    """
    Shared state behind the fake repositories.

    fail_operations: names of fake methods that raise StoreUnavailableError
    fail_sale_ids: sales whose conditional update raises StoreUnavailableError
    fail_times: operation name -> number of upcoming calls that raise
        StoreUnavailableError before the operation recovers
    malformed_piece_ids: pieces whose stored row does not decode (reads of
        them raise MalformedRowError, as the real mapper does)
    """

    pieces: Dict[str, Piece] = field(default_factory=dict)
    sales: Dict[str, SaleRecord] = field(default_factory=dict)
    audit_entries: List[Dict[str, Any]] = field(default_factory=list)
    piece_writes: List[PieceWrite] = field(default_factory=list)
    sale_writes: List[str] = field(default_factory=list)
    fail_operations: Set[str] = field(default_factory=set)
    fail_sale_ids: Set[str] = field(default_factory=set)
    fail_times: Dict[str, int] = field(default_factory=dict)
    malformed_piece_ids: Set[str] = field(default_factory=set)
    calls: List[str] = field(default_factory=list)

    async def enter(self, operation: str) -> None:
        self.calls.append(operation)
        await asyncio.sleep(0)
        if operation in self.fail_operations:
            raise StoreUnavailableError(operation, "simulated outage")
        if self.fail_times.get(operation, 0) > 0:
            self.fail_times[operation] -= 1
            raise StoreUnavailableError(operation, "transient failure")

    def decode(self, pieces: Iterable[Piece]) -> List[Piece]:
        pieces = list(pieces)
        for piece in pieces:
            if piece.piece_id in self.malformed_piece_ids:
                raise MalformedRowError(
                    "land_pieces", piece.piece_id, ValueError("'Cancelled' is not a valid PieceStatus")
                )
        return pieces

    def add_piece(
        self,
        piece_id: str,
        status: PieceStatus,
        updated_at: Optional[datetime] = None,
        piece_number: Optional[str] = None,
    ) -> Piece:
        piece = Piece(piece_id=piece_id, status=status, piece_number=piece_number, updated_at=updated_at)
        self.pieces[piece_id] = piece
        return piece

    def add_sale(
        self,
        sale_id: str,
        piece_id: str,
        status: SaleStatus,
        created_at: datetime,
        client_id: str = "client-1",
        sale_price: Decimal = Decimal("150000.00"),
        deposit_amount: Decimal = Decimal("5000.00"),
        company_fee_amount: Optional[Decimal] = Decimal("1500.00"),
    ) -> SaleRecord:
        sale = SaleRecord(
            sale_id=sale_id,
            piece_id=piece_id,
            status=status,
            created_at=created_at,
            client_id=client_id,
            sale_price=sale_price,
            deposit_amount=deposit_amount,
            company_fee_amount=company_fee_amount,
        )
        self.sales[sale_id] = sale
        return sale

    def status_of(self, piece_id: str) -> PieceStatus:
        return self.pieces[piece_id].status

    def sale_status(self, sale_id: str) -> SaleStatus:
        return self.sales[sale_id].status

    @property
    def successful_piece_writes(self) -> List[PieceWrite]:
        return [w for w in self.piece_writes if w.changed]


class FakePieceRepository:
    def __init__(self, db: InMemoryDatabase):
        self.db = db

    async def get_piece(self, piece_id: str) -> Optional[Piece]:
        await self.db.enter("get_piece")
        piece = self.db.pieces.get(piece_id)
        if piece is None:
            return None
        return self.db.decode([piece])[0]

    async def list_pieces(self, piece_ids: Iterable[str]) -> List[Piece]:
        await self.db.enter("list_pieces")
        return self.db.decode(self.db.pieces[i] for i in dict.fromkeys(piece_ids) if i in self.db.pieces)

    async def list_pieces_by_status(self, status: PieceStatus) -> List[Piece]:
        await self.db.enter("list_pieces_by_status")
        # an undecodable status never equals the filter value
        return [
            p for p in self.db.pieces.values()
            if p.status is status and p.piece_id not in self.db.malformed_piece_ids
        ]

    async def compare_and_set_status(
        self,
        piece_id: str,
        expected: PieceStatus,
        new: PieceStatus,
        *,
        updated_at: datetime,
    ) -> bool:
        await self.db.enter("compare_and_set_piece_status")
        piece = self.db.pieces.get(piece_id)
        changed = piece is not None and piece.status is expected
        if changed:
            self.db.pieces[piece_id] = replace(piece, status=new, updated_at=updated_at)
        self.db.piece_writes.append(PieceWrite(piece_id, expected, new, changed))
        return changed


class FakeSaleRepository:
    def __init__(self, db: InMemoryDatabase):
        self.db = db

    async def list_sales_for_piece(self, piece_id: str) -> List[SaleRecord]:
        await self.db.enter("list_sales_for_piece")
        sales = [s for s in self.db.sales.values() if s.piece_id == piece_id]
        return sorted(sales, key=lambda s: s.created_at, reverse=True)

    async def list_sales_for_pieces(
        self,
        piece_ids: Iterable[str],
        statuses: Sequence[SaleStatus] = (SaleStatus.PENDING, SaleStatus.COMPLETED),
    ) -> List[SaleRecord]:
        await self.db.enter("list_sales_for_pieces")
        ids = set(piece_ids)
        return [s for s in self.db.sales.values() if s.piece_id in ids and s.status in statuses]

    async def list_pending_sales(
        self,
        piece_id: Optional[str] = None,
        created_before: Optional[datetime] = None,
    ) -> List[SaleRecord]:
        await self.db.enter("list_pending_sales")
        sales = [s for s in self.db.sales.values() if s.status is SaleStatus.PENDING]
        if piece_id is not None:
            sales = [s for s in sales if s.piece_id == piece_id]
        if created_before is not None:
            sales = [s for s in sales if s.created_at < created_before]
        return sorted(sales, key=lambda s: s.created_at)

    async def get_pending_sale_for_piece(self, piece_id: str) -> Optional[SaleRecord]:
        await self.db.enter("get_pending_sale_for_piece")
        pending = [
            s for s in self.db.sales.values()
            if s.piece_id == piece_id and s.status is SaleStatus.PENDING
        ]
        return min(pending, key=lambda s: s.created_at) if pending else None

    async def compare_and_set_status(self, sale_id: str, expected: SaleStatus, new: SaleStatus) -> bool:
        await self.db.enter("compare_and_set_sale_status")
        if sale_id in self.db.fail_sale_ids:
            raise StoreUnavailableError("update sale status", "simulated outage")
        sale = self.db.sales.get(sale_id)
        if sale is None or sale.status is not expected:
            return False
        self.db.sales[sale_id] = replace(sale, status=new)
        self.db.sale_writes.append(sale_id)
        return True


class FakeAuditLogRepository:
    def __init__(self, db: InMemoryDatabase):
        self.db = db

    async def log_sale_cancellation(
        self,
        sale: SaleRecord,
        *,
        reason: str,
        logged_at: datetime,
        user_id: Optional[str] = None,
    ) -> None:
        await self.db.enter("log_sale_cancellation")
        self.db.audit_entries.append(
            {
                "action": "sale_cancelled",
                "entity_type": "sale",
                "entity_id": sale.sale_id,
                "old_values": sale.snapshot(),
                "new_values": {"status": SaleStatus.CANCELLED.value},
                "notes": reason,
                "created_at": logged_at,
            }
        )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(NOW)


@pytest.fixture
def db() -> InMemoryDatabase:
    return InMemoryDatabase()


@pytest.fixture
def settings() -> Settings:
    return Settings(retry_base_delay_seconds=0.0)


@pytest.fixture
def ctx(db: InMemoryDatabase, clock: FakeClock, settings: Settings) -> MaintenanceContext:
    return MaintenanceContext(
        pieces=FakePieceRepository(db),
        sales=FakeSaleRepository(db),
        audit_log=FakeAuditLogRepository(db),
        settings=settings,
        clock=clock,
    )
